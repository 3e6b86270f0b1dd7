"""Evaluator assignment endpoints."""

from fastapi import APIRouter

from evalflow.api.deps import WorkflowServiceDep
from evalflow.auth.middleware import CallerDep
from evalflow.engine.aggregate import Assignment, Evaluation
from evalflow.schemas.assignment import AssignEvaluatorsRequest

router = APIRouter()


@router.post("/evaluations/{evaluation_id}/assign", response_model=Evaluation)
async def assign_evaluators(
    evaluation_id: int,
    body: AssignEvaluatorsRequest,
    caller: CallerDep,
    service: WorkflowServiceDep,
):
    """Give users edit rights over sections of an evaluation."""
    return await service.assign_evaluators(caller, evaluation_id, body.user_ids, body.sections)


@router.get("/evaluations/{evaluation_id}/assignments", response_model=list[Assignment])
async def list_assignments(evaluation_id: int, caller: CallerDep, service: WorkflowServiceDep):
    """All assignments of an evaluation, completed ones included."""
    return await service.list_assignments(evaluation_id)


@router.post("/evaluations/{evaluation_id}/assignments/complete", response_model=Evaluation)
async def complete_assignment(
    evaluation_id: int, caller: CallerDep, service: WorkflowServiceDep
):
    """Mark the caller's own assignment as finished."""
    return await service.complete_assignment(caller, evaluation_id)


@router.get("/assignments/me", response_model=list[Assignment])
async def my_assignments(caller: CallerDep, service: WorkflowServiceDep):
    """Assignments held by the caller across evaluations."""
    return await service.my_assignments(caller)


@router.delete("/assignments/{assignment_id}", response_model=Evaluation)
async def remove_assignment(assignment_id: str, caller: CallerDep, service: WorkflowServiceDep):
    """Remove an assignment that has not been completed."""
    return await service.remove_assignment(caller, assignment_id)
