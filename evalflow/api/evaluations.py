"""Evaluation and section workflow endpoints."""

from fastapi import APIRouter, Response, status

from evalflow.api.deps import WorkflowServiceDep
from evalflow.auth.middleware import CallerDep
from evalflow.engine.aggregate import Evaluation, EvaluationStatus
from evalflow.engine.sections import parse_section
from evalflow.schemas.evaluation import (
    BulkReviewRequest,
    BulkReviewResponse,
    CreateEvaluationRequest,
    EvaluationSummary,
    ReviewNotesRequest,
    SaveSectionRequest,
    SectionCapabilitiesResponse,
    StructureGrantRequest,
    StructureGrantResponse,
    UpdateEvaluationRequest,
)

router = APIRouter()


@router.post("/evaluations", response_model=Evaluation, status_code=status.HTTP_201_CREATED)
async def create_evaluation(
    body: CreateEvaluationRequest,
    caller: CallerDep,
    service: WorkflowServiceDep,
):
    """Create an empty evaluation report owned by the caller."""
    return await service.create_evaluation(
        caller,
        eval_number=body.eval_number,
        rfq_number=body.rfq_number,
        rfq_title=body.rfq_title,
        description=body.description,
        due_date=body.due_date,
    )


@router.get("/evaluations", response_model=list[EvaluationSummary])
async def list_evaluations(
    caller: CallerDep,
    service: WorkflowServiceDep,
    status: EvaluationStatus | None = None,
    search: str | None = None,
):
    """List evaluations, optionally filtered by status or a search term."""
    evaluations = await service.list_evaluations(
        status.value if status else None, search
    )
    return [EvaluationSummary.from_evaluation(ev) for ev in evaluations]


@router.get("/evaluations/{evaluation_id}", response_model=Evaluation)
async def get_evaluation(evaluation_id: int, caller: CallerDep, service: WorkflowServiceDep):
    """Full evaluation with all five sections and assignments."""
    return await service.get_evaluation(evaluation_id)


@router.patch("/evaluations/{evaluation_id}", response_model=Evaluation)
async def update_evaluation(
    evaluation_id: int,
    body: UpdateEvaluationRequest,
    caller: CallerDep,
    service: WorkflowServiceDep,
):
    """Edit report metadata (RFQ number and title, description, due date)."""
    return await service.update_evaluation(
        caller, evaluation_id, body.model_dump(exclude_unset=True)
    )


@router.delete("/evaluations/{evaluation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_evaluation(evaluation_id: int, caller: CallerDep, service: WorkflowServiceDep):
    """Delete an evaluation and its assignments."""
    await service.delete_evaluation(caller, evaluation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/evaluations/{evaluation_id}/capabilities",
    response_model=dict[str, SectionCapabilitiesResponse],
)
async def get_capabilities(evaluation_id: int, caller: CallerDep, service: WorkflowServiceDep):
    """What the caller may do on each section right now."""
    resolved = await service.capabilities(caller, evaluation_id)
    return {
        section.value: SectionCapabilitiesResponse(**vars(caps))
        for section, caps in resolved.items()
    }


@router.patch("/evaluations/{evaluation_id}/sections/{section}", response_model=Evaluation)
async def save_section(
    evaluation_id: int,
    section: str,
    body: SaveSectionRequest,
    caller: CallerDep,
    service: WorkflowServiceDep,
):
    """Save section content; the first save starts the section."""
    return await service.save_section(
        caller, evaluation_id, parse_section(section), body.payload, structure=body.structure
    )


@router.post("/evaluations/{evaluation_id}/sections/{section}/submit", response_model=Evaluation)
async def submit_section(
    evaluation_id: int, section: str, caller: CallerDep, service: WorkflowServiceDep
):
    """Submit a section for committee review."""
    return await service.submit_section(caller, evaluation_id, parse_section(section))


@router.post("/evaluations/{evaluation_id}/sections/{section}/verify", response_model=Evaluation)
async def verify_section(
    evaluation_id: int,
    section: str,
    caller: CallerDep,
    service: WorkflowServiceDep,
    body: ReviewNotesRequest | None = None,
):
    """Committee approval of a submitted section."""
    notes = body.notes if body else None
    return await service.verify_section(caller, evaluation_id, parse_section(section), notes)


@router.post("/evaluations/{evaluation_id}/sections/{section}/return", response_model=Evaluation)
async def return_section(
    evaluation_id: int,
    section: str,
    body: ReviewNotesRequest,
    caller: CallerDep,
    service: WorkflowServiceDep,
):
    """Send a submitted section back with mandatory notes."""
    return await service.return_section(caller, evaluation_id, parse_section(section), body.notes)


@router.post(
    "/evaluations/{evaluation_id}/sections/{section}/structure-grant",
    response_model=StructureGrantResponse,
)
async def grant_structure_edit(
    evaluation_id: int,
    section: str,
    caller: CallerDep,
    service: WorkflowServiceDep,
    body: StructureGrantRequest | None = None,
):
    """Allow one table-structure save on a section regardless of assignment."""
    grant = await service.grant_structure_edit(
        caller, evaluation_id, parse_section(section), body.user_id if body else None
    )
    return StructureGrantResponse(
        evaluation_id=grant.evaluation_id,
        section=grant.section,
        user_id=grant.user_id,
        granted_by=grant.granted_by,
    )


@router.post("/evaluations/{evaluation_id}/verify-all", response_model=BulkReviewResponse)
async def verify_all(
    evaluation_id: int,
    caller: CallerDep,
    service: WorkflowServiceDep,
    body: BulkReviewRequest | None = None,
):
    """Verify every submitted section; already-resolved ones are reported as skipped."""
    body = body or BulkReviewRequest()
    evaluation, outcome = await service.verify_all(
        caller, evaluation_id, body.notes, body.sections
    )
    return BulkReviewResponse(
        evaluation=evaluation, succeeded=outcome.succeeded, skipped=outcome.skipped
    )


@router.post("/evaluations/{evaluation_id}/return-all", response_model=BulkReviewResponse)
async def return_all(
    evaluation_id: int,
    body: BulkReviewRequest,
    caller: CallerDep,
    service: WorkflowServiceDep,
):
    """Return every started, unverified section with the same notes."""
    evaluation, outcome = await service.return_all(
        caller, evaluation_id, body.notes, body.sections
    )
    return BulkReviewResponse(
        evaluation=evaluation, succeeded=outcome.succeeded, skipped=outcome.skipped
    )
