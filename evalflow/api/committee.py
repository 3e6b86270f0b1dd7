"""Committee review queue."""

from fastapi import APIRouter

from evalflow.api.deps import WorkflowServiceDep
from evalflow.auth.middleware import CallerDep
from evalflow.engine.sections import SectionStatus
from evalflow.engine.workflow import CommitteeQueue

router = APIRouter()


@router.get("/committee/queue", response_model=CommitteeQueue)
async def review_queue(
    caller: CallerDep,
    service: WorkflowServiceDep,
    status: SectionStatus | None = SectionStatus.SUBMITTED,
):
    """Sections across all evaluations, filtered by status (SUBMITTED by default)."""
    return await service.committee_queue(caller, status)
