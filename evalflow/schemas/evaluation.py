"""Evaluation request/response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from evalflow.engine.aggregate import Evaluation, EvaluationStatus
from evalflow.engine.sections import SectionId, SectionStatus
from evalflow.engine.workflow import SkippedSection


class CreateEvaluationRequest(BaseModel):
    """POST /v1/evaluations request."""

    eval_number: str = Field(min_length=1)
    rfq_number: str
    rfq_title: str
    description: str | None = None
    due_date: datetime | None = None


class UpdateEvaluationRequest(BaseModel):
    """PATCH /v1/evaluations/{id} - report metadata; status and sections are rejected."""

    model_config = ConfigDict(extra="forbid")

    rfq_number: str | None = None
    rfq_title: str | None = None
    description: str | None = None
    due_date: datetime | None = None


class SaveSectionRequest(BaseModel):
    """PATCH /v1/evaluations/{id}/sections/{section} - section field values."""

    payload: dict[str, Any]
    # Table-structure change; the only save a structure edit grant allows.
    structure: bool = False


class ReviewNotesRequest(BaseModel):
    """Committee feedback for verify/return."""

    notes: str | None = None


class BulkReviewRequest(BaseModel):
    """POST /v1/evaluations/{id}/verify-all and /return-all.

    ``sections`` is the target set the client computed; omit it to let the
    server pick every eligible section.
    """

    notes: str | None = None
    sections: list[SectionId] | None = None


class BulkReviewResponse(BaseModel):
    evaluation: Evaluation
    succeeded: list[SectionId] = Field(default_factory=list)
    skipped: list[SkippedSection] = Field(default_factory=list)


class StructureGrantRequest(BaseModel):
    """Target user for a structure edit override; defaults to the caller."""

    user_id: int | None = None


class StructureGrantResponse(BaseModel):
    evaluation_id: int
    section: SectionId
    user_id: int
    granted_by: int


class SectionCapabilitiesResponse(BaseModel):
    can_edit: bool
    can_submit: bool
    can_verify: bool
    can_return: bool
    own_entry_only: bool
    structure_only: bool


class EvaluationSummary(BaseModel):
    """Row in GET /v1/evaluations."""

    id: int
    eval_number: str
    rfq_number: str
    rfq_title: str
    status: EvaluationStatus
    sections: dict[SectionId, SectionStatus]
    due_date: datetime | None = None
    updated_at: datetime

    @classmethod
    def from_evaluation(cls, evaluation: Evaluation) -> "EvaluationSummary":
        return cls(
            id=evaluation.id,
            eval_number=evaluation.eval_number,
            rfq_number=evaluation.rfq_number,
            rfq_title=evaluation.rfq_title,
            status=evaluation.status,
            sections={s: slot.record.status for s, slot in evaluation.sections.items()},
            due_date=evaluation.due_date,
            updated_at=evaluation.updated_at,
        )
