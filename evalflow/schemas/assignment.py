"""Assignment API schemas."""

from pydantic import BaseModel, Field

from evalflow.engine.sections import SectionId


class AssignEvaluatorsRequest(BaseModel):
    """POST /v1/evaluations/{id}/assign request."""

    user_ids: list[int] = Field(default_factory=list)
    sections: list[SectionId] = Field(default_factory=list)
