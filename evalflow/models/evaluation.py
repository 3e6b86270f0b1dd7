"""Evaluation report and assignment models."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from evalflow.database import Base


class EvaluationRow(Base):
    """Evaluation reports - all five sections live in one JSONB document."""

    __tablename__ = "evaluations"

    evaluation_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    eval_number: Mapped[str] = mapped_column(Text, unique=True, nullable=False)
    rfq_number: Mapped[str] = mapped_column(Text, nullable=False)
    rfq_title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="PENDING"
    )  # PENDING|IN_PROGRESS|COMMITTEE_REVIEW|COMPLETED|VALIDATED|REJECTED
    created_by: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.user_id"), nullable=False
    )
    sections: Mapped[dict] = mapped_column(JSONB, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    assignments: Mapped[list["AssignmentRow"]] = relationship(
        back_populates="evaluation",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AssignmentRow.created_at",
    )


class AssignmentRow(Base):
    """Per-user section edit grants."""

    __tablename__ = "evaluation_assignments"

    assignment_id: Mapped[str] = mapped_column(UUID(as_uuid=False), primary_key=True)
    evaluation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("evaluations.evaluation_id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.user_id"), nullable=False)
    sections: Mapped[list] = mapped_column(JSONB, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="ACTIVE"
    )  # ACTIVE|COMPLETED
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    evaluation: Mapped[EvaluationRow] = relationship(back_populates="assignments")
