"""Evaluation aggregate - five section slots, assignments and derived status."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, PrivateAttr

from evalflow.engine.errors import NotFound, ValidationError
from evalflow.engine.sections import (
    SECTION_ORDER,
    SectionEvent,
    SectionId,
    SectionStatus,
    next_status,
)
from evalflow.notifications import Notification, NotificationKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EvaluationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMMITTEE_REVIEW = "COMMITTEE_REVIEW"
    COMPLETED = "COMPLETED"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"


# Set by the external validation step; never overwritten by recompute.
FINAL_STATUSES = frozenset({EvaluationStatus.VALIDATED, EvaluationStatus.REJECTED})


class AssignmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"


class SectionRecord(BaseModel):
    """Workflow state of one section."""

    status: SectionStatus = SectionStatus.NOT_STARTED
    notes: str | None = None
    verifier_id: int | None = None
    verified_at: datetime | None = None
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


class SectionSlot(BaseModel):
    """Section payload together with its workflow record."""

    payload: dict[str, Any] | None = None
    record: SectionRecord = Field(default_factory=SectionRecord)
    author_id: int | None = None


class Assignment(BaseModel):
    """Edit grant for one user over some sections of one evaluation."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    evaluation_id: int | None = None
    user_id: int
    sections: list[SectionId]
    status: AssignmentStatus = AssignmentStatus.ACTIVE
    created_by: int | None = None
    created_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AssignmentStatus.ACTIVE

    def covers(self, section: SectionId) -> bool:
        return section in self.sections


def _empty_sections() -> dict[SectionId, SectionSlot]:
    return {section: SectionSlot() for section in SECTION_ORDER}


class Evaluation(BaseModel):
    """One procurement evaluation report and its review workflow state."""

    id: int | None = None
    eval_number: str
    rfq_number: str
    rfq_title: str
    description: str | None = None
    due_date: datetime | None = None
    status: EvaluationStatus = EvaluationStatus.PENDING
    created_by: int
    sections: dict[SectionId, SectionSlot] = Field(default_factory=_empty_sections)
    assignments: list[Assignment] = Field(default_factory=list)
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    _notifications: list[Notification] = PrivateAttr(default_factory=list)

    def model_post_init(self, __context: Any) -> None:
        for section in SECTION_ORDER:
            self.sections.setdefault(section, SectionSlot())

    # -- sections -----------------------------------------------------------

    def slot(self, section: SectionId) -> SectionSlot:
        return self.sections[section]

    def record(self, section: SectionId) -> SectionRecord:
        return self.sections[section].record

    def section_status(self, section: SectionId) -> SectionStatus:
        return self.sections[section].record.status

    def is_unlocked(self, section: SectionId) -> bool:
        """A section may start once its predecessor is VERIFIED; A is always open."""
        previous = section.predecessor()
        if previous is None:
            return True
        return self.section_status(previous) == SectionStatus.VERIFIED

    def apply(
        self,
        section: SectionId,
        event: SectionEvent,
        actor_id: int,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> SectionRecord:
        """Run one state-machine transition on a section and stamp audit fields.

        Does not recompute the evaluation status; callers batch that.
        """
        now = now or utcnow()
        record = self.record(section)
        if event in (SectionEvent.RETURN, SectionEvent.SEND_BACK):
            if not notes or not notes.strip():
                raise ValidationError(
                    "Notes are required when returning a section",
                    section=section.value,
                )
        target = next_status(record.status, event)

        record.status = target
        record.updated_at = now
        if event == SectionEvent.SUBMIT:
            record.submitted_at = now
        elif event == SectionEvent.VERIFY:
            record.verifier_id = actor_id
            record.verified_at = now
            record.notes = notes.strip() if notes and notes.strip() else None
        elif event in (SectionEvent.RETURN, SectionEvent.SEND_BACK):
            record.verifier_id = actor_id
            record.verified_at = now
            record.notes = notes.strip()
            self._queue(
                NotificationKind.SECTION_RETURNED,
                section=section.value,
                recipients=self._section_owners(section),
                message=record.notes,
            )
        self.updated_at = now
        return record

    def _section_owners(self, section: SectionId) -> list[int]:
        owners = [a.user_id for a in self.active_assignments() if a.covers(section)]
        author = self.slot(section).author_id
        if author is not None and author not in owners:
            owners.append(author)
        if not owners:
            owners.append(self.created_by)
        return owners

    # -- derived status -----------------------------------------------------

    def recompute_status(self) -> EvaluationStatus:
        """Derive the evaluation status from its five section statuses."""
        if self.status in FINAL_STATUSES:
            return self.status

        statuses = [self.section_status(section) for section in SECTION_ORDER]
        if all(s == SectionStatus.VERIFIED for s in statuses):
            derived = EvaluationStatus.COMPLETED
        elif any(s == SectionStatus.SUBMITTED for s in statuses):
            derived = EvaluationStatus.COMMITTEE_REVIEW
        elif all(s == SectionStatus.NOT_STARTED for s in statuses):
            derived = EvaluationStatus.PENDING
        else:
            # Drafting or returned work, or verified sections awaiting successors.
            derived = EvaluationStatus.IN_PROGRESS

        if derived == EvaluationStatus.COMPLETED and self.status != EvaluationStatus.COMPLETED:
            self._queue(
                NotificationKind.EVALUATION_COMPLETED,
                recipients=[self.created_by],
                message="All sections verified; evaluation validated by committee",
            )
        self.status = derived
        return derived

    def summary(self) -> dict[str, int]:
        """Count sections per status."""
        counts = {status.value: 0 for status in SectionStatus}
        for section in SECTION_ORDER:
            counts[self.section_status(section).value] += 1
        return counts

    # -- assignments --------------------------------------------------------

    def active_assignments(self) -> list[Assignment]:
        return [a for a in self.assignments if a.is_active]

    def assignment_for(self, user_id: int) -> Assignment | None:
        """The user's active assignment on this evaluation, if any."""
        for assignment in self.assignments:
            if assignment.user_id == user_id and assignment.is_active:
                return assignment
        return None

    def assignment_by_id(self, assignment_id: str) -> Assignment:
        for assignment in self.assignments:
            if assignment.id == assignment_id:
                return assignment
        raise NotFound(f"Assignment {assignment_id} not found")

    def add_assignment(self, assignment: Assignment) -> Assignment:
        assignment.evaluation_id = self.id
        assignment.sections = sorted(set(assignment.sections), key=SECTION_ORDER.index)
        self.assignments.append(assignment)
        return assignment

    def remove_assignment(self, assignment_id: str) -> Assignment:
        assignment = self.assignment_by_id(assignment_id)
        self.assignments.remove(assignment)
        return assignment

    def complete_assignment(self, assignment: Assignment, now: datetime | None = None) -> None:
        assignment.status = AssignmentStatus.COMPLETED
        assignment.completed_at = now or utcnow()
        self._queue(
            NotificationKind.ASSIGNMENT_COMPLETED,
            assignment_id=assignment.id,
            recipients=[self.created_by],
            message=f"User {assignment.user_id} completed sections "
            + ", ".join(s.value for s in assignment.sections),
        )

    # -- notifications ------------------------------------------------------

    def _queue(self, kind: NotificationKind, **fields: Any) -> None:
        self._notifications.append(
            Notification(
                kind=kind,
                evaluation_id=self.id,
                eval_number=self.eval_number,
                **fields,
            )
        )

    def pull_notifications(self) -> list[Notification]:
        """Drain the notifications queued since the last call."""
        pending, self._notifications = self._notifications, []
        return pending
