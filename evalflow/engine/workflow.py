"""Workflow operations on a loaded evaluation.

Each operation resolves the caller's capabilities first, then mutates the
aggregate in place through its state machine. Persistence, locking and
notification dispatch are the service's job.
"""

from datetime import datetime
from typing import Any, Iterable

from pydantic import BaseModel, Field

from evalflow.engine.aggregate import FINAL_STATUSES, Assignment, Evaluation, utcnow
from evalflow.engine.errors import (
    AssignmentConflict,
    InvalidTransition,
    NotFound,
    Unauthorized,
    ValidationError,
)
from evalflow.engine.permissions import (
    Caller,
    Capability,
    StructureEditGrant,
    find_overlaps,
    is_drafting_owner,
    require,
    section_capabilities,
)
from evalflow.engine.sections import (
    EDITABLE_STATUSES,
    MULTI_ENTRY_SECTIONS,
    RETURNABLE_STATUSES,
    SECTION_ORDER,
    SUBMITTABLE_STATUSES,
    SectionEvent,
    SectionId,
    SectionStatus,
)


class SkippedSection(BaseModel):
    section: SectionId
    reason: str


class BulkOutcome(BaseModel):
    """Result of a committee bulk transition."""

    succeeded: list[SectionId] = Field(default_factory=list)
    skipped: list[SkippedSection] = Field(default_factory=list)


class ReviewTask(BaseModel):
    evaluation_id: int | None
    eval_number: str
    rfq_title: str
    section: SectionId
    status: SectionStatus
    verified_at: datetime | None = None
    notes: str | None = None


class CommitteeQueue(BaseModel):
    tasks: list[ReviewTask] = Field(default_factory=list)
    counts: dict[str, int] = Field(default_factory=dict)


def _require_notes(notes: str | None, section: SectionId | None = None) -> str:
    if notes is None or not notes.strip():
        raise ValidationError(
            "Notes are required when returning a section",
            section=section.value if section is not None else None,
        )
    return notes.strip()


def _ensure_unlocked(evaluation: Evaluation, section: SectionId) -> None:
    if not evaluation.is_unlocked(section):
        previous = section.predecessor()
        raise InvalidTransition(
            f"Section {section.value} is locked until section {previous.value} is verified",
            section=section.value,
            status=evaluation.section_status(section).value,
        )


def _ordered(sections: Iterable[SectionId]) -> list[SectionId]:
    return sorted(set(sections), key=SECTION_ORDER.index)


def _has_payload(evaluation: Evaluation, section: SectionId) -> bool:
    payload = evaluation.slot(section).payload
    if not payload:
        return False
    if section in MULTI_ENTRY_SECTIONS:
        return any(entry for entry in payload.values())
    return True


def save_section(
    evaluation: Evaluation,
    caller: Caller,
    section: SectionId,
    payload: dict[str, Any],
    grant: StructureEditGrant | None = None,
    structure: bool = False,
    now: datetime | None = None,
) -> Evaluation:
    """Write a section payload, starting the section on its first write.

    Section C stores one entry per evaluator keyed by user id; a save only
    replaces the caller's own entry.

    ``structure`` marks a table-structure change; it is the only kind of save
    a structure edit grant allows.
    """
    now = now or utcnow()
    caps = section_capabilities(caller, evaluation, section, grant)
    require(caps.can_edit, "edit", section)
    if caps.structure_only and not structure:
        raise Unauthorized(
            f"Only table structure changes are permitted on section {section.value}",
            action="edit",
            section=section.value,
        )

    status = evaluation.section_status(section)
    if status not in EDITABLE_STATUSES:
        raise InvalidTransition(
            f"Section {section.value} is {status.value} and can no longer be edited",
            section=section.value,
            status=status.value,
        )
    if not isinstance(payload, dict):
        raise ValidationError("Section payload must be an object", section=section.value)

    if status == SectionStatus.NOT_STARTED:
        _ensure_unlocked(evaluation, section)
        evaluation.apply(section, SectionEvent.EDIT, caller.user_id, now=now)

    slot = evaluation.slot(section)
    if caps.own_entry_only:
        entries = dict(slot.payload or {})
        entries[str(caller.user_id)] = dict(payload)
        slot.payload = entries
    else:
        slot.payload = dict(payload)
    if slot.author_id is None:
        slot.author_id = caller.user_id
    slot.record.updated_at = now
    evaluation.updated_at = now

    if caps.structure_only:
        grant.consume()
    evaluation.recompute_status()
    return evaluation


def submit_section(
    evaluation: Evaluation,
    caller: Caller,
    section: SectionId,
    now: datetime | None = None,
) -> Evaluation:
    """Hand a drafted or returned section to the committee."""
    now = now or utcnow()
    caps = section_capabilities(caller, evaluation, section)
    require(caps.can_submit, "submit", section)
    _ensure_unlocked(evaluation, section)

    status = evaluation.section_status(section)
    if status not in SUBMITTABLE_STATUSES:
        raise InvalidTransition(
            f"Cannot submit section {section.value} while it is {status.value}",
            section=section.value,
            status=status.value,
        )
    if not _has_payload(evaluation, section):
        raise ValidationError(
            f"Section {section.value} has no content to submit", section=section.value
        )

    if status == SectionStatus.RETURNED:
        evaluation.apply(section, SectionEvent.EDIT, caller.user_id, now=now)
    evaluation.apply(section, SectionEvent.SUBMIT, caller.user_id, now=now)
    evaluation.recompute_status()
    return evaluation


def verify_section(
    evaluation: Evaluation,
    caller: Caller,
    section: SectionId,
    notes: str | None = None,
    now: datetime | None = None,
) -> Evaluation:
    """Approve a submitted section. Gating does not apply to the committee."""
    caps = section_capabilities(caller, evaluation, section)
    require(caps.can_verify, "verify", section)
    evaluation.apply(section, SectionEvent.VERIFY, caller.user_id, notes=notes, now=now)
    evaluation.recompute_status()
    return evaluation


def return_section(
    evaluation: Evaluation,
    caller: Caller,
    section: SectionId,
    notes: str | None,
    now: datetime | None = None,
) -> Evaluation:
    """Send a submitted section back to its authors with feedback."""
    notes = _require_notes(notes, section)
    caps = section_capabilities(caller, evaluation, section)
    require(caps.can_return, "return", section)
    evaluation.apply(section, SectionEvent.RETURN, caller.user_id, notes=notes, now=now)
    evaluation.recompute_status()
    return evaluation


def _bulk(
    evaluation: Evaluation,
    caller: Caller,
    event: SectionEvent,
    targets: list[SectionId],
    notes: str | None,
    now: datetime,
) -> BulkOutcome:
    outcome = BulkOutcome()
    for section in targets:
        try:
            evaluation.apply(section, event, caller.user_id, notes=notes, now=now)
        except InvalidTransition as exc:
            outcome.skipped.append(SkippedSection(section=section, reason=exc.message))
            continue
        outcome.succeeded.append(section)
    evaluation.recompute_status()
    return outcome


def verify_all(
    evaluation: Evaluation,
    caller: Caller,
    notes: str | None = None,
    sections: Iterable[SectionId] | None = None,
    now: datetime | None = None,
) -> BulkOutcome:
    """Verify every submitted section in A-E order.

    When the caller passes the target set it computed, sections that are no
    longer SUBMITTED are reported as skipped instead of failing the batch.
    """
    require(caller.has(Capability.COMMITTEE), "verify")
    if sections is None:
        targets = [
            s for s in SECTION_ORDER if evaluation.section_status(s) == SectionStatus.SUBMITTED
        ]
    else:
        targets = _ordered(sections)
    return _bulk(evaluation, caller, SectionEvent.VERIFY, targets, notes, now or utcnow())


def return_all(
    evaluation: Evaluation,
    caller: Caller,
    notes: str | None,
    sections: Iterable[SectionId] | None = None,
    now: datetime | None = None,
) -> BulkOutcome:
    """Return every started, unverified section in A-E order."""
    notes = _require_notes(notes)
    require(caller.has(Capability.COMMITTEE), "return")
    if sections is None:
        targets = [s for s in SECTION_ORDER if evaluation.section_status(s) in RETURNABLE_STATUSES]
    else:
        targets = _ordered(sections)
    return _bulk(evaluation, caller, SectionEvent.SEND_BACK, targets, notes, now or utcnow())


def assign_evaluators(
    evaluation: Evaluation,
    caller: Caller,
    user_ids: Iterable[int],
    sections: Iterable[SectionId],
) -> list[Assignment]:
    """Grant users edit rights over sections, merging into existing assignments."""
    require(is_drafting_owner(caller, evaluation), "assign evaluators")
    users = list(dict.fromkeys(user_ids))
    targets = _ordered(sections)
    if not users:
        raise ValidationError("At least one user is required")
    if not targets:
        raise ValidationError("At least one section is required")

    overlaps = find_overlaps(evaluation.assignments, users, targets)
    if overlaps:
        raise AssignmentConflict(
            "Sections would be assigned to more than one user: "
            + ", ".join(s.value for s in overlaps),
            overlaps={s.value: holders for s, holders in overlaps.items()},
        )

    touched: list[Assignment] = []
    for user_id in users:
        existing = evaluation.assignment_for(user_id)
        if existing is not None:
            existing.sections = _ordered([*existing.sections, *targets])
            touched.append(existing)
        else:
            touched.append(
                evaluation.add_assignment(
                    Assignment(user_id=user_id, sections=targets, created_by=caller.user_id)
                )
            )
    evaluation.updated_at = utcnow()
    return touched


def remove_assignment(evaluation: Evaluation, caller: Caller, assignment_id: str) -> Assignment:
    """Hard-remove an assignment that has not been completed yet."""
    require(is_drafting_owner(caller, evaluation), "remove assignments")
    assignment = evaluation.assignment_by_id(assignment_id)
    if not assignment.is_active:
        raise InvalidTransition(
            "Completed assignments cannot be removed", assignment_id=assignment_id
        )
    evaluation.remove_assignment(assignment_id)
    evaluation.updated_at = utcnow()
    return assignment


def complete_assignment(
    evaluation: Evaluation, caller: Caller, now: datetime | None = None
) -> Assignment:
    """Mark the caller's own assignment finished; section statuses are untouched."""
    assignment = evaluation.assignment_for(caller.user_id)
    if assignment is None:
        raise NotFound(
            f"No active assignment for user {caller.user_id} on evaluation {evaluation.eval_number}"
        )
    evaluation.complete_assignment(assignment, now=now)
    evaluation.updated_at = now or utcnow()
    return assignment


def grant_structure_edit(
    evaluation: Evaluation,
    caller: Caller,
    section: SectionId,
    user_id: int | None = None,
) -> StructureEditGrant:
    """Issue a one-shot table-structure edit override for a section."""
    require(is_drafting_owner(caller, evaluation), "grant structure edits on", section)
    return StructureEditGrant(
        evaluation_id=evaluation.id,
        section=section,
        user_id=user_id if user_id is not None else caller.user_id,
        granted_by=caller.user_id,
    )


# Report metadata the drafting owner may change after creation.
METADATA_FIELDS = ("rfq_number", "rfq_title", "description", "due_date")


def _ensure_not_final(evaluation: Evaluation) -> None:
    if evaluation.status in FINAL_STATUSES:
        raise InvalidTransition(
            f"Evaluation {evaluation.eval_number} is {evaluation.status.value} "
            "and can no longer change",
            status=evaluation.status.value,
        )


def update_evaluation(
    evaluation: Evaluation,
    caller: Caller,
    changes: dict[str, Any],
    now: datetime | None = None,
) -> Evaluation:
    """Change report metadata. Status and sections only move through the workflow."""
    require(is_drafting_owner(caller, evaluation), "update")
    _ensure_not_final(evaluation)
    unknown = sorted(set(changes) - set(METADATA_FIELDS))
    if unknown:
        raise ValidationError(
            "Only report metadata can be updated: " + ", ".join(unknown), fields=unknown
        )
    for name in ("rfq_number", "rfq_title"):
        if name in changes and not (changes[name] or "").strip():
            raise ValidationError(f"{name} cannot be empty", field=name)
    for name, value in changes.items():
        setattr(evaluation, name, value)
    evaluation.updated_at = now or utcnow()
    return evaluation


def delete_evaluation(evaluation: Evaluation, caller: Caller) -> Evaluation:
    """Authorize removing an evaluation; the store deletes it with its assignments."""
    require(is_drafting_owner(caller, evaluation), "delete")
    _ensure_not_final(evaluation)
    return evaluation


def committee_queue(
    evaluations: Iterable[Evaluation], status: SectionStatus | None = None
) -> CommitteeQueue:
    """Flatten started sections of many evaluations into committee review tasks."""
    queue = CommitteeQueue(
        counts={
            SectionStatus.SUBMITTED.value: 0,
            SectionStatus.VERIFIED.value: 0,
            SectionStatus.RETURNED.value: 0,
        }
    )
    for evaluation in evaluations:
        for section in SECTION_ORDER:
            record = evaluation.record(section)
            if record.status == SectionStatus.NOT_STARTED:
                continue
            if record.status.value in queue.counts:
                queue.counts[record.status.value] += 1
            if status is not None and record.status != status:
                continue
            queue.tasks.append(
                ReviewTask(
                    evaluation_id=evaluation.id,
                    eval_number=evaluation.eval_number,
                    rfq_title=evaluation.rfq_title,
                    section=section,
                    status=record.status,
                    verified_at=record.verified_at,
                    notes=record.notes,
                )
            )
    return queue
