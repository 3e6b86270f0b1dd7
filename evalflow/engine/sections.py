"""Section lifecycle state machine.

Every status change of a section goes through ``next_status``; no other
module decides transitions.
"""

from enum import Enum

from evalflow.engine.errors import InvalidTransition, NotFound


class SectionId(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"

    def predecessor(self) -> "SectionId | None":
        """Section that must be VERIFIED before this one may start."""
        index = SECTION_ORDER.index(self)
        return SECTION_ORDER[index - 1] if index > 0 else None


SECTION_ORDER: tuple[SectionId, ...] = tuple(SectionId)

# Section C carries one sub-entry per evaluator instead of a single payload.
MULTI_ENTRY_SECTIONS = frozenset({SectionId.C})


class SectionStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    VERIFIED = "VERIFIED"
    RETURNED = "RETURNED"


class SectionEvent(str, Enum):
    EDIT = "edit"
    SUBMIT = "submit"
    VERIFY = "verify"
    RETURN = "return"
    # Committee bulk return; also pulls back sections still being drafted.
    SEND_BACK = "send_back"


TRANSITIONS: dict[tuple[SectionStatus, SectionEvent], SectionStatus] = {
    (SectionStatus.NOT_STARTED, SectionEvent.EDIT): SectionStatus.IN_PROGRESS,
    (SectionStatus.RETURNED, SectionEvent.EDIT): SectionStatus.IN_PROGRESS,
    (SectionStatus.IN_PROGRESS, SectionEvent.SUBMIT): SectionStatus.SUBMITTED,
    (SectionStatus.SUBMITTED, SectionEvent.VERIFY): SectionStatus.VERIFIED,
    (SectionStatus.SUBMITTED, SectionEvent.RETURN): SectionStatus.RETURNED,
    (SectionStatus.SUBMITTED, SectionEvent.SEND_BACK): SectionStatus.RETURNED,
    (SectionStatus.IN_PROGRESS, SectionEvent.SEND_BACK): SectionStatus.RETURNED,
    (SectionStatus.RETURNED, SectionEvent.SEND_BACK): SectionStatus.RETURNED,
}

# Statuses in which drafting staff may still write the payload.
EDITABLE_STATUSES = frozenset(
    {SectionStatus.NOT_STARTED, SectionStatus.IN_PROGRESS, SectionStatus.RETURNED}
)
SUBMITTABLE_STATUSES = frozenset({SectionStatus.IN_PROGRESS, SectionStatus.RETURNED})
RETURNABLE_STATUSES = frozenset(
    {SectionStatus.SUBMITTED, SectionStatus.IN_PROGRESS, SectionStatus.RETURNED}
)


def next_status(current: SectionStatus, event: SectionEvent) -> SectionStatus:
    """Return the status reached by applying event, or raise InvalidTransition."""
    target = TRANSITIONS.get((current, event))
    if target is None:
        raise InvalidTransition(
            f"Cannot {event.value} a section that is {current.value}",
            status=current.value,
            event=event.value,
        )
    return target


def parse_section(value: str) -> SectionId:
    """Parse a section identifier such as 'a' or 'B'."""
    try:
        return SectionId(str(value).strip().upper())
    except ValueError:
        raise NotFound(f"Unknown section: {value}") from None
