"""Unit tests for the section state machine."""

import pytest

from evalflow.engine.errors import InvalidTransition, NotFound
from evalflow.engine.sections import (
    TRANSITIONS,
    SectionEvent,
    SectionId,
    SectionStatus,
    next_status,
    parse_section,
)


@pytest.mark.parametrize(
    "current,event,expected",
    [
        (SectionStatus.NOT_STARTED, SectionEvent.EDIT, SectionStatus.IN_PROGRESS),
        (SectionStatus.RETURNED, SectionEvent.EDIT, SectionStatus.IN_PROGRESS),
        (SectionStatus.IN_PROGRESS, SectionEvent.SUBMIT, SectionStatus.SUBMITTED),
        (SectionStatus.SUBMITTED, SectionEvent.VERIFY, SectionStatus.VERIFIED),
        (SectionStatus.SUBMITTED, SectionEvent.RETURN, SectionStatus.RETURNED),
        (SectionStatus.IN_PROGRESS, SectionEvent.SEND_BACK, SectionStatus.RETURNED),
    ],
)
def test_legal_transitions(current, event, expected):
    """Test the documented transitions."""
    assert next_status(current, event) == expected


def test_every_other_pair_is_rejected():
    """Test that pairs outside the table raise InvalidTransition."""
    rejected = 0
    for current in SectionStatus:
        for event in SectionEvent:
            if (current, event) in TRANSITIONS:
                continue
            with pytest.raises(InvalidTransition) as exc_info:
                next_status(current, event)
            assert exc_info.value.extra == {"status": current.value, "event": event.value}
            rejected += 1
    assert rejected == len(SectionStatus) * len(SectionEvent) - len(TRANSITIONS)


def test_verified_is_terminal():
    """Test no event leaves VERIFIED."""
    assert not [key for key in TRANSITIONS if key[0] == SectionStatus.VERIFIED]


def test_submit_from_not_started_rejected():
    """Test a section must be drafted before it is submitted."""
    with pytest.raises(InvalidTransition):
        next_status(SectionStatus.NOT_STARTED, SectionEvent.SUBMIT)


def test_predecessor_chain():
    """Test A has no predecessor and each later section depends on the previous one."""
    assert SectionId.A.predecessor() is None
    assert SectionId.B.predecessor() == SectionId.A
    assert SectionId.E.predecessor() == SectionId.D


def test_parse_section():
    """Test section identifiers are case-insensitive."""
    assert parse_section("c") == SectionId.C
    assert parse_section(" E ") == SectionId.E
    with pytest.raises(NotFound):
        parse_section("F")
