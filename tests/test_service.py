"""Tests for the workflow service: persistence, retries and notification dispatch."""

import asyncio
import logging

import pytest

from evalflow.engine.aggregate import EvaluationStatus
from evalflow.engine.errors import ConflictError, NotFound, Unauthorized
from evalflow.engine.sections import SectionId, SectionStatus
from evalflow.services.workflow import WorkflowService


def test_operations_return_updated_aggregate(service, store, make_evaluation, officer, committee):
    """Test each mutation returns the committed evaluation."""
    store.put(make_evaluation(id=7))

    async def scenario():
        evaluation = await service.save_section(officer, 7, SectionId.A, {"fundedBy": "GOJ"})
        assert evaluation.section_status(SectionId.A) == SectionStatus.IN_PROGRESS
        assert evaluation.version == 1

        evaluation = await service.submit_section(officer, 7, SectionId.A)
        evaluation = await service.verify_section(committee, 7, SectionId.A, "ok")
        assert evaluation.section_status(SectionId.A) == SectionStatus.VERIFIED
        assert evaluation.version == 3

        stored = await service.get_evaluation(7)
        assert stored.record(SectionId.A).verifier_id == committee.user_id

    asyncio.run(scenario())


def test_create_evaluation(service, officer, committee):
    """Test creation is open to drafting staff only."""

    async def scenario():
        evaluation = await service.create_evaluation(officer, "EVAL-9", "RFQ-9", "Printers")
        assert evaluation.id is not None
        assert evaluation.created_by == officer.user_id
        assert evaluation.status == EvaluationStatus.PENDING
        with pytest.raises(Unauthorized):
            await service.create_evaluation(committee, "EVAL-10", "RFQ-10", "Toner")

    asyncio.run(scenario())


def test_unknown_evaluation(service, officer):
    """Test operations on a missing evaluation raise NotFound."""
    with pytest.raises(NotFound):
        asyncio.run(service.save_section(officer, 404, SectionId.A, {}))


def test_conflict_is_retried_once(service, store, make_evaluation, committee):
    """Test a single version conflict is absorbed by re-reading."""
    store.put(make_evaluation({"A": "SUBMITTED"}, id=1))
    store.pending_conflicts = 1

    evaluation = asyncio.run(service.verify_section(committee, 1, SectionId.A))
    assert evaluation.section_status(SectionId.A) == SectionStatus.VERIFIED
    assert store.saves == 1


def test_repeated_conflict_surfaces(service, store, make_evaluation, committee, notifier):
    """Test the conflict is reported once retries are exhausted."""
    store.put(make_evaluation({"A": "SUBMITTED"}, id=1))
    store.pending_conflicts = 2

    with pytest.raises(ConflictError):
        asyncio.run(service.return_section(committee, 1, SectionId.A, "Fix totals"))
    assert store.rows[1]["sections"]["A"]["record"]["status"] == "SUBMITTED"
    assert notifier.sent == []


def test_notifications_follow_commit(service, store, make_evaluation, committee, notifier):
    """Test completion is signalled once the last section is verified."""
    store.put(
        make_evaluation(
            {"A": "VERIFIED", "B": "VERIFIED", "C": "VERIFIED", "D": "VERIFIED", "E": "SUBMITTED"},
            id=3,
        )
    )
    evaluation = asyncio.run(service.verify_section(committee, 3, SectionId.E))
    assert evaluation.status == EvaluationStatus.COMPLETED
    assert notifier.kinds() == ["EVALUATION_COMPLETED"]
    assert notifier.sent[0].evaluation_id == 3


def test_failed_operation_sends_nothing(service, store, make_evaluation, officer, notifier):
    """Test rejected operations neither persist nor notify."""
    store.put(make_evaluation({"A": "SUBMITTED"}, id=1))
    with pytest.raises(Unauthorized):
        asyncio.run(service.return_section(officer, 1, SectionId.A, "nope"))
    assert store.saves == 0
    assert notifier.sent == []


def test_notifier_failure_does_not_fail_request(
    store, broken_notifier, make_evaluation, committee, caplog
):
    """Test a broken notifier is logged and the transition still stands."""
    service = WorkflowService(store, broken_notifier, retry_limit=1)
    store.put(make_evaluation({"A": "SUBMITTED"}, id=1))

    with caplog.at_level(logging.ERROR):
        evaluation = asyncio.run(service.return_section(committee, 1, SectionId.A, "Redo"))
    assert evaluation.section_status(SectionId.A) == SectionStatus.RETURNED
    assert store.rows[1]["sections"]["A"]["record"]["status"] == "RETURNED"
    assert "Failed to send SECTION_RETURNED notification" in caplog.text


def test_concurrent_operations_are_serialized(service, store, make_evaluation, committee):
    """Test parallel verifications on one evaluation both land without conflicts."""
    store.put(make_evaluation({"A": "SUBMITTED", "B": "SUBMITTED"}, id=1))

    async def scenario():
        await asyncio.gather(
            service.verify_section(committee, 1, SectionId.A),
            service.verify_section(committee, 1, SectionId.B),
        )
        return await service.get_evaluation(1)

    evaluation = asyncio.run(scenario())
    assert evaluation.section_status(SectionId.A) == SectionStatus.VERIFIED
    assert evaluation.section_status(SectionId.B) == SectionStatus.VERIFIED
    assert evaluation.version == 2
    assert store.saves == 2


def test_bulk_operations(service, store, make_evaluation, committee):
    """Test bulk verify returns both the aggregate and the outcome."""
    store.put(make_evaluation({"A": "VERIFIED", "B": "SUBMITTED", "C": "SUBMITTED"}, id=1))

    evaluation, outcome = asyncio.run(service.verify_all(committee, 1))
    assert outcome.succeeded == [SectionId.B, SectionId.C]
    assert evaluation.status == EvaluationStatus.IN_PROGRESS

    evaluation, outcome = asyncio.run(service.return_all(committee, 1, "Start over"))
    assert outcome.succeeded == []
    assert evaluation.section_status(SectionId.C) == SectionStatus.VERIFIED


def test_assignment_lifecycle(service, store, make_evaluation, officer, evaluator_1, notifier):
    """Test assign, list, complete and remove through the service."""
    store.put(make_evaluation(id=1))

    async def scenario():
        evaluation = await service.assign_evaluators(
            officer, 1, [evaluator_1.user_id], [SectionId.A]
        )
        [assignment] = evaluation.assignments
        mine = await service.my_assignments(evaluator_1)
        assert [a.id for a in mine] == [assignment.id]

        evaluation = await service.remove_assignment(officer, assignment.id)
        assert evaluation.assignments == []
        with pytest.raises(NotFound):
            await service.remove_assignment(officer, assignment.id)

        await service.assign_evaluators(officer, 1, [evaluator_1.user_id], [SectionId.B])
        evaluation = await service.complete_assignment(evaluator_1, 1)
        assert not evaluation.assignments[0].is_active

    asyncio.run(scenario())
    assert notifier.kinds() == ["ASSIGNMENT_COMPLETED"]


def test_structure_grant_is_consumed(
    service, store, make_evaluation, officer, evaluator_1, evaluator_2
):
    """Test a grant issued through the service allows exactly one save."""
    store.put(make_evaluation(id=1))

    async def scenario():
        await service.assign_evaluators(officer, 1, [evaluator_2.user_id], [SectionId.A])
        await service.grant_structure_edit(officer, 1, SectionId.A, evaluator_1.user_id)
        caps = await service.capabilities(evaluator_1, 1)
        assert caps[SectionId.A].can_edit and caps[SectionId.A].structure_only

        await service.save_section(
            evaluator_1, 1, SectionId.A, {"columns": ["item"]}, structure=True
        )
        caps = await service.capabilities(evaluator_1, 1)
        assert not caps[SectionId.A].can_edit
        with pytest.raises(Unauthorized):
            await service.save_section(evaluator_1, 1, SectionId.A, {"columns": []}, structure=True)

    asyncio.run(scenario())


def test_committee_queue_requires_committee(service, store, make_evaluation, officer, committee):
    """Test the review queue is committee-only."""
    store.put(make_evaluation({"A": "SUBMITTED"}, id=1))

    queue = asyncio.run(service.committee_queue(committee, SectionStatus.SUBMITTED))
    assert [t.section for t in queue.tasks] == [SectionId.A]
    with pytest.raises(Unauthorized):
        asyncio.run(service.committee_queue(officer))


def test_update_evaluation_persists(service, store, make_evaluation, officer, evaluator_1):
    """Test metadata updates are committed and refused for non-owners."""
    store.put(make_evaluation(id=1))

    async def scenario():
        evaluation = await service.update_evaluation(officer, 1, {"rfq_title": "Scanners"})
        assert evaluation.version == 1
        with pytest.raises(Unauthorized):
            await service.update_evaluation(evaluator_1, 1, {"rfq_title": "Mine"})

    asyncio.run(scenario())
    assert store.rows[1]["rfq_title"] == "Scanners"
    assert store.saves == 1


def test_delete_evaluation(service, store, make_evaluation, officer, evaluator_1, evaluator_2):
    """Test deletion removes the evaluation with its assignments and grants."""
    store.put(make_evaluation(id=1))

    async def scenario():
        await service.assign_evaluators(officer, 1, [evaluator_2.user_id], [SectionId.A])
        await service.grant_structure_edit(officer, 1, SectionId.A, evaluator_1.user_id)
        with pytest.raises(Unauthorized):
            await service.delete_evaluation(evaluator_2, 1)

        await service.delete_evaluation(officer, 1)
        with pytest.raises(NotFound):
            await service.get_evaluation(1)
        with pytest.raises(NotFound):
            await service.delete_evaluation(officer, 1)
        assert await service.my_assignments(evaluator_2) == []

    asyncio.run(scenario())
    assert 1 not in store.rows
    assert service._grants == {}


def test_locks_are_released(service, store, make_evaluation, officer, committee):
    """Test per-evaluation locks do not outlive the operations using them."""
    store.put(make_evaluation({"A": "SUBMITTED", "B": "SUBMITTED"}, id=1))
    store.put(make_evaluation(id=2))

    async def scenario():
        await asyncio.gather(
            service.verify_section(committee, 1, SectionId.A),
            service.verify_section(committee, 1, SectionId.B),
            service.save_section(officer, 2, SectionId.A, {"fundedBy": "GOJ"}),
        )
        with pytest.raises(Unauthorized):
            await service.verify_section(officer, 2, SectionId.A)
        with pytest.raises(NotFound):
            await service.save_section(officer, 404, SectionId.A, {})

    asyncio.run(scenario())
    assert service._locks == {}
    assert service._lock_users == {}


def test_grants_dropped_when_evaluation_completes(
    service, store, make_evaluation, officer, committee, evaluator_1
):
    """Test unused structure grants are discarded once the evaluation is completed."""
    store.put(
        make_evaluation(
            {"A": "VERIFIED", "B": "VERIFIED", "C": "VERIFIED", "D": "VERIFIED", "E": "SUBMITTED"},
            id=1,
        )
    )
    store.put(make_evaluation(id=2))

    async def scenario():
        await service.grant_structure_edit(officer, 1, SectionId.E, evaluator_1.user_id)
        await service.grant_structure_edit(officer, 2, SectionId.A, evaluator_1.user_id)
        evaluation = await service.verify_section(committee, 1, SectionId.E)
        assert evaluation.status == EvaluationStatus.COMPLETED

    asyncio.run(scenario())
    assert list(service._grants) == [(2, evaluator_1.user_id, SectionId.A)]
