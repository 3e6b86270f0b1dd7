"""Shared fixtures: callers, evaluation factory, in-memory store and notifiers."""

import asyncio
import itertools

import pytest

from evalflow.engine.aggregate import Evaluation
from evalflow.engine.errors import ConflictError
from evalflow.engine.permissions import Caller
from evalflow.engine.sections import SectionId, SectionStatus
from evalflow.notifications import Notification
from evalflow.services.workflow import WorkflowService

OFFICER_ID = 1
EVALUATOR_1_ID = 2
EVALUATOR_2_ID = 3
MANAGER_ID = 5
COMMITTEE_ID = 9


@pytest.fixture
def officer():
    """Drafting owner of every evaluation built by make_evaluation."""
    return Caller.from_roles(OFFICER_ID, ["PROCUREMENT_OFFICER"], name="Olivia")


@pytest.fixture
def evaluator_1():
    return Caller.from_roles(EVALUATOR_1_ID, ["Procurement Officer"], name="Evan")


@pytest.fixture
def evaluator_2():
    return Caller.from_roles(EVALUATOR_2_ID, ["PROCUREMENT_OFFICER"], name="Eve")


@pytest.fixture
def manager():
    return Caller.from_roles(MANAGER_ID, ["PROCUREMENT_MANAGER"], name="Marcus")


@pytest.fixture
def committee():
    return Caller.from_roles(COMMITTEE_ID, ["EVALUATION_COMMITTEE"], name="Cora")


@pytest.fixture
def make_evaluation():
    """Build an evaluation with the given section statuses.

    Sections that are past NOT_STARTED get a small payload so they can be
    submitted.
    """
    counter = itertools.count(1)

    def _make(statuses: dict[str, str] | None = None, **fields) -> Evaluation:
        number = next(counter)
        evaluation = Evaluation(
            id=fields.pop("id", number),
            eval_number=fields.pop("eval_number", f"EVAL-{number:03d}"),
            rfq_number=fields.pop("rfq_number", f"RFQ/{number:03d}"),
            rfq_title=fields.pop("rfq_title", "Laptops"),
            created_by=fields.pop("created_by", OFFICER_ID),
            **fields,
        )
        for section, status in (statuses or {}).items():
            slot = evaluation.slot(SectionId(section))
            slot.record.status = SectionStatus(status)
            if slot.record.status != SectionStatus.NOT_STARTED:
                slot.payload = {"summary": f"section {section}"}
        evaluation.recompute_status()
        evaluation.pull_notifications()
        return evaluation

    return _make


class MemoryStore:
    """EvaluationStore keeping JSON snapshots, with injectable version conflicts."""

    def __init__(self):
        self.rows: dict[int, dict] = {}
        self.pending_conflicts = 0
        self.saves = 0
        self._ids = itertools.count(1)

    def put(self, evaluation: Evaluation) -> Evaluation:
        if evaluation.id is None:
            evaluation.id = next(self._ids)
        for assignment in evaluation.assignments:
            assignment.evaluation_id = evaluation.id
        self.rows[evaluation.id] = evaluation.model_dump(mode="json")
        return evaluation

    async def load(self, evaluation_id):
        await asyncio.sleep(0)
        data = self.rows.get(evaluation_id)
        return Evaluation.model_validate(data) if data else None

    async def save(self, evaluation):
        await asyncio.sleep(0)
        stored = self.rows[evaluation.id]
        if self.pending_conflicts:
            # Another writer commits first.
            self.pending_conflicts -= 1
            stored["version"] += 1
        if stored["version"] != evaluation.version:
            raise ConflictError(f"Evaluation {evaluation.id} was modified concurrently")
        evaluation.version += 1
        self.saves += 1
        self.rows[evaluation.id] = evaluation.model_dump(mode="json")
        return evaluation

    async def create(self, evaluation):
        return self.put(evaluation)

    async def delete(self, evaluation_id):
        await asyncio.sleep(0)
        return self.rows.pop(evaluation_id, None) is not None

    async def evaluation_id_for_assignment(self, assignment_id):
        for evaluation_id, data in self.rows.items():
            if any(a["id"] == assignment_id for a in data["assignments"]):
                return evaluation_id
        return None

    async def list_evaluations(self, status=None, search=None):
        evaluations = [Evaluation.model_validate(data) for data in self.rows.values()]
        if status:
            evaluations = [ev for ev in evaluations if ev.status.value == status]
        if search:
            evaluations = [ev for ev in evaluations if search.lower() in ev.rfq_title.lower()]
        return evaluations

    async def list_assignments_for_user(self, user_id):
        evaluations = [Evaluation.model_validate(data) for data in self.rows.values()]
        return [a for ev in evaluations for a in ev.assignments if a.user_id == user_id]


class RecordingNotifier:
    def __init__(self):
        self.sent: list[Notification] = []

    async def send(self, notification):
        self.sent.append(notification)

    def kinds(self) -> list[str]:
        return [n.kind.value for n in self.sent]


class BrokenNotifier:
    async def send(self, notification):
        raise RuntimeError("mail server down")


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(store, notifier):
    return WorkflowService(store, notifier, retry_limit=1)


@pytest.fixture
def broken_notifier():
    return BrokenNotifier()
