"""Persistence boundary used by the workflow service."""

from typing import Protocol

from evalflow.database import session_scope
from evalflow.engine.aggregate import Assignment, Evaluation
from evalflow.storage import repositories


class EvaluationStore(Protocol):
    """Load/save of whole evaluation aggregates.

    ``save`` must be atomic per evaluation and raise ConflictError when the
    stored version differs from ``evaluation.version``.
    """

    async def load(self, evaluation_id: int) -> Evaluation | None: ...

    async def save(self, evaluation: Evaluation) -> Evaluation: ...

    async def create(self, evaluation: Evaluation) -> Evaluation: ...

    async def delete(self, evaluation_id: int) -> bool: ...

    async def evaluation_id_for_assignment(self, assignment_id: str) -> int | None: ...

    async def list_evaluations(
        self, status: str | None = None, search: str | None = None
    ) -> list[Evaluation]: ...

    async def list_assignments_for_user(self, user_id: int) -> list[Assignment]: ...


class SqlEvaluationStore:
    """EvaluationStore over SQLAlchemy async sessions, one transaction per call."""

    def __init__(self, session_factory=session_scope):
        self._session_scope = session_factory

    async def load(self, evaluation_id: int) -> Evaluation | None:
        async with self._session_scope() as db:
            return await repositories.load_evaluation(db, evaluation_id)

    async def save(self, evaluation: Evaluation) -> Evaluation:
        async with self._session_scope() as db:
            await repositories.save_evaluation(db, evaluation)
        evaluation.version += 1
        return evaluation

    async def create(self, evaluation: Evaluation) -> Evaluation:
        async with self._session_scope() as db:
            return await repositories.create_evaluation(db, evaluation)

    async def delete(self, evaluation_id: int) -> bool:
        async with self._session_scope() as db:
            return await repositories.delete_evaluation(db, evaluation_id)

    async def evaluation_id_for_assignment(self, assignment_id: str) -> int | None:
        async with self._session_scope() as db:
            return await repositories.get_evaluation_id_for_assignment(db, assignment_id)

    async def list_evaluations(
        self, status: str | None = None, search: str | None = None
    ) -> list[Evaluation]:
        async with self._session_scope() as db:
            return await repositories.list_evaluations(db, status, search)

    async def list_assignments_for_user(self, user_id: int) -> list[Assignment]:
        async with self._session_scope() as db:
            return await repositories.list_assignments_for_user(db, user_id)
