"""Workflow operations service.

Runs each mutating operation against a fresh snapshot of one evaluation,
commits the whole aggregate, then dispatches notifications:

    service = WorkflowService(SqlEvaluationStore(), LoggingNotifier())
    evaluation = await service.save_section(caller, 12, SectionId.A, {...})
    evaluation = await service.submit_section(caller, 12, SectionId.A)
    evaluation, outcome = await service.verify_all(committee, 12)

Operations on the same evaluation are serialized by a per-evaluation lock in
this process and by the stored version across processes. A version conflict
is retried by re-reading and reapplying the operation.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Iterable, TypeVar

from evalflow.config import settings
from evalflow.engine import workflow
from evalflow.engine.aggregate import FINAL_STATUSES, Assignment, Evaluation, EvaluationStatus
from evalflow.engine.errors import ConflictError, NotFound, Unauthorized
from evalflow.engine.permissions import (
    Caller,
    Capability,
    SectionCapabilities,
    StructureEditGrant,
    resolve,
)
from evalflow.engine.sections import SectionId, SectionStatus
from evalflow.notifications import Notification, Notifier
from evalflow.storage.store import EvaluationStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# No section can be saved again once an evaluation reaches these.
CLOSED_STATUSES = FINAL_STATUSES | {EvaluationStatus.COMPLETED}


class WorkflowService:
    """Entry point for every evaluation workflow operation."""

    def __init__(
        self,
        store: EvaluationStore,
        notifier: Notifier,
        retry_limit: int | None = None,
    ):
        self._store = store
        self._notifier = notifier
        self._retry_limit = settings.commit_retry_limit if retry_limit is None else retry_limit
        self._locks: dict[int, asyncio.Lock] = {}
        # Tasks holding or waiting for each lock; the lock is dropped at zero.
        self._lock_users: dict[int, int] = {}
        # Structure-edit grants are session state, never persisted.
        self._grants: dict[tuple[int, int, SectionId], StructureEditGrant] = {}

    # -- plumbing -----------------------------------------------------------

    @asynccontextmanager
    async def _evaluation_lock(self, evaluation_id: int) -> AsyncIterator[None]:
        lock = self._locks.get(evaluation_id)
        if lock is None:
            lock = self._locks[evaluation_id] = asyncio.Lock()
        self._lock_users[evaluation_id] = self._lock_users.get(evaluation_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[evaluation_id] -= 1
            if not self._lock_users[evaluation_id]:
                del self._lock_users[evaluation_id]
                del self._locks[evaluation_id]

    async def _load(self, evaluation_id: int) -> Evaluation:
        evaluation = await self._store.load(evaluation_id)
        if evaluation is None:
            raise NotFound(f"Evaluation {evaluation_id} not found", evaluation_id=evaluation_id)
        return evaluation

    async def _mutate(
        self,
        evaluation_id: int,
        operation: str,
        apply: Callable[[Evaluation], T],
    ) -> tuple[Evaluation, T]:
        """Load, apply, commit; on a version conflict re-read and reapply."""
        async with self._evaluation_lock(evaluation_id):
            attempt = 0
            while True:
                evaluation = await self._load(evaluation_id)
                result = apply(evaluation)
                try:
                    await self._store.save(evaluation)
                except ConflictError:
                    if attempt >= self._retry_limit:
                        logger.warning(
                            "Giving up %s on evaluation %s after %d conflicts",
                            operation,
                            evaluation_id,
                            attempt + 1,
                        )
                        raise
                    attempt += 1
                    logger.warning(
                        "Version conflict during %s on evaluation %s, retrying",
                        operation,
                        evaluation_id,
                    )
                    continue
                break
        logger.info(
            "%s committed on evaluation %s (status=%s, version=%s)",
            operation,
            evaluation.eval_number,
            evaluation.status.value,
            evaluation.version,
        )
        if evaluation.status in CLOSED_STATUSES:
            self._drop_grants(evaluation_id)
        await self._dispatch(evaluation.pull_notifications())
        return evaluation, result

    async def _dispatch(self, notifications: list[Notification]) -> None:
        for notification in notifications:
            try:
                await self._notifier.send(notification)
            except Exception:
                # The transition is already committed; delivery is best effort.
                logger.exception(
                    "Failed to send %s notification for evaluation %s",
                    notification.kind.value,
                    notification.evaluation_id,
                )

    def _take_grant(
        self, caller: Caller, evaluation_id: int, section: SectionId
    ) -> StructureEditGrant | None:
        return self._grants.get((evaluation_id, caller.user_id, section))

    def _clear_used_grant(self, grant: StructureEditGrant | None) -> None:
        if grant is not None and grant.used:
            self._grants.pop((grant.evaluation_id, grant.user_id, grant.section), None)

    def _drop_grants(self, evaluation_id: int) -> None:
        for key in [key for key in self._grants if key[0] == evaluation_id]:
            del self._grants[key]

    # -- queries ------------------------------------------------------------

    async def get_evaluation(self, evaluation_id: int) -> Evaluation:
        return await self._load(evaluation_id)

    async def list_evaluations(
        self, status: str | None = None, search: str | None = None
    ) -> list[Evaluation]:
        return await self._store.list_evaluations(status, search)

    async def capabilities(
        self, caller: Caller, evaluation_id: int
    ) -> dict[SectionId, SectionCapabilities]:
        evaluation = await self._load(evaluation_id)
        grants = {
            section: grant
            for (eid, uid, section), grant in self._grants.items()
            if eid == evaluation_id and uid == caller.user_id
        }
        return resolve(caller, evaluation, grants)

    async def list_assignments(self, evaluation_id: int) -> list[Assignment]:
        evaluation = await self._load(evaluation_id)
        return evaluation.assignments

    async def my_assignments(self, caller: Caller) -> list[Assignment]:
        return await self._store.list_assignments_for_user(caller.user_id)

    async def committee_queue(
        self, caller: Caller, status: SectionStatus | None = None
    ) -> workflow.CommitteeQueue:
        if not caller.has(Capability.COMMITTEE):
            raise Unauthorized("Committee access required", action="review")
        evaluations = await self._store.list_evaluations()
        return workflow.committee_queue(evaluations, status)

    # -- evaluation lifecycle -----------------------------------------------

    async def create_evaluation(
        self,
        caller: Caller,
        eval_number: str,
        rfq_number: str,
        rfq_title: str,
        description: str | None = None,
        due_date: datetime | None = None,
    ) -> Evaluation:
        if not caller.has(Capability.DRAFTING):
            raise Unauthorized("Drafting access required", action="create evaluations")
        evaluation = Evaluation(
            eval_number=eval_number,
            rfq_number=rfq_number,
            rfq_title=rfq_title,
            description=description,
            due_date=due_date,
            created_by=caller.user_id,
        )
        evaluation = await self._store.create(evaluation)
        logger.info("Evaluation %s created by user %s", eval_number, caller.user_id)
        return evaluation

    async def update_evaluation(
        self, caller: Caller, evaluation_id: int, changes: dict[str, Any]
    ) -> Evaluation:
        changes = dict(changes)
        evaluation, _ = await self._mutate(
            evaluation_id,
            "update evaluation",
            lambda ev: workflow.update_evaluation(ev, caller, changes),
        )
        return evaluation

    async def delete_evaluation(self, caller: Caller, evaluation_id: int) -> None:
        async with self._evaluation_lock(evaluation_id):
            evaluation = await self._load(evaluation_id)
            workflow.delete_evaluation(evaluation, caller)
            if not await self._store.delete(evaluation_id):
                raise NotFound(
                    f"Evaluation {evaluation_id} not found", evaluation_id=evaluation_id
                )
        self._drop_grants(evaluation_id)
        logger.info("Evaluation %s deleted by user %s", evaluation.eval_number, caller.user_id)

    # -- section operations -------------------------------------------------

    async def save_section(
        self,
        caller: Caller,
        evaluation_id: int,
        section: SectionId,
        payload: dict[str, Any],
        structure: bool = False,
    ) -> Evaluation:
        grant = self._take_grant(caller, evaluation_id, section)

        def apply(evaluation: Evaluation) -> None:
            if grant is not None:
                # a conflicted attempt may have consumed it
                grant.used = False
            workflow.save_section(
                evaluation, caller, section, payload, grant=grant, structure=structure
            )

        evaluation, _ = await self._mutate(evaluation_id, f"save section {section.value}", apply)
        self._clear_used_grant(grant)
        return evaluation

    async def submit_section(
        self, caller: Caller, evaluation_id: int, section: SectionId
    ) -> Evaluation:
        evaluation, _ = await self._mutate(
            evaluation_id,
            f"submit section {section.value}",
            lambda ev: workflow.submit_section(ev, caller, section),
        )
        return evaluation

    async def verify_section(
        self,
        caller: Caller,
        evaluation_id: int,
        section: SectionId,
        notes: str | None = None,
    ) -> Evaluation:
        evaluation, _ = await self._mutate(
            evaluation_id,
            f"verify section {section.value}",
            lambda ev: workflow.verify_section(ev, caller, section, notes),
        )
        return evaluation

    async def return_section(
        self,
        caller: Caller,
        evaluation_id: int,
        section: SectionId,
        notes: str | None,
    ) -> Evaluation:
        evaluation, _ = await self._mutate(
            evaluation_id,
            f"return section {section.value}",
            lambda ev: workflow.return_section(ev, caller, section, notes),
        )
        return evaluation

    async def verify_all(
        self,
        caller: Caller,
        evaluation_id: int,
        notes: str | None = None,
        sections: Iterable[SectionId] | None = None,
    ) -> tuple[Evaluation, workflow.BulkOutcome]:
        targets = list(sections) if sections is not None else None
        return await self._mutate(
            evaluation_id,
            "verify all sections",
            lambda ev: workflow.verify_all(ev, caller, notes, targets),
        )

    async def return_all(
        self,
        caller: Caller,
        evaluation_id: int,
        notes: str | None,
        sections: Iterable[SectionId] | None = None,
    ) -> tuple[Evaluation, workflow.BulkOutcome]:
        targets = list(sections) if sections is not None else None
        return await self._mutate(
            evaluation_id,
            "return all sections",
            lambda ev: workflow.return_all(ev, caller, notes, targets),
        )

    # -- assignments --------------------------------------------------------

    async def assign_evaluators(
        self,
        caller: Caller,
        evaluation_id: int,
        user_ids: Iterable[int],
        sections: Iterable[SectionId],
    ) -> Evaluation:
        users, targets = list(user_ids), list(sections)
        evaluation, _ = await self._mutate(
            evaluation_id,
            "assign evaluators",
            lambda ev: workflow.assign_evaluators(ev, caller, users, targets),
        )
        return evaluation

    async def remove_assignment(self, caller: Caller, assignment_id: str) -> Evaluation:
        evaluation_id = await self._store.evaluation_id_for_assignment(assignment_id)
        if evaluation_id is None:
            raise NotFound(f"Assignment {assignment_id} not found", assignment_id=assignment_id)
        evaluation, _ = await self._mutate(
            evaluation_id,
            "remove assignment",
            lambda ev: workflow.remove_assignment(ev, caller, assignment_id),
        )
        return evaluation

    async def complete_assignment(self, caller: Caller, evaluation_id: int) -> Evaluation:
        evaluation, _ = await self._mutate(
            evaluation_id,
            "complete assignment",
            lambda ev: workflow.complete_assignment(ev, caller),
        )
        return evaluation

    async def grant_structure_edit(
        self,
        caller: Caller,
        evaluation_id: int,
        section: SectionId,
        user_id: int | None = None,
    ) -> StructureEditGrant:
        evaluation = await self._load(evaluation_id)
        grant = workflow.grant_structure_edit(evaluation, caller, section, user_id)
        self._grants[(evaluation_id, grant.user_id, section)] = grant
        logger.info(
            "Structure edit on section %s of %s granted to user %s by %s",
            section.value,
            evaluation.eval_number,
            grant.user_id,
            caller.user_id,
        )
        return grant
