"""Shared router dependencies."""

from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from evalflow.config import settings
from evalflow.notifications import LoggingNotifier, NullNotifier
from evalflow.services.workflow import WorkflowService
from evalflow.storage.store import SqlEvaluationStore


@lru_cache
def get_workflow_service() -> WorkflowService:
    """Process-wide service; its per-evaluation locks must be shared by all requests."""
    notifier = LoggingNotifier() if settings.notifications_enabled else NullNotifier()
    return WorkflowService(SqlEvaluationStore(), notifier)


WorkflowServiceDep = Annotated[WorkflowService, Depends(get_workflow_service)]
