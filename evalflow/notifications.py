"""Notification signals emitted by the workflow.

Delivery belongs to an external messaging collaborator; the service only
hands each signal to a ``Notifier`` after the evaluation is committed.
"""

import logging
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    EVALUATION_COMPLETED = "EVALUATION_COMPLETED"
    ASSIGNMENT_COMPLETED = "ASSIGNMENT_COMPLETED"
    SECTION_RETURNED = "SECTION_RETURNED"


class Notification(BaseModel):
    """Fire-and-forget signal for the messaging collaborator."""

    kind: NotificationKind
    evaluation_id: int | None = None
    eval_number: str | None = None
    section: str | None = None
    assignment_id: str | None = None
    recipients: list[int] = Field(default_factory=list)
    message: str = ""


class Notifier(Protocol):
    async def send(self, notification: Notification) -> None: ...


class LoggingNotifier:
    """Notifier that records signals in the application log."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification %s for evaluation %s (section=%s, recipients=%s): %s",
            notification.kind.value,
            notification.eval_number or notification.evaluation_id,
            notification.section,
            notification.recipients,
            notification.message,
        )


class NullNotifier:
    """Notifier used when notifications are disabled."""

    async def send(self, notification: Notification) -> None:
        return None
