"""
Notifications — fire-and-forget channel for human-readable messages.

A broken sink never breaks cart or checkout logic: failures are logged
and dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class Level(Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class Notification:
    level: Level
    message: str
    data: dict[str, Any] = field(default_factory=dict)


class NotificationSink(Protocol):
    async def push(self, notification: Notification) -> None: ...


class NullSink:
    async def push(self, notification: Notification) -> None:
        return None


class MemorySink:
    """Collects notifications in order."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    async def push(self, notification: Notification) -> None:
        self.sent.append(notification)

    def messages(self, level: Level | None = None) -> list[str]:
        return [n.message for n in self.sent if level is None or n.level == level]


async def notify(
    sink: NotificationSink,
    level: Level,
    message: str,
    **data: Any,
) -> None:
    try:
        await sink.push(Notification(level, message, data))
    except Exception as e:
        logger.warning("notification_failed", message=message, error=repr(e))


__all__ = (
    "Level",
    "Notification",
    "NotificationSink",
    "NullSink",
    "MemorySink",
    "notify",
)
