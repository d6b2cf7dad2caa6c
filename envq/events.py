"""Typed in-process event bus."""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from .models import (
    CommandStatus,
    Outcome,
    Progress,
    SessionStatus,
    VerificationStatus,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationProgress:
    progress: Progress


@dataclass(frozen=True)
class VerificationUpdated:
    verification_id: str
    result: VerificationStatus
    source: str


@dataclass(frozen=True)
class CommandCompleted:
    """Published by a CommandExecutor when a process ends."""

    instance_id: str
    outcome: Outcome
    exit_code: int | None


@dataclass(frozen=True)
class CommandStatusChanged:
    command_id: str
    status: CommandStatus


@dataclass(frozen=True)
class AutoSetupStatusChanged:
    status: SessionStatus


@dataclass(frozen=True)
class AutoSetupNotice:
    """A user-facing message."""

    message: str
    level: str = "info"  # "info" | "success" | "warning"


Handler = Callable[[Any], None]


class EventBus:
    """Synchronous publish/subscribe keyed by event class.

    Handlers run in subscription order on the publisher's call stack.
    """

    def __init__(self):
        self._handlers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, event_type: type, handler: Handler) -> Callable[[], None]:
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[event_type].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event: Any) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %r failed for %s", handler, type(event).__name__)
