"""Webhook notifications for auto-setup results."""

from __future__ import annotations

import asyncio
import logging

import httpx

from .events import AutoSetupStatusChanged, EventBus
from .models import AutoSetupProgress, SessionStatus

logger = logging.getLogger(__name__)

_FINAL = (SessionStatus.SUCCESS, SessionStatus.FAILED, SessionStatus.STOPPED)


class Notifier:
    """Send webhook notifications when an auto-setup session ends."""

    def __init__(self, webhook_url: str = "", events: list[str] | None = None):
        self.webhook_url = webhook_url
        self.events = events or []
        self.client = httpx.AsyncClient()
        self._pending: set[asyncio.Task] = set()

    async def notify(
        self, event: str, status: SessionStatus, progress: AutoSetupProgress
    ) -> None:
        if not self.webhook_url or event not in self.events:
            return

        payload = {
            "event": event,
            "status": status.value,
            "completed": progress.completed,
            "total": progress.total,
        }

        try:
            await self.client.post(self.webhook_url, json=payload, timeout=10)
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s failed: %s", event, exc)

    def watch(self, bus: EventBus, orchestrator) -> None:
        """Notify on every final session status the orchestrator reaches."""

        def _on_status(event: AutoSetupStatusChanged) -> None:
            if event.status not in _FINAL:
                return
            task = asyncio.get_running_loop().create_task(
                self.notify(f"autosetup.{event.status.value}", event.status, orchestrator.progress)
            )
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        bus.subscribe(AutoSetupStatusChanged, _on_status)

    async def close(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.client.aclose()
