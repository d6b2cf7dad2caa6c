"""Auto-setup orchestrator: run fix commands priority group by priority group.

All state lives on one event loop. Completion events, timers and user
actions mutate it only through synchronous methods, so no two mutations
interleave. Every terminal transition of a command instance goes through
``_finish``; whichever of completion, timeout, terminate or stop reaches
it first wins and later events for the same instance are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass

from .collector import calculate_group_status, can_group_start
from .events import (
    AutoSetupNotice,
    AutoSetupStatusChanged,
    CommandCompleted,
    CommandStatusChanged,
    EventBus,
)
from .executor import CommandExecutor
from .models import (
    AutoSetupProgress,
    CommandStatus,
    FixCommand,
    GroupStatus,
    Outcome,
    PriorityGroup,
    SessionStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_FIX_TIMEOUT = 60.0

_STARTABLE = (SessionStatus.IDLE, SessionStatus.STOPPED, SessionStatus.FAILED)

Rerun = Callable[[str], Awaitable[object]]


@dataclass
class ActiveCommand:
    command: FixCommand
    start_time: float

    @property
    def command_id(self) -> str:
        return self.command.id


@dataclass
class CommandTimeout:
    instance_id: str
    start_time: float
    duration: float
    handle: asyncio.TimerHandle


class AutoSetupOrchestrator:
    """Drives one auto-setup session.

    Groups run strictly in order: group N+1 is dispatched only once group N
    reaches ``success``. Commands inside a group are dispatched together.
    Successful commands trigger ``rerun(command_id)`` in the background.

    Manually started groups (``start_priority_group``) other than the one
    under the cursor do not auto-advance; once such a group stops running
    the session settles to ``success`` if every group succeeded, ``failed``
    if any group failed, and ``stopped`` otherwise. A cursor group that ends
    neither ``success`` nor ``failed`` (members terminated) settles the
    session to ``stopped``.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        bus: EventBus,
        rerun: Rerun | None = None,
        timeout_sec: float = DEFAULT_FIX_TIMEOUT,
    ):
        self.executor = executor
        self.bus = bus
        self.rerun = rerun
        self.timeout_sec = timeout_sec

        self.status = SessionStatus.IDLE
        self.groups: list[PriorityGroup] = []
        self.command_statuses: dict[str, CommandStatus] = {}
        self.active: dict[str, ActiveCommand] = {}  # instance id → command
        self.timeouts: dict[str, CommandTimeout] = {}  # command id → timer
        self.cursor = 0

        self._manual_group: int | None = None
        self._starting = False
        self._early: list[CommandCompleted] = []
        self._background: set[asyncio.Task] = set()
        self._settled = asyncio.Event()
        self._settled.set()

        bus.subscribe(CommandCompleted, self._on_command_completed)

    # ---------------------------------------------------------------
    # Queries
    # ---------------------------------------------------------------

    @property
    def progress(self) -> AutoSetupProgress:
        ids = [c.id for g in self.groups for c in g.commands]
        completed = sum(
            1 for cid in ids if self.command_statuses.get(cid) == CommandStatus.SUCCESS
        )
        total = len(ids)
        percentage = round(completed / total * 100) if total else 0
        return AutoSetupProgress(completed=completed, total=total, percentage=percentage)

    def group_statuses(self) -> list[GroupStatus]:
        return [calculate_group_status(g.commands, self.command_statuses) for g in self.groups]

    def can_start(self, index: int) -> bool:
        return can_group_start(self.groups, index, self.command_statuses)

    def remaining_time(self, command_id: str) -> float | None:
        """Seconds until the command's timeout fires, or None if not running."""
        entry = self.timeouts.get(command_id)
        if entry is None:
            return None
        now = asyncio.get_running_loop().time()
        return max(0.0, entry.start_time + entry.duration - now)

    def find_command(self, command_id: str) -> FixCommand | None:
        for group in self.groups:
            for command in group.commands:
                if command.id == command_id:
                    return command
        return None

    def instance_of(self, command_id: str) -> str | None:
        for instance_id, active in self.active.items():
            if active.command_id == command_id:
                return instance_id
        return None

    async def wait(self) -> SessionStatus:
        """Wait until the session is no longer running and re-verifications are done."""
        await self._settled.wait()
        if self._background:
            await asyncio.gather(*list(self._background))
        return self.status

    # ---------------------------------------------------------------
    # Session lifecycle
    # ---------------------------------------------------------------

    def prepare(self, groups: Sequence[PriorityGroup]) -> bool:
        """Load freshly collected groups; every command starts pending."""
        if self.status == SessionStatus.RUNNING:
            self._notice("Cannot prepare Auto Setup while it is running.", "warning")
            return False
        self._set_status(SessionStatus.PREPARING)
        self._abandon_all()
        self.groups = list(groups)
        self.command_statuses = {
            c.id: CommandStatus.PENDING for g in self.groups for c in g.commands
        }
        self.cursor = 0
        self._manual_group = None
        self._refresh_group_statuses()
        self._set_status(SessionStatus.IDLE)
        return True

    def close(self) -> None:
        if self.status == SessionStatus.RUNNING:
            self.stop()
        self._abandon_all()
        self.groups = []
        self.command_statuses = {}
        self.cursor = 0
        self._set_status(SessionStatus.IDLE)

    def start(self) -> bool:
        if self.status not in _STARTABLE:
            self._reject_start()
            return False
        if not self.groups:
            self._notice("No fix commands available to run.", "info")
            return False

        self._abandon_all()
        self.cursor = 0
        self._manual_group = None
        for cid in list(self.command_statuses):
            self._set_command_status(cid, CommandStatus.PENDING)
        self._set_status(SessionStatus.RUNNING)
        self._notice(f"Auto Setup started with {len(self.groups)} priority groups.", "info")
        self._dispatch_all(self.groups[0].commands)
        return True

    def stop(self) -> None:
        """Kill every active command and mark it stopped."""
        self._set_status(SessionStatus.STOPPED)
        self._manual_group = None
        for instance_id in list(self.active):
            if self._finish(instance_id, CommandStatus.STOPPED):
                self.executor.kill(instance_id)
        self.active.clear()
        self._notice("Auto Setup stopped by user.", "warning")

    def start_priority_group(self, group: PriorityGroup | int) -> bool:
        if self.status not in _STARTABLE:
            self._reject_start()
            return False
        index = self._group_index(group)
        if index is None:
            self._notice("Unknown priority group.", "warning")
            return False

        target = self.groups[index]
        for command in target.commands:
            instance_id = self.instance_of(command.id)
            if instance_id is not None:
                self._abandon(instance_id)
            self._set_command_status(command.id, CommandStatus.PENDING)

        self._manual_group = None if index == self.cursor else index
        self._set_status(SessionStatus.RUNNING)
        self._notice(f"Starting Priority {target.priority}...", "info")
        self._dispatch_all(target.commands)
        return True

    def retry_command(self, command: FixCommand | str) -> bool:
        if self.status == SessionStatus.RUNNING:
            self._notice("Cannot retry commands while Auto Setup is running.", "warning")
            return False
        resolved = self._command(command)
        if resolved is None:
            self._notice(f"Unknown command: {command}", "warning")
            return False
        if self.instance_of(resolved.id) is not None:
            self._notice(f'Command "{resolved.title}" is already running.', "warning")
            return False
        self._dispatch_all([resolved])
        return True

    def terminate_command(self, command: FixCommand | str) -> bool:
        resolved = self._command(command)
        command_id = resolved.id if resolved else str(command)
        instance_id = self.instance_of(command_id)
        if instance_id is None:
            logger.info("No active instance for command %s", command_id)
            return False
        self._finish(instance_id, CommandStatus.STOPPED)
        self.executor.kill(instance_id)
        title = resolved.title if resolved else command_id
        self._notice(f'Command "{title}" terminated by user.', "info")
        return True

    # ---------------------------------------------------------------
    # Dispatch and completion
    # ---------------------------------------------------------------

    def _dispatch_all(self, commands: Sequence[FixCommand]) -> None:
        """Start *commands* together, then apply any completion they raised inline."""
        nested = self._starting
        self._starting = True
        try:
            for command in commands:
                self._dispatch(command)
        finally:
            self._starting = nested
        if not nested:
            early, self._early = self._early, []
            for event in early:
                self._on_command_completed(event)

    def _dispatch(self, command: FixCommand) -> None:
        loop = asyncio.get_running_loop()
        self._set_command_status(command.id, CommandStatus.RUNNING)
        instance_id = self.executor.start(command.command, command.id)
        now = loop.time()
        self.active[instance_id] = ActiveCommand(command=command, start_time=now)
        previous = self.timeouts.pop(command.id, None)
        if previous is not None:
            previous.handle.cancel()
        self.timeouts[command.id] = CommandTimeout(
            instance_id=instance_id,
            start_time=now,
            duration=self.timeout_sec,
            handle=loop.call_later(self.timeout_sec, self._on_timeout, instance_id),
        )
        logger.info("Dispatched %s as %s", command.id, instance_id)

    def _on_command_completed(self, event: CommandCompleted) -> None:
        if event.instance_id not in self.active:
            if self._starting:
                self._early.append(event)
            else:
                logger.debug("Ignoring completion of inactive instance %s", event.instance_id)
            return
        if event.exit_code == 0:
            status = CommandStatus.SUCCESS
        elif event.outcome == Outcome.STOPPED:
            status = CommandStatus.STOPPED
        else:
            status = CommandStatus.FAILED
        self._finish(event.instance_id, status)

    def _on_timeout(self, instance_id: str) -> None:
        active = self.active.get(instance_id)
        if active is None:
            return
        logger.warning("Command %s timed out after %.0fs", active.command_id, self.timeout_sec)
        self._finish(instance_id, CommandStatus.TIMEOUT)
        self.executor.kill(instance_id)
        self._notice(
            f'Command "{active.command.title}" timed out after {self.timeout_sec:.0f} seconds.',
            "warning",
        )

    def _finish(self, instance_id: str, status: CommandStatus) -> bool:
        """The single terminal transition for one instance. False if already done."""
        active = self.active.pop(instance_id, None)
        if active is None:
            return False
        command_id = active.command_id
        entry = self.timeouts.get(command_id)
        if entry is not None and entry.instance_id == instance_id:
            entry.handle.cancel()
            del self.timeouts[command_id]

        logger.info("Command %s (%s) → %s", command_id, instance_id, status.value)
        self._set_command_status(command_id, status)
        if status == CommandStatus.SUCCESS and self.rerun is not None:
            self._spawn(self._rerun(command_id))
        self._advance()
        return True

    def _abandon(self, instance_id: str) -> None:
        """Drop an instance without a status transition (session reset)."""
        active = self.active.pop(instance_id, None)
        if active is None:
            return
        entry = self.timeouts.get(active.command_id)
        if entry is not None and entry.instance_id == instance_id:
            entry.handle.cancel()
            del self.timeouts[active.command_id]
        self.executor.kill(instance_id)

    def _abandon_all(self) -> None:
        for instance_id in list(self.active):
            self._abandon(instance_id)

    # ---------------------------------------------------------------
    # Progression
    # ---------------------------------------------------------------

    def _advance(self) -> None:
        self._refresh_group_statuses()
        if self.status != SessionStatus.RUNNING:
            return
        if self._manual_group is not None:
            self._settle_manual()
            return
        if self.cursor >= len(self.groups):
            self._complete()
            return

        status = self.groups[self.cursor].status
        if status == GroupStatus.SUCCESS:
            self.cursor += 1
            if self.cursor >= len(self.groups):
                self._complete()
            else:
                group = self.groups[self.cursor]
                logger.info("Moving to priority group %s", group.priority)
                self._dispatch_all(group.commands)
        elif status == GroupStatus.FAILED:
            self._set_status(SessionStatus.FAILED)
            self._notice(
                "Priority group failed. Start the next priority group to continue "
                "or stop to end Auto Setup.",
                "warning",
            )
        elif status in (GroupStatus.PARTIAL, GroupStatus.WAITING):
            # nothing left running and the group did not succeed
            self._set_status(SessionStatus.STOPPED)
            self._notice(
                f"Priority {self.groups[self.cursor].priority} finished with stopped "
                "commands; Auto Setup halted.",
                "warning",
            )

    def _settle_manual(self) -> None:
        status = self.groups[self._manual_group].status
        if status == GroupStatus.RUNNING:
            return
        self._manual_group = None
        statuses = [g.status for g in self.groups]
        if all(s == GroupStatus.SUCCESS for s in statuses):
            self._complete()
        elif GroupStatus.FAILED in statuses:
            self._set_status(SessionStatus.FAILED)
            self._notice("Priority group finished; some groups have failed commands.", "warning")
        else:
            self._set_status(SessionStatus.STOPPED)
            self._notice("Priority group finished; Auto Setup is incomplete.", "info")

    def _complete(self) -> None:
        self._set_status(SessionStatus.SUCCESS)
        self._notice("Auto Setup completed successfully!", "success")

    def _refresh_group_statuses(self) -> None:
        for group in self.groups:
            group.status = calculate_group_status(group.commands, self.command_statuses)

    # ---------------------------------------------------------------
    # Helpers
    # ---------------------------------------------------------------

    def _reject_start(self) -> None:
        if self.status == SessionStatus.RUNNING:
            self._notice("Cannot start a new group while Auto Setup is running.", "warning")
        else:
            self._notice(f"Cannot start Auto Setup from status '{self.status.value}'.", "warning")

    def _group_index(self, group: PriorityGroup | int) -> int | None:
        if isinstance(group, int):
            return group if 0 <= group < len(self.groups) else None
        for i, candidate in enumerate(self.groups):
            if candidate is group or candidate.priority == group.priority:
                return i
        return None

    def _command(self, command: FixCommand | str) -> FixCommand | None:
        command_id = command.id if isinstance(command, FixCommand) else command
        return self.find_command(command_id)

    def _set_status(self, status: SessionStatus) -> None:
        if status == SessionStatus.RUNNING:
            self._settled.clear()
        else:
            self._settled.set()
        if status == self.status:
            return
        logger.debug("Auto Setup status: %s → %s", self.status.value, status.value)
        self.status = status
        self.bus.publish(AutoSetupStatusChanged(status))

    def _set_command_status(self, command_id: str, status: CommandStatus) -> None:
        self.command_statuses[command_id] = status
        self.bus.publish(CommandStatusChanged(command_id, status))

    def _notice(self, message: str, level: str = "info") -> None:
        if level == "warning":
            logger.warning(message)
        else:
            logger.info(message)
        self.bus.publish(AutoSetupNotice(message, level))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _rerun(self, command_id: str) -> None:
        try:
            await self.rerun(command_id)
        except Exception:
            logger.exception("Re-verification of %s failed", command_id)
