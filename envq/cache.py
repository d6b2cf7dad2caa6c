"""In-memory verification cache: full passes, single reruns, invalidation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path

import anyio

from .evaluator import Evaluator
from .events import EventBus, VerificationProgress, VerificationUpdated
from .models import (
    GENERAL_SECTION,
    CacheSnapshot,
    Progress,
    RerunResult,
    SectionConfig,
    VerificationSet,
    VerificationSpec,
    VerificationStatus,
)
from .paths import resolve_path

logger = logging.getLogger(__name__)

NO_SPECIFIC_CHECKS = "no_specific_checks"
BRANCH_KEY = "gitBranch"
NO_BRANCH = "N/A"

BranchLookup = Callable[[Path], Awaitable[str]]
ProgressObserver = Callable[[Progress], None]


class VerificationCache:
    """Per-section verification statuses for one session.

    ``load`` is called at the start of every pass and rerun so edits to the
    verification documents are picked up. Only one full pass runs at a time;
    callers arriving while it runs await the same result.
    """

    def __init__(
        self,
        evaluator: Evaluator,
        load: Callable[[], VerificationSet],
        branch_lookup: BranchLookup | None = None,
        bus: EventBus | None = None,
    ):
        self.evaluator = evaluator
        self._load = load
        self._branch_lookup = branch_lookup
        self._bus = bus
        self._sections: dict[str, dict[str, str]] = {}
        self._ready = False
        self._pass: asyncio.Task | None = None
        self._observers: list[ProgressObserver] = []
        self.verification_set = VerificationSet()

    # ---------------------------------------------------------------
    # State
    # ---------------------------------------------------------------

    @property
    def is_ready(self) -> bool:
        return self._ready

    @property
    def in_progress(self) -> bool:
        return self._pass is not None and not self._pass.done()

    @property
    def discovered_versions(self) -> dict[str, str]:
        return self.evaluator.discovered_versions

    def snapshot(self) -> CacheSnapshot:
        return CacheSnapshot(
            sections={key: dict(entries) for key, entries in self._sections.items()},
            discovered_versions=dict(self.discovered_versions),
        )

    def set_section_metadata(self, section_key: str, name: str, value: str) -> None:
        """Merge externally owned metadata (e.g. a branch label) into a section."""
        self._sections.setdefault(section_key, {})[name] = value

    # ---------------------------------------------------------------
    # Full pass
    # ---------------------------------------------------------------

    async def evaluate_all(self, progress: ProgressObserver | None = None) -> CacheSnapshot:
        """Evaluate every verification concurrently, or return the cached result."""
        if self.in_progress:
            if progress:
                self._observers.append(progress)
            return await asyncio.shield(self._pass)
        if self._ready:
            return self.snapshot()

        self._observers = [progress] if progress else []
        self._pass = asyncio.get_running_loop().create_task(self._evaluate_all())
        return await asyncio.shield(self._pass)

    async def refresh(self, progress: ProgressObserver | None = None) -> CacheSnapshot:
        self.invalidate_all()
        return await self.evaluate_all(progress)

    def invalidate_all(self) -> None:
        """Drop every cached status so the next evaluate_all does full work."""
        logger.debug("Invalidating verification cache")
        self._sections = {}
        self._ready = False
        self.evaluator.clear()

    def _report(self, progress: Progress) -> None:
        for observer in list(self._observers):
            try:
                observer(progress)
            except Exception:
                logger.exception("Progress observer failed")
        if self._bus is not None:
            self._bus.publish(VerificationProgress(progress))

    async def _evaluate_all(self) -> CacheSnapshot:
        logger.debug("Starting full environment verification")
        vset = self._load()
        self.verification_set = vset

        sections: dict[str, dict[str, str]] = {GENERAL_SECTION: {}}
        for category in vset.categories:
            for spec in category.verifications:
                sections[GENERAL_SECTION][spec.id] = VerificationStatus.WAITING
        for section in vset.sections:
            if section.skip_verification:
                sections[section.key] = {"status": NO_SPECIFIC_CHECKS}
            else:
                sections[section.key] = {
                    spec.id: VerificationStatus.WAITING for spec in section.verifications
                }
        self._sections = sections

        total = vset.total
        completed = 0
        self._report(Progress.of(0, total))

        async def _check(key: str, spec: VerificationSpec, section_id: str) -> None:
            nonlocal completed
            result = await self.evaluator.evaluate(spec, section_id)
            sections[key][spec.id] = result.status
            completed += 1
            self._report(Progress.of(completed, total))

        async def _branch(section: SectionConfig) -> None:
            sections[section.key][BRANCH_KEY] = await self._lookup_branch(section)

        async with anyio.create_task_group() as tg:
            for category in vset.categories:
                for spec in category.verifications:
                    tg.start_soon(_check, GENERAL_SECTION, spec, "")
            for section in vset.sections:
                if section.skip_verification:
                    continue
                for spec in section.verifications:
                    tg.start_soon(_check, section.key, spec, section.section_id)
                if section.directory_path:
                    tg.start_soon(_branch, section)

        # invalidate_all() during the pass discards its results
        if self._sections is sections:
            self._ready = True
        logger.debug("Environment verification completed: %d/%d", completed, total)
        return CacheSnapshot(
            sections={key: dict(entries) for key, entries in sections.items()},
            discovered_versions=dict(self.discovered_versions),
        )

    async def _lookup_branch(self, section: SectionConfig) -> str:
        if section.test_section or self._branch_lookup is None:
            return NO_BRANCH
        try:
            directory = resolve_path(section.directory_path, self.evaluator.project_root)
        except ValueError:
            return NO_BRANCH
        if not directory.is_dir():
            return NO_BRANCH
        try:
            return await self._branch_lookup(directory) or NO_BRANCH
        except Exception:
            logger.exception("Branch lookup failed for %s", directory)
            return NO_BRANCH

    # ---------------------------------------------------------------
    # Single rerun
    # ---------------------------------------------------------------

    @staticmethod
    def locate(
        vset: VerificationSet, verification_id: str
    ) -> tuple[str, str, str, VerificationSpec] | None:
        """Find a verification → (cache key, source, section id, spec)."""
        for category in vset.categories:
            for spec in category.verifications:
                if spec.id == verification_id:
                    return GENERAL_SECTION, GENERAL_SECTION, "", spec
        for section in vset.sections:
            if section.skip_verification:
                continue
            for spec in section.verifications:
                if spec.id == verification_id:
                    return section.key, section.section_id, section.section_id, spec
        return None

    async def rerun_one(self, verification_id: str) -> RerunResult:
        """Re-evaluate one verification and patch only its cache entry."""
        logger.debug("Re-running single verification: %s", verification_id)
        vset = self._load()
        self.verification_set = vset

        found = self.locate(vset, verification_id)
        if found is None:
            logger.warning("Verification %s not found in any configuration", verification_id)
            return RerunResult(success=False, verification_id=verification_id, error="not found")

        key, source, section_id, spec = found
        result = await self.evaluator.evaluate(spec, section_id)
        self._sections.setdefault(key, {})[verification_id] = result.status
        logger.debug("Verification %s re-run: %s", verification_id, result.status.value)

        if self._bus is not None:
            self._bus.publish(VerificationUpdated(verification_id, result.status, source))
        return RerunResult(
            success=True,
            verification_id=verification_id,
            result=result.status,
            source=source,
        )
