"""Tests for the verification cache."""

import asyncio

import pytest

from conftest import FakeRunner
from envq.cache import VerificationCache
from envq.config import load_config
from envq.evaluator import Evaluator
from envq.events import EventBus, VerificationProgress, VerificationUpdated
from envq.loader import load_verification_set
from envq.models import CommandResult, VerificationStatus

VALID = VerificationStatus.VALID
INVALID = VerificationStatus.INVALID


def _cache(project, runner=None, branch_lookup=None, bus=None):
    runner = runner or FakeRunner({"node --version": CommandResult(True, stdout="v15.5.1")})
    config = load_config(project)
    evaluator = Evaluator(project, runner=runner, env={"HOME": "/home/dev"})
    cache = VerificationCache(
        evaluator, lambda: load_verification_set(config), branch_lookup=branch_lookup, bus=bus,
    )
    return cache, runner


@pytest.mark.asyncio
async def test_evaluate_all_statuses(tmp_project):
    cache, _ = _cache(tmp_project)
    snapshot = await cache.evaluate_all()

    assert cache.is_ready
    assert snapshot.general == {"nodeVersion": VALID, "gitInstalled": INVALID, "homeSet": VALID}
    assert snapshot.sections["backendApi"] == {"backendCloned": INVALID, "gitBranch": "N/A"}
    assert snapshot.sections["docs"] == {"status": "no_specific_checks"}
    assert snapshot.sections["e2e"] == {"e2eReady": INVALID}
    assert snapshot.discovered_versions == {"node": "v15.5.1"}


@pytest.mark.asyncio
async def test_branch_lookup_for_existing_directory(tmp_project):
    (tmp_project / "backend-api").mkdir()
    looked_up = []

    async def lookup(path):
        looked_up.append(path)
        return "feature/x"

    cache, _ = _cache(tmp_project, branch_lookup=lookup)
    snapshot = await cache.evaluate_all()
    assert looked_up == [tmp_project / "backend-api"]
    assert snapshot.sections["backendApi"]["gitBranch"] == "feature/x"
    assert snapshot.sections["backendApi"]["backendCloned"] == VALID


@pytest.mark.asyncio
async def test_failing_branch_lookup_is_na(tmp_project):
    (tmp_project / "backend-api").mkdir()

    async def lookup(path):
        raise RuntimeError("git exploded")

    cache, _ = _cache(tmp_project, branch_lookup=lookup)
    snapshot = await cache.evaluate_all()
    assert snapshot.sections["backendApi"]["gitBranch"] == "N/A"


@pytest.mark.asyncio
async def test_progress_is_monotonic(tmp_project):
    bus = EventBus()
    published = []
    bus.subscribe(VerificationProgress, published.append)
    seen = []

    cache, _ = _cache(tmp_project, bus=bus)
    await cache.evaluate_all(seen.append)

    completed = [p.completed for p in seen]
    assert completed[0] == 0
    assert completed == sorted(completed)
    assert seen[-1].completed == seen[-1].total == 5
    assert seen[-1].percentage == 100
    assert [e.progress for e in published] == seen


@pytest.mark.asyncio
async def test_second_call_uses_cache(tmp_project):
    cache, runner = _cache(tmp_project)
    await cache.evaluate_all()
    calls = len(runner.calls)
    await cache.evaluate_all()
    assert len(runner.calls) == calls


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_pass(tmp_project):
    cache, runner = _cache(tmp_project)
    first, second = await asyncio.gather(cache.evaluate_all(), cache.evaluate_all())
    assert first.sections == second.sections
    assert sorted(runner.calls) == sorted(["node --version", "git --version", "e2e --check"])


@pytest.mark.asyncio
async def test_refresh_reevaluates(tmp_project):
    cache, runner = _cache(tmp_project)
    await cache.evaluate_all()
    runner.results["git --version"] = CommandResult(True, stdout="git version 2.4")
    snapshot = await cache.refresh()
    assert snapshot.general["gitInstalled"] == VALID


@pytest.mark.asyncio
async def test_invalidate_all(tmp_project):
    cache, _ = _cache(tmp_project)
    await cache.evaluate_all()
    cache.invalidate_all()
    assert not cache.is_ready
    assert cache.snapshot().sections == {}
    assert cache.discovered_versions == {}


@pytest.mark.asyncio
async def test_invalidate_during_pass_discards_result(tmp_project):
    gate = asyncio.Event()

    class SlowRunner(FakeRunner):
        async def __call__(self, command):
            await gate.wait()
            return await super().__call__(command)

    cache, _ = _cache(tmp_project, runner=SlowRunner())
    task = asyncio.create_task(cache.evaluate_all())
    while not cache.in_progress:
        await asyncio.sleep(0)
    cache.invalidate_all()
    gate.set()
    await task
    assert not cache.is_ready


# --- single rerun ---

@pytest.mark.asyncio
async def test_rerun_patches_only_one_entry(tmp_project):
    bus = EventBus()
    updates = []
    bus.subscribe(VerificationUpdated, updates.append)
    cache, runner = _cache(tmp_project, bus=bus)
    before = await cache.evaluate_all()

    runner.results["git --version"] = CommandResult(True, stdout="git version 2.4")
    result = await cache.rerun_one("gitInstalled")

    assert result.success
    assert result.result == VALID
    assert result.source == "general"
    after = cache.snapshot()
    assert after.general["gitInstalled"] == VALID
    after.general["gitInstalled"] = before.general["gitInstalled"]
    assert after.sections == before.sections
    assert updates == [VerificationUpdated("gitInstalled", VALID, "general")]


@pytest.mark.asyncio
async def test_rerun_section_verification(tmp_project):
    cache, _ = _cache(tmp_project)
    await cache.evaluate_all()
    (tmp_project / "backend-api").mkdir()
    result = await cache.rerun_one("backendCloned")
    assert result.source == "backend-api"
    assert cache.snapshot().sections["backendApi"]["backendCloned"] == VALID


@pytest.mark.asyncio
async def test_rerun_unknown_id(tmp_project):
    cache, _ = _cache(tmp_project)
    result = await cache.rerun_one("doesNotExist")
    assert not result.success
    assert result.error == "not found"


@pytest.mark.asyncio
async def test_rerun_before_any_pass(tmp_project):
    cache, _ = _cache(tmp_project)
    result = await cache.rerun_one("homeSet")
    assert result.result == VALID
    assert cache.snapshot().sections == {"general": {"homeSet": VALID}}
    assert not cache.is_ready
