"""Tests for the in-process event bus."""

from envq.events import AutoSetupNotice, AutoSetupStatusChanged, EventBus
from envq.models import SessionStatus


def test_publish_by_exact_type():
    bus = EventBus()
    notices, statuses = [], []
    bus.subscribe(AutoSetupNotice, notices.append)
    bus.subscribe(AutoSetupStatusChanged, statuses.append)

    bus.publish(AutoSetupNotice("hi"))
    assert notices == [AutoSetupNotice("hi", "info")]
    assert statuses == []


def test_unsubscribe():
    bus = EventBus()
    seen = []
    unsubscribe = bus.subscribe(AutoSetupNotice, seen.append)
    unsubscribe()
    unsubscribe()  # second call is a no-op
    bus.publish(AutoSetupNotice("ignored"))
    assert seen == []


def test_failing_handler_does_not_stop_others(caplog):
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(AutoSetupStatusChanged, broken)
    bus.subscribe(AutoSetupStatusChanged, seen.append)
    bus.publish(AutoSetupStatusChanged(SessionStatus.RUNNING))
    assert seen == [AutoSetupStatusChanged(SessionStatus.RUNNING)]
    assert "boom" in caplog.text
