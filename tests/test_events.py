"""Tests for the attack event channel: ordering and subscriber isolation."""

import dataclasses
from datetime import datetime, timezone

import pytest

from apiguard.core.events import AttackEvent, EventChannel


def _event(identity="1.1.1.1"):
    return AttackEvent(identity, "Path Scanning", datetime(2024, 1, 1, tzinfo=timezone.utc))


class TestEventChannel:
    def setup_method(self):
        self.channel = EventChannel()

    def test_handlers_run_in_subscription_order(self):
        calls = []
        self.channel.subscribe(lambda e: calls.append(("first", e.identity)))
        self.channel.subscribe(lambda e: calls.append(("second", e.identity)))
        assert self.channel.emit(_event()) == 2
        assert calls == [("first", "1.1.1.1"), ("second", "1.1.1.1")]

    def test_failing_handler_does_not_stop_the_others(self):
        seen = []

        def broken(event):
            raise RuntimeError("boom")

        self.channel.subscribe(broken)
        self.channel.subscribe(seen.append)
        assert self.channel.emit(_event()) == 1
        assert len(seen) == 1

    def test_subscribe_works_as_decorator(self):
        @self.channel.subscribe
        def handler(event):
            pass

        assert callable(handler)
        assert len(self.channel) == 1

    def test_unsubscribe(self):
        seen = []
        self.channel.subscribe(seen.append)
        self.channel.unsubscribe(seen.append)
        self.channel.unsubscribe(seen.append)  # unknown handler is ignored
        self.channel.emit(_event())
        assert seen == []

    def test_emit_without_handlers(self):
        assert self.channel.emit(_event()) == 0


class TestAttackEvent:
    def test_is_immutable(self):
        event = _event()
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.identity = "2.2.2.2"

    def test_to_dict(self):
        assert _event().to_dict() == {
            "ip": "1.1.1.1",
            "type": "Path Scanning",
            "timestamp": "2024-01-01T00:00:00+00:00",
        }
