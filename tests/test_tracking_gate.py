"""
tests/test_tracking_gate.py — Tracking Gate Unit Tests
=======================================================

Covers the TTL cache, invalidation (direct and via NOTIFY payloads), the
store-backed lookup, and the event-channel helpers.  No PG connection is
needed; the LISTEN thread itself is not started.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest

from questline.engine.cache import (
    EVENT_NOTIFY_CHANNEL,
    TrackingGate,
    notify_before_commit,
    send_event_notify,
)


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_gate(clock):
    return TrackingGate(MagicMock(), ttl_seconds=300, clock=clock)


class TestCachePrimitives:
    def test_miss(self, fake_gate):
        assert fake_gate.get(1, "message_sent") is None

    def test_hit_within_ttl(self, fake_gate, clock):
        fake_gate.put(1, "message_sent", True)
        clock.now += 299
        assert fake_gate.get(1, "message_sent") is True

    def test_negative_answers_cached(self, fake_gate):
        fake_gate.put(1, "message_sent", False)
        assert fake_gate.get(1, "message_sent") is False

    def test_expires_after_ttl(self, fake_gate, clock):
        fake_gate.put(1, "message_sent", True)
        clock.now += 300
        assert fake_gate.get(1, "message_sent") is None
        assert len(fake_gate) == 0

    def test_invalidate_single_type(self, fake_gate):
        fake_gate.put(1, "message_sent", True)
        fake_gate.put(1, "voice_minutes", True)
        assert fake_gate.invalidate(1, "message_sent") == 1
        assert fake_gate.get(1, "message_sent") is None
        assert fake_gate.get(1, "voice_minutes") is True

    def test_invalidate_whole_guild(self, fake_gate):
        fake_gate.put(1, "message_sent", True)
        fake_gate.put(1, "voice_minutes", False)
        fake_gate.put(2, "message_sent", True)
        assert fake_gate.invalidate(1) == 2
        assert fake_gate.get(2, "message_sent") is True

    def test_expire_sweeps_stale_entries(self, fake_gate, clock):
        fake_gate.put(1, "message_sent", True)
        clock.now += 200
        fake_gate.put(2, "message_sent", True)
        clock.now += 150
        assert fake_gate.expire() == 1
        assert len(fake_gate) == 1


class TestHandleNotify:
    def test_guild_and_type(self, fake_gate):
        fake_gate.put(1, "message_sent", True)
        fake_gate.put(1, "voice_minutes", True)
        fake_gate.handle_notify("1:message_sent")
        assert fake_gate.get(1, "message_sent") is None
        assert fake_gate.get(1, "voice_minutes") is True

    def test_guild_only(self, fake_gate):
        fake_gate.put(1, "message_sent", True)
        fake_gate.put(1, "voice_minutes", True)
        fake_gate.handle_notify("1")
        assert len(fake_gate) == 0

    def test_malformed_payload_ignored(self, fake_gate):
        fake_gate.put(1, "message_sent", True)
        fake_gate.handle_notify("not-a-guild")
        assert len(fake_gate) == 1


class TestIsTracking:
    def test_enabled_quest_tracks(self, gate, make_quest):
        make_quest(quest_type="message_sent")
        assert gate.is_tracking(100, "message_sent") is True
        assert gate.get(100, "message_sent") is True

    def test_disabled_quest_does_not_track(self, gate, make_quest):
        make_quest(quest_type="message_sent", enabled=False)
        assert gate.is_tracking(100, "message_sent") is False

    def test_other_guild_does_not_track(self, gate, make_quest):
        make_quest(guild_id=999)
        assert gate.is_tracking(100, "message_sent") is False

    def test_cached_answer_skips_store(self, gate, make_quest):
        gate.put(100, "message_sent", False)
        make_quest(quest_type="message_sent")
        assert gate.is_tracking(100, "message_sent") is False

    def test_store_error_not_cached(self, clock):
        engine = MagicMock()
        broken = TrackingGate(engine, clock=clock)
        with patch("questline.engine.cache.Session", side_effect=RuntimeError("db down")):
            assert broken.is_tracking(1, "message_sent") is False
        assert broken.get(1, "message_sent") is None


class TestListenerHealth:
    def test_initially_unhealthy(self, fake_gate):
        assert fake_gate.listener_healthy is False
        assert fake_gate.listener_failed is False

    def test_stop_without_thread(self, fake_gate):
        fake_gate.stop_listener()


class TestEventNotify:
    def test_requires_type(self):
        with pytest.raises(ValueError, match="type"):
            send_event_notify(MagicMock(), {"quest_id": 1})

    def test_sends_json_on_event_channel(self):
        engine = MagicMock()
        conn = engine.connect.return_value.__enter__.return_value
        send_event_notify(engine, {"type": "quest_manual_complete", "quest_id": 1})
        params = conn.execute.call_args.args[1]
        assert params["channel"] == EVENT_NOTIFY_CHANNEL
        assert json.loads(params["payload"]) == {"type": "quest_manual_complete", "quest_id": 1}
        conn.commit.assert_called_once()

    def test_dispatch_runs_registered_callback(self, fake_gate):
        callback = MagicMock()
        loop = MagicMock()
        loop.is_closed.return_value = False
        fake_gate.register_event_callback("quest_manual_complete", callback, loop=loop)
        with patch("questline.engine.cache.asyncio.run_coroutine_threadsafe") as run:
            fake_gate._dispatch_event(json.dumps({"type": "quest_manual_complete", "quest_id": 3}))
        callback.assert_called_once_with({"type": "quest_manual_complete", "quest_id": 3})
        run.assert_called_once()

    def test_dispatch_ignores_bad_json(self, fake_gate):
        callback = MagicMock()
        fake_gate.register_event_callback("quest_manual_complete", callback, loop=MagicMock())
        fake_gate._dispatch_event("{oops")
        callback.assert_not_called()


class TestNotifyBeforeCommit:
    def test_skipped_off_postgres(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "sqlite"
        notify_before_commit(session, 1, "message_sent")
        session.execute.assert_not_called()

    def test_payload_on_postgres(self):
        session = MagicMock()
        session.get_bind.return_value.dialect.name = "postgresql"
        notify_before_commit(session, 1, "message_sent")
        assert session.execute.call_args.args[1]["payload"] == "1:message_sent"
