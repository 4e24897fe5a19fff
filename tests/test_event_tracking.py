"""
Tests for the quota audit event tracking system.
"""

import json
import threading

import pytest
from flask import Flask

from lectgen.event_tracking.event_tracker import EventTracker
from lectgen.event_tracking.event_types import EventType
from lectgen.event_tracking.models import Event


class TestEventTypes:
    """Test event type validation."""

    def test_valid_event_types(self):
        """Test that all expected event types are valid."""
        valid_types = [
            "quota_allowed", "quota_denied", "cycle_rollover",
            "cap_set", "counter_reset", "tier_changed", "account_created"
        ]

        for event_type in valid_types:
            assert EventType.is_valid(event_type)

    def test_invalid_event_types(self):
        """Test that invalid event types are rejected."""
        invalid_types = ["invalid", "mark_read", "QUOTA_ALLOWED", ""]

        for event_type in invalid_types:
            assert not EventType.is_valid(event_type)


class TestEventModels:
    """Test event data models."""

    def test_event_serialization(self):
        """Test Event serialization to/from dict."""
        event = Event(
            ts="2025-06-01T00:00:00+00:00",
            type="counter_reset",
            uid="alice",
            meta={"actor": "admin1", "count": 0},
            path="/api/admin/accounts/alice/reset",
            ua="test-agent"
        )

        event_dict = event.to_dict()
        assert event_dict["ts"] == "2025-06-01T00:00:00+00:00"
        assert event_dict["type"] == "counter_reset"
        assert event_dict["uid"] == "alice"
        assert event_dict["meta"] == {"actor": "admin1", "count": 0}

        assert Event.from_dict(event_dict) == event

    def test_from_dict_defaults(self):
        event = Event.from_dict({"type": "cap_set"})
        assert event.meta == {}
        assert event.path is None


class TestEventTracker:
    """Test the main EventTracker class."""

    @pytest.fixture
    def temp_dir(self, tmp_path):
        """Create a temporary directory for testing."""
        return tmp_path / "events"

    @pytest.fixture
    def tracker(self, temp_dir):
        """Create an EventTracker instance for testing."""
        return EventTracker(temp_dir)

    def test_track_valid_event(self, tracker, temp_dir):
        """Test tracking a valid event."""
        success = tracker.track_event(
            uid="alice",
            event_type="quota_allowed",
            meta={"decision": "allowed", "count": 1}
        )
        assert success

        events = tracker.get_user_events("alice")
        assert len(events) == 1
        assert events[0].type == "quota_allowed"
        assert events[0].uid == "alice"
        assert events[0].meta == {"decision": "allowed", "count": 1}
        assert events[0].path is None

        data = json.loads((temp_dir / "alice.json").read_text(encoding="utf-8"))
        assert len(data["events"]) == 1

    def test_track_enum_event_type(self, tracker):
        assert tracker.track_event("alice", EventType.CAP_SET, {"cap": 3})
        assert tracker.get_user_events("alice")[0].type == "cap_set"

    def test_track_invalid_event(self, tracker):
        """Test tracking an invalid event type."""
        success = tracker.track_event(uid="alice", event_type="invalid_type")
        assert not success
        assert tracker.get_user_events("alice") == []

    def test_explicit_timestamp(self, tracker):
        tracker.track_event("alice", "counter_reset", ts="2025-06-20T09:30:00+00:00")
        assert tracker.get_user_events("alice")[0].ts == "2025-06-20T09:30:00+00:00"

    def test_request_context_recorded(self, tracker):
        app = Flask(__name__)
        with app.test_request_context("/api/quota/consume", headers={"User-Agent": "pytest-agent"}):
            tracker.track_event("alice", "quota_denied")

        event = tracker.get_user_events("alice")[0]
        assert event.path == "/api/quota/consume"
        assert event.ua == "pytest-agent"

    def test_filter_and_limit(self, tracker):
        for _ in range(3):
            tracker.track_event("alice", "quota_allowed")
        tracker.track_event("alice", "quota_denied")

        assert len(tracker.get_user_events("alice", event_type="quota_allowed")) == 3
        assert [e.type for e in tracker.get_user_events("alice", limit=2)] == ["quota_allowed", "quota_denied"]
        assert tracker.get_user_events("alice", limit=0) == []

    def test_max_events_per_user(self, temp_dir):
        tracker = EventTracker(temp_dir, max_events_per_user=3)
        for i in range(5):
            tracker.track_event("alice", "quota_allowed", {"count": i + 1})

        events = tracker.get_user_events("alice")
        assert [e.meta["count"] for e in events] == [3, 4, 5]

    def test_get_event_stats(self, tracker):
        """Test getting event statistics."""
        tracker.track_event("alice", "quota_allowed")
        tracker.track_event("alice", "quota_allowed")
        tracker.track_event("alice", "quota_denied")

        stats = tracker.get_event_stats("alice")
        assert stats == {"quota_allowed": 2, "quota_denied": 1}

    def test_corrupt_file_is_quarantined(self, tracker, temp_dir):
        (temp_dir / "alice.json").write_text("{oops", encoding="utf-8")

        assert tracker.track_event("alice", "cap_set")
        assert [e.type for e in tracker.get_user_events("alice")] == ["cap_set"]

        quarantined = list(temp_dir.glob("alice.json.corrupt-*"))
        assert len(quarantined) == 1
        assert quarantined[0].read_text(encoding="utf-8") == "{oops"

    def test_save_leaves_no_temp_files(self, tracker, temp_dir):
        tracker.track_event("alice", "cap_set")
        assert not list(temp_dir.glob(".*.tmp"))

    def test_separate_trackers_share_one_file(self, temp_dir):
        """Two trackers on one directory (service and script) must not drop each other's events."""
        trackers = [EventTracker(temp_dir), EventTracker(temp_dir)]

        def append(tracker):
            for i in range(25):
                tracker.track_event("alice", "quota_allowed", {"count": i})

        threads = [threading.Thread(target=append, args=(t,)) for t in trackers]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(trackers[0].get_user_events("alice")) == 50

    @pytest.mark.parametrize("uid", ["", "../x", ".hidden"])
    def test_unsafe_uid_rejected(self, tracker, uid):
        with pytest.raises(ValueError):
            tracker.track_event(uid, "cap_set")
