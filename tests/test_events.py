"""Tests for the change event contract."""
from datetime import datetime, timedelta, timezone

import pytest

from activitylog.models.enums import EventKind
from activitylog.models.events import ChangeEvent
from activitylog.services.errors import ConfigurationError
from conftest import T0, child_event, parent_event


class TestChangeEvent:

    def test_ids_are_stringified(self):
        event = child_event(T0, child_id=7, root_id=42)
        assert event.entity_id == "7"
        assert event.root_identity() == ("Sale", "42")

    def test_aware_timestamps_become_naive_utc(self):
        aware = datetime(2026, 1, 5, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        event = parent_event(aware)
        assert event.timestamp == datetime(2026, 1, 5, 10, 0)

    def test_default_timestamp_is_naive_utc_now(self):
        before = datetime.now(timezone.utc).replace(tzinfo=None)
        event = ChangeEvent.for_parent(EventKind.CREATED, "Sale", 1, diff={"new": {"code": "A"}})
        after = datetime.now(timezone.utc).replace(tzinfo=None)

        assert event.timestamp.tzinfo is None
        assert before <= event.timestamp <= after

    def test_diff_is_normalized(self):
        event = parent_event(T0, kind=EventKind.DELETED, diff={"old": {"code": "A"}})
        assert event.diff == {"old": {"code": "A"}, "new": {}}

    def test_parent_and_child_classification(self):
        assert parent_event(T0).is_parent_change() is True
        assert child_event(T0).is_parent_change() is False

    def test_default_display_label(self):
        assert child_event(T0).display_label() == "Sale #42"

    def test_without_attributes(self):
        event = parent_event(T0, diff={"old": {"updated_at": "x", "code": "A"},
                                       "new": {"updated_at": "y", "code": "B"}})
        stripped = event.without_attributes({"updated_at"})

        assert stripped.diff == {"old": {"code": "A"}, "new": {"code": "B"}}
        assert "updated_at" in event.new

    def test_payload_roundtrip_keeps_timestamp(self):
        event = child_event(T0 + timedelta(milliseconds=250))
        payload = event.to_payload()

        assert isinstance(payload["timestamp"], str)
        assert ChangeEvent.from_payload(payload) == event

    def test_missing_changed_entity(self):
        event = ChangeEvent(event_kind=EventKind.CREATED, entity_id=1, timestamp=T0)
        with pytest.raises(ConfigurationError):
            event.root_identity()
