"""Tests for dispatching change events, synchronously and through the queue."""
from dataclasses import replace
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from activitylog.models.activity import ActivityLog, ActivityLogDetail
from activitylog.models.enums import EventKind
from activitylog.models.events import ChangeEvent
from activitylog.scheduler import tasks
from activitylog.services.batching import BatchingEngine
from activitylog.services.dispatch import dispatch, is_tracking_enabled, queue_for, tracking_disabled
from activitylog.services.errors import ConfigurationError, PersistenceError
from conftest import T0, Item, child_event, parent_event


class TestSyncDispatch:

    def test_records_with_own_session(self, config, session_factory, db_session):
        assert dispatch(parent_event(T0), config=config, session_factory=session_factory) is True
        assert db_session.query(ActivityLogDetail).count() == 1

    def test_ignored_attributes_are_stripped(self, config, db_session):
        event = parent_event(T0, diff={"old": {"code": "A", "updated_at": "x"},
                                       "new": {"code": "B", "updated_at": "y"}})
        dispatch(event, config=config, db=db_session)

        detail = db_session.query(ActivityLogDetail).one()
        assert detail.changes == {"old": {"code": "A"}, "new": {"code": "B"}}

    def test_empty_update_is_skipped(self, config, db_session):
        event = parent_event(T0, diff={"old": {"updated_at": "x"}, "new": {"updated_at": "y"}})

        assert dispatch(event, config=config, db=db_session) is False
        assert db_session.query(ActivityLog).count() == 0

    def test_tracking_disabled(self, config, db_session):
        with tracking_disabled():
            assert is_tracking_enabled() is False
            assert dispatch(parent_event(T0), config=config, db=db_session) is False
        assert is_tracking_enabled() is True
        assert db_session.query(ActivityLog).count() == 0

    def test_bad_event_is_rejected(self, config, db_session):
        event = ChangeEvent(event_kind=EventKind.UPDATED, entity_type="Sale", entity_id=1)
        with pytest.raises(ConfigurationError):
            dispatch(event, config=config, db=db_session)


class TestAsyncDispatch:

    def test_queue_is_stable_per_root(self):
        assert queue_for(("Sale", "42"), 4) == queue_for(("Sale", "42"), 4)
        assert queue_for(("Sale", "42"), 1) == "activitylog.0"

    def test_parent_and_children_share_a_queue(self, config, monkeypatch):
        sent = []
        monkeypatch.setattr(tasks.record_change_event, "apply_async",
                            lambda args, queue: sent.append((args[0], queue)))
        async_config = replace(config, async_mode=True, partitions=8)

        dispatch(parent_event(T0), config=async_config)
        dispatch(child_event(T0 + timedelta(seconds=1)), config=async_config)

        assert len(sent) == 2
        assert sent[0][1] == sent[1][1] == queue_for(("Sale", "42"), 8)
        assert sent[1][0]["entity_type"] == "SaleItem"


class TestRecordTask:

    def test_task_records_payload(self, session_factory, db_session, monkeypatch):
        monkeypatch.setattr(tasks.DatabaseTask, "session_factory", session_factory)

        tasks.record_change_event.apply(args=[parent_event(T0).to_payload()], throw=True)

        assert db_session.query(ActivityLogDetail).count() == 1

    def test_task_rejects_bad_payload(self, session_factory, monkeypatch):
        monkeypatch.setattr(tasks.DatabaseTask, "session_factory", session_factory)
        payload = parent_event(T0).to_payload()
        payload["timestamp"] = None

        with pytest.raises(ConfigurationError):
            tasks.record_change_event.apply(args=[payload], throw=True)

    def test_purge_task(self, session_factory, db_session, batching, monkeypatch):
        monkeypatch.setattr(tasks.DatabaseTask, "session_factory", session_factory)
        batching.record(parent_event(T0 - timedelta(days=3650)))

        result = tasks.purge_expired_logs.apply(kwargs={"retention_days": 1}, throw=True)
        assert result.get() == 1


class TestCallerTransaction:
    """Recording into the caller's session leaves its transaction to the caller."""

    def _fail_insert(self, *args, **kwargs):
        raise OperationalError("INSERT INTO activity_log_details", {}, Exception("disk I/O error"))

    def test_failed_record_keeps_pending_work(self, config, db_session, session_factory, monkeypatch):
        monkeypatch.setattr(BatchingEngine, "_insert_detail", self._fail_insert)
        db_session.add(Item(id=99, code="W-99"))

        with pytest.raises(PersistenceError):
            dispatch(parent_event(T0), config=config, db=db_session)
        db_session.commit()

        check = session_factory()
        assert check.get(Item, 99) is not None
        assert check.query(ActivityLog).count() == 0
        check.close()

    def test_caller_rollback_discards_record(self, config, db_session, session_factory):
        db_session.add(Item(id=98, code="W-98"))

        assert dispatch(parent_event(T0), config=config, db=db_session) is True
        db_session.rollback()

        check = session_factory()
        assert check.get(Item, 98) is None
        assert check.query(ActivityLog).count() == 0
        check.close()

    def test_caller_commit_keeps_both(self, config, db_session, session_factory):
        db_session.add(Item(id=97, code="W-97"))
        dispatch(parent_event(T0), config=config, db=db_session)
        db_session.commit()

        check = session_factory()
        assert check.get(Item, 97) is not None
        assert check.query(ActivityLogDetail).count() == 1
        check.close()
