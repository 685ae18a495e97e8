"""
Batching engine - the write path of the activity log.

Every change event goes through record(). It files the change under its root
entity's log, decides which batch it belongs to, and writes the rollup update
and the detail row in one transaction.
"""
import logging
import threading
import zlib
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from activitylog.config import ActivityLogConfig
from activitylog.models.activity import ActivityLog, ActivityLogDetail
from activitylog.models.events import ChangeEvent
from activitylog.services.errors import PersistenceError

logger = logging.getLogger(__name__)

# Striped in-process locks serialise writers on the same root within one
# process; the row lock covers writers in other processes.
_LOCK_STRIPES = 64
_root_locks = [threading.Lock() for _ in range(_LOCK_STRIPES)]


def root_key(entity_type: str, entity_id: str) -> int:
    """Stable hash of a root identity (same value in every process)."""
    return zlib.crc32(f"{entity_type}:{entity_id}".encode("utf-8"))


def _lock_for(entity_type: str, entity_id: str) -> threading.Lock:
    return _root_locks[root_key(entity_type, entity_id) % _LOCK_STRIPES]


class _ConcurrentCreate(Exception):
    """Another writer inserted the same root log first."""


class BatchingEngine:
    """Files change events into root logs and batches."""

    def __init__(self, db: Session, config: ActivityLogConfig):
        self.db = db
        self.config = config

    def record(self, event: ChangeEvent, commit: bool = True) -> ActivityLogDetail:
        """
        Record one change event.

        Invariants:
        - The log update and the detail insert commit together or not at all
        - The first event for a root gets batch 1
        - A batch number only ever grows by 1

        The write runs inside a savepoint. With commit=True the engine owns the
        session: it commits on success and rolls back on failure. With
        commit=False the caller owns the transaction; a failure only undoes
        the savepoint and the caller's pending work is left alone.

        Raises ConfigurationError for events that cannot be filed (nothing is
        written) and PersistenceError when the storage write fails.
        """
        root_type, root_id = event.root_identity()
        payload = event.to_payload()

        with _lock_for(root_type, root_id):
            for attempt in (1, 2):
                try:
                    with self.db.begin_nested():
                        detail = self._write(event, payload, root_type, root_id)
                    if commit:
                        self.db.commit()
                    return detail
                except _ConcurrentCreate as e:
                    if attempt == 2:
                        if commit:
                            self.db.rollback()
                        logger.error("Activity logging failed: %s | event=%s", e, payload)
                        raise PersistenceError(
                            f"Could not create activity log for {root_type}#{root_id}",
                            event=payload,
                        ) from e.__cause__
                    logger.info("Root log %s#%s created concurrently, retrying", root_type, root_id)
                except SQLAlchemyError as e:
                    if commit:
                        self.db.rollback()
                    logger.error("Activity logging failed: %s | event=%s", e, payload)
                    raise PersistenceError(
                        f"Failed to record {event.event_kind.value} of "
                        f"{event.entity_type}#{event.entity_id}: {e}",
                        event=payload,
                    ) from e
                except Exception as e:
                    if commit:
                        self.db.rollback()
                    logger.error("Activity logging failed: %s | event=%s", e, payload)
                    raise

    def should_start_new_batch(self, log: ActivityLog, event: ChangeEvent) -> bool:
        """
        Decide whether the event opens a new batch on an existing log.

        Parent changes are compared against the log's last timestamp. Child
        changes are compared against the newest detail already in the current
        batch; with no such detail the current batch is reused.
        A gap exactly equal to the window stays in the batch.
        """
        window = self.config.batch_window
        is_parent = (event.entity_type, event.entity_id) == (log.entity_type, log.entity_id)

        if is_parent:
            return event.timestamp - log.timestamp > window

        last_detail = self._latest_detail_in_batch(log)
        if last_detail is None:
            return False
        return event.timestamp - last_detail.timestamp > window

    def _write(self, event: ChangeEvent, payload: dict, root_type: str, root_id: str) -> ActivityLogDetail:
        log = self._lock_log(root_type, root_id)

        if log is None:
            log = self._create_log(event, root_type, root_id)
            batch_no = 1
        else:
            batch_no = log.last_batch_no
            if self.should_start_new_batch(log, event):
                batch_no += 1
                logger.debug("Starting batch %s for %s#%s", batch_no, root_type, root_id)

            log.last_event_kind = event.event_kind.value
            log.last_batch_no = batch_no
            log.last_actor_id = event.actor_id
            log.timestamp = event.timestamp
            log.seen_all = False

        return self._insert_detail(log, batch_no, event, payload)

    def _lock_log(self, root_type: str, root_id: str) -> Optional[ActivityLog]:
        # FOR UPDATE holds the row for the whole read-decide-write sequence
        return self.db.query(ActivityLog).filter(
            ActivityLog.entity_type == root_type,
            ActivityLog.entity_id == root_id
        ).with_for_update().first()

    def _create_log(self, event: ChangeEvent, root_type: str, root_id: str) -> ActivityLog:
        log = ActivityLog(
            entity_type=root_type,
            entity_id=root_id,
            display_label=event.display_label(),
            last_event_kind=event.event_kind.value,
            last_batch_no=1,
            last_actor_id=event.actor_id,
            timestamp=event.timestamp,
            seen_all=False
        )
        self.db.add(log)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise _ConcurrentCreate(str(e)) from e
        return log

    def _latest_detail_in_batch(self, log: ActivityLog) -> Optional[ActivityLogDetail]:
        return self.db.query(ActivityLogDetail).filter(
            ActivityLogDetail.activity_log_id == log.id,
            ActivityLogDetail.batch_no == log.last_batch_no
        ).order_by(
            ActivityLogDetail.timestamp.desc(),
            ActivityLogDetail.id.desc()
        ).first()

    def _insert_detail(
        self,
        log: ActivityLog,
        batch_no: int,
        event: ChangeEvent,
        payload: dict
    ) -> ActivityLogDetail:
        detail = ActivityLogDetail(
            activity_log=log,
            batch_no=batch_no,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            event_kind=event.event_kind.value,
            changes=payload["diff"],
            actor_id=event.actor_id,
            timestamp=event.timestamp
        )
        self.db.add(detail)
        self.db.flush()
        return detail

