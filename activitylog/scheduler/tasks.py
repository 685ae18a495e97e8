"""
Celery background tasks for the activity log.
"""
import logging

from celery import Task

from activitylog.config import get_config
from activitylog.database import SessionLocal
from activitylog.models.events import ChangeEvent
from activitylog.scheduler.celery_app import app
from activitylog.services.batching import BatchingEngine
from activitylog.services.errors import PersistenceError
from activitylog.services.retention import purge_expired

logger = logging.getLogger(__name__)

RETRY_BACKOFF = [5, 10, 30]


class DatabaseTask(Task):
    """Base task with database session management."""
    _db = None
    session_factory = SessionLocal

    @property
    def db(self):
        if self._db is None:
            self._db = self.session_factory()
        return self._db

    def after_return(self, *args, **kwargs):
        if self._db is not None:
            self._db.close()
            self._db = None


@app.task(base=DatabaseTask, bind=True, max_retries=len(RETRY_BACKOFF))
def record_change_event(self, payload: dict):
    """
    Record one change event in the background.

    Storage failures are retried with back-off; malformed events are not.
    """
    event = ChangeEvent.from_payload(payload)
    try:
        BatchingEngine(self.db, get_config()).record(event)
    except PersistenceError as e:
        if self.request.retries >= self.max_retries:
            logger.error("Activity logging job failed permanently: %s | event=%s", e, payload)
            raise
        countdown = RETRY_BACKOFF[self.request.retries]
        logger.warning("Activity logging job failed, retrying in %ss: %s", countdown, e)
        raise self.retry(exc=e, countdown=countdown)


@app.task(base=DatabaseTask, bind=True)
def purge_expired_logs(self, retention_days=None):
    """Daily task: delete logs past the retention window."""
    days = retention_days if retention_days is not None else get_config().retention_days
    deleted = purge_expired(self.db, days)
    logger.info("Activity log cleanup removed %s logs", deleted)
    return deleted
