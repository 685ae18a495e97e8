"""
Retention cleanup.

Deletes root logs whose last change is older than the retention window,
together with their details, so no detail is ever left without its log.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activitylog.models.activity import ActivityLog, ActivityLogDetail
from activitylog.services.errors import PersistenceError

logger = logging.getLogger(__name__)


def retention_cutoff(retention_days: int, now: Optional[datetime] = None) -> datetime:
    return (now or datetime.now(timezone.utc).replace(tzinfo=None)) - timedelta(days=retention_days)


def purge_expired(
    db: Session,
    retention_days: Optional[int],
    now: Optional[datetime] = None,
    chunk_size: int = 100
) -> int:
    """
    Delete logs last changed before the cutoff; returns how many were removed.

    A retention of None or 0 disables cleanup. Each chunk commits on its own,
    details first, then their logs.
    """
    if not retention_days or retention_days <= 0:
        logger.info("Activity log cleanup is disabled (retention_days=%s)", retention_days)
        return 0

    cutoff = retention_cutoff(retention_days, now)
    deleted = 0

    while True:
        ids = [
            row.id for row in db.query(ActivityLog.id).filter(
                ActivityLog.timestamp < cutoff
            ).order_by(ActivityLog.id).limit(chunk_size).all()
        ]
        if not ids:
            break

        try:
            db.query(ActivityLogDetail).filter(
                ActivityLogDetail.activity_log_id.in_(ids)
            ).delete(synchronize_session=False)
            db.query(ActivityLog).filter(
                ActivityLog.id.in_(ids)
            ).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Activity log cleanup failed after %s logs: %s", deleted, e)
            raise PersistenceError(f"Activity log cleanup failed: {e}") from e

        deleted += len(ids)
        logger.info("Deleted %s activity logs older than %s", len(ids), cutoff)

    if deleted == 0:
        logger.info("No activity logs found older than %s days", retention_days)
    return deleted
