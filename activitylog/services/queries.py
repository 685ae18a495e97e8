"""Lookups over stored activity logs and the seen/unseen flag."""
from typing import List, Optional

from sqlalchemy.orm import Session

from activitylog.models.activity import ActivityLog, ActivityLogDetail


def get_log(db: Session, entity_type: str, entity_id) -> Optional[ActivityLog]:
    """The root log of an entity, if it has ever changed."""
    return db.query(ActivityLog).filter(
        ActivityLog.entity_type == entity_type,
        ActivityLog.entity_id == str(entity_id)
    ).first()


def list_logs(
    db: Session,
    entity_type: Optional[str] = None,
    unseen_only: bool = False,
    limit: int = 20,
    offset: int = 0
) -> List[ActivityLog]:
    """Root logs, most recently changed first."""
    query = db.query(ActivityLog)
    if entity_type:
        query = query.filter(ActivityLog.entity_type == entity_type)
    if unseen_only:
        query = query.filter(ActivityLog.seen_all.is_(False))
    return query.order_by(
        ActivityLog.timestamp.desc(),
        ActivityLog.id.desc()
    ).offset(offset).limit(limit).all()


def details_for(db: Session, log: ActivityLog, batch_no: Optional[int] = None) -> List[ActivityLogDetail]:
    """Details of a log, newest batch and newest change first."""
    query = db.query(ActivityLogDetail).filter(ActivityLogDetail.activity_log_id == log.id)
    if batch_no is not None:
        query = query.filter(ActivityLogDetail.batch_no == batch_no)
    return query.order_by(
        ActivityLogDetail.batch_no.desc(),
        ActivityLogDetail.timestamp.desc(),
        ActivityLogDetail.id.desc()
    ).all()


def mark_as_seen(db: Session, log_id: int) -> Optional[ActivityLog]:
    """Flag every change of a log as reviewed. Returns None for unknown ids."""
    return _set_seen(db, log_id, True)


def mark_as_unseen(db: Session, log_id: int) -> Optional[ActivityLog]:
    return _set_seen(db, log_id, False)


def _set_seen(db: Session, log_id: int, seen: bool) -> Optional[ActivityLog]:
    log = db.get(ActivityLog, log_id)
    if log is None:
        return None
    if seen:
        log.mark_as_seen()
    else:
        log.mark_as_unseen()
    db.commit()
    db.refresh(log)
    return log
