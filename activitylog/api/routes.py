"""API routes for reading activity logs and posting change events."""
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from activitylog.config import ActivityLogConfig, get_config
from activitylog.database import get_db
from activitylog.models.events import ChangeEvent
from activitylog.models.views import GroupedView
from activitylog.services.dispatch import dispatch
from activitylog.services.errors import ConfigurationError, PersistenceError
from activitylog.services.presenter import Presenter
from activitylog.services.queries import (
    details_for,
    get_log,
    list_logs,
    mark_as_seen,
    mark_as_unseen,
)
from activitylog.services.registry import EntityRegistry, get_registry
from activitylog.api.schemas import ErrorResponse, RecordResponse

router = APIRouter()


@router.get("/activity-logs", response_model=List[GroupedView])
def list_activity_logs(
    entity_type: Optional[str] = None,
    unseen: bool = False,
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    config: ActivityLogConfig = Depends(get_config),
    registry: EntityRegistry = Depends(get_registry)
):
    """List root logs, most recently changed first (summaries, no batches)."""
    presenter = Presenter(config, registry=registry, db=db)
    logs = list_logs(db, entity_type=entity_type, unseen_only=unseen, limit=limit, offset=offset)
    return [presenter.present(log) for log in logs]


@router.get("/activity-logs/{entity_type}/{entity_id}", response_model=GroupedView)
def get_activity_log(
    entity_type: str,
    entity_id: str,
    db: Session = Depends(get_db),
    config: ActivityLogConfig = Depends(get_config),
    registry: EntityRegistry = Depends(get_registry)
):
    """Full history of one entity, grouped by batch."""
    log = get_log(db, entity_type, entity_id)
    if not log:
        raise HTTPException(status_code=404, detail="Activity log not found")

    presenter = Presenter(config, registry=registry, db=db)
    return presenter.present(log, details_for(db, log))


@router.post("/activity-logs/events", response_model=RecordResponse, status_code=status.HTTP_201_CREATED, responses={
    422: {"model": ErrorResponse, "description": "Event cannot be filed"},
    503: {"model": ErrorResponse, "description": "Event could not be stored"}
})
def record_event(
    event: ChangeEvent,
    response: Response,
    db: Session = Depends(get_db),
    config: ActivityLogConfig = Depends(get_config)
):
    """
    Record a change event.

    201 when written, 202 when handed to the task queue, 200 when there was
    nothing to record.
    """
    try:
        sent = dispatch(event, config=config, db=db)
        if sent and not config.async_mode:
            db.commit()
    except ConfigurationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail={"message": e.message})
    except PersistenceError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail={"message": e.message})
    except SQLAlchemyError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail={"message": str(e)})

    if not sent:
        response.status_code = status.HTTP_200_OK
        return RecordResponse(recorded=False)
    if config.async_mode:
        response.status_code = status.HTTP_202_ACCEPTED
        return RecordResponse(recorded=False, queued=True)
    return RecordResponse(recorded=True)


@router.put("/activity-logs/{log_id}/seen", response_model=GroupedView)
def mark_log_seen(
    log_id: int,
    db: Session = Depends(get_db),
    config: ActivityLogConfig = Depends(get_config),
    registry: EntityRegistry = Depends(get_registry)
):
    """Mark all changes of a log as reviewed."""
    log = mark_as_seen(db, log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Activity log not found")
    return Presenter(config, registry=registry, db=db).present(log)


@router.put("/activity-logs/{log_id}/unseen", response_model=GroupedView)
def mark_log_unseen(
    log_id: int,
    db: Session = Depends(get_db),
    config: ActivityLogConfig = Depends(get_config),
    registry: EntityRegistry = Depends(get_registry)
):
    log = mark_as_unseen(db, log_id)
    if not log:
        raise HTTPException(status_code=404, detail="Activity log not found")
    return Presenter(config, registry=registry, db=db).present(log)
