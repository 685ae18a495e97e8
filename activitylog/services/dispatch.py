"""
Entry point for change producers.

dispatch() records an event right away or hands it to the task queue,
depending on ACTIVITY_LOG_ASYNC. The engine contract is the same either way.
"""
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Callable, Optional, Tuple

from sqlalchemy.orm import Session

from activitylog.config import ActivityLogConfig, get_config
from activitylog.models.enums import EventKind
from activitylog.models.events import ChangeEvent
from activitylog.services.batching import BatchingEngine, root_key

logger = logging.getLogger(__name__)

_tracking_enabled: ContextVar[bool] = ContextVar("activitylog_tracking_enabled", default=True)


def is_tracking_enabled() -> bool:
    return _tracking_enabled.get()


@contextmanager
def tracking_disabled():
    """Suppress dispatch for the duration of the block (bulk imports, fixes)."""
    token = _tracking_enabled.set(False)
    try:
        yield
    finally:
        _tracking_enabled.reset(token)


def queue_for(root: Tuple[str, str], partitions: int) -> str:
    """
    Queue name for a root entity.

    All events of one root land on the same queue; each queue is consumed by
    a single worker so per-root order is kept.
    """
    return f"activitylog.{root_key(*root) % max(1, partitions)}"


def prepare(event: ChangeEvent, config: ActivityLogConfig) -> Optional[ChangeEvent]:
    """
    Strip ignored attributes and drop updates with nothing left to log.

    Raises ConfigurationError for events that cannot be filed.
    """
    event.root_identity()
    event = event.without_attributes(config.ignore_attributes)
    if event.event_kind == EventKind.UPDATED and event.has_no_changes():
        logger.debug("Skipping empty update of %s#%s", event.entity_type, event.entity_id)
        return None
    return event


def dispatch(
    event: ChangeEvent,
    config: Optional[ActivityLogConfig] = None,
    session_factory: Optional[Callable[[], Session]] = None,
    db: Optional[Session] = None
) -> bool:
    """
    Record or enqueue a change event. Returns False when nothing was sent.

    Errors are not swallowed: a change that cannot be recorded fails the
    caller's operation.

    With db the event joins the caller's transaction and the caller commits.
    Otherwise a session from session_factory is opened and committed here.
    """
    if not is_tracking_enabled():
        return False

    config = config or get_config()
    event = prepare(event, config)
    if event is None:
        return False

    if config.async_mode:
        # Imported here so sync deployments never need a broker
        from activitylog.scheduler.tasks import record_change_event

        queue = queue_for(event.root_identity(), config.partitions)
        record_change_event.apply_async(args=[event.to_payload()], queue=queue)
        logger.debug("Queued %s of %s#%s on %s", event.event_kind.value,
                     event.entity_type, event.entity_id, queue)
        return True

    if db is not None:
        BatchingEngine(db, config).record(event, commit=False)
        return True

    if session_factory is None:
        from activitylog.database import SessionLocal
        session_factory = SessionLocal

    session = session_factory()
    try:
        BatchingEngine(session, config).record(event)
    finally:
        session.close()
    return True
