"""
Presentation of activity logs - the read path.

Rebuilds a root log and its details into a batch-grouped view: parent changes
apart from child changes, child changes clustered per record, every field
labelled and formatted, and related records attached where configured.
Nothing here writes to storage.
"""
import logging
import warnings
from collections import OrderedDict
from datetime import datetime, timezone
from itertools import groupby
from typing import Iterable, List, Optional

from sqlalchemy.orm import Session

from activitylog.config import ActivityLogConfig
from activitylog.models.activity import ActivityLog, ActivityLogDetail
from activitylog.models.enums import ChangeType, EventKind
from activitylog.models.views import (
    ActorRef,
    BatchGroup,
    ChildGroup,
    FieldChange,
    GroupedView,
    ParentChange,
)
from activitylog.services.errors import PresentationWarning
from activitylog.services.formatting import (
    field_label,
    format_date,
    format_time,
    format_timestamp,
    format_value,
    time_ago,
)
from activitylog.services.registry import EntityRegistry

logger = logging.getLogger(__name__)


class Presenter:
    """Turns stored logs into grouped, labelled history views."""

    def __init__(
        self,
        config: ActivityLogConfig,
        registry: Optional[EntityRegistry] = None,
        db: Optional[Session] = None,
    ):
        self.config = config
        self.registry = registry
        self.db = db
        self._actors = {}

    def present(
        self,
        log: ActivityLog,
        details: Optional[Iterable[ActivityLogDetail]] = None,
        now: Optional[datetime] = None,
    ) -> GroupedView:
        """
        Build the grouped view of one root log.

        Batches are only included when details are passed in. Relative times
        are measured against `now`, which defaults to the current UTC clock.
        Pass `now` explicitly for a repeatable view: two calls with the same
        inputs and `now` give the same result.
        """
        now = now or datetime.now(timezone.utc).replace(tzinfo=None)
        batches = None
        if details is not None:
            batches = self.group_batches(log, details, now)

        return GroupedView(
            id=log.id,
            entity_type=log.entity_type,
            entity_id=log.entity_id,
            entity_name=self._entity_name(log.entity_type),
            display_label=log.display_label,
            last_event_kind=log.last_event_kind,
            last_batch_no=log.last_batch_no,
            total_batches=log.last_batch_no,
            last_changed_by=self.actor_ref(log.last_actor_id),
            seen_all=bool(log.seen_all),
            timestamp=format_timestamp(log.timestamp),
            timestamp_human=time_ago(log.timestamp, now),
            date=format_date(log.timestamp),
            time=format_time(log.timestamp),
            batches=batches,
        )

    def group_batches(
        self,
        log: ActivityLog,
        details: Iterable[ActivityLogDetail],
        now: datetime,
    ) -> List[BatchGroup]:
        """One group per batch number, most recent batch first."""
        ordered = sorted(details, key=lambda d: d.batch_no, reverse=True)
        return [
            self.present_batch(log, list(batch_details), now)
            for _, batch_details in groupby(ordered, key=lambda d: d.batch_no)
        ]

    def present_batch(
        self,
        log: ActivityLog,
        details: List[ActivityLogDetail],
        now: datetime,
    ) -> BatchGroup:
        # Chronological within the batch; the newest change carries the header
        details = sorted(details, key=_chronological)
        newest = details[-1]

        parent_changes = []
        children = OrderedDict()
        for detail in details:
            if detail.is_parent_change(log):
                parent_changes.append(ParentChange(
                    event=_event_kind(detail),
                    changes=self.format_changes(detail),
                ))
                continue

            key = (detail.entity_type, detail.entity_id)
            group = children.get(key)
            if group is None:
                group = ChildGroup(
                    entity_type=detail.entity_type,
                    entity_id=detail.entity_id,
                    entity_name=self._entity_name(detail.entity_type),
                    events=[],
                    changes=[],
                    related_data=self.related_data(detail.entity_type, detail.entity_id),
                )
                children[key] = group
            group.events.append(_event_kind(detail))
            group.changes.extend(self.format_changes(detail))

        return BatchGroup(
            batch_no=newest.batch_no,
            timestamp=format_timestamp(newest.timestamp),
            timestamp_human=time_ago(newest.timestamp, now),
            date=format_date(newest.timestamp),
            time=format_time(newest.timestamp),
            changed_by=self.actor_ref(newest.actor_id),
            parent_changes=parent_changes or None,
            child_changes=list(children.values()) or None,
        )

    def format_changes(self, detail: ActivityLogDetail) -> List[FieldChange]:
        """
        Field-level changes of one detail.

        created exposes new values as added, deleted exposes old values as
        removed, anything else pairs old and new as modified.
        """
        kind = _event_kind(detail)
        old = detail.old_values
        new = detail.new_values

        if kind == EventKind.CREATED.value:
            return [
                self._field_change(name, None, value, ChangeType.ADDED)
                for name, value in new.items()
            ]
        if kind == EventKind.DELETED.value:
            return [
                self._field_change(name, value, None, ChangeType.REMOVED)
                for name, value in old.items()
            ]
        return [
            self._field_change(name, old.get(name), value, ChangeType.MODIFIED)
            for name, value in new.items()
        ]

    def actor_ref(self, actor_id: Optional[str]) -> ActorRef:
        """
        Name and email of the actor behind a change.

        No actor means "System". An actor that cannot be looked up is shown
        by id.
        """
        if actor_id is None:
            return ActorRef()
        if actor_id in self._actors:
            return self._actors[actor_id]

        actor = None
        if self.registry is not None and self.db is not None:
            try:
                actor = self.registry.load_actor(self.db, actor_id)
            except Exception as e:
                self._warn(f"Could not load actor {actor_id}: {e}")

        if actor is None:
            ref = ActorRef(id=actor_id, name=actor_id)
        else:
            ref = ActorRef(
                id=actor_id,
                name=actor.get("name") or actor_id,
                email=actor.get("email"),
            )
        self._actors[actor_id] = ref
        return ref

    def related_data(self, entity_type: str, entity_id: str) -> Optional[dict]:
        """
        Snapshot of the configured relations of a live child record.

        None when the record is gone, nothing is configured, or the lookup
        fails. A failure never stops the rest of the view.
        """
        if self.registry is None or self.db is None:
            return None

        relations = self.registry.describe_relations(entity_type)
        if not relations:
            return None

        try:
            record = self.registry.load(self.db, entity_type, entity_id)
        except Exception as e:
            self._warn(f"Could not load {entity_type}#{entity_id}: {e}")
            return None
        if record is None:
            return None

        data = {}
        for relation in relations:
            try:
                values = relation.read(record)
            except Exception as e:
                self._warn(f"Could not read {entity_type}#{entity_id}.{relation.name}: {e}")
                continue
            if values is not None:
                data[relation.name] = values
        return data or None

    def _field_change(self, name, old, new, change_type: ChangeType) -> FieldChange:
        return FieldChange(
            field=name,
            label=field_label(self.config, name),
            old=format_value(self.config, name, old),
            new=format_value(self.config, name, new),
            type=change_type,
        )

    def _entity_name(self, entity_type: str) -> str:
        if self.registry is not None:
            return self.registry.display_name(entity_type)
        return entity_type.rsplit(".", 1)[-1]

    def _warn(self, message: str) -> None:
        logger.warning(message)
        warnings.warn(message, PresentationWarning, stacklevel=3)


def present(
    log: ActivityLog,
    details: Optional[Iterable[ActivityLogDetail]],
    config: ActivityLogConfig,
    registry: Optional[EntityRegistry] = None,
    db: Optional[Session] = None,
    now: Optional[datetime] = None,
) -> GroupedView:
    """
    Functional shorthand for Presenter(config, registry, db).present(...).

    Only repeatable when `now` is given; otherwise "5 minutes ago" style
    fields follow the clock.
    """
    return Presenter(config, registry=registry, db=db).present(log, details, now=now)


def _event_kind(detail: ActivityLogDetail) -> str:
    kind = detail.event_kind
    known = {k.value for k in EventKind}
    return kind if kind in known else EventKind.UPDATED.value


def _chronological(detail: ActivityLogDetail):
    return (detail.timestamp, detail.id or 0)
