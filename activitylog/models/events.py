"""The change event contract produced by whoever detects entity changes."""
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from activitylog.models.enums import EventKind
from activitylog.services.errors import ConfigurationError


def _to_str(value):
    if value is None or isinstance(value, str):
        return value
    return str(value)


class ChangeEvent(BaseModel):
    """
    One create/update/delete of a tracked entity, already diffed.

    For child entities (e.g. a line item) the root fields name the aggregate
    the change is filed under. For root entities they may be left out.
    """
    event_kind: EventKind
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    root_entity_type: Optional[str] = None
    root_entity_id: Optional[str] = None
    root_display_label: Optional[str] = None
    diff: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    actor_id: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("entity_id", "root_entity_id", "actor_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value):
        return _to_str(value)

    @field_validator("diff", mode="before")
    @classmethod
    def _normalize_diff(cls, value):
        value = value or {}
        return {
            "old": dict(value.get("old") or {}),
            "new": dict(value.get("new") or {}),
        }

    @field_validator("timestamp")
    @classmethod
    def _naive_utc(cls, value):
        # Stored timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @classmethod
    def for_parent(
        cls,
        event_kind: EventKind,
        entity_type: str,
        entity_id,
        diff: Optional[dict] = None,
        actor_id=None,
        timestamp: Optional[datetime] = None,
        display_label: Optional[str] = None,
    ) -> "ChangeEvent":
        """Event for a root entity changing itself."""
        return cls(
            event_kind=event_kind,
            entity_type=entity_type,
            entity_id=entity_id,
            root_entity_type=entity_type,
            root_entity_id=entity_id,
            root_display_label=display_label,
            diff=diff or {},
            actor_id=actor_id,
            timestamp=timestamp or datetime.now(timezone.utc).replace(tzinfo=None),
        )

    @classmethod
    def for_child(
        cls,
        event_kind: EventKind,
        entity_type: str,
        entity_id,
        root: Tuple[str, Any],
        diff: Optional[dict] = None,
        actor_id=None,
        timestamp: Optional[datetime] = None,
        root_display_label: Optional[str] = None,
    ) -> "ChangeEvent":
        """Event for a child record, filed under root = (type, id)."""
        root_type, root_id = root
        return cls(
            event_kind=event_kind,
            entity_type=entity_type,
            entity_id=entity_id,
            root_entity_type=root_type,
            root_entity_id=root_id,
            root_display_label=root_display_label,
            diff=diff or {},
            actor_id=actor_id,
            timestamp=timestamp or datetime.now(timezone.utc).replace(tzinfo=None),
        )

    @property
    def old(self) -> dict:
        return self.diff.get("old", {})

    @property
    def new(self) -> dict:
        return self.diff.get("new", {})

    def root_identity(self) -> Tuple[str, str]:
        """
        The (type, id) of the root the change is filed under.

        Raises ConfigurationError when the event cannot be filed.
        """
        if not self.entity_type or not self.entity_id:
            raise ConfigurationError(
                "Change event is missing the changed entity's type or id",
                event=self.to_payload(),
            )
        if self.timestamp is None:
            raise ConfigurationError(
                "Change event is missing its timestamp",
                event=self.to_payload(),
            )

        has_type = bool(self.root_entity_type)
        has_id = bool(self.root_entity_id)
        if has_type != has_id:
            raise ConfigurationError(
                "Change event names only half of its root entity",
                event=self.to_payload(),
            )
        if not has_type:
            return self.entity_type, self.entity_id
        return self.root_entity_type, self.root_entity_id

    def is_parent_change(self) -> bool:
        return (self.entity_type, self.entity_id) == self.root_identity()

    def display_label(self) -> str:
        if self.root_display_label:
            return self.root_display_label
        root_type, root_id = self.root_identity()
        return f"{root_type} #{root_id}"

    def has_no_changes(self) -> bool:
        return not self.old and not self.new

    def without_attributes(self, ignored) -> "ChangeEvent":
        """Copy of the event with ignored attributes stripped from the diff."""
        if not ignored:
            return self
        diff = {
            side: {k: v for k, v in values.items() if k not in ignored}
            for side, values in self.diff.items()
        }
        return self.model_copy(update={"diff": diff})

    def to_payload(self) -> dict:
        """JSON-safe dict, used for logging and the task queue."""
        return self.model_dump(mode="json")

    @classmethod
    def from_payload(cls, payload: dict) -> "ChangeEvent":
        return cls.model_validate(payload)
