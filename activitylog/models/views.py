"""Pydantic shapes of the grouped history view."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from activitylog.models.enums import ChangeType


class FieldChange(BaseModel):
    field: str
    label: str
    old: Any = None
    new: Any = None
    type: ChangeType


class ActorRef(BaseModel):
    """Who made a change; "System" when nobody did."""
    id: Optional[str] = None
    name: str = "System"
    email: Optional[str] = None


class ParentChange(BaseModel):
    event: str
    changes: List[FieldChange]


class ChildGroup(BaseModel):
    """All changes to one child record within a batch."""
    entity_type: str
    entity_id: str
    entity_name: str
    events: List[str]
    changes: List[FieldChange]
    related_data: Optional[Dict[str, Dict[str, Any]]] = None


class BatchGroup(BaseModel):
    batch_no: int
    timestamp: str
    timestamp_human: str
    date: str
    time: str
    changed_by: ActorRef
    parent_changes: Optional[List[ParentChange]] = None
    child_changes: Optional[List[ChildGroup]] = None


class GroupedView(BaseModel):
    """A root log with its details grouped by batch, most recent first."""
    id: Optional[int] = None
    entity_type: str
    entity_id: str
    entity_name: str
    display_label: Optional[str] = None
    last_event_kind: str
    last_batch_no: int
    total_batches: int
    last_changed_by: ActorRef
    seen_all: bool
    timestamp: str
    timestamp_human: str
    date: str
    time: str
    batches: Optional[List[BatchGroup]] = None
