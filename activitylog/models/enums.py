"""Enums for the activity log - the valid event kinds and change tags."""
from enum import Enum


class EventKind(str, Enum):
    """What happened to a tracked entity. No other kinds are recorded."""
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ChangeType(str, Enum):
    """How a single field change is tagged in the presented view."""
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
