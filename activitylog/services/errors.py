"""Errors raised by the activity log write and read paths."""
from typing import Optional


class ActivityLogError(Exception):
    """Base class for activity log failures."""

    def __init__(self, message: str, event: Optional[dict] = None):
        self.message = message
        self.event = event
        super().__init__(self.message)


class ConfigurationError(ActivityLogError):
    """
    A change event is missing the identity fields needed to file it.

    Raised before anything is written. The event producer must be fixed.
    """


class PersistenceError(ActivityLogError):
    """
    The log upsert + detail insert failed at the storage level.

    Nothing from the attempt survives. When the engine owned the session the
    whole transaction was rolled back; otherwise only its savepoint was, and
    the caller decides what happens to the rest.
    """


class PresentationWarning(UserWarning):
    """A related-record lookup failed; that group is shown without it."""
