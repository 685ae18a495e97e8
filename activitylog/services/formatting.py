"""Field labels, value formatting and relative times for the history view."""
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from activitylog.config import ActivityLogConfig

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%b %d, %Y"
TIME_FORMAT = "%I:%M %p"

_UNITS = (
    ("year", timedelta(days=365)),
    ("month", timedelta(days=30)),
    ("week", timedelta(weeks=1)),
    ("day", timedelta(days=1)),
    ("hour", timedelta(hours=1)),
    ("minute", timedelta(minutes=1)),
    ("second", timedelta(seconds=1)),
)


def field_label(config: ActivityLogConfig, field: str) -> str:
    """Configured label, else the machine name un-slugified ("client_po" -> "Client po")."""
    label = config.field_labels.get(field)
    if label:
        return label
    text = field.replace("_", " ").strip()
    return text[:1].upper() + text[1:]


def format_value(config: ActivityLogConfig, field: str, value: Any) -> Any:
    """
    Render money-like fields with fixed precision and *_at fields as dates.

    Anything that cannot be parsed is returned untouched.
    """
    if value is None:
        return None

    if field in config.money_fields:
        try:
            amount = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return value
        return f"{amount:,.{config.decimal_places}f}"

    if field.endswith(config.datetime_suffixes):
        moment = _parse_datetime(value)
        if moment is not None:
            return moment.strftime(config.datetime_format)

    return value


def _parse_datetime(value) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    return None


def format_timestamp(moment: Optional[datetime]) -> str:
    return moment.strftime(TIMESTAMP_FORMAT) if moment else ""


def format_date(moment: Optional[datetime]) -> str:
    """Calendar date like "Jan 05, 2026"."""
    return moment.strftime(DATE_FORMAT) if moment else ""


def format_time(moment: Optional[datetime]) -> str:
    """Clock time like "10:00 AM"."""
    return moment.strftime(TIME_FORMAT) if moment else ""


def time_ago(moment: Optional[datetime], now: datetime) -> str:
    """Relative time like "5 minutes ago" or "2 days from now"."""
    if moment is None:
        return ""
    delta = now - moment
    future = delta < timedelta(0)
    delta = abs(delta)

    if delta < timedelta(seconds=1):
        return "just now"

    for unit, size in _UNITS:
        if delta >= size:
            count = int(delta // size)
            noun = unit if count == 1 else f"{unit}s"
            return f"{count} {noun} from now" if future else f"{count} {noun} ago"
    return "just now"
