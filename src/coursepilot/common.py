"""Common utility functions for the project."""

import uuid
from datetime import (
    datetime,
    timedelta,
)
from enum import Enum
from typing import Any

LOCAL_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M"


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def new_id() -> str:
    """Return a fresh record identifier."""
    return str(uuid.uuid4())


def now_local() -> datetime:
    """Current local wall-clock time, naive and truncated to the minute."""
    return datetime.now().replace(second=0, microsecond=0)


def to_local_timestamp(value: datetime) -> str:
    """Render *value* as a local wall-clock timestamp with no offset suffix."""
    if value.tzinfo is not None:
        value = value.astimezone().replace(tzinfo=None)
    return value.strftime(LOCAL_TIMESTAMP_FORMAT)


def normalize_timestamp(value: Any) -> Any:
    """
    Coerce an ISO-8601 string to local wall-clock form.

    Offsets (``Z``, ``+02:00``) are converted to local time and dropped.  Values that do not parse
    are returned untouched; deciding whether a date makes sense is left to the human reviewer.
    """
    if not isinstance(value, str) or not value.strip():
        return value
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return value
    return to_local_timestamp(parsed)


def days_from_now(days: int, now: datetime | None = None) -> str:
    """Local wall-clock timestamp *days* after *now*."""
    return to_local_timestamp((now or now_local()) + timedelta(days=days))
