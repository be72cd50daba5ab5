"""Referential validation of proposed actions against the course snapshot."""

import logging
from datetime import datetime
from typing import (
    Any,
    Mapping,
    Optional,
)

from coursepilot.actions import (
    CONTROL_ACTIONS,
    get_handler,
    missing_required,
)
from coursepilot.core.snapshot import (
    CourseSnapshot,
    ReferenceIndex,
)

logger = logging.getLogger(__name__)


def validate_action(
    raw: Mapping[str, Any], snapshot: CourseSnapshot, now: datetime | None = None
) -> Optional[str]:
    """
    Return ``None`` if *raw* may become a pending action, otherwise a short reason.

    Only structure and references are checked: the action must be known and current, its
    required fields present (after synonym coalescing), and every id it mentions must exist in
    the active course.  Content such as point values or date ordering is not judged here.
    """
    name = raw.get("action")
    if name in CONTROL_ACTIONS:
        return None
    handler = get_handler(name)
    if handler is None:
        return f"'{name}' is not a supported action."
    if handler.descriptor.deprecated:
        return f"'{name}' is retired; use '{handler.descriptor.replacement}' instead."

    data = handler.normalize(raw, now or datetime.now())
    missing = missing_required(handler, data)
    if missing:
        return f"Missing required field(s) for {name}: {', '.join(missing)}."

    reason = handler.check(data, ReferenceIndex(snapshot))
    if reason:
        logger.info("Rejected %s proposal: %s", name, reason)
    return reason
