"""Converts a raw action payload into a canonical :class:`PendingAction`."""

import logging
from datetime import datetime
from typing import (
    Any,
    Mapping,
)

from coursepilot.actions import get_handler
from coursepilot.actions.legacy import RetiredAction
from coursepilot.core.schema import (
    DeprecatedAction,
    PendingAction,
)

logger = logging.getLogger(__name__)


class UnknownActionError(ValueError):
    """Raised when a payload names no registered action."""


def materialize_action(
    raw: Mapping[str, Any], now: datetime | None = None
) -> PendingAction | DeprecatedAction:
    """
    Dispatch on ``raw["action"]`` to the handler's normalizer.

    The result carries the action type's full field set with defaults filled in; extra keys the
    model supplied are kept.  Feeding a materialized action's data back in yields the same data.
    Retired action types short-circuit into a :class:`DeprecatedAction` naming the replacement.
    """
    name = raw.get("action")
    handler = get_handler(name)
    if handler is None:
        raise UnknownActionError(f"Unknown action '{name}'.")

    if handler.descriptor.deprecated:
        message = (
            handler.deprecation_message()
            if isinstance(handler, RetiredAction)
            else f"The '{name}' action is no longer supported."
        )
        logger.info("Model proposed retired action '%s'", name)
        return DeprecatedAction(
            action_type=handler.name, replacement=handler.descriptor.replacement, message=message
        )

    data = handler.normalize(raw, now or datetime.now())
    return PendingAction(action_type=handler.name, data=data)
