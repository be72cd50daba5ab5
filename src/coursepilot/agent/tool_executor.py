"""Dispatches tool calls registered in ``coursepilot.tools`` and wraps errors."""

import inspect
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
)

from coursepilot.tools import TOOL_REGISTRY

if TYPE_CHECKING:
    from coursepilot.core.session import Session

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


class UnknownToolError(ToolExecutionError):
    """Raised when the requested tool name is not registered."""


async def execute_tool(name: str, args: Dict[str, Any] | None, ctx: "Session") -> Any:
    """
    Look up *name* in the registry and invoke it with *args*.

    The executor is capability-agnostic: deciding whether the caller may use a tool is the loop's
    job.  Tools report "not found" conditions as ``{"error": ...}`` results; exceptions here mean
    the call itself was malformed or the tool is broken.

    Parameters
    ----------
    name:
        The registered tool name.
    args:
        Keyword arguments to pass verbatim to the tool function.  If *None*,
        an empty dict is assumed.
    ctx:
        The active session, passed as the tool's first argument.

    Returns
    -------
    Any
        Whatever the tool function returns (awaited if it is a coroutine).

    Raises
    ------
    UnknownToolError
        If the tool is missing.
    ToolExecutionError
        If its invocation raises an exception.
    """

    if args is None:
        args = {}

    descriptor = TOOL_REGISTRY.get(name)
    if descriptor is None:
        raise UnknownToolError(f"Tool '{name}' is not registered.")

    try:
        logger.debug("Executing tool '%s' with args=%s", name, args)
        result = descriptor.fn(ctx, **args)
        if inspect.isawaitable(result):
            result = await result
        return result
    except TypeError as exc:
        # Argument mismatch: give the caller a clean exception.
        logger.warning("Argument error while executing tool '%s': %s", name, exc)
        raise ToolExecutionError(f"Invalid arguments for tool '{name}': {exc}") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc
