"""
Tool registry for coursepilot.

Tools are the read-only lookups the model may call to learn real identifiers and data.  Each tool
is a function registered with :func:`register_tool`; its first positional parameter receives the
active :class:`~coursepilot.core.session.Session` and the remaining keyword parameters are the
arguments the model supplies.  The registry is the single source of truth for the prompt builder
(parameter lists, descriptions) and for the loop's read-only allowlist (``student_safe``).
"""

import inspect
import logging
from dataclasses import dataclass
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    Mapping,
    TypedDict,
)

logger = logging.getLogger(__name__)


class ParameterInfo(TypedDict):
    """
    Information about a tool parameter.
    """

    type: str
    required: bool


class ToolSchema(TypedDict):
    """
    Schema for a tool function
    """

    description: str
    parameters: Mapping[str, ParameterInfo]
    student_safe: bool


@dataclass(frozen=True)
class ToolDescriptor:
    """Immutable registry entry for one tool."""

    name: str
    description: str
    fn: Callable
    student_safe: bool = False


TOOL_REGISTRY: Dict[str, ToolDescriptor] = {}
"""Global registry of tool descriptors."""


def register_tool(name: str, *, student_safe: bool = False, description: str | None = None) -> Callable:
    """
    Register a tool function under *name*.

    Used as a decorator::

        @register_tool("list_assignments", student_safe=True)
        def list_assignments(ctx, status: str | None = None):
            ...

    Parameters
    ----------
    name: str
        Unique tool name, as the model will write it in ``tool_call`` messages.
    student_safe: bool
        Whether read-only callers may invoke the tool.
    description: str | None
        Model-facing description; defaults to the first line of the function docstring.

    Raises
    ------
    ValueError
        If a tool with the same name is already registered.
    """
    if name in TOOL_REGISTRY:
        raise ValueError(f"Tool '{name}' is already registered.")
    logger.debug("Registering tool '%s'", name)

    def wrapper(fn: Callable) -> Callable:
        doc = description or (inspect.getdoc(fn) or "").split("\n", 1)[0]
        TOOL_REGISTRY[name] = ToolDescriptor(
            name=name, description=doc, fn=fn, student_safe=student_safe
        )
        return fn

    return wrapper


def _parameters(fn: Callable) -> Dict[str, ParameterInfo]:
    sig = inspect.signature(fn)
    params: Dict[str, ParameterInfo] = {}
    # Skip the session parameter
    for param_name, param in list(sig.parameters.items())[1:]:
        annotation = param.annotation
        if annotation is inspect.Parameter.empty:
            param_type_name = "any"
        elif isinstance(annotation, str):
            param_type_name = annotation
        else:
            param_type_name = getattr(annotation, "__name__", str(annotation))
        params[param_name] = ParameterInfo(
            type=param_type_name.replace("typing.", ""),
            required=param.default == inspect.Parameter.empty,
        )
    return params


def get_tool_schemas(names: Iterable[str] | None = None) -> Mapping[str, ToolSchema]:
    """Extract parameter information from registered tools (optionally only *names*)."""
    wanted = set(names) if names is not None else None
    tool_schemas: Dict[str, ToolSchema] = {}
    for name, desc in TOOL_REGISTRY.items():
        if wanted is not None and name not in wanted:
            continue
        tool_schemas[name] = {
            "description": desc.description,
            "parameters": _parameters(desc.fn),
            "student_safe": desc.student_safe,
        }
    return tool_schemas


def student_safe_tools() -> FrozenSet[str]:
    """Names of the tools read-only callers may use."""
    return frozenset(name for name, desc in TOOL_REGISTRY.items() if desc.student_safe)


def is_tool(name: object) -> bool:
    return isinstance(name, str) and name in TOOL_REGISTRY


# Importing the tool modules registers their tools.
from coursepilot.tools import (  # noqa: E402  pylint: disable=wrong-import-position
    course_tools,
    documents,
)

__all__ = [
    "TOOL_REGISTRY",
    "ToolDescriptor",
    "ToolSchema",
    "ParameterInfo",
    "register_tool",
    "get_tool_schemas",
    "student_safe_tools",
    "is_tool",
    "course_tools",
    "documents",
]
