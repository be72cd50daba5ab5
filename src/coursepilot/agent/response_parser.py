"""
Turns one raw model reply into a single canonical message.

Models are asked for exactly one JSON object of the shape::

    {"type": "answer", "text": ...}
    {"type": "tool_call", "tool": ..., "params": {...}, "step_label": ...}
    {"type": "ask_user", "question": ...}
    {"type": "action", "action": ..., ...fields}

but routinely wrap it in prose, emit several objects, or use the tool/action name as the
``type``.  :func:`interpret_reply` extracts the best candidate and passes it through
:data:`REPAIR_RULES`, an ordered tuple of small pure functions.  New deviations are handled by
appending a rule, not by editing the existing ones.
"""

import json
import logging
import re
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Tuple,
)

from coursepilot.actions import (
    CONTROL_ACTIONS,
    ENVELOPE_KEYS,
    PIPELINE,
    is_action,
)
from coursepilot.tools import is_tool

logger = logging.getLogger(__name__)

MESSAGE_TYPES = ("answer", "tool_call", "ask_user", "action")

# Highest first.
_PRIORITY = {"tool_call": 0, "action": 1, "ask_user": 2, "answer": 3}
_UNRANKED = len(_PRIORITY)

_FENCE = re.compile(r"^\s*```(?:json|JSON)?\s*(.*?)\s*```\s*$", re.DOTALL)


class ReplyParseError(RuntimeError):
    """Raised by the scanner when a brace region cannot be delimited."""


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------
def _skip_string(s: str, i: int) -> int:
    """Given s[i] == '"', return the index just past the closing quote."""
    i += 1
    esc = False
    while i < len(s):
        ch = s[i]
        if esc:
            esc = False
        elif ch == "\\":
            esc = True
        elif ch == '"':
            return i + 1
        i += 1
    raise ReplyParseError("unterminated string literal")


def _find_matching_brace(s: str, i: int) -> int:
    """Given s[i] == '{', return index just past its matching '}'."""
    depth = 0
    while i < len(s):
        ch = s[i]
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
        elif ch == '"':
            i = _skip_string(s, i)
            continue
        i += 1
    raise ReplyParseError("unbalanced braces")


def _load_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def top_level_objects(text: str) -> List[Dict[str, Any]]:
    """Every top-level balanced ``{...}`` region of *text* that parses to a JSON object."""
    found: List[Dict[str, Any]] = []
    i = 0
    while i < len(text):
        if text[i] != "{":
            i += 1
            continue
        try:
            end = _find_matching_brace(text, i)
        except ReplyParseError:
            # No balanced region starts here; a later brace may still open one.
            i += 1
            continue
        obj = _load_object(text[i:end])
        if obj is not None:
            found.append(obj)
            i = end
        else:
            i += 1
    return found


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------
def effective_type(obj: Dict[str, Any]) -> Optional[str]:
    """Message type *obj* will have after repair, used for ranking."""
    declared = obj.get("type")
    if declared in MESSAGE_TYPES:
        if declared == "tool_call" and is_action(obj.get("tool")):
            return "action"
        return declared
    if isinstance(declared, str):
        if is_tool(declared):
            return "tool_call"
        if declared == PIPELINE or is_action(declared) or declared in CONTROL_ACTIONS:
            return "action"
        return None
    if "action" in obj:
        return "action"
    if "tool" in obj:
        return "tool_call"
    if "answer" in obj:
        return "answer"
    return None


def pick_candidate(objects: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Highest-priority object; ties go to the earliest."""
    best: Optional[Tuple[int, int]] = None
    for pos, obj in enumerate(objects):
        rank = _PRIORITY.get(effective_type(obj) or "", _UNRANKED)
        if best is None or rank < best[0]:
            best = (rank, pos)
    return objects[best[1]] if best is not None else None


# ---------------------------------------------------------------------------
# Repair rules
# ---------------------------------------------------------------------------
def _rest(msg: Dict[str, Any], *drop: str) -> Dict[str, Any]:
    return {k: v for k, v in msg.items() if k not in ENVELOPE_KEYS and k not in drop}


def _params_of(msg: Dict[str, Any], *drop: str) -> Dict[str, Any]:
    for key in ("params", "args", "arguments", "parameters"):
        if isinstance(msg.get(key), dict):
            return dict(msg[key])
    return _rest(msg, "params", "args", "arguments", "parameters", "step_label", *drop)


def repair_missing_type(msg: Dict[str, Any]) -> Dict[str, Any]:
    """``{"action": X}`` / ``{"tool": X}`` / ``{"answer": X}`` without a ``type``."""
    if "type" in msg:
        return msg
    if "action" in msg:
        return {"type": "action", **msg}
    if "tool" in msg:
        return {"type": "tool_call", **msg}
    if isinstance(msg.get("answer"), str):
        return {"type": "answer", "text": msg["answer"]}
    return msg


def repair_tool_name_as_type(msg: Dict[str, Any]) -> Dict[str, Any]:
    name = msg.get("type")
    if name in MESSAGE_TYPES or not is_tool(name):
        return msg
    return {
        "type": "tool_call",
        "tool": name,
        "params": _params_of(msg),
        "step_label": msg.get("step_label") or "",
    }


def repair_pipeline_as_type(msg: Dict[str, Any]) -> Dict[str, Any]:
    if msg.get("type") != PIPELINE:
        return msg
    steps = msg.get("steps")
    if steps is None:
        steps = msg.get("actions")
    return {"type": "action", "action": PIPELINE, **_rest(msg, "steps", "actions"), "steps": steps or []}


def repair_action_name_as_type(msg: Dict[str, Any]) -> Dict[str, Any]:
    name = msg.get("type")
    if name in MESSAGE_TYPES or not (is_action(name) or name in CONTROL_ACTIONS):
        return msg
    return {"type": "action", "action": name, **_rest(msg)}


def repair_tool_call_fields(msg: Dict[str, Any]) -> Dict[str, Any]:
    if msg.get("type") != "tool_call":
        return msg
    tool = msg.get("tool") or msg.get("name")
    label = msg.get("step_label") or msg.get("label") or msg.get("stepLabel") or ""
    return {
        "type": "tool_call",
        "tool": tool,
        "params": _params_of(msg, "tool", "name", "label", "stepLabel"),
        "step_label": label,
    }


def repair_tool_call_naming_action(msg: Dict[str, Any]) -> Dict[str, Any]:
    """A ``tool_call`` whose ``tool`` is really an action name."""
    if msg.get("type") != "tool_call" or not is_action(msg.get("tool")):
        return msg
    return {"type": "action", "action": msg["tool"], **(msg.get("params") or {})}


def repair_answer_fields(msg: Dict[str, Any]) -> Dict[str, Any]:
    if msg.get("type") != "answer" or isinstance(msg.get("text"), str):
        return msg
    for key in ("message", "content", "answer"):
        if isinstance(msg.get(key), str):
            return {"type": "answer", "text": msg[key]}
    return msg


def repair_ask_user_fields(msg: Dict[str, Any]) -> Dict[str, Any]:
    if msg.get("type") != "ask_user" or isinstance(msg.get("question"), str):
        return msg
    for key in ("text", "message"):
        if isinstance(msg.get(key), str):
            return {"type": "ask_user", "question": msg[key]}
    return msg


RepairRule = Callable[[Dict[str, Any]], Dict[str, Any]]

REPAIR_RULES: Tuple[RepairRule, ...] = (
    repair_missing_type,
    repair_tool_name_as_type,
    repair_pipeline_as_type,
    repair_action_name_as_type,
    repair_tool_call_fields,
    repair_tool_call_naming_action,
    repair_answer_fields,
    repair_ask_user_fields,
)


def repair(msg: Dict[str, Any]) -> Dict[str, Any]:
    for rule in REPAIR_RULES:
        msg = rule(msg)
    return msg


def _is_canonical(msg: Dict[str, Any]) -> bool:
    kind = msg.get("type")
    if kind == "answer":
        return isinstance(msg.get("text"), str)
    if kind == "tool_call":
        return isinstance(msg.get("tool"), str) and isinstance(msg.get("params"), dict)
    if kind == "ask_user":
        return isinstance(msg.get("question"), str)
    if kind == "action":
        return isinstance(msg.get("action"), str)
    return False


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------
def interpret_reply(raw: str) -> Optional[Dict[str, Any]]:
    """
    Extract the single highest-priority structured message from *raw*.

    Returns the repaired canonical message, or ``None`` when no usable structure was found.
    """
    if not isinstance(raw, str) or not raw.strip():
        return None

    text = raw.strip()
    fenced = _FENCE.match(text)
    if fenced:
        text = fenced.group(1)

    candidate = _load_object(text)
    if candidate is None:
        candidate = pick_candidate(top_level_objects(text))
    if candidate is None:
        logger.debug("No JSON object found in reply: %.200s", raw)
        return None

    message = repair(candidate)
    if not _is_canonical(message):
        logger.debug("Unusable message after repair: %s", message)
        return None
    return message
