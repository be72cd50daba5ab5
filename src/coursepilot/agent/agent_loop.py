"""
Main orchestration loop for coursepilot.

:func:`run_ai_loop` drives one turn: it calls the model, interprets the reply and either stops on
a terminal message (answer, clarifying question, pending action) or runs a lookup tool and feeds
the result back.  It owns the step counter and is the only component that calls the model.
Capability is enforced here, in code: read-only callers can only reach the student-safe tools
and can never produce an action.

:func:`send_message` wraps a turn with the bookkeeping around it (context, prompt, resuming an
unanswered clarifying question, audit trail).
"""

import json
import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
    Tuple,
)

from coursepilot.actions import (
    EDIT_PENDING_ACTION,
    ENVELOPE_KEYS,
    get_handler,
    is_blank,
)
from coursepilot.agent.context_builder import build_context
from coursepilot.agent.llm_client import (
    BaseLLMClient,
    LLMRequestError,
    load_llm_client,
)
from coursepilot.agent.materializer import materialize_action
from coursepilot.agent.prompt_builder import build_system_prompt
from coursepilot.agent.response_parser import interpret_reply
from coursepilot.agent.tool_executor import (
    ToolExecutionError,
    UnknownToolError,
    execute_tool,
)
from coursepilot.agent.validator import validate_action
from coursepilot.config import settings
from coursepilot.core.schema import (
    ActionMessage,
    AskUserMessage,
    DeprecatedAction,
    ToolCall,
    ToolStepMessage,
    TurnOutcome,
    TurnRecord,
)
from coursepilot.memory.audit_log import save_turn
from coursepilot.tools import (
    is_tool,
    student_safe_tools,
)

if TYPE_CHECKING:
    from coursepilot.core.session import Session

logger = logging.getLogger(__name__)

History = List[Dict[str, Any]]

FORMAT_CORRECTION = (
    "Your last reply was not a single valid JSON object. Reply again with exactly one JSON object "
    'of type "answer", "tool_call", "ask_user" or "action" and no other text.'
)
READ_ONLY_TOOL_REFUSAL = (
    "Sorry, I can't look that up for you. That information is only available to instructors and TAs."
)
READ_ONLY_ACTION_REFUSAL = (
    "Sorry, I can't make changes to the course for you. Only instructors and TAs can do that, "
    "but I'm happy to help you find information."
)
UNKNOWN_TOOL_MESSAGE = "Sorry, I tried to use a lookup ('{tool}') that doesn't exist. Please try rephrasing."
UNKNOWN_ACTION_MESSAGE = "Sorry, '{action}' isn't a change I'm able to make."
VALIDATION_MESSAGE = "I couldn't prepare that change: {reason}"
NO_DRAFT_MESSAGE = "There is no pending draft to edit. Tell me what you'd like to create instead."
DRAFT_EDITED_MESSAGE = "I've updated the pending draft. Review it and confirm when ready."
LLM_ERROR_MESSAGE = "Sorry, I encountered an error reaching the AI service. Please try again in a moment."
EXHAUSTED_MESSAGE = (
    "Sorry, I couldn't finish that within {steps} steps. Please try a more specific request."
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + f"... [truncated {len(text) - limit} characters]"


def _split_inline(result: Any) -> Tuple[Any, Any, List[Dict[str, str]]]:
    """
    Separate inline document bytes from a tool result.

    Returns ``(for_model, for_thread, attachments)``; the bytes travel only as an attachment.
    """
    if not (isinstance(result, Mapping) and isinstance(result.get("inlineData"), str)):
        return result, result, []
    rest = {k: v for k, v in result.items() if k != "inlineData"}
    attachment = {
        "mimeType": str(result.get("mimeType") or "application/octet-stream"),
        "data": result["inlineData"],
        "name": str(result.get("name") or "document"),
    }
    for_model = dict(rest, note="The document is attached to this message.")
    for_thread = dict(rest, inlineBytes=len(result["inlineData"]) * 3 // 4)
    return for_model, for_thread, [attachment]


def _finish(session: "Session", kind: str, steps: int, text: str, detail: str | None = None) -> TurnOutcome:
    idx = session.thread.add_assistant(text)
    return TurnOutcome(kind=kind, steps=steps, message_index=idx, detail=detail)


# ---------------------------------------------------------------------------
# Terminal handlers
# ---------------------------------------------------------------------------
def _handle_edit(session: "Session", msg: Mapping[str, Any], steps: int) -> TurnOutcome:
    changes = msg.get("changes")
    latest = session.thread.latest_pending_action()
    if latest is None:
        return _finish(session, "error", steps, NO_DRAFT_MESSAGE, "no pending action")
    if isinstance(changes, Mapping):
        # An edit can never change which action the draft is.
        changes = {k: v for k, v in changes.items() if k not in ENVELOPE_KEYS}
    if not isinstance(changes, Mapping) or not changes:
        return _finish(session, "error", steps, "I couldn't tell what to change in the draft.", "empty changes")

    idx, pending = latest
    proposed = {"action": pending.action_type, **pending.data, **changes}
    reason = validate_action(proposed, session.snapshot)
    if reason:
        return _finish(session, "error", steps, VALIDATION_MESSAGE.format(reason=reason), reason)

    session.thread.edit_pending_action(changes)
    normalized = materialize_action(proposed)
    if not isinstance(normalized, DeprecatedAction) and normalized.data != pending.data:
        session.thread.replace_action_data(idx, normalized.data)
    logger.info("Edited pending %s at %d: %s", pending.action_type, idx, sorted(changes))
    return _finish(session, "action", steps, DRAFT_EDITED_MESSAGE)


def _handle_action(session: "Session", msg: Mapping[str, Any], steps: int) -> TurnOutcome:
    name = msg.get("action")
    if name == EDIT_PENDING_ACTION:
        return _handle_edit(session, msg, steps)

    handler = get_handler(name)
    if handler is None:
        logger.warning("Model proposed unknown action '%s'", name)
        return _finish(session, "error", steps, UNKNOWN_ACTION_MESSAGE.format(action=name), "unknown action")

    if handler.descriptor.deprecated:
        retired = materialize_action(msg)
        return _finish(session, "error", steps, retired.message, "deprecated action")

    reason = validate_action(msg, session.snapshot)
    if reason:
        return _finish(session, "error", steps, VALIDATION_MESSAGE.format(reason=reason), reason)

    pending = materialize_action(msg)
    idx = session.thread.append(ActionMessage(action_type=pending.action_type, data=pending.data))
    notes = pending.data.get("notes")
    if isinstance(notes, str) and not is_blank(notes.strip()):
        session.thread.add_assistant(notes.strip())
    logger.info("Proposed %s at message %d", pending.action_type, idx)
    return TurnOutcome(kind="action", steps=steps, message_index=idx)


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
async def run_ai_loop(
    session: "Session",
    history: History,
    system_prompt: str,
    read_write: bool,
    llm: BaseLLMClient,
    max_steps: int | None = None,
) -> TurnOutcome:
    """
    Run one turn until a terminal message is appended to the thread.

    Each model call is one step.  ``tool_call`` replies are executed and fed back; every other
    outcome (answer, ask_user, action, refusal, error, step budget exhausted) ends the turn with
    exactly one terminal message in the thread.
    """
    max_steps = max_steps or settings.MAX_AI_STEPS
    history = list(history)
    allowed_tools = student_safe_tools()
    format_failures = 0

    for step in range(1, max_steps + 1):
        try:
            raw = await llm.complete(system_prompt, history)
        except LLMRequestError as exc:
            logger.error("Model call failed: %s", exc)
            return _finish(session, "error", step, LLM_ERROR_MESSAGE, str(exc))

        msg = interpret_reply(raw)
        if msg is None:
            format_failures += 1
            logger.warning("Unparseable reply (%d in a row): %.200s", format_failures, raw)
            if format_failures >= settings.MAX_FORMAT_RETRIES:
                return _finish(session, "answer", step, raw.strip(), "unstructured reply")
            history.append({"role": "assistant", "content": raw})
            history.append({"role": "user", "content": FORMAT_CORRECTION})
            continue
        format_failures = 0

        kind = msg["type"]
        if kind == "answer":
            return _finish(session, "answer", step, msg["text"])

        if kind == "ask_user":
            continuation = [{"role": m["role"], "content": m["content"]} for m in history]
            continuation.append({"role": "assistant", "content": msg["question"]})
            idx = session.thread.append(AskUserMessage(question=msg["question"], continuation=continuation))
            return TurnOutcome(kind="ask_user", steps=step, message_index=idx)

        if kind == "action":
            if not read_write:
                logger.warning("Refused action '%s' for read-only caller", msg.get("action"))
                return _finish(session, "refusal", step, READ_ONLY_ACTION_REFUSAL, str(msg.get("action")))
            return _handle_action(session, msg, step)

        # tool_call
        tool = msg["tool"]
        params = msg.get("params") or {}
        if not read_write and tool not in allowed_tools:
            logger.warning("Refused tool '%s' for read-only caller", tool)
            return _finish(session, "refusal", step, READ_ONLY_TOOL_REFUSAL, tool)
        if not is_tool(tool):
            logger.warning("Model called unknown tool '%s'", tool)
            return _finish(session, "error", step, UNKNOWN_TOOL_MESSAGE.format(tool=tool), "unknown tool")

        label = msg.get("step_label") or f"Running {tool}"
        step_idx = session.thread.append(ToolStepMessage(tool=tool, label=label, args=params))
        try:
            result = await execute_tool(tool, params, session)
        except UnknownToolError:
            return _finish(session, "error", step, UNKNOWN_TOOL_MESSAGE.format(tool=tool), "unknown tool")
        except ToolExecutionError as exc:
            result = {"error": str(exc)}

        for_model, for_thread, attachments = _split_inline(result)
        session.thread.fill_tool_result(step_idx, for_thread)
        payload = _truncate(
            json.dumps(for_model, ensure_ascii=False, default=str), settings.TOOL_RESULT_MAX_CHARS
        )
        history.append({"role": "assistant", "content": json.dumps(msg, ensure_ascii=False)})
        turn: Dict[str, Any] = {"role": "user", "content": f"Result of {tool}:\n{payload}"}
        if attachments:
            turn["attachments"] = attachments
        history.append(turn)

    logger.warning("Step budget of %d exhausted", max_steps)
    return _finish(session, "exhausted", max_steps, EXHAUSTED_MESSAGE.format(steps=max_steps))


async def send_message(session: "Session", text: str, llm: BaseLLMClient | None = None) -> TurnOutcome:
    """
    Append the user's *text* to the thread and run one turn.

    If the previous turn ended with an unanswered clarifying question, the model resumes from the
    history saved with it rather than from the rendered thread.
    """
    llm = llm or load_llm_client()
    thread = session.thread
    read_write = session.read_write
    start = len(thread)

    open_question = thread.latest_open_question()
    thread.add_user(text)
    if open_question is not None:
        q_idx, question = open_question
        thread.mark_answered(q_idx)
        history: History = [dict(m) for m in question.continuation]
        history.append({"role": "user", "content": text})
    else:
        history = thread.to_model_history(settings.HISTORY_WINDOW)

    system_prompt = build_system_prompt(read_write, build_context(session))
    outcome = await run_ai_loop(session, history, system_prompt, read_write, llm)

    tool_calls = [
        ToolCall(name=m.tool, args=m.args, label=m.label)
        for m in thread.messages[start:]
        if isinstance(m, ToolStepMessage)
    ]
    save_turn(session.session_id, TurnRecord(user_message=text, tool_calls=tool_calls, outcome=outcome))
    logger.info("Turn finished: %s after %d step(s)", outcome.kind, outcome.steps)
    return outcome
