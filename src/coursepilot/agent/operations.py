"""
Operation executor: runs confirmed actions against the persistence collaborator.

Nothing here talks to the model.  A single action is re-validated against the current snapshot,
its name references are resolved to ids, publish preconditions are enforced, and the handler's
``execute`` is awaited.  A falsy result is a failure: the action stays unconfirmed so the user can
retry.  Pipelines run step by step from ``progress`` and stop at the first failure; steps already
applied stay applied.
"""

import logging
from typing import (
    TYPE_CHECKING,
    Any,
    Mapping,
)

from coursepilot.actions import (
    ENVELOPE_KEYS,
    PIPELINE,
    ActionHandler,
    CreatedIndex,
    get_handler,
)
from coursepilot.actions.pipeline import step_name
from coursepilot.agent.validator import validate_action
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import (
    CourseSnapshot,
    title_of,
)
from coursepilot.core.thread import ActionStateError
from coursepilot.memory.audit_log import record_event

if TYPE_CHECKING:
    from coursepilot.core.session import Session

logger = logging.getLogger(__name__)

REJECT_ACK = "No problem! Let me know if you need anything else."


def build_operation(
    handler: ActionHandler,
    data: Mapping[str, Any],
    snapshot: CourseSnapshot,
    publish: bool = False,
    created: CreatedIndex | None = None,
) -> Operation:
    """Pair *data* with the real identifiers its name references resolve to."""
    return Operation(
        action_type=handler.name,
        data=dict(data),
        resolved=handler.resolve(data, snapshot, created),
        publish=publish,
    )


async def _run(handler: ActionHandler, op: Operation, session: "Session") -> Any:
    try:
        return await handler.execute(op, session)
    except Exception:  # pylint: disable=broad-except
        logger.exception("Persistence call for '%s' raised", handler.name)
        return None


def _pending(session: "Session", idx: int):
    msg = session.thread.action_at(idx)
    if not msg.is_pending:
        raise ActionStateError(f"Action {idx} is no longer pending.")
    return msg


async def confirm_action(session: "Session", idx: int, publish: bool = False) -> bool:
    """
    Execute the pending action at *idx*.

    Returns ``True`` on success.  Raises :class:`ActionStateError` if *idx* is not a pending
    action; every other failure is reported in the thread and yields ``False``.
    """
    msg = _pending(session, idx)
    if msg.action_type == PIPELINE:
        return await execute_pipeline(session, idx, publish=publish)

    handler = get_handler(msg.action_type)
    if handler is None:
        session.thread.add_assistant(f"'{msg.action_type}' cannot be carried out.")
        return False

    reason = validate_action({**msg.data, "action": msg.action_type}, session.snapshot)
    if reason:
        session.thread.add_assistant(f"Could not {handler.summary(msg.data)}: {reason}")
        return False

    op = build_operation(handler, msg.data, session.snapshot, publish=publish)
    missing = handler.missing_for_publish(op, session.snapshot)
    if missing:
        session.thread.add_assistant(
            f"Cannot publish yet. Please fill in: {', '.join(missing)}. You can still save it as a draft."
        )
        return False

    result = await _run(handler, op, session)
    if not result:
        logger.warning("Action %d (%s) failed in persistence", idx, msg.action_type)
        session.thread.add_assistant(
            f"Sorry, I couldn't complete {handler.summary(msg.data)}. Nothing was confirmed; you can try again."
        )
        return False

    session.thread.mark_confirmed(idx)
    session.thread.add_assistant(handler.success_message(op))
    record_event("confirm", session.session_id, {"index": idx, "action": msg.action_type, "data": msg.data})
    return True


async def execute_pipeline(session: "Session", idx: int, publish: bool = False) -> bool:
    """
    Run the pipeline at *idx* from its recorded ``progress``.

    Fail-fast: a missing publish field or a failed write stops the run, names the step, and leaves
    the pipeline unconfirmed with ``progress`` pointing at that step so a retry resumes there.
    """
    msg = _pending(session, idx)
    pipeline = get_handler(PIPELINE)
    steps = pipeline.steps(msg.data)
    created: CreatedIndex = {}

    for position in range(msg.progress, len(steps)):
        step = steps[position]
        name = step_name(step)
        label = f"Step {position + 1} ({name})"
        handler = get_handler(name)
        if handler is None or handler.descriptor.deprecated or handler.name == PIPELINE:
            session.thread.add_assistant(f"Pipeline stopped at {label}: unsupported action.")
            return False

        data = {k: v for k, v in step.items() if k not in ENVELOPE_KEYS}
        op = build_operation(handler, data, session.snapshot, publish=publish, created=created)
        missing = handler.missing_for_publish(op, session.snapshot)
        if missing:
            session.thread.add_assistant(
                f"Pipeline stopped before {label}: publishing requires {', '.join(missing)}. "
                f"{position} earlier step(s) remain applied."
            )
            return False

        result = await _run(handler, op, session)
        if not result:
            logger.warning("Pipeline %d failed at step %d (%s)", idx, position + 1, name)
            session.thread.add_assistant(
                f"Pipeline stopped: {label} failed ({handler.summary(data)}). "
                f"{position} earlier step(s) remain applied; the remaining steps were not attempted."
            )
            record_event(
                "pipeline_failed", session.session_id, {"index": idx, "step": position + 1, "action": name}
            )
            return False

        if handler.creates and isinstance(result, Mapping) and result.get("id"):
            title = title_of(handler.creates, data).strip().casefold()
            if title:
                created[(handler.creates, title)] = result["id"]
        session.thread.advance_progress(idx)

    session.thread.mark_confirmed(idx)
    lines = [f"- {get_handler(step_name(s)).summary(s)}" for s in steps]
    session.thread.add_assistant(f"All {len(steps)} steps completed!\n" + "\n".join(lines))
    record_event("confirm", session.session_id, {"index": idx, "action": PIPELINE, "steps": len(steps)})
    return True


async def reject_action(session: "Session", idx: int) -> None:
    """Reject (and hide) the pending action at *idx*."""
    msg = _pending(session, idx)
    session.thread.mark_rejected(idx, hide=True)
    session.thread.add_assistant(REJECT_ACK)
    record_event("reject", session.session_id, {"index": idx, "action": msg.action_type})
