"""
The ``pipeline`` action: an ordered list of other actions confirmed and run as one unit.

Steps are normalized by their own handlers, so a pipeline's data bag holds canonical step
payloads of the form ``{"action": <name>, ...fields}``.  Execution lives in
:func:`coursepilot.agent.operations.execute_pipeline`.
"""

from datetime import datetime
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from coursepilot.actions import (
    CONTROL_ACTIONS,
    ENVELOPE_KEYS,
    PIPELINE,
    ActionHandler,
    get_handler,
    missing_required,
    register_action,
)
from coursepilot.core.snapshot import (
    ReferenceIndex,
    title_of,
)


def step_name(step: Mapping[str, Any]) -> Optional[str]:
    """Action name of a raw or canonical step."""
    name = step.get("action")
    if not isinstance(name, str) and get_handler(step.get("type")) is not None:
        name = step.get("type")
    return name if isinstance(name, str) else None


def normalize_step(step: Any, now: datetime) -> Any:
    if not isinstance(step, Mapping):
        return step
    name = step_name(step)
    handler = get_handler(name)
    if handler is None or handler.name == PIPELINE or handler.descriptor.deprecated:
        return dict(step)
    return {"action": name, **handler.normalize(step, now)}


@register_action(
    PIPELINE,
    "Run several actions in order as one confirmable unit; stops at the first failure.",
    required=("steps",),
    optional=("notes",),
    group="multi-step",
)
class Pipeline(ActionHandler):
    synonyms = {"steps": ("actions",)}

    def normalize(self, raw: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        data = super().normalize(raw, now)
        steps = data.get("steps")
        if isinstance(steps, list):
            data["steps"] = [normalize_step(s, now) for s in steps]
        return data

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        steps = data.get("steps")
        if not isinstance(steps, list) or not steps:
            return "A pipeline needs a non-empty list of steps."
        step_refs = ReferenceIndex(refs.snapshot, allow_titles=True)
        for number, step in enumerate(steps, start=1):
            reason = self.check_step(step, step_refs)
            if reason:
                name = step_name(step) if isinstance(step, Mapping) else None
                return f"Step {number} ({name or 'unknown'}): {reason}"
            handler = get_handler(step_name(step))
            if handler is not None and handler.creates:
                step_refs.plan(handler.creates, title_of(handler.creates, step))
        return None

    def check_step(self, step: Any, refs: ReferenceIndex) -> Optional[str]:
        if not isinstance(step, Mapping):
            return "each step must be an action object."
        name = step_name(step)
        handler = get_handler(name)
        if handler is None or name in CONTROL_ACTIONS:
            return f"unknown action '{name}'."
        if handler.name == PIPELINE:
            return "pipelines cannot be nested."
        if handler.descriptor.deprecated:
            return f"'{name}' is retired; use '{handler.descriptor.replacement}' instead."
        data = {k: v for k, v in step.items() if k not in ENVELOPE_KEYS}
        missing = missing_required(handler, data, allow_titles=True)
        if missing:
            return f"missing required field(s): {', '.join(missing)}."
        return handler.check(data, refs)

    def summary(self, data: Mapping[str, Any]) -> str:
        return f"pipeline ({len(data.get('steps') or [])} steps)"

    def success_message(self, op) -> str:
        return "All pipeline steps completed!"

    def steps(self, data: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return [s for s in data.get("steps") or [] if isinstance(s, Mapping)]
