"""
System-prompt rendering.

:func:`build_system_prompt` is a pure function of the registries, the course context and the
caller's capability.  Read-only callers only ever see the student-safe tools and are told that
proposing changes is not possible; read-write callers get every tool, every current action and
the usage rules.
"""

from typing import (
    List,
    Mapping,
)

from coursepilot.actions import (
    EDIT_PENDING_ACTION,
    PIPELINE,
    ActionDescriptor,
    action_descriptors,
)
from coursepilot.tools import (
    ToolSchema,
    get_tool_schemas,
    student_safe_tools,
)

IDENTITY = "You are CoursePilot, the assistant built into a course management system."

OUTPUT_CONTRACT = """\
Reply with EXACTLY ONE JSON object and nothing else, in one of these shapes:
{"type": "answer", "text": "<reply to the user, markdown allowed>"}
{"type": "tool_call", "tool": "<tool name>", "params": {...}, "step_label": "<short progress label>"}
{"type": "ask_user", "question": "<one clarifying question>"}"""

ACTION_SHAPE = '{"type": "action", "action": "<action name>", ...action fields}'

READ_ONLY_RULES = """\
The user is a STUDENT with read-only access.
- You cannot create, edit, delete or publish anything, and you must never output an "action" object.
- If the user asks for a change to course content, explain politely that only instructors or TAs can
  make it and suggest they contact course staff.
- Use the tools to answer questions about the course accurately."""

READ_WRITE_RULES = """\
The user is an INSTRUCTOR or TA and may propose changes. Every action is shown to the user as an
editable draft and only runs after they confirm it.
Rules:
- Never invent an identifier. Call the matching lookup tool first (list_assignments, list_modules,
  list_question_banks, list_people, find_by_title, ...) and copy the exact id.
- Fields marked * are required. Omitted optional fields are filled with defaults; emit null rather
  than guessing a value you do not know.
- Write every date/time as a local wall-clock value "YYYY-MM-DDTHH:MM" with no timezone or offset
  suffix. Resolve relative dates ("next Friday") against the current local date/time below.
- New content is saved as a draft unless the user explicitly asks to publish it.
- Quizzes and exams are built from question banks with create_quiz_from_bank. If the user has not
  said which bank to use, ask which one; if none exists, offer to create one first.
- Use ask_user only when the user's intent is genuinely ambiguous, not for optional details.
- If something could not be done exactly as asked, explain it in a "notes" field on the action."""


def _param_list(schema: ToolSchema) -> str:
    params = schema["parameters"]
    return ", ".join(
        f"{name}: {info['type']}{'' if info['required'] else '?'}" for name, info in params.items()
    )


def render_tools(schemas: Mapping[str, ToolSchema]) -> str:
    return "\n".join(
        f"- {name}({_param_list(schema)}): {schema['description']}" for name, schema in schemas.items()
    )


def render_action(desc: ActionDescriptor) -> str:
    fields = [f"{f}*" for f in desc.required] + [f for f in desc.optional if f != "notes"]
    danger = " [DANGEROUS]" if desc.dangerous else ""
    return f"- {desc.name}({', '.join(fields)}){danger}: {desc.description}"


def render_actions() -> str:
    lines: List[str] = []
    group = None
    for desc in sorted(
        (d for d in action_descriptors() if d.name != PIPELINE), key=lambda d: d.group
    ):
        if desc.group != group:
            group = desc.group
            lines.append(f"[{group}]")
        lines.append(render_action(desc))
    return "\n".join(lines)


CONTROL_MESSAGES = f"""\
Multi-step and editing messages:
- {{"type": "action", "action": "{PIPELINE}", "steps": [{{"action": "<name>", ...}}, ...]}}: several actions
  confirmed together and run in order, stopping at the first failure. Inside a pipeline a step may
  refer to a record by its exact title, including one created by an earlier step.
- {{"type": "action", "action": "{EDIT_PENDING_ACTION}", "changes": {{...}}}}: change fields of the draft
  that is still awaiting confirmation instead of proposing a new one."""


def build_system_prompt(read_write: bool, context: str) -> str:
    """Render the system instruction for one turn."""
    sections = [IDENTITY]
    if read_write:
        sections.append(OUTPUT_CONTRACT + "\n" + ACTION_SHAPE)
        sections.append(READ_WRITE_RULES)
        sections.append("Tools:\n" + render_tools(get_tool_schemas()))
        sections.append("Actions:\n" + render_actions())
        sections.append(CONTROL_MESSAGES)
    else:
        sections.append(OUTPUT_CONTRACT)
        sections.append(READ_ONLY_RULES)
        sections.append("Tools:\n" + render_tools(get_tool_schemas(student_safe_tools())))
    sections.append("Course context:\n" + context)
    return "\n\n".join(sections)
