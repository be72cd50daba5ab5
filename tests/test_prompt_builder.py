"""System prompt and context rendering."""

from datetime import datetime

from coursepilot.actions import get_handler
from coursepilot.agent.context_builder import build_context
from coursepilot.agent.prompt_builder import (
    build_system_prompt,
    render_action,
)
from coursepilot.core.schema import ActionMessage

NOW = datetime(2026, 10, 18, 9, 30)


def test_read_only_prompt_lists_only_student_safe_tools() -> None:
    prompt = build_system_prompt(False, "ctx")
    assert "- list_assignments(" in prompt
    assert "- list_people(" not in prompt
    assert "- get_grade_summary(" not in prompt
    assert "Actions:" not in prompt
    assert "never output an \"action\" object" in prompt
    assert prompt.endswith("Course context:\nctx")


def test_read_write_prompt_lists_current_actions() -> None:
    prompt = build_system_prompt(True, "ctx")
    assert "- list_people(" in prompt
    assert "- create_quiz_from_bank(title*, questionBankId*" in prompt
    assert "- create_quiz(" not in prompt
    assert "- pipeline(" not in prompt
    assert "edit_pending_action" in prompt
    assert "YYYY-MM-DDTHH:MM" in prompt


def test_render_action_marks_required_and_dangerous_fields() -> None:
    line = render_action(get_handler("delete_assignment").descriptor)
    assert line == (
        "- delete_assignment(id*) [DANGEROUS]: "
        "Permanently delete an assignment, quiz or exam together with its submissions."
    )
    assert "notes" not in render_action(get_handler("create_announcement").descriptor)


def test_context_for_instructor(instructor_session) -> None:
    text = build_context(instructor_session, now=NOW)
    assert "Sunday 2026-10-18 09:30" in text
    assert "Current course: ECON 101 (ECON101)" in text
    assert "- Assignments: 2 (1 draft, 1 published)" in text
    assert "- Question banks: 2" in text
    assert "qb1" not in text


def test_context_for_student_hides_staff_counts(student_session) -> None:
    text = build_context(student_session, now=NOW)
    assert "student (read-only)" in text
    assert "Question banks" not in text
    assert "Pending invites" not in text


def test_context_includes_pending_draft(instructor_session) -> None:
    instructor_session.thread.append(
        ActionMessage(action_type="create_module", data={"name": "Week 7"})
    )
    text = build_context(instructor_session, now=NOW)
    assert "Pending draft awaiting confirmation (message 0, create_module)" in text
    assert '"Week 7"' in text


def test_context_is_truncated(instructor_session) -> None:
    text = build_context(instructor_session, now=NOW, max_chars=80)
    assert len(text) <= 80
    assert text.endswith("[context truncated]")
