"""Tests for materializing proposed actions into canonical pending actions."""

from datetime import datetime

import pytest

from coursepilot.agent.materializer import (
    UnknownActionError,
    materialize_action,
)
from coursepilot.core.schema import (
    DeprecatedAction,
    PendingAction,
)

NOW = datetime(2026, 10, 18, 9, 30)


def _data(raw):
    result = materialize_action(raw, now=NOW)
    assert isinstance(result, PendingAction)
    return result.data


def test_announcement_defaults_are_draft_and_unpinned() -> None:
    data = _data({"type": "action", "action": "create_announcement", "title": "Hi", "content": "Text"})
    assert data["pinned"] is False
    assert data["hidden"] is True
    assert data["fileIds"] == []
    assert "type" not in data and "action" not in data


def test_announcement_publish_flag_maps_to_hidden() -> None:
    data = _data({"action": "create_announcement", "title": "Hi", "content": "Text", "publish": True})
    assert data["hidden"] is False


def test_unknown_keys_are_kept() -> None:
    data = _data({"action": "create_announcement", "title": "Hi", "content": "Text", "audience": "all"})
    assert data["audience"] == "all"


def test_assignment_defaults() -> None:
    data = _data({"action": "create_assignment", "title": "Essay 1"})
    assert data["assignmentType"] == "essay"
    assert data["gradingType"] == "points"
    assert data["points"] == 100
    assert data["status"] == "draft"
    assert data["dueDate"] == "2026-10-25T09:30"
    assert data["allowLateSubmissions"] is True
    assert data["lateDeduction"] == 10


def test_supplied_values_beat_defaults() -> None:
    data = _data({"action": "create_assignment", "title": "Essay 1", "points": 25, "due": "2026-11-02T17:00:00"})
    assert data["points"] == 25
    assert data["dueDate"] == "2026-11-02T17:00"
    assert "due" not in data


def test_no_submission_policy_is_forced() -> None:
    data = _data(
        {
            "action": "create_assignment",
            "title": "Read chapter 3",
            "assignmentType": "no_submission",
            "status": "published",
        }
    )
    assert data["gradingType"] == "complete_incomplete"
    assert data["dueDate"] is None
    assert data["allowLateSubmissions"] is False
    assert data["status"] == "draft"


def test_quiz_from_bank_closes_when_due() -> None:
    data = _data(
        {
            "action": "create_quiz_from_bank",
            "title": "Quiz 2",
            "bankName": "Chapter 1",
            "dueDate": "2026-11-01T10:00",
        }
    )
    assert data["questionBankName"] == "Chapter 1"
    assert data["availableUntil"] == "2026-11-01T10:00"
    assert data["timeLimit"] == 30
    assert data["attempts"] == 1
    assert data["status"] == "draft"


def test_invite_emails_are_split_and_role_defaults_to_student() -> None:
    data = _data({"action": "create_invite", "email": "A@x.edu, b@y.edu; c@z.edu"})
    assert data["emails"] == ["a@x.edu", "b@y.edu", "c@z.edu"]
    assert data["role"] == "student"


def test_question_bank_questions_are_normalized() -> None:
    data = _data(
        {
            "action": "create_question_bank",
            "title": "Chapter 4",
            "questions": [{"text": "2 + 2?", "answer": "4"}, {"prompt": "Sky is blue", "type": "true_false"}],
        }
    )
    assert data["name"] == "Chapter 4"
    first, second = data["questions"]
    assert first["prompt"] == "2 + 2?"
    assert first["correctAnswer"] == "4"
    assert first["type"] == "short_answer"
    assert first["points"] == 1
    assert second["options"] == ["True", "False"]


def test_pipeline_steps_are_materialized() -> None:
    data = _data(
        {
            "action": "pipeline",
            "steps": [{"action": "create_module", "title": "Week 6"}, {"type": "create_announcement", "subject": "S", "body": "B"}],
        }
    )
    module_step, announcement_step = data["steps"]
    assert module_step["action"] == "create_module"
    assert module_step["name"] == "Week 6"
    assert announcement_step["action"] == "create_announcement"
    assert announcement_step["title"] == "S"
    assert announcement_step["hidden"] is True


@pytest.mark.parametrize(
    "raw",
    [
        {"action": "create_assignment", "title": "Essay", "due": "2026-11-02T17:00", "maxPoints": 40},
        {"action": "create_quiz_from_bank", "title": "Quiz", "questionBankId": "qb1"},
        {"action": "create_question_bank", "name": "B", "questions": ["What is GDP?"]},
        {"action": "create_invite", "emails": "a@b.edu"},
        {"action": "pipeline", "steps": [{"action": "create_module", "name": "W"}]},
    ],
)
def test_materializing_twice_changes_nothing(raw) -> None:
    first = _data(raw)
    second = _data({"action": raw["action"], **first})
    assert second == first


def test_retired_action_yields_deprecation() -> None:
    result = materialize_action({"action": "create_quiz_inline", "title": "Old quiz"})
    assert isinstance(result, DeprecatedAction)
    assert result.replacement == "create_question_bank"
    assert "create_question_bank" in result.message


def test_unknown_action_raises() -> None:
    with pytest.raises(UnknownActionError):
        materialize_action({"action": "teleport"})
