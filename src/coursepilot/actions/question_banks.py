"""Question bank actions."""

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

from coursepilot.actions import (
    ActionHandler,
    is_blank,
    register_action,
)
from coursepilot.common import (
    new_id,
    to_local_timestamp,
)
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import ReferenceIndex

if TYPE_CHECKING:
    from coursepilot.core.session import Session

QUESTION_TYPES = ("multiple_choice", "true_false", "short_answer", "essay")
DEFAULT_QUESTION_POINTS = 1


def normalize_question(raw: Any) -> Dict[str, Any]:
    """Canonical question dict; unknown keys are kept."""
    if isinstance(raw, str):
        raw = {"prompt": raw}
    question = dict(raw) if isinstance(raw, Mapping) else {"prompt": str(raw)}
    for alt in ("text", "question"):
        if alt in question and is_blank(question.get("prompt")):
            question["prompt"] = question.pop(alt)
    if "answer" in question and is_blank(question.get("correctAnswer")):
        question["correctAnswer"] = question.pop("answer")
    question.setdefault("id", new_id())
    if question.get("type") not in QUESTION_TYPES:
        question["type"] = "multiple_choice" if question.get("options") else "short_answer"
    if question["type"] == "true_false" and not question.get("options"):
        question["options"] = ["True", "False"]
    question.setdefault("options", [])
    question.setdefault("correctAnswer", None)
    if question.get("points") is None:
        question["points"] = DEFAULT_QUESTION_POINTS
    return question


def _questions(value: Any) -> List[Dict[str, Any]]:
    return [normalize_question(q) for q in (value or [])]


@register_action(
    "create_question_bank",
    "Create a question bank that quizzes and exams can draw questions from.",
    required=("name",),
    optional=("description", "questions", "notes"),
    group="assessments",
)
class CreateQuestionBank(ActionHandler):
    creates = "question_banks"
    synonyms = {"name": ("bankName", "bankTitle", "title")}

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        return {"description": "", "questions": []}

    def apply_policy(self, data: Dict[str, Any]) -> None:
        data["questions"] = _questions(data.get("questions"))

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return None

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = {
            "id": new_id(),
            "courseId": session.course_id,
            "name": op.data.get("name"),
            "description": op.data.get("description") or "",
            "questions": _questions(op.data.get("questions")),
            "createdAt": to_local_timestamp(datetime.now()),
        }
        return await session.persistence.create_question_bank(record)

    def success_message(self, op: Operation) -> str:
        count = len(op.data.get("questions") or [])
        return f"Question bank created with {count} question{'s' if count != 1 else ''}!"


@register_action(
    "update_question_bank",
    "Rename a question bank or replace its description or question list.",
    required=("id",),
    optional=("name", "description", "questions", "notes"),
    group="assessments",
)
class UpdateQuestionBank(ActionHandler):
    target_collection = "question_banks"
    synonyms = {"id": ("bankId", "questionBankId"), "name": ("bankName", "bankTitle")}

    def apply_policy(self, data: Dict[str, Any]) -> None:
        if data.get("questions") is not None:
            data["questions"] = _questions(data["questions"])

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = session.snapshot.get("question_banks", op.ref("id"))
        if record is None:
            return None
        merged = dict(record)
        for key in ("name", "description", "questions"):
            if op.data.get(key) is not None:
                merged[key] = op.data[key]
        return await session.persistence.update_question_bank(merged)

    def success_message(self, op: Operation) -> str:
        return "Question bank updated!"


@register_action(
    "delete_question_bank",
    "Permanently delete a question bank that no quiz or exam still uses.",
    required=("id",),
    dangerous=True,
    group="assessments",
)
class DeleteQuestionBank(ActionHandler):
    target_collection = "question_banks"
    target_title_key = "name"
    synonyms = {"id": ("bankId", "questionBankId")}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        reason = self.check_target(data, refs)
        if reason:
            return reason
        bank = refs.snapshot.find("question_banks", data.get("id"), data.get("name"))
        if bank is None:
            return None
        users = [
            str(a.get("title") or a.get("id"))
            for a in refs.snapshot.assignments()
            if a.get("questionBankId") == bank.get("id")
        ]
        if users:
            return f"Question bank '{bank.get('name')}' is still used by: {', '.join(users)}."
        return None

    async def execute(self, op: Operation, session: "Session") -> Any:
        return await session.persistence.delete_question_bank(op.ref("id"))

    def success_message(self, op: Operation) -> str:
        return "Question bank deleted."
