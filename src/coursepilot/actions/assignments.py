"""
Assignment actions, including quizzes and exams built from a question bank.

Quizzes are stored as assignments with ``assignmentType="quiz"`` and a ``questionBankId``; the old
standalone quiz records are retired (see :mod:`coursepilot.actions.legacy`).
"""

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
    PUBLISH_REQUIREMENTS,
    ActionHandler,
    CreatedIndex,
    is_blank,
    lookup_id,
    missing_fields,
    named_exists,
    register_action,
)
from coursepilot.common import (
    days_from_now,
    new_id,
    to_local_timestamp,
)
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import (
    CourseSnapshot,
    ReferenceIndex,
)

if TYPE_CHECKING:
    from coursepilot.core.session import Session

ASSIGNMENT_TYPES = ("essay", "quiz", "no_submission")
GRADING_TYPES = ("points", "complete_incomplete", "letter")

ASSIGNMENT_FIELDS = (
    "description",
    "assignmentType",
    "gradingType",
    "category",
    "points",
    "dueDate",
    "availableFrom",
    "availableUntil",
    "status",
    "allowLateSubmissions",
    "latePenaltyType",
    "lateDeduction",
    "allowResubmission",
    "isGroupAssignment",
    "groupSetId",
    "groupSetName",
    "fileIds",
    "notes",
)

# Stored on the record; the rest of the data bag is review-only.
RECORD_FIELDS = tuple(f for f in ASSIGNMENT_FIELDS if f not in ("groupSetName", "notes")) + (
    "title",
    "questionBankId",
    "numQuestions",
    "randomizeQuestions",
    "randomizeAnswers",
    "timeLimit",
    "attempts",
    "gradingNotes",
)

ASSIGNMENT_DEFAULTS: Dict[str, Any] = {
    "description": "",
    "assignmentType": "essay",
    "gradingType": "points",
    "category": "homework",
    "points": 100,
    "status": "draft",
    "availableFrom": None,
    "allowLateSubmissions": True,
    "latePenaltyType": "per_day",
    "lateDeduction": 10,
    "allowResubmission": False,
    "isGroupAssignment": False,
    "fileIds": [],
}
DEFAULT_DUE_DAYS = 7

# Per-type overrides: "defaults" apply only to omitted fields, "forced" always win.
ASSIGNMENT_TYPE_POLICIES: Dict[str, Dict[str, Dict[str, Any]]] = {
    "no_submission": {
        "defaults": {"gradingType": "complete_incomplete", "dueDate": None, "allowLateSubmissions": False},
        "forced": {"status": "draft"},
    },
}

QUIZ_DEFAULTS: Dict[str, Any] = {
    "description": "",
    "category": "quiz",
    "numQuestions": 0,
    "randomizeQuestions": False,
    "randomizeAnswers": True,
    "availableFrom": None,
    "points": 100,
    "timeLimit": 30,
    "attempts": 1,
    "allowLateSubmissions": True,
    "latePenaltyType": "per_day",
    "lateDeduction": 10,
    "status": "draft",
    "gradingNotes": "",
}

_SYNONYMS = {
    "description": ("instructions", "body"),
    "dueDate": ("due", "due_date", "deadline"),
    "points": ("maxPoints", "totalPoints", "pointsPossible"),
    "assignmentType": ("submissionType", "kind"),
}


def _type_policy(assignment_type: Any) -> Dict[str, Dict[str, Any]]:
    return ASSIGNMENT_TYPE_POLICIES.get(assignment_type or "", {})


def _check_common(data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
    for file_id in data.get("fileIds") or []:
        if not refs.exists("files", file_id):
            return f"No file with id '{file_id}' exists in this course."
    group_ref = data.get("groupSetId")
    group_name = data.get("groupSetName")
    if data.get("isGroupAssignment"):
        if is_blank(group_ref) and is_blank(group_name):
            return "A group assignment must name an existing group set (groupSetId)."
        if not named_exists(refs, "group_sets", group_ref, group_name):
            return f"No group set '{group_ref or group_name}' exists in this course."
    elif not is_blank(group_ref) and not refs.exists("group_sets", group_ref):
        return f"No group set with id '{group_ref}' exists in this course."
    return None


def _publish_missing(record: Mapping[str, Any], publishing: bool) -> List[str]:
    if not publishing:
        return []
    if record.get("assignmentType") == "no_submission":
        return ["status (no-submission items always stay in draft)"]
    kind = "quiz" if record.get("questionBankId") else "assignment"
    return missing_fields(record, PUBLISH_REQUIREMENTS[kind])


def _record_from(data: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: data[k] for k in RECORD_FIELDS if k in data}


@register_action(
    "create_assignment",
    "Create an assignment (essay, quiz or no_submission). Saved as a draft unless status is "
    "'published'.",
    required=("title",),
    optional=ASSIGNMENT_FIELDS,
    group="assignments",
)
class CreateAssignment(ActionHandler):
    creates = "assignments"
    synonyms = _SYNONYMS
    timestamp_fields = ("dueDate", "availableFrom", "availableUntil")

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        assignment_type = data.get("assignmentType") or ASSIGNMENT_DEFAULTS["assignmentType"]
        base = dict(ASSIGNMENT_DEFAULTS, dueDate=days_from_now(DEFAULT_DUE_DAYS, now))
        base.update(_type_policy(assignment_type).get("defaults", {}))
        return base

    def apply_policy(self, data: Dict[str, Any]) -> None:
        data.update(_type_policy(data.get("assignmentType")).get("forced", {}))

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return _check_common(data, refs)

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        if is_blank(data.get("groupSetId")) and is_blank(data.get("groupSetName")):
            return {}
        return {
            "groupSetId": lookup_id(
                snapshot, created, "group_sets", data.get("groupSetId"), data.get("groupSetName")
            )
        }

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        return _publish_missing(op.data, op.publish or op.data.get("status") == "published")

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = _record_from(op.data)
        record.update(
            id=new_id(),
            courseId=session.course_id,
            createdAt=to_local_timestamp(datetime.now()),
            createdBy=session.user_id,
        )
        if op.resolved.get("groupSetId"):
            record["groupSetId"] = op.resolved["groupSetId"]
        if op.publish:
            record["status"] = "published"
        record.update(_type_policy(record.get("assignmentType")).get("forced", {}))
        return await session.persistence.create_assignment(record)

    def success_message(self, op: Operation) -> str:
        published = op.publish or op.data.get("status") == "published"
        if op.data.get("assignmentType") == "no_submission":
            published = False
        return "Assignment published!" if published else "Assignment created as draft!"


class _AssignmentTarget(ActionHandler):
    target_collection = "assignments"

    def merged(self, op: Operation, snapshot: CourseSnapshot) -> Dict[str, Any]:
        record = dict(snapshot.get("assignments", op.ref("id")) or {})
        record.update({k: v for k, v in op.data.items() if k in RECORD_FIELDS and v is not None})
        return record


@register_action(
    "update_assignment",
    "Edit an existing assignment; omitted fields stay unchanged.",
    required=("id",),
    optional=("title",) + ASSIGNMENT_FIELDS,
    group="assignments",
)
class UpdateAssignment(_AssignmentTarget):
    synonyms = dict(_SYNONYMS, id=("assignmentId",))
    timestamp_fields = ("dueDate", "availableFrom", "availableUntil")

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return self.check_target(data, refs) or _check_common(data, refs)

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        resolved = super().resolve(data, snapshot, created)
        if not (is_blank(data.get("groupSetId")) and is_blank(data.get("groupSetName"))):
            resolved["groupSetId"] = lookup_id(
                snapshot, created, "group_sets", data.get("groupSetId"), data.get("groupSetName")
            )
        return resolved

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        merged = self.merged(op, snapshot)
        return _publish_missing(merged, op.publish or merged.get("status") == "published")

    async def execute(self, op: Operation, session: "Session") -> Any:
        if session.snapshot.get("assignments", op.ref("id")) is None:
            return None
        merged = self.merged(op, session.snapshot)
        if op.resolved.get("groupSetId"):
            merged["groupSetId"] = op.resolved["groupSetId"]
        if op.publish:
            merged["status"] = "published"
        merged.update(_type_policy(merged.get("assignmentType")).get("forced", {}))
        return await session.persistence.update_assignment(merged)

    def success_message(self, op: Operation) -> str:
        return "Assignment updated!"


@register_action(
    "publish_assignment",
    "Publish a draft assignment or quiz so students can see it.",
    required=("id",),
    group="assignments",
)
class PublishAssignment(_AssignmentTarget):
    target_title_key = "title"
    synonyms = {"id": ("assignmentId",)}

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        return _publish_missing(snapshot.get("assignments", op.ref("id")) or {}, True)

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = session.snapshot.get("assignments", op.ref("id"))
        if record is None:
            return None
        return await session.persistence.update_assignment({**record, "status": "published"})

    def success_message(self, op: Operation) -> str:
        return "Assignment published!"


@register_action(
    "delete_assignment",
    "Permanently delete an assignment, quiz or exam together with its submissions.",
    required=("id",),
    dangerous=True,
    group="assignments",
)
class DeleteAssignment(_AssignmentTarget):
    target_title_key = "title"
    synonyms = {"id": ("assignmentId",)}

    async def execute(self, op: Operation, session: "Session") -> Any:
        return await session.persistence.delete_assignment(op.ref("id"))

    def success_message(self, op: Operation) -> str:
        return "Assignment deleted."


@register_action(
    "create_quiz_from_bank",
    "Create a quiz or exam whose questions are drawn from an existing question bank.",
    required=("title", "questionBankId"),
    optional=(
        "description",
        "category",
        "questionBankName",
        "numQuestions",
        "randomizeQuestions",
        "randomizeAnswers",
        "dueDate",
        "availableFrom",
        "availableUntil",
        "points",
        "timeLimit",
        "attempts",
        "allowLateSubmissions",
        "latePenaltyType",
        "lateDeduction",
        "status",
        "gradingNotes",
        "notes",
    ),
    group="assessments",
    alternates={"questionBankId": ("questionBankName",)},
)
class CreateQuizFromBank(ActionHandler):
    creates = "assignments"
    synonyms = {
        "questionBankId": ("bankId",),
        "questionBankName": ("bankName", "bankTitle", "questionBankTitle"),
        "dueDate": ("due", "deadline"),
        "numQuestions": ("questionCount",),
    }
    timestamp_fields = ("dueDate", "availableFrom", "availableUntil")

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        due = data.get("dueDate") or days_from_now(DEFAULT_DUE_DAYS, now)
        return dict(QUIZ_DEFAULTS, dueDate=due, availableUntil=due, questionBankName="")

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        bank_ref = data.get("questionBankId")
        bank_name = data.get("questionBankName")
        if named_exists(refs, "question_banks", bank_ref, bank_name):
            return None
        return f"No question bank '{bank_ref or bank_name}' exists in this course."

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        return {
            "questionBankId": lookup_id(
                snapshot,
                created,
                "question_banks",
                data.get("questionBankId"),
                data.get("questionBankName"),
            )
        }

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        if not (op.publish or op.data.get("status") == "published"):
            return []
        record = dict(op.data, questionBankId=op.ref("questionBankId"))
        return missing_fields(record, PUBLISH_REQUIREMENTS["quiz"])

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = _record_from(op.data)
        record.update(
            id=new_id(),
            courseId=session.course_id,
            assignmentType="quiz",
            gradingType="points",
            questionBankId=op.ref("questionBankId"),
            allowResubmission=False,
            createdAt=to_local_timestamp(datetime.now()),
            createdBy=session.user_id,
        )
        if op.publish:
            record["status"] = "published"
        return await session.persistence.create_assignment(record)

    def success_message(self, op: Operation) -> str:
        label = "Exam" if op.data.get("category") == "exam" else "Quiz"
        if op.publish or op.data.get("status") == "published":
            return f"{label} published!"
        return f"{label} created as draft!"
