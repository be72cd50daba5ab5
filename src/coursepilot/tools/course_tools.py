"""
Read-only lookup tools over the course snapshot.

Every tool returns a small projection (ids plus display fields).  "Detail" tools (``get_*``)
return the full record once the model knows the id.  Missing records produce ``{"error": ...}``
results instead of exceptions.
"""

from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
)

from coursepilot.core.snapshot import (
    COLLECTIONS,
    title_of,
)
from coursepilot.tools import register_tool

if TYPE_CHECKING:
    from coursepilot.core.session import Session


def _not_found(kind: str, ref: Any) -> Dict[str, str]:
    return {"error": f"No {kind} with id '{ref}' in this course."}


def _pick(record: Dict[str, Any], *keys: str) -> Dict[str, Any]:
    return {k: record.get(k) for k in keys}


# ---------------------------------------------------------------------------
# Course
# ---------------------------------------------------------------------------
@register_tool("get_course_info", student_safe=True)
def get_course_info(ctx: "Session") -> Dict[str, Any]:
    """Course name, code, description, visibility and the Start Here block."""
    course = ctx.snapshot.course
    if course is None:
        return {"error": "No active course."}
    return _pick(
        course, "id", "name", "code", "description", "visible", "startHereTitle", "startHereContent"
    )


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------
@register_tool("list_assignments", student_safe=True)
def list_assignments(ctx: "Session", status: str | None = None) -> List[Dict[str, Any]]:
    """List assignments (id, title, type, status, points, due date); optionally filter by status."""
    rows = ctx.snapshot.assignments()
    if status:
        rows = [a for a in rows if a.get("status") == status]
    return [
        _pick(a, "id", "title", "assignmentType", "category", "status", "points", "dueDate")
        for a in rows
    ]


@register_tool("get_assignment", student_safe=True)
def get_assignment(ctx: "Session", assignment_id: str) -> Dict[str, Any]:
    """Full details of one assignment, including description and late policy."""
    record = ctx.snapshot.get("assignments", assignment_id)
    if record is None:
        return _not_found("assignment", assignment_id)
    return _pick(
        record,
        "id",
        "title",
        "description",
        "assignmentType",
        "gradingType",
        "category",
        "status",
        "points",
        "dueDate",
        "availableFrom",
        "availableUntil",
        "allowLateSubmissions",
        "latePenaltyType",
        "lateDeduction",
        "allowResubmission",
        "questionBankId",
        "numQuestions",
        "timeLimit",
        "attempts",
        "isGroupAssignment",
        "groupSetId",
    )


# ---------------------------------------------------------------------------
# Announcements
# ---------------------------------------------------------------------------
@register_tool("list_announcements", student_safe=True)
def list_announcements(ctx: "Session") -> List[Dict[str, Any]]:
    """List announcements (id, title, pinned, hidden, created date)."""
    return [
        _pick(a, "id", "title", "pinned", "hidden", "createdAt") for a in ctx.snapshot.announcements()
    ]


@register_tool("get_announcement", student_safe=True)
def get_announcement(ctx: "Session", announcement_id: str) -> Dict[str, Any]:
    """Full text of one announcement."""
    record = ctx.snapshot.get("announcements", announcement_id)
    if record is None:
        return _not_found("announcement", announcement_id)
    return _pick(record, "id", "title", "content", "pinned", "hidden", "createdAt", "fileIds")


# ---------------------------------------------------------------------------
# Modules
# ---------------------------------------------------------------------------
@register_tool("list_modules", student_safe=True)
def list_modules(ctx: "Session") -> List[Dict[str, Any]]:
    """List modules in order with their item counts."""
    return [
        {
            "id": m.get("id"),
            "name": m.get("name"),
            "position": m.get("position"),
            "itemCount": len(m.get("items") or []),
        }
        for m in ctx.snapshot.modules()
    ]


@register_tool("get_module", student_safe=True)
def get_module(ctx: "Session", module_id: str) -> Dict[str, Any]:
    """Items of one module (module item ids, types, titles, linked record ids)."""
    module = ctx.snapshot.get("modules", module_id)
    if module is None:
        return _not_found("module", module_id)
    return {
        "id": module.get("id"),
        "name": module.get("name"),
        "description": module.get("description"),
        "items": [
            _pick(item, "id", "type", "title", "refId", "url") for item in module.get("items") or []
        ],
    }


# ---------------------------------------------------------------------------
# Files
# ---------------------------------------------------------------------------
@register_tool("list_files", student_safe=True)
def list_files(ctx: "Session") -> List[Dict[str, Any]]:
    """List course files (id, name, MIME type, size in bytes)."""
    return [_pick(f, "id", "name", "mimeType", "size", "description") for f in ctx.snapshot.files()]


# ---------------------------------------------------------------------------
# Question banks
# ---------------------------------------------------------------------------
@register_tool("list_question_banks")
def list_question_banks(ctx: "Session") -> List[Dict[str, Any]]:
    """List question banks with their question counts."""
    return [
        {
            "id": b.get("id"),
            "name": b.get("name"),
            "questionCount": len(b.get("questions") or []),
        }
        for b in ctx.snapshot.question_banks()
    ]


@register_tool("get_question_bank")
def get_question_bank(ctx: "Session", bank_id: str) -> Dict[str, Any]:
    """All questions of one bank, with answers and point values."""
    bank = ctx.snapshot.get("question_banks", bank_id)
    if bank is None:
        return _not_found("question bank", bank_id)
    questions = [
        _pick(q, "type", "prompt", "options", "correctAnswer", "points")
        for q in bank.get("questions") or []
    ]
    return {
        "id": bank.get("id"),
        "name": bank.get("name"),
        "description": bank.get("description"),
        "questions": questions,
        "totalPoints": sum(float(q.get("points") or 0) for q in questions),
    }


# ---------------------------------------------------------------------------
# People
# ---------------------------------------------------------------------------
@register_tool("list_people")
def list_people(ctx: "Session", role: str | None = None) -> List[Dict[str, Any]]:
    """List enrolled people (user id, name, email, role); optionally filter by role."""
    people = []
    for enrollment in ctx.snapshot.enrollments():
        if role and enrollment.get("role") != role:
            continue
        user = ctx.snapshot.user(enrollment.get("userId")) or {}
        people.append(
            {
                "userId": enrollment.get("userId"),
                "name": user.get("name"),
                "email": user.get("email"),
                "role": enrollment.get("role"),
            }
        )
    return people


@register_tool("list_invites")
def list_invites(ctx: "Session") -> List[Dict[str, Any]]:
    """List course invites (id, email, role, status)."""
    return [_pick(i, "id", "email", "role", "status") for i in ctx.snapshot.invites()]


@register_tool("list_group_sets")
def list_group_sets(ctx: "Session") -> List[Dict[str, Any]]:
    """List group sets available for group assignments."""
    return [
        {"id": g.get("id"), "name": g.get("name"), "groupCount": len(g.get("groups") or [])}
        for g in ctx.snapshot.group_sets()
    ]


# ---------------------------------------------------------------------------
# Submissions and grades
# ---------------------------------------------------------------------------
@register_tool("list_submissions")
def list_submissions(ctx: "Session", assignment_id: str) -> Any:
    """Submissions for one assignment (id, student, submitted date, whether graded)."""
    if ctx.snapshot.get("assignments", assignment_id) is None:
        return _not_found("assignment", assignment_id)
    graded = {g.get("submissionId") for g in ctx.snapshot.grades()}
    rows = []
    for sub in ctx.snapshot.submissions():
        if sub.get("assignmentId") != assignment_id:
            continue
        student = ctx.snapshot.user(sub.get("userId")) or {}
        rows.append(
            {
                "id": sub.get("id"),
                "userId": sub.get("userId"),
                "studentName": student.get("name"),
                "submittedAt": sub.get("submittedAt"),
                "graded": sub.get("id") in graded,
            }
        )
    return rows


@register_tool("get_grade_summary")
def get_grade_summary(ctx: "Session", assignment_id: str) -> Dict[str, Any]:
    """Count, average, minimum and maximum score for one assignment."""
    assignment = ctx.snapshot.get("assignments", assignment_id)
    if assignment is None:
        return _not_found("assignment", assignment_id)
    submission_ids = {
        s.get("id") for s in ctx.snapshot.submissions() if s.get("assignmentId") == assignment_id
    }
    scores = [
        float(g["score"])
        for g in ctx.snapshot.grades()
        if g.get("score") is not None
        and (g.get("assignmentId") == assignment_id or g.get("submissionId") in submission_ids)
    ]
    summary: Dict[str, Any] = {
        "assignmentId": assignment_id,
        "points": assignment.get("points"),
        "graded": len(scores),
        "submissions": len(submission_ids),
    }
    if scores:
        summary.update(
            average=round(sum(scores) / len(scores), 2), min=min(scores), max=max(scores)
        )
    return summary


# ---------------------------------------------------------------------------
# Generic
# ---------------------------------------------------------------------------
# Collections that read-only sessions can already list through the student-safe tools.
STUDENT_COLLECTIONS = ("courses", "assignments", "announcements", "modules", "files")


@register_tool("find_by_title", student_safe=True)
def find_by_title(ctx: "Session", collection: str, title: str) -> Dict[str, Any]:
    """Resolve an exact title/name to an id within a collection (e.g. assignments, modules)."""
    allowed = COLLECTIONS if ctx.read_write else STUDENT_COLLECTIONS
    if collection not in allowed:
        return {"error": f"Unknown collection '{collection}'. Use one of: {', '.join(allowed)}."}
    record = ctx.snapshot.find_by_title(collection, title)
    if record is None:
        return {"error": f"Nothing in {collection} is titled '{title}'."}
    return {"id": record.get("id"), "title": title_of(collection, record)}
