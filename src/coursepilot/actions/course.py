"""Course-level settings actions."""

from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Mapping,
    Optional,
)

from coursepilot.actions import (
    ActionHandler,
    register_action,
)
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import ReferenceIndex

if TYPE_CHECKING:
    from coursepilot.core.session import Session

DEFAULT_START_HERE_TITLE = "Start Here"


def _coerce_bool(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    return value


@register_action(
    "set_course_visibility",
    "Show (visible=true) or hide (visible=false) the whole course from students.",
    required=("courseId", "visible"),
    dangerous=True,
    group="course",
)
class SetCourseVisibility(ActionHandler):
    target_collection = "courses"
    target_key = "courseId"
    synonyms = {"visible": ("isVisible", "published"), "courseId": ("id",)}

    def apply_policy(self, data: Dict[str, Any]) -> None:
        data["visible"] = _coerce_bool(data.get("visible"))

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        if str(data.get("courseId")) != str(refs.snapshot.course_id):
            return "Only the active course's visibility can be changed from here."
        if not isinstance(data.get("visible"), bool):
            return "visible must be true or false."
        return None

    async def execute(self, op: Operation, session: "Session") -> Any:
        course = session.snapshot.course
        if course is None:
            return None
        return await session.persistence.update_course({**course, "visible": op.data["visible"]})

    def success_message(self, op: Operation) -> str:
        return "Course is now visible to students." if op.data.get("visible") else "Course hidden from students."

    def summary(self, data: Mapping[str, Any]) -> str:
        return f"{self.name} visible={data.get('visible')}"


@register_action(
    "update_start_here",
    "Replace the course's 'Start Here' landing text (markdown) and optionally its heading.",
    required=("startHereContent",),
    optional=("startHereTitle", "notes"),
    group="course",
)
class UpdateStartHere(ActionHandler):
    synonyms = {
        "startHereContent": ("content", "text", "body"),
        "startHereTitle": ("title", "heading"),
    }

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return None if refs.snapshot.course is not None else "The active course could not be found."

    async def execute(self, op: Operation, session: "Session") -> Any:
        course = session.snapshot.course
        if course is None:
            return None
        title = op.data.get("startHereTitle") or course.get("startHereTitle") or DEFAULT_START_HERE_TITLE
        return await session.persistence.update_course(
            {**course, "startHereTitle": title, "startHereContent": op.data["startHereContent"]}
        )

    def success_message(self, op: Operation) -> str:
        return "Start Here page updated!"
