"""Announcement actions: create, update, publish, pin and delete."""

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
    is_blank,
    missing_fields,
    register_action,
)
from coursepilot.common import (
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

ANNOUNCEMENT_DEFAULTS: Dict[str, Any] = {"pinned": False, "hidden": True, "fileIds": []}

_EDITABLE = ("title", "content", "pinned", "hidden", "fileIds")


def _check_files(data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
    for file_id in data.get("fileIds") or []:
        if not refs.exists("files", file_id):
            return f"No file with id '{file_id}' exists in this course."
    return None


def _merged(record: Mapping[str, Any], data: Mapping[str, Any]) -> Dict[str, Any]:
    merged = dict(record)
    merged.update({k: data[k] for k in _EDITABLE if data.get(k) is not None})
    return merged


class _AnnouncementTarget(ActionHandler):
    target_collection = "announcements"
    target_title_key = "title"

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        record = snapshot.get("announcements", op.ref("id")) or {}
        merged = _merged(record, op.data)
        if not (op.publish or merged.get("hidden") is False):
            return []
        return missing_fields(merged, PUBLISH_REQUIREMENTS["announcement"])


@register_action(
    "create_announcement",
    "Create a course announcement. Saved hidden (draft) unless the user asks to publish.",
    required=("title", "content"),
    optional=("pinned", "hidden", "fileIds", "notes"),
    group="announcements",
)
class CreateAnnouncement(ActionHandler):
    creates = "announcements"
    synonyms = {"content": ("body", "text", "message"), "title": ("subject", "heading")}

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        return dict(ANNOUNCEMENT_DEFAULTS)

    def normalize(self, raw: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        raw = dict(raw)
        if "publish" in raw and raw.get("hidden") is None:
            raw["hidden"] = not bool(raw.pop("publish"))
        return super().normalize(raw, now)

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return _check_files(data, refs)

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        if not (op.publish or op.data.get("hidden") is False):
            return []
        return missing_fields(op.data, PUBLISH_REQUIREMENTS["announcement"])

    async def execute(self, op: Operation, session: "Session") -> Any:
        published = op.publish or op.data.get("hidden") is False
        record = {
            "id": new_id(),
            "courseId": session.course_id,
            "title": op.data.get("title"),
            "content": op.data.get("content"),
            "pinned": bool(op.data.get("pinned")),
            "hidden": not published,
            "fileIds": list(op.data.get("fileIds") or []),
            "authorId": session.user_id,
            "createdAt": to_local_timestamp(datetime.now()),
        }
        return await session.persistence.create_announcement(record)

    def success_message(self, op: Operation) -> str:
        if op.publish or op.data.get("hidden") is False:
            return "Announcement published!"
        return "Announcement created as draft!"


@register_action(
    "update_announcement",
    "Edit an existing announcement; omitted fields stay unchanged.",
    required=("id",),
    optional=("title", "content", "pinned", "hidden", "fileIds", "notes"),
    group="announcements",
)
class UpdateAnnouncement(_AnnouncementTarget):
    target_title_key = None
    synonyms = {"content": ("body", "text"), "id": ("announcementId",)}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return self.check_target(data, refs) or _check_files(data, refs)

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = session.snapshot.get("announcements", op.ref("id"))
        if record is None:
            return None
        merged = _merged(record, op.data)
        if op.publish:
            merged["hidden"] = False
        return await session.persistence.update_announcement(merged)

    def success_message(self, op: Operation) -> str:
        return "Announcement updated!"


@register_action(
    "publish_announcement",
    "Make a hidden (draft) announcement visible to students.",
    required=("id",),
    group="announcements",
)
class PublishAnnouncement(_AnnouncementTarget):
    synonyms = {"id": ("announcementId",)}

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        record = snapshot.get("announcements", op.ref("id")) or {}
        return missing_fields(record, PUBLISH_REQUIREMENTS["announcement"])

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = session.snapshot.get("announcements", op.ref("id"))
        if record is None:
            return None
        return await session.persistence.update_announcement({**record, "hidden": False})

    def success_message(self, op: Operation) -> str:
        return "Announcement published!"


@register_action(
    "pin_announcement",
    "Pin (pinned=true) or unpin (pinned=false) an announcement.",
    required=("id",),
    optional=("pinned",),
    group="announcements",
)
class PinAnnouncement(_AnnouncementTarget):
    synonyms = {"id": ("announcementId",)}

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        return {"pinned": True}

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        return []

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = session.snapshot.get("announcements", op.ref("id"))
        if record is None:
            return None
        pinned = op.data.get("pinned")
        return await session.persistence.update_announcement(
            {**record, "pinned": True if is_blank(pinned) else bool(pinned)}
        )

    def success_message(self, op: Operation) -> str:
        return "Announcement pinned!" if op.data.get("pinned") is not False else "Announcement unpinned."


@register_action(
    "delete_announcement",
    "Permanently delete an announcement.",
    required=("id",),
    dangerous=True,
    group="announcements",
)
class DeleteAnnouncement(_AnnouncementTarget):
    synonyms = {"id": ("announcementId",)}

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        return []

    async def execute(self, op: Operation, session: "Session") -> Any:
        return await session.persistence.delete_announcement(op.ref("id"))

    def success_message(self, op: Operation) -> str:
        return "Announcement deleted."
