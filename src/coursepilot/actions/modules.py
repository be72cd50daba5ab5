"""
Module actions.  Modules hold an ordered ``items`` list; an item points at an assignment (or
quiz) or a file through ``refId``, or carries a ``url`` for external links.
"""

from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Mapping,
    Optional,
)

from coursepilot.actions import (
    ActionHandler,
    CreatedIndex,
    is_blank,
    lookup_id,
    named_exists,
    register_action,
)
from coursepilot.common import new_id
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import (
    CourseSnapshot,
    ReferenceIndex,
    title_of,
)

if TYPE_CHECKING:
    from coursepilot.core.session import Session

# itemType -> collection holding the linked record
ITEM_COLLECTIONS: Dict[str, str] = {
    "assignment": "assignments",
    "quiz": "assignments",
    "file": "files",
}
EXTERNAL_LINK = "external_link"

_MODULE_SYNONYMS = {"name": ("title", "moduleName")}


def _check_module(refs: ReferenceIndex, ref: Any, name: Any, label: str = "module") -> Optional[str]:
    if is_blank(ref) and is_blank(name):
        return f"No {label} was identified. Look up its id first."
    if named_exists(refs, "modules", ref, name):
        return None
    return f"No module '{ref or name}' exists in this course."


def _find_item(snapshot: CourseSnapshot, data: Mapping[str, Any]):
    return snapshot.module_item(data.get("itemId"), data.get("itemTitle"))


@register_action(
    "create_module",
    "Create a new (empty) course module at the end of the module list.",
    required=("name",),
    optional=("description", "position", "notes"),
    group="modules",
)
class CreateModule(ActionHandler):
    creates = "modules"
    synonyms = _MODULE_SYNONYMS

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        return {"description": ""}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        return None

    async def execute(self, op: Operation, session: "Session") -> Any:
        position = op.data.get("position")
        if position is None:
            position = max((m.get("position") or 0 for m in session.snapshot.modules()), default=0) + 1
        record = {
            "id": new_id(),
            "courseId": session.course_id,
            "name": op.data.get("name"),
            "description": op.data.get("description") or "",
            "position": position,
            "items": [],
        }
        return await session.persistence.create_module(record)

    def success_message(self, op: Operation) -> str:
        return "Module created!"


@register_action(
    "update_module",
    "Rename, re-describe or reposition a module.",
    required=("id",),
    optional=("name", "description", "position", "notes"),
    group="modules",
)
class UpdateModule(ActionHandler):
    target_collection = "modules"
    synonyms = {"id": ("moduleId",), "name": ("title",)}

    async def execute(self, op: Operation, session: "Session") -> Any:
        record = session.snapshot.get("modules", op.ref("id"))
        if record is None:
            return None
        merged = dict(record)
        for key in ("name", "description", "position"):
            if op.data.get(key) is not None:
                merged[key] = op.data[key]
        return await session.persistence.update_module(merged)

    def success_message(self, op: Operation) -> str:
        return "Module updated!"


@register_action(
    "delete_module",
    "Permanently delete a module. The linked assignments and files are kept.",
    required=("id",),
    dangerous=True,
    group="modules",
)
class DeleteModule(ActionHandler):
    target_collection = "modules"
    target_title_key = "name"
    synonyms = {"id": ("moduleId",), "name": ("moduleName",)}

    async def execute(self, op: Operation, session: "Session") -> Any:
        return await session.persistence.delete_module(op.ref("id"))

    def success_message(self, op: Operation) -> str:
        return "Module deleted."


@register_action(
    "add_to_module",
    "Add an assignment, quiz, file or external link to a module.",
    required=("moduleId",),
    optional=("moduleName", "itemType", "itemId", "itemTitle", "url", "notes"),
    group="modules",
    alternates={"moduleId": ("moduleName",)},
)
class AddToModule(ActionHandler):
    synonyms = {"itemType": ("kind",), "url": ("link", "href")}

    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        return {"itemType": EXTERNAL_LINK if data.get("url") else "assignment"}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        reason = _check_module(refs, data.get("moduleId"), data.get("moduleName"))
        if reason:
            return reason
        item_type = data.get("itemType")
        if item_type == EXTERNAL_LINK:
            return None if data.get("url") else "An external link needs a url."
        collection = ITEM_COLLECTIONS.get(item_type)
        if collection is None:
            return f"Unknown module item type '{item_type}'."
        if is_blank(data.get("itemId")) and is_blank(data.get("itemTitle")):
            return f"No {item_type} was identified. Look up its id first."
        if named_exists(refs, collection, data.get("itemId"), data.get("itemTitle")):
            return None
        return f"No {item_type} '{data.get('itemId') or data.get('itemTitle')}' exists in this course."

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        resolved = {
            "moduleId": lookup_id(
                snapshot, created, "modules", data.get("moduleId"), data.get("moduleName")
            )
        }
        collection = ITEM_COLLECTIONS.get(data.get("itemType"))
        if collection:
            resolved["itemId"] = lookup_id(
                snapshot, created, collection, data.get("itemId"), data.get("itemTitle")
            )
        return resolved

    async def execute(self, op: Operation, session: "Session") -> Any:
        module_id = op.resolved.get("moduleId")
        if not module_id:
            return None
        item_type = op.data.get("itemType")
        item: Dict[str, Any] = {"id": new_id(), "type": item_type, "title": op.data.get("itemTitle")}
        if item_type == EXTERNAL_LINK:
            item["url"] = op.data.get("url")
            item["title"] = item["title"] or op.data.get("url")
        else:
            collection = ITEM_COLLECTIONS[item_type]
            linked = session.snapshot.get(collection, op.resolved.get("itemId"))
            if linked is None:
                return None
            item["refId"] = linked.get("id")
            item["title"] = title_of(collection, linked)
        module = session.snapshot.get("modules", module_id) or {}
        item["position"] = len(module.get("items") or []) + 1
        return await session.persistence.create_module_item(item, module_id)

    def success_message(self, op: Operation) -> str:
        return "Added to module!"

    def summary(self, data: Mapping[str, Any]) -> str:
        target = data.get("moduleName") or data.get("moduleId")
        return f"{self.name} '{data.get('itemTitle') or data.get('itemId') or data.get('url')}' -> '{target}'"


@register_action(
    "remove_from_module",
    "Remove an item from its module. The linked assignment or file itself is kept.",
    required=("itemId",),
    optional=("itemTitle", "moduleId", "moduleName", "notes"),
    group="modules",
    alternates={"itemId": ("itemTitle",)},
)
class RemoveFromModule(ActionHandler):
    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        if refs.module_item_exists(data.get("itemId"), data.get("itemId")):
            return None
        if refs.snapshot.module_item(None, data.get("itemTitle")) is not None:
            return None
        return f"No module item '{data.get('itemId') or data.get('itemTitle')}' exists. Look it up with get_module first."

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        found = _find_item(snapshot, data)
        return {"itemId": found[1].get("id") if found else None}

    async def execute(self, op: Operation, session: "Session") -> Any:
        if not op.resolved.get("itemId"):
            return None
        return await session.persistence.delete_module_item(op.resolved["itemId"])

    def success_message(self, op: Operation) -> str:
        return "Removed from module."


@register_action(
    "move_to_module",
    "Move a module item into a different module.",
    required=("itemId", "toModuleId"),
    optional=("itemTitle", "fromModuleId", "fromModuleName", "toModuleName", "notes"),
    group="modules",
    alternates={"itemId": ("itemTitle",), "toModuleId": ("toModuleName",)},
)
class MoveToModule(ActionHandler):
    synonyms = {"toModuleId": ("targetModuleId",), "toModuleName": ("targetModuleName",)}

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        found = refs.module_item_exists(data.get("itemId"), data.get("itemId")) or (
            refs.snapshot.module_item(None, data.get("itemTitle")) is not None
        )
        if not found:
            return f"No module item '{data.get('itemId') or data.get('itemTitle')}' exists. Look it up with get_module first."
        return _check_module(refs, data.get("toModuleId"), data.get("toModuleName"), "target module")

    def resolve(
        self, data: Mapping[str, Any], snapshot: CourseSnapshot, created: CreatedIndex | None = None
    ) -> Dict[str, Any]:
        found = _find_item(snapshot, data) or snapshot.module_item(None, data.get("itemId"))
        return {
            "itemId": found[1].get("id") if found else None,
            "toModuleId": lookup_id(
                snapshot, created, "modules", data.get("toModuleId"), data.get("toModuleName")
            ),
        }

    async def execute(self, op: Operation, session: "Session") -> Any:
        found = session.snapshot.module_item(op.resolved.get("itemId"))
        target_id = op.resolved.get("toModuleId")
        if found is None or not target_id:
            return None
        source, item = found
        if source.get("id") == target_id:
            return item
        target = session.snapshot.get("modules", target_id) or {}
        copy = dict(item, id=new_id(), position=len(target.get("items") or []) + 1)
        saved = await session.persistence.create_module_item(copy, target_id)
        if not saved:
            return None
        removed = await session.persistence.delete_module_item(item.get("id"))
        if not removed:
            # The item must never sit in both modules.
            await session.persistence.delete_module_item(copy["id"])
            return None
        return saved

    def success_message(self, op: Operation) -> str:
        return "Moved to module!"
