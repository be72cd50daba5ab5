"""
Persistence collaborator interface plus an in-memory implementation.

Every write the operation executor performs goes through :class:`CoursePersistence`.  Each call
returns the saved record (or ``True`` for deletes) on success and a falsy value on failure; the
executor never inspects anything beyond truthiness.

:class:`InMemoryCourseStore` keeps the course lists in a plain dict so it can back both the
API's demo sessions and the test-suite.  Because the snapshot reads the same lists, records
created by one pipeline step are visible to the next.
"""

import copy
import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Protocol,
    runtime_checkable,
)

from coursepilot.core.snapshot import (
    COLLECTIONS,
    CourseSnapshot,
)

logger = logging.getLogger(__name__)

Record = MutableMapping[str, Any]


@runtime_checkable
class CoursePersistence(Protocol):
    """One async create/update/delete per domain entity."""

    async def create_announcement(self, record: Record) -> Any: ...

    async def update_announcement(self, record: Record) -> Any: ...

    async def delete_announcement(self, announcement_id: str) -> Any: ...

    async def create_assignment(self, record: Record) -> Any: ...

    async def update_assignment(self, record: Record) -> Any: ...

    async def delete_assignment(self, assignment_id: str) -> Any: ...

    async def create_module(self, record: Record) -> Any: ...

    async def update_module(self, record: Record) -> Any: ...

    async def delete_module(self, module_id: str) -> Any: ...

    async def create_module_item(self, item: Record, module_id: str) -> Any: ...

    async def delete_module_item(self, item_id: str) -> Any: ...

    async def create_question_bank(self, record: Record) -> Any: ...

    async def update_question_bank(self, record: Record) -> Any: ...

    async def delete_question_bank(self, bank_id: str) -> Any: ...

    async def create_invite(self, record: Record) -> Any: ...

    async def delete_invite(self, invite_id: str) -> Any: ...

    async def update_enrollment(self, user_id: str, course_id: str, role: str) -> Any: ...

    async def delete_enrollment(self, user_id: str, course_id: str) -> Any: ...

    async def update_course(self, record: Record) -> Any: ...


class InMemoryCourseStore:
    """Dict-of-lists store implementing :class:`CoursePersistence`."""

    def __init__(self, data: Mapping[str, List[Record]] | None = None):
        self.data: Dict[str, List[Record]] = {name: [] for name in COLLECTIONS}
        for name, rows in (data or {}).items():
            if name not in self.data:
                logger.warning("Ignoring unknown collection '%s'", name)
                continue
            self.data[name] = [copy.deepcopy(dict(r)) for r in rows]

    def snapshot(self, course_id: str) -> CourseSnapshot:
        return CourseSnapshot(self.data, course_id)

    # ------------------------------------------------------------------ #
    # Generic helpers
    # ------------------------------------------------------------------ #
    def _find(self, collection: str, record_id: Any) -> Optional[Record]:
        for row in self.data[collection]:
            if str(row.get("id")) == str(record_id):
                return row
        return None

    def _insert(self, collection: str, record: Record) -> Record:
        saved = copy.deepcopy(dict(record))
        self.data[collection].append(saved)
        logger.info("Created %s record %s", collection, saved.get("id"))
        return saved

    def _replace(self, collection: str, record: Record) -> Optional[Record]:
        current = self._find(collection, record.get("id"))
        if current is None:
            logger.error("Cannot update %s %s: not found", collection, record.get("id"))
            return None
        current.update(copy.deepcopy(dict(record)))
        logger.info("Updated %s record %s", collection, current.get("id"))
        return current

    def _remove(self, collection: str, record_id: Any) -> bool:
        current = self._find(collection, record_id)
        if current is None:
            logger.error("Cannot delete %s %s: not found", collection, record_id)
            return False
        self.data[collection].remove(current)
        logger.info("Deleted %s record %s", collection, record_id)
        return True

    # ------------------------------------------------------------------ #
    # Announcements
    # ------------------------------------------------------------------ #
    async def create_announcement(self, record: Record) -> Any:
        return self._insert("announcements", record)

    async def update_announcement(self, record: Record) -> Any:
        return self._replace("announcements", record)

    async def delete_announcement(self, announcement_id: str) -> Any:
        return self._remove("announcements", announcement_id)

    # ------------------------------------------------------------------ #
    # Assignments
    # ------------------------------------------------------------------ #
    async def create_assignment(self, record: Record) -> Any:
        return self._insert("assignments", record)

    async def update_assignment(self, record: Record) -> Any:
        return self._replace("assignments", record)

    async def delete_assignment(self, assignment_id: str) -> Any:
        return self._remove("assignments", assignment_id)

    # ------------------------------------------------------------------ #
    # Modules
    # ------------------------------------------------------------------ #
    async def create_module(self, record: Record) -> Any:
        record = dict(record)
        record.setdefault("items", [])
        return self._insert("modules", record)

    async def update_module(self, record: Record) -> Any:
        return self._replace("modules", record)

    async def delete_module(self, module_id: str) -> Any:
        return self._remove("modules", module_id)

    async def create_module_item(self, item: Record, module_id: str) -> Any:
        module = self._find("modules", module_id)
        if module is None:
            logger.error("Cannot add item to module %s: not found", module_id)
            return None
        saved = copy.deepcopy(dict(item))
        module.setdefault("items", []).append(saved)
        logger.info("Added %s item %s to module %s", saved.get("type"), saved.get("id"), module_id)
        return saved

    async def delete_module_item(self, item_id: str) -> Any:
        for module in self.data["modules"]:
            items = module.get("items") or []
            for item in items:
                if str(item.get("id")) == str(item_id):
                    items.remove(item)
                    logger.info("Removed item %s from module %s", item_id, module.get("id"))
                    return True
        logger.error("Cannot delete module item %s: not found", item_id)
        return False

    # ------------------------------------------------------------------ #
    # Question banks
    # ------------------------------------------------------------------ #
    async def create_question_bank(self, record: Record) -> Any:
        return self._insert("question_banks", record)

    async def update_question_bank(self, record: Record) -> Any:
        return self._replace("question_banks", record)

    async def delete_question_bank(self, bank_id: str) -> Any:
        return self._remove("question_banks", bank_id)

    # ------------------------------------------------------------------ #
    # People
    # ------------------------------------------------------------------ #
    async def create_invite(self, record: Record) -> Any:
        return self._insert("invites", record)

    async def delete_invite(self, invite_id: str) -> Any:
        return self._remove("invites", invite_id)

    async def update_enrollment(self, user_id: str, course_id: str, role: str) -> Any:
        for row in self.data["enrollments"]:
            if row.get("userId") == user_id and row.get("courseId") == course_id:
                row["role"] = role
                logger.info("Changed role of %s in %s to %s", user_id, course_id, role)
                return row
        logger.error("Cannot update enrollment %s/%s: not found", user_id, course_id)
        return None

    async def delete_enrollment(self, user_id: str, course_id: str) -> Any:
        for row in self.data["enrollments"]:
            if row.get("userId") == user_id and row.get("courseId") == course_id:
                self.data["enrollments"].remove(row)
                logger.info("Removed %s from %s", user_id, course_id)
                return True
        logger.error("Cannot delete enrollment %s/%s: not found", user_id, course_id)
        return False

    # ------------------------------------------------------------------ #
    # Course
    # ------------------------------------------------------------------ #
    async def update_course(self, record: Record) -> Any:
        return self._replace("courses", record)
