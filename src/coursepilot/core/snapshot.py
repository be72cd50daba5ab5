"""
Read-only view over the active course's records.

The host application owns the underlying lists; tools, the validator and the operation executor
only ever query them through :class:`CourseSnapshot`.  Records are plain dicts keyed with the same
camelCase names the model uses (``courseId``, ``dueDate``, ``questionBankId``...).
"""

from typing import (
    Any,
    Dict,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Sequence,
    Set,
    Tuple,
)

COLLECTIONS = (
    "courses",
    "users",
    "assignments",
    "announcements",
    "modules",
    "files",
    "enrollments",
    "invites",
    "question_banks",
    "group_sets",
    "grades",
    "submissions",
)

# Field carrying the human-readable name of a record, per collection.
TITLE_FIELDS: Dict[str, str] = {
    "modules": "name",
    "question_banks": "name",
    "files": "name",
    "group_sets": "name",
    "courses": "name",
    "users": "name",
    "invites": "email",
}


def title_of(collection: str, record: Mapping[str, Any]) -> str:
    """Display name of *record* within *collection*."""
    return str(record.get(TITLE_FIELDS.get(collection, "title")) or "")


class CourseSnapshot:
    """Synchronous getters over in-memory course data, scoped to one course."""

    def __init__(self, data: Mapping[str, Sequence[MutableMapping[str, Any]]], course_id: str):
        self._data = data
        self.course_id = course_id

    # ------------------------------------------------------------------ #
    # Scoping
    # ------------------------------------------------------------------ #
    def _all(self, collection: str) -> Sequence[MutableMapping[str, Any]]:
        if collection not in COLLECTIONS:
            raise KeyError(f"Unknown collection '{collection}'.")
        return self._data.get(collection) or []

    def records(self, collection: str) -> List[MutableMapping[str, Any]]:
        """All records of *collection* that belong to the active course."""
        rows = self._all(collection)
        if collection == "users":
            enrolled = {e.get("userId") for e in self.enrollments()}
            return [u for u in rows if u.get("id") in enrolled]
        if collection == "courses":
            return [c for c in rows if c.get("id") == self.course_id]
        if collection in ("grades", "submissions"):
            assignment_ids = {a.get("id") for a in self.records("assignments")}
            return [
                r
                for r in rows
                if r.get("courseId") == self.course_id
                or ("courseId" not in r and r.get("assignmentId") in assignment_ids)
            ]
        return [r for r in rows if r.get("courseId") == self.course_id]

    # ------------------------------------------------------------------ #
    # Convenience getters
    # ------------------------------------------------------------------ #
    @property
    def course(self) -> Optional[MutableMapping[str, Any]]:
        rows = self.records("courses")
        return rows[0] if rows else None

    def assignments(self) -> List[MutableMapping[str, Any]]:
        return self.records("assignments")

    def announcements(self) -> List[MutableMapping[str, Any]]:
        return self.records("announcements")

    def modules(self) -> List[MutableMapping[str, Any]]:
        return sorted(self.records("modules"), key=lambda m: m.get("position") or 0)

    def files(self) -> List[MutableMapping[str, Any]]:
        return self.records("files")

    def enrollments(self) -> List[MutableMapping[str, Any]]:
        return self.records("enrollments")

    def invites(self) -> List[MutableMapping[str, Any]]:
        return self.records("invites")

    def question_banks(self) -> List[MutableMapping[str, Any]]:
        return self.records("question_banks")

    def group_sets(self) -> List[MutableMapping[str, Any]]:
        return self.records("group_sets")

    def grades(self) -> List[MutableMapping[str, Any]]:
        return self.records("grades")

    def submissions(self) -> List[MutableMapping[str, Any]]:
        return self.records("submissions")

    def user(self, user_id: str) -> Optional[MutableMapping[str, Any]]:
        for u in self._all("users"):
            if u.get("id") == user_id:
                return u
        return None

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def get(self, collection: str, record_id: Any) -> Optional[MutableMapping[str, Any]]:
        if record_id in (None, ""):
            return None
        for record in self.records(collection):
            if str(record.get("id")) == str(record_id):
                return record
        return None

    def find_by_title(self, collection: str, title: Any) -> Optional[MutableMapping[str, Any]]:
        """Case-insensitive exact match on the collection's display field."""
        if not isinstance(title, str) or not title.strip():
            return None
        wanted = title.strip().casefold()
        for record in self.records(collection):
            if title_of(collection, record).strip().casefold() == wanted:
                return record
        return None

    def find(
        self, collection: str, record_id: Any = None, title: Any = None
    ) -> Optional[MutableMapping[str, Any]]:
        """Look up by id first, then by display name."""
        return self.get(collection, record_id) or self.find_by_title(collection, title)

    def module_item(
        self, item_id: Any, title: Any = None
    ) -> Optional[Tuple[MutableMapping[str, Any], MutableMapping[str, Any]]]:
        """Return ``(module, item)`` for a module item id (or item title)."""
        wanted = title.strip().casefold() if isinstance(title, str) and title.strip() else None
        for module in self.modules():
            for item in module.get("items") or []:
                if item_id not in (None, "") and str(item.get("id")) == str(item_id):
                    return module, item
                if wanted and str(item.get("title") or "").strip().casefold() == wanted:
                    return module, item
        return None


class ReferenceIndex:
    """
    Existence probe used by the validator.

    Wraps a snapshot and, while validating a pipeline, also knows the titles of records that
    earlier steps are going to create.  Title references are only honoured when
    ``allow_titles`` is set.
    """

    def __init__(self, snapshot: CourseSnapshot, allow_titles: bool = False):
        self.snapshot = snapshot
        self.allow_titles = allow_titles
        self._planned: Dict[str, Set[str]] = {}

    def plan(self, collection: str, title: Any) -> None:
        if isinstance(title, str) and title.strip():
            self._planned.setdefault(collection, set()).add(title.strip().casefold())

    def is_planned(self, collection: str, title: Any) -> bool:
        if not isinstance(title, str):
            return False
        return title.strip().casefold() in self._planned.get(collection, set())

    def exists(self, collection: str, record_id: Any = None, title: Any = None) -> bool:
        if self.snapshot.get(collection, record_id) is not None:
            return True
        if not self.allow_titles:
            return False
        return (
            self.snapshot.find_by_title(collection, title) is not None
            or self.is_planned(collection, title)
        )

    def module_item_exists(self, item_id: Any = None, title: Any = None) -> bool:
        if self.snapshot.module_item(item_id) is not None:
            return True
        return self.allow_titles and self.snapshot.module_item(None, title) is not None
