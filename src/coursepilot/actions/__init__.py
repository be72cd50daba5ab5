"""
Action registry for coursepilot.

Actions are the write operations the model may only *propose*.  Each action type is one
:class:`ActionHandler` subclass registered with :func:`register_action`; the class carries the
immutable :class:`ActionDescriptor` (fields, danger flag) together with the four per-type hooks
the rest of the engine dispatches to:

* ``normalize``  - canonical field set, synonyms coalesced, policy defaults filled;
* ``check``      - referential validation against the snapshot;
* ``resolve``    - turn name/title references into real ids;
* ``execute``    - call the persistence collaborator.

Adding an action type therefore means adding one class, not touching the validator, the
materializer and the operation executor separately.
"""

import logging
from dataclasses import (
    dataclass,
    field,
)
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    MutableMapping,
    Optional,
    Sequence,
    Tuple,
    Type,
)

from coursepilot.common import normalize_timestamp
from coursepilot.core.schema import Operation
from coursepilot.core.snapshot import (
    CourseSnapshot,
    ReferenceIndex,
)

if TYPE_CHECKING:
    from coursepilot.core.session import Session

logger = logging.getLogger(__name__)

ENVELOPE_KEYS = frozenset({"type", "action"})
PIPELINE = "pipeline"
EDIT_PENDING_ACTION = "edit_pending_action"
CONTROL_ACTIONS = frozenset({EDIT_PENDING_ACTION})

# Fields that must be filled before a record may be published, per record kind.
PUBLISH_REQUIREMENTS: Dict[str, Tuple[str, ...]] = {
    "announcement": ("title", "content"),
    "assignment": ("title", "description", "points", "dueDate"),
    "quiz": ("title", "questionBankId", "dueDate", "points"),
}

# Pipeline-local map of records created by earlier steps: (collection, casefolded title) -> id
CreatedIndex = MutableMapping[Tuple[str, str], str]


def is_blank(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def missing_fields(record: Mapping[str, Any], fields: Sequence[str]) -> List[str]:
    """Names in *fields* that are blank in *record*."""
    return [f for f in fields if is_blank(record.get(f))]


@dataclass(frozen=True)
class ActionDescriptor:
    """Immutable registry entry for one action type."""

    name: str
    description: str
    required: Tuple[str, ...] = ()
    optional: Tuple[str, ...] = ()
    dangerous: bool = False
    deprecated: bool = False
    replacement: Optional[str] = None
    group: str = "general"
    alternates: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    @property
    def fields(self) -> Tuple[str, ...]:
        return self.required + self.optional


class ActionHandler:
    """Base class; subclasses override the hooks their action type needs."""

    descriptor: ClassVar[ActionDescriptor]

    # canonical field -> alternate spellings observed from models
    synonyms: ClassVar[Mapping[str, Tuple[str, ...]]] = {}
    # fields holding timestamps, normalised to local wall-clock form
    timestamp_fields: ClassVar[Tuple[str, ...]] = ()
    # collection whose record is created (pipeline title planning), if any
    creates: ClassVar[Optional[str]] = None
    # collection + key of the record this action targets, if any
    target_collection: ClassVar[Optional[str]] = None
    target_key: ClassVar[str] = "id"
    # extra key that may name the target by title inside pipelines
    target_title_key: ClassVar[Optional[str]] = None

    @property
    def name(self) -> str:
        return self.descriptor.name

    # ------------------------------------------------------------------ #
    # Materialization
    # ------------------------------------------------------------------ #
    def defaults(self, data: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        """Policy defaults for fields the model left out."""
        return {}

    def normalize(self, raw: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
        """Canonical data bag for *raw*.  Must be idempotent."""
        data = {k: v for k, v in raw.items() if k not in ENVELOPE_KEYS}
        for canonical, alternates in self.synonyms.items():
            for alt in alternates:
                # A conflicting alternate is kept as-is rather than discarded.
                if alt in data and is_blank(data.get(canonical)):
                    data[canonical] = data.pop(alt)
        for key in self.descriptor.fields:
            data.setdefault(key, None)
        for key, value in self.defaults(data, now).items():
            if data.get(key) is None:
                data[key] = value
        for key in self.timestamp_fields:
            data[key] = normalize_timestamp(data.get(key))
        self.apply_policy(data)
        return data

    def apply_policy(self, data: Dict[str, Any]) -> None:
        """Business rules that override whatever the model supplied."""

    # ------------------------------------------------------------------ #
    # Validation
    # ------------------------------------------------------------------ #
    def target_ref(self, data: Mapping[str, Any]) -> Tuple[Any, Any]:
        ref = data.get(self.target_key)
        title = ref if not is_blank(ref) else None
        if title is None and self.target_title_key:
            title = data.get(self.target_title_key)
        return ref, title

    def check_target(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        if self.target_collection is None:
            return None
        ref, title = self.target_ref(data)
        if refs.exists(self.target_collection, ref, title):
            return None
        label = self.target_collection.rstrip("s").replace("_", " ")
        shown = ref if not is_blank(ref) else title
        if is_blank(shown):
            return f"No {label} was identified. Look up its id first."
        return f"No {label} with id '{shown}' exists in this course. Look up the id first."

    def check(self, data: Mapping[str, Any], refs: ReferenceIndex) -> Optional[str]:
        """Per-type existence probe; ``None`` when every reference resolves."""
        return self.check_target(data, refs)

    # ------------------------------------------------------------------ #
    # Execution
    # ------------------------------------------------------------------ #
    def find_target(
        self,
        data: Mapping[str, Any],
        snapshot: CourseSnapshot,
        created: CreatedIndex | None = None,
    ) -> Optional[MutableMapping[str, Any]]:
        if self.target_collection is None:
            return None
        ref, title = self.target_ref(data)
        record_id = lookup_id(snapshot, created, self.target_collection, ref, title)
        return snapshot.get(self.target_collection, record_id) if record_id else None

    def resolve(
        self,
        data: Mapping[str, Any],
        snapshot: CourseSnapshot,
        created: CreatedIndex | None = None,
    ) -> Dict[str, Any]:
        """Real identifiers for name-only references."""
        if self.target_collection is None:
            return {}
        ref, title = self.target_ref(data)
        return {self.target_key: lookup_id(snapshot, created, self.target_collection, ref, title)}

    def missing_for_publish(self, op: Operation, snapshot: CourseSnapshot) -> List[str]:
        """Fields still blank when this operation would publish a record."""
        return []

    async def execute(self, op: Operation, session: "Session") -> Any:
        raise NotImplementedError(f"Action '{self.name}' cannot be executed.")

    def success_message(self, op: Operation) -> str:
        return f"Done: {self.name.replace('_', ' ')}."

    def summary(self, data: Mapping[str, Any]) -> str:
        """Short label used in pipeline reports."""
        for key in ("title", "name", "itemTitle", "email"):
            if data.get(key):
                return f"{self.name} '{data[key]}'"
        return self.name


def missing_required(
    handler: ActionHandler, data: Mapping[str, Any], allow_titles: bool = False
) -> List[str]:
    """
    Required fields of *handler* that are blank in *data*.

    A declared alternate (``questionBankName`` for ``questionBankId``...) satisfies its field;
    with *allow_titles* the target's title field may stand in for the target id.
    """
    missing = []
    desc = handler.descriptor
    for key in desc.required:
        if not is_blank(data.get(key)):
            continue
        if any(not is_blank(data.get(alt)) for alt in desc.alternates.get(key, ())):
            continue
        if (
            allow_titles
            and key == handler.target_key
            and handler.target_title_key
            and not is_blank(data.get(handler.target_title_key))
        ):
            continue
        missing.append(key)
    return missing


def named_exists(refs: ReferenceIndex, collection: str, ref: Any, name: Any = None) -> bool:
    """
    True when *ref* names a record, or *name* (an explicit name field such as ``moduleName``)
    matches an existing or planned record by exact title.
    """
    if refs.exists(collection, ref, ref):
        return True
    return refs.snapshot.find_by_title(collection, name) is not None or refs.is_planned(
        collection, name
    )


def lookup_id(
    snapshot: CourseSnapshot,
    created: CreatedIndex | None,
    collection: str,
    ref: Any,
    title: Any = None,
) -> Optional[str]:
    """Resolve *ref* (an id or an exact title) or *title* to a record id."""
    record = snapshot.get(collection, ref)
    if record is not None:
        return record.get("id")
    for candidate in (ref, title):
        if not isinstance(candidate, str) or not candidate.strip():
            continue
        if created:
            found = created.get((collection, candidate.strip().casefold()))
            if found:
                return found
        record = snapshot.find_by_title(collection, candidate)
        if record is not None:
            return record.get("id")
    return None


ACTION_REGISTRY: Dict[str, ActionHandler] = {}
"""Global registry of action handlers, keyed by action name."""


def register_action(
    name: str,
    description: str,
    *,
    required: Sequence[str] = (),
    optional: Sequence[str] = (),
    dangerous: bool = False,
    deprecated: bool = False,
    replacement: str | None = None,
    group: str = "general",
    alternates: Mapping[str, Sequence[str]] | None = None,
) -> Callable[[Type[ActionHandler]], Type[ActionHandler]]:
    """
    Class decorator registering an :class:`ActionHandler` under *name*.

    Raises
    ------
    ValueError
        If an action with the same name is already registered.
    """
    if name in ACTION_REGISTRY:
        raise ValueError(f"Action '{name}' is already registered.")

    def wrapper(cls: Type[ActionHandler]) -> Type[ActionHandler]:
        cls.descriptor = ActionDescriptor(
            name=name,
            description=description,
            required=tuple(required),
            optional=tuple(optional),
            dangerous=dangerous,
            deprecated=deprecated,
            replacement=replacement,
            group=group,
            alternates={k: tuple(v) for k, v in (alternates or {}).items()},
        )
        ACTION_REGISTRY[name] = cls()
        logger.debug("Registered action '%s'", name)
        return cls

    return wrapper


def get_handler(name: Any) -> Optional[ActionHandler]:
    return ACTION_REGISTRY.get(name) if isinstance(name, str) else None


def is_action(name: Any) -> bool:
    return get_handler(name) is not None


def action_descriptors(include_deprecated: bool = False) -> List[ActionDescriptor]:
    return [
        h.descriptor
        for h in ACTION_REGISTRY.values()
        if include_deprecated or not h.descriptor.deprecated
    ]


# Importing the handler modules registers their actions.
from coursepilot.actions import (  # noqa: E402  pylint: disable=wrong-import-position
    announcements,
    assignments,
    course,
    legacy,
    modules,
    people,
    pipeline,
    question_banks,
)
