"""
Session context object and the capability predicate.

One :class:`Session` per conversation carries everything the components need: the thread, the
course snapshot, the persistence collaborator and the caller's identity.  Components receive it
explicitly; nothing lives in module-level state.
"""

from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
)

from coursepilot.common import new_id
from coursepilot.core.persistence import (
    CoursePersistence,
    InMemoryCourseStore,
)
from coursepilot.core.snapshot import CourseSnapshot
from coursepilot.core.thread import Thread
from coursepilot.tools.documents import (
    DocumentFetcher,
    HttpDocumentFetcher,
    PlainTextExtractor,
    TextExtractor,
)

STAFF_ROLES = frozenset({"instructor", "ta"})


def is_effectively_read_write(
    user: Optional[Mapping[str, Any]],
    course: Optional[Mapping[str, Any]],
    enrollments: Iterable[Mapping[str, Any]],
    view_as_student: bool = False,
) -> bool:
    """
    Whether *user* may propose writes in *course*.

    Staff (instructor or TA enrollment, or the course creator) get read-write access unless they
    are currently previewing the course as a student.
    """
    if not user or not course or view_as_student:
        return False
    user_id = user.get("id")
    if course.get("createdBy") == user_id:
        return True
    for enrollment in enrollments:
        if enrollment.get("userId") == user_id and enrollment.get("courseId") == course.get("id"):
            return enrollment.get("role") in STAFF_ROLES
    return False


@dataclass
class Session:
    """Per-conversation state handed to every component call."""

    user: Dict[str, Any]
    course_id: str
    snapshot: CourseSnapshot
    persistence: CoursePersistence
    thread: Thread = field(default_factory=Thread)
    view_as_student: bool = False
    session_id: str = field(default_factory=new_id)
    document_fetcher: DocumentFetcher = field(default_factory=HttpDocumentFetcher)
    text_extractor: TextExtractor = field(default_factory=PlainTextExtractor)

    @classmethod
    def from_store(
        cls,
        store: InMemoryCourseStore,
        user: Dict[str, Any],
        course_id: str,
        view_as_student: bool = False,
        on_change: Callable[[Thread], None] | None = None,
        **kwargs: Any,
    ) -> "Session":
        """Build a session whose snapshot and persistence share one in-memory store."""
        return cls(
            user=user,
            course_id=course_id,
            snapshot=store.snapshot(course_id),
            persistence=store,
            thread=Thread(on_change=on_change),
            view_as_student=view_as_student,
            **kwargs,
        )

    @property
    def read_write(self) -> bool:
        return is_effectively_read_write(
            self.user, self.snapshot.course, self.snapshot.enrollments(), self.view_as_student
        )

    @property
    def user_id(self) -> Optional[str]:
        return self.user.get("id")
