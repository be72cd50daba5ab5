"""Capability predicate, session wiring and snapshot scoping."""

from coursepilot.core.session import is_effectively_read_write


def test_staff_roles_are_read_write(instructor_session, ta_session, student_session) -> None:
    assert instructor_session.read_write is True
    assert ta_session.read_write is True
    assert student_session.read_write is False


def test_view_as_student_drops_write_access(store) -> None:
    snap = store.snapshot("c1")
    user = {"id": "u1"}
    assert is_effectively_read_write(user, snap.course, snap.enrollments()) is True
    assert is_effectively_read_write(user, snap.course, snap.enrollments(), view_as_student=True) is False


def test_course_creator_without_enrollment_is_read_write(store) -> None:
    snap = store.snapshot("c2")
    assert is_effectively_read_write({"id": "u9"}, snap.course, snap.enrollments()) is True


def test_missing_user_or_course_is_read_only(store) -> None:
    snap = store.snapshot("c1")
    assert is_effectively_read_write(None, snap.course, snap.enrollments()) is False
    assert is_effectively_read_write({"id": "u1"}, None, snap.enrollments()) is False


def test_unenrolled_user_is_read_only(store) -> None:
    snap = store.snapshot("c1")
    assert is_effectively_read_write({"id": "u9"}, snap.course, snap.enrollments()) is False


def test_snapshot_is_scoped_to_the_course(snapshot) -> None:
    assert {a["id"] for a in snapshot.assignments()} == {"a1", "a2"}
    assert snapshot.get("assignments", "x1") is None
    assert {u["id"] for u in snapshot.records("users")} == {"u1", "u2", "u3"}
    assert [m["id"] for m in snapshot.modules()] == ["m1", "m2"]


def test_snapshot_title_lookup_is_case_insensitive(snapshot) -> None:
    assert snapshot.find_by_title("modules", "  week 2 ")["id"] == "m2"
    assert snapshot.find("question_banks", None, "CHAPTER 1")["id"] == "qb1"
    assert snapshot.find_by_title("modules", "") is None


def test_snapshot_module_item_lookup(snapshot) -> None:
    module, item = snapshot.module_item("mi1")
    assert module["id"] == "m1"
    assert item["refId"] == "a1"
    assert snapshot.module_item(None, "problem set 1")[1]["id"] == "mi1"
    assert snapshot.module_item("nope") is None


def test_writes_are_visible_through_the_snapshot(store, instructor_session) -> None:
    store.data["modules"].append({"id": "m3", "courseId": "c1", "name": "Week 3", "position": 3})
    assert instructor_session.snapshot.get("modules", "m3") is not None
