"""Confirming, rejecting and running pipelines against the in-memory store."""

import json

import pytest

from coursepilot.agent.materializer import materialize_action
from coursepilot.agent.operations import (
    REJECT_ACK,
    confirm_action,
    reject_action,
)
from coursepilot.core.persistence import InMemoryCourseStore
from coursepilot.core.schema import ActionMessage
from coursepilot.core.session import Session
from coursepilot.core.thread import ActionStateError


def propose(session: Session, raw) -> int:
    pending = materialize_action(raw)
    return session.thread.append(ActionMessage(action_type=pending.action_type, data=pending.data))


class FlakyStore(InMemoryCourseStore):
    """Store whose writes can be switched to fail."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.fail_items = False
        self.raise_on_announcements = False
        self.fail_item_deletes = False
        self.invites_before_failure = None

    async def create_module_item(self, item, module_id):
        if self.fail_items:
            return None
        return await super().create_module_item(item, module_id)

    async def delete_module_item(self, item_id):
        if self.fail_item_deletes and item_id == "mi1":
            return False
        return await super().delete_module_item(item_id)

    async def create_announcement(self, record):
        if self.raise_on_announcements:
            raise ConnectionError("database unavailable")
        return await super().create_announcement(record)

    async def create_invite(self, record):
        if self.invites_before_failure is not None:
            if self.invites_before_failure == 0:
                return None
            self.invites_before_failure -= 1
        return await super().create_invite(record)


@pytest.fixture
def flaky_store(store) -> FlakyStore:
    return FlakyStore(store.data)


@pytest.fixture
def flaky_session(flaky_store) -> Session:
    return Session.from_store(flaky_store, {"id": "u1"}, "c1")


# ---------------------------------------------------------------------------
# Single actions
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_confirm_creates_hidden_announcement(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_announcement", "title": "Office hours", "content": "Tuesdays at 3"})

    assert await confirm_action(instructor_session, idx) is True

    created = [a for a in store.data["announcements"] if a["title"] == "Office hours"]
    assert len(created) == 1
    assert created[0]["hidden"] is True
    assert created[0]["authorId"] == "u1"
    assert instructor_session.thread[idx].confirmed
    assert instructor_session.thread[-1].text == "Announcement created as draft!"


@pytest.mark.asyncio
async def test_confirm_with_publish_flag(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_announcement", "title": "Live", "content": "Now"})
    assert await confirm_action(instructor_session, idx, publish=True) is True
    created = next(a for a in store.data["announcements"] if a["title"] == "Live")
    assert created["hidden"] is False
    assert instructor_session.thread[-1].text == "Announcement published!"


@pytest.mark.asyncio
async def test_publish_requires_complete_fields(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_assignment", "title": "Essay 2"})

    assert await confirm_action(instructor_session, idx, publish=True) is False

    assert instructor_session.thread[idx].is_pending
    assert "Cannot publish yet" in instructor_session.thread[-1].text
    assert "description" in instructor_session.thread[-1].text
    assert not any(a["title"] == "Essay 2" for a in store.data["assignments"])

    # Saving as a draft is still allowed.
    assert await confirm_action(instructor_session, idx) is True
    saved = next(a for a in store.data["assignments"] if a["title"] == "Essay 2")
    assert saved["status"] == "draft"
    assert saved["points"] == 100


@pytest.mark.asyncio
async def test_no_submission_items_stay_in_draft(instructor_session, store) -> None:
    idx = propose(
        instructor_session,
        {"action": "create_assignment", "title": "Read chapter 2", "assignmentType": "no_submission", "status": "published"},
    )
    assert instructor_session.thread[idx].data["status"] == "draft"

    assert await confirm_action(instructor_session, idx, publish=True) is False
    assert "always stay in draft" in instructor_session.thread[-1].text

    assert await confirm_action(instructor_session, idx) is True
    saved = next(a for a in store.data["assignments"] if a["title"] == "Read chapter 2")
    assert saved["status"] == "draft"
    assert saved["gradingType"] == "complete_incomplete"


@pytest.mark.asyncio
async def test_persistence_exception_is_a_failure(flaky_session, flaky_store) -> None:
    flaky_store.raise_on_announcements = True
    idx = propose(flaky_session, {"action": "create_announcement", "title": "Oops", "content": "x"})

    assert await confirm_action(flaky_session, idx) is False

    assert flaky_session.thread[idx].is_pending
    assert "couldn't complete" in flaky_session.thread[-1].text
    assert not any(a["title"] == "Oops" for a in flaky_store.data["announcements"])


@pytest.mark.asyncio
async def test_stale_target_is_reported(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "update_assignment", "id": "a1", "points": 50})
    store.data["assignments"] = [a for a in store.data["assignments"] if a["id"] != "a1"]

    assert await confirm_action(instructor_session, idx) is False
    assert instructor_session.thread[idx].is_pending
    assert "a1" in instructor_session.thread[-1].text


@pytest.mark.asyncio
async def test_update_merges_into_existing_record(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "update_assignment", "id": "a1", "points": 50})
    assert await confirm_action(instructor_session, idx) is True
    record = next(a for a in store.data["assignments"] if a["id"] == "a1")
    assert record["points"] == 50
    assert record["title"] == "Problem Set 1"
    assert record["status"] == "published"


@pytest.mark.asyncio
async def test_move_item_between_modules(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "move_to_module", "itemId": "mi1", "toModuleId": "m2"})

    assert await confirm_action(instructor_session, idx) is True

    modules = {m["id"]: m for m in store.data["modules"]}
    assert modules["m1"]["items"] == []
    assert [item["refId"] for item in modules["m2"]["items"]] == ["a1"]


@pytest.mark.asyncio
async def test_failed_move_leaves_item_in_one_module(flaky_session, flaky_store) -> None:
    idx = propose(flaky_session, {"action": "move_to_module", "itemId": "mi1", "toModuleId": "m2"})
    flaky_store.fail_item_deletes = True

    assert await confirm_action(flaky_session, idx) is False
    assert await confirm_action(flaky_session, idx) is False

    modules = {m["id"]: m for m in flaky_store.data["modules"]}
    assert [item["id"] for item in modules["m1"]["items"]] == ["mi1"]
    assert modules["m2"]["items"] == []
    assert flaky_session.thread[idx].is_pending

    flaky_store.fail_item_deletes = False
    assert await confirm_action(flaky_session, idx) is True
    assert modules["m1"]["items"] == []
    assert [item["refId"] for item in modules["m2"]["items"]] == ["a1"]


@pytest.mark.asyncio
async def test_edited_envelope_keys_do_not_change_the_confirmed_action(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_announcement", "title": "Lab moved", "content": "Room 5"})
    instructor_session.thread.update_action_field(idx, "action", "delete_assignment")

    assert await confirm_action(instructor_session, idx) is True
    assert any(a["title"] == "Lab moved" for a in store.data["announcements"])
    assert instructor_session.thread[-1].text == "Announcement created as draft!"


# ---------------------------------------------------------------------------
# Reject
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_reject_hides_and_acknowledges(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "delete_assignment", "id": "a1"})

    await reject_action(instructor_session, idx)

    msg = instructor_session.thread[idx]
    assert msg.rejected and msg.hidden
    assert instructor_session.thread[-1].text == REJECT_ACK
    with pytest.raises(ActionStateError):
        await confirm_action(instructor_session, idx)
    assert store.snapshot("c1").get("assignments", "a1") is not None


@pytest.mark.asyncio
async def test_confirm_requires_an_action_message(instructor_session) -> None:
    instructor_session.thread.add_user("hello")
    with pytest.raises(ActionStateError):
        await confirm_action(instructor_session, 0)
    with pytest.raises(ActionStateError):
        await confirm_action(instructor_session, 99)


@pytest.mark.asyncio
async def test_confirmed_action_cannot_run_twice(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_module", "name": "Week 3"})
    assert await confirm_action(instructor_session, idx) is True
    with pytest.raises(ActionStateError):
        await confirm_action(instructor_session, idx)
    assert sum(m["name"] == "Week 3" for m in store.data["modules"]) == 1


# ---------------------------------------------------------------------------
# Pipelines
# ---------------------------------------------------------------------------
WEEK_9_PIPELINE = {
    "action": "pipeline",
    "steps": [
        {"action": "create_module", "name": "Week 9"},
        {"action": "add_to_module", "moduleName": "Week 9", "itemType": "assignment", "itemId": "a1"},
        {"action": "create_announcement", "title": "Week 9 is up", "content": "See the new module."},
    ],
}


@pytest.mark.asyncio
async def test_pipeline_stops_at_first_failure_and_resumes(flaky_session, flaky_store) -> None:
    flaky_store.fail_items = True
    idx = propose(flaky_session, WEEK_9_PIPELINE)

    assert await confirm_action(flaky_session, idx) is False

    msg = flaky_session.thread[idx]
    assert msg.progress == 1
    assert msg.is_pending
    assert "Step 2 (add_to_module)" in flaky_session.thread[-1].text
    assert [m["name"] for m in flaky_store.data["modules"]].count("Week 9") == 1
    assert not any(a["title"] == "Week 9 is up" for a in flaky_store.data["announcements"])

    flaky_store.fail_items = False
    assert await confirm_action(flaky_session, idx) is True

    assert msg.confirmed
    week9 = [m for m in flaky_store.data["modules"] if m["name"] == "Week 9"]
    assert len(week9) == 1
    assert [item["refId"] for item in week9[0]["items"]] == ["a1"]
    assert any(a["title"] == "Week 9 is up" for a in flaky_store.data["announcements"])
    assert flaky_session.thread[-1].text.startswith("All 3 steps completed!")


@pytest.mark.asyncio
async def test_pipeline_links_quiz_to_new_bank(instructor_session, store) -> None:
    idx = propose(
        instructor_session,
        {
            "action": "pipeline",
            "steps": [
                {"action": "create_question_bank", "name": "Chapter 9", "questions": ["What is GDP?"]},
                {"action": "create_quiz_from_bank", "title": "Quiz 9", "questionBankName": "Chapter 9"},
            ],
        },
    )

    assert await confirm_action(instructor_session, idx) is True

    bank = next(b for b in store.data["question_banks"] if b["name"] == "Chapter 9")
    quiz = next(a for a in store.data["assignments"] if a["title"] == "Quiz 9")
    assert quiz["questionBankId"] == bank["id"]
    assert quiz["assignmentType"] == "quiz"
    assert bank["questions"][0]["prompt"] == "What is GDP?"


@pytest.mark.asyncio
async def test_pipeline_publish_precondition_names_the_step(instructor_session, store) -> None:
    idx = propose(
        instructor_session,
        {
            "action": "pipeline",
            "steps": [
                {"action": "create_module", "name": "Week 10"},
                {"action": "create_assignment", "title": "Essay 10"},
            ],
        },
    )

    assert await confirm_action(instructor_session, idx, publish=True) is False

    assert "Step 2 (create_assignment)" in instructor_session.thread[-1].text
    assert instructor_session.thread[idx].progress == 1
    assert any(m["name"] == "Week 10" for m in store.data["modules"])


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_confirm_and_reject_are_audited(instructor_session, audit_path) -> None:
    first = propose(instructor_session, {"action": "create_module", "name": "Week 4"})
    second = propose(instructor_session, {"action": "create_module", "name": "Week 5"})
    await confirm_action(instructor_session, first)
    await reject_action(instructor_session, second)

    entries = [json.loads(line) for line in audit_path.read_text(encoding="utf-8").splitlines()]
    assert [e["event"] for e in entries] == ["confirm", "reject"]
    assert entries[0]["payload"]["action"] == "create_module"
    assert entries[1]["payload"]["index"] == second


# ---------------------------------------------------------------------------
# People, course settings and question banks
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_invite_sends_one_invitation_per_email(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_invite", "emails": "a@uni.edu, B@uni.edu"})

    assert await confirm_action(instructor_session, idx) is True

    invited = {i["email"]: i["role"] for i in store.data["invites"] if i["id"] != "i1"}
    assert invited == {"a@uni.edu": "student", "b@uni.edu": "student"}
    assert instructor_session.thread[-1].text == "2 invitations sent!"


@pytest.mark.asyncio
async def test_invite_retry_after_partial_failure_sends_no_duplicates(flaky_session, flaky_store) -> None:
    idx = propose(flaky_session, {"action": "create_invite", "emails": "a@x.edu, b@x.edu"})
    flaky_store.invites_before_failure = 1

    assert await confirm_action(flaky_session, idx) is False
    assert flaky_session.thread[idx].is_pending

    flaky_store.invites_before_failure = None
    assert await confirm_action(flaky_session, idx) is True

    emails = sorted(i["email"] for i in flaky_store.data["invites"])
    assert emails == ["a@x.edu", "b@x.edu", "new@student.edu"]
    assert flaky_session.thread[-1].text == "2 invitations sent!"


@pytest.mark.asyncio
async def test_already_invited_email_is_not_invited_again(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "create_invite", "emails": "NEW@student.edu"})
    assert await confirm_action(instructor_session, idx) is True
    assert [i["id"] for i in store.data["invites"]] == ["i1"]


@pytest.mark.asyncio
async def test_revoke_invite(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "revoke_invite", "inviteId": "i1"})
    assert await confirm_action(instructor_session, idx) is True
    assert store.data["invites"] == []


@pytest.mark.asyncio
async def test_change_role_by_user_id(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "update_enrollment_role", "userId": "u3", "role": "TA"})

    assert await confirm_action(instructor_session, idx) is True

    enrollment = next(e for e in store.data["enrollments"] if e["userId"] == "u3")
    assert enrollment["role"] == "ta"
    assert instructor_session.thread[-1].text == "Role changed to ta."


@pytest.mark.asyncio
async def test_remove_enrollment_by_name(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "remove_enrollment", "userName": "Sam Student"})
    assert await confirm_action(instructor_session, idx) is True
    assert not any(e["userId"] == "u3" for e in store.data["enrollments"])


@pytest.mark.asyncio
async def test_hide_course(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "set_course_visibility", "courseId": "c1", "visible": "false"})

    assert await confirm_action(instructor_session, idx) is True

    assert store.snapshot("c1").course["visible"] is False
    assert instructor_session.thread[-1].text == "Course hidden from students."


@pytest.mark.asyncio
async def test_update_start_here_keeps_heading(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "update_start_here", "content": "Read the syllabus first."})

    assert await confirm_action(instructor_session, idx) is True

    course = store.snapshot("c1").course
    assert course["startHereContent"] == "Read the syllabus first."
    assert course["startHereTitle"] == "Start Here"


@pytest.mark.asyncio
async def test_rename_and_delete_unused_bank(instructor_session, store) -> None:
    rename = propose(instructor_session, {"action": "update_question_bank", "id": "qb2", "name": "Spare bank"})
    assert await confirm_action(instructor_session, rename) is True
    assert store.snapshot("c1").get("question_banks", "qb2")["name"] == "Spare bank"

    delete = propose(instructor_session, {"action": "delete_question_bank", "id": "qb2"})
    assert await confirm_action(instructor_session, delete) is True
    assert store.snapshot("c1").get("question_banks", "qb2") is None


@pytest.mark.asyncio
async def test_bank_in_use_cannot_be_deleted(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "delete_question_bank", "id": "qb1"})
    assert await confirm_action(instructor_session, idx) is False
    assert "Quiz 1" in instructor_session.thread[-1].text
    assert store.snapshot("c1").get("question_banks", "qb1") is not None


@pytest.mark.asyncio
async def test_remove_item_from_module(instructor_session, store) -> None:
    idx = propose(instructor_session, {"action": "remove_from_module", "itemId": "mi1"})

    assert await confirm_action(instructor_session, idx) is True

    assert store.snapshot("c1").get("modules", "m1")["items"] == []
    assert store.snapshot("c1").get("assignments", "a1") is not None
