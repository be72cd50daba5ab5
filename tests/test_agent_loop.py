"""End-to-end turns through the agent loop with a scripted model."""

import json

import pytest

from coursepilot.agent.agent_loop import (
    EXHAUSTED_MESSAGE,
    FORMAT_CORRECTION,
    LLM_ERROR_MESSAGE,
    READ_ONLY_ACTION_REFUSAL,
    READ_ONLY_TOOL_REFUSAL,
    send_message,
)
from coursepilot.core.session import Session
from coursepilot.core.schema import (
    ActionMessage,
    AskUserMessage,
    AssistantMessage,
    ToolStepMessage,
)


def _kinds(session):
    return [m.kind for m in session.thread]


def _tool_call(tool, **params):
    return {"type": "tool_call", "tool": tool, "params": params, "step_label": f"Running {tool}"}


@pytest.mark.asyncio
async def test_plain_answer(instructor_session, make_llm) -> None:
    llm = make_llm([{"type": "answer", "text": "Hello!"}])
    outcome = await send_message(instructor_session, "hi", llm=llm)
    assert outcome.kind == "answer"
    assert outcome.steps == 1
    assert _kinds(instructor_session) == ["user", "assistant"]
    assert instructor_session.thread[-1].text == "Hello!"


@pytest.mark.asyncio
async def test_tool_result_is_fed_back(student_session, make_llm) -> None:
    llm = make_llm([_tool_call("list_assignments"), {"type": "answer", "text": "You have 2 assignments."}])
    outcome = await send_message(student_session, "what's due?", llm=llm)

    assert outcome.kind == "answer"
    assert outcome.steps == 2
    step = student_session.thread[1]
    assert isinstance(step, ToolStepMessage)
    assert [r["id"] for r in step.result] == ["a1", "a2"]
    fed_back = llm.calls[1]["messages"][-1]
    assert fed_back["role"] == "user"
    assert fed_back["content"].startswith("Result of list_assignments:")


@pytest.mark.asyncio
async def test_student_cannot_propose_actions(student_session, store, make_llm) -> None:
    llm = make_llm([{"type": "action", "action": "delete_assignment", "id": "a1"}])
    outcome = await send_message(student_session, "delete problem set 1", llm=llm)

    assert outcome.kind == "refusal"
    assert not any(isinstance(m, ActionMessage) for m in student_session.thread)
    assert student_session.thread[-1].text == READ_ONLY_ACTION_REFUSAL
    assert store.snapshot("c1").get("assignments", "a1") is not None


@pytest.mark.asyncio
async def test_student_cannot_use_staff_tools(student_session, make_llm) -> None:
    llm = make_llm([_tool_call("list_people")])
    outcome = await send_message(student_session, "who is in my class?", llm=llm)
    assert outcome.kind == "refusal"
    assert student_session.thread[-1].text == READ_ONLY_TOOL_REFUSAL
    assert not any(isinstance(m, ToolStepMessage) for m in student_session.thread)


@pytest.mark.asyncio
async def test_view_as_student_is_read_only(store, make_llm) -> None:
    session = Session.from_store(store, {"id": "u1"}, "c1", view_as_student=True)
    llm = make_llm([{"type": "create_module", "name": "Week 9"}])
    outcome = await send_message(session, "add a module", llm=llm)
    assert outcome.kind == "refusal"


@pytest.mark.asyncio
async def test_step_budget_is_enforced(instructor_session, make_llm) -> None:
    llm = make_llm([_tool_call("list_modules")] * 7)
    outcome = await send_message(instructor_session, "loop forever", llm=llm)

    assert outcome.kind == "exhausted"
    assert len(llm.calls) == 6
    assert sum(isinstance(m, ToolStepMessage) for m in instructor_session.thread) == 6
    assert instructor_session.thread[-1].text == EXHAUSTED_MESSAGE.format(steps=6)


@pytest.mark.asyncio
async def test_unparseable_reply_gets_one_correction(instructor_session, make_llm) -> None:
    llm = make_llm(["I am not JSON", {"type": "answer", "text": "Sorry, fixed."}])
    outcome = await send_message(instructor_session, "hi", llm=llm)

    assert outcome.kind == "answer"
    assert llm.calls[1]["messages"][-1] == {"role": "user", "content": FORMAT_CORRECTION}


@pytest.mark.asyncio
async def test_repeated_unparseable_replies_surface_the_text(instructor_session, make_llm) -> None:
    llm = make_llm(["plain words", "still plain words"])
    outcome = await send_message(instructor_session, "hi", llm=llm)
    assert outcome.kind == "answer"
    assert instructor_session.thread[-1].text == "still plain words"


@pytest.mark.asyncio
async def test_model_failure_ends_the_turn(instructor_session, make_llm) -> None:
    llm = make_llm([RuntimeError("503")])
    outcome = await send_message(instructor_session, "hi", llm=llm)
    assert outcome.kind == "error"
    assert instructor_session.thread[-1].text == LLM_ERROR_MESSAGE


@pytest.mark.asyncio
async def test_action_becomes_pending_draft_with_notes(instructor_session, store, make_llm) -> None:
    llm = make_llm(
        [
            {
                "type": "action",
                "action": "create_announcement",
                "title": "Exam moved",
                "content": "The exam is now on Friday.",
                "notes": "I kept it hidden so you can review it.",
            }
        ]
    )
    outcome = await send_message(instructor_session, "announce the exam move", llm=llm)

    assert outcome.kind == "action"
    msg = instructor_session.thread[outcome.message_index]
    assert isinstance(msg, ActionMessage)
    assert msg.is_pending
    assert msg.data["hidden"] is True
    assert instructor_session.thread[-1].text == "I kept it hidden so you can review it."
    assert len(store.snapshot("c1").announcements()) == 1


@pytest.mark.asyncio
async def test_invalid_action_is_reported(instructor_session, make_llm) -> None:
    llm = make_llm([{"type": "action", "action": "update_assignment", "id": "made-up", "points": 5}])
    outcome = await send_message(instructor_session, "change points", llm=llm)
    assert outcome.kind == "error"
    assert "made-up" in instructor_session.thread[-1].text
    assert not any(isinstance(m, ActionMessage) for m in instructor_session.thread)


@pytest.mark.asyncio
async def test_retired_action_is_explained(instructor_session, make_llm) -> None:
    llm = make_llm([{"type": "action", "action": "create_quiz", "title": "Quiz 3"}])
    outcome = await send_message(instructor_session, "make a quiz", llm=llm)
    assert outcome.kind == "error"
    assert "create_quiz_from_bank" in instructor_session.thread[-1].text


@pytest.mark.asyncio
async def test_unknown_tool(instructor_session, make_llm) -> None:
    llm = make_llm([_tool_call("hack_the_gibson")])
    outcome = await send_message(instructor_session, "hi", llm=llm)
    assert outcome.kind == "error"
    assert "hack_the_gibson" in instructor_session.thread[-1].text


@pytest.mark.asyncio
async def test_clarifying_question_resumes_with_saved_history(instructor_session, make_llm) -> None:
    first = make_llm([_tool_call("list_question_banks"), {"type": "ask_user", "question": "Which bank?"}])
    outcome = await send_message(instructor_session, "make a quiz", llm=first)
    assert outcome.kind == "ask_user"
    question = instructor_session.thread[outcome.message_index]
    assert isinstance(question, AskUserMessage)

    second = make_llm([{"type": "answer", "text": "Got it."}])
    await send_message(instructor_session, "Chapter 1", llm=second)

    resumed = second.calls[0]["messages"]
    assert resumed[0] == {"role": "user", "content": "make a quiz"}
    assert resumed[-2] == {"role": "assistant", "content": "Which bank?"}
    assert resumed[-1] == {"role": "user", "content": "Chapter 1"}
    assert any(m["content"].startswith("Result of list_question_banks:") for m in resumed)
    assert question.answered is True


@pytest.mark.asyncio
async def test_edit_pending_action_updates_the_draft(instructor_session, make_llm) -> None:
    llm = make_llm(
        [
            {"type": "action", "action": "create_announcement", "title": "Old", "content": "Body"},
            {"type": "action", "action": "edit_pending_action", "changes": {"title": "New"}},
        ]
    )
    first = await send_message(instructor_session, "announce", llm=llm)
    second = await send_message(instructor_session, "call it New", llm=llm)

    assert second.kind == "action"
    draft = instructor_session.thread[first.message_index]
    assert draft.data["title"] == "New"
    assert draft.is_pending
    assert sum(isinstance(m, ActionMessage) for m in instructor_session.thread) == 1


@pytest.mark.asyncio
async def test_edit_cannot_switch_the_action_type(instructor_session, make_llm) -> None:
    llm = make_llm(
        [
            {"type": "action", "action": "create_announcement", "title": "Old", "content": "Body"},
            {
                "type": "action",
                "action": "edit_pending_action",
                "changes": {"action": "delete_assignment", "type": "answer", "title": "New"},
            },
        ]
    )
    first = await send_message(instructor_session, "announce", llm=llm)
    second = await send_message(instructor_session, "call it New", llm=llm)

    assert second.kind == "action"
    draft = instructor_session.thread[first.message_index]
    assert draft.action_type == "create_announcement"
    assert draft.data["title"] == "New"
    assert "action" not in draft.data and "type" not in draft.data


@pytest.mark.asyncio
async def test_edit_without_pending_draft(instructor_session, make_llm) -> None:
    llm = make_llm([{"type": "action", "action": "edit_pending_action", "changes": {"title": "New"}}])
    outcome = await send_message(instructor_session, "rename it", llm=llm)
    assert outcome.kind == "error"
    assert isinstance(instructor_session.thread[-1], AssistantMessage)


@pytest.mark.asyncio
async def test_turn_is_audited(instructor_session, make_llm, audit_path) -> None:
    llm = make_llm([_tool_call("list_modules"), {"type": "answer", "text": "Two modules."}])
    await send_message(instructor_session, "modules?", llm=llm)

    entries = [json.loads(line) for line in audit_path.read_text(encoding="utf-8").splitlines()]
    turn = entries[-1]
    assert turn["event"] == "turn"
    assert turn["session"] == instructor_session.session_id
    assert turn["payload"]["tool_calls"][0]["name"] == "list_modules"
    assert turn["payload"]["outcome"]["kind"] == "answer"
