"""
Shared fixtures: a small course, sessions for each role and a scripted model client.

Run with:
$ pytest -q
"""

import json
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

import pytest

from coursepilot.agent.llm_client import BaseLLMClient
from coursepilot.config import settings
from coursepilot.core.persistence import InMemoryCourseStore
from coursepilot.core.session import Session

COURSE_DATA: Dict[str, List[Dict[str, Any]]] = {
    "users": [
        {"id": "u1", "name": "Dana Instructor", "email": "dana@uni.edu"},
        {"id": "u2", "name": "Tom Assistant", "email": "tom@uni.edu"},
        {"id": "u3", "name": "Sam Student", "email": "sam@student.edu"},
        {"id": "u9", "name": "Outsider", "email": "out@uni.edu"},
    ],
    "courses": [
        {
            "id": "c1",
            "name": "ECON 101",
            "code": "ECON101",
            "createdBy": "u1",
            "visible": True,
            "description": "Intro to economics",
            "startHereTitle": "Start Here",
            "startHereContent": "Welcome!",
        },
        {"id": "c2", "name": "ECON 301", "code": "ECON301", "createdBy": "u9"},
    ],
    "enrollments": [
        {"userId": "u1", "courseId": "c1", "role": "instructor"},
        {"userId": "u2", "courseId": "c1", "role": "ta"},
        {"userId": "u3", "courseId": "c1", "role": "student"},
    ],
    "assignments": [
        {
            "id": "a1",
            "courseId": "c1",
            "title": "Problem Set 1",
            "description": "Supply and demand.",
            "assignmentType": "essay",
            "points": 100,
            "status": "published",
            "dueDate": "2026-09-15T23:59",
        },
        {
            "id": "a2",
            "courseId": "c1",
            "title": "Quiz 1",
            "description": "",
            "assignmentType": "quiz",
            "points": 20,
            "status": "draft",
            "dueDate": "2026-09-20T23:59",
            "questionBankId": "qb1",
        },
        {"id": "x1", "courseId": "c2", "title": "Other course homework", "status": "draft"},
    ],
    "announcements": [
        {"id": "n1", "courseId": "c1", "title": "Welcome", "content": "Hi all", "pinned": False, "hidden": False},
    ],
    "modules": [
        {
            "id": "m1",
            "courseId": "c1",
            "name": "Week 1",
            "position": 1,
            "items": [
                {"id": "mi1", "type": "assignment", "title": "Problem Set 1", "refId": "a1", "position": 1},
            ],
        },
        {"id": "m2", "courseId": "c1", "name": "Week 2", "position": 2, "items": []},
    ],
    "files": [
        {"id": "f1", "courseId": "c1", "name": "syllabus.txt", "mimeType": "text/plain", "content": "Syllabus text"},
        {"id": "f2", "courseId": "c1", "name": "slides.pdf", "mimeType": "application/pdf", "url": "https://x/s.pdf"},
        {"id": "f3", "courseId": "c1", "name": "huge.pdf", "mimeType": "application/pdf", "size": 10**9},
        {"id": "f4", "courseId": "c1", "name": "deck.pptx", "mimeType": "application/vnd.ms-powerpoint"},
    ],
    "question_banks": [
        {
            "id": "qb1",
            "courseId": "c1",
            "name": "Chapter 1",
            "questions": [{"id": "q1", "type": "short_answer", "prompt": "Define scarcity.", "points": 2}],
        },
        {"id": "qb2", "courseId": "c1", "name": "Unused bank", "questions": []},
    ],
    "group_sets": [{"id": "g1", "courseId": "c1", "name": "Project Teams", "groups": []}],
    "invites": [{"id": "i1", "courseId": "c1", "email": "new@student.edu", "role": "student", "status": "pending"}],
    "submissions": [{"id": "s1", "assignmentId": "a1", "userId": "u3", "submittedAt": "2026-09-14T10:00"}],
    "grades": [{"id": "gr1", "submissionId": "s1", "assignmentId": "a1", "score": 88}],
}


class FakeLLMClient(BaseLLMClient):
    """Returns scripted replies in order and records every request."""

    def __init__(self, replies: Sequence[Any] = (), **kwargs: Any):
        kwargs.setdefault("max_retries", 1)
        kwargs.setdefault("retry_delay", 0)
        super().__init__(**kwargs)
        self.replies = list(replies)
        self.calls: List[Dict[str, Any]] = []

    async def _request(self, system_prompt: str, messages: Sequence[Any]) -> str:
        self.calls.append({"system": system_prompt, "messages": [dict(m) for m in messages]})
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)


@pytest.fixture(autouse=True)
def _audit_log(tmp_path, monkeypatch):
    """Keep the audit trail inside the test's temp directory."""
    path = tmp_path / "audit.jsonl"
    monkeypatch.setattr(settings, "AUDIT_LOG_PATH", str(path))
    return path


@pytest.fixture
def audit_path(_audit_log):
    return _audit_log


@pytest.fixture
def store() -> InMemoryCourseStore:
    return InMemoryCourseStore(COURSE_DATA)


@pytest.fixture
def snapshot(store):
    return store.snapshot("c1")


def _session(store: InMemoryCourseStore, user_id: str, **kwargs: Any) -> Session:
    user = next(u for u in COURSE_DATA["users"] if u["id"] == user_id)
    return Session.from_store(store, dict(user), "c1", **kwargs)


@pytest.fixture
def instructor_session(store) -> Session:
    return _session(store, "u1")


@pytest.fixture
def ta_session(store) -> Session:
    return _session(store, "u2")


@pytest.fixture
def student_session(store) -> Session:
    return _session(store, "u3")


@pytest.fixture
def make_llm():
    """Factory for scripted model clients: ``make_llm([reply, ...])``."""
    return FakeLLMClient
