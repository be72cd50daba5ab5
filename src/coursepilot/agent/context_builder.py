"""
Bounded textual snapshot of the active course for the system prompt.

Only counts and a few headline fields are included.  Record identifiers are left out; the model
looks them up with a tool before it references a record.
"""

import json
from collections import Counter
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    List,
)

from coursepilot.config import settings

if TYPE_CHECKING:
    from coursepilot.core.session import Session

_TRUNCATED = "\n[context truncated]"


def _counts_line(label: str, total: int, by: Counter | None = None) -> str:
    if not by:
        return f"- {label}: {total}"
    parts = ", ".join(f"{n} {k}" for k, n in sorted(by.items(), key=lambda kv: str(kv[0])))
    return f"- {label}: {total} ({parts})"


def build_context(session: "Session", now: datetime | None = None, max_chars: int | None = None) -> str:
    """Render date/time, course headline, per-collection counts and any in-flight draft."""
    now = now or datetime.now()
    limit = max_chars if max_chars is not None else settings.CONTEXT_MAX_CHARS
    snap = session.snapshot

    lines: List[str] = [
        f"Current local date/time: {now.strftime('%A %Y-%m-%d %H:%M')}",
        f"Your access level: {'instructor/TA (read-write)' if session.read_write else 'student (read-only)'}",
    ]

    course = snap.course
    if course is None:
        lines.append("No active course.")
    else:
        lines.append(f"Current course: {course.get('name')} ({course.get('code') or 'no code'})")
        if course.get("description"):
            lines.append(f"Description: {course['description']}")

        assignments = snap.assignments()
        lines.append("")
        lines.append("Course contents (counts only; look records up with the tools):")
        lines.append(
            _counts_line("Assignments", len(assignments), Counter(a.get("status") or "draft" for a in assignments))
        )
        announcements = snap.announcements()
        lines.append(
            _counts_line(
                "Announcements",
                len(announcements),
                Counter("hidden" if a.get("hidden") else "published" for a in announcements),
            )
        )
        lines.append(_counts_line("Modules", len(snap.modules())))
        lines.append(_counts_line("Files", len(snap.files())))
        if session.read_write:
            lines.append(_counts_line("Question banks", len(snap.question_banks())))
            enrollments = snap.enrollments()
            lines.append(
                _counts_line("People", len(enrollments), Counter(e.get("role") for e in enrollments))
            )
            lines.append(_counts_line("Pending invites", len(snap.invites())))
            lines.append(_counts_line("Group sets", len(snap.group_sets())))

    pending = session.thread.latest_pending_action()
    if pending is not None and session.read_write:
        idx, msg = pending
        draft = json.dumps(msg.data, ensure_ascii=False, default=str)
        lines.append("")
        lines.append(
            f"Pending draft awaiting confirmation (message {idx}, {msg.action_type}); "
            f"use edit_pending_action to change it: {draft}"
        )

    text = "\n".join(lines)
    if len(text) > limit:
        text = text[: max(0, limit - len(_TRUNCATED))] + _TRUNCATED
    return text
