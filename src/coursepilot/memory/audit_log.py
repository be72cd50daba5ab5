"""Append-only JSON-lines audit trail of turns, confirmations and rejections."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import (
    Any,
    Dict,
)

from coursepilot.config import settings
from coursepilot.core.schema import TurnRecord

logger = logging.getLogger(__name__)


def _log_path() -> Path | None:
    path = settings.AUDIT_LOG_PATH
    return Path(path) if path else None


def init_audit_log() -> None:
    """
    Make sure the audit file exists.
    Called at application startup; a no-op when auditing is disabled.
    """
    path = _log_path()
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    if not path.exists():
        path.touch()  # Create an empty file if it doesn't exist


def record_event(event: str, session_id: str, payload: Dict[str, Any]) -> None:
    """Append one ``{"event", "session", "at", "payload"}`` line."""
    path = _log_path()
    if path is None:
        return
    entry = {
        "event": event,
        "session": session_id,
        "at": datetime.now().isoformat(timespec="seconds"),
        "payload": payload,
    }
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")
    except OSError as exc:
        logger.warning("Could not write audit entry to %s: %s", path, exc)


def save_turn(session_id: str, turn: TurnRecord) -> None:
    record_event("turn", session_id, turn.model_dump())
