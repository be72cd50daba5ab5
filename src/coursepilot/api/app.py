"""
Core API backend for coursepilot.

This module exposes conversation sessions over a RESTful API that's used by frontends.
It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **POST /sessions** - open a session for a user in a course, returns a session ID.
- **GET /sessions** - list all active sessions.
- **GET /sessions/{id}/thread** - the full message thread.
- **POST /sessions/{id}/messages** - run one model turn: {"message": "..."}
- **PATCH /sessions/{id}/actions/{idx}** - edit fields of a pending action.
- **POST /sessions/{id}/actions/{idx}/confirm** - execute a pending action: {"publish": false}
- **POST /sessions/{id}/actions/{idx}/reject** - reject a pending action.
"""

import logging
from typing import (
    Dict,
    List,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Request,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from coursepilot.actions import ENVELOPE_KEYS
from coursepilot.agent.agent_loop import send_message
from coursepilot.agent.llm_client import (
    BaseLLMClient,
    load_llm_client,
)
from coursepilot.agent.operations import (
    confirm_action,
    reject_action,
)
from coursepilot.api.models import (
    ActionEditRequest,
    ActionResultResponse,
    ConfirmRequest,
    MessageRequest,
    SessionRequest,
    SessionResponse,
    ThreadResponse,
    TurnResponse,
)
from coursepilot.common import (
    AnsiColors,
    colored_print,
)
from coursepilot.config import settings
from coursepilot.core.demo_data import load_store
from coursepilot.core.persistence import InMemoryCourseStore
from coursepilot.core.session import Session
from coursepilot.core.thread import ActionStateError
from coursepilot.memory.audit_log import init_audit_log

logger = logging.getLogger(__name__)


class SessionNotFoundError(LookupError):
    """Raised when a request names a session that does not exist."""


# Session storage (in-memory for now, could be moved to a database)
sessions: Dict[str, Session] = {}

app = FastAPI(title="coursepilot API", version="0.1.0", description="Course assistant agent API")

# Add CORS middleware to allow requests from a browser frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=[f"http://localhost:{settings.API_PORT}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
_store: InMemoryCourseStore | None = None


def get_store() -> InMemoryCourseStore:
    """Course store shared by every session (loaded on first use)."""
    global _store  # pylint: disable=global-statement
    if _store is None:
        _store = load_store(settings.COURSE_DATA_PATH)
    return _store


def get_llm() -> BaseLLMClient:
    """Model client for a turn; overridden in tests."""
    return load_llm_client()


def get_session(session_id: str) -> Session:
    session = sessions.get(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)
    return session


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
@app.exception_handler(SessionNotFoundError)
async def _session_not_found(request: Request, exc: SessionNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": f"Session '{exc}' not found."})


@app.exception_handler(ActionStateError)
async def _action_state(request: Request, exc: ActionStateError) -> JSONResponse:
    logger.warning("Rejected action request %s: %s", request.url.path, exc)
    return JSONResponse(status_code=409, content={"detail": str(exc)})


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


def _session_response(session: Session) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        user_id=session.user_id or "",
        course_id=session.course_id,
        read_write=session.read_write,
    )


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session(
    req: SessionRequest, store: InMemoryCourseStore = Depends(get_store)
) -> SessionResponse:
    """Open a conversation for *user_id* in *course_id*."""
    snapshot = store.snapshot(req.course_id)
    if snapshot.course is None:
        raise HTTPException(status_code=404, detail=f"Course '{req.course_id}' not found.")
    user = snapshot.user(req.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User '{req.user_id}' not found.")

    session = Session.from_store(store, dict(user), req.course_id, view_as_student=req.view_as_student)
    sessions[session.session_id] = session
    logger.info(
        "Opened session %s for %s in %s (read_write=%s)",
        session.session_id,
        req.user_id,
        req.course_id,
        session.read_write,
    )
    return _session_response(session)


@app.get("/sessions", response_model=List[SessionResponse], summary="List active sessions")
async def list_sessions() -> List[SessionResponse]:
    """List all active sessions."""
    return [_session_response(s) for s in sessions.values()]


@app.get("/sessions/{session_id}/thread", response_model=ThreadResponse, summary="Read the thread")
async def get_thread(session_id: str) -> ThreadResponse:
    session = get_session(session_id)
    return ThreadResponse(session_id=session_id, messages=session.thread.messages)


@app.post("/sessions/{session_id}/messages", response_model=TurnResponse, summary="Process a message")
async def post_message(
    session_id: str, req: MessageRequest, llm: BaseLLMClient = Depends(get_llm)
) -> TurnResponse:
    """Append the user message and run one model turn."""
    session = get_session(session_id)
    start = len(session.thread)
    outcome = await send_message(session, req.message, llm=llm)
    return TurnResponse(
        session_id=session_id,
        outcome=outcome,
        first_index=start,
        messages=session.thread.messages[start:],
    )


@app.patch("/sessions/{session_id}/actions/{idx}", response_model=ThreadResponse, summary="Edit a draft")
async def edit_action(session_id: str, idx: int, req: ActionEditRequest) -> ThreadResponse:
    """Apply user edits to the pending action at *idx*."""
    session = get_session(session_id)
    for field, value in req.changes.items():
        if field in ENVELOPE_KEYS:
            continue
        session.thread.update_action_field(idx, field, value)
    return ThreadResponse(session_id=session_id, messages=session.thread.messages)


@app.post(
    "/sessions/{session_id}/actions/{idx}/confirm",
    response_model=ActionResultResponse,
    summary="Confirm a pending action",
)
async def confirm(session_id: str, idx: int, req: ConfirmRequest | None = None) -> ActionResultResponse:
    session = get_session(session_id)
    start = len(session.thread)
    success = await confirm_action(session, idx, publish=bool(req and req.publish))
    return ActionResultResponse(
        session_id=session_id,
        index=idx,
        success=success,
        first_index=start,
        messages=session.thread.messages[start:],
    )


@app.post(
    "/sessions/{session_id}/actions/{idx}/reject",
    response_model=ActionResultResponse,
    summary="Reject a pending action",
)
async def reject(session_id: str, idx: int) -> ActionResultResponse:
    session = get_session(session_id)
    start = len(session.thread)
    await reject_action(session, idx)
    return ActionResultResponse(
        session_id=session_id,
        index=idx,
        success=True,
        first_index=start,
        messages=session.thread.messages[start:],
    )


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the coursepilot API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn out of the import path for library users
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting coursepilot API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )

    init_audit_log()
    logger.debug("API settings: %s", settings.model_dump())  # Log settings for debugging

    colored_print(f"coursepilot API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "coursepilot.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m coursepilot.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
