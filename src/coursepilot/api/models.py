"""
Pydantic models for coursepilot API requests and responses.
This module defines the request and response schemas used by the coursepilot API.
"""

from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from coursepilot.core.schema import (
    Message,
    TurnOutcome,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionRequest(BaseModel):
    """Request to open a conversation for one user in one course."""

    user_id: str = Field(..., description="Id of the signed-in user")
    course_id: str = Field(..., description="Id of the active course")
    view_as_student: bool = Field(False, description="Staff previewing the course as a student")


class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str
    user_id: str
    course_id: str
    read_write: bool


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., min_length=1, description="User message for coursepilot")


class ThreadResponse(BaseModel):
    """Every message of a session's thread, in order."""

    session_id: str
    messages: List[Message]


class TurnResponse(BaseModel):
    """Result of one model turn plus the messages it appended."""

    session_id: str
    outcome: TurnOutcome
    first_index: int = Field(..., description="Thread index of the first message in *messages*")
    messages: List[Message]


class ActionEditRequest(BaseModel):
    """User edits to fields of a pending action."""

    changes: Dict[str, Any] = Field(..., description="Field name -> new value")


class ConfirmRequest(BaseModel):
    """Confirmation of a pending action."""

    publish: bool = Field(False, description="Publish the record instead of saving a draft")


class ActionResultResponse(BaseModel):
    """Outcome of confirming or rejecting an action."""

    session_id: str
    index: int
    success: bool
    first_index: int
    messages: List[Message]
    detail: Optional[str] = None
