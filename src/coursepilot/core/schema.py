"""
Schema definitions for thread messages, tool calls and pending actions.

These data models serve as the contract between the model-facing loop, the operation executor and
whatever renders the conversation.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

from typing import (
    Annotated,
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    Field,
)


class ToolCall(BaseModel):
    """A read-only lookup the model wants executed."""

    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the tool")
    label: str = Field("", description="Human-readable step label shown while the tool runs")


# ---------------------------------------------------------------------------
# Thread messages
# ---------------------------------------------------------------------------
class UserMessage(BaseModel):
    """Text typed (or dictated) by the human."""

    kind: Literal["user"] = "user"
    text: str


class AssistantMessage(BaseModel):
    """Plain assistant reply."""

    kind: Literal["assistant"] = "assistant"
    text: str
    is_markup: bool = False


class ToolStepMessage(BaseModel):
    """One executed lookup.  ``result`` stays ``None`` until the tool has run."""

    kind: Literal["tool_step"] = "tool_step"
    tool: str
    label: str = ""
    args: Dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class AskUserMessage(BaseModel):
    """Clarifying question; ``continuation`` is the model history to resume from."""

    kind: Literal["ask_user"] = "ask_user"
    question: str
    continuation: List[Dict[str, str]] = Field(default_factory=list)
    answered: bool = False


class ActionMessage(BaseModel):
    """A proposed write awaiting human confirmation."""

    kind: Literal["action"] = "action"
    action_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    confirmed: bool = False
    rejected: bool = False
    hidden: bool = False
    progress: int = Field(0, description="Pipeline steps already applied")

    @property
    def is_pending(self) -> bool:
        """True while the action can still be confirmed, rejected or edited."""
        return not (self.confirmed or self.rejected)


Message = Annotated[
    Union[UserMessage, AssistantMessage, ToolStepMessage, AskUserMessage, ActionMessage],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------
class PendingAction(BaseModel):
    """Canonical, confirmable record materialized from a proposed action."""

    action_type: str
    data: Dict[str, Any] = Field(default_factory=dict)


class DeprecatedAction(BaseModel):
    """Returned by the materializer for retired action types."""

    action_type: str
    replacement: Optional[str] = None
    message: str


class Operation(BaseModel):
    """A pending action plus the real identifiers it targets."""

    action_type: str
    data: Dict[str, Any] = Field(default_factory=dict)
    resolved: Dict[str, Any] = Field(default_factory=dict)
    publish: bool = False

    def ref(self, key: str) -> Any:
        """Resolved identifier for *key*, falling back to the raw data."""
        value = self.resolved.get(key)
        return value if value is not None else self.data.get(key)


# ---------------------------------------------------------------------------
# Turn bookkeeping
# ---------------------------------------------------------------------------
TerminalKind = Literal["answer", "ask_user", "action", "refusal", "error", "exhausted"]


class TurnOutcome(BaseModel):
    """How a single loop run ended."""

    kind: TerminalKind
    steps: int = 0
    message_index: Optional[int] = None
    detail: Optional[str] = None


class TurnRecord(BaseModel):
    """A single turn in the agent loop (for the audit trail)."""

    user_message: str
    tool_calls: List[ToolCall] = Field(default_factory=list)
    outcome: Optional[TurnOutcome] = None
