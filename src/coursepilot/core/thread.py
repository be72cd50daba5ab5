"""
Conversation thread: the append-only message log shared by the model loop and the UI.

Messages are never removed.  The only permitted mutations are filling a tool step's result once,
editing a pending action's data bag, and flipping the one-way ``confirmed`` / ``rejected`` flags.
"""

import json
import logging
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Tuple,
)

from coursepilot.core.schema import (
    ActionMessage,
    AskUserMessage,
    AssistantMessage,
    Message,
    ToolStepMessage,
    UserMessage,
)

logger = logging.getLogger(__name__)


class ActionStateError(RuntimeError):
    """Raised when a message is mutated in a way its state does not allow."""


class Thread:
    """Ordered message log with a change callback for renderers."""

    def __init__(
        self,
        messages: List[Message] | None = None,
        on_change: Callable[["Thread"], None] | None = None,
    ) -> None:
        self._messages: List[Message] = list(messages or [])
        self._on_change = on_change

    # ------------------------------------------------------------------ #
    # Sequence protocol
    # ------------------------------------------------------------------ #
    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, idx: int) -> Message:
        return self._messages[idx]

    @property
    def messages(self) -> List[Message]:
        """Shallow copy of the message list."""
        return list(self._messages)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self)

    # ------------------------------------------------------------------ #
    # Appends
    # ------------------------------------------------------------------ #
    def append(self, message: Message) -> int:
        """Append *message* and return its index."""
        self._messages.append(message)
        self._notify()
        return len(self._messages) - 1

    def add_user(self, text: str) -> int:
        return self.append(UserMessage(text=text))

    def add_assistant(self, text: str, is_markup: bool = False) -> int:
        return self.append(AssistantMessage(text=text, is_markup=is_markup))

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #
    def action_at(self, idx: int) -> ActionMessage:
        """Return the action message at *idx* or raise :class:`ActionStateError`."""
        try:
            msg = self._messages[idx]
        except IndexError as exc:
            raise ActionStateError(f"No message at index {idx}.") from exc
        if not isinstance(msg, ActionMessage):
            raise ActionStateError(f"Message {idx} is a '{msg.kind}' message, not an action.")
        return msg

    def latest_pending_action(self) -> Optional[Tuple[int, ActionMessage]]:
        """Most recent action that is neither confirmed nor rejected."""
        for idx in range(len(self._messages) - 1, -1, -1):
            msg = self._messages[idx]
            if isinstance(msg, ActionMessage) and msg.is_pending:
                return idx, msg
        return None

    def latest_open_question(self) -> Optional[Tuple[int, AskUserMessage]]:
        """The last clarification request, if it has not been answered yet."""
        for idx in range(len(self._messages) - 1, -1, -1):
            msg = self._messages[idx]
            if isinstance(msg, AskUserMessage):
                return (idx, msg) if not msg.answered else None
        return None

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #
    def fill_tool_result(self, idx: int, result: Any) -> None:
        """Store the result of the tool step at *idx*; allowed once."""
        msg = self._messages[idx]
        if not isinstance(msg, ToolStepMessage):
            raise ActionStateError(f"Message {idx} is not a tool step.")
        if msg.result is not None:
            raise ActionStateError(f"Tool step {idx} already has a result.")
        msg.result = result
        self._notify()

    def mark_answered(self, idx: int) -> None:
        msg = self._messages[idx]
        if isinstance(msg, AskUserMessage) and not msg.answered:
            msg.answered = True
            self._notify()

    def update_action_field(self, idx: int, field: str, value: Any) -> None:
        """User edit of a single field of a pending action."""
        msg = self.action_at(idx)
        if not msg.is_pending:
            raise ActionStateError(f"Action {idx} is no longer pending.")
        msg.data[field] = value
        self._notify()

    def replace_action_data(self, idx: int, data: Mapping[str, Any]) -> None:
        msg = self.action_at(idx)
        if not msg.is_pending:
            raise ActionStateError(f"Action {idx} is no longer pending.")
        msg.data = dict(data)
        self._notify()

    def edit_pending_action(self, changes: Mapping[str, Any]) -> Optional[int]:
        """
        Merge *changes* into the latest pending action's data bag.

        Returns the index of the edited action, or ``None`` if nothing is pending.  The action's
        state is left untouched.
        """
        latest = self.latest_pending_action()
        if latest is None:
            return None
        idx, msg = latest
        msg.data.update(changes)
        logger.debug("Edited pending action %d (%s): %s", idx, msg.action_type, sorted(changes))
        self._notify()
        return idx

    def mark_confirmed(self, idx: int) -> None:
        msg = self.action_at(idx)
        if msg.rejected:
            raise ActionStateError(f"Action {idx} was already rejected.")
        if not msg.confirmed:
            msg.confirmed = True
            self._notify()

    def mark_rejected(self, idx: int, hide: bool = True) -> None:
        msg = self.action_at(idx)
        if msg.confirmed:
            raise ActionStateError(f"Action {idx} was already confirmed.")
        if not msg.rejected:
            msg.rejected = True
            msg.hidden = msg.hidden or hide
            self._notify()

    def advance_progress(self, idx: int) -> None:
        msg = self.action_at(idx)
        msg.progress += 1
        self._notify()

    # ------------------------------------------------------------------ #
    # Model memory
    # ------------------------------------------------------------------ #
    def to_model_history(self, window: int = 12) -> List[Dict[str, str]]:
        """Render the last *window* messages as chat turns for the model."""
        turns: List[Dict[str, str]] = []
        for msg in self._messages[-window:] if window > 0 else []:
            if isinstance(msg, UserMessage):
                turns.append({"role": "user", "content": msg.text})
            elif isinstance(msg, AssistantMessage):
                turns.append({"role": "assistant", "content": msg.text})
            elif isinstance(msg, AskUserMessage):
                turns.append({"role": "assistant", "content": msg.question})
            elif isinstance(msg, ActionMessage):
                state = "confirmed" if msg.confirmed else "rejected" if msg.rejected else "pending"
                payload = json.dumps(msg.data, ensure_ascii=False, default=str)
                turns.append(
                    {
                        "role": "assistant",
                        "content": f"[Proposed {msg.action_type} ({state})] {payload}",
                    }
                )
        return turns
