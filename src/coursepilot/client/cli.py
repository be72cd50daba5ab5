"""CLI client for the coursepilot API."""

from __future__ import annotations

import logging
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from coursepilot.common import (
    AnsiColors,
    colored_print,
)
from coursepilot.config import settings

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "Commands: /confirm N, /publish N, /reject N, /thread, /help, exit\n"
    "Anything else is sent to the assistant."
)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(
    endpoint: str, data: Dict[str, Any] | None = None, method: str = "POST", max_retries: int = 5
) -> Dict[str, Any]:
    """Send a request to the API and return the JSON response, retrying while it starts up."""
    api_url = f"http://localhost:{settings.API_PORT}{endpoint}"
    response: httpx.Response | None = None

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=settings.LLM_TIMEOUT_SEC * 2) as client:
                response = client.request(method, api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.HTTPError as e:
            # On connection refused, retry with exponential backoff
            if isinstance(e, httpx.ConnectError) and attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                import time  # pylint: disable=import-outside-toplevel

                time.sleep(retry_delay)
                continue

            # If we reached max retries or it's not a connection issue
            logger.error("API request error: %s", str(e))
            error_msg = f"Error connecting to API: {str(e)}"
            if isinstance(e, httpx.HTTPStatusError) and response is not None:
                try:
                    error_data = response.json()
                    if "detail" in error_data:
                        error_msg = f"API error: {error_data['detail']}"
                except ValueError:
                    pass
            return {"error": error_msg}

    # If we've exhausted all retries without returning
    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def render_message(index: int, msg: Dict[str, Any]) -> None:
    """Print one thread message the way a terminal user needs to see it."""
    kind = msg.get("kind")
    if kind == "assistant":
        colored_print(msg.get("text", ""), AnsiColors.YELLOW)
    elif kind == "ask_user":
        colored_print(f"? {msg.get('question', '')}", AnsiColors.YELLOW)
    elif kind == "tool_step":
        colored_print(f"  ... {msg.get('label') or msg.get('tool')}", AnsiColors.GREY)
    elif kind == "action":
        if msg.get("hidden"):
            return
        state = "confirmed" if msg.get("confirmed") else "rejected" if msg.get("rejected") else "pending"
        colored_print(f"[{index}] Proposed {msg.get('action_type')} ({state})", AnsiColors.GREEN)
        for key, value in (msg.get("data") or {}).items():
            if value not in (None, "", [], {}):
                colored_print(f"      {key}: {value}", AnsiColors.GREEN)
        if state == "pending":
            colored_print(f"    /confirm {index}, /publish {index} or /reject {index}", AnsiColors.GREY)
    elif kind == "user":
        colored_print(f"You: {msg.get('text', '')}", AnsiColors.BLUE)


def _render_since(response: Dict[str, Any], skip_user: bool = True) -> None:
    if "error" in response:
        colored_print(response["error"], AnsiColors.RED)
        return
    first = int(response.get("first_index") or 0)
    for offset, msg in enumerate(response.get("messages") or []):
        if skip_user and msg.get("kind") == "user":
            continue
        render_message(first + offset, msg)


def handle_command(session_id: str, text: str) -> bool:
    """
    Run one slash command.

    Returns ``False`` if *text* is not a recognised command.
    """
    parts = text.split()
    command = parts[0].lower()
    base = f"/sessions/{session_id}"

    if command == "/help":
        colored_print(HELP_TEXT, AnsiColors.GREY)
        return True
    if command == "/thread":
        response = call_api(f"{base}/thread", method="GET")
        if "error" in response:
            colored_print(response["error"], AnsiColors.RED)
        for idx, msg in enumerate(response.get("messages") or []):
            render_message(idx, msg)
        return True
    if command in {"/confirm", "/publish", "/reject"}:
        if len(parts) != 2 or not parts[1].isdigit():
            colored_print(f"Usage: {command} N", AnsiColors.RED)
            return True
        idx = int(parts[1])
        if command == "/reject":
            response = call_api(f"{base}/actions/{idx}/reject", {})
        else:
            response = call_api(f"{base}/actions/{idx}/confirm", {"publish": command == "/publish"})
        _render_since(response)
        return True
    return False


def run_cli(user_id: str = "u1", course_id: str = "c1", view_as_student: bool = False) -> None:
    """Run the CLI client that communicates with the API."""
    session_response = call_api(
        "/sessions",
        {"user_id": user_id, "course_id": course_id, "view_as_student": view_as_student},
    )
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print(
            f"Failed to create a session: {session_response.get('error', 'unknown error')}", AnsiColors.RED
        )
        return

    mode = "instructor/TA" if session_response.get("read_write") else "student (read-only)"
    colored_print(f"\ncoursepilot shell [{mode}] - type /help for commands, 'exit' to quit", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if not user_msg:
            continue
        if user_msg.lower() in {"exit", "quit"}:
            break
        if user_msg.startswith("/") and handle_command(session_id, user_msg):
            continue

        response = call_api(f"/sessions/{session_id}/messages", {"message": user_msg})
        _render_since(response)


if __name__ == "__main__":
    run_cli()
