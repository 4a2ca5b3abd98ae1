"""CLI client for the Praxis API."""

from __future__ import annotations

import json
import logging
from typing import (
    Any,
    Dict,
    Iterator,
    Tuple,
    cast,
)

import httpx

from praxis.common import (
    AnsiColors,
    colored_print,
)
from praxis.config import settings

logger = logging.getLogger(__name__)

_DECISIONS = {"a": "approved", "s": "skipped", "d": "denied", "m": "modified"}


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message(prompt: str = "") -> Tuple[str, bool]:
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
        user_input = input(prompt).strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def _api_url(endpoint: str) -> str:
    return f"http://localhost:{settings.API_PORT}{endpoint}"


def call_api(endpoint: str, data: Dict[str, Any], max_retries: int = 5) -> Dict[str, Any]:
    """Make a POST request to the API and return the response with retries."""
    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=30.0) as client:
                response = client.post(_api_url(endpoint), json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
        except httpx.ConnectError:
            # On connection refused, retry with exponential backoff
            if attempt < max_retries - 1:
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
            break
        except httpx.HTTPStatusError as e:
            detail = e.response.json().get("detail", str(e)) if e.response.content else str(e)
            logger.error("API request error: %s", detail)
            colored_print(f"API error: {detail}", AnsiColors.RED)
            return {"error": detail}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            colored_print(f"Error connecting to API: {e}", AnsiColors.RED)
            return {"error": str(e)}

    # If we've exhausted all retries without returning
    error_msg = f"Failed to connect to API after {max_retries} attempts"
    colored_print(error_msg, AnsiColors.RED)
    return {"error": error_msg}


def stream_events(payload: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """POST to ``/agent/stream`` and yield decoded server-sent events."""
    with httpx.Client(timeout=None) as client:
        with client.stream("POST", _api_url("/agent/stream"), json=payload) as response:
            response.raise_for_status()
            for line in response.iter_lines():
                if line.startswith("data: "):
                    yield json.loads(line[len("data: ") :])


def ask_approval(request: Dict[str, Any]) -> Dict[str, Any]:
    """Prompt the user for a decision on a pending tool call."""
    colored_print(
        f"\n⚠️  '{request['tool_name']}' ({request['risk']}) needs approval:\n{request['preview']}",
        AnsiColors.YELLOW,
    )
    while True:
        choice, ok = get_user_message("[a]pprove / [s]kip / [d]eny / [m]odify? ")
        if not ok:
            return {"decision": "denied", "feedback": "Interrupted by the user"}
        decision = _DECISIONS.get(choice[:1].lower())
        if decision is None:
            continue
        if decision == "modified":
            raw, ok = get_user_message("New parameters as JSON: ")
            try:
                parameters = json.loads(raw) if ok else None
            except json.JSONDecodeError:
                colored_print("Not valid JSON.", AnsiColors.RED)
                continue
            return {"decision": decision, "parameters": parameters}
        feedback, _ = get_user_message("Feedback (optional): ") if decision == "denied" else ("", True)
        return {"decision": decision, "feedback": feedback or None}


def render_event(event: Dict[str, Any]) -> None:
    """Print one run event."""
    kind = event.get("type")
    if kind == "chunk":
        colored_print(event["text"], AnsiColors.YELLOW, end="", flush=True)
    elif kind == "tool_activity":
        duration = f" ({event['duration_ms']} ms)" if event.get("duration_ms") is not None else ""
        color = AnsiColors.RED if event["status"] == "failed" else AnsiColors.GREY
        colored_print(f"[{event['tool_name']}] {event['status']}{duration}", color)
    elif kind == "error":
        error = event.get("error", {})
        colored_print(f"\n⚠️ {error.get('message', 'Run failed')}", AnsiColors.RED)
    elif kind == "done":
        if event.get("status") not in ("completed", None):
            colored_print(f"\n[run ended: {event['status']}]", AnsiColors.RED)
        print()


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    # Create a new session
    session_response = call_api("/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print("⚠️ Failed to create a session", AnsiColors.RED)
        return

    colored_print("\n🔮 Praxis shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN)
    while True:
        colored_print("\n🧑 You: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break

        try:
            for event in stream_events({"message": user_msg, "session_id": session_id}):
                if event.get("type") == "approval_request":
                    request = event["request"]
                    call_api(f"/approvals/{request['approval_id']}", ask_approval(request))
                    continue
                render_event(event)
        except httpx.HTTPError as exc:
            logger.error("Streaming request failed: %s", exc)
            colored_print(f"Error connecting to API: {exc}", AnsiColors.RED)
        except KeyboardInterrupt:
            call_api(f"/sessions/{session_id}/cancel", {})
            colored_print("\n[cancelled]", AnsiColors.RED)


if __name__ == "__main__":
    run_cli()
