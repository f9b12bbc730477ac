"""CLI client for the toolmux API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from toolmux.common import (
    AnsiColors,
    colored_print,
    shorten,
)
from toolmux.config import settings

logger = logging.getLogger(__name__)


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
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def call_api(
    method: str, endpoint: str, data: Dict[str, Any] | None = None, max_retries: int = 5
) -> Any:
    """Call the API and return the decoded JSON body, retrying while the server starts up."""
    api_url = f"http://localhost:{settings.API_PORT}{endpoint}"
    # The agent loop may run several LLM + tool round trips.
    timeout = settings.LLM_TIMEOUT * settings.MAX_TOOL_ITERATIONS

    for attempt in range(max_retries):
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.request(method, api_url, json=data)
                response.raise_for_status()
                return response.json()
        except httpx.ConnectError as e:
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                time.sleep(retry_delay)
                continue
            logger.error("API connection error: %s", str(e))
            return {"error": f"Error connecting to API: {str(e)}"}
        except httpx.HTTPStatusError as e:
            detail = e.response.text
            try:
                detail = cast(Dict[str, Any], e.response.json()).get("detail", detail)
            except ValueError:
                pass
            logger.error("API error %d: %s", e.response.status_code, detail)
            return {"error": f"API error: {detail}"}
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            return {"error": f"Error calling API: {str(e)}"}

    # If we've exhausted all retries without returning
    return {"error": f"Failed to connect to API after {max_retries} attempts"}


def print_tools() -> None:
    """Show every tool the agent can call."""
    tools = call_api("GET", "/tools")
    if isinstance(tools, dict) and "error" in tools:
        colored_print(tools["error"], AnsiColors.RED)
        return
    if not tools:
        colored_print("No tools available.", AnsiColors.YELLOW)
        return
    for tool in tools:
        colored_print(f"  {tool['name']}", AnsiColors.GREEN, end="")
        print(f"  {shorten(tool.get('description', ''), 80)}")


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    session_response = call_api("POST", "/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print(
            f"Failed to create a session: {session_response.get('error')}", AnsiColors.RED
        )
        return

    colored_print(
        "\ntoolmux shell - '/tools' lists tools, 'exit' or 'quit' (or Ctrl+C) exits",
        AnsiColors.GREEN,
    )
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if not user_msg:
            continue
        if user_msg.lower() in {"exit", "quit"}:
            break
        if user_msg == "/tools":
            print_tools()
            continue

        response = call_api("POST", "/agent", {"message": user_msg, "session_id": session_id})
        if "error" in response:
            colored_print(response["error"], AnsiColors.RED)
            continue

        for call in response.get("tool_calls", []):
            result = call["result"]
            if result["success"]:
                colored_print(f"[{call['name']}] {shorten(result['result'])}", AnsiColors.GREY)
            else:
                colored_print(f"[{call['name']}] ERROR: {result['error']}", AnsiColors.RED)

        colored_print(response.get("reply", "No response from API"), AnsiColors.YELLOW)
        if not response.get("completed", True):
            colored_print("(stopped at the step limit)", AnsiColors.GREY)


if __name__ == "__main__":
    run_cli()
