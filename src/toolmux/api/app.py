"""
Core API backend for toolmux.

It exposes the following endpoints:
- **GET /health**          - liveness probe for health checks.
- **GET /tools**           - every tool the agent can call (local + all remote servers).
- **GET /tools/servers**   - registered tool server names.
- **POST /tools/refresh**  - drop cached remote catalogues: {"server": "..."} or all.
- **POST /tools/execute**  - run one tool directly: {"toolName": "...", "arguments": {...}}
- **POST /sessions**       - create a new session, returns a session ID.
- **GET /sessions**        - list all active sessions.
- **POST /agent**          - multi-turn interaction: {"message": "...", "session_id": "..."}
"""

import logging
import uuid
from functools import lru_cache
from typing import (
    Dict,
    List,
    Optional,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)

from toolmux.agent.agent_loop import AgentLoop
from toolmux.agent.llm_client import (
    LLMCallError,
    load_llm_client,
)
from toolmux.api.models import (
    ExecuteRequest,
    MessageRequest,
    MessageResponse,
    SessionResponse,
)
from toolmux.common import (
    AnsiColors,
    colored_print,
)
from toolmux.config import settings
from toolmux.core.schema import (
    ConversationMessage,
    ToolDefinition,
    ToolResult,
)
from toolmux.dispatch.facade import (
    ToolDispatcher,
    build_dispatcher,
)

logger = logging.getLogger(__name__)

# How many previous messages of a session are replayed to the LLM
HISTORY_WINDOW = 20

# Session storage (in-memory for now, could be moved to a database)
sessions: Dict[str, List[ConversationMessage]] = {}

app = FastAPI(title="toolmux API", version="0.1.0", description="Agentic tool-calling gateway")


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_dispatcher() -> ToolDispatcher:
    """Process-wide dispatcher built from the settings."""
    return build_dispatcher(settings)


@lru_cache(maxsize=1)
def get_agent_loop() -> AgentLoop:
    """Process-wide agent loop; it keeps no per-request state."""
    return AgentLoop(get_dispatcher(), load_llm_client())


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_or_create_session(session_id: Optional[str] = None) -> str:
    """Get existing session or create a new one."""
    if session_id and session_id in sessions:
        return session_id

    new_session_id = str(uuid.uuid4())
    sessions[new_session_id] = []
    return new_session_id


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/tools", response_model=List[ToolDefinition], summary="List available tools")
def list_tools(dispatcher: ToolDispatcher = Depends(get_dispatcher)) -> List[ToolDefinition]:
    """Every tool definition, exactly as presented to the LLM."""
    return dispatcher.all_definitions()


@app.get("/tools/servers", response_model=List[str], summary="List tool servers")
def list_servers(dispatcher: ToolDispatcher = Depends(get_dispatcher)) -> List[str]:
    """Registered tool server names."""
    return sorted(dispatcher.registered_servers())


@app.post("/tools/refresh", summary="Reload remote tool catalogues")
def refresh_tools(
    server: Optional[str] = None, dispatcher: ToolDispatcher = Depends(get_dispatcher)
) -> dict[str, str]:
    """Invalidate one server's cached catalogue, or all of them."""
    try:
        dispatcher.refresh(server)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown tool server '{server}'") from exc
    return {"status": "ok", "server": server or "*"}


@app.post("/tools/execute", response_model=ToolResult, summary="Execute a single tool")
def execute_tool(
    req: ExecuteRequest, dispatcher: ToolDispatcher = Depends(get_dispatcher)
) -> ToolResult:
    """Route one call through the dispatcher; failures come back as ``success=false``."""
    return dispatcher.route(req.tool_name, req.arguments)


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session() -> SessionResponse:
    """Create a new conversation session."""
    session_id = get_or_create_session()
    return SessionResponse(session_id=session_id)


@app.get("/sessions", response_model=List[str], summary="List active sessions")
async def list_sessions() -> List[str]:
    """List all active session IDs."""
    return list(sessions.keys())


@app.post("/agent", response_model=MessageResponse, summary="Process a message")
def agent_endpoint(
    req: MessageRequest, loop: AgentLoop = Depends(get_agent_loop)
) -> MessageResponse:
    """Run the tool-calling loop for a user message with optional session context."""
    session_id = get_or_create_session(req.session_id)
    history = sessions[session_id][-HISTORY_WINDOW:]

    try:
        result = loop.run_detailed(
            system_prompt=req.system_prompt,
            history=history,
            user_message=req.message,
            temperature=req.temperature,
        )
    except LLMCallError as exc:
        logger.warning("LLM failure: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc

    # Save the exchange to session history (tool traffic stays inside the run)
    sessions[session_id].extend(
        [ConversationMessage.user(req.message), ConversationMessage.assistant(result.answer)]
    )

    return MessageResponse(
        reply=result.answer,
        session_id=session_id,
        iterations=result.iterations,
        completed=result.completed,
        tool_calls=result.tool_calls,
    )


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the toolmux API! Use /docs for API documentation."}


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
        If *True*, enable auto-reload (useful in dev docker-compose).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting toolmux API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    logger.info("Tool servers: %s", ", ".join(settings.MCP_SERVERS) or "(none)")

    colored_print(f"toolmux API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "toolmux.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m toolmux.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
