"""
Core API backend for Praxis.

This module exposes the orchestrator through a RESTful API used by the CLI and other frontends:
- **GET /health**  - liveness check.
- **POST /sessions** - create a new session, returns a session ID.
- **GET /sessions** - list all known sessions.
- **POST /agent**   - blocking run: {"message": "...", "session_id": "..."}
- **POST /agent/stream** - same request, run events streamed as server-sent events.
- **GET /approvals** - pending approval requests.
- **POST /approvals/{approval_id}** - resolve a pending approval.
- **POST /sessions/{session_id}/cancel** - cancel the in-flight run of a session.
"""

import asyncio
import json
import logging
import uuid
from pathlib import Path
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from praxis.api.models import (
    CancelResponse,
    MessageRequest,
    MessageResponse,
    SessionResponse,
)
from praxis.common import (
    AnsiColors,
    colored_print,
)
from praxis.config import settings
from praxis.core.approval import ApprovalNotFoundError
from praxis.core.orchestrator import Orchestrator
from praxis.core.schema import (
    AgentEvent,
    ApprovalDecision,
    ApprovalRequest,
)
from praxis.llm.errors import (
    MissingCredentialError,
    UnknownModelError,
)
from praxis.memory.memory_store import JsonlConversationStore

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Praxis API", version="0.1.0", description="Praxis agentic tool orchestrator API"
)

# Add CORS middleware to allow requests from local frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=[f"http://localhost:{settings.API_PORT}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_orchestrator: Optional[Orchestrator] = None


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator backed by the JSON-lines conversation store."""
    global _orchestrator  # pylint: disable=global-statement
    if _orchestrator is None:
        _orchestrator = Orchestrator(store=JsonlConversationStore())
    return _orchestrator


def _sse(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, default=str)}\n\n"


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session(orch: Orchestrator = Depends(get_orchestrator)) -> SessionResponse:
    """Create a new conversation session."""
    session_id = str(uuid.uuid4())
    orch.store.create(session_id)
    return SessionResponse(session_id=session_id)


@app.get("/sessions", response_model=List[str], summary="List sessions")
async def list_sessions(orch: Orchestrator = Depends(get_orchestrator)) -> List[str]:
    """List all known session IDs."""
    return orch.store.conversations()


@app.post("/agent", response_model=MessageResponse, summary="Process a message")
async def agent_endpoint(
    req: MessageRequest, orch: Orchestrator = Depends(get_orchestrator)
) -> MessageResponse:
    """Run the orchestrator for one message and return the final answer."""
    session_id = req.session_id or str(uuid.uuid4())
    try:
        outcome = await orch.handle_send_message(
            req.message,
            model_id=req.model,
            system_prompt=req.system_prompt,
            attachments=req.attachments,
            conversation_id=session_id,
        )
    except (UnknownModelError, MissingCredentialError) as exc:
        logger.warning("Rejected request: %s", exc)
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return MessageResponse(
        reply=outcome.answer,
        status=outcome.status,
        actions=outcome.actions,
        session_id=session_id,
        run_id=outcome.run_id,
        error=outcome.error,
    )


@app.post("/agent/stream", summary="Process a message, streaming run events")
async def agent_stream_endpoint(
    req: MessageRequest, orch: Orchestrator = Depends(get_orchestrator)
) -> StreamingResponse:
    """Stream run events (chunks, tool activity, approval requests, done/error) as SSE."""
    session_id = req.session_id or str(uuid.uuid4())

    async def generate_events() -> AsyncIterator[str]:
        queue: "asyncio.Queue[AgentEvent]" = asyncio.Queue()
        task = asyncio.create_task(
            orch.handle_send_message(
                req.message,
                model_id=req.model,
                system_prompt=req.system_prompt,
                attachments=req.attachments,
                conversation_id=session_id,
                on_event=queue.put_nowait,
            )
        )
        yield _sse({"type": "session", "session_id": session_id})
        try:
            while True:
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, task}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    event = getter.result()
                    yield _sse(event.model_dump(mode="json"))
                    if event.type in ("done", "error"):
                        break
                    continue
                getter.cancel()
                while not queue.empty():
                    yield _sse(queue.get_nowait().model_dump(mode="json"))
                exc = task.exception()
                if exc is not None:
                    logger.warning("Streaming run failed before start: %s", exc)
                    error = {"type": type(exc).__name__, "message": str(exc)}
                    yield _sse({"type": "error", "error": error})
                break
        finally:
            if not task.done():
                # Client went away
                task.cancel()

    return StreamingResponse(
        generate_events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@app.get("/approvals", response_model=List[ApprovalRequest], summary="Pending approvals")
async def list_approvals(
    session_id: Optional[str] = None, orch: Orchestrator = Depends(get_orchestrator)
) -> List[ApprovalRequest]:
    """List pending approval requests, optionally for one session."""
    return orch.pending_approvals(session_id)


@app.post(
    "/approvals/{approval_id}", response_model=ApprovalRequest, summary="Resolve an approval"
)
async def resolve_approval(
    approval_id: str, decision: ApprovalDecision, orch: Orchestrator = Depends(get_orchestrator)
) -> ApprovalRequest:
    """Approve, skip, modify or deny a pending tool call."""
    try:
        return orch.resolve_approval(approval_id, decision)
    except ApprovalNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"No pending approval {approval_id}") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.post(
    "/sessions/{session_id}/cancel", response_model=CancelResponse, summary="Cancel a run"
)
async def cancel_session(
    session_id: str, orch: Orchestrator = Depends(get_orchestrator)
) -> CancelResponse:
    """Cancel the in-flight run of *session_id*."""
    if not orch.cancel(session_id):
        raise HTTPException(status_code=409, detail=f"No run in progress for session {session_id}")
    return CancelResponse(session_id=session_id, cancelled=True)


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

    # Lazy import - keeps uvicorn out of the import path of library users
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting Praxis API at %s:%d (reload=%s, log_level=%s)", host, port, reload, log_level
    )
    Path(settings.DATA_DIR).mkdir(parents=True, exist_ok=True)
    logger.debug(
        "API settings: %s", settings.model_dump(exclude={"OPENAI_API_KEY", "ANTHROPIC_API_KEY"})
    )

    colored_print(f"Praxis API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(f"Visit http://localhost:{port}/docs for API documentation.", AnsiColors.BLUE)
    uvicorn.run(
        "praxis.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m praxis.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
