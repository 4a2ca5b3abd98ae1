"""
Pydantic models for Praxis API requests and responses.
This module defines the request and response schemas used by the Praxis API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from praxis.core.schema import (
    ActionRecord,
    Attachment,
    RunError,
    RunStatus,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class SessionResponse(BaseModel):
    """Response with session information."""

    session_id: str


class MessageRequest(BaseModel):
    """Incoming user message."""

    message: str = Field(..., description="User message for Praxis")
    session_id: Optional[str] = Field(None, description="Session ID for conversation context")
    model: Optional[str] = Field(None, description="Model identifier (default from settings)")
    system_prompt: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)


class MessageResponse(BaseModel):
    """API response returned to the caller."""

    reply: Optional[str] = None
    status: RunStatus
    actions: List[ActionRecord] = Field(default_factory=list)
    session_id: str
    run_id: str
    error: Optional[RunError] = None


class CancelResponse(BaseModel):
    """Result of a cancellation request."""

    session_id: str
    cancelled: bool
