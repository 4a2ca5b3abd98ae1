"""
Schema definitions for orchestrator <-> LLM <-> tool messages.

These data models serve as the contract between the stage functions of the orchestration loop, the
provider layer and individual tools.  We keep them separate from runtime logic so they can be imported
anywhere without side-effects.
"""

import json
import time
import uuid
from enum import Enum
from typing import (
    Any,
    Dict,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)


class Role(str, Enum):
    """Role tag of a history message."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"


class Stage(str, Enum):
    """Stage of one orchestrator iteration."""

    PLAN = "plan"
    DECIDE = "decide"
    DESCRIBE = "describe"
    EXECUTE = "execute"
    REFLECT = "reflect"
    DONE = "done"


class RunStatus(str, Enum):
    """Lifecycle status of a run."""

    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    MAX_ITERATIONS = "max_iterations"
    TOOL_FAILURE = "tool_failure"
    CANCELLED = "cancelled"
    FAILED = "failed"


class ToolRisk(str, Enum):
    """Risk class of a tool, used for the default approval policy."""

    READ_ONLY = "read_only"
    REVERSIBLE = "reversible"
    MODIFYING = "modifying"
    DESTRUCTIVE = "destructive"
    EXTERNAL = "external"

    @property
    def requires_approval(self) -> bool:
        """Whether tools of this risk class are gated by default."""
        return self not in (ToolRisk.READ_ONLY, ToolRisk.REVERSIBLE)


class ApprovalDecisionKind(str, Enum):
    """Human decision on a pending tool call."""

    APPROVED = "approved"
    SKIPPED = "skipped"
    MODIFIED = "modified"
    DENIED = "denied"


class TokenUsage(BaseModel):
    """Token accounting for one or more LLM calls."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
class ImagePart(BaseModel):
    """Inline base64 image sent alongside a message."""

    data: str = Field(..., description="Base64-encoded image bytes")
    media_type: str = "image/jpeg"


class ToolCallRef(BaseModel):
    """Tool invocation recorded on an assistant message."""

    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:24]}")
    name: str
    input: Dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """One role-tagged entry of the run history."""

    role: Role
    content: str = ""
    tool_call: Optional[ToolCallRef] = None  # assistant messages only
    tool_call_id: Optional[str] = None  # tool-result messages only
    tool_name: Optional[str] = None
    images: List[ImagePart] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------
class ToolSpec(BaseModel):
    """Static description of a registered tool."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    requires_approval: bool = False
    risk: ToolRisk = ToolRisk.READ_ONLY


class ToolCall(BaseModel):
    """A call that the orchestrator wants the executor to run."""

    model_config = ConfigDict(frozen=True)

    tool: str = Field(..., description="Registered tool name")
    parameters: Dict[str, Any] = Field(default_factory=dict, description="Tool parameters")


class ToolError(BaseModel):
    """Classified tool failure."""

    category: str
    message: str
    retriable: bool = False


class ToolResultMetadata(BaseModel):
    """Execution metadata attached to every tool result."""

    duration: float = 0.0  # seconds
    retriable: bool = False
    cached: bool = False
    timestamp: float = Field(default_factory=time.time)
    approval: Optional[ApprovalDecisionKind] = None
    output_ref: Optional[str] = None  # id of the stored full output when kept out of history


class ToolResult(BaseModel):
    """Outcome of one tool call."""

    success: bool
    data: Any = None
    error: Optional[ToolError] = None
    metadata: ToolResultMetadata = Field(default_factory=ToolResultMetadata)

    @classmethod
    def ok(cls, data: Any, duration: float = 0.0) -> "ToolResult":
        """Build a successful result."""
        return cls(success=True, data=data, metadata=ToolResultMetadata(duration=duration))

    @classmethod
    def failure(
        cls, category: str, message: str, retriable: bool = False, duration: float = 0.0
    ) -> "ToolResult":
        """Build a failed result."""
        return cls(
            success=False,
            error=ToolError(category=category, message=message, retriable=retriable),
            metadata=ToolResultMetadata(duration=duration, retriable=retriable),
        )

    def as_text(self) -> str:
        """Render the result the way the model sees it in history."""
        if self.success:
            if isinstance(self.data, str):
                return self.data
            return json.dumps(self.data, ensure_ascii=False, default=str)
        error = self.error or ToolError(category="internal", message="unknown error")
        retry = "retriable" if error.retriable else "not retriable"
        return f"Error ({error.category}, {retry}): {error.message}"


class ActionRecord(BaseModel):
    """One executed (or gated) tool call, kept for the final answer and audit."""

    tool_name: str
    parameters: Dict[str, Any] = Field(default_factory=dict)
    result: ToolResult
    reflection: str = ""
    step: int = 0


# ---------------------------------------------------------------------------
# Approval
# ---------------------------------------------------------------------------
class ApprovalRequest(BaseModel):
    """A tool call waiting for a human decision."""

    approval_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tool_name: str
    args: Dict[str, Any] = Field(default_factory=dict)
    preview: str = ""
    risk: ToolRisk = ToolRisk.MODIFYING
    run_id: Optional[str] = None
    conversation_id: Optional[str] = None


class ApprovalDecision(BaseModel):
    """Out-of-band answer to an ApprovalRequest."""

    decision: ApprovalDecisionKind
    parameters: Optional[Dict[str, Any]] = None  # replacement args for ``modified``
    feedback: Optional[str] = None


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------
class Attachment(BaseModel):
    """User-supplied file fed into a run."""

    name: str
    attachment_type: Literal["image", "audio", "text"]
    data: str = Field("", description="Base64 payload for image/audio, raw text for text")
    media_type: Optional[str] = None
    transcript: Optional[str] = None
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------
class StreamChunk(BaseModel):
    """Piece of the streamed final answer."""

    type: Literal["chunk"] = "chunk"
    text: str


class ToolActivity(BaseModel):
    """Tool progress notification."""

    type: Literal["tool_activity"] = "tool_activity"
    tool_name: str
    status: Literal["running", "completed", "failed"]
    duration_ms: Optional[int] = None


class ApprovalRequested(BaseModel):
    """Run suspended waiting for a decision."""

    type: Literal["approval_request"] = "approval_request"
    request: ApprovalRequest


class RunError(BaseModel):
    """Terminal error details with the stage context attached."""

    type: str
    message: str
    stage: Optional[Stage] = None
    step: Optional[int] = None
    active_tool: Optional[str] = None
    model: Optional[str] = None
    details: List[Any] = Field(default_factory=list)


class RunFailed(BaseModel):
    """Terminal error event."""

    type: Literal["error"] = "error"
    error: RunError


class RunFinished(BaseModel):
    """Terminal event emitted once per run."""

    type: Literal["done"] = "done"
    run_id: str
    status: RunStatus
    answer: Optional[str] = None


AgentEvent = Union[StreamChunk, ToolActivity, ApprovalRequested, RunFailed, RunFinished]


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------
class AgentRunState(BaseModel):
    """Mutable state owned by exactly one run."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    conversation_id: str
    model: str
    max_iterations: int = 4
    history: List[Message] = Field(default_factory=list)
    plan: Optional[str] = None
    actions_taken: List[ActionRecord] = Field(default_factory=list)
    current_stage: Stage = Stage.PLAN
    current_step: int = 0
    active_tool: Optional[ToolSpec] = None
    active_tool_payload: Optional[Dict[str, Any]] = None
    status: RunStatus = RunStatus.RUNNING
    error: Optional[RunError] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
    trace: Any = Field(default=None, exclude=True)

    def append(self, role: Role, content: str, **kwargs: Any) -> Message:
        """Append a message to the history and return it."""
        message = Message(role=role, content=content, **kwargs)
        self.history.append(message)
        return message

    def select_tool(self, spec: ToolSpec) -> None:
        """Set the active tool chosen by the decide stage."""
        self.active_tool = spec
        self.active_tool_payload = None

    def set_payload(self, payload: Dict[str, Any]) -> None:
        """Attach validated parameters to the active tool."""
        if self.active_tool is None:
            raise ValueError("Cannot set a payload without an active tool")
        self.active_tool_payload = payload

    def advance(self) -> None:
        """Close the current iteration."""
        if self.current_step >= self.max_iterations:
            raise ValueError("Iteration bound already reached")
        self.current_step += 1
        self.active_tool = None
        self.active_tool_payload = None

    @property
    def is_terminal(self) -> bool:
        """True once the run left the running/awaiting states."""
        return self.status not in (RunStatus.RUNNING, RunStatus.AWAITING_APPROVAL)


class RunOutcome(BaseModel):
    """Result returned to the caller of ``handle_send_message``."""

    run_id: str
    conversation_id: str
    status: RunStatus
    answer: Optional[str] = None
    actions: List[ActionRecord] = Field(default_factory=list)
    iterations: int = 0
    error: Optional[RunError] = None
    usage: TokenUsage = Field(default_factory=TokenUsage)
