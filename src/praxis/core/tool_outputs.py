"""
Storage for tool outputs too large to keep in the run history.

A large result is written to ``DATA_DIR/tool-outputs/<id>.json`` and the history only gets a short
preview plus the id; the ``read_tool_output`` tool pages through the stored output on demand.
"""

import json
import logging
import time
import uuid
from pathlib import Path
from typing import (
    Any,
    Dict,
    Optional,
    Tuple,
)

from pydantic import (
    BaseModel,
    Field,
)

from praxis.config import settings

logger = logging.getLogger(__name__)

OUTPUTS_DIR = "tool-outputs"


class ToolOutputRecord(BaseModel):
    """Full output of one tool call, as stored on disk."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tool_name: str
    conversation_id: Optional[str] = None
    run_id: Optional[str] = None
    created_at: float = Field(default_factory=time.time)
    parameters: Dict[str, Any] = Field(default_factory=dict)
    output: Any = None


class ToolOutputRef(BaseModel):
    """Pointer to a stored output, placed in history instead of the output itself."""

    id: str
    path: str
    tool_name: str
    conversation_id: Optional[str] = None
    size_bytes: int = 0


class ToolOutputStore:
    """Flat directory of JSON records keyed by id."""

    def __init__(self, root: Path | None = None):
        self.root = root or Path(settings.DATA_DIR) / OUTPUTS_DIR

    def _path(self, output_id: str) -> Path:
        output_id = output_id.strip()
        if not output_id:
            raise ValueError("Tool output id is required")
        if "/" in output_id or "\\" in output_id or ".." in output_id:
            raise ValueError(f"Invalid tool output id: {output_id}")
        return self.root / f"{output_id}.json"

    def store(self, record: ToolOutputRecord) -> ToolOutputRef:
        """Write *record*; raises ``OSError`` when the directory cannot be written."""
        path = self._path(record.id)
        self.root.mkdir(parents=True, exist_ok=True)
        path.write_text(record.model_dump_json(), encoding="utf-8")
        size = path.stat().st_size
        logger.info("Stored %d bytes of '%s' output as %s", size, record.tool_name, record.id)
        return ToolOutputRef(
            id=record.id,
            path=f"{OUTPUTS_DIR}/{path.name}",
            tool_name=record.tool_name,
            conversation_id=record.conversation_id,
            size_bytes=size,
        )

    def read(self, output_id: str) -> ToolOutputRecord:
        """
        Load a stored record.

        Raises
        ------
        ValueError
            For an empty or path-like id.
        FileNotFoundError
            If no output is stored under *output_id*.
        """
        path = self._path(output_id)
        if not path.is_file():
            raise FileNotFoundError(f"No stored tool output with id '{output_id}'")
        return ToolOutputRecord.model_validate_json(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# History policy
# ---------------------------------------------------------------------------
def should_persist(result_mode: str, output_chars: int) -> bool:
    """Whether an output of *output_chars* characters is kept out of history."""
    if result_mode == "persist":
        return True
    if result_mode == "inline":
        return output_chars > settings.TOOL_OUTPUT_INLINE_HARD_MAX_CHARS
    return output_chars > settings.TOOL_OUTPUT_INLINE_MAX_CHARS


def truncate(text: str, max_chars: int) -> Tuple[str, bool]:
    if len(text) <= max_chars:
        return text, False
    return text[:max_chars] + "...", True


def history_reference(ref: ToolOutputRef, output_text: str) -> str:
    """Text placed in a tool-result message in place of a stored output."""
    preview, truncated = truncate(output_text, settings.TOOL_OUTPUT_PREVIEW_CHARS)
    return json.dumps(
        {
            "message": "Tool output stored outside the conversation. "
            "Use read_tool_output with output_ref.id to read it.",
            "output_ref": ref.model_dump(),
            "result_size_chars": len(output_text),
            "preview": preview,
            "preview_truncated": truncated,
        },
        ensure_ascii=False,
    )
