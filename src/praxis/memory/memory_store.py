"""Persist conversation messages and run records (in memory, optionally mirrored to JSON lines)."""

import json
import logging
import threading
import time
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Protocol,
)

from praxis.config import settings
from praxis.core.schema import (
    AgentRunState,
    Message,
    Role,
)

logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    """Narrow persistence interface consumed by the orchestrator."""

    def create(self, conversation_id: str) -> None:
        """Register an empty conversation."""

    def append(self, conversation_id: str, role: Role, content: str) -> None:
        """Persist one ``{role, content}`` pair."""

    def history(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        """Return the last *limit* messages of a conversation, oldest first."""

    def save_run(self, state: AgentRunState) -> None:
        """Persist the final state of a run for audit."""

    def conversations(self) -> List[str]:
        """Known conversation ids."""


class InMemoryConversationStore:
    """Process-local store; the default for tests and the CLI."""

    def __init__(self) -> None:
        self._messages: Dict[str, List[Message]] = {}
        self.runs: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    def create(self, conversation_id: str) -> None:
        with self._lock:
            self._messages.setdefault(conversation_id, [])

    def append(self, conversation_id: str, role: Role, content: str) -> None:
        with self._lock:
            self._messages.setdefault(conversation_id, []).append(
                Message(role=role, content=content)
            )

    def history(self, conversation_id: str, limit: Optional[int] = None) -> List[Message]:
        with self._lock:
            messages = list(self._messages.get(conversation_id, []))
        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    def save_run(self, state: AgentRunState) -> None:
        record = _run_record(state)
        with self._lock:
            self.runs.append(record)

    def conversations(self) -> List[str]:
        with self._lock:
            return list(self._messages)


class JsonlConversationStore(InMemoryConversationStore):
    """
    In-memory store mirrored to a flat-file audit trail (JSON lines).

    Each line is either ``{"kind": "message", ...}`` or ``{"kind": "run", ...}``; messages are
    reloaded on start-up.
    """

    def __init__(self, path: Path | str | None = None):
        super().__init__()
        self.path = Path(path) if path else Path(settings.DATA_DIR) / "praxis_turns.jsonl"
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.touch()  # Create an empty file if it doesn't exist
        self._load()

    def _load(self) -> None:
        with self.path.open("r", encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("Skipping corrupt line %d in %s", lineno, self.path)
                    continue
                if entry.get("kind") == "message":
                    super().append(entry["conversation_id"], Role(entry["role"]), entry["content"])
        logger.debug("Loaded %d conversations from %s", len(self.conversations()), self.path)

    def _write(self, entry: Dict[str, Any]) -> None:
        with self._lock, self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")

    def append(self, conversation_id: str, role: Role, content: str) -> None:
        super().append(conversation_id, role, content)
        self._write(
            {
                "kind": "message",
                "conversation_id": conversation_id,
                "role": Role(role).value,
                "content": content,
                "timestamp": time.time(),
            }
        )

    def save_run(self, state: AgentRunState) -> None:
        record = _run_record(state)
        with self._lock:
            self.runs.append(record)
        self._write({"kind": "run", **record})


def _run_record(state: AgentRunState) -> Dict[str, Any]:
    record = state.model_dump(mode="json")
    if state.trace is not None:
        record["trace"] = state.trace.summary()
    return record
