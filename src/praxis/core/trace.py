"""
Lightweight run tracing.

A :class:`Trace` records an ordered list of spans (tool calls, stages) and generations (LLM calls)
for one run.  Records are logged at debug level and persisted with the run.
"""

import logging
import time
from contextlib import contextmanager
from typing import (
    Any,
    Dict,
    Iterator,
    List,
    Literal,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from praxis.core.schema import TokenUsage

logger = logging.getLogger(__name__)


class TraceRecord(BaseModel):
    """One span or generation."""

    name: str
    kind: Literal["span", "generation"]
    model: Optional[str] = None
    input: Any = None
    output: Any = None
    usage: Optional[TokenUsage] = None
    started_at: float = Field(default_factory=time.time)
    duration: float = 0.0
    error: Optional[str] = None

    def end(self, output: Any = None, usage: TokenUsage | None = None) -> None:
        self.output = output
        if usage is not None:
            self.usage = usage


class Trace(BaseModel):
    """Ordered trace of one run."""

    run_id: str
    name: str = "agent-run"
    session_id: Optional[str] = None
    records: List[TraceRecord] = Field(default_factory=list)
    output: Any = None
    started_at: float = Field(default_factory=time.time)
    ended_at: Optional[float] = None

    @contextmanager
    def _record(self, record: TraceRecord) -> Iterator[TraceRecord]:
        self.records.append(record)
        start = time.perf_counter()
        try:
            yield record
        except BaseException as exc:
            record.error = f"{type(exc).__name__}: {exc}"
            raise
        finally:
            record.duration = time.perf_counter() - start
            logger.debug(
                "[trace %s] %s '%s' %.3fs%s",
                self.run_id,
                record.kind,
                record.name,
                record.duration,
                f" error={record.error}" if record.error else "",
            )

    def span(self, name: str, input: Any = None) -> Any:  # pylint: disable=redefined-builtin
        """Context manager recording a span."""
        return self._record(TraceRecord(name=name, kind="span", input=input))

    def generation(
        self, name: str, model: str, input: Any = None  # pylint: disable=redefined-builtin
    ) -> Any:
        """Context manager recording an LLM generation."""
        return self._record(TraceRecord(name=name, kind="generation", model=model, input=input))

    def end(self, output: Any = None) -> None:
        self.output = output
        self.ended_at = time.time()

    def summary(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
