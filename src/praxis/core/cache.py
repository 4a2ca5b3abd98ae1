"""In-process cache for idempotent tool results."""

import json
import logging
import time
from collections import OrderedDict
from typing import (
    Any,
    Callable,
    Mapping,
    Tuple,
)

from praxis.core.schema import ToolResult

logger = logging.getLogger(__name__)


def cache_key(tool: str, parameters: Mapping[str, Any]) -> str:
    """``tool:<sorted-key JSON>``; parameter order does not matter."""
    return f"{tool}:{json.dumps(dict(parameters), sort_keys=True, default=str)}"


class ToolResultCache:
    """
    TTL + LRU bounded mapping of ``cache_key -> (result, timestamp)``.

    Only successful results are stored.  Reads return a copy flagged ``metadata.cached=True`` so the
    stored entry is never mutated by callers.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        max_entries: int = 128,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[ToolResult, float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, tool: str, parameters: Mapping[str, Any]) -> ToolResult | None:
        key = cache_key(tool, parameters)
        entry = self._entries.get(key)
        if entry is None:
            return None
        result, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[key]
            logger.debug("Cache entry expired: %s", key)
            return None
        self._entries.move_to_end(key)
        hit = result.model_copy(deep=True)
        hit.metadata.cached = True
        return hit

    def put(self, tool: str, parameters: Mapping[str, Any], result: ToolResult) -> None:
        if not result.success:
            return
        key = cache_key(tool, parameters)
        self._entries[key] = (result.model_copy(deep=True), self._clock())
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Cache evicted: %s", evicted)

    def clear(self) -> None:
        self._entries.clear()
