# ollama_assistant/core/suggestion_cache.py
"""
SuggestionCache - bounded LRU cache with a time-to-live for processed suggestions.

Entries are keyed on the model plus the context window around the caret, so
returning to a spot that was already completed skips the model call.
Expired entries are dropped on lookup; once full, the least recently used
entry is evicted first. Only non-empty results are stored.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from ollama_assistant.core.models import CodeContext, Suggestion

logger = logging.getLogger(__name__)


def context_key(ctx: CodeContext, model: str) -> str:
    h = hashlib.sha1()
    parts = [model, ctx.language, str(ctx.caret_column)]
    parts.extend(ctx.preceding_lines)
    parts.append("\x00" + ctx.current_line)
    parts.extend(ctx.following_lines)
    for part in parts:
        h.update(part.encode("utf-8", "replace"))
        h.update(b"\n")
    return f"{ctx.file_path}:{ctx.caret_line}:{h.hexdigest()}"


class SuggestionCache:
    def __init__(self, max_size: int = 50, ttl_s: float = 600.0,
                 clock: Callable[[], float] = time.monotonic):
        self.max_size = max(1, int(max_size))
        self.ttl_s = max(0.0, float(ttl_s))
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, Tuple[Suggestion, ...]]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get(self, key: str) -> Optional[Tuple[Suggestion, ...]]:
        with self._lock:
            item = self._entries.get(key)
            if item is None:
                self.misses += 1
                return None
            stored_at, value = item
            if self._clock() - stored_at > self.ttl_s:
                del self._entries[key]
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return value

    def put(self, key: str, suggestions: Sequence[Suggestion]) -> None:
        if not suggestions:
            return
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = (self._clock(), tuple(suggestions))
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug("suggestion cache full, evicted %s", evicted)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            size = len(self._entries)
        return {
            "size": size,
            "max_size": self.max_size,
            "ttl_s": self.ttl_s,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": f"{self.hit_rate * 100:.1f}%",
        }
