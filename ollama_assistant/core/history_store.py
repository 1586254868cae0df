# ollama_assistant/core/history_store.py
"""
HistoryStore - bounded, thread-safe memory of recent caret positions.

 - strict FIFO eviction once the store holds more than `depth` entries
 - duplicate suppression against the most recently added entry
 - relevance ranking: 1 / (1 + line distance) in the current file, a fixed
   cross-file weight elsewhere, ties broken by recency
 - every read works on a snapshot copied under the lock, so callers never see
   a half-applied add/trim
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

from ollama_assistant.context.normalizer import snippet
from ollama_assistant.context.scorers import relevance_score, same_file
from ollama_assistant.core.models import HistoryEntry

logger = logging.getLogger(__name__)


def _valid(entry: object) -> bool:
    if not isinstance(entry, HistoryEntry):
        return False
    if not isinstance(entry.file_path, str) or not entry.file_path.strip():
        return False
    return entry.line >= 0 and entry.column >= 0


class HistoryStore:
    """
    Public API:
      add(entry) / record(file, line, column, snippet)
      recent(n), for_file(path, n), relevant(current_file, current_line, n)
      clear(), clear_file(path), set_depth(d)
      needs_snippets(path), attach_snippets(path, lines)
    """

    def __init__(self, depth: int = 3, cross_file_weight: float = 0.05):
        self._depth = max(1, int(depth))
        self.cross_file_weight = float(cross_file_weight)
        # oldest on the left, newest on the right; seq gives a stable recency order
        self._entries: Deque[Tuple[int, HistoryEntry]] = deque()
        self._seq = 0
        self._lock = threading.Lock()

    @property
    def depth(self) -> int:
        with self._lock:
            return self._depth

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # Mutations --------------------------------------------------------------------
    def add(self, entry: Optional[HistoryEntry]) -> bool:
        """Add an entry; returns False when it was ignored (invalid or duplicate)."""
        if not _valid(entry):
            return False
        with self._lock:
            if self._entries:
                last = self._entries[-1][1]
                if last.position == entry.position:
                    return False
                if entry.timestamp < last.timestamp:
                    # keep recent() non-increasing when racing callers stamp out of order
                    entry = dataclasses.replace(entry, timestamp=last.timestamp)
            self._seq += 1
            self._entries.append((self._seq, entry))
            self._trim_locked()
        return True

    def record(self, file_path: str, line: int, column: int, snippet: str = "") -> bool:
        if not file_path:
            return False
        return self.add(HistoryEntry(file_path=file_path, line=int(line), column=int(column),
                                     timestamp=time.time(), context_snippet=snippet or ""))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def clear_file(self, path: str) -> int:
        """Drop every entry for `path`; returns how many were removed."""
        if not path:
            return 0
        with self._lock:
            kept = [(s, e) for s, e in self._entries if not same_file(e.file_path, path)]
            removed = len(self._entries) - len(kept)
            self._entries = deque(kept)
        return removed

    def needs_snippets(self, path: str) -> bool:
        with self._lock:
            return any(not e.context_snippet and same_file(e.file_path, path) for _, e in self._entries)

    def attach_snippets(self, path: str, lines: Sequence[str]) -> int:
        """Fill empty snippets of `path` entries from the document text; returns how many were filled."""
        filled = 0
        with self._lock:
            for i, (seq, e) in enumerate(list(self._entries)):
                if e.context_snippet or e.line >= len(lines) or not same_file(e.file_path, path):
                    continue
                text = snippet(lines[e.line])
                if text:
                    self._entries[i] = (seq, dataclasses.replace(e, context_snippet=text))
                    filled += 1
        return filled

    def set_depth(self, d: int) -> None:
        with self._lock:
            self._depth = max(1, int(d))
            self._trim_locked()

    def _trim_locked(self) -> None:
        while len(self._entries) > self._depth:
            self._entries.popleft()

    # Queries ----------------------------------------------------------------------
    def _snapshot(self) -> List[Tuple[int, HistoryEntry]]:
        with self._lock:
            return list(self._entries)

    def recent(self, n: Optional[int] = None) -> List[HistoryEntry]:
        """Newest first. n=None returns everything."""
        snap = self._snapshot()
        snap.reverse()
        limit = len(snap) if n is None else max(0, int(n))
        return [e for _, e in snap[:limit]]

    def for_file(self, path: str, n: Optional[int] = None) -> List[HistoryEntry]:
        if not path:
            return []
        out = [e for e in self.recent() if same_file(e.file_path, path)]
        return out if n is None else out[: max(0, int(n))]

    def relevant(self, current_file: str, current_line: int, n: Optional[int] = None) -> List[HistoryEntry]:
        """Entries sorted by relevance desc, newer first on ties, truncated to n."""
        snap = self._snapshot()
        scored = [
            (relevance_score(e.file_path, e.line, current_file, current_line, self.cross_file_weight), seq, e)
            for seq, e in snap
        ]
        scored.sort(key=lambda t: (-t[0], -t[1]))
        limit = len(scored) if n is None else max(0, int(n))
        return [e for _, _, e in scored[:limit]]
