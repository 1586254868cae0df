# ollama_assistant/core/models.py
"""
Value types shared across the pipeline.

HistoryEntry is long-lived (owned by HistoryStore); CodeContext, Suggestion and
JumpRecommendation are request-scoped and never mutated after construction.
All of them are frozen dataclasses with tuple-valued sequences.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional, Tuple, Type


def clamp01(value: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    if v != v:  # NaN
        return 0.0
    return max(0.0, min(1.0, v))


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class JumpDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"


class SuggestionKind(str, Enum):
    GENERAL = "general"
    METHOD = "method"
    VARIABLE = "variable"
    TYPE = "type"
    IMPORT = "import"
    COMMENT = "comment"
    DOCUMENTATION = "documentation"


@dataclass(frozen=True)
class HistoryEntry:
    """One caret position. line/column are 0-based, timestamp is epoch seconds."""
    file_path: str
    line: int
    column: int
    timestamp: float = field(default_factory=time.time)
    context_snippet: str = ""

    @property
    def position(self) -> Tuple[str, int, int]:
        return (self.file_path, self.line, self.column)


@dataclass(frozen=True)
class IndentationInfo:
    uses_spaces: bool = True
    size: int = 4

    @property
    def unit(self) -> str:
        return " " * self.size if self.uses_spaces else "\t"


@dataclass(frozen=True)
class CodeContext:
    file_path: str
    language: str
    caret_line: int
    caret_column: int
    preceding_lines: Tuple[str, ...] = ()
    following_lines: Tuple[str, ...] = ()
    current_line: str = ""
    current_scope: str = "Global"
    indentation: IndentationInfo = field(default_factory=IndentationInfo)
    history: Tuple[HistoryEntry, ...] = ()

    @property
    def line_prefix(self) -> str:
        """Text of the current line left of the caret."""
        col = max(0, min(self.caret_column, len(self.current_line)))
        return self.current_line[:col]

    @property
    def first_line_number(self) -> int:
        return self.caret_line - len(self.preceding_lines)

    @property
    def is_empty(self) -> bool:
        return not (self.preceding_lines or self.following_lines or self.current_line.strip())

    def line_at(self, number: int) -> Optional[str]:
        """Text of absolute line `number` if it falls inside the window."""
        if number == self.caret_line:
            return self.current_line
        if number < self.caret_line:
            idx = number - self.first_line_number
            if 0 <= idx < len(self.preceding_lines):
                return self.preceding_lines[idx]
            return None
        idx = number - self.caret_line - 1
        if 0 <= idx < len(self.following_lines):
            return self.following_lines[idx]
        return None

    def window(self) -> Tuple[Tuple[int, str], ...]:
        """All window lines as (absolute line number, text)."""
        start = self.first_line_number
        rows = [(start + i, t) for i, t in enumerate(self.preceding_lines)]
        rows.append((self.caret_line, self.current_line))
        rows.extend((self.caret_line + 1 + i, t) for i, t in enumerate(self.following_lines))
        return tuple(rows)


@dataclass(frozen=True)
class Suggestion:
    text: str
    confidence: float = 0.0
    kind: SuggestionKind = SuggestionKind.GENERAL
    start_offset: int = 0
    end_offset: int = 0
    source_model: str = ""
    processing_time_ms: float = 0.0

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp01(self.confidence))


@dataclass(frozen=True)
class JumpRecommendation:
    direction: JumpDirection
    target_line: int
    target_column: int = 0
    confidence: float = 0.0
    reason: str = ""
    preview: str = ""
    target_file: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "confidence", clamp01(self.confidence))


@dataclass(frozen=True)
class HealthStatus:
    is_available: bool
    response_time_ms: float = 0.0
    consecutive_failures: int = 0
    circuit_state: CircuitState = CircuitState.CLOSED
    error: Optional[str] = None
    checked_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class RecoveryStrategy:
    """
    How HandleFailure reacts to one exception type.
    fallback_action(exc, context) -> bool decides whether the caller may carry on.
    """
    exception_kind: Type[BaseException]
    max_retries: int = 0
    base_delay: float = 0.0
    backoff_multiplier: float = 2.0
    fallback_action: Optional[Callable[[BaseException, str], bool]] = None
