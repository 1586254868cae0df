# ollama_assistant/core/protocols.py
"""
Protocol interfaces for the collaborators the assistant talks to but does not own.

The host editor and the document source are external: the pipeline depends on
these small Protocols rather than on a concrete editor, so tests can plug in
stubs and the CLI can plug in a console-backed editor.
Keep this file stable.
"""

from __future__ import annotations

from typing import Any, Dict, List, Protocol, Sequence, Tuple, runtime_checkable
from typing_extensions import TypedDict


# Wire structures ------------------------------------------------------------

class GenerateRequest(TypedDict, total=False):
    """
    JSON body POSTed to /api/generate.

    Example:
      {"model": "codellama", "prompt": "...", "context": "...", "stream": false,
       "options": {"temperature": 0.1, "num_predict": 128}}
    """
    model: str
    prompt: str
    context: str
    stream: bool
    options: Dict[str, Any]


class GenerateChunk(TypedDict, total=False):
    """One NDJSON line of a streamed /api/generate response (or the whole non-streamed body)."""
    model: str
    response: str
    done: bool


# Protocols ------------------------------------------------------------------

@runtime_checkable
class EditorHost(Protocol):
    """
    What the assistant needs from the host editor. Any method may raise
    Unavailable when the editor API fails; callers degrade instead of crashing.
    """

    def get_surrounding_text(self, lines_up: int, lines_down: int) -> List[str]:
        ...

    def get_caret_position(self) -> Tuple[str, int, int]:
        """Return (file_path, line, column), 0-based."""
        ...

    def insert_text(self, text: str) -> None:
        ...

    def move_caret_to(self, line: int, column: int) -> None:
        ...


@runtime_checkable
class TextSource(Protocol):
    """Whole-document reads used by the ContextBuilder."""

    def read_lines(self, file_path: str) -> Sequence[str]:
        ...
