# ollama_assistant/context/context_builder.py
"""
ContextBuilder - assembles the code-context window sent to the model.

build(file_path, caret_line, caret_column, lines_up, lines_down, history) -> CodeContext

The window is:
 - up to `lines_up` lines above the caret line and `lines_down` below it
 - the caret line itself
 - language (from the extension), indentation style and the enclosing scope
 - the caller-supplied history entries (usually HistoryStore.relevant(...))

Building is a pure function of the inputs and the document text. Failures of
the text source are raised as ContextUnavailable, never swallowed here.
"""

from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

from ollama_assistant.context.language import (
    GLOBAL_SCOPE,
    detect_indentation,
    detect_language,
    detect_scope,
)
from ollama_assistant.core.errors import ContextUnavailable
from ollama_assistant.core.models import CodeContext, HistoryEntry
from ollama_assistant.core.protocols import TextSource
from ollama_assistant.utils.logger_utils import Log

logger = logging.getLogger(__name__)


class ContextBuilder:
    def __init__(self, text_source: TextSource):
        self.text_source = text_source

    def build(self,
              file_path: str,
              caret_line: int,
              caret_column: int,
              lines_up: int,
              lines_down: int,
              history: Optional[Iterable[HistoryEntry]] = None) -> CodeContext:
        try:
            lines = list(self.text_source.read_lines(file_path))
        except ContextUnavailable:
            raise
        except Exception as e:
            raise ContextUnavailable(f"text source failed for {file_path}: {e}") from e

        with Log.time_block("context.build"):
            return self.build_from_lines(lines, file_path, caret_line, caret_column,
                                         lines_up, lines_down, history)

    @staticmethod
    def build_from_lines(lines: Sequence[str],
                         file_path: str,
                         caret_line: int,
                         caret_column: int,
                         lines_up: int,
                         lines_down: int,
                         history: Optional[Iterable[HistoryEntry]] = None) -> CodeContext:
        lines_up = max(0, int(lines_up))
        lines_down = max(0, int(lines_down))
        language = detect_language(file_path)
        indentation = detect_indentation(lines)
        hist = tuple(h for h in (history or ()) if isinstance(h, HistoryEntry))

        if caret_line < 0 or caret_line >= len(lines):
            logger.debug("caret line %s outside %s (%d lines)", caret_line, file_path, len(lines))
            return CodeContext(
                file_path=file_path,
                language=language,
                caret_line=caret_line,
                caret_column=max(0, caret_column),
                current_scope=GLOBAL_SCOPE,
                indentation=indentation,
                history=hist,
            )

        current = lines[caret_line]
        column = max(0, min(int(caret_column), len(current)))
        start = max(0, caret_line - lines_up)
        end = min(len(lines), caret_line + 1 + lines_down)

        return CodeContext(
            file_path=file_path,
            language=language,
            caret_line=caret_line,
            caret_column=column,
            preceding_lines=tuple(lines[start:caret_line]),
            following_lines=tuple(lines[caret_line + 1:end]),
            current_line=current,
            current_scope=detect_scope(lines, caret_line, column, language),
            indentation=indentation,
            history=hist,
        )
