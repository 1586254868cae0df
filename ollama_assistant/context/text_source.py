# ollama_assistant/context/text_source.py
# text sources the ContextBuilder reads documents from

from __future__ import annotations

from typing import Dict, List, Optional, Sequence

from ollama_assistant.core.errors import ContextUnavailable


class FileTextSource:
    """Reads documents straight from disk."""

    def __init__(self, encoding: str = "utf-8"):
        self.encoding = encoding

    def read_lines(self, file_path: str) -> List[str]:
        try:
            with open(file_path, "r", encoding=self.encoding, errors="replace") as fh:
                return fh.read().splitlines()
        except OSError as e:
            raise ContextUnavailable(f"cannot read {file_path}: {e}") from e


class InMemoryTextSource:
    """Documents held in memory, keyed by path. Handy for editors that own the buffer (and for tests)."""

    def __init__(self, documents: Optional[Dict[str, str]] = None):
        self._docs: Dict[str, List[str]] = {}
        for path, text in (documents or {}).items():
            self.set_text(path, text)

    def set_text(self, file_path: str, text: str) -> None:
        self._docs[file_path] = text.splitlines()

    def set_lines(self, file_path: str, lines: Sequence[str]) -> None:
        self._docs[file_path] = list(lines)

    def read_lines(self, file_path: str) -> List[str]:
        try:
            return list(self._docs[file_path])
        except KeyError:
            raise ContextUnavailable(f"no open document for {file_path}") from None
