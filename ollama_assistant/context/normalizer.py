# ollama_assistant/context/normalizer.py
import re

_ws_re = re.compile(r"\s+")


def normalize_text(s: str) -> str:
    """Trim and collapse whitespace runs; used as the dedupe key for suggestions."""
    if not s:
        return ""
    return _ws_re.sub(" ", s.strip())


def leading_whitespace(line: str) -> str:
    return line[: len(line) - len(line.lstrip(" \t"))]


def snippet(line: str, limit: int = 100) -> str:
    """Short one-line preview of `line` for history entries and jump previews."""
    s = normalize_text(line)
    if len(s) <= limit:
        return s
    return s[: limit - 3].rstrip() + "..."
