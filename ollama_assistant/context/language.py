# ollama_assistant/context/language.py
"""
Language-aware helpers for context building: extension lookup, indentation
detection and the upward scope scan.

Everything here is a pure function over lists of lines.
"""

from __future__ import annotations

import os
import re
from functools import reduce
from math import gcd
from typing import Optional, Sequence

from ollama_assistant.core.models import IndentationInfo

GLOBAL_SCOPE = "Global"

LANGUAGE_BY_EXTENSION = {
    ".cs": "csharp",
    ".cpp": "cpp", ".cc": "cpp", ".cxx": "cpp", ".hpp": "cpp",
    ".c": "c", ".h": "c",
    ".js": "javascript", ".jsx": "javascript", ".mjs": "javascript",
    ".ts": "typescript", ".tsx": "typescript",
    ".py": "python", ".pyi": "python",
    ".java": "java",
    ".kt": "kotlin",
    ".go": "go",
    ".rs": "rust",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".scala": "scala",
}

# languages whose blocks are delimited by indentation rather than braces
INDENT_BLOCK_LANGUAGES = {"python"}

# comment leaders per language family
LINE_COMMENT = {
    "python": "#",
    "ruby": "#",
}

_SAMPLE_LINES = 200


def detect_language(file_path: Optional[str]) -> str:
    if not file_path:
        return "text"
    _, ext = os.path.splitext(file_path)
    return LANGUAGE_BY_EXTENSION.get(ext.lower(), "text")


def line_comment_for(language: str) -> str:
    return LINE_COMMENT.get(language, "//")


def detect_indentation(lines: Sequence[str]) -> IndentationInfo:
    """
    Majority vote between tab-led and space-led lines over a sample.
    Ties (including no indented lines at all) default to 4 spaces.
    """
    tabs = 0
    widths = []
    for line in lines[:_SAMPLE_LINES]:
        if not line.strip():
            continue
        if line.startswith("\t"):
            tabs += 1
        elif line.startswith(" "):
            widths.append(len(line) - len(line.lstrip(" ")))
    if tabs > len(widths):
        return IndentationInfo(uses_spaces=False, size=1)
    if not widths or tabs == len(widths):
        return IndentationInfo(uses_spaces=True, size=4)
    size = reduce(gcd, widths)
    if size < 2 or size > 8:
        size = 4
    return IndentationInfo(uses_spaces=True, size=size)


# Scope detection ------------------------------------------------------------------

_TYPE_RE = re.compile(r"\b(class|struct|interface|enum|record|trait|impl)\s+([A-Za-z_]\w*)")
_NAMESPACE_RE = re.compile(r"\b(namespace|module|package)\s+([A-Za-z_][\w.]*)")
_JS_FUNCTION_RE = re.compile(
    r"\bfunction\s*\*?\s*([A-Za-z_$][\w$]*)|([A-Za-z_$][\w$]*)\s*[:=]\s*(?:async\s+)?function\b"
    r"|([A-Za-z_$][\w$]*)\s*=\s*(?:async\s+)?\([^)]*\)\s*=>"
)
_FN_KEYWORD_RE = re.compile(r"\b(?:def|fn|fun|sub)\s+([A-Za-z_]\w*)|\bfunc\s*(?:\([^)]*\)\s*)?([A-Za-z_]\w*)")
_METHOD_RE = re.compile(r"([A-Za-z_~][\w]*)\s*\([^;]*\)\s*(?:const\s*)?(?:override\s*)?(?:throws\s+[\w., ]+)?\s*(?:\{|=>|$)")
_PY_SCOPE_RE = re.compile(r"^\s*(?:async\s+)?(def|class)\s+([A-Za-z_]\w*)")

_NOT_FUNCTIONS = {
    "if", "for", "foreach", "while", "switch", "catch", "using", "lock", "return",
    "else", "do", "try", "fixed", "checked", "unchecked", "sizeof", "typeof", "new",
    "elif", "with", "match", "when", "synchronized", "function",
}


def scope_name_from_header(line: str) -> Optional[str]:
    """Name of the class/function/namespace declared on `line`, or None."""
    text = line.strip()
    if not text or text.startswith(("//", "#", "*", "/*")):
        return None
    m = _NAMESPACE_RE.search(text)
    if m:
        return m.group(2)
    m = _TYPE_RE.search(text)
    if m:
        return m.group(2)
    for rx in (_FN_KEYWORD_RE, _JS_FUNCTION_RE):
        m = rx.search(text)
        if m:
            return next(g for g in m.groups() if g) + "()"
    m = _METHOD_RE.search(text)
    if m and m.group(1) not in _NOT_FUNCTIONS and not text.startswith(("return ", "else")):
        return m.group(1) + "()"
    return None


def _prev_nonblank(lines: Sequence[str], idx: int) -> Optional[int]:
    i = idx - 1
    while i >= 0:
        if lines[i].strip():
            return i
        i -= 1
    return None


def _brace_scope(lines: Sequence[str], caret_line: int, caret_column: int) -> str:
    pending_closes = 0
    for i in range(caret_line, -1, -1):
        text = lines[i]
        if i == caret_line:
            text = text[:caret_column]
        net = text.count("{") - text.count("}")
        if net < 0:
            pending_closes += -net
            continue
        if net == 0:
            continue
        if pending_closes >= net:
            pending_closes -= net
            continue
        # unmatched opener on this line; header is here or on the line above (Allman)
        header = text
        if text.strip().startswith("{"):
            j = _prev_nonblank(lines, i)
            header = lines[j] if j is not None else ""
        name = scope_name_from_header(header.split("{")[0] if "{" in header else header)
        if name:
            return name
        pending_closes = 0
    return GLOBAL_SCOPE


def _indent_of(line: str) -> int:
    return len(line.expandtabs(4)) - len(line.expandtabs(4).lstrip())


def _indent_scope(lines: Sequence[str], caret_line: int) -> str:
    current = lines[caret_line]
    if current.strip():
        limit = _indent_of(current)
    else:
        j = _prev_nonblank(lines, caret_line)
        # a blank line right under a header counts as the body of that header
        if j is None:
            return GLOBAL_SCOPE
        limit = _indent_of(lines[j]) + (1 if lines[j].rstrip().endswith(":") else 0)
    for i in range(caret_line - 1, -1, -1):
        text = lines[i]
        if not text.strip():
            continue
        ind = _indent_of(text)
        if ind >= limit:
            continue
        m = _PY_SCOPE_RE.match(text)
        if m:
            return m.group(2) + "()" if m.group(1) == "def" else m.group(2)
        limit = ind
        if limit == 0:
            break
    return GLOBAL_SCOPE


def detect_scope(lines: Sequence[str], caret_line: int, caret_column: int, language: str) -> str:
    """Innermost enclosing class/function/namespace; "Global" when none or caret out of range."""
    if caret_line < 0 or caret_line >= len(lines):
        return GLOBAL_SCOPE
    if language in INDENT_BLOCK_LANGUAGES:
        return _indent_scope(lines, caret_line)
    return _brace_scope(lines, caret_line, max(0, caret_column))
