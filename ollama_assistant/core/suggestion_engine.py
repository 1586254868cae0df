# ollama_assistant/core/suggestion_engine.py
"""
SuggestionEngine - turns raw model output into suggestions worth showing.

Pipeline for process(raw, context):
  from_response (strings)  -> clean markdown/chatty text, kind, confidence, offsets
  should_show              -> drop None, blank, trivia, low confidence, invalid syntax
  adapt_style              -> rewrite indentation of multi-line text to the file's style
  dedupe                   -> normalized text, highest confidence wins
  rank                     -> (-confidence, edit distance to the line prefix, text)
  truncate                 -> max_suggestions

Validation is syntactic only: brackets and quotes are scanned together with the
text already left of the caret; nothing here parses the language properly.
Malformed but well-typed input yields an empty list, never an exception.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import Dict, Iterable, List, Optional, Tuple, Union

from ollama_assistant.context.language import INDENT_BLOCK_LANGUAGES, detect_indentation, line_comment_for
from ollama_assistant.context.normalizer import leading_whitespace, normalize_text
from ollama_assistant.context.scorers import prefix_distance
from ollama_assistant.core.models import CodeContext, IndentationInfo, Suggestion, SuggestionKind
from ollama_assistant.utils.config_manager import AssistantConfig

logger = logging.getLogger(__name__)

RawInput = Union[None, str, Suggestion, Iterable[Union[str, Suggestion]]]

# Response cleaning ----------------------------------------------------------------

_FENCE_OPEN_RE = re.compile(r"^```[\w+#-]*\n?", re.MULTILINE)
_FENCE_CLOSE_RE = re.compile(r"\n?```$", re.MULTILINE)
_PREFIX_RES = [
    re.compile(r"^(Here's|Here is|I suggest|I recommend|You could|Try this|Consider this).*?:\s*", re.IGNORECASE),
    re.compile(r"^The (completion|suggestion) is:\s*", re.IGNORECASE),
    re.compile(r"^Based on.*?:\s*", re.IGNORECASE),
]
_SUFFIX_RES = [
    re.compile(r"\s*(This will|This should|This completes).*$", re.IGNORECASE),
    re.compile(r"\s*//.*explanation.*$", re.IGNORECASE),
    re.compile(r"\s*/\*.*explanation.*\*/$", re.IGNORECASE),
]

_TRIVIA_RE = re.compile(r"^[\s{}();,.\[\]:]*$")
_WORD_TAIL_RE = re.compile(r"[A-Za-z_]\w*$")


def clean_response(text: Optional[str]) -> str:
    """Strip markdown fences and the chatty lead-ins/outros models like to add."""
    if not text or not text.strip():
        return ""
    cleaned = text.strip()
    cleaned = _FENCE_OPEN_RE.sub("", cleaned)
    cleaned = _FENCE_CLOSE_RE.sub("", cleaned)
    for rx in _PREFIX_RES:
        cleaned = rx.sub("", cleaned)
    for rx in _SUFFIX_RES:
        cleaned = rx.sub("", cleaned)
    return cleaned.strip()


def is_trivia(text: str) -> bool:
    """Only whitespace and punctuation, nothing a user would want inserted."""
    return bool(_TRIVIA_RE.match(text or ""))


_KIND_RULES: List[Tuple[re.Pattern, SuggestionKind]] = [
    (re.compile(r"^(///|/\*\*|\"\"\"|''')"), SuggestionKind.DOCUMENTATION),
    (re.compile(r"^(//|/\*|#(?!include))"), SuggestionKind.COMMENT),
    (re.compile(r"^(import|using|#include|require|from)\s+"), SuggestionKind.IMPORT),
    (re.compile(r"^(class|interface|struct|enum|type)\s+\w+"), SuggestionKind.TYPE),
    (re.compile(r"^(var|let|const|int|string|bool|double|float|auto)\s+\w+"), SuggestionKind.VARIABLE),
    (re.compile(r"\w+\s*\([^)]*\)"), SuggestionKind.METHOD),
]


def suggestion_kind(text: str) -> SuggestionKind:
    trimmed = (text or "").strip()
    for rx, kind in _KIND_RULES:
        if rx.search(trimmed):
            return kind
    return SuggestionKind.GENERAL


# Bracket / quote scanner ----------------------------------------------------------

_OPENERS = {"(": ")", "[": "]", "{": "}"}
_CLOSERS = {v: k for k, v in _OPENERS.items()}


def _scan(text: str, language: str, check_from: int) -> Tuple[bool, Optional[str]]:
    """
    Scan brackets and string literals in `text`.
    Returns (ok, open_quote): ok is False when a closer at or after
    `check_from` has no matching opener; open_quote is the quote still open
    at the end of text (None when all literals are closed).
    Closers before `check_from` belong to code outside our control and are
    tolerated.
    """
    comment = line_comment_for(language)
    triple = language in INDENT_BLOCK_LANGUAGES
    stack: List[str] = []
    quote: Optional[str] = None
    in_block_comment = False
    i, n = 0, len(text)
    while i < n:
        ch = text[i]
        if in_block_comment:
            if text.startswith("*/", i):
                in_block_comment = False
                i += 2
                continue
            i += 1
            continue
        if quote is not None:
            if ch == "\\":
                i += 2
                continue
            if text.startswith(quote, i):
                i += len(quote)
                quote = None
                continue
            if ch == "\n" and len(quote) == 1 and quote != "`":
                # single-line literal ran off the end of its line
                quote = None
            i += 1
            continue
        if text.startswith(comment, i):
            nl = text.find("\n", i)
            i = n if nl < 0 else nl + 1
            continue
        if comment == "//" and text.startswith("/*", i):
            in_block_comment = True
            i += 2
            continue
        if triple and (text.startswith('"""', i) or text.startswith("'''", i)):
            quote = text[i:i + 3]
            i += 3
            continue
        if ch in "\"'`":
            quote = ch
            i += 1
            continue
        if ch in _OPENERS:
            stack.append(ch)
        elif ch in _CLOSERS:
            if stack and stack[-1] == _CLOSERS[ch]:
                stack.pop()
            elif i >= check_from:
                return False, quote
            elif stack:
                stack.pop()
        i += 1
    return True, quote


# Engine ---------------------------------------------------------------------------

class SuggestionEngine:
    def __init__(self, config: Optional[AssistantConfig] = None):
        self.config = config or AssistantConfig()

    @property
    def min_confidence(self) -> float:
        return self.config.min_confidence

    @property
    def max_suggestions(self) -> int:
        return self.config.max_suggestions

    # construction from model text
    def from_response(self,
                      text: Optional[str],
                      context: CodeContext,
                      source_model: str = "",
                      processing_time_ms: float = 0.0) -> Optional[Suggestion]:
        cleaned = clean_response(text)
        if not cleaned:
            return None
        start, end = self._replacement_range(cleaned, context)
        draft = Suggestion(
            text=cleaned,
            kind=suggestion_kind(cleaned),
            start_offset=start,
            end_offset=end,
            source_model=source_model,
            processing_time_ms=processing_time_ms,
        )
        return dataclasses.replace(draft, confidence=self.estimate_confidence(draft, context))

    @staticmethod
    def _replacement_range(text: str, context: CodeContext) -> Tuple[int, int]:
        """Replace the identifier fragment left of the caret when the suggestion repeats it."""
        caret = len(context.line_prefix)
        m = _WORD_TAIL_RE.search(context.line_prefix)
        if m and text.startswith(m.group(0)):
            return m.start(), caret
        return caret, caret

    def estimate_confidence(self, suggestion: Suggestion, context: CodeContext) -> float:
        """
        Additive heuristic: a neutral base, bonuses for fitting the file's
        language/indentation/syntax and a sensible length, penalties for
        fragments and walls of text.
        """
        text = suggestion.text
        score = 0.4
        if self._language_appropriate(text, context.language):
            score += 0.15
        if self._indentation_consistent(text, context.indentation):
            score += 0.1
        if self.validate(suggestion, context):
            score += 0.2
        length = len(text)
        if 5 < length < 200:
            score += 0.1
        elif length < 3 or length > 500:
            score -= 0.2
        scope = (context.current_scope or "").rstrip("()")
        if scope and scope != "Global" and scope in text:
            score += 0.1
        return max(0.0, min(1.0, score))

    @staticmethod
    def _language_appropriate(text: str, language: str) -> bool:
        lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
        if language in INDENT_BLOCK_LANGUAGES:
            # braces-and-semicolons style in a Python file
            return not any(ln.endswith((";", "{")) for ln in lines)
        if language in ("text", ""):
            return True
        return not any(re.match(r"^(def|elif)\s", ln) for ln in lines)

    @staticmethod
    def _indentation_consistent(text: str, indentation: IndentationInfo) -> bool:
        want = " " if indentation.uses_spaces else "\t"
        for line in text.split("\n")[1:]:
            if not line.strip():
                continue
            ws = leading_whitespace(line)
            if ws and any(c != want for c in ws):
                return False
        return True

    # filters
    def should_show(self, suggestion: Optional[Suggestion], context: Optional[CodeContext]) -> bool:
        if suggestion is None or context is None:
            return False
        if not isinstance(suggestion.text, str) or not suggestion.text.strip():
            return False
        if is_trivia(suggestion.text):
            return False
        if suggestion.confidence < self.min_confidence:
            return False
        return self.validate(suggestion, context)

    def validate(self, suggestion: Suggestion, context: CodeContext) -> bool:
        """
        Brackets in the suggestion must not close anything that was never
        opened (or close it with the wrong kind), and the suggestion must not
        leave a string literal open that was closed before it.
        Unclosed openers are fine: completions are often partial.
        """
        surrounding = "\n".join(list(context.preceding_lines) + [context.line_prefix])
        _, quote_before = _scan(surrounding, context.language, len(surrounding) + 1)
        combined = surrounding + suggestion.text
        ok, quote_after = _scan(combined, context.language, len(surrounding))
        if not ok:
            return False
        if quote_after is not None and quote_before is None:
            return False
        return True

    # transforms
    def adapt_style(self, suggestion: Suggestion, context: CodeContext) -> Suggestion:
        """Re-indent multi-line text to the file's indentation; single lines pass through."""
        text = suggestion.text
        if "\n" not in text:
            return suggestion
        lines = text.split("\n")
        source = detect_indentation(lines[1:])
        unit = context.indentation.unit
        out = [lines[0]]
        for line in lines[1:]:
            ws = leading_whitespace(line)
            if not line.strip() or not ws:
                out.append(line)
                continue
            tabs = ws.count("\t")
            spaces = len(ws) - tabs
            step = source.size if source.uses_spaces else 4
            level, rest = tabs + spaces // step, spaces % step
            out.append(unit * level + " " * rest + line[len(ws):])
        adapted = "\n".join(out)
        if adapted == text:
            return suggestion
        return dataclasses.replace(suggestion, text=adapted)

    def dedupe(self, suggestions: Iterable[Suggestion]) -> List[Suggestion]:
        """One suggestion per normalized text, keeping the most confident (first seen on ties)."""
        best: Dict[str, Suggestion] = {}
        order: List[str] = []
        for s in suggestions:
            key = normalize_text(s.text)
            if not key:
                continue
            if key not in best:
                best[key] = s
                order.append(key)
            elif s.confidence > best[key].confidence:
                best[key] = s
        return [best[k] for k in order]

    def rank(self, suggestions: Iterable[Suggestion], context: CodeContext) -> List[Suggestion]:
        prefix = context.line_prefix if context is not None else ""
        return sorted(suggestions, key=lambda s: (-s.confidence, prefix_distance(s.text, prefix), s.text))

    # entry point
    def process(self, raw: RawInput, context: Optional[CodeContext]) -> List[Suggestion]:
        if raw is None or context is None:
            return []
        if isinstance(raw, (str, Suggestion)):
            items: Iterable = [raw]
        elif hasattr(raw, "__iter__"):
            items = raw
        else:
            logger.debug("ignoring raw input of type %s", type(raw).__name__)
            return []
        candidates: List[Suggestion] = []
        for item in items:
            if isinstance(item, str):
                item = self.from_response(item, context)
            if not isinstance(item, Suggestion):
                if item is not None:
                    logger.debug("ignoring non-suggestion input: %r", type(item).__name__)
                continue
            if not self.should_show(item, context):
                continue
            candidates.append(self.adapt_style(item, context))

        ranked = self.rank(self.dedupe(candidates), context)
        if len(ranked) > self.max_suggestions:
            ranked = ranked[: self.max_suggestions]
        return ranked
