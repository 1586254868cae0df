# ollama_assistant/core/jump_analyzer.py
"""
JumpAnalyzer - where the caret probably wants to go next.

Two candidate sources, both restricted to the current file:
 - structural: block pairs and headers visible in the context window
   (matching brace, body of a control/function header, header of a closing
   brace, the other half of a declaration/implementation pair, the line after
   a dangling assignment)
 - history: recently visited lines, scored by proximity and recency

A target seen by both sources blends the two scores:
    confidence = (ws * structural + wh * history) / (sum of weights present)
Candidates under the confidence floor keep direction NONE.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ollama_assistant.context.language import INDENT_BLOCK_LANGUAGES, scope_name_from_header
from ollama_assistant.context.normalizer import leading_whitespace, snippet
from ollama_assistant.context.scorers import recency_weight, relevance_score, same_file
from ollama_assistant.core.models import CodeContext, JumpDirection, JumpRecommendation
from ollama_assistant.utils.config_manager import AssistantConfig

logger = logging.getLogger(__name__)

_CONTROL_RE = re.compile(r"^(}\s*)?(if|else|for|foreach|while|switch|try|catch|finally|do|using|lock|elif|with|match)\b")

# structural certainties
BLOCK_END = 0.8
CONTROL_BODY = 0.9
METHOD_BODY = 0.85
DECLARATION_PAIR = 0.75
INCOMPLETE_EXPR = 0.75
CALL_TARGET = 0.7
BLOCK_HEADER = 0.6


@dataclass
class _Candidate:
    line: int
    column: int = 0
    structural: Optional[float] = None
    history: Optional[float] = None
    reason: str = ""
    preview: str = ""

    def offer_structural(self, score: float, reason: str, column: int, preview: str) -> None:
        if self.structural is None or score > self.structural:
            self.structural = score
            self.reason = reason
            self.column = column
            self.preview = preview

    def offer_history(self, score: float, preview: str) -> None:
        if self.history is None or score > self.history:
            self.history = score
            if not self.reason:
                self.reason = "Return to recently visited line"
                self.preview = preview


def _indent_width(line: str) -> int:
    return len(leading_whitespace(line).expandtabs(4))


_PY_DEF_RE = re.compile(r"^\s*(?:async\s+)?def\s+([A-Za-z_]\w*)")
_PROTOTYPE_RE = re.compile(r"^(?:[\w<>\[\],.*&:]+\s+)+[*&]?([A-Za-z_]\w*)\s*\([^()]*\)\s*(?:const\s*)?;$")
_STATEMENT_WORDS = {"return", "throw", "new", "await", "yield", "else", "delete", "goto", "case"}


def _declared_function(line: str, language: str) -> Optional[str]:
    """Name of the function declared (or implemented) on `line`; plain calls do not count."""
    if language in INDENT_BLOCK_LANGUAGES:
        m = _PY_DEF_RE.match(line)
        return m.group(1) if m else None
    head = line.strip()
    m = _PROTOTYPE_RE.match(head)
    if m:
        return None if head.split()[0] in _STATEMENT_WORDS else m.group(1)
    name = scope_name_from_header(line)
    if not name or not name.endswith("()"):
        return None
    name = name[:-2]
    m = re.search(r"\b" + re.escape(name) + r"\s*\(", head)
    before = head[: m.start()] if m else ""
    if "=" in before or "return" in before.split() or before.rstrip().endswith("."):
        return None
    if not before.strip():
        # a bare `name(...)` only declares something when it opens a block
        return name if head.endswith("{") else None
    return name


class JumpAnalyzer:
    def __init__(self, config: Optional[AssistantConfig] = None):
        self.config = config or AssistantConfig()

    def analyze(self, context: Optional[CodeContext]) -> List[JumpRecommendation]:
        if context is None or context.is_empty:
            return []
        try:
            candidates = self._collect(context)
        except Exception as e:
            logger.debug("jump analysis failed for %s: %s", context.file_path, e)
            return []
        return self._finalize(candidates, context)

    # collection
    def _collect(self, ctx: CodeContext) -> Dict[int, _Candidate]:
        out: Dict[int, _Candidate] = {}
        rows = ctx.window()
        lines = dict(rows)

        def structural(line: int, score: float, reason: str, column: int = 0) -> None:
            if line == ctx.caret_line or line not in lines:
                return
            cand = out.setdefault(line, _Candidate(line))
            cand.offer_structural(score, reason, column, snippet(lines[line]))

        if ctx.language in INDENT_BLOCK_LANGUAGES:
            self._indent_structure(ctx, rows, structural)
        else:
            self._brace_structure(ctx, rows, structural)
        self._declaration_pairs(ctx, rows, structural)

        current = ctx.current_line.rstrip()
        if current.endswith(("=>", "=")) and not current.endswith(("==", "!=", "<=", ">=")):
            nxt = ctx.caret_line + 1
            if nxt in lines:
                structural(nxt, INCOMPLETE_EXPR, "Complete assignment or lambda",
                           _indent_width(ctx.current_line) + ctx.indentation.size)

        self._history(ctx, out)
        return out

    def _brace_structure(self, ctx: CodeContext, rows, structural) -> None:
        caret = ctx.caret_line
        text = ctx.current_line.strip()
        below = [(n, t) for n, t in rows if n > caret]
        above = [(n, t) for n, t in rows if n < caret]

        if text.endswith("{"):
            depth = 0
            for n, t in [(caret, ctx.current_line)] + below:
                depth += t.count("{") - t.count("}")
                if depth <= 0 and n != caret:
                    structural(n, BLOCK_END, "Jump to matching closing brace", _indent_width(t))
                    break

        is_control = bool(_CONTROL_RE.match(text))
        header = scope_name_from_header(text)
        if header and header.endswith("()") and _declared_function(text, ctx.language) is None:
            header = None
        if is_control or (header and not text.endswith(";")):
            reason = "Jump to body of control structure" if is_control else "Jump to method body"
            score = CONTROL_BODY if is_control else METHOD_BODY
            opened = text.endswith("{")
            for n, t in below:
                stripped = t.strip()
                if not stripped:
                    continue
                if not opened:
                    if stripped.startswith("{") or stripped.endswith("{"):
                        opened = True
                        if stripped == "{":
                            continue
                    elif not is_control:
                        break
                if stripped.startswith("}"):
                    break
                structural(n, score, reason, _indent_width(t))
                break

        if text.startswith("}"):
            depth = 0
            for n, t in [(caret, ctx.current_line)] + list(reversed(above)):
                depth += t.count("}") - t.count("{")
                if depth <= 0 and n != caret:
                    header_line, header = n, t
                    if t.strip() == "{":
                        prev = [(m, s) for m, s in above if m < n and s.strip()]
                        if prev:
                            header_line, header = prev[-1]
                    structural(header_line, BLOCK_HEADER, "Jump to block header", _indent_width(header))
                    break

    def _indent_structure(self, ctx: CodeContext, rows, structural) -> None:
        caret = ctx.caret_line
        text = ctx.current_line.strip()
        if not text.endswith(":"):
            return
        base = _indent_width(ctx.current_line)
        is_control = bool(_CONTROL_RE.match(text))
        reason = "Jump to body of control structure" if is_control else "Jump to block body"
        for n, t in rows:
            if n <= caret or not t.strip():
                continue
            if _indent_width(t) > base:
                structural(n, CONTROL_BODY if is_control else METHOD_BODY, reason, _indent_width(t))
            break

    def _declaration_pairs(self, ctx: CodeContext, rows, structural) -> None:
        declared: Dict[str, List[Tuple[int, str]]] = {}
        for n, t in rows:
            name = _declared_function(t, ctx.language)
            if name:
                declared.setdefault(name, []).append((n, t))
        if not declared:
            return

        current_name = _declared_function(ctx.current_line, ctx.language)
        if current_name:
            for n, t in declared.get(current_name, []):
                if n == ctx.caret_line:
                    continue
                implementation = not t.rstrip().endswith(";")
                reason = "Jump to implementation" if implementation else "Jump to declaration"
                structural(n, DECLARATION_PAIR, reason, _indent_width(t))
            return

        for name, sites in declared.items():
            if re.search(r"\b" + re.escape(name) + r"\s*\(", ctx.current_line):
                for n, t in sites:
                    structural(n, CALL_TARGET, f"Jump to definition of {name}()", _indent_width(t))

    def _history(self, ctx: CodeContext, out: Dict[int, _Candidate]) -> None:
        visits = [h for h in ctx.history if same_file(h.file_path, ctx.file_path) and h.line != ctx.caret_line]
        visits.sort(key=lambda h: -h.timestamp)
        for rank, h in enumerate(visits):
            rel = relevance_score(h.file_path, h.line, ctx.file_path, ctx.caret_line, self.config.cross_file_weight)
            score = 0.5 * rel + 0.5 * recency_weight(rank)
            cand = out.setdefault(h.line, _Candidate(h.line, column=h.column))
            preview = h.context_snippet or snippet(ctx.line_at(h.line) or "")
            cand.offer_history(score, preview)
            if cand.structural is None:
                cand.column = h.column

    # scoring
    def _blend(self, cand: _Candidate) -> float:
        ws, wh = self.config.jump_structural_weight, self.config.jump_history_weight
        num = den = 0.0
        if cand.structural is not None:
            num += ws * cand.structural
            den += ws
        if cand.history is not None:
            num += wh * cand.history
            den += wh
        if den <= 0.0:
            return max(cand.structural or 0.0, cand.history or 0.0)
        return num / den

    def _finalize(self, candidates: Dict[int, _Candidate], ctx: CodeContext) -> List[JumpRecommendation]:
        floor = self.config.jump_confidence_floor
        recs = []
        for cand in candidates.values():
            conf = self._blend(cand)
            if conf < floor:
                direction = JumpDirection.NONE
            elif cand.line > ctx.caret_line:
                direction = JumpDirection.DOWN
            else:
                direction = JumpDirection.UP
            recs.append(JumpRecommendation(
                direction=direction,
                target_line=cand.line,
                target_column=max(0, cand.column),
                confidence=conf,
                reason=cand.reason,
                preview=cand.preview,
                target_file=ctx.file_path,
            ))
        recs.sort(key=lambda r: (-r.confidence, abs(r.target_line - ctx.caret_line), r.target_line))
        return recs
