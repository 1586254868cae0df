# ollama_assistant/context/prompt.py
# prompt text for the model server, built from a CodeContext

import os
from typing import Iterable, List, Optional

from ollama_assistant.core.models import CodeContext, HistoryEntry

CURSOR_MARKER = "<|CURSOR|>"


def _history_lines(history: Iterable[HistoryEntry], limit: int) -> List[str]:
    out = []
    for entry in list(history)[:limit]:
        name = os.path.basename(entry.file_path)
        out.append(f"- {name}:{entry.line + 1} ({entry.context_snippet})")
    return out


def format_context(context: CodeContext) -> str:
    """Numbered code window with the cursor marker; 1-based line numbers like an editor gutter."""
    rows = []
    for number, text in context.window():
        if number == context.caret_line:
            col = min(context.caret_column, len(text))
            text = text[:col] + CURSOR_MARKER + text[col:]
        rows.append(f"{number + 1:03d}: {text}")
    return "\n".join(rows)


def build_completion_prompt(context: CodeContext) -> str:
    parts = [
        "You are a professional code completion assistant. Your task is to complete the code at the cursor position.",
        "Rules:",
        "- Provide ONLY the code completion, no explanations or comments",
        "- Maintain proper indentation and code style",
        "- Complete syntax must be valid for the target language",
        "- Prefer concise, readable solutions",
        "",
        f"Language: {context.language}",
        f"File: {os.path.basename(context.file_path)}",
    ]
    if context.current_scope:
        parts.append(f"Current scope: {context.current_scope}")
    ind = context.indentation
    parts.append(f"Indentation: {ind.size} {'spaces' if ind.uses_spaces else 'tabs'}")
    parts.append("")

    hist = _history_lines(context.history, 2)
    if hist:
        parts.append("Recent editing context:")
        parts.extend(hist)
        parts.append("")

    parts.append("Code context:")
    parts.append("```" + context.language.lower())
    parts.append(format_context(context))
    parts.append("```")
    parts.append("")
    parts.append(f"Complete the code at the {CURSOR_MARKER} position. Provide only the completion text:")
    return "\n".join(parts)


def build_enhanced_prompt(prompt: str, context_text: Optional[str], history: Iterable[HistoryEntry] = ()) -> str:
    """Wrap a free-form request with recent history and the current context."""
    parts = ["You are a code completion assistant. Provide concise, relevant code suggestions.", ""]
    hist = _history_lines(history or (), 3)
    if hist:
        parts.append("Recent cursor history:")
        parts.extend(hist)
        parts.append("")
    if context_text and context_text.strip():
        parts.append("Current code context:")
        parts.append(context_text)
        parts.append("")
    parts.append("Request:")
    parts.append(prompt)
    return "\n".join(parts)
