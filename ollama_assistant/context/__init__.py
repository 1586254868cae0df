# ollama_assistant/context/__init__.py
# imports components for building the code-context window sent to the model

from .context_builder import ContextBuilder  # caret + document -> CodeContext
from .text_source import FileTextSource, InMemoryTextSource  # where document lines come from
from .language import detect_language, detect_indentation, detect_scope  # language-aware scans
from .normalizer import normalize_text  # whitespace normalization (dedupe key)
from .prompt import build_completion_prompt, build_enhanced_prompt, format_context  # prompt text
from .scorers import (
    relevance_score,
    levenshtein_with_cutoff,
)  # history relevance and edit distance used for ranking

__all__ = [
    "ContextBuilder",
    "FileTextSource",
    "InMemoryTextSource",
    "detect_language",
    "detect_indentation",
    "detect_scope",
    "normalize_text",
    "build_completion_prompt",
    "build_enhanced_prompt",
    "format_context",
    "relevance_score",
    "levenshtein_with_cutoff",
]
