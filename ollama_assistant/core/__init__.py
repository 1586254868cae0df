"""
ollama_assistant.core

The engine behind the assistant.
Contains:
 - value types (models) and the error taxonomy (errors)
 - caret history with relevance ranking (history_store)
 - model server client and resilience layer (model_client, resilience)
 - suggestion filtering/ranking and jump analysis (suggestion_engine, jump_analyzer)
 - debouncing/cancelling request coordination (request_coordinator)
 - TTL cache of processed suggestions (suggestion_cache)

Only the leaf modules are re-exported here; import the components from their modules.
"""

from .errors import (
    AssistantError,
    ErrorKind,
    ContextUnavailable,
    OperationCancelled,
    Throttled,
    Unavailable,
)
from .models import (
    CircuitState,
    CodeContext,
    HealthStatus,
    HistoryEntry,
    IndentationInfo,
    JumpDirection,
    JumpRecommendation,
    RecoveryStrategy,
    Suggestion,
    SuggestionKind,
)

__all__ = [
    "AssistantError",
    "ErrorKind",
    "ContextUnavailable",
    "OperationCancelled",
    "Throttled",
    "Unavailable",
    "CircuitState",
    "CodeContext",
    "HealthStatus",
    "HistoryEntry",
    "IndentationInfo",
    "JumpDirection",
    "JumpRecommendation",
    "RecoveryStrategy",
    "Suggestion",
    "SuggestionKind",
]
