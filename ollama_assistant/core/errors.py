# ollama_assistant/core/errors.py
"""
Error taxonomy for the assistant.

Every failure the pipeline reasons about is an AssistantError carrying an
ErrorKind. The kind, not the concrete class, decides the policy:
 - TRANSIENT   (timeouts, refused connections, 5xx)   -> retried with backoff
 - PERMANENT   (4xx, malformed responses, validation) -> surfaced immediately
 - THROTTLED   (concurrency/quota, open circuit)      -> surfaced with retry_after
 - UNAVAILABLE (host editor API failed)               -> degrade to empty result
 - CANCELLED   (superseded request)                   -> dropped silently
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"
    THROTTLED = "throttled"
    UNAVAILABLE = "unavailable"
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"


class AssistantError(Exception):
    kind: ErrorKind = ErrorKind.PERMANENT

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


# Transient ----------------------------------------------------------------------
class TransientError(AssistantError):
    kind = ErrorKind.TRANSIENT


class RequestTimeout(TransientError):
    pass


class ConnectionRefused(TransientError):
    pass


class ServerError(TransientError):
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


# Permanent ----------------------------------------------------------------------
class PermanentError(AssistantError):
    kind = ErrorKind.PERMANENT


class ClientError(PermanentError):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponse(PermanentError):
    pass


class ValidationFailed(PermanentError):
    pass


class SuggestionProcessingError(PermanentError):
    pass


# Throttled ----------------------------------------------------------------------
class Throttled(AssistantError):
    kind = ErrorKind.THROTTLED

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class CircuitOpen(Throttled):
    """Raised without touching the network while a circuit breaker is open."""


# Unavailable --------------------------------------------------------------------
class Unavailable(AssistantError):
    kind = ErrorKind.UNAVAILABLE


class ContextUnavailable(Unavailable):
    pass


# Other --------------------------------------------------------------------------
class OperationCancelled(AssistantError):
    kind = ErrorKind.CANCELLED


class ConfigurationError(AssistantError):
    kind = ErrorKind.CONFIGURATION


def classify(exc: BaseException) -> ErrorKind:
    """Map any exception (ours or foreign) onto an ErrorKind."""
    if isinstance(exc, AssistantError):
        return exc.kind
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, (httpx.NetworkError, ConnectionError)):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        code = exc.response.status_code
        if code == 429:
            return ErrorKind.THROTTLED
        return ErrorKind.TRANSIENT if code >= 500 or code == 408 else ErrorKind.PERMANENT
    return ErrorKind.PERMANENT
