# ollama_assistant/core/model_client.py
"""
ModelClient - HTTP client for an Ollama-style model server.

  POST /api/generate   {model, prompt, context, stream, options}
                       non-streamed: one JSON object {model, response, done}
                       streamed:     NDJSON lines of the same shape, last has done=true
  GET  /api/version    health probe
  GET  /api/tags       installed models

Every network call goes through ResilienceCoordinator.execute, so retries,
backoff and the circuit breaker apply uniformly. At most
`max_concurrent_requests` calls hold a slot at once; the rest wait
(throttle_mode="block") or fail fast (throttle_mode="reject") with Throttled.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

import httpx

from ollama_assistant.context.prompt import build_enhanced_prompt
from ollama_assistant.core.errors import (
    AssistantError,
    ClientError,
    ConnectionRefused,
    MalformedResponse,
    OperationCancelled,
    RequestTimeout,
    ServerError,
    Throttled,
)
from ollama_assistant.core.models import HealthStatus, HistoryEntry
from ollama_assistant.core.protocols import GenerateChunk, GenerateRequest
from ollama_assistant.core.resilience import ResilienceCoordinator
from ollama_assistant.utils.cancellation import CancellationToken
from ollama_assistant.utils.config_manager import AssistantConfig
from ollama_assistant.utils.logger_utils import Log

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/generate"
TAGS_PATH = "/api/tags"
VERSION_PATH = "/api/version"

RETRYABLE_STATUS = {408, 500, 502, 503, 504}


# Error translation ----------------------------------------------------------------

def _retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def _status_error(status: int, detail: str, retry_after: Optional[str] = None) -> AssistantError:
    msg = f"model server returned HTTP {status}"
    if detail:
        msg += f": {detail}"
    if status == 429:
        return Throttled(msg, retry_after=_retry_after(retry_after))
    if status in RETRYABLE_STATUS or status >= 500:
        return ServerError(msg, status_code=status)
    return ClientError(msg, status_code=status)


def _transport_error(exc: Exception) -> AssistantError:
    if isinstance(exc, httpx.TimeoutException):
        return RequestTimeout(f"request timed out: {exc}")
    if isinstance(exc, httpx.DecodingError):
        return MalformedResponse(f"undecodable response: {exc}")
    return ConnectionRefused(f"cannot reach model server: {exc}")


def _parse_chunk(line: str) -> Optional[Dict[str, Any]]:
    line = line.strip()
    if not line:
        return None
    try:
        data = json.loads(line)
    except ValueError:
        logger.debug("skipping malformed stream line: %.80s", line)
        return None
    if not isinstance(data, dict):
        logger.debug("skipping non-object stream line: %.80s", line)
        return None
    return data


# Client ---------------------------------------------------------------------------

class ModelClient:
    def __init__(self,
                 config: AssistantConfig,
                 resilience: Optional[ResilienceCoordinator] = None,
                 *,
                 transport: Optional[httpx.BaseTransport] = None,
                 http_client: Optional[httpx.Client] = None,
                 clock: Callable[[], float] = time.monotonic):
        self.config = config
        self._clock = clock
        self.resilience = resilience or ResilienceCoordinator(config)
        self._timeout = httpx.Timeout(config.request_timeout_s)
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(base_url=config.endpoint, transport=transport,
                                                 timeout=self._timeout)
        self._slots = threading.BoundedSemaphore(config.max_concurrent_requests)
        # one breaker per model server
        self.endpoint_key = config.endpoint

    # lifecycle
    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "ModelClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # concurrency cap
    @contextmanager
    def _slot(self):
        cap = self.config.max_concurrent_requests
        if self.config.throttle_mode == "reject":
            acquired = self._slots.acquire(blocking=False)
        else:
            acquired = self._slots.acquire(timeout=self.config.throttle_wait_ms / 1000.0)
        if not acquired:
            raise Throttled(f"{cap} model requests already in flight")
        try:
            yield
        finally:
            self._slots.release()

    # wire helpers
    def _generate_body(self, prompt: str, context: str, history: Iterable[HistoryEntry],
                       stream: bool) -> GenerateRequest:
        history = list(history or ())
        text = build_enhanced_prompt(prompt, context, history) if (context or history) else prompt
        body: GenerateRequest = {
            "model": self.config.model,
            "prompt": text,
            "stream": stream,
            "options": {"temperature": self.config.temperature, "num_predict": self.config.num_predict},
        }
        if context:
            body["context"] = context
        return body

    def _open(self, method: str, path: str, token: CancellationToken, *,
              body: Optional[GenerateRequest] = None,
              timeout: Optional[httpx.Timeout] = None) -> httpx.Response:
        """Send a request and return the open (unread) response; non-2xx is raised."""
        token.raise_if_cancelled()
        request = self._http.build_request(method, path, json=body, timeout=timeout or self._timeout)
        try:
            response = self._http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise _transport_error(e) from e
        if response.status_code >= 400:
            try:
                detail = response.read().decode("utf-8", "replace").strip()[:200]
            except httpx.HTTPError:
                detail = ""
            finally:
                response.close()
            raise _status_error(response.status_code, detail, response.headers.get("retry-after"))
        return response

    def _request_json(self, method: str, path: str, token: CancellationToken, *,
                      body: Optional[GenerateRequest] = None,
                      timeout: Optional[httpx.Timeout] = None) -> Any:
        # httpx timeouts bound each phase; this bounds the attempt as a whole
        limit_s = self.config.request_timeout_s if timeout is None else (timeout.read or self.config.request_timeout_s)
        deadline = self._clock() + limit_s
        response = self._open(method, path, token, body=body, timeout=timeout)
        unregister = token.register(response.close)
        try:
            chunks: List[bytes] = []
            for chunk in response.iter_bytes():
                chunks.append(chunk)
                if self._clock() > deadline:
                    raise RequestTimeout(f"{method} {path} took longer than {limit_s:.1f}s")
            raw = b"".join(chunks)
        except (httpx.HTTPError, httpx.StreamError) as e:
            if token.cancelled:
                raise OperationCancelled(f"{method} {path} cancelled") from e
            raise _transport_error(e) from e
        finally:
            unregister()
            response.close()
        try:
            return json.loads(raw)
        except ValueError as e:
            raise MalformedResponse(f"invalid JSON from {path}: {e}") from e

    # public API
    def complete(self,
                 prompt: str,
                 context: str = "",
                 history: Iterable[HistoryEntry] = (),
                 cancel_token: Optional[CancellationToken] = None) -> str:
        """Single completion. Blank prompts return "" without touching the network."""
        if not prompt or not prompt.strip():
            return ""
        token = cancel_token or CancellationToken()
        body = self._generate_body(prompt, context, history, stream=False)

        with self._slot(), Log.time_block("model.complete"):
            data = self.resilience.execute(
                lambda: self._request_json("POST", GENERATE_PATH, token, body=body),
                "model.complete",
                endpoint=self.endpoint_key,
                cancel_token=token,
            )
        if not isinstance(data, dict):
            raise MalformedResponse("generate response is not a JSON object")
        chunk: GenerateChunk = data  # type: ignore[assignment]
        return str(chunk.get("response") or "")

    def stream_complete(self,
                        prompt: str,
                        context: str = "",
                        history: Iterable[HistoryEntry] = (),
                        cancel_token: Optional[CancellationToken] = None) -> Iterator[str]:
        """
        Yield response chunks as they arrive.

        Opening the stream is retried like any request; once chunks flow a
        failure is raised as-is. Cancelling the token closes the response and
        ends iteration quietly; chunks already yielded stand.
        """
        if not prompt or not prompt.strip():
            return
        token = cancel_token or CancellationToken()
        body = self._generate_body(prompt, context, history, stream=True)

        with self._slot():
            try:
                response = self.resilience.execute(
                    lambda: self._open("POST", GENERATE_PATH, token, body=body),
                    "model.stream",
                    endpoint=self.endpoint_key,
                    cancel_token=token,
                )
            except OperationCancelled:
                return
            unregister = token.register(response.close)
            try:
                for line in response.iter_lines():
                    if token.cancelled:
                        return
                    chunk = _parse_chunk(line)
                    if chunk is None:
                        continue
                    text = chunk.get("response") or ""
                    if text:
                        yield str(text)
                    if chunk.get("done"):
                        return
            except (httpx.HTTPError, httpx.StreamError) as e:
                if token.cancelled:
                    logger.debug("stream closed by cancellation")
                    return
                raise _transport_error(e) from e
            finally:
                unregister()
                response.close()

    def health(self, cancel_token: Optional[CancellationToken] = None) -> HealthStatus:
        """Probe /api/version once (no retries). Never raises for server trouble."""
        token = cancel_token or CancellationToken()
        timeout = httpx.Timeout(self.config.health_check_timeout_ms / 1000.0)
        breaker = self.resilience.breaker(self.endpoint_key)
        started = time.perf_counter()
        try:
            self.resilience.execute(
                lambda: self._request_json("GET", VERSION_PATH, token, timeout=timeout),
                "model.health",
                endpoint=self.endpoint_key,
                cancel_token=token,
                max_retries=0,
            )
        except AssistantError as e:
            elapsed = (time.perf_counter() - started) * 1000.0
            logger.debug("health probe failed: %s", e)
            return HealthStatus(
                is_available=False,
                response_time_ms=elapsed,
                consecutive_failures=breaker.consecutive_failures,
                circuit_state=breaker.state,
                error=str(e) or type(e).__name__,
            )
        elapsed = (time.perf_counter() - started) * 1000.0
        Log.metric("model.health", round(elapsed, 3), "ms")
        return HealthStatus(
            is_available=True,
            response_time_ms=elapsed,
            consecutive_failures=breaker.consecutive_failures,
            circuit_state=breaker.state,
        )

    def list_models(self, cancel_token: Optional[CancellationToken] = None) -> List[str]:
        token = cancel_token or CancellationToken()
        data = self.resilience.execute(
            lambda: self._request_json("GET", TAGS_PATH, token),
            "model.tags",
            endpoint=self.endpoint_key,
            cancel_token=token,
        )
        if not isinstance(data, dict) or not isinstance(data.get("models", []), list):
            raise MalformedResponse("tags response has no model list")
        names = []
        for item in data.get("models", []):
            if isinstance(item, dict) and item.get("name"):
                names.append(str(item["name"]))
        return names
