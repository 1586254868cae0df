# ollama_assistant/assistant.py
"""
CodeAssistant - composition root and the surface the host editor talks to.

Purpose:
 - Build the component graph from one AssistantConfig snapshot
   (HistoryStore, ContextBuilder, ModelClient + ResilienceCoordinator,
   SuggestionEngine, JumpAnalyzer, RequestCoordinator)
 - Feed caret/text events into history and the request coordinator
 - Serve repeat requests for an unchanged context window from the SuggestionCache
 - Keep the latest published result for get_suggestions()/get_jump_recommendation()

Public API:
  on_caret_moved(file, line, column) / on_text_changed(file, line, column)
  get_suggestions() -> List[Suggestion]
  get_jump_recommendation() -> Optional[JumpRecommendation]
  suggest_now(...) -> PipelineResult
  accept_suggestion(index) / accept_jump()
  reconfigure(config), health(), subscribe(callback), shutdown()

Failures inside the pipeline never reach the caller: they are logged, handed to
the ResilienceCoordinator's recovery strategies and turn into an empty result.
"""

from __future__ import annotations

import atexit
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

import httpx

from ollama_assistant.context.context_builder import ContextBuilder
from ollama_assistant.context.normalizer import snippet
from ollama_assistant.context.prompt import build_completion_prompt
from ollama_assistant.context.scorers import same_file
from ollama_assistant.context.text_source import FileTextSource
from ollama_assistant.core.errors import AssistantError, OperationCancelled, Unavailable
from ollama_assistant.core.history_store import HistoryStore
from ollama_assistant.core.jump_analyzer import JumpAnalyzer
from ollama_assistant.core.model_client import ModelClient
from ollama_assistant.core.models import (
    CodeContext,
    HealthStatus,
    JumpDirection,
    JumpRecommendation,
    Suggestion,
)
from ollama_assistant.core.protocols import EditorHost, TextSource
from ollama_assistant.core.request_coordinator import DEFAULT_SESSION, RequestCoordinator
from ollama_assistant.core.resilience import ResilienceCoordinator
from ollama_assistant.core.suggestion_cache import SuggestionCache, context_key
from ollama_assistant.core.suggestion_engine import SuggestionEngine
from ollama_assistant.utils.cancellation import CancellationToken
from ollama_assistant.utils.config_manager import AssistantConfig
from ollama_assistant.utils.logger_utils import Log

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaretEvent:
    file_path: str
    line: int
    column: int


@dataclass(frozen=True)
class PipelineResult:
    suggestions: Tuple[Suggestion, ...] = ()
    jumps: Tuple[JumpRecommendation, ...] = ()
    context: Optional[CodeContext] = None

    @property
    def best_jump(self) -> Optional[JumpRecommendation]:
        for rec in self.jumps:
            if rec.direction is not JumpDirection.NONE:
                return rec
        return None


EMPTY_RESULT = PipelineResult()

Subscriber = Callable[[PipelineResult], None]


class CodeAssistant:
    def __init__(self,
                 config: Optional[AssistantConfig] = None,
                 *,
                 editor: Optional[EditorHost] = None,
                 text_source: Optional[TextSource] = None,
                 transport: Optional[httpx.BaseTransport] = None,
                 model_client: Optional[ModelClient] = None,
                 resilience: Optional[ResilienceCoordinator] = None,
                 timer_factory: Callable[..., Any] = threading.Timer,
                 executor: Any = None):
        self.config = config or AssistantConfig()
        self.editor = editor
        self._transport = transport

        self.resilience = resilience or ResilienceCoordinator(self.config)
        self.history = HistoryStore(self.config.history_depth, self.config.cross_file_weight)
        self.text_source = text_source or FileTextSource()
        self.context_builder = ContextBuilder(self.text_source)
        self._owns_model = model_client is None
        self.model = model_client or ModelClient(self.config, self.resilience, transport=transport)
        self.engine = SuggestionEngine(self.config)
        self.jumps = JumpAnalyzer(self.config)
        self.cache = SuggestionCache(self.config.cache_size, self.config.cache_ttl_s)
        self.coordinator = RequestCoordinator(
            self._run_pipeline,
            on_result=self._on_result,
            on_error=self._on_error,
            debounce_ms=self.config.debounce_ms,
            max_workers=self.config.max_concurrent_requests,
            timer_factory=timer_factory,
            executor=executor,
        )
        self.coordinator.set_enabled(self.config.enable_auto_suggestions)

        self._lock = threading.Lock()
        self._latest: PipelineResult = EMPTY_RESULT
        self._subscribers: List[Subscriber] = []
        self._last_health: Optional[HealthStatus] = None
        self._stop = threading.Event()
        self._health_thread: Optional[threading.Thread] = None
        self._closed = False
        self._start_health_refresh()
        atexit.register(self.shutdown)

    # Host events -------------------------------------------------------------------
    def on_caret_moved(self, file_path: str, line: int, column: int) -> bool:
        """
        Record the position and schedule a suggestion run. Returns whether a run was scheduled.

        Only cheap editor calls happen on the caller's thread. When the editor
        caret is already elsewhere the snippet is left empty and filled in from
        the text source by the next pipeline run.
        """
        self.history.record(file_path, line, column, self._editor_snippet(file_path, line))
        return self.coordinator.trigger(DEFAULT_SESSION, CaretEvent(file_path, int(line), int(column)))

    def on_text_changed(self, file_path: str, line: int, column: int) -> bool:
        return self.coordinator.trigger(DEFAULT_SESSION, CaretEvent(file_path, int(line), int(column)))

    def _editor_snippet(self, file_path: str, line: int) -> str:
        if self.editor is None:
            return ""
        try:
            caret_file, caret_line, _ = self.editor.get_caret_position()
            if caret_line != line or not same_file(caret_file, file_path):
                return ""
            lines = self.editor.get_surrounding_text(0, 0)
        except Unavailable as e:
            self.resilience.handle_failure(e, "editor.snippet")
            return ""
        return snippet(lines[0]) if lines else ""

    def _fill_snippets(self, file_path: str) -> None:
        if not self.history.needs_snippets(file_path):
            return
        try:
            lines = self.text_source.read_lines(file_path)
        except Unavailable as e:
            logger.debug("no snippets for %s: %s", file_path, e)
            return
        self.history.attach_snippets(file_path, lines)

    # Pipeline ----------------------------------------------------------------------
    def _run_pipeline(self, event: CaretEvent, token: CancellationToken) -> PipelineResult:
        cfg = self.config
        token.raise_if_cancelled()
        self._fill_snippets(event.file_path)
        history = self.history.relevant(event.file_path, event.line, cfg.history_depth)
        try:
            ctx = self.context_builder.build(event.file_path, event.line, event.column,
                                             cfg.lines_up, cfg.lines_down, history)
        except Unavailable as e:
            self.resilience.handle_failure(e, "context.build")
            return EMPTY_RESULT

        token.raise_if_cancelled()
        jumps = self.jumps.analyze(ctx) if cfg.enable_jump_recommendations else []
        suggestions: List[Suggestion] = []
        if not ctx.is_empty:
            suggestions = self._suggest(ctx, token)
        token.raise_if_cancelled()
        return PipelineResult(tuple(suggestions), tuple(jumps), ctx)

    def _suggest(self, ctx: CodeContext, token: CancellationToken) -> List[Suggestion]:
        key = context_key(ctx, self.config.model) if self.config.enable_suggestion_cache else None
        if key is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.debug("suggestion cache hit for %s:%d", ctx.file_path, ctx.caret_line)
                return list(cached)

        prompt = build_completion_prompt(ctx)
        started = time.perf_counter()
        try:
            with Log.time_block("pipeline.model"):
                if self.config.streaming:
                    text = "".join(self.model.stream_complete(prompt, cancel_token=token))
                else:
                    text = self.model.complete(prompt, cancel_token=token)
        except OperationCancelled:
            raise
        except AssistantError as e:
            if not self.resilience.handle_failure(e, "model.complete"):
                logger.info("no suggestion available: %s", e)
            return []
        token.raise_if_cancelled()

        elapsed = (time.perf_counter() - started) * 1000.0
        suggestion = self.engine.from_response(text, ctx, source_model=self.config.model,
                                               processing_time_ms=elapsed)
        suggestions = self.engine.process(suggestion, ctx)
        if key is not None:
            self.cache.put(key, suggestions)
        return suggestions

    def _on_result(self, session: str, result: PipelineResult) -> None:
        self._publish(result if isinstance(result, PipelineResult) else EMPTY_RESULT)

    def _on_error(self, session: str, error: BaseException) -> None:
        self.resilience.handle_failure(error, f"pipeline[{session}]")
        self._publish(EMPTY_RESULT)

    def _publish(self, result: PipelineResult) -> None:
        with self._lock:
            self._latest = result
            subscribers = list(self._subscribers)
        for cb in subscribers:
            try:
                cb(result)
            except Exception as e:
                logger.warning("subscriber %r failed: %s", cb, e)

    # Queries -----------------------------------------------------------------------
    def get_suggestions(self) -> List[Suggestion]:
        with self._lock:
            return list(self._latest.suggestions)

    def get_jump_recommendation(self) -> Optional[JumpRecommendation]:
        with self._lock:
            return self._latest.best_jump

    def latest(self) -> PipelineResult:
        with self._lock:
            return self._latest

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call `callback(result)` whenever a new result is published. Returns an unsubscribe function."""
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    # On-demand actions -------------------------------------------------------------
    def suggest_now(self,
                    file_path: Optional[str] = None,
                    line: Optional[int] = None,
                    column: Optional[int] = None,
                    cancel_token: Optional[CancellationToken] = None) -> PipelineResult:
        """Run the pipeline synchronously (no debounce) and publish the result."""
        if file_path is None or line is None or column is None:
            if self.editor is None:
                return EMPTY_RESULT
            try:
                file_path, line, column = self.editor.get_caret_position()
            except Unavailable as e:
                self.resilience.handle_failure(e, "editor.get_caret_position")
                return EMPTY_RESULT
        self.coordinator.cancel(DEFAULT_SESSION)
        token = cancel_token or CancellationToken()
        try:
            result = self._run_pipeline(CaretEvent(file_path, int(line), int(column)), token)
        except OperationCancelled:
            return EMPTY_RESULT
        self._publish(result)
        return result

    def accept_suggestion(self, index: int = 0) -> bool:
        with self._lock:
            items = self._latest.suggestions
            chosen = items[index] if 0 <= index < len(items) else None
        if chosen is None or self.editor is None:
            return False
        try:
            self.editor.insert_text(chosen.text)
        except Unavailable as e:
            self.resilience.handle_failure(e, "editor.insert_text")
            return False
        with self._lock:
            self._latest = PipelineResult((), self._latest.jumps, self._latest.context)
        return True

    def accept_jump(self) -> bool:
        rec = self.get_jump_recommendation()
        if rec is None or self.editor is None:
            return False
        try:
            self.editor.move_caret_to(rec.target_line, rec.target_column)
        except Unavailable as e:
            self.resilience.handle_failure(e, "editor.move_caret_to")
            return False
        return True

    # Configuration / health --------------------------------------------------------
    def reconfigure(self, config: AssistantConfig) -> None:
        """Swap in a new config snapshot; components that depend on it are rebuilt."""
        old = self.config
        self.config = config
        self.resilience.reconfigure(config)
        self.history.set_depth(config.history_depth)
        self.history.cross_file_weight = config.cross_file_weight
        self.engine = SuggestionEngine(config)
        self.jumps = JumpAnalyzer(config)
        self.cache = SuggestionCache(config.cache_size, config.cache_ttl_s)
        self.coordinator.set_debounce(config.debounce_ms)
        self.coordinator.set_enabled(config.enable_auto_suggestions)

        wire = ("endpoint", "model", "request_timeout_ms", "max_concurrent_requests",
                "throttle_mode", "throttle_wait_ms", "health_check_timeout_ms",
                "temperature", "num_predict")
        if self._owns_model and any(getattr(old, k) != getattr(config, k) for k in wire):
            previous = self.model
            self.model = ModelClient(config, self.resilience, transport=self._transport)
            previous.close()
        elif not self._owns_model:
            self.model.config = config

        if old.health_check_interval_s != config.health_check_interval_s:
            self._stop_health_refresh()
            self._start_health_refresh()
        logger.info("configuration updated")

    def health(self) -> HealthStatus:
        status = self.model.health()
        with self._lock:
            self._last_health = status
        return status

    @property
    def last_health(self) -> Optional[HealthStatus]:
        with self._lock:
            return self._last_health

    def _start_health_refresh(self) -> None:
        interval = self.config.health_check_interval_s
        if interval <= 0 or self._closed:
            return
        self._stop = threading.Event()
        stop = self._stop

        def _loop() -> None:
            while not stop.wait(interval):
                status = self.health()
                if not status.is_available:
                    logger.debug("model server unavailable: %s", status.error)

        self._health_thread = threading.Thread(target=_loop, name="assistant-health", daemon=True)
        self._health_thread.start()

    def _stop_health_refresh(self) -> None:
        self._stop.set()
        thread, self._health_thread = self._health_thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=1.0)

    # Lifecycle ---------------------------------------------------------------------
    def shutdown(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._stop_health_refresh()
        self.coordinator.shutdown(wait=False)
        if self._owns_model:
            self.model.close()
        atexit.unregister(self.shutdown)
        logger.debug("assistant shut down")

    def __enter__(self) -> "CodeAssistant":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
