# ollama_assistant/core/request_coordinator.py
"""
RequestCoordinator - debounce, cancel and dispatch of pipeline runs.

Per session:   IDLE --trigger--> PENDING --debounce elapsed--> IN_FLIGHT --done--> IDLE

 - a trigger while PENDING restarts the debounce timer (the newest payload wins)
 - a trigger while IN_FLIGHT cancels the running token and goes back to PENDING
 - while disabled, triggers are ignored and nothing changes state
 - only the newest, uncancelled run of a session may publish its result
 - a session never has two runs executing: when the debounce elapses while a
   superseded run is still returning, dispatch waits for that run to finish

Work runs on a ThreadPoolExecutor; the caller's thread only arms timers.
Result and error callbacks run on the worker without the coordinator lock held.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from ollama_assistant.core.errors import OperationCancelled
from ollama_assistant.utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"

Work = Callable[[Any, CancellationToken], Any]
ResultCallback = Callable[[str, Any], None]
ErrorCallback = Callable[[str, BaseException], None]


class SessionState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    IN_FLIGHT = "in_flight"


@dataclass
class _Session:
    state: SessionState = SessionState.IDLE
    generation: int = 0
    payload: Any = None
    timer: Any = None
    token: Optional[CancellationToken] = None
    running: bool = False   # a worker is still executing a run of this session
    ready: bool = False     # debounce elapsed while that run was still executing


class RequestCoordinator:
    def __init__(self,
                 work: Work,
                 on_result: Optional[ResultCallback] = None,
                 on_error: Optional[ErrorCallback] = None,
                 *,
                 debounce_ms: int = 500,
                 max_workers: int = 3,
                 timer_factory: Callable[..., Any] = threading.Timer,
                 executor: Optional[Executor] = None):
        self._work = work
        self.on_result = on_result
        self.on_error = on_error
        self._debounce_s = max(0, int(debounce_ms)) / 1000.0
        self._timer_factory = timer_factory
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=max(1, int(max_workers)),
                                                        thread_name_prefix="assistant-worker")
        self._sessions: Dict[str, _Session] = {}
        self._enabled = True
        self._closed = False
        self._cond = threading.Condition(threading.RLock())

    # configuration
    @property
    def enabled(self) -> bool:
        with self._cond:
            return self._enabled

    def set_enabled(self, enabled: bool) -> None:
        with self._cond:
            self._enabled = bool(enabled)
        if not enabled:
            self.cancel()

    def set_debounce(self, debounce_ms: int) -> None:
        with self._cond:
            self._debounce_s = max(0, int(debounce_ms)) / 1000.0

    def state(self, session: str = DEFAULT_SESSION) -> SessionState:
        with self._cond:
            s = self._sessions.get(session)
            return s.state if s else SessionState.IDLE

    # triggering
    def trigger(self, session: str = DEFAULT_SESSION, payload: Any = None) -> bool:
        """Schedule work for `session`. Returns False when the trigger was ignored."""
        with self._cond:
            if not self._enabled or self._closed:
                return False
            s = self._sessions.setdefault(session, _Session())
            s.generation += 1
            s.payload = payload
            s.ready = False
            if s.timer is not None:
                s.timer.cancel()
            if s.state is SessionState.IN_FLIGHT and s.token is not None:
                logger.debug("session %s: superseding in-flight request", session)
                s.token.cancel()
                s.token = None
            s.state = SessionState.PENDING
            timer = self._timer_factory(self._debounce_s, self._fire, args=(session, s.generation))
            timer.daemon = True
            s.timer = timer
            timer.start()
        return True

    def _fire(self, session: str, generation: int) -> None:
        with self._cond:
            s = self._sessions.get(session)
            if s is None or self._closed or s.generation != generation or s.state is not SessionState.PENDING:
                return
            s.timer = None
            if s.running:
                logger.debug("session %s: holding run %d until the superseded run returns", session, generation)
                s.ready = True
                return
            self._dispatch_locked(session, s)

    def _dispatch_locked(self, session: str, s: _Session) -> None:
        token = CancellationToken()
        s.ready = False
        s.token = token
        s.state = SessionState.IN_FLIGHT
        s.running = True
        try:
            self._executor.submit(self._run, session, s.generation, s.payload, token)
        except RuntimeError as e:
            # executor already shut down
            logger.debug("session %s: cannot dispatch: %s", session, e)
            s.state = SessionState.IDLE
            s.token = None
            s.running = False
            self._cond.notify_all()

    def _is_current(self, session: str, generation: int, token: CancellationToken) -> bool:
        with self._cond:
            s = self._sessions.get(session)
            return s is not None and s.generation == generation and not token.cancelled

    def _run(self, session: str, generation: int, payload: Any, token: CancellationToken) -> None:
        result: Any = None
        error: Optional[BaseException] = None
        cancelled = False
        try:
            result = self._work(payload, token)
        except OperationCancelled:
            cancelled = True
            logger.debug("session %s: run %d cancelled", session, generation)
        except Exception as e:
            error = e

        try:
            if not cancelled and self._is_current(session, generation, token):
                if error is not None:
                    logger.warning("session %s: request failed: %s", session, error)
                    if self.on_error:
                        self.on_error(session, error)
                elif self.on_result:
                    self.on_result(session, result)
        except Exception as e:
            logger.exception("session %s: result callback failed: %s", session, e)
        finally:
            with self._cond:
                s = self._sessions.get(session)
                if s is not None:
                    s.running = False
                    if s.generation == generation:
                        s.state = SessionState.IDLE
                        s.token = None
                    elif s.ready and s.state is SessionState.PENDING and not self._closed:
                        self._dispatch_locked(session, s)
                self._cond.notify_all()

    # control
    def cancel(self, session: Optional[str] = None) -> None:
        """Drop pending and in-flight work for one session (or all of them)."""
        with self._cond:
            names = list(self._sessions) if session is None else [session]
            for name in names:
                s = self._sessions.get(name)
                if s is None:
                    continue
                s.generation += 1
                s.ready = False
                if s.timer is not None:
                    s.timer.cancel()
                    s.timer = None
                if s.token is not None:
                    s.token.cancel()
                    s.token = None
                s.state = SessionState.IDLE
            self._cond.notify_all()

    def wait_idle(self, session: str = DEFAULT_SESSION, timeout: Optional[float] = None) -> bool:
        with self._cond:
            return self._cond.wait_for(lambda: self.state(session) is SessionState.IDLE, timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._cond:
            if self._closed:
                return
            self._closed = True
        self.cancel()
        if self._owns_executor:
            self._executor.shutdown(wait=wait)
