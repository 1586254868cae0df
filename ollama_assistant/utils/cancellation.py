# ollama_assistant/utils/cancellation.py
"""
CancellationToken - cooperative cancellation shared by the request pipeline.

One token per in-flight request. The RequestCoordinator cancels it when a newer
trigger supersedes the request; ModelClient registers callbacks on it so the
open HTTP response is closed the moment cancellation happens.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from ollama_assistant.core.errors import OperationCancelled

logger = logging.getLogger(__name__)


class CancellationToken:
    """Thread-safe cancellation flag with close-on-cancel callbacks."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            try:
                cb()
            except Exception as e:  # a failing close hook must not block the others
                logger.debug("cancel callback failed: %s", e)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("operation was cancelled")

    def wait(self, timeout: Optional[float]) -> bool:
        """Sleep up to `timeout` seconds; returns True if cancelled meanwhile."""
        return self._event.wait(timeout)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Run `callback` on cancellation (immediately if already cancelled).
        Returns an unregister function.
        """
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)

                def _unregister() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _unregister
        callback()
        return lambda: None
