# tests/conftest.py
# shared fakes: manual timers, inline executor, fake clock and a scripted model server

import json
from concurrent.futures import Future
from typing import List

import httpx
import pytest


class ManualTimer:
    """Stands in for threading.Timer; fires only when the test says so."""

    created: List["ManualTimer"] = []

    def __init__(self, interval, function, args=None, kwargs=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.kwargs = kwargs or {}
        self.daemon = False
        self.started = False
        self.cancelled = False
        ManualTimer.created.append(self)

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        self.function(*self.args, **self.kwargs)


class InlineExecutor:
    """Runs submitted work immediately on the calling thread."""

    def __init__(self):
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):
        self.submitted += 1
        fut = Future()
        try:
            fut.set_result(fn(*args, **kwargs))
        except Exception as e:
            fut.set_exception(e)
        return fut

    def shutdown(self, wait=True):
        pass


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ModelServer:
    """
    Scripted Ollama-style server for httpx.MockTransport.
    `generate` is a list of responses (or exceptions) served in order; the last
    one repeats once the script runs out.
    """

    def __init__(self, generate=None, version=None, tags=None):
        self.generate = list(generate or [])
        self.version = version or httpx.Response(200, json={"version": "0.1.32"})
        self.tags = tags or httpx.Response(200, json={"models": [{"name": "codellama:7b"}]})
        self.requests: List[httpx.Request] = []

    @property
    def calls(self) -> int:
        return len(self.requests)

    def bodies(self):
        return [json.loads(r.content) for r in self.requests if r.url.path == "/api/generate"]

    def _next(self, script):
        item = script.pop(0) if len(script) > 1 else script[0]
        return item

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/version":
            item = self.version
        elif request.url.path == "/api/tags":
            item = self.tags
        else:
            item = self._next(self.generate) if self.generate else httpx.Response(404)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            item = item(request)
        # fresh copy so a repeated script entry is never read twice
        return httpx.Response(item.status_code, headers=item.headers, content=item.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


def generate_ok(text: str) -> httpx.Response:
    return httpx.Response(200, json={"model": "codellama", "response": text, "done": True})


def ndjson(*chunks) -> bytes:
    return "\n".join(c if isinstance(c, str) else json.dumps(c) for c in chunks).encode() + b"\n"


@pytest.fixture(autouse=True)
def _reset_timers():
    ManualTimer.created.clear()
    yield
    ManualTimer.created.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def inline_executor():
    return InlineExecutor()
