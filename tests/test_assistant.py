# tests/test_assistant.py

import threading
import time

import httpx
import pytest

from conftest import InlineExecutor, ManualTimer, ModelServer, generate_ok, ndjson
from ollama_assistant.assistant import EMPTY_RESULT, CodeAssistant
from ollama_assistant.context.text_source import InMemoryTextSource
from ollama_assistant.core.errors import Unavailable
from ollama_assistant.core.models import JumpDirection
from ollama_assistant.core.protocols import EditorHost
from ollama_assistant.utils.cancellation import CancellationToken
from ollama_assistant.utils.config_manager import AssistantConfig

CALC = "\n".join([
    "public class Calc {",
    "    public int Add(int a, int b) {",
    "        ",
    "    }",
    "}",
])


class DummyEditor:
    def __init__(self, path="calc.cs", line=2, column=8, broken=False):
        self.path, self.line, self.column = path, line, column
        self.broken = broken
        self.inserted = []

    def _check(self):
        if self.broken:
            raise Unavailable("editor API failed")

    def get_surrounding_text(self, lines_up, lines_down):
        self._check()
        return [CALC.splitlines()[self.line]]

    def get_caret_position(self):
        self._check()
        return self.path, self.line, self.column

    def insert_text(self, text):
        self._check()
        self.inserted.append(text)

    def move_caret_to(self, line, column):
        self._check()
        self.line, self.column = line, column


def _make(server, editor=None, **cfg):
    base = dict(base_retry_delay_ms=0, max_retry_attempts=0)
    base.update(cfg)
    return CodeAssistant(
        AssistantConfig(**base),
        editor=editor,
        text_source=InMemoryTextSource({"calc.cs": CALC}),
        transport=server.transport(),
        timer_factory=ManualTimer,
        executor=InlineExecutor(),
    )


@pytest.fixture
def server():
    return ModelServer([generate_ok("return a + b;")])


@pytest.fixture
def assistant(server):
    a = _make(server)
    yield a
    a.shutdown()


def test_dummy_editor_satisfies_protocol():
    assert isinstance(DummyEditor(), EditorHost)


def test_caret_move_debounces_then_publishes(assistant, server):
    assert assistant.on_caret_moved("calc.cs", 2, 8)
    assert server.calls == 0
    ManualTimer.created[-1].fire()

    suggestions = assistant.get_suggestions()
    assert [s.text for s in suggestions] == ["return a + b;"]
    assert suggestions[0].confidence >= 0.7
    assert suggestions[0].source_model == "codellama"
    assert "<|CURSOR|>" in server.bodies()[0]["prompt"]


def test_jump_recommendation_from_history(assistant):
    assistant.on_caret_moved("calc.cs", 1, 4)
    assistant.on_caret_moved("calc.cs", 2, 8)
    assert ManualTimer.created[0].cancelled
    ManualTimer.created[-1].fire()

    jump = assistant.get_jump_recommendation()
    assert jump is not None
    assert jump.target_line == 1
    assert jump.direction is JumpDirection.UP
    assert jump.confidence == pytest.approx(0.75)


def test_server_down_gives_no_suggestions_but_keeps_jumps():
    down = ModelServer([httpx.ConnectError("refused")])
    a = _make(down)
    try:
        a.history.record("calc.cs", 1, 4)
        result = a.suggest_now("calc.cs", 2, 8)
        assert result.suggestions == ()
        assert result.context is not None
        assert result.best_jump.target_line == 1
        assert a.get_suggestions() == []
    finally:
        a.shutdown()


def test_disabled_auto_suggestions_still_record_history(server):
    a = _make(server, enable_auto_suggestions=False)
    try:
        assert a.on_caret_moved("calc.cs", 2, 8) is False
        assert len(a.history) == 1
        assert ManualTimer.created == []
        assert server.calls == 0
    finally:
        a.shutdown()


def test_suggest_now_uses_editor_caret_and_accepts(server):
    editor = DummyEditor()
    a = _make(server, editor=editor)
    try:
        result = a.suggest_now()
        assert [s.text for s in result.suggestions] == ["return a + b;"]
        assert a.accept_suggestion(0)
        assert editor.inserted == ["return a + b;"]
        assert a.get_suggestions() == []
        assert not a.accept_suggestion(0)
    finally:
        a.shutdown()


def test_accept_jump_moves_editor_caret(server):
    editor = DummyEditor()
    a = _make(server, editor=editor)
    try:
        a.history.record("calc.cs", 1, 4)
        a.suggest_now()
        assert a.accept_jump()
        assert (editor.line, editor.column) == (1, 4)
    finally:
        a.shutdown()


def test_broken_editor_degrades(server):
    editor = DummyEditor(broken=True)
    a = _make(server, editor=editor)
    try:
        assert a.suggest_now() is EMPTY_RESULT
        assert a.on_caret_moved("calc.cs", 2, 8)
        assert a.history.recent(1)[0].context_snippet == ""
        a.suggest_now("calc.cs", 2, 8)
        assert a.accept_suggestion(0) is False
        assert server.calls == 1
    finally:
        a.shutdown()


def test_missing_document_yields_empty_result(assistant, server):
    assert assistant.suggest_now("missing.cs", 0, 0) is EMPTY_RESULT
    assert server.calls == 0


def test_cancelled_request_is_dropped(assistant, server):
    token = CancellationToken()
    token.cancel()
    assert assistant.suggest_now("calc.cs", 2, 8, cancel_token=token) is EMPTY_RESULT
    assert server.calls == 0


def test_pipeline_does_not_touch_history(assistant):
    assistant.history.record("calc.cs", 0, 0)
    before = assistant.history.recent()
    assistant.suggest_now("calc.cs", 2, 8)
    assert assistant.history.recent() == before


def test_subscribers_receive_results(assistant):
    seen = []
    unsubscribe = assistant.subscribe(seen.append)
    assistant.suggest_now("calc.cs", 2, 8)
    unsubscribe()
    assistant.suggest_now("calc.cs", 2, 8)
    assert len(seen) == 1
    assert seen[0].suggestions[0].text == "return a + b;"


def test_streaming_mode_joins_chunks():
    stream = ndjson({"response": "return a"}, {"response": " + b;"}, {"done": True})
    srv = ModelServer([httpx.Response(200, content=stream)])
    a = _make(srv, streaming=True)
    try:
        result = a.suggest_now("calc.cs", 2, 8)
        assert [s.text for s in result.suggestions] == ["return a + b;"]
        assert srv.bodies()[0]["stream"] is True
    finally:
        a.shutdown()


def test_reconfigure_rebuilds_dependents(assistant, server):
    assistant.reconfigure(assistant.config.with_changes(history_depth=1, model="starcoder", min_confidence=0.99))
    assert assistant.history.depth == 1
    result = assistant.suggest_now("calc.cs", 2, 8)
    assert result.suggestions == ()
    assert server.bodies()[-1]["model"] == "starcoder"


def test_health_is_cached(assistant):
    status = assistant.health()
    assert status.is_available
    assert assistant.last_health is status


def test_shutdown_is_idempotent(server):
    a = _make(server)
    a.shutdown()
    a.shutdown()
    assert a.on_caret_moved("calc.cs", 2, 8) is False


class RecordingSource(InMemoryTextSource):
    def __init__(self, documents):
        super().__init__(documents)
        self.threads = []

    def read_lines(self, file_path):
        self.threads.append(threading.current_thread().name)
        return super().read_lines(file_path)


def test_caret_event_reads_no_document_on_caller_thread(server):
    source = RecordingSource({"calc.cs": CALC})
    a = CodeAssistant(AssistantConfig(base_retry_delay_ms=0, max_retry_attempts=0),
                      text_source=source, transport=server.transport(), timer_factory=ManualTimer)
    try:
        a.on_caret_moved("calc.cs", 1, 4)
        assert source.threads == []
        assert a.history.recent(1)[0].context_snippet == ""

        ManualTimer.created[-1].fire()
        assert a.coordinator.wait_idle(timeout=5.0)
        assert source.threads
        assert all(name.startswith("assistant-worker") for name in source.threads)
        assert a.history.recent(1)[0].context_snippet == "public int Add(int a, int b) {"
    finally:
        a.shutdown()


def test_snippet_comes_from_the_reported_line(server):
    editor = DummyEditor(line=0, column=0)
    a = _make(server, editor=editor)
    try:
        a.on_caret_moved("calc.cs", 1, 4)
        assert a.history.recent(1)[0].context_snippet == ""
        ManualTimer.created[-1].fire()
        assert a.history.recent(1)[0].context_snippet == "public int Add(int a, int b) {"

        editor.line = 3
        a.on_caret_moved("calc.cs", 3, 4)
        assert a.history.recent(1)[0].context_snippet == "}"
    finally:
        a.shutdown()


def test_one_model_request_in_flight_per_session():
    gate = threading.Event()
    first = threading.Event()
    lock = threading.Lock()
    stats = {"active": 0, "peak": 0}

    def stuck(request):
        with lock:
            stats["active"] += 1
            stats["peak"] = max(stats["peak"], stats["active"])
        first.set()
        try:
            gate.wait(5.0)
        finally:
            with lock:
                stats["active"] -= 1
        return generate_ok("return a + b;")

    srv = ModelServer([stuck])
    a = CodeAssistant(AssistantConfig(base_retry_delay_ms=0, max_retry_attempts=0),
                      text_source=InMemoryTextSource({"calc.cs": CALC}),
                      transport=srv.transport(), timer_factory=ManualTimer)
    try:
        a.on_caret_moved("calc.cs", 2, 8)
        ManualTimer.created[-1].fire()
        assert first.wait(5.0)

        a.on_caret_moved("calc.cs", 1, 4)
        ManualTimer.created[-1].fire()
        time.sleep(0.3)
        assert stats["peak"] == 1
        assert srv.calls == 1

        gate.set()
        assert a.coordinator.wait_idle(timeout=5.0)
        assert stats["peak"] == 1
        assert srv.calls == 2
        assert a.latest().context.caret_line == 1
    finally:
        gate.set()
        a.shutdown()


def test_repeat_request_is_served_from_cache(assistant, server):
    first = assistant.suggest_now("calc.cs", 2, 8)
    second = assistant.suggest_now("calc.cs", 2, 8)
    assert server.calls == 1
    assert second.suggestions == first.suggestions
    assert assistant.cache.hits == 1


def test_cache_can_be_switched_off(server):
    a = _make(server, enable_suggestion_cache=False)
    try:
        a.suggest_now("calc.cs", 2, 8)
        a.suggest_now("calc.cs", 2, 8)
        assert server.calls == 2
        assert len(a.cache) == 0
    finally:
        a.shutdown()
