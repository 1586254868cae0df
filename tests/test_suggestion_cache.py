# tests/test_suggestion_cache.py

from ollama_assistant.core.models import CodeContext, Suggestion
from ollama_assistant.core.suggestion_cache import SuggestionCache, context_key


def _ctx(current="        ", column=8, following=("    }",)):
    return CodeContext(file_path="calc.cs", language="csharp", caret_line=2, caret_column=column,
                       preceding_lines=("    public int Add(int a, int b) {",),
                       following_lines=following, current_line=current)


def _s(text, confidence=0.9):
    return Suggestion(text=text, confidence=confidence)


def test_hit_returns_stored_suggestions(clock):
    cache = SuggestionCache(max_size=4, ttl_s=60, clock=clock)
    key = context_key(_ctx(), "codellama")
    assert cache.get(key) is None
    cache.put(key, [_s("return a + b;")])
    assert [s.text for s in cache.get(key)] == ["return a + b;"]
    assert (cache.hits, cache.misses) == (1, 1)
    assert cache.stats()["hit_rate"] == "50.0%"


def test_entries_expire_after_ttl(clock):
    cache = SuggestionCache(max_size=4, ttl_s=60, clock=clock)
    cache.put("k", [_s("x")])
    clock.advance(60)
    assert cache.get("k") is not None
    clock.advance(1)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_least_recently_used_is_evicted(clock):
    cache = SuggestionCache(max_size=2, ttl_s=60, clock=clock)
    cache.put("a", [_s("1")])
    cache.put("b", [_s("2")])
    cache.get("a")
    cache.put("c", [_s("3")])
    assert cache.get("b") is None
    assert cache.get("a") is not None and cache.get("c") is not None
    assert len(cache) == 2


def test_empty_results_are_not_stored(clock):
    cache = SuggestionCache(clock=clock)
    cache.put("k", [])
    assert len(cache) == 0


def test_key_tracks_window_and_model():
    base = context_key(_ctx(), "codellama")
    assert base == context_key(_ctx(), "codellama")
    assert base != context_key(_ctx(), "starcoder")
    assert base != context_key(_ctx(column=4), "codellama")
    assert base != context_key(_ctx(current="        int"), "codellama")
    assert base != context_key(_ctx(following=("    }", "}")), "codellama")
