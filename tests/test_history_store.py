# tests/test_history_store.py

import threading

from ollama_assistant.core.history_store import HistoryStore
from ollama_assistant.core.models import HistoryEntry


def _entry(line, ts, path="a.cs", col=0):
    return HistoryEntry(file_path=path, line=line, column=col, timestamp=ts)


def test_depth_bound_keeps_newest_first():
    store = HistoryStore(depth=3)
    for i in range(5):
        store.add(_entry(i, ts=100.0 + i))

    recent = store.recent(10)
    assert [e.line for e in recent] == [4, 3, 2]
    assert len(store) == 3


def test_size_never_exceeds_depth():
    store = HistoryStore(depth=4)
    for i in range(50):
        store.add(_entry(i, ts=float(i)))
        assert len(store) <= 4


def test_duplicate_of_last_entry_is_ignored():
    store = HistoryStore(depth=5)
    assert store.add(_entry(7, ts=1.0, col=3))
    assert not store.add(_entry(7, ts=2.0, col=3))
    assert len(store) == 1
    # same position, but not adjacent, is a new visit
    assert store.add(_entry(8, ts=3.0))
    assert store.add(_entry(7, ts=4.0, col=3))
    assert len(store) == 3


def test_recent_timestamps_non_increasing_even_when_stamped_out_of_order():
    store = HistoryStore(depth=5)
    store.add(_entry(1, ts=50.0))
    store.add(_entry(2, ts=10.0))
    store.add(_entry(3, ts=60.0))
    stamps = [e.timestamp for e in store.recent()]
    assert stamps == sorted(stamps, reverse=True)
    assert [e.line for e in store.recent()] == [3, 2, 1]


def test_invalid_entries_are_ignored():
    store = HistoryStore()
    assert not store.add(None)
    assert not store.add(_entry(-1, ts=1.0))
    assert not store.add(HistoryEntry(file_path="  ", line=1, column=0))
    assert not store.record("", 1, 1)
    assert len(store) == 0


def test_relevant_prefers_nearby_lines_then_recency():
    store = HistoryStore(depth=10, cross_file_weight=0.05)
    store.add(_entry(40, ts=1.0))
    store.add(_entry(11, ts=2.0, path="b.cs"))
    store.add(_entry(12, ts=3.0))
    store.add(_entry(8, ts=4.0))

    ranked = store.relevant("a.cs", 10, n=3)
    # lines 8 and 12 are both two away; line 8 is newer
    assert [(e.file_path, e.line) for e in ranked] == [("a.cs", 8), ("a.cs", 12), ("a.cs", 40)]


def test_relevant_cross_file_uses_fixed_weight():
    store = HistoryStore(depth=10, cross_file_weight=0.5)
    store.add(_entry(100, ts=1.0))
    store.add(_entry(3, ts=2.0, path="other.cs"))
    ranked = store.relevant("a.cs", 0)
    assert ranked[0].file_path == "other.cs"


def test_for_file_and_clear_file():
    store = HistoryStore(depth=10)
    store.add(_entry(1, ts=1.0))
    store.add(_entry(2, ts=2.0, path="b.cs"))
    store.add(_entry(3, ts=3.0))

    assert [e.line for e in store.for_file("a.cs")] == [3, 1]
    assert store.clear_file("a.cs") == 2
    assert [e.file_path for e in store.recent()] == ["b.cs"]
    store.clear()
    assert store.recent() == []


def test_set_depth_trims_oldest():
    store = HistoryStore(depth=5)
    for i in range(5):
        store.add(_entry(i, ts=float(i)))
    store.set_depth(2)
    assert store.depth == 2
    assert [e.line for e in store.recent()] == [4, 3]


def test_record_builds_entry_with_snippet():
    store = HistoryStore()
    assert store.record("a.py", 4, 2, "x = 1")
    e = store.recent(1)[0]
    assert (e.line, e.column, e.context_snippet) == (4, 2, "x = 1")


def test_concurrent_adds_stay_bounded():
    store = HistoryStore(depth=8)

    def worker(offset):
        for i in range(200):
            store.record("a.cs", offset * 1000 + i, 0)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(store) == 8
    stamps = [e.timestamp for e in store.recent()]
    assert stamps == sorted(stamps, reverse=True)


def test_attach_snippets_fills_only_missing_ones():
    store = HistoryStore(depth=5)
    store.record("a.cs", 0, 0)
    store.record("a.cs", 1, 0, "kept")
    store.record("b.cs", 0, 0)
    store.record("a.cs", 9, 0)
    assert store.needs_snippets("a.cs")

    lines = ["int x = 1;", "int y = 2;"]
    assert store.attach_snippets("a.cs", lines) == 1
    snippets = {(e.file_path, e.line): e.context_snippet for e in store.recent()}
    assert snippets[("a.cs", 0)] == "int x = 1;"
    assert snippets[("a.cs", 1)] == "kept"
    assert snippets[("b.cs", 0)] == ""
    assert snippets[("a.cs", 9)] == ""
