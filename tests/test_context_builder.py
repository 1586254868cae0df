# tests/test_context_builder.py

import pytest

from ollama_assistant.context.context_builder import ContextBuilder
from ollama_assistant.context.language import detect_indentation, detect_language, detect_scope
from ollama_assistant.context.prompt import CURSOR_MARKER, build_completion_prompt, build_enhanced_prompt
from ollama_assistant.context.text_source import FileTextSource, InMemoryTextSource
from ollama_assistant.core.errors import ContextUnavailable
from ollama_assistant.core.models import HistoryEntry

CSHARP = """namespace Demo
{
    public class Calculator
    {
        public int Add(int a, int b)
        {
            return a + b;
        }
    }
}"""

PYTHON = """import os

class Greeter:
    def greet(self, name):
        message = "hi " + name
        return message
"""


class BrokenSource:
    def read_lines(self, file_path):
        raise ValueError("editor went away")


def _builder(**docs):
    return ContextBuilder(InMemoryTextSource(docs))


def test_window_in_the_middle_of_a_file():
    lines = [f"line {i}" for i in range(10)]
    src = InMemoryTextSource()
    src.set_lines("a.cs", lines)
    ctx = ContextBuilder(src).build("a.cs", 5, 0, lines_up=3, lines_down=2)

    assert ctx.preceding_lines == ("line 2", "line 3", "line 4")
    assert ctx.current_line == "line 5"
    assert ctx.following_lines == ("line 6", "line 7")
    assert ctx.language == "csharp"


@pytest.mark.parametrize("caret,up,down", [(0, 3, 2), (1, 3, 2), (9, 3, 2), (4, 0, 0), (4, 100, 100), (5, -2, -1)])
def test_window_concatenates_back_to_file_slice(caret, up, down):
    lines = [f"x{i}" for i in range(10)]
    ctx = ContextBuilder.build_from_lines(lines, "f.py", caret, 0, up, down)
    start = max(0, caret - max(0, up))
    end = min(len(lines), caret + max(0, down) + 1)
    joined = list(ctx.preceding_lines) + [ctx.current_line] + list(ctx.following_lines)
    assert joined == lines[start:end]
    assert ctx.first_line_number == start


def test_caret_out_of_range_gives_empty_global_context():
    ctx = ContextBuilder.build_from_lines(["a", "b"], "f.cs", 7, 3, 3, 2)
    assert ctx.is_empty
    assert ctx.current_scope == "Global"


def test_caret_column_is_clamped_to_line():
    ctx = ContextBuilder.build_from_lines(["abc"], "f.cs", 0, 99, 3, 2)
    assert ctx.caret_column == 3
    assert ctx.line_prefix == "abc"


def test_scope_in_csharp_method_and_class():
    lines = CSHARP.splitlines()
    assert detect_scope(lines, 6, 12, "csharp") == "Add()"
    assert detect_scope(lines, 8, 4, "csharp") == "Calculator"
    assert detect_scope(lines, 0, 0, "csharp") == "Global"


def test_scope_in_python_follows_indentation():
    lines = PYTHON.splitlines()
    assert detect_scope(lines, 4, 8, "python") == "greet()"
    assert detect_scope(lines, 3, 4, "python") == "Greeter"
    assert detect_scope(lines, 0, 0, "python") == "Global"


def test_language_detection():
    assert detect_language("src/a.cs") == "csharp"
    assert detect_language("x.PY") == "python"
    assert detect_language("README") == "text"
    assert detect_language(None) == "text"


def test_indentation_detection():
    assert detect_indentation(["a", "\tb", "\tc", "  d"]).uses_spaces is False
    two = detect_indentation(["a", "  b", "    c", "  d"])
    assert (two.uses_spaces, two.size) == (True, 2)
    tie = detect_indentation(["\ta", "    b"])
    assert (tie.uses_spaces, tie.size) == (True, 4)
    assert detect_indentation([]).size == 4


def test_history_is_carried_through():
    h = HistoryEntry(file_path="a.cs", line=1, column=0, timestamp=1.0, context_snippet="int x;")
    ctx = _builder(**{"a.cs": CSHARP}).build("a.cs", 6, 12, 3, 2, history=[h, "junk"])
    assert ctx.history == (h,)
    assert ctx.current_scope == "Add()"


def test_missing_document_raises_context_unavailable():
    with pytest.raises(ContextUnavailable):
        _builder().build("nope.cs", 0, 0, 3, 2)


def test_foreign_source_failure_is_wrapped():
    with pytest.raises(ContextUnavailable) as exc:
        ContextBuilder(BrokenSource()).build("a.cs", 0, 0, 3, 2)
    assert isinstance(exc.value.__cause__, ValueError)


def test_file_text_source(tmp_path):
    p = tmp_path / "m.py"
    p.write_text("a = 1\nb = 2\n")
    assert FileTextSource().read_lines(str(p)) == ["a = 1", "b = 2"]
    with pytest.raises(ContextUnavailable):
        FileTextSource().read_lines(str(tmp_path / "missing.py"))


def test_completion_prompt_marks_cursor():
    ctx = _builder(**{"a.cs": CSHARP}).build("a.cs", 6, 12, 3, 2)
    prompt = build_completion_prompt(ctx)
    assert "Language: csharp" in prompt
    assert "Current scope: Add()" in prompt
    assert f"007:             {CURSOR_MARKER}return a + b;" in prompt


def test_enhanced_prompt_includes_history_and_context():
    h = HistoryEntry(file_path="/src/a.cs", line=4, column=0, context_snippet="int y;")
    text = build_enhanced_prompt("finish this", "int x = ", [h])
    assert "- a.cs:5 (int y;)" in text
    assert "int x = " in text
    assert text.endswith("finish this")
