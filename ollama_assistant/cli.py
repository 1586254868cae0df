"""
cli.py - interactive console front end for the code assistant
Features:
- Opens a source file in a console-backed "editor" and moves a virtual caret
- Debounced suggestions on caret moves, or on demand with /suggest and /stream
- Jump recommendations, health probe and installed model list
- Live config edits persisted to the JSON config file
- Uses Rich for tables and formatting
"""

import argparse
import os
import sys
from typing import List, Optional, Sequence, Tuple

# ui styling with Rich
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.table import Table
from rich.text import Text

from ollama_assistant.assistant import CodeAssistant, PipelineResult
from ollama_assistant.context.prompt import build_completion_prompt
from ollama_assistant.context.text_source import FileTextSource
from ollama_assistant.core.errors import AssistantError, ConfigurationError, ContextUnavailable, Unavailable
from ollama_assistant.core.models import JumpDirection
from ollama_assistant.utils.config_manager import ConfigManager
from ollama_assistant.utils.logger_utils import DEFAULT_LOG_PATH, configure_logging

# initialise console for rich output
console = Console()


class ConsoleEditor:
    """
    In-memory editor buffer for one file, standing in for a real host editor.
    Implements both the EditorHost and TextSource protocols.
    """

    def __init__(self, reader: Optional[FileTextSource] = None):
        self.reader = reader or FileTextSource()
        self.path: Optional[str] = None
        self.lines: List[str] = []
        self.line = 0
        self.column = 0

    def open(self, path: str) -> None:
        self.lines = list(self.reader.read_lines(path))
        self.path = path
        self.line = 0
        self.column = 0

    # TextSource
    def read_lines(self, file_path: str) -> List[str]:
        if self.path is None or os.path.abspath(file_path) != os.path.abspath(self.path):
            raise ContextUnavailable(f"{file_path} is not open")
        return list(self.lines)

    # EditorHost
    def get_surrounding_text(self, lines_up: int, lines_down: int) -> List[str]:
        if self.path is None:
            raise Unavailable("no file open")
        start = max(0, self.line - max(0, lines_up))
        return self.lines[start:self.line + max(0, lines_down) + 1]

    def get_caret_position(self) -> Tuple[str, int, int]:
        if self.path is None:
            raise Unavailable("no file open")
        return self.path, self.line, self.column

    def insert_text(self, text: str) -> None:
        if self.path is None:
            raise Unavailable("no file open")
        if not self.lines:
            self.lines = [""]
        current = self.lines[self.line]
        merged = current[:self.column] + text + current[self.column:]
        new_lines = merged.split("\n")
        self.lines[self.line:self.line + 1] = new_lines
        last = new_lines[-1]
        self.line += len(new_lines) - 1
        self.column = len(last) - len(current[self.column:])

    def move_caret_to(self, line: int, column: int) -> None:
        if self.path is None:
            raise Unavailable("no file open")
        self.line = max(0, min(int(line), max(0, len(self.lines) - 1)))
        text = self.lines[self.line] if self.lines else ""
        self.column = max(0, min(int(column), len(text)))


class CLI:
    """Command-line interface managing the editor buffer, the assistant and user commands."""

    def __init__(self, config_manager: ConfigManager, assistant: Optional[CodeAssistant] = None,
                 editor: Optional[ConsoleEditor] = None):
        self.cfg = config_manager
        self.editor = editor or ConsoleEditor()
        self.assistant = assistant or CodeAssistant(self.cfg.config, editor=self.editor, text_source=self.editor)
        self.running = True
        self.assistant.subscribe(self._on_result)

    def run(self):
        """
        Main interactive loop:
        - Prompts for a command
        - Dispatches slash commands until /quit, EOF or Ctrl-C
        """
        console.rule("[bold magenta]Ollama Code Assistant[/bold magenta]")
        console.print(f"[cyan]Model {self.cfg.config.model} at {self.cfg.config.endpoint}[/cyan]")
        console.print("Commands: /open /caret /suggest /stream /accept /jump /health /models /config /history /quit\n")

        while self.running:
            try:
                cmd = Prompt.ask("[green]>[/green]", default="")
                if not cmd:
                    continue
                self.handle_command(cmd.strip())
            except (EOFError, KeyboardInterrupt):
                self._exit()
                break

    # COMMAND HANDLING -----------------------------------------------------------
    def handle_command(self, cmd: str):
        name, _, rest = cmd.partition(" ")
        args = rest.split()
        handlers = {
            "/quit": lambda: self._exit(),
            "/open": lambda: self._open(rest.strip()),
            "/caret": lambda: self._caret(args),
            "/suggest": lambda: self._suggest(),
            "/stream": lambda: self._stream(),
            "/accept": lambda: self._accept(args),
            "/jump": lambda: self._jump(args),
            "/health": lambda: self._health(),
            "/models": lambda: self._models(),
            "/config": lambda: self._config(args),
            "/history": lambda: self._history(),
        }
        handler = handlers.get(name)
        if handler is None:
            console.print(f"[red]Unknown command:[/red] {cmd}")
            return
        try:
            handler()
        except ConfigurationError as e:
            console.print(f"[red]Config error:[/red] {e}")
        except AssistantError as e:
            console.print(f"[yellow]{type(e).__name__}:[/yellow] {e}")

    def _open(self, path: str):
        if not path:
            console.print("[red]Usage:[/red] /open <path>")
            return
        self.editor.open(path)
        console.print(f"[green]Opened[/green] {path} [dim]({len(self.editor.lines)} lines)[/dim]")

    def _caret(self, args: List[str]):
        """Move the caret; line and column are 1-based like an editor gutter."""
        if len(args) < 1 or not all(a.isdigit() for a in args[:2]):
            console.print("[red]Usage:[/red] /caret <line> [column]")
            return
        line = int(args[0]) - 1
        column = int(args[1]) - 1 if len(args) > 1 else 0
        self.editor.move_caret_to(line, column)
        path, line, column = self.editor.get_caret_position()
        scheduled = self.assistant.on_caret_moved(path, line, column)
        console.print(f"[dim]caret at {line + 1}:{column + 1}{' (suggestions pending)' if scheduled else ''}[/dim]")

    def _suggest(self):
        result = self.assistant.suggest_now()
        self._display(result)

    def _stream(self):
        path, line, column = self.editor.get_caret_position()
        ctx = self.assistant.context_builder.build(
            path, line, column, self.cfg.config.lines_up, self.cfg.config.lines_down,
            self.assistant.history.relevant(path, line, self.cfg.config.history_depth),
        )
        for chunk in self.assistant.model.stream_complete(build_completion_prompt(ctx)):
            console.print(chunk, end="", markup=False, highlight=False)
        console.print()

    def _accept(self, args: List[str]):
        index = int(args[0]) - 1 if args and args[0].isdigit() else 0
        if self.assistant.accept_suggestion(index):
            console.print(f"[green]Inserted suggestion {index + 1}[/green]")
        else:
            console.print("[dim](nothing to accept)[/dim]")

    def _jump(self, args: List[str]):
        if args and args[0] == "go":
            if self.assistant.accept_jump():
                _, line, column = self.editor.get_caret_position()
                console.print(f"[green]Jumped to[/green] {line + 1}:{column + 1}")
            else:
                console.print("[dim](no jump recommended)[/dim]")
            return
        jumps = self.assistant.latest().jumps
        if not jumps:
            console.print("[dim](no jump candidates)[/dim]")
            return
        table = Table(title="Jump candidates", box=box.SIMPLE, show_edge=False)
        table.add_column("Dir", style="cyan")
        table.add_column("Line", justify="right")
        table.add_column("Conf", justify="right", style="magenta")
        table.add_column("Reason")
        table.add_column("Preview", style="dim")
        for rec in jumps:
            style = "dim" if rec.direction is JumpDirection.NONE else "bold"
            table.add_row(Text(rec.direction.value, style=style), str(rec.target_line + 1),
                          f"{rec.confidence:.2f}", rec.reason, rec.preview)
        console.print(table)

    def _health(self):
        status = self.assistant.health()
        color = "green" if status.is_available else "red"
        lines = [
            f"available: [{color}]{status.is_available}[/{color}]",
            f"response:  {status.response_time_ms:.1f} ms",
            f"circuit:   {status.circuit_state.value} ({status.consecutive_failures} consecutive failures)",
        ]
        if status.error:
            lines.append(f"error:     {status.error}")
        console.print(Panel("\n".join(lines), title="Model server", border_style=color))

    def _models(self):
        names = self.assistant.model.list_models()
        if not names:
            console.print("[dim](no models installed)[/dim]")
            return
        for n in names:
            marker = "*" if n.split(":")[0] == self.cfg.config.model.split(":")[0] else " "
            console.print(f" {marker} {n}")

    def _config(self, args: List[str]):
        if len(args) >= 2:
            new = self.cfg.set(args[0], " ".join(args[1:]))
            self.assistant.reconfigure(new)
            console.print(f"[green]{args[0]}[/green] = {getattr(new, args[0], ' '.join(args[1:]))}")
            return
        table = Table(title="Configuration", box=box.MINIMAL)
        table.add_column("Option", style="cyan")
        table.add_column("Value")
        for k, v in self.cfg.show().items():
            table.add_row(k, str(v))
        console.print(table)

    def _history(self):
        entries = self.assistant.history.recent()
        if not entries:
            console.print("[dim](history empty)[/dim]")
            return
        table = Table(title="Caret history", box=box.MINIMAL)
        table.add_column("File")
        table.add_column("Pos", justify="right")
        table.add_column("Snippet", style="dim")
        for e in entries:
            table.add_row(os.path.basename(e.file_path), f"{e.line + 1}:{e.column + 1}", e.context_snippet)
        console.print(table)

    # DISPLAY -------------------------------------------------------------------------------
    def _on_result(self, result: PipelineResult):
        if result.suggestions:
            console.print(f"[dim]{len(result.suggestions)} suggestion(s) ready, /accept to insert[/dim]")

    def _display(self, result: PipelineResult):
        if not result.suggestions:
            console.print("[dim](no suggestion available)[/dim]")
        else:
            table = Table(title="Suggestions", box=box.SIMPLE, show_edge=False)
            table.add_column("#", justify="right", style="cyan")
            table.add_column("Text", style="bold")
            table.add_column("Conf", justify="right", style="magenta")
            table.add_column("Kind", style="dim")
            for i, s in enumerate(result.suggestions, 1):
                table.add_row(str(i), Text(s.text), f"{s.confidence:.2f}", s.kind.value)
            console.print(table)
        jump = result.best_jump
        if jump is not None:
            console.print(f"[cyan]Jump {jump.direction.value}[/cyan] to line {jump.target_line + 1}: "
                          f"{jump.reason} [dim]({jump.confidence:.2f})[/dim]")

    # EXIT ------------------------------------------------------------------------
    def _exit(self):
        console.rule("[red]Exiting[/red]")
        self.assistant.shutdown()
        self.running = False


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ollama-assistant", description="Interactive local-model code assistant")
    p.add_argument("--config", default="config.json", help="path of the JSON config file")
    p.add_argument("--endpoint", help="model server URL (overrides config)")
    p.add_argument("--model", help="model name (overrides config)")
    p.add_argument("--verbose", "-v", action="store_true", help="debug logging")
    p.add_argument("--log-file", nargs="?", const=DEFAULT_LOG_PATH, default=None,
                   help=f"also log to a file (default {DEFAULT_LOG_PATH})")
    return p


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "WARNING", log_path=args.log_file)
    try:
        manager = ConfigManager(args.config)
        overrides = {k: v for k, v in (("endpoint", args.endpoint), ("model", args.model)) if v}
        if overrides:
            manager.config = manager.config.with_changes(**overrides)
    except ConfigurationError as e:
        console.print(f"[red]Config error:[/red] {e}")
        return 2
    CLI(manager).run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
