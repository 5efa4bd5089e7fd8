"""Console output abstraction.

Services report progress through ``ConsoleProtocol`` and never print
directly. Progress lines are scoped (``[scope] message``) so that output
from parallel workers stays attributable; the one-line error summary of a
failed command goes to stderr.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Protocol

__all__ = [
    "Style",
    "ConsoleProtocol",
    "RichConsole",
    "MockConsole",
    "OutputRecord",
]


class Style(Enum):
    """Text styles for console output."""

    DEFAULT = auto()
    SUCCESS = auto()
    ERROR = auto()
    WARNING = auto()
    INFO = auto()
    DIM = auto()
    BOLD = auto()
    HEADER = auto()

    def __str__(self) -> str:
        return self.name.lower()


class ConsoleProtocol(Protocol):
    """Protocol for console output.

    Implementations must be safe to call from task runner workers.
    """

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        """Print a message with optional styling."""
        ...

    def scoped(self, scope: str, message: str, style: Style = Style.DEFAULT) -> None:
        """Print a progress line prefixed with ``[scope] ``."""
        ...

    def debug(self, message: str) -> None:
        """Print a dimmed detail line, only when debug output is enabled."""
        ...

    def success(self, message: str) -> None: ...

    def warning(self, message: str) -> None: ...

    def info(self, message: str) -> None: ...

    def header(self, message: str) -> None: ...

    def error_line(self, message: str) -> None:
        """Write a single error summary line to stderr."""
        ...

    def newline(self) -> None: ...


def scope_prefix(scope: str, message: str) -> str:
    return f"[{scope}] {message}"


class RichConsole:
    """Console implementation using Rich library."""

    def __init__(self, *, debug: bool = False) -> None:
        from rich.console import Console

        self._console = Console(highlight=False)
        self._stderr = Console(stderr=True, highlight=False)
        self._debug = debug
        self._style_map = {
            Style.DEFAULT: "",
            Style.SUCCESS: "green",
            Style.ERROR: "red bold",
            Style.WARNING: "yellow",
            Style.INFO: "cyan",
            Style.DIM: "dim",
            Style.BOLD: "bold",
            Style.HEADER: "blue bold",
        }

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        rich_style = self._style_map.get(style, "")
        # Messages carry "[scope]" prefixes and YAML snippets, never markup.
        if rich_style:
            self._console.print(message, style=rich_style, markup=False, soft_wrap=True)
        else:
            self._console.print(message, markup=False, soft_wrap=True)

    def scoped(self, scope: str, message: str, style: Style = Style.DEFAULT) -> None:
        self.print(scope_prefix(scope, message), style)

    def debug(self, message: str) -> None:
        if self._debug:
            self.print(message, Style.DIM)

    def success(self, message: str) -> None:
        from rich.markup import escape

        self._console.print(f"[green]OK[/green] {escape(message)}", soft_wrap=True)

    def warning(self, message: str) -> None:
        from rich.markup import escape

        self._console.print(f"[yellow]warning:[/yellow] {escape(message)}", soft_wrap=True)

    def info(self, message: str) -> None:
        from rich.markup import escape

        self._console.print(f"[cyan]info:[/cyan] {escape(message)}", soft_wrap=True)

    def header(self, message: str) -> None:
        from rich.markup import escape

        self._console.print(f"\n[blue bold]{escape(message)}[/blue bold]")

    def error_line(self, message: str) -> None:
        self._stderr.print(message, style="red", markup=False, soft_wrap=True)

    def newline(self) -> None:
        self._console.print()


@dataclass
class OutputRecord:
    """A single output record for MockConsole."""

    message: str
    style: Style
    stderr: bool = False


def _empty_outputs() -> list[OutputRecord]:
    return []


@dataclass
class MockConsole:
    """Console implementation that captures output for testing.

    Appends are serialized so that tasks running on worker threads can share
    one instance.
    """

    outputs: list[OutputRecord] = field(default_factory=_empty_outputs)
    debug_enabled: bool = True
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _record(self, message: str, style: Style, *, stderr: bool = False) -> None:
        with self._lock:
            self.outputs.append(OutputRecord(message, style, stderr))

    def print(self, message: str, style: Style = Style.DEFAULT) -> None:
        self._record(message, style)

    def scoped(self, scope: str, message: str, style: Style = Style.DEFAULT) -> None:
        self._record(scope_prefix(scope, message), style)

    def debug(self, message: str) -> None:
        if self.debug_enabled:
            self._record(message, Style.DIM)

    def success(self, message: str) -> None:
        self._record(f"OK {message}", Style.SUCCESS)

    def warning(self, message: str) -> None:
        self._record(f"warning: {message}", Style.WARNING)

    def info(self, message: str) -> None:
        self._record(f"info: {message}", Style.INFO)

    def header(self, message: str) -> None:
        self._record(message, Style.HEADER)

    def error_line(self, message: str) -> None:
        self._record(message, Style.ERROR, stderr=True)

    def newline(self) -> None:
        self._record("", Style.DEFAULT)

    # Test helper methods

    def clear(self) -> None:
        with self._lock:
            self.outputs.clear()

    @property
    def messages(self) -> list[str]:
        """All stdout messages."""
        with self._lock:
            return [o.message for o in self.outputs if not o.stderr]

    @property
    def errors(self) -> list[str]:
        """All stderr lines."""
        with self._lock:
            return [o.message for o in self.outputs if o.stderr]

    @property
    def text(self) -> str:
        return "\n".join(self.messages)

    def has_error(self) -> bool:
        return bool(self.errors)

    def has_warning(self) -> bool:
        with self._lock:
            return any(o.style == Style.WARNING for o in self.outputs)

    def find(self, substring: str) -> list[OutputRecord]:
        """Find all outputs containing a substring."""
        with self._lock:
            return [o for o in self.outputs if substring in o.message]
