from __future__ import annotations

import os
import signal
from dataclasses import dataclass
from pathlib import Path
from types import FrameType

import typer

from delorean.core.config import Config, resolve_config
from delorean.core.context import RunContext
from delorean.core.errors import ErrorCode, render_error
from delorean.core.result import Err
from delorean.output.console import ConsoleProtocol, RichConsole

DEBUG_ENV_VAR = "DELOREAN_DEBUG"

_root_context: RunContext | None = None


@dataclass(frozen=True, slots=True)
class CLIContext:
    config: Config
    console: ConsoleProtocol
    run: RunContext


def root_context() -> RunContext:
    """The run context of this invocation; every command shares it."""
    global _root_context
    if _root_context is None:
        _root_context = RunContext.background()
    return _root_context


def cancel_on_interrupt(ctx: RunContext) -> None:
    """First Ctrl-C cancels ``ctx``; a second one interrupts immediately."""

    def handler(signum: int, frame: FrameType | None) -> None:
        ctx.cancel()
        signal.signal(signal.SIGINT, signal.default_int_handler)

    signal.signal(signal.SIGINT, handler)


def build_context() -> CLIContext:
    console = RichConsole(debug=os.environ.get(DEBUG_ENV_VAR) == "1")

    config_result = resolve_config(None, cwd=Path.cwd())
    if isinstance(config_result, Err):
        console.error_line(render_error(config_result.error))
        raise typer.Exit(code=int(ErrorCode.ERROR))

    return CLIContext(config=config_result.value, console=console, run=root_context())
