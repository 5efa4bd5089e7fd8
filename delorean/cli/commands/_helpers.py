"""Shared helpers for CLI commands."""

from __future__ import annotations

import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import typer

from delorean.core.env import require_value
from delorean.core.errors import ErrorCode, render_error
from delorean.core.result import Err, Ok, Result
from delorean.core.version import OLM_TYPE_RHMI, OLM_TYPE_RHOAM, OlmType, Version, parse_version
from delorean.output.console import Style

if TYPE_CHECKING:
    from delorean.cli.context import CLIContext


def exit_on_error[T, E](
    result: Result[T, E],
    ctx: CLIContext,
    error_code: ErrorCode = ErrorCode.ERROR,
) -> None:
    """Exit with error if result is Err, otherwise return.

    This helper reduces boilerplate for the common pattern:
        match result:
            case Err(e):
                ctx.console.error_line(render_error(e))
                if e.hint:
                    ctx.console.print(f"hint: {e.hint}", Style.DIM)
                raise typer.Exit(code=1)
            case Ok(_):
                pass

    Expects error objects to have 'message' and optional 'hint' attributes.
    """
    if isinstance(result, Err):
        error = result.error
        hint: str | None = getattr(error, "hint", None)
        ctx.console.error_line(render_error(error))
        if hint:
            ctx.console.print(f"hint: {hint}", Style.DIM)
        raise typer.Exit(code=int(error_code))


def value_or_exit[T, E](result: Result[T, E], ctx: CLIContext) -> T:
    """The Ok value of ``result``; exits like :func:`exit_on_error` otherwise."""
    match result:
        case Ok(value):
            return value
        case Err():
            exit_on_error(result, ctx)
            raise typer.Exit(code=int(ErrorCode.ERROR))


def exit_with_message(ctx: CLIContext, message: str) -> NoReturn:
    ctx.console.error_line(f"Error: {message}")
    raise typer.Exit(code=int(ErrorCode.ERROR))


def require_secret(ctx: CLIContext, value: str | None, name: str, *, flag: str) -> str:
    """Flag value, else the environment variable; exits when neither is set."""
    return value_or_exit(require_value(value, name, flag=flag), ctx)


def parse_version_arg(ctx: CLIContext, text: str, olm_type: OlmType = OLM_TYPE_RHMI) -> Version:
    return value_or_exit(parse_version(text, olm_type), ctx)


def parse_olm_type_arg(ctx: CLIContext, text: str) -> OlmType:
    if text == OLM_TYPE_RHOAM:
        return OLM_TYPE_RHOAM
    if text == OLM_TYPE_RHMI:
        return OLM_TYPE_RHMI
    expected = f"{OLM_TYPE_RHMI} or {OLM_TYPE_RHOAM}"
    exit_with_message(ctx, f"unknown olm type {text} (expected {expected})")


def parse_key_values(ctx: CLIContext, items: list[str], *, flag: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for item in items:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            exit_with_message(ctx, f"invalid {flag} (expected key=value): {item}")
        out[key] = value.strip()
    return out


@contextmanager
def work_dir(prefix: str, keep: bool = False) -> Iterator[Path]:
    """A temporary working directory, removed on exit unless ``keep``."""
    if keep:
        yield Path(tempfile.mkdtemp(prefix=prefix))
        return
    with tempfile.TemporaryDirectory(prefix=prefix) as tmp:
        yield Path(tmp)
