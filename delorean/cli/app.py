from __future__ import annotations

import os
from pathlib import Path

import typer

from delorean import __version__
from delorean.cli.commands.ews_cmd import ews_app
from delorean.cli.commands.pipeline_cmd import pipeline_app
from delorean.cli.commands.release_cmd import release_app
from delorean.cli.commands.report_cmd import report_app
from delorean.cli.context import DEBUG_ENV_VAR, cancel_on_interrupt, root_context
from delorean.core.config import CONFIG_ENV_VAR
from delorean.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# Sub-apps
app.add_typer(release_app, name="release", help="Promote and tag releases.")
app.add_typer(pipeline_app, name="pipeline", help="Helpers for CI pipelines.")
app.add_typer(ews_app, name="ews", help="Checks on OLM manifests.")
app.add_typer(report_app, name="report", help="Import and archive test reports.")


@app.callback(invoke_without_command=True)
def _main(  # pyright: ignore[reportUnusedFunction]
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    debug: bool = typer.Option(False, "--debug", help="Print debug output."),
    config: Path | None = typer.Option(
        None,
        "--config",
        help=f"Config file (default: {CONFIG_ENV_VAR} or ./delorean.toml)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if debug:
        os.environ[DEBUG_ENV_VAR] = "1"

    if config is not None:
        try:
            path = config.expanduser().resolve()
        except OSError as e:
            typer.echo(f"error: invalid --config: {e}", err=True)
            raise typer.Exit(code=int(ErrorCode.ERROR))
        if not path.is_file():
            typer.echo(f"error: --config '{path}' does not exist", err=True)
            raise typer.Exit(code=int(ErrorCode.ERROR))
        os.environ[CONFIG_ENV_VAR] = str(path)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(code=int(ErrorCode.OK))


def main() -> None:
    cancel_on_interrupt(root_context())
    app()
