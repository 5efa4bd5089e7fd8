from __future__ import annotations

from pathlib import Path

import typer

from delorean.cli.commands._helpers import exit_on_error, value_or_exit
from delorean.cli.context import build_context
from delorean.services.olm.checks import check_olm_graph, write_current_csv

ews_app = typer.Typer(add_completion=False, no_args_is_help=True)


@ews_app.command("check-olm-graph")
def check_olm_graph_cmd(
    directory: Path = typer.Option(
        ..., "--directory", "-d", help="Directory holding one bundle folder per product"
    ),
    product: str | None = typer.Option(
        None, "--product", help="Only accept the baselines configured for this product"
    ),
) -> None:
    """Fail when a bundle in the OLM graph has no path back to a baseline."""
    ctx = build_context()
    baselines = ctx.config.olm.baselines_for(product)
    ctx.console.debug(f"baselines: {', '.join(sorted(baselines))}")
    exit_on_error(check_olm_graph(directory, baselines=baselines, console=ctx.console), ctx)


@ews_app.command("current-csv")
def current_csv(
    directory: Path = typer.Option(..., "--directory", "-d", help="Package directory to read"),
    output: Path = typer.Option(..., "--output", "-o", help="File to write the CSV to"),
) -> None:
    """Write the CSV of the default channel head as JSON."""
    ctx = build_context()
    csv_file = value_or_exit(write_current_csv(directory, output, console=ctx.console), ctx)
    ctx.console.success(f"{csv_file.parent.name} -> {output}")
