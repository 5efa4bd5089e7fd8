from __future__ import annotations

import os
from pathlib import Path

import typer

from delorean.cli.commands._helpers import require_secret, value_or_exit
from delorean.cli.context import CLIContext, build_context
from delorean.core.env import (
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    POLARION_PASSWORD,
    POLARION_USERNAME,
    PROMETHEUS_TOKEN,
    REPORTPORTAL_TOKEN,
    require_env,
)
from delorean.services.report.cleanup import load_cleanup_config, run_cleanup
from delorean.services.report.datahub import (
    DATAHUB_FILTER,
    DATAHUB_TAG,
    DEFAULT_JOB_NAME,
    DEFAULT_PUSHGATEWAY_URL,
    DatahubSink,
)
from delorean.services.report.importer import (
    ImportJob,
    ObjectFilter,
    ProcessedTag,
    Sink,
    run_import,
)
from delorean.services.report.polarion import (
    POLARION_IMPORT_URL,
    POLARION_STAGE_IMPORT_URL,
    POLARION_TAG,
    PolarionSink,
)
from delorean.services.report.query import (
    DEFAULT_QUERY_TIMEOUT_SECONDS,
    PrometheusClient,
    QueryWindow,
    load_query_config,
    run_queries,
    write_report,
)
from delorean.services.report.reportportal import REPORTPORTAL_TAG, ReportPortalSink
from delorean.services.report.store import S3Store, new_s3_store

report_app = typer.Typer(add_completion=False, no_args_is_help=True)

_ZIP_FILTER = ObjectFilter(suffix=".zip")


def _store(ctx: CLIContext) -> S3Store:
    return new_s3_store(
        access_key_id=value_or_exit(require_env(AWS_ACCESS_KEY_ID), ctx),
        secret_access_key=value_or_exit(require_env(AWS_SECRET_ACCESS_KEY), ctx),
    )


def _import[P](
    ctx: CLIContext,
    sink: Sink[P],
    *,
    bucket: str,
    tag: ProcessedTag,
    object_filter: ObjectFilter,
    tagging: bool = True,
) -> None:
    job = ImportJob(
        bucket=bucket,
        tag=tag,
        filter=object_filter,
        workers=ctx.config.imports.workers,
        tagging=tagging,
    )
    summary = value_or_exit(
        run_import(store=_store(ctx), sink=sink, job=job, console=ctx.console, ctx=ctx.run), ctx
    )
    for key in summary.imported:
        ctx.console.success(f"imported {key} into {sink.name}")


@report_app.command("reportportal-import")
def reportportal_import(
    bucket: str = typer.Option(..., "--bucket", "-b", help="S3 bucket to read reports from"),
    project: str = typer.Option(..., "--project", "-p", help="ReportPortal project"),
    rp_token: str | None = typer.Option(
        None, "--rp-token", help=f"ReportPortal API token (or {REPORTPORTAL_TOKEN})"
    ),
    no_tagging: bool = typer.Option(
        False, "--no-tagging", help="Do not tag imported objects, for testing"
    ),
) -> None:
    """Import test result archives into ReportPortal launches."""
    ctx = build_context()
    token = require_secret(ctx, rp_token, REPORTPORTAL_TOKEN, flag="--rp-token")
    sink = ReportPortalSink(project=project, token=token)
    _import(
        ctx,
        sink,
        bucket=bucket,
        tag=REPORTPORTAL_TAG,
        object_filter=_ZIP_FILTER,
        tagging=not no_tagging,
    )


@report_app.command("polarion-import")
def polarion_import(
    bucket: str = typer.Option(..., "--bucket", "-b", help="S3 bucket to read reports from"),
    stage: bool = typer.Option(False, "--stage", help="Import into the Polarion staging server"),
    username: str | None = typer.Option(
        None, "--username", help=f"Polarion user (or {POLARION_USERNAME})"
    ),
    password: str | None = typer.Option(
        None, "--password", help=f"Polarion password (or {POLARION_PASSWORD})"
    ),
) -> None:
    """Import JUnit results from test archives into Polarion."""
    ctx = build_context()
    imports = ctx.config.imports
    sink = PolarionSink(
        username=require_secret(ctx, username, POLARION_USERNAME, flag="--username"),
        password=require_secret(ctx, password, POLARION_PASSWORD, flag="--password"),
        url=POLARION_STAGE_IMPORT_URL if stage else POLARION_IMPORT_URL,
        poll_seconds=imports.poll_seconds,
        timeout_seconds=imports.timeout_seconds,
    )
    _import(ctx, sink, bucket=bucket, tag=POLARION_TAG, object_filter=_ZIP_FILTER)


@report_app.command("datahub-import")
def datahub_import(
    bucket: str = typer.Option(..., "--bucket", "-b", help="S3 bucket to read reports from"),
    pushgateway: str = typer.Option(
        DEFAULT_PUSHGATEWAY_URL, "--pushgateway", "-p", help="Prometheus Pushgateway URL"
    ),
    job_name: str = typer.Option(
        DEFAULT_JOB_NAME, "--jobname", "-j", help="Job label of the pushed metrics"
    ),
    report_name: str | None = typer.Option(
        None, "--reportname", "-r", help="Only process reports whose key starts with this"
    ),
) -> None:
    """Push downtime reports to the Datahub Pushgateway."""
    ctx = build_context()
    sink = DatahubSink(pushgateway=pushgateway, job=job_name)
    object_filter = ObjectFilter(prefix=report_name) if report_name else DATAHUB_FILTER
    _import(ctx, sink, bucket=bucket, tag=DATAHUB_TAG, object_filter=object_filter)


@report_app.command("cleanup")
def cleanup(
    config_file: Path = typer.Option(..., "--config-file", help="YAML list of buckets and tags"),
) -> None:
    """Move fully processed reports into the archive folder of their bucket."""
    ctx = build_context()
    config = value_or_exit(load_cleanup_config(config_file), ctx)
    moved = value_or_exit(
        run_cleanup(config, store=_store(ctx), console=ctx.console, ctx=ctx.run), ctx
    )
    total = sum(len(keys) for keys in moved.values())
    ctx.console.success(f"{total} objects archived across {len(moved)} buckets")


@report_app.command("query")
def query(
    config_file: Path = typer.Option(..., "--config-file", help="YAML list of queries"),
    output: Path = typer.Option(..., "--output", "-o", help="Directory to write the report to"),
    prometheus_url: str = typer.Option(..., "--prometheus-url", help="Prometheus base URL"),
    token: str | None = typer.Option(
        None, "--token", help=f"Bearer token for Prometheus (or {PROMETHEUS_TOKEN})"
    ),
    version: str = typer.Option("", "--version", help="Product version recorded in the report"),
    start_time: float | None = typer.Option(
        None, "--start-time", help="Range start (unix seconds); wins over --duration"
    ),
    end_time: float | None = typer.Option(
        None, "--end-time", help="Range end (unix seconds); defaults to now"
    ),
    duration: float = typer.Option(7200.0, "--duration", help="Range length in seconds"),
    timeout: float = typer.Option(
        DEFAULT_QUERY_TIMEOUT_SECONDS, "--timeout", "-t", help="Per-query timeout in seconds"
    ),
) -> None:
    """Run Prometheus queries and write the results as a YAML report."""
    ctx = build_context()
    config = value_or_exit(load_query_config(config_file), ctx)
    bearer = token or os.environ.get(PROMETHEUS_TOKEN)
    client = PrometheusClient(prometheus_url, token=bearer, timeout=timeout)
    window = QueryWindow.ending_at(end_time, start=start_time, duration=duration)

    results = value_or_exit(
        run_queries(config, client=client, window=window, console=ctx.console, ctx=ctx.run), ctx
    )
    path = value_or_exit(
        write_report(output, config=config, version=version, results=results), ctx
    )
    ctx.console.success(f"report written to {path}")
