from __future__ import annotations

import typer

from delorean.cli.commands._helpers import (
    parse_key_values,
    parse_olm_type_arg,
    value_or_exit,
    work_dir,
)
from delorean.cli.context import build_context
from delorean.core.env import AWS_ACCESS_KEY_ID, AWS_SECRET_ACCESS_KEY, require_env
from delorean.output.console import ConsoleProtocol, Style
from delorean.services.aws.report import ItemStatus, Report
from delorean.services.aws.sweeper import (
    DEFAULT_SWEEP_POLL_SECONDS,
    DEFAULT_SWEEP_TIMEOUT_SECONDS,
    AccountSweep,
    SweepOptions,
    new_aws_clients,
    sweep_account,
)
from delorean.services.olm.selector import SupportPolicy
from delorean.services.olm.supported import supported_versions

pipeline_app = typer.Typer(add_completion=False, no_args_is_help=True)


@pipeline_app.command("supported-versions")
def supported_versions_cmd(
    olm_type: str = typer.Option(
        "managed-api-service", "--olmType", "--olm-type", help="Product family"
    ),
    major: int = typer.Option(1, "--major", "-M", help="Number of major versions to support"),
    minor: int = typer.Option(3, "--minor", "-m", help="Number of minor versions to support"),
    managed_tenants: str | None = typer.Option(
        None, "--managedTenants", "--managed-tenants", help="Managed-tenants repository to read"
    ),
) -> None:
    """Print the supported product versions as a comma-separated list."""
    ctx = build_context()
    product = parse_olm_type_arg(ctx, olm_type)
    repo_url = managed_tenants or ctx.config.gitlab.managed_tenants_repo

    with work_dir("delorean-supported-") as tmp:
        versions = value_or_exit(
            supported_versions(
                repo_url,
                tmp,
                olm_type=product,
                policy=SupportPolicy(max_majors=major, max_minors=minor),
                console=ctx.console,
            ),
            ctx,
        )
    ctx.console.print(",".join(str(v) for v in versions))


def _print_report(console: ConsoleProtocol, title: str, report: Report) -> None:
    if not report.items:
        return
    console.header(title)
    for item in report.items:
        style = Style.SUCCESS if item.status == ItemStatus.COMPLETE else Style.DEFAULT
        console.print(f"  {item.resource_type} {item.name}: {item.status}", style)


def _print_sweep(console: ConsoleProtocol, sweep: AccountSweep) -> None:
    _print_report(console, "Velero buckets", sweep.velero_buckets)
    _print_report(console, "Untagged VPCs", sweep.untagged_vpcs)
    for cluster_id, report in sweep.clusters.items():
        _print_report(console, f"Cluster {cluster_id}", report)

    if sweep.retained:
        console.header("Retained (active OSD clusters)")
        for cluster, resources in sweep.retained.items():
            console.print(f"  {cluster}: {', '.join(r.id for r in resources)}", Style.DIM)

    total = sum((r for r in sweep.clusters.values()), Report())
    total = total + sweep.velero_buckets + sweep.untagged_vpcs
    console.newline()
    console.info(
        f"{len(total.items)} resources: "
        f"{total.count(ItemStatus.COMPLETE)} deleted, "
        f"{total.count(ItemStatus.DRY_RUN)} dry run, "
        f"{total.count(ItemStatus.SKIPPED)} skipped"
    )


@pipeline_app.command("cleanup-aws")
def cleanup_aws(
    region: str = typer.Option(..., "--region", help="AWS region to sweep"),
    dry_run: bool = typer.Option(
        True, "--dry-run/--no-dry-run", help="Report what would be deleted without deleting"
    ),
    delete_untagged_vpcs: bool = typer.Option(
        False, "--delete-untagged-vpcs", help="Also delete VPCs that carry no tags"
    ),
    cluster_ids: list[str] = typer.Option(
        [], "--cluster-id", help="Cluster to sweep (repeatable); default is every orphan"
    ),
    tags: list[str] = typer.Option(
        [], "--tag", help="Extra key=value tag the resources must carry (repeatable)"
    ),
    timeout: float = typer.Option(
        DEFAULT_SWEEP_TIMEOUT_SECONDS, "--timeout", help="Seconds to wait per cluster"
    ),
    poll_seconds: float = typer.Option(
        DEFAULT_SWEEP_POLL_SECONDS, "--poll-seconds", help="Seconds between sweep passes"
    ),
) -> None:
    """Delete AWS resources left behind by deleted clusters."""
    ctx = build_context()
    extra_tags = parse_key_values(ctx, tags, flag="--tag")
    clients = new_aws_clients(
        region=region,
        access_key_id=value_or_exit(require_env(AWS_ACCESS_KEY_ID), ctx),
        secret_access_key=value_or_exit(require_env(AWS_SECRET_ACCESS_KEY), ctx),
    )
    options = SweepOptions(
        region=region,
        cluster_ids=tuple(cluster_ids),
        extra_tags=extra_tags,
        dry_run=dry_run,
        delete_untagged_vpcs=delete_untagged_vpcs,
        timeout=timeout,
        poll_seconds=poll_seconds,
    )
    sweep = value_or_exit(sweep_account(clients, options, console=ctx.console, ctx=ctx.run), ctx)
    _print_sweep(ctx.console, sweep)
