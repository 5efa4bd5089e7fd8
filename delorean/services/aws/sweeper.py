"""Sweep an AWS account of the resources left behind by deleted clusters.

Resources of a cluster carry the ``integreatly.org/clusterID`` tag. A
cluster whose id also appears in a ``kubernetes.io/cluster/<id>`` tag still
has a live OpenShift cluster behind it and is never swept.

Besides the tagged resources, the account sweep removes orphaned Velero
backup buckets and, on request, VPCs that carry no tags at all.

Usage:
    clients = new_aws_clients(region="eu-west-1", access_key_id=..., secret_access_key=...)
    match sweep_account(clients, options, console=console, ctx=ctx):
        case Ok(result):
            ...
        case Err(error):
            ...
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from delorean.core.context import RunContext, TaskCancelled
from delorean.core.result import Err, Ok, Result
from delorean.output.console import ConsoleProtocol, Style
from delorean.services.aws.errors import SweepError
from delorean.services.aws.managers import (
    CLUSTER_TAG,
    AwsClients,
    ResourceManager,
    classify_error,
    default_managers,
    empty_bucket,
    error_code,
)
from delorean.services.aws.report import ItemStatus, Report, ReportItem

__all__ = [
    "AccountResource",
    "AccountSweep",
    "ClusterInventory",
    "SweepOptions",
    "analyze_tags",
    "list_buckets",
    "list_vpcs",
    "new_aws_clients",
    "sweep_account",
    "sweep_cluster",
    "sweep_until_complete",
]

OSD_CLUSTER_TAG_PREFIX = "kubernetes.io/cluster/"
VELERO_BUCKET_MARKER = "managed-velero"

# GetBucketLocation returns no constraint for this region.
_DEFAULT_BUCKET_REGION = "us-east-1"

DEFAULT_SWEEP_TIMEOUT_SECONDS = 1800.0
DEFAULT_SWEEP_POLL_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class AccountResource:
    id: str
    resource_type: str
    tags: Mapping[str, str]


@dataclass(slots=True)
class ClusterInventory:
    """Account resources grouped by the cluster they belong to."""

    osd: dict[str, list[AccountResource]] = field(default_factory=dict)
    rhmi: dict[str, list[AccountResource]] = field(default_factory=dict)

    def orphaned_clusters(self) -> list[str]:
        """Cluster ids with RHMI resources and no live OSD cluster."""
        return sorted(cid for cid in self.rhmi if cid not in self.osd)

    def is_active(self, tags: Mapping[str, str]) -> bool:
        return any(value in self.osd for value in tags.values())


def analyze_tags(resources: Sequence[AccountResource]) -> ClusterInventory:
    inventory = ClusterInventory()
    for resource in resources:
        for key, value in resource.tags.items():
            if key.startswith(OSD_CLUSTER_TAG_PREFIX):
                cluster = key.removeprefix(OSD_CLUSTER_TAG_PREFIX)
                inventory.osd.setdefault(cluster, []).append(resource)
            elif key == CLUSTER_TAG:
                inventory.rhmi.setdefault(value, []).append(resource)
    return inventory


def _tags(raw: Sequence[Mapping[str, str]]) -> dict[str, str]:
    return {t["Key"]: t["Value"] for t in raw}


def list_vpcs(ec2: Any) -> Result[list[AccountResource], SweepError]:
    """Every non-default VPC of the region."""
    vpcs: list[AccountResource] = []
    try:
        for page in ec2.get_paginator("describe_vpcs").paginate():
            for vpc in page.get("Vpcs", []):
                if vpc.get("IsDefault"):
                    continue
                vpcs.append(
                    AccountResource(
                        id=vpc["VpcId"], resource_type="vpc", tags=_tags(vpc.get("Tags", []))
                    )
                )
    except (BotoCoreError, ClientError) as e:
        return Err(SweepError(kind="remote_failed", message="failed to list vpcs", hint=str(e)))
    return Ok(vpcs)


def list_buckets(
    s3: Any, *, region: str, console: ConsoleProtocol
) -> Result[list[AccountResource], SweepError]:
    """Buckets located in ``region``, with their tags."""
    try:
        listed = s3.list_buckets()
    except (BotoCoreError, ClientError) as e:
        message = "failed to list s3 buckets"
        return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))

    buckets: list[AccountResource] = []
    for bucket in listed.get("Buckets", []):
        name = bucket["Name"]
        try:
            location = s3.get_bucket_location(Bucket=name).get("LocationConstraint")
        except (BotoCoreError, ClientError) as e:
            console.debug(f"failed to get location of bucket {name} (ignored): {e}")
            continue
        if (location or _DEFAULT_BUCKET_REGION) != region:
            continue

        try:
            tag_set = s3.get_bucket_tagging(Bucket=name).get("TagSet", [])
        except ClientError as e:
            if error_code(e) != "NoSuchTagSet":
                console.warning(f"failed to get tags of bucket {name}: {e}")
                continue
            tag_set = []
        except BotoCoreError as e:
            console.warning(f"failed to get tags of bucket {name}: {e}")
            continue
        buckets.append(AccountResource(id=name, resource_type="s3", tags=_tags(tag_set)))
    return Ok(buckets)


def sweep_cluster(
    cluster_id: str,
    extra_tags: Mapping[str, str],
    *,
    managers: Sequence[ResourceManager],
    dry_run: bool,
    ctx: RunContext,
    console: ConsoleProtocol,
) -> Result[Report, SweepError | TaskCancelled]:
    """One pass over every resource class, in manager order."""
    report = Report()
    for manager in managers:
        swept = manager.sweep(cluster_id, extra_tags, dry_run=dry_run, ctx=ctx)
        if isinstance(swept, Err):
            return swept
        for item in swept.value.items:
            console.scoped(cluster_id, f"{manager.name} {item.name}: {item.status}")
        report = report + swept.value
    return Ok(report)


def sweep_until_complete(
    cluster_id: str,
    extra_tags: Mapping[str, str],
    *,
    managers: Sequence[ResourceManager],
    dry_run: bool,
    ctx: RunContext,
    console: ConsoleProtocol,
    timeout: float = DEFAULT_SWEEP_TIMEOUT_SECONDS,
    poll_seconds: float = DEFAULT_SWEEP_POLL_SECONDS,
) -> Result[Report, SweepError]:
    """Repeat :func:`sweep_cluster` until every item is complete.

    A dry run makes a single pass.
    """
    bounded = ctx.with_timeout(timeout)
    previous = Report()
    while True:
        swept = sweep_cluster(
            cluster_id,
            extra_tags,
            managers=managers,
            dry_run=dry_run,
            ctx=bounded,
            console=console,
        )
        if isinstance(swept, Err):
            error = swept.error
            if isinstance(error, TaskCancelled):
                return Err(SweepError(kind=error.kind, message=f"{cluster_id}: {error.message}"))
            return Err(error)

        report = swept.value.merge_forward(previous)
        if dry_run or report.all_items_complete():
            return Ok(report)

        pending = report.pending()
        console.scoped(
            cluster_id,
            f"{len(pending)} resources not deleted yet, retrying in {poll_seconds:g}s",
            Style.DIM,
        )
        slept = bounded.sleep(poll_seconds)
        if isinstance(slept, Err):
            names = ", ".join(item.name for item in pending[:5])
            return Err(
                SweepError(
                    kind=slept.error.kind,
                    message=f"{cluster_id}: {len(pending)} resources not deleted",
                    hint=names or None,
                )
            )
        previous = report


@dataclass(frozen=True, slots=True)
class SweepOptions:
    region: str
    cluster_ids: tuple[str, ...] = ()
    extra_tags: Mapping[str, str] = field(default_factory=dict)
    dry_run: bool = True
    delete_untagged_vpcs: bool = False
    timeout: float = DEFAULT_SWEEP_TIMEOUT_SECONDS
    poll_seconds: float = DEFAULT_SWEEP_POLL_SECONDS


@dataclass(frozen=True, slots=True)
class AccountSweep:
    clusters: dict[str, Report]
    velero_buckets: Report
    untagged_vpcs: Report
    retained: dict[str, list[AccountResource]]


def _delete_resource(
    resource: AccountResource,
    *,
    delete: Callable[[str], object],
    dry_run: bool,
    console: ConsoleProtocol,
) -> Result[ReportItem, SweepError]:
    item = ReportItem(
        id=resource.id,
        name=resource.id,
        resource_type=resource.resource_type,
        status=ItemStatus.DRY_RUN,
    )
    if dry_run:
        console.info(f"would delete {resource.resource_type} {resource.id}")
        return Ok(item)
    try:
        delete(resource.id)
    except ClientError as e:
        status = classify_error(error_code(e))
        if status is None:
            message = f"failed to delete {resource.resource_type} {resource.id}"
            return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
        console.warning(f"{resource.resource_type} {resource.id}: {error_code(e)}")
        return Ok(replace(item, status=status))
    except BotoCoreError as e:
        message = f"failed to delete {resource.resource_type} {resource.id}"
        return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
    console.success(f"{resource.resource_type} {resource.id} deleted")
    return Ok(replace(item, status=ItemStatus.COMPLETE))


def _delete_each(
    resources: Sequence[AccountResource],
    *,
    delete: Callable[[str], object],
    dry_run: bool,
    console: ConsoleProtocol,
) -> Result[Report, SweepError]:
    items: list[ReportItem] = []
    for resource in resources:
        deleted = _delete_resource(resource, delete=delete, dry_run=dry_run, console=console)
        if isinstance(deleted, Err):
            return deleted
        items.append(deleted.value)
    return Ok(Report(items=tuple(items)))


def sweep_account(
    clients: AwsClients,
    options: SweepOptions,
    *,
    console: ConsoleProtocol,
    ctx: RunContext,
    managers: Sequence[ResourceManager] | None = None,
) -> Result[AccountSweep, SweepError]:
    if options.dry_run:
        console.header("DRY RUN (no AWS resources will be deleted)")

    vpcs = list_vpcs(clients.ec2)
    if isinstance(vpcs, Err):
        return vpcs
    buckets = list_buckets(clients.s3, region=options.region, console=console)
    if isinstance(buckets, Err):
        return buckets
    inventory = analyze_tags([*buckets.value, *vpcs.value])

    def delete_bucket(name: str) -> None:
        empty_bucket(clients.s3, name)
        clients.s3.delete_bucket(Bucket=name)

    velero = [
        b
        for b in buckets.value
        if VELERO_BUCKET_MARKER in b.id and not inventory.is_active(b.tags)
    ]
    velero_report = _delete_each(
        velero, delete=delete_bucket, dry_run=options.dry_run, console=console
    )
    if isinstance(velero_report, Err):
        return velero_report

    untagged_report = Report()
    if options.delete_untagged_vpcs:
        untagged = [v for v in vpcs.value if not v.tags]
        deleted = _delete_each(
            untagged,
            delete=lambda vpc_id: clients.ec2.delete_vpc(VpcId=vpc_id),
            dry_run=options.dry_run,
            console=console,
        )
        if isinstance(deleted, Err):
            return deleted
        untagged_report = deleted.value

    if options.cluster_ids:
        cluster_ids = list(options.cluster_ids)
    else:
        cluster_ids = inventory.orphaned_clusters()
        console.info(f"found {len(cluster_ids)} clusters without a live OSD cluster")

    sweepers = (
        list(managers) if managers is not None else default_managers(clients, console=console)
    )
    reports: dict[str, Report] = {}
    for cluster_id in cluster_ids:
        if cluster_id in inventory.osd:
            console.scoped(cluster_id, "cluster is still active, skipped", Style.WARNING)
            continue
        swept = sweep_until_complete(
            cluster_id,
            options.extra_tags,
            managers=sweepers,
            dry_run=options.dry_run,
            ctx=ctx,
            console=console,
            timeout=options.timeout,
            poll_seconds=options.poll_seconds,
        )
        if isinstance(swept, Err):
            return swept
        reports[cluster_id] = swept.value

    return Ok(
        AccountSweep(
            clusters=reports,
            velero_buckets=velero_report.value,
            untagged_vpcs=untagged_report,
            retained=inventory.osd,
        )
    )


def new_aws_clients(*, region: str, access_key_id: str, secret_access_key: str) -> AwsClients:
    session = boto3.Session(
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region,
    )
    return AwsClients(
        tagging=session.client("resourcegroupstaggingapi"),
        ec2=session.client("ec2"),
        rds=session.client("rds"),
        elasticache=session.client("elasticache"),
        s3=session.client("s3"),
    )
