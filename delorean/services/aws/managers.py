"""Resource managers of the cluster sweeper.

Each manager owns one AWS resource class: it finds the resources tagged
with a cluster id (through the Resource Groups Tagging API) and deletes
them. A deletion rejected because something still depends on the resource
is reported as skipped; the next sweep retries it. Resources that were
already gone are reported as complete.

Managers never mutate anything in dry-run mode.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from functools import partial
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from delorean.core.context import RunContext, TaskCancelled
from delorean.core.result import Err, Ok, Result
from delorean.core.tasks import run_tasks
from delorean.output.console import ConsoleProtocol
from delorean.services.aws.errors import SweepError
from delorean.services.aws.report import ItemStatus, Report, ReportItem

__all__ = [
    "CLUSTER_TAG",
    "AwsClients",
    "ElastiCacheManager",
    "RDSInstanceManager",
    "ResourceManager",
    "S3BucketManager",
    "TaggedResource",
    "TaggedResourceFinder",
    "classify_error",
    "default_managers",
    "empty_bucket",
    "error_code",
    "tag_filters",
]

CLUSTER_TAG = "integreatly.org/clusterID"
STATUS_DELETING = "deleting"

DEFAULT_DELETE_WORKERS = 5

_DEPENDENCY_CODES = frozenset(
    {
        "DependencyViolation",
        "CacheSubnetGroupInUse",
        "InvalidDBSubnetGroupStateFault",
        "InvalidCacheSubnetGroupStateFault",
    }
)


@dataclass(frozen=True, slots=True)
class TaggedResource:
    arn: str
    tags: Mapping[str, str]

    @property
    def resource_id(self) -> str:
        """Last element of the ARN (``.../subnet-0abc`` or ``...:db:name``)."""
        return self.arn.rsplit("/", 1)[-1].rsplit(":", 1)[-1]


@dataclass(frozen=True, slots=True)
class AwsClients:
    """boto3 clients of one region."""

    tagging: Any
    ec2: Any
    rds: Any
    elasticache: Any
    s3: Any


def tag_filters(cluster_id: str, extra: Mapping[str, str]) -> list[dict[str, Any]]:
    filters: list[dict[str, Any]] = [{"Key": CLUSTER_TAG, "Values": [cluster_id]}]
    filters.extend({"Key": key, "Values": [value]} for key, value in extra.items())
    return filters


def error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def classify_error(code: str) -> ItemStatus | None:
    """Report status for a rejected deletion; None when it is a real failure."""
    if code == "NoSuchBucket" or "NotFound" in code:
        return ItemStatus.COMPLETE
    if code in _DEPENDENCY_CODES:
        return ItemStatus.SKIPPED
    if code.startswith("Invalid") and "State" in code:
        return ItemStatus.IN_PROGRESS
    return None


class TaggedResourceFinder:
    def __init__(self, client: Any) -> None:
        self._client = client

    def find(
        self, resource_type: str, tag_filter: list[dict[str, Any]]
    ) -> Result[list[TaggedResource], SweepError]:
        found: list[TaggedResource] = []
        try:
            paginator = self._client.get_paginator("get_resources")
            pages = paginator.paginate(ResourceTypeFilters=[resource_type], TagFilters=tag_filter)
            for page in pages:
                for mapping in page.get("ResourceTagMappingList", []):
                    tags = {t["Key"]: t["Value"] for t in mapping.get("Tags", [])}
                    found.append(TaggedResource(arn=mapping["ResourceARN"], tags=tags))
        except (BotoCoreError, ClientError) as e:
            message = f"failed to list {resource_type} resources"
            return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
        return Ok(found)


class ResourceManager:
    """Sweeps one tagged resource class.

    Subclasses set ``name`` and ``resource_type`` and implement
    :meth:`delete`, which returns the status of an accepted deletion and
    raises ``ClientError`` when AWS rejects it.
    """

    name: str = ""
    resource_type: str = ""

    def __init__(
        self,
        clients: AwsClients,
        *,
        console: ConsoleProtocol,
        workers: int = DEFAULT_DELETE_WORKERS,
    ) -> None:
        self.clients = clients
        self.console = console
        self.workers = workers
        self._finder = TaggedResourceFinder(clients.tagging)

    def discover(
        self, cluster_id: str, extra_tags: Mapping[str, str]
    ) -> Result[list[TaggedResource], SweepError]:
        return self._finder.find(self.resource_type, tag_filters(cluster_id, extra_tags))

    def delete(self, resource: TaggedResource) -> ItemStatus:
        raise NotImplementedError

    def sweep_one(
        self, resource: TaggedResource, *, dry_run: bool
    ) -> Result[ReportItem, SweepError]:
        name = resource.resource_id
        if dry_run:
            self.console.debug(f"[{self.name}] dry run, would delete {name}")
            return Ok(self._item(resource, ItemStatus.DRY_RUN))

        try:
            status = self.delete(resource)
        except ClientError as e:
            code = error_code(e)
            classified = classify_error(code)
            if classified is None:
                message = f"failed to delete {self.resource_type} {name}"
                return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
            self.console.debug(f"[{self.name}] {name}: {code}, reported as {classified}")
            status = classified
        except BotoCoreError as e:
            message = f"failed to delete {self.resource_type} {name}"
            return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
        return Ok(self._item(resource, status))

    def _item(self, resource: TaggedResource, status: ItemStatus) -> ReportItem:
        return ReportItem(
            id=resource.arn,
            name=resource.resource_id,
            resource_type=self.resource_type,
            status=status,
        )

    def sweep(
        self,
        cluster_id: str,
        extra_tags: Mapping[str, str],
        *,
        dry_run: bool,
        ctx: RunContext,
    ) -> Result[Report, SweepError | TaskCancelled]:
        found = self.discover(cluster_id, extra_tags)
        if isinstance(found, Err):
            return found
        self.console.debug(f"[{self.name}] found {len(found.value)} resources")

        tasks = [partial(self.sweep_one, resource, dry_run=dry_run) for resource in found.value]
        items = run_tasks(tasks, max_workers=self.workers, ctx=ctx)
        if isinstance(items, Err):
            return items
        return Ok(Report(items=tuple(items.value)))


class RDSInstanceManager(ResourceManager):
    name = "rds"
    resource_type = "rds:db"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        rds = self.clients.rds
        identifier = resource.resource_id
        described = rds.describe_db_instances(DBInstanceIdentifier=identifier)
        instances = described.get("DBInstances", [])
        if not instances:
            return ItemStatus.COMPLETE
        instance = instances[0]
        if instance.get("DBInstanceStatus") == STATUS_DELETING:
            return ItemStatus.IN_PROGRESS
        if instance.get("DeletionProtection"):
            rds.modify_db_instance(
                DBInstanceIdentifier=identifier, DeletionProtection=False, ApplyImmediately=True
            )
        rds.delete_db_instance(
            DBInstanceIdentifier=identifier,
            SkipFinalSnapshot=True,
            DeleteAutomatedBackups=True,
        )
        return ItemStatus.IN_PROGRESS


class ElastiCacheManager(ResourceManager):
    """Replication groups, found through their tagged cache clusters.

    Cache subnet groups carry no tags; the groups used by swept replication
    groups are remembered per cluster and deleted once the caches are gone.
    """

    name = "elasticache"
    resource_type = "elasticache:cluster"

    def __init__(
        self,
        clients: AwsClients,
        *,
        console: ConsoleProtocol,
        workers: int = DEFAULT_DELETE_WORKERS,
    ) -> None:
        super().__init__(clients, console=console, workers=workers)
        self._subnet_groups: dict[str, set[str]] = {}

    def discover(
        self, cluster_id: str, extra_tags: Mapping[str, str]
    ) -> Result[list[TaggedResource], SweepError]:
        found = super().discover(cluster_id, extra_tags)
        if isinstance(found, Err):
            return found

        remembered = self._subnet_groups.setdefault(cluster_id, set())
        groups: dict[str, TaggedResource] = {}
        for cache in found.value:
            clusters = self._describe_cache_cluster(cache.resource_id)
            if isinstance(clusters, Err):
                return clusters
            for cluster in clusters.value:
                group_id = cluster.get("ReplicationGroupId")
                if group_id and group_id not in groups:
                    groups[group_id] = TaggedResource(
                        arn=f"replicationgroup:{group_id}", tags=cache.tags
                    )
                subnet_group = cluster.get("CacheSubnetGroupName")
                if subnet_group:
                    remembered.add(subnet_group)

        subnet_groups = [
            TaggedResource(arn=f"subnetgroup:{name}", tags={})
            for name in sorted(remembered)
        ]
        return Ok(list(groups.values()) + subnet_groups)

    def _describe_cache_cluster(self, cache_id: str) -> Result[list[dict[str, Any]], SweepError]:
        try:
            described = self.clients.elasticache.describe_cache_clusters(CacheClusterId=cache_id)
        except ClientError as e:
            # Deleted between the tag lookup and now.
            if classify_error(error_code(e)) == ItemStatus.COMPLETE:
                return Ok([])
            message = f"failed to describe cache cluster {cache_id}"
            return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
        except BotoCoreError as e:
            message = f"failed to describe cache cluster {cache_id}"
            return Err(SweepError(kind="remote_failed", message=message, hint=str(e)))
        return Ok(list(described.get("CacheClusters", [])))

    def _forget_subnet_group(self, name: str) -> None:
        for remembered in self._subnet_groups.values():
            remembered.discard(name)

    def delete(self, resource: TaggedResource) -> ItemStatus:
        elasticache = self.clients.elasticache
        kind, _, identifier = resource.arn.partition(":")
        if kind == "subnetgroup":
            try:
                elasticache.delete_cache_subnet_group(CacheSubnetGroupName=identifier)
            except ClientError as e:
                if classify_error(error_code(e)) == ItemStatus.COMPLETE:
                    self._forget_subnet_group(identifier)
                raise
            self._forget_subnet_group(identifier)
            return ItemStatus.COMPLETE

        described = elasticache.describe_replication_groups(ReplicationGroupId=identifier)
        groups = described.get("ReplicationGroups", [])
        if groups and groups[0].get("Status") == STATUS_DELETING:
            return ItemStatus.IN_PROGRESS
        elasticache.delete_replication_group(
            ReplicationGroupId=identifier, RetainPrimaryCluster=False
        )
        return ItemStatus.IN_PROGRESS


class RDSSnapshotManager(ResourceManager):
    name = "rds-snapshot"
    resource_type = "rds:snapshot"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.rds.delete_db_snapshot(DBSnapshotIdentifier=resource.resource_id)
        return ItemStatus.COMPLETE


class ElastiCacheSnapshotManager(ResourceManager):
    name = "elasticache-snapshot"
    resource_type = "elasticache:snapshot"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.elasticache.delete_snapshot(SnapshotName=resource.resource_id)
        return ItemStatus.COMPLETE


class RDSSubnetGroupManager(ResourceManager):
    name = "rds-subnet-group"
    resource_type = "rds:subgrp"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.rds.delete_db_subnet_group(DBSubnetGroupName=resource.resource_id)
        return ItemStatus.COMPLETE


def empty_bucket(s3: Any, bucket: str) -> None:
    """Delete every object (and object version) of ``bucket``."""
    paginator = s3.get_paginator("list_object_versions")
    for page in paginator.paginate(Bucket=bucket):
        keys = [
            {"Key": v["Key"], "VersionId": v["VersionId"]}
            for v in page.get("Versions", []) + page.get("DeleteMarkers", [])
        ]
        if keys:
            s3.delete_objects(Bucket=bucket, Delete={"Objects": keys, "Quiet": True})


class S3BucketManager(ResourceManager):
    name = "s3"
    resource_type = "s3"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        bucket = resource.resource_id
        empty_bucket(self.clients.s3, bucket)
        self.clients.s3.delete_bucket(Bucket=bucket)
        return ItemStatus.COMPLETE


class VpcPeeringManager(ResourceManager):
    name = "vpc-peering"
    resource_type = "ec2:vpc-peering-connection"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.ec2.delete_vpc_peering_connection(VpcPeeringConnectionId=resource.resource_id)
        return ItemStatus.COMPLETE


class SubnetManager(ResourceManager):
    name = "subnet"
    resource_type = "ec2:subnet"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.ec2.delete_subnet(SubnetId=resource.resource_id)
        return ItemStatus.COMPLETE


class SecurityGroupManager(ResourceManager):
    name = "security-group"
    resource_type = "ec2:security-group"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.ec2.delete_security_group(GroupId=resource.resource_id)
        return ItemStatus.COMPLETE


class RouteTableManager(ResourceManager):
    name = "route-table"
    resource_type = "ec2:route-table"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.ec2.delete_route_table(RouteTableId=resource.resource_id)
        return ItemStatus.COMPLETE


class VpcManager(ResourceManager):
    name = "vpc"
    resource_type = "ec2:vpc"

    def delete(self, resource: TaggedResource) -> ItemStatus:
        self.clients.ec2.delete_vpc(VpcId=resource.resource_id)
        return ItemStatus.COMPLETE


# Leaf resources first; networks last.
MANAGER_ORDER: tuple[type[ResourceManager], ...] = (
    RDSInstanceManager,
    ElastiCacheManager,
    RDSSnapshotManager,
    ElastiCacheSnapshotManager,
    RDSSubnetGroupManager,
    S3BucketManager,
    VpcPeeringManager,
    SubnetManager,
    SecurityGroupManager,
    RouteTableManager,
    VpcManager,
)


def default_managers(
    clients: AwsClients, *, console: ConsoleProtocol, workers: int = DEFAULT_DELETE_WORKERS
) -> list[ResourceManager]:
    return [cls(clients, console=console, workers=workers) for cls in MANAGER_ORDER]
