"""Move processed reports into the ``archive/`` folder of their bucket.

An object is moved when it carries every tag of its bucket's config entry.
The move is copy-then-delete; objects whose copy fails stay where they are
and are retried on the next run.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial
from pathlib import Path

from delorean.core.context import RunContext, TaskCancelled
from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_obj_list, as_str_dict, get_str
from delorean.core.tasks import run_tasks
from delorean.output.console import ConsoleProtocol, Style
from delorean.platform.yaml_files import read_yaml
from delorean.services.report.errors import ReportError
from delorean.services.report.importer import ALL_SCOPE, ProcessedTag
from delorean.services.report.store import ObjectStore

__all__ = [
    "ARCHIVE_FOLDER",
    "BucketCleanup",
    "CleanupConfig",
    "cleanup_bucket",
    "load_cleanup_config",
    "run_cleanup",
]

ARCHIVE_FOLDER = "archive"


@dataclass(frozen=True, slots=True)
class BucketCleanup:
    bucket: str
    tags: tuple[ProcessedTag, ...]

    def matches(self, tags: dict[str, str]) -> bool:
        return all(tag.present_in(tags) for tag in self.tags)


@dataclass(frozen=True, slots=True)
class CleanupConfig:
    configs: tuple[BucketCleanup, ...]


def load_cleanup_config(path: Path) -> Result[CleanupConfig, ReportError]:
    """Load ``{configs: [{bucket, tags: [{key, value}]}]}``."""
    loaded = read_yaml(path)
    if isinstance(loaded, Err):
        return Err(ReportError(kind="invalid_input", message=loaded.error.message))
    data = as_str_dict(loaded.value)
    if data is None:
        return Err(ReportError(kind="invalid_input", message=f"{path} is not a YAML mapping"))

    entries: list[BucketCleanup] = []
    for index, raw in enumerate(as_obj_list(data.get("configs")) or []):
        item = as_str_dict(raw)
        bucket = get_str(item, "bucket") if item is not None else None
        if item is None or bucket is None:
            message = f"{path}: configs[{index}] needs a bucket"
            return Err(ReportError(kind="invalid_input", message=message))

        tags: list[ProcessedTag] = []
        for raw_tag in as_obj_list(item.get("tags")) or []:
            tag = as_str_dict(raw_tag)
            key = get_str(tag, "key") if tag is not None else None
            if tag is None or key is None:
                message = f"{path}: every tag of {bucket} needs a key"
                return Err(ReportError(kind="invalid_input", message=message))
            tags.append(ProcessedTag(key=key, value=get_str(tag, "value") or ""))
        entries.append(BucketCleanup(bucket=bucket, tags=tuple(tags)))

    return Ok(CleanupConfig(configs=tuple(entries)))


def cleanup_bucket(
    config: BucketCleanup, *, store: ObjectStore, console: ConsoleProtocol
) -> Result[list[str], ReportError]:
    """Archive the matching objects of one bucket; returns the moved keys."""
    bucket = config.bucket
    console.scoped(bucket, "List objects in bucket")
    listed = store.list_objects(bucket, delimiter="/")
    if isinstance(listed, Err):
        return listed
    console.scoped(bucket, f"Found {len(listed.value)} objects")

    to_copy: list[str] = []
    for obj in listed.value:
        tags = store.get_tags(bucket, obj.key)
        if isinstance(tags, Err):
            console.scoped(bucket, f"Skip object {obj.key} due to error: {tags.error.message}")
            continue
        if config.matches(tags.value):
            console.scoped(bucket, f"Object {obj.key} has matched tags and will be moved")
            to_copy.append(obj.key)
        else:
            console.scoped(bucket, f"Skip object {obj.key} as it doesn't have the required tags")

    copied: list[str] = []
    for key in to_copy:
        dest = f"{ARCHIVE_FOLDER}/{key}"
        result = store.copy(bucket, key, dest)
        if isinstance(result, Err):
            console.scoped(
                bucket, f"Failed to copy object {key}: {result.error.message}", Style.WARNING
            )
            continue
        console.scoped(bucket, f"Object {key} copied to {dest}")
        copied.append(key)

    if not copied:
        console.scoped(bucket, "No objects to move")
        return Ok([])

    console.scoped(bucket, f"Deleting {len(copied)} objects")
    deleted = store.delete(bucket, copied)
    if isinstance(deleted, Err):
        return deleted
    console.scoped(bucket, f"{len(copied)} objects deleted")
    return Ok(copied)


def run_cleanup(
    config: CleanupConfig, *, store: ObjectStore, console: ConsoleProtocol, ctx: RunContext
) -> Result[dict[str, list[str]], ReportError | TaskCancelled]:
    """Clean up every configured bucket in parallel."""
    tasks = [
        partial(cleanup_bucket, entry, store=store, console=console) for entry in config.configs
    ]
    moved = run_tasks(tasks, max_workers=max(1, len(tasks)), ctx=ctx)
    if isinstance(moved, Err):
        return moved
    console.scoped(ALL_SCOPE, "Process completed")
    return Ok({entry.bucket: keys for entry, keys in zip(config.configs, moved.value)})
