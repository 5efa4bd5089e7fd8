"""Idempotent import of test reports from a bucket into a reporting sink.

Every object goes through the same pipeline: read its tags, skip it if it
carries the processed tag, filter on key, download, let the sink prepare a
payload (which may skip it with a reason), submit, wait for the sink to
finish, then write the processed tag back. The tag write is the commit
point: an object whose tag write fails is imported again on the next run.

Objects are fanned out through :func:`delorean.core.tasks.run_tasks`; the
pipeline of one object is sequential.
"""

from __future__ import annotations

import json
import tempfile
import zipfile
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Literal, Protocol

from delorean.core.context import RunContext, TaskCancelled
from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_str_dict, get_str
from delorean.core.tasks import run_tasks
from delorean.output.console import ConsoleProtocol, Style
from delorean.services.report.errors import ReportError
from delorean.services.report.store import ObjectStore

__all__ = [
    "ImportJob",
    "ImportSummary",
    "ObjectFilter",
    "ObjectResult",
    "ProcessedTag",
    "Sink",
    "Skipped",
    "TestMetadata",
    "import_object",
    "read_archive_member",
    "read_metadata",
    "run_import",
    "wait_until",
]

METADATA_FILE = "metadata.json"
ALL_SCOPE = "All"


@dataclass(frozen=True, slots=True)
class ProcessedTag:
    key: str
    value: str = "true"

    def present_in(self, tags: dict[str, str]) -> bool:
        return tags.get(self.key) == self.value


@dataclass(frozen=True, slots=True)
class ObjectFilter:
    suffix: str = ""
    prefix: str = ""

    def rejection(self, key: str) -> str | None:
        """Why ``key`` is filtered out, or None when it is accepted."""
        if self.prefix and not key.startswith(self.prefix):
            return f"key does not start with {self.prefix}"
        if self.suffix and not key.endswith(self.suffix):
            return f"key does not end with {self.suffix}"
        return None


@dataclass(frozen=True, slots=True)
class Skipped:
    reason: str


@dataclass(frozen=True, slots=True)
class TestMetadata:
    """``metadata.json`` written next to the results of a test run."""

    __test__ = False

    name: str
    version: str
    job_url: str


class Sink[P](Protocol):
    name: str

    def prepare(self, key: str, path: Path) -> Result[P | Skipped, ReportError]:
        """Build the payload for a downloaded object, or skip it."""
        ...

    def submit(self, key: str, payload: P) -> Result[str, ReportError]:
        """Send the payload; returns the sink's id for it."""
        ...

    def wait(self, key: str, submission_id: str, *, ctx: RunContext) -> Result[None, ReportError]:
        """Block until the sink reports the submission as finished."""
        ...


@dataclass(frozen=True, slots=True)
class ImportJob:
    bucket: str
    tag: ProcessedTag
    filter: ObjectFilter = field(default_factory=ObjectFilter)
    workers: int = 10
    tagging: bool = True
    delimiter: str = "/"


ObjectStatus = Literal["imported", "already_processed", "filtered", "skipped"]


@dataclass(frozen=True, slots=True)
class ObjectResult:
    key: str
    status: ObjectStatus
    detail: str = ""


@dataclass(frozen=True, slots=True)
class ImportSummary:
    results: tuple[ObjectResult, ...] = ()

    def count(self, status: ObjectStatus) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def imported(self) -> list[str]:
        return [r.key for r in self.results if r.status == "imported"]


# -----------------------------------------------------------------------------
# Archive helpers
# -----------------------------------------------------------------------------


def read_archive_member(archive: Path, member: str) -> Result[bytes, ReportError]:
    try:
        with zipfile.ZipFile(archive) as zf:
            return Ok(zf.read(member))
    except KeyError:
        message = f"{member} not found in {archive.name}"
        return Err(ReportError(kind="invalid_input", message=message))
    except (OSError, zipfile.BadZipFile) as e:
        return Err(ReportError(kind="invalid_input", message=f"can not read {archive.name}: {e}"))


def read_metadata(archive: Path) -> Result[TestMetadata, ReportError]:
    raw = read_archive_member(archive, METADATA_FILE)
    if isinstance(raw, Err):
        return raw
    try:
        obj: object = json.loads(raw.value.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        return Err(ReportError(kind="invalid_input", message=f"invalid {METADATA_FILE}: {e}"))

    data = as_str_dict(obj)
    if data is None:
        return Err(ReportError(kind="invalid_input", message=f"{METADATA_FILE} is not an object"))
    return Ok(
        TestMetadata(
            name=get_str(data, "name") or "",
            version=get_str(data, "rhmiVersion") or "",
            job_url=get_str(data, "jobURL") or "",
        )
    )


# -----------------------------------------------------------------------------
# Polling
# -----------------------------------------------------------------------------


def wait_until(
    check: Callable[[], Result[bool, ReportError]],
    *,
    ctx: RunContext,
    interval: float,
    timeout: float,
    what: str,
) -> Result[None, ReportError]:
    """Call ``check`` every ``interval`` seconds until it returns Ok(True).

    The context is consulted after each sleep; the whole wait is bounded by
    ``timeout``.
    """
    bounded = ctx.with_timeout(timeout)
    while True:
        slept = bounded.sleep(interval)
        if isinstance(slept, Err):
            kind = "timeout" if slept.error.kind == "timeout" else "cancelled"
            return Err(ReportError(kind=kind, message=f"{what}: {slept.error.message}"))

        done = check()
        if isinstance(done, Err):
            return done
        if done.value:
            return Ok(None)


# -----------------------------------------------------------------------------
# Pipeline
# -----------------------------------------------------------------------------


def import_object[P](
    key: str,
    *,
    store: ObjectStore,
    sink: Sink[P],
    job: ImportJob,
    console: ConsoleProtocol,
    ctx: RunContext,
) -> Result[ObjectResult, ReportError]:
    """Run the pipeline for one object."""
    console.scoped(key, "Start processing object")

    tags = store.get_tags(job.bucket, key)
    if isinstance(tags, Err):
        return tags
    if job.tag.present_in(tags.value):
        console.scoped(key, f"File in bucket {job.bucket} has been processed already. Ignored.")
        return Ok(ObjectResult(key=key, status="already_processed"))

    rejection = job.filter.rejection(key)
    if rejection is not None:
        console.scoped(key, f"Ignored: {rejection}", Style.DIM)
        return Ok(ObjectResult(key=key, status="filtered", detail=rejection))

    with tempfile.TemporaryDirectory(prefix="delorean-import-") as tmp:
        console.scoped(key, f"Downloading file from s3 bucket {job.bucket}")
        downloaded = store.download(job.bucket, key, Path(tmp) / Path(key).name)
        if isinstance(downloaded, Err):
            return downloaded

        prepared = sink.prepare(key, downloaded.value)
        if isinstance(prepared, Err):
            return prepared
        if isinstance(prepared.value, Skipped):
            console.scoped(key, f"Skipped: {prepared.value.reason}")
            return Ok(ObjectResult(key=key, status="skipped", detail=prepared.value.reason))

        console.scoped(key, f"Uploading results to {sink.name}")
        submitted = sink.submit(key, prepared.value)
        if isinstance(submitted, Err):
            return submitted

    waited = sink.wait(key, submitted.value, ctx=ctx)
    if isinstance(waited, Err):
        return waited

    if not job.tagging:
        console.scoped(key, "Skip adding tags")
        return Ok(ObjectResult(key=key, status="imported", detail=submitted.value))

    console.scoped(key, f"Adding tag {job.tag.key}={job.tag.value} to s3 object")
    updated = dict(tags.value)
    updated[job.tag.key] = job.tag.value
    written = store.put_tags(job.bucket, key, updated)
    if isinstance(written, Err):
        return written

    console.scoped(key, "Tags updated")
    return Ok(ObjectResult(key=key, status="imported", detail=submitted.value))


def run_import[P](
    *,
    store: ObjectStore,
    sink: Sink[P],
    job: ImportJob,
    console: ConsoleProtocol,
    ctx: RunContext,
) -> Result[ImportSummary, ReportError | TaskCancelled]:
    """Import every object of ``job.bucket`` into ``sink``."""
    console.scoped(ALL_SCOPE, f"Listing objects from bucket {job.bucket}")
    listed = store.list_objects(job.bucket, delimiter=job.delimiter)
    if isinstance(listed, Err):
        return listed
    console.scoped(ALL_SCOPE, f"Found {len(listed.value)} objects to process")

    tasks = [
        partial(import_object, obj.key, store=store, sink=sink, job=job, console=console, ctx=ctx)
        for obj in listed.value
    ]
    results = run_tasks(tasks, max_workers=job.workers, ctx=ctx)
    if isinstance(results, Err):
        return results

    summary = ImportSummary(results=tuple(results.value))
    console.scoped(
        ALL_SCOPE,
        f"Process completed: {summary.count('imported')} imported, "
        f"{summary.count('already_processed')} already processed, "
        f"{summary.count('skipped') + summary.count('filtered')} skipped",
    )
    return Ok(summary)
