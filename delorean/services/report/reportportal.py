"""ReportPortal sink: import a results zip as a launch, then label the launch."""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from delorean.core.context import RunContext
from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_str_dict, get_int, get_str
from delorean.services.report.errors import ReportError
from delorean.services.report.importer import ProcessedTag, Skipped, read_metadata

__all__ = ["DEFAULT_REPORTPORTAL_URL", "REPORTPORTAL_TAG", "LaunchPayload", "ReportPortalSink"]

DEFAULT_REPORTPORTAL_URL = "https://reportportal-cloud-services.cloud.paas.psi.redhat.com"
REPORTPORTAL_TAG = ProcessedTag(key="rp", value="true")

_HTTP_TIMEOUT_SECONDS = 120.0

# "Launch with id = b862b3c3-a9ce-47d1-9f5c-e51ae9de50f3 is successfully imported."
_LAUNCH_UUID = re.compile(r"=\s*'?([A-Za-z0-9-]+)'?\s")


@dataclass(frozen=True, slots=True)
class LaunchPayload:
    archive: Path
    launch_name: str
    description: str
    tags: tuple[str, ...]


def launch_uuid(message: str) -> str | None:
    match = _LAUNCH_UUID.search(message)
    return match.group(1) if match else None


class ReportPortalSink:
    name = "ReportPortal"

    def __init__(
        self,
        *,
        project: str,
        token: str,
        base_url: str = DEFAULT_REPORTPORTAL_URL,
        session: requests.Session | None = None,
    ) -> None:
        self._project = project
        self._api = f"{base_url.rstrip('/')}/api/v1/{project}"
        self._session = session or requests.Session()
        self._session.headers["Authorization"] = f"Bearer {token}"
        self._session.headers["Accept"] = "application/json"

    def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> Result[dict[str, object], ReportError]:
        try:
            response = self._session.request(method, url, timeout=_HTTP_TIMEOUT_SECONDS, **kwargs)
            response.raise_for_status()
            payload: object = response.json() if response.content else {}
        except requests.RequestException as e:
            message = f"ReportPortal {method} {url} failed"
            return Err(ReportError(kind="remote_failed", message=message, hint=str(e)))
        except ValueError as e:
            message = f"ReportPortal returned invalid JSON: {e}"
            return Err(ReportError(kind="remote_failed", message=message, hint=url))
        return Ok(as_str_dict(payload) or {})

    def prepare(self, key: str, path: Path) -> Result[LaunchPayload | Skipped, ReportError]:
        metadata = read_metadata(path)
        if isinstance(metadata, Err):
            return metadata
        m = metadata.value
        if not m.version:
            return Ok(Skipped(reason=f"metadata of {m.name or key} has no rhmiVersion"))
        return Ok(
            LaunchPayload(
                archive=path,
                launch_name=m.name or Path(key).stem,
                description=m.job_url,
                tags=tuple(t for t in (m.name, m.version) if t),
            )
        )

    def submit(self, key: str, payload: LaunchPayload) -> Result[str, ReportError]:
        try:
            with payload.archive.open("rb") as fh:
                imported = self._request(
                    "POST",
                    f"{self._api}/launch/import",
                    files={"file": (f"{payload.launch_name}.zip", fh, "application/zip")},
                    data={"projectName": self._project},
                )
        except OSError as e:
            message = f"can not read {payload.archive}: {e}"
            return Err(ReportError(kind="invalid_input", message=message))
        if isinstance(imported, Err):
            return imported

        message = get_str(imported.value, "message") or ""
        uuid = launch_uuid(message)
        if uuid is None:
            return Err(
                ReportError(
                    kind="remote_failed",
                    message="ReportPortal import did not return a launch id",
                    hint=message or None,
                )
            )

        details = self._request("GET", f"{self._api}/launch/uuid/{uuid}")
        if isinstance(details, Err):
            return details
        launch_id = get_int(details.value, "id")
        if launch_id is None:
            message = f"launch {uuid} has no numeric id"
            return Err(ReportError(kind="remote_failed", message=message))

        updated = self._request(
            "PUT",
            f"{self._api}/launch/{launch_id}/update",
            json={"description": payload.description, "tags": list(payload.tags)},
        )
        if isinstance(updated, Err):
            return updated
        return Ok(uuid)

    def wait(self, key: str, submission_id: str, *, ctx: RunContext) -> Result[None, ReportError]:
        # The import endpoint is synchronous.
        return Ok(None)
