"""Polarion sink: convert the operator JUnit report to Polarion xUnit and import it.

The xUnit importer is asynchronous: an upload returns a job id whose status
is polled on the ``xunit-queue`` endpoint until it reaches ``SUCCESS``.
Test cases are linked to Polarion test cases through the ``A01_`` style
prefix of their name; cases without one are left out.
"""

from __future__ import annotations

import copy
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import requests

from delorean.core.context import RunContext
from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_obj_list, as_str_dict, get_path, get_str
from delorean.core.version import parse_version
from delorean.services.report.errors import ReportError
from delorean.services.report.importer import (
    ProcessedTag,
    Skipped,
    read_archive_member,
    read_metadata,
    wait_until,
)

__all__ = [
    "POLARION_IMPORT_URL",
    "POLARION_STAGE_IMPORT_URL",
    "POLARION_TAG",
    "PolarionSink",
    "junit_to_xunit",
]

POLARION_IMPORT_URL = "https://polarion.engineering.redhat.com/polarion/import"
POLARION_STAGE_IMPORT_URL = "https://polarion.stage.engineering.redhat.com/polarion/import"
POLARION_PROJECT_ID = "RedHatManagedIntegration"
POLARION_TAG = ProcessedTag(key="polarion", value="true")

OPERATOR_JUNIT = "integreatly-operator-test/results/junit-integreatly-operator.xml"

READY = "READY"
RUNNING = "RUNNING"
SUCCESS = "SUCCESS"

_HTTP_TIMEOUT_SECONDS = 120.0
_TESTCASE_ID = re.compile(r"^(?:.+/)*?([A-Z][0-9]{2})_.*$")


@dataclass(frozen=True, slots=True)
class XUnitPayload:
    document: bytes
    title: str


def _property(parent: ET.Element, name: str, value: str) -> None:
    ET.SubElement(parent, "property", {"name": name, "value": value})


def junit_to_xunit(
    junit: bytes, *, project_id: str, title: str, template_id: str
) -> Result[bytes, ReportError]:
    """Wrap the first JUnit test suite into a Polarion xUnit document."""
    try:
        root = ET.fromstring(junit)
    except ET.ParseError as e:
        return Err(ReportError(kind="invalid_input", message=f"invalid JUnit XML: {e}"))

    suite = root if root.tag == "testsuite" else root.find("testsuite")
    if suite is None:
        return Err(ReportError(kind="invalid_input", message="JUnit report has no testsuite"))

    out = ET.Element("testsuites")
    properties = ET.SubElement(out, "properties")
    _property(properties, "polarion-project-id", project_id)
    _property(properties, "polarion-testrun-title", title)
    _property(properties, "polarion-testrun-template-id", template_id)
    _property(properties, "polarion-lookup-method", "custom")

    out_suite = ET.SubElement(out, "testsuite", dict(suite.attrib))
    for child in suite:
        if child.tag != "testcase":
            out_suite.append(copy.deepcopy(child))
            continue
        match = _TESTCASE_ID.match(child.get("name", ""))
        if match is None:
            continue
        case = copy.deepcopy(child)
        case_properties = ET.SubElement(case, "properties")
        _property(case_properties, "polarion-testcase-id", match.group(1))
        out_suite.append(case)

    return Ok(ET.tostring(out, encoding="utf-8", xml_declaration=True))


class PolarionSink:
    name = "Polarion"

    def __init__(
        self,
        *,
        username: str,
        password: str,
        url: str = POLARION_IMPORT_URL,
        project_id: str = POLARION_PROJECT_ID,
        poll_seconds: float = 2.0,
        timeout_seconds: float = 1800.0,
        session: requests.Session | None = None,
    ) -> None:
        self.url = url.rstrip("/")
        self._project_id = project_id
        self._poll_seconds = poll_seconds
        self._timeout_seconds = timeout_seconds
        self._session = session or requests.Session()
        self._session.auth = (username, password)

    def _request(
        self, method: str, url: str, **kwargs: Any
    ) -> Result[dict[str, object], ReportError]:
        try:
            response = self._session.request(method, url, timeout=_HTTP_TIMEOUT_SECONDS, **kwargs)
            response.raise_for_status()
            payload: object = response.json()
        except requests.RequestException as e:
            message = f"Polarion {method} {url} failed"
            return Err(ReportError(kind="remote_failed", message=message, hint=str(e)))
        except ValueError as e:
            message = f"Polarion returned invalid JSON: {e}"
            return Err(ReportError(kind="remote_failed", message=message, hint=url))
        return Ok(as_str_dict(payload) or {})

    def prepare(self, key: str, path: Path) -> Result[XUnitPayload | Skipped, ReportError]:
        metadata = read_metadata(path)
        if isinstance(metadata, Err):
            return metadata
        m = metadata.value
        # master and nightly runs carry no version
        if not m.version:
            return Ok(Skipped(reason=f"ignore test results {m.name}: no rhmiVersion"))

        version = parse_version(m.version)
        if isinstance(version, Err):
            return Err(ReportError(kind="invalid_input", message=f"{key}: {version.error.message}"))

        junit = read_archive_member(path, OPERATOR_JUNIT)
        if isinstance(junit, Err):
            return junit

        title = f"RHMI {version.value} {m.name} Automated Tests"
        document = junit_to_xunit(
            junit.value,
            project_id=self._project_id,
            title=title,
            template_id=version.value.polarion_milestone_id,
        )
        if isinstance(document, Err):
            return document
        return Ok(XUnitPayload(document=document.value, title=title))

    def submit(self, key: str, payload: XUnitPayload) -> Result[str, ReportError]:
        response = self._request(
            "POST",
            f"{self.url}/xunit",
            files={"file": ("file.xml", payload.document, "application/xml")},
        )
        if isinstance(response, Err):
            return response

        job_ids = as_obj_list(get_path(response.value, "files", "file.xml", "job-ids")) or []
        if not job_ids:
            message = "polarion xunit importer didn't return the job id"
            return Err(ReportError(kind="remote_failed", message=message))
        return Ok(str(job_ids[0]))

    def job_status(self, job_id: str) -> Result[str, ReportError]:
        response = self._request(
            "GET",
            f"{self.url}/xunit-queue",
            params={"jobIds": job_id},
            headers={"Accept": "application/json"},
        )
        if isinstance(response, Err):
            return response

        jobs = as_obj_list(response.value.get("jobs")) or []
        first = as_str_dict(jobs[0]) if jobs else None
        status = get_str(first, "status") if first is not None else None
        if status is None:
            return Err(ReportError(kind="remote_failed", message=f"job with id {job_id} not found"))
        return Ok(status)

    def wait(self, key: str, submission_id: str, *, ctx: RunContext) -> Result[None, ReportError]:
        def finished() -> Result[bool, ReportError]:
            status = self.job_status(submission_id)
            if isinstance(status, Err):
                return status
            if status.value == SUCCESS:
                return Ok(True)
            if status.value in (READY, RUNNING):
                return Ok(False)
            return Err(
                ReportError(
                    kind="remote_failed",
                    message=f"[{key}] unknown job status {status.value}",
                    hint=f"{self.url}/xunit-log?jobId={submission_id}",
                )
            )

        return wait_until(
            finished,
            ctx=ctx,
            interval=self._poll_seconds,
            timeout=self._timeout_seconds,
            what=f"polarion job {submission_id}",
        )
