from __future__ import annotations

import io
import json
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Any

import yaml

from delorean.core.context import RunContext
from delorean.core.result import Err, Ok
from delorean.services.report.datahub import (
    DatahubSink,
    DowntimeSample,
    grouping_path,
    sample_count,
)
from delorean.services.report.importer import Skipped
from delorean.services.report.polarion import (
    OPERATOR_JUNIT,
    PolarionSink,
    XUnitPayload,
    junit_to_xunit,
)
from delorean.services.report.reportportal import ReportPortalSink, launch_uuid
from delorean.test.services._fakes import FakeResponse, FakeSession

JUNIT = b"""<?xml version="1.0" encoding="UTF-8"?>
<testsuites>
  <testsuite name="integreatly-operator" tests="3">
    <properties><property name="go.version" value="1.20"/></properties>
    <testcase name="Tests/A01_verify_crds" time="1.0"/>
    <testcase name="C03_check_alerts" time="2.0"><failure message="boom"/></testcase>
    <testcase name="setup" time="0.1"/>
  </testsuite>
</testsuites>
"""


def _archive(tmp_path: Path, metadata: dict[str, str], *, junit: bool = True) -> Path:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        zf.writestr("metadata.json", json.dumps(metadata))
        if junit:
            zf.writestr(OPERATOR_JUNIT, JUNIT)
    path = tmp_path / "results.zip"
    path.write_bytes(buffer.getvalue())
    return path


class TestJunitToXunit:
    def test_keeps_only_linked_cases(self) -> None:
        result = junit_to_xunit(JUNIT, project_id="RHMI", title="RHMI 2.1.0", template_id="v2_1_0_")
        assert isinstance(result, Ok)
        root = ET.fromstring(result.value)

        props = {p.get("name"): p.get("value") for p in root.findall("properties/property")}
        assert props["polarion-project-id"] == "RHMI"
        assert props["polarion-testrun-title"] == "RHMI 2.1.0"
        assert props["polarion-lookup-method"] == "custom"

        cases = root.findall("testsuite/testcase")
        assert [c.get("name") for c in cases] == ["Tests/A01_verify_crds", "C03_check_alerts"]
        ids = [p.get("value") for c in cases for p in c.findall("properties/property")]
        assert ids == ["A01", "C03"]
        assert cases[1].find("failure") is not None
        # Suite level children survive.
        assert root.find("testsuite/properties") is not None

    def test_invalid_xml(self) -> None:
        result = junit_to_xunit(b"<testsuite", project_id="p", title="t", template_id="x")
        assert isinstance(result, Err)
        assert result.error.kind == "invalid_input"


class TestPolarionSink:
    def _sink(self, handler: Any) -> tuple[PolarionSink, FakeSession]:
        session = FakeSession(handler)
        sink = PolarionSink(
            username="qe",
            password="secret",
            poll_seconds=0.001,
            timeout_seconds=5.0,
            session=session,
        )
        return sink, session

    def test_prepare_builds_title_and_milestone(self, tmp_path: Path) -> None:
        sink, session = self._sink(lambda *_: FakeResponse({}))
        archive = _archive(tmp_path, {"name": "osd-e2e", "rhmiVersion": "2.1.0-rc1"})
        result = sink.prepare("results.zip", archive)
        assert isinstance(result, Ok)
        payload = result.value
        assert not isinstance(payload, Skipped)
        assert payload.title == "RHMI 2.1.0-rc1 osd-e2e Automated Tests"
        root = ET.fromstring(payload.document)
        props = {p.get("name"): p.get("value") for p in root.findall("properties/property")}
        assert props["polarion-testrun-template-id"] == "v2_1_0_rc1"
        assert session.auth == ("qe", "secret")

    def test_prepare_skips_runs_without_version(self, tmp_path: Path) -> None:
        sink, _ = self._sink(lambda *_: FakeResponse({}))
        archive = _archive(tmp_path, {"name": "nightly"})
        result = sink.prepare("results.zip", archive)
        assert isinstance(result, Ok)
        assert isinstance(result.value, Skipped)

    def test_prepare_without_junit(self, tmp_path: Path) -> None:
        sink, _ = self._sink(lambda *_: FakeResponse({}))
        archive = _archive(tmp_path, {"name": "e2e", "rhmiVersion": "2.1.0"}, junit=False)
        assert isinstance(sink.prepare("results.zip", archive), Err)

    def test_submit_and_wait(self) -> None:
        statuses = ["READY", "RUNNING", "SUCCESS"]

        def handler(method: str, url: str, kwargs: dict[str, Any]) -> FakeResponse:
            if method == "POST":
                return FakeResponse({"files": {"file.xml": {"job-ids": [4242]}}})
            assert kwargs["params"] == {"jobIds": "4242"}
            return FakeResponse({"jobs": [{"id": 4242, "status": statuses.pop(0)}]})

        sink, session = self._sink(handler)
        submitted = sink.submit("r.zip", _payload())
        assert submitted == Ok("4242")
        assert session.calls[0].url.endswith("/polarion/import/xunit")

        assert sink.wait("r.zip", "4242", ctx=RunContext.background()) == Ok(None)
        assert statuses == []

    def test_submit_without_job_id(self) -> None:
        sink, _ = self._sink(lambda *_: FakeResponse({"files": {}}))
        result = sink.submit("r.zip", _payload())
        assert isinstance(result, Err)
        assert "job id" in result.error.message

    def test_failed_job(self) -> None:
        sink, _ = self._sink(lambda *_: FakeResponse({"jobs": [{"status": "FAILED"}]}))
        result = sink.wait("r.zip", "1", ctx=RunContext.background())
        assert isinstance(result, Err)
        assert "unknown job status FAILED" in result.error.message

    def test_http_error(self) -> None:
        sink, _ = self._sink(lambda *_: FakeResponse({}, status_code=503))
        result = sink.submit("r.zip", _payload())
        assert isinstance(result, Err)
        assert result.error.kind == "remote_failed"


def _payload() -> XUnitPayload:
    return XUnitPayload(document=b"<testsuites/>", title="t")


class TestReportPortalSink:
    UUID = "b862b3c3-a9ce-47d1-9f5c-e51ae9de50f3"

    def test_launch_uuid(self) -> None:
        message = f"Launch with id = {self.UUID} is successfully imported."
        assert launch_uuid(message) == self.UUID
        assert launch_uuid("nothing here") is None

    def test_import_and_label(self, tmp_path: Path) -> None:
        def handler(method: str, url: str, kwargs: dict[str, Any]) -> FakeResponse:
            if method == "POST":
                return FakeResponse({"message": f"Launch with id = {self.UUID} is imported."})
            if method == "GET":
                return FakeResponse({"id": 42, "uuid": self.UUID})
            return FakeResponse({"message": "updated"})

        session = FakeSession(handler)
        sink = ReportPortalSink(project="rhmi", token="t0k", session=session)
        archive = _archive(
            tmp_path, {"name": "osd-e2e", "rhmiVersion": "2.1.0", "jobURL": "https://ci/7"}
        )
        prepared = sink.prepare("results.zip", archive)
        assert isinstance(prepared, Ok)
        assert not isinstance(prepared.value, Skipped)

        assert sink.submit("results.zip", prepared.value) == Ok(self.UUID)
        post, get, put = session.calls
        assert post.url.endswith("/api/v1/rhmi/launch/import")
        assert get.url.endswith(f"/api/v1/rhmi/launch/uuid/{self.UUID}")
        assert put.url.endswith("/api/v1/rhmi/launch/42/update")
        assert put.kwargs["json"] == {"description": "https://ci/7", "tags": ["osd-e2e", "2.1.0"]}
        assert session.headers["Authorization"] == "Bearer t0k"

    def test_prepare_skips_without_version(self, tmp_path: Path) -> None:
        sink = ReportPortalSink(
            project="rhmi", token="t", session=FakeSession(lambda *_: FakeResponse({}))
        )
        prepared = sink.prepare("results.zip", _archive(tmp_path, {"name": "master"}))
        assert isinstance(prepared, Ok)
        assert isinstance(prepared.value, Skipped)

    def test_import_without_launch_id(self, tmp_path: Path) -> None:
        session = FakeSession(lambda *_: FakeResponse({"message": "rejected"}))
        sink = ReportPortalSink(project="rhmi", token="t", session=session)
        archive = _archive(tmp_path, {"name": "e2e", "rhmiVersion": "2.1.0"})
        prepared = sink.prepare("results.zip", archive)
        assert isinstance(prepared, Ok) and not isinstance(prepared.value, Skipped)
        result = sink.submit("results.zip", prepared.value)
        assert isinstance(result, Err)
        assert result.error.hint == "rejected"


class TestDatahub:
    def test_sample_count(self) -> None:
        assert sample_count("scalar", [1700000000, "12.7"]) == Ok(12)
        assert sample_count("vector", [{"metric": {}, "value": [1, "30"]}]) == Ok(30)
        assert sample_count("matrix", [{"metric": {}, "values": [[1, "5"], [2, "6"]]}]) == Ok(5)
        assert sample_count("vector", []) == Ok(0)
        assert isinstance(sample_count("scalar", [1, "NaN?"]), Err)

    def test_grouping_path(self) -> None:
        sample = DowntimeSample(product="rhmi", query="rhmi_3scale", version="2.1.0", count=3)
        assert grouping_path("downtime", sample) == (
            "/metrics/job/downtime/product/rhmi/query/rhmi_3scale/version/2.1.0"
        )

    def test_grouping_path_encodes_awkward_values(self) -> None:
        sample = DowntimeSample(product="a/b", query="q", version="", count=0)
        path = grouping_path("downtime", sample)
        assert "/product@base64/YS9i" in path
        assert path.endswith("/version@base64/=")

    def test_prepare_and_push(self, tmp_path: Path) -> None:
        report = {
            "name": "downtime-report",
            "version": "2.1.0",
            "results": [
                {"name": "rhmi_3scale", "query": "q1", "resultType": "vector", "result": []},
                {
                    "name": "rhsso_api",
                    "query": "q2",
                    "resultType": "vector",
                    "result": [{"metric": {}, "value": [1, "42"]}],
                },
            ],
        }
        path = tmp_path / "downtime-report.yaml"
        path.write_text(yaml.safe_dump(report), encoding="utf-8")
        session = FakeSession(lambda *_: FakeResponse())
        sink = DatahubSink(pushgateway="http://pgw:9091/", job="dt", session=session)

        prepared = sink.prepare("downtime-report.yaml", path)
        assert isinstance(prepared, Ok)
        assert prepared.value == [
            DowntimeSample(product="rhmi", query="rhmi_3scale", version="2.1.0", count=0),
            DowntimeSample(product="rhsso", query="rhsso_api", version="2.1.0", count=42),
        ]

        assert isinstance(prepared.value, list)
        assert sink.submit("downtime-report.yaml", prepared.value) == Ok("2 samples")
        first, second = session.calls
        assert first.method == "PUT"
        assert first.url == (
            "http://pgw:9091/metrics/job/dt/product/rhmi/query/rhmi_3scale/version/2.1.0"
        )
        assert b"rhmi_product_downtime 42\n" in second.kwargs["data"]

    def test_prepare_requires_version(self, tmp_path: Path) -> None:
        path = tmp_path / "r.yaml"
        path.write_text("name: x\nresults: []\n", encoding="utf-8")
        sink = DatahubSink(session=FakeSession(lambda *_: FakeResponse()))
        assert isinstance(sink.prepare("r.yaml", path), Err)

    def test_prepare_skips_empty_report(self, tmp_path: Path) -> None:
        path = tmp_path / "r.yaml"
        path.write_text("version: 2.1.0\nresults: []\n", encoding="utf-8")
        sink = DatahubSink(session=FakeSession(lambda *_: FakeResponse()))
        prepared = sink.prepare("r.yaml", path)
        assert isinstance(prepared, Ok)
        assert isinstance(prepared.value, Skipped)
