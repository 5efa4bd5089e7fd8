from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
import typer
import yaml

from delorean.cli.context import CLIContext
from delorean.core.config import Config
from delorean.core.context import RunContext
from delorean.core.result import Ok
from delorean.output.console import MockConsole
from delorean.services.report.importer import ImportJob, ImportSummary, ObjectFilter
from delorean.services.report.reportportal import ReportPortalSink
from delorean.test.services._fakes import FakeResponse, FakeSession, InMemoryStore


def _ctx() -> CLIContext:
    return CLIContext(config=Config(), console=MockConsole(), run=RunContext.background())


def _patch(monkeypatch: pytest.MonkeyPatch, ctx: CLIContext) -> list[ImportJob]:
    import delorean.cli.commands.report_cmd as report_cmd

    jobs: list[ImportJob] = []

    def fake_import(*, job: ImportJob, **_: object) -> Ok[ImportSummary]:
        jobs.append(job)
        return Ok(ImportSummary())

    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setattr(report_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(report_cmd, "new_s3_store", lambda **_: InMemoryStore())
    monkeypatch.setattr(report_cmd, "run_import", fake_import)
    return jobs


class TestImports:
    def test_reportportal_without_tagging(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import delorean.cli.commands.report_cmd as report_cmd

        jobs = _patch(monkeypatch, _ctx())
        report_cmd.reportportal_import(
            bucket="results", project="rhmi", rp_token="t0k", no_tagging=True
        )
        (job,) = jobs
        assert job.bucket == "results"
        assert job.tag.key == "rp"
        assert not job.tagging
        assert job.filter == ObjectFilter(suffix=".zip")
        assert job.workers == 10

    def test_reportportal_token_is_required(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import delorean.cli.commands.report_cmd as report_cmd

        monkeypatch.delenv("REPORTPORTAL_TOKEN", raising=False)
        jobs = _patch(monkeypatch, _ctx())
        with pytest.raises(typer.Exit):
            report_cmd.reportportal_import(
                bucket="results", project="rhmi", rp_token=None, no_tagging=False
            )
        assert jobs == []

    def test_polarion_reads_credentials_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import delorean.cli.commands.report_cmd as report_cmd

        monkeypatch.setenv("POLARION_USERNAME", "qe")
        monkeypatch.setenv("POLARION_PASSWORD", "secret")
        jobs = _patch(monkeypatch, _ctx())
        report_cmd.polarion_import(bucket="results", stage=True, username=None, password=None)
        (job,) = jobs
        assert job.tag.key == "polarion"
        assert job.tagging

    def test_datahub_report_name_filters_by_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        import delorean.cli.commands.report_cmd as report_cmd

        jobs = _patch(monkeypatch, _ctx())
        report_cmd.datahub_import(
            bucket="downtime",
            pushgateway="http://pgw:9091",
            job_name="downtime",
            report_name="downtime-report-2",
        )
        (job,) = jobs
        assert job.filter == ObjectFilter(prefix="downtime-report-2")


def test_reportportal_leaves_other_objects_untagged(monkeypatch: pytest.MonkeyPatch) -> None:
    """Objects that are not archives are neither imported nor tagged."""
    import delorean.cli.commands.report_cmd as report_cmd

    store = InMemoryStore()
    store.add("results", "notes.txt", b"x")
    ctx = _ctx()
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setattr(report_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(report_cmd, "new_s3_store", lambda **_: store)

    def sink(**kwargs: Any) -> ReportPortalSink:
        return ReportPortalSink(session=FakeSession(lambda *_: FakeResponse({})), **kwargs)

    monkeypatch.setattr(report_cmd, "ReportPortalSink", sink)
    report_cmd.reportportal_import(
        bucket="results", project="rhmi", rp_token="t", no_tagging=False
    )
    assert store.tags[("results", "notes.txt")] == {}


def test_cleanup(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import delorean.cli.commands.report_cmd as report_cmd

    store = InMemoryStore()
    store.add("results", "a.zip", b"a", rp="true")
    config_file = tmp_path / "cleanup.yaml"
    config_file.write_text(
        "configs:\n- bucket: results\n  tags:\n  - key: rp\n    value: 'true'\n",
        encoding="utf-8",
    )
    ctx = _ctx()
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "AKIA")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "secret")
    monkeypatch.setattr(report_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(report_cmd, "new_s3_store", lambda **_: store)

    report_cmd.cleanup(config_file=config_file)

    assert ("results", "archive/a.zip") in store.objects
    assert isinstance(ctx.console, MockConsole)
    assert ctx.console.messages[-1] == "OK 1 objects archived across 1 buckets"


def test_query_writes_report(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    import delorean.cli.commands.report_cmd as report_cmd
    from delorean.services.report.query import PrometheusClient

    config_file = tmp_path / "queries.yaml"
    config_file.write_text(
        "name: downtime-report\nqueries:\n- name: rhmi_3scale\n  query: up[$duration]\n",
        encoding="utf-8",
    )
    session = FakeSession(
        lambda *_: FakeResponse(
            {"status": "success", "data": {"resultType": "vector", "result": []}}
        )
    )

    def client(url: str, **kwargs: Any) -> PrometheusClient:
        return PrometheusClient(url, session=session, **kwargs)

    ctx = _ctx()
    monkeypatch.setattr(report_cmd, "build_context", lambda: ctx)
    monkeypatch.setattr(report_cmd, "PrometheusClient", client)
    monkeypatch.delenv("PROMETHEUS_TOKEN", raising=False)

    report_cmd.query(
        config_file=config_file,
        output=tmp_path / "out",
        prometheus_url="https://prometheus.example.com",
        token="tok",
        version="2.1.0",
        start_time=0.0,
        end_time=600.0,
        duration=7200.0,
        timeout=5.0,
    )

    written = yaml.safe_load((tmp_path / "out" / "downtime-report.yaml").read_text("utf-8"))
    assert written["version"] == "2.1.0"
    assert written["results"][0]["query"] == "up[600s]"
    assert session.headers["Authorization"] == "Bearer tok"
