"""Datahub sink: push downtime counts from query reports to a Pushgateway.

A downtime report is the YAML written by ``report query``. Each result becomes
one ``rhmi_product_downtime`` gauge sample, grouped by product, query name
and version.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import quote

import requests

from delorean.core.context import RunContext
from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_obj_list, as_str_dict, get_str
from delorean.core.version import parse_version
from delorean.platform.yaml_files import read_yaml
from delorean.services.report.errors import ReportError
from delorean.services.report.importer import ObjectFilter, ProcessedTag, Skipped

__all__ = [
    "DATAHUB_FILTER",
    "DATAHUB_TAG",
    "DEFAULT_JOB_NAME",
    "DEFAULT_PUSHGATEWAY_URL",
    "DatahubSink",
    "DowntimeSample",
    "grouping_path",
    "sample_count",
]

DEFAULT_PUSHGATEWAY_URL = "http://pushgateway-dh-prod-monitoring.cloud.datahub.psi.redhat.com:9091"
DEFAULT_JOB_NAME = "rhmi-product-downtime"
DATAHUB_TAG = ProcessedTag(key="datahub", value="true")
DATAHUB_FILTER = ObjectFilter(prefix="downtime-report")

METRIC_NAME = "rhmi_product_downtime"
METRIC_HELP = "Downtime count in seconds"

_HTTP_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class DowntimeSample:
    product: str
    query: str
    version: str
    count: int


def sample_count(result_type: str, result: object) -> Result[int, ReportError]:
    """The integer value of the first sample of a Prometheus result.

    Vectors and matrices read their first series; an empty result counts as 0.
    """
    raw: object = None
    if result_type == "scalar":
        pair = as_obj_list(result) or []
        raw = pair[1] if len(pair) > 1 else None
    else:
        series = as_obj_list(result) or []
        first = as_str_dict(series[0]) if series else None
        if first is not None:
            pair = as_obj_list(first.get("value"))
            if pair is None:
                values = as_obj_list(first.get("values")) or []
                pair = as_obj_list(values[0]) if values else None
            raw = pair[1] if pair is not None and len(pair) > 1 else None

    if raw is None:
        return Ok(0)
    try:
        return Ok(int(float(str(raw))))
    except ValueError:
        return Err(ReportError(kind="invalid_input", message=f"invalid sample value: {raw!r}"))


def _label(name: str, value: str) -> str:
    # The Pushgateway takes base64 label values where a plain one would break the path.
    if not value or "/" in value:
        encoded = base64.urlsafe_b64encode(value.encode("utf-8")).decode("ascii")
        return f"{name}@base64/{encoded or '='}"
    return f"{name}/{quote(value, safe='')}"


def grouping_path(job: str, sample: DowntimeSample) -> str:
    labels = [
        _label("job", job),
        _label("product", sample.product),
        _label("query", sample.query),
        _label("version", sample.version),
    ]
    return "/metrics/" + "/".join(labels)


def exposition(sample: DowntimeSample) -> str:
    return (
        f"# HELP {METRIC_NAME} {METRIC_HELP}\n"
        f"# TYPE {METRIC_NAME} gauge\n"
        f"{METRIC_NAME} {sample.count}\n"
    )


class DatahubSink:
    name = "Datahub"

    def __init__(
        self,
        *,
        pushgateway: str = DEFAULT_PUSHGATEWAY_URL,
        job: str = DEFAULT_JOB_NAME,
        session: requests.Session | None = None,
    ) -> None:
        self.pushgateway = pushgateway.rstrip("/")
        self.job = job
        self._session = session or requests.Session()

    def prepare(self, key: str, path: Path) -> Result[list[DowntimeSample] | Skipped, ReportError]:
        loaded = read_yaml(path)
        if isinstance(loaded, Err):
            return Err(ReportError(kind="invalid_input", message=loaded.error.message))
        report = as_str_dict(loaded.value)
        if report is None:
            return Err(ReportError(kind="invalid_input", message=f"{key} is not a YAML mapping"))

        version = parse_version(get_str(report, "version") or "")
        if isinstance(version, Err):
            return Err(ReportError(kind="invalid_input", message=f"{key}: {version.error.message}"))

        samples: list[DowntimeSample] = []
        for raw in as_obj_list(report.get("results")) or []:
            item = as_str_dict(raw)
            name = get_str(item, "name") if item is not None else None
            if item is None or name is None:
                continue
            count = sample_count(get_str(item, "resultType") or "", item.get("result"))
            if isinstance(count, Err):
                message = f"[{name}] {count.error.message}"
                return Err(ReportError(kind="invalid_input", message=message))
            samples.append(
                DowntimeSample(
                    product=name.split("_")[0],
                    query=name,
                    version=str(version.value),
                    count=count.value,
                )
            )
        if not samples:
            return Ok(Skipped(reason="report has no results"))
        return Ok(samples)

    def push(self, sample: DowntimeSample) -> Result[None, ReportError]:
        url = self.pushgateway + grouping_path(self.job, sample)
        try:
            response = self._session.put(
                url,
                data=exposition(sample).encode("utf-8"),
                headers={"Content-Type": "text/plain; version=0.0.4"},
                timeout=_HTTP_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            message = f"failed to push to {self.pushgateway}"
            return Err(ReportError(kind="remote_failed", message=message, hint=str(e)))
        return Ok(None)

    def submit(self, key: str, payload: list[DowntimeSample]) -> Result[str, ReportError]:
        for sample in payload:
            pushed = self.push(sample)
            if isinstance(pushed, Err):
                return pushed
        return Ok(f"{len(payload)} samples")

    def wait(self, key: str, submission_id: str, *, ctx: RunContext) -> Result[None, ReportError]:
        return Ok(None)
