"""Run a set of Prometheus queries in parallel and write the results as YAML.

The query file is ``{name, queries: [{name, type, query}]}`` where ``type``
is ``query`` or ``query_range``. ``$range`` (milliseconds) and ``$duration``
(``<n>s``) in a query expand to the length of the query window.

The report is ``{name, version, results: [{name, query, resultType,
result}]}``; ``datahub-import`` reads it back.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Literal

import requests

from delorean.core.context import RunContext, TaskCancelled
from delorean.core.result import Err, Ok, Result
from delorean.core.structured import StrDict, as_obj_list, as_str_dict, get_str
from delorean.core.tasks import run_tasks
from delorean.output.console import ConsoleProtocol
from delorean.platform.yaml_files import read_yaml, write_yaml
from delorean.services.report.errors import ReportError

__all__ = [
    "PrometheusClient",
    "QueryConfig",
    "QueryResult",
    "QuerySpec",
    "QueryWindow",
    "expand_query",
    "load_query_config",
    "report_file_name",
    "run_queries",
    "write_report",
]

QueryType = Literal["query", "query_range"]
QUERY_TYPES: tuple[QueryType, ...] = ("query", "query_range")

DEFAULT_QUERY_WORKERS = 5
DEFAULT_QUERY_TIMEOUT_SECONDS = 10.0
RANGE_STEP_SECONDS = 30


@dataclass(frozen=True, slots=True)
class QuerySpec:
    name: str
    query: str
    type: QueryType = "query"


@dataclass(frozen=True, slots=True)
class QueryConfig:
    name: str
    queries: tuple[QuerySpec, ...]


@dataclass(frozen=True, slots=True)
class QueryWindow:
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start

    @classmethod
    def ending_at(
        cls, end: float | None = None, *, start: float | None = None, duration: float = 7200.0
    ) -> QueryWindow:
        """A window ending at ``end`` (now by default); ``start`` wins over ``duration``."""
        stop = time.time() if end is None else end
        if start is not None:
            return cls(start=start, end=stop)
        return cls(start=stop - duration, end=stop)


@dataclass(frozen=True, slots=True)
class QueryResult:
    name: str
    query: str
    result_type: str
    result: object

    def to_dict(self) -> StrDict:
        return {
            "name": self.name,
            "query": self.query,
            "resultType": self.result_type,
            "result": self.result,
        }


def expand_query(query: str, window: QueryWindow) -> str:
    text = query.replace("$range", str(int(window.duration * 1000)))
    return text.replace("$duration", f"{round(window.duration)}s")


def report_file_name(name: str) -> str:
    return f"{name.lower().replace(' ', '-')}.yaml"


def load_query_config(path: Path) -> Result[QueryConfig, ReportError]:
    loaded = read_yaml(path)
    if isinstance(loaded, Err):
        return Err(ReportError(kind="invalid_input", message=loaded.error.message))
    data = as_str_dict(loaded.value)
    if data is None:
        return Err(ReportError(kind="invalid_input", message=f"{path} is not a YAML mapping"))

    specs: list[QuerySpec] = []
    for index, raw in enumerate(as_obj_list(data.get("queries")) or []):
        item = as_str_dict(raw)
        name = get_str(item, "name") if item is not None else None
        query = get_str(item, "query") if item is not None else None
        kind = (get_str(item, "type") if item is not None else None) or "query"
        if name is None or query is None:
            message = f"{path}: queries[{index}] needs a name and a query"
            return Err(ReportError(kind="invalid_input", message=message))
        if kind not in QUERY_TYPES:
            return Err(ReportError(kind="invalid_input", message=f"unsupported query type: {kind}"))
        query_type: QueryType = "query_range" if kind == "query_range" else "query"
        specs.append(QuerySpec(name=name, query=query, type=query_type))

    return Ok(QueryConfig(name=get_str(data, "name") or path.stem, queries=tuple(specs)))


class PrometheusClient:
    """Minimal client for the Prometheus HTTP API (``/api/v1/query[_range]``)."""

    def __init__(
        self,
        url: str,
        *,
        token: str | None = None,
        timeout: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        session: requests.Session | None = None,
    ) -> None:
        self._url = url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        if token:
            self._session.headers["Authorization"] = f"Bearer {token}"

    def _get(self, endpoint: str, params: dict[str, Any]) -> Result[StrDict, ReportError]:
        url = f"{self._url}/api/v1/{endpoint}"
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
            response.raise_for_status()
            payload: object = response.json()
        except requests.RequestException as e:
            message = f"prometheus {endpoint} failed"
            return Err(ReportError(kind="remote_failed", message=message, hint=str(e)))
        except ValueError as e:
            message = f"prometheus returned invalid JSON: {e}"
            return Err(ReportError(kind="remote_failed", message=message, hint=url))

        body = as_str_dict(payload)
        if body is None or get_str(body, "status") != "success":
            error = get_str(body, "error") if body is not None else None
            message = f"prometheus {endpoint} failed"
            return Err(ReportError(kind="remote_failed", message=message, hint=error))
        data = as_str_dict(body.get("data"))
        if data is None:
            message = f"prometheus {endpoint} returned no data"
            return Err(ReportError(kind="remote_failed", message=message))
        return Ok(data)

    def query(self, query: str, *, at: float) -> Result[StrDict, ReportError]:
        return self._get("query", {"query": query, "time": at})

    def query_range(
        self, query: str, *, start: float, end: float, step: int
    ) -> Result[StrDict, ReportError]:
        params = {"query": query, "start": start, "end": end, "step": step}
        return self._get("query_range", params)


def _run_query(
    spec: QuerySpec, *, client: PrometheusClient, window: QueryWindow, console: ConsoleProtocol
) -> Result[QueryResult, ReportError]:
    query = expand_query(spec.query, window)
    console.scoped(spec.name, query)
    if spec.type == "query_range":
        data = client.query_range(
            query, start=window.start, end=window.end, step=RANGE_STEP_SECONDS
        )
    else:
        data = client.query(query, at=window.end)
    if isinstance(data, Err):
        message = f"[{spec.name}] {data.error.message}"
        return Err(ReportError(kind=data.error.kind, message=message, hint=data.error.hint))

    return Ok(
        QueryResult(
            name=spec.name,
            query=query,
            result_type=get_str(data.value, "resultType") or "",
            result=data.value.get("result"),
        )
    )


def run_queries(
    config: QueryConfig,
    *,
    client: PrometheusClient,
    window: QueryWindow,
    console: ConsoleProtocol,
    ctx: RunContext,
    workers: int = DEFAULT_QUERY_WORKERS,
) -> Result[list[QueryResult], ReportError | TaskCancelled]:
    tasks = [
        partial(_run_query, spec, client=client, window=window, console=console)
        for spec in config.queries
    ]
    return run_tasks(tasks, max_workers=workers, ctx=ctx)


def write_report(
    output_dir: Path, *, config: QueryConfig, version: str, results: list[QueryResult]
) -> Result[Path, ReportError]:
    path = output_dir / report_file_name(config.name)
    document: StrDict = {
        "name": config.name,
        "version": version,
        "results": [r.to_dict() for r in results],
    }
    written = write_yaml(path, document)
    if isinstance(written, Err):
        return Err(ReportError(kind="io_failed", message=written.error.message))
    return Ok(path)
