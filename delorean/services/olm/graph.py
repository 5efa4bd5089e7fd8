"""OLM upgrade graph of one manifest directory.

Every sub-directory of a manifest directory is a bundle named by its base
version and holding one CSV. The CSVs form a graph through their
``spec.replaces`` edges; OLM can only upgrade along those edges, so a
``replaces`` that points outside the set strands every cluster on the
older version.

Ordering is by version first and directory name second. The ``replaces``
chain alone is not authoritative: during a migration two CSVs may replace the
same predecessor.
"""

from __future__ import annotations

from collections.abc import Collection, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from delorean.core.result import Err, Ok, Result
from delorean.core.version import OLM_TYPE_RHMI, OlmType, Version
from delorean.services.olm.csv import CSV, read_csv

__all__ = [
    "CSVSet",
    "GraphError",
    "GraphErrorKind",
    "build_csv_set",
    "check_completeness",
    "check_acyclic",
    "load_csv_set",
    "order_key",
]

GraphErrorKind = Literal[
    "graph_incomplete",
    "graph_empty",
    "graph_cycle",
    "graph_duplicate",
    "graph_read_failed",
]


@dataclass(frozen=True, slots=True)
class GraphError:
    kind: GraphErrorKind
    message: str
    directory: str
    csv_name: str | None = None
    missing_target: str | None = None
    hint: str | None = None


def order_key(csv: CSV) -> tuple[tuple[int, int, int, int, str], str]:
    return (csv.version.sort_key(), csv.directory)


@dataclass(frozen=True, slots=True)
class CSVSet:
    """CSVs of one manifest directory, in ascending total order."""

    directory: str
    csvs: tuple[CSV, ...]

    def __len__(self) -> int:
        return len(self.csvs)

    def __iter__(self) -> Iterator[CSV]:
        return iter(self.csvs)

    @property
    def names(self) -> frozenset[str]:
        return frozenset(csv.name for csv in self.csvs)

    def contains(self, name: str) -> bool:
        return any(csv.name == name for csv in self.csvs)

    def get(self, name: str) -> CSV | None:
        for csv in self.csvs:
            if csv.name == name:
                return csv
        return None

    def versions(self) -> list[Version]:
        return [csv.version for csv in self.csvs]

    def current(self) -> Result[CSV, GraphError]:
        """The highest-ordered CSV."""
        if not self.csvs:
            return Err(
                GraphError(
                    kind="graph_empty",
                    message=f"no CSV found in {self.directory}",
                    directory=self.directory,
                )
            )
        return Ok(self.csvs[-1])

    def predecessor(self, version: Version) -> CSV | None:
        """The highest-ordered CSV strictly older than ``version``."""
        older = [csv for csv in self.csvs if csv.version < version]
        return older[-1] if older else None


def build_csv_set(directory: str, csvs: Collection[CSV]) -> Result[CSVSet, GraphError]:
    """Sort ``csvs`` into a set, rejecting duplicate names."""
    seen: dict[str, CSV] = {}
    for csv in csvs:
        other = seen.get(csv.name)
        if other is not None:
            return Err(
                GraphError(
                    kind="graph_duplicate",
                    message=(
                        f"[{directory}] CSV {csv.name} is defined in both "
                        f"{other.directory} and {csv.directory}"
                    ),
                    directory=directory,
                    csv_name=csv.name,
                )
            )
        seen[csv.name] = csv
    return Ok(CSVSet(directory=directory, csvs=tuple(sorted(csvs, key=order_key))))


def load_csv_set(path: Path, *, olm_type: OlmType = OLM_TYPE_RHMI) -> Result[CSVSet, GraphError]:
    """Read every bundle sub-directory of ``path``."""
    if not path.is_dir():
        return Err(
            GraphError(
                kind="graph_read_failed",
                message=f"{path} is not a directory",
                directory=path.name,
            )
        )

    csvs: list[CSV] = []
    for bundle_dir in sorted(p for p in path.iterdir() if p.is_dir()):
        if bundle_dir.name.startswith("."):
            continue
        match read_csv(bundle_dir, olm_type=olm_type):
            case Err(e):
                return Err(
                    GraphError(kind="graph_read_failed", message=e.message, directory=path.name)
                )
            case Ok(csv):
                csvs.append(csv)

    return build_csv_set(path.name, csvs)


def check_acyclic(csv_set: CSVSet) -> Result[None, GraphError]:
    """Walk every ``replaces`` chain and reject a revisited node."""
    by_name = {csv.name: csv for csv in csv_set}
    cleared: set[str] = set()

    for start in csv_set:
        visited: list[str] = []
        node: CSV | None = start
        while node is not None and node.name not in cleared:
            if node.name in visited:
                cycle = " -> ".join([*visited[visited.index(node.name) :], node.name])
                return Err(
                    GraphError(
                        kind="graph_cycle",
                        message=f"[{csv_set.directory}] replaces cycle detected: {cycle}",
                        directory=csv_set.directory,
                        csv_name=node.name,
                    )
                )
            visited.append(node.name)
            node = by_name.get(node.replaces) if node.replaces else None
        cleared.update(visited)

    return Ok(None)


def check_completeness(csv_set: CSVSet, baselines: Collection[str] = ()) -> Result[None, GraphError]:
    """Every non-root CSV must replace another CSV of the set.

    The lowest-ordered CSV and any CSV with an empty ``replaces`` are roots.
    A CSV whose own name or whose ``replaces`` is a configured baseline is
    grandfathered.
    """
    cycle = check_acyclic(csv_set)
    if isinstance(cycle, Err):
        return cycle

    for csv in reversed(csv_set.csvs[1:]):
        if not csv.replaces:
            continue
        if csv.name in baselines or csv.replaces in baselines:
            continue
        if csv_set.contains(csv.replaces):
            continue
        return Err(
            GraphError(
                kind="graph_incomplete",
                message=(
                    f"[{csv_set.directory}] OLM graph is broken. CSV {csv.name} replaces "
                    f"{csv.replaces}, which doesn't exist"
                ),
                directory=csv_set.directory,
                csv_name=csv.name,
                missing_target=csv.replaces,
            )
        )

    return Ok(None)
