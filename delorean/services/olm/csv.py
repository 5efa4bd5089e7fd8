"""ClusterServiceVersion bundle files.

A bundle directory holds exactly one CSV file, named
``*.clusterserviceversion.yaml`` or ``*.csv.yaml``, either at its top level
or under ``manifests/``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from delorean.core.result import Err, Ok, Result
from delorean.core.structured import StrDict, as_str_dict, get_path
from delorean.core.version import OLM_TYPE_RHMI, OlmType, Version, parse_version
from delorean.platform.yaml_files import read_yaml

__all__ = ["CSV", "CSVReadError", "find_csv_file", "read_csv", "read_csv_document"]

_CSV_SUFFIXES = (".clusterserviceversion.yaml", ".csv.yaml")


@dataclass(frozen=True, slots=True)
class CSVReadError:
    path: Path
    message: str


@dataclass(frozen=True, slots=True)
class CSV:
    """The graph-relevant fields of one CSV.

    Attributes:
        name: ``metadata.name``, embeds the version (``rhmi.v2.1.0``)
        replaces: ``spec.replaces``, empty for a graph root
        version: ``spec.version``
        directory: Name of the bundle directory holding the file
        path: The CSV file
    """

    name: str
    replaces: str
    version: Version
    directory: str
    path: Path


def _is_csv_file(path: Path) -> bool:
    return path.is_file() and any(suffix in path.name for suffix in _CSV_SUFFIXES)


def find_csv_file(bundle_dir: Path) -> Path | None:
    for candidate in (bundle_dir, bundle_dir / "manifests"):
        if not candidate.is_dir():
            continue
        for path in sorted(candidate.iterdir()):
            if _is_csv_file(path):
                return path
    return None


def read_csv_document(bundle_dir: Path) -> Result[tuple[StrDict, Path], CSVReadError]:
    """Load the full CSV document of a bundle directory."""
    path = find_csv_file(bundle_dir)
    if path is None:
        return Err(CSVReadError(bundle_dir, f"no ClusterServiceVersion object found in {bundle_dir}"))

    match read_yaml(path):
        case Err(e):
            return Err(CSVReadError(path, e.message))
        case Ok(data):
            document = as_str_dict(data)
            if document is None:
                return Err(CSVReadError(path, f"{path} is not a YAML mapping"))
            return Ok((document, path))


def read_csv(bundle_dir: Path, *, olm_type: OlmType = OLM_TYPE_RHMI) -> Result[CSV, CSVReadError]:
    loaded = read_csv_document(bundle_dir)
    if isinstance(loaded, Err):
        return loaded
    document, path = loaded.value

    name = get_path(document, "metadata", "name")
    if not isinstance(name, str) or not name:
        return Err(CSVReadError(path, f"{path} has no metadata.name"))

    replaces = get_path(document, "spec", "replaces")
    if replaces is not None and not isinstance(replaces, str):
        return Err(CSVReadError(path, f"{path} has a non-string spec.replaces"))

    raw_version = get_path(document, "spec", "version")
    parsed = parse_version(str(raw_version) if raw_version is not None else "", olm_type)
    if isinstance(parsed, Err):
        return Err(CSVReadError(path, f"{path}: {parsed.error.message}"))
    version = parsed.value

    return Ok(
        CSV(
            name=name,
            replaces=replaces or "",
            version=version,
            directory=bundle_dir.name,
            path=path,
        )
    )
