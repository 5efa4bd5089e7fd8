"""Edits to managed-tenants manifest files.

Three kinds of file are touched during a promotion:

- the package manifest: ``channels[0].currentCSV`` only
- the CSV of the promoted bundle: operator name, ``spec.replaces``, the
  operator container environment and the SingleNamespace install mode
- the addon image-set: copied forward from the newest stage file

Documents are edited as plain YAML trees so unknown fields survive.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from delorean.core.result import Err, Ok, Result
from delorean.core.structured import StrDict, as_obj_list, as_str_dict, get_path, get_str
from delorean.core.version import Version, parse_version
from delorean.platform.yaml_files import read_yaml, write_yaml

__all__ = [
    "CSVEdits",
    "ManifestError",
    "apply_csv_edits",
    "copy_image_set",
    "csv_name",
    "find_package_manifest",
    "latest_image_set",
    "operator_variant",
    "update_csv_file",
    "update_package_manifest",
]

OPERATOR_CONTAINER = "operator"
SINGLE_NAMESPACE = "SingleNamespace"
EDGE_SUFFIX = "-internal"


@dataclass(frozen=True, slots=True)
class ManifestError:
    kind: Literal["manifest_shape", "manifest_read_failed", "manifest_write_failed"]
    message: str
    file: str
    what: str = ""
    hint: str | None = None


def operator_variant(operator_name: str, channel: str) -> str:
    """Operator name used in ``channel`` (edge runs an ``-internal`` variant)."""
    if channel == "edge":
        return f"{operator_name}{EDGE_SUFFIX}"
    return operator_name


def csv_name(operator_name: str, version: Version) -> str:
    return f"{operator_name}.v{version.base}"


def _shape_error(path: Path, what: str) -> ManifestError:
    return ManifestError(
        kind="manifest_shape",
        message=f"{path}: missing {what}",
        file=str(path),
        what=what,
    )


def _read_document(path: Path) -> Result[StrDict, ManifestError]:
    match read_yaml(path):
        case Err(e):
            return Err(ManifestError(kind="manifest_read_failed", message=e.message, file=str(path)))
        case Ok(data):
            document = as_str_dict(data)
            if document is None:
                return Err(_shape_error(path, "top-level mapping"))
            return Ok(document)


def _write_document(path: Path, document: StrDict) -> Result[None, ManifestError]:
    match write_yaml(path, document):
        case Err(e):
            return Err(ManifestError(kind="manifest_write_failed", message=e.message, file=str(path)))
        case Ok(_):
            return Ok(None)


# -----------------------------------------------------------------------------
# Package manifest
# -----------------------------------------------------------------------------


def find_package_manifest(directory: Path) -> Path | None:
    matches = sorted(directory.glob("*.package.yaml"))
    return matches[0] if matches else None


def update_package_manifest(path: Path, current_csv: str) -> Result[None, ManifestError]:
    """Point the first channel of the package manifest at ``current_csv``."""
    loaded = _read_document(path)
    if isinstance(loaded, Err):
        return loaded
    document = loaded.value

    channels = as_obj_list(document.get("channels"))
    first = as_str_dict(channels[0]) if channels else None
    if first is None:
        return Err(_shape_error(path, "channels[0]"))

    first["currentCSV"] = current_csv
    return _write_document(path, document)


# -----------------------------------------------------------------------------
# CSV bundle
# -----------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class CSVEdits:
    """Edits applied to one CSV document.

    Attributes:
        name: New ``metadata.name``
        replaces: New ``spec.replaces``; None removes the field (graph root)
        env: Variables added or updated in the operator container
        remove_env: Variables removed from the operator container
    """

    name: str
    replaces: str | None
    env: Mapping[str, str] = field(default_factory=dict)
    remove_env: Sequence[str] = ()
    container: str = OPERATOR_CONTAINER


def _operator_containers(document: StrDict, container: str) -> list[StrDict]:
    found: list[StrDict] = []
    deployments = as_obj_list(get_path(document, "spec", "install", "spec", "deployments")) or []
    for deployment in deployments:
        containers = as_obj_list(get_path(deployment, "spec", "template", "spec", "containers")) or []
        for item in containers:
            c = as_str_dict(item)
            if c is not None and get_str(c, "name") == container:
                found.append(c)
    return found


def _set_env(container: StrDict, env: Mapping[str, str], remove: Sequence[str]) -> None:
    entries = as_obj_list(container.get("env"))
    if entries is None:
        entries = []
        container["env"] = entries

    kept: list[object] = []
    for item in entries:
        var = as_str_dict(item)
        name = get_str(var, "name") if var is not None else None
        if name in remove:
            continue
        if var is not None and name in env:
            var.pop("valueFrom", None)
            var["value"] = env[name]
        kept.append(item)

    present = {get_str(v, "name") for v in (as_str_dict(i) for i in kept) if v is not None}
    for name, value in env.items():
        if name not in present and name not in remove:
            kept.append({"name": name, "value": value})

    entries[:] = kept


def apply_csv_edits(
    document: StrDict, edits: CSVEdits, *, path: Path
) -> Result[None, ManifestError]:
    """Apply ``edits`` in place; ``path`` is only used in error messages."""
    metadata = as_str_dict(document.get("metadata"))
    spec = as_str_dict(document.get("spec"))
    if metadata is None:
        return Err(_shape_error(path, "metadata"))
    if spec is None:
        return Err(_shape_error(path, "spec"))

    containers = _operator_containers(document, edits.container)
    if not containers:
        return Err(_shape_error(path, f"deployment container {edits.container!r}"))

    raw_modes = as_obj_list(spec.get("installModes")) or []
    install_modes = [m for m in (as_str_dict(i) for i in raw_modes) if m]
    single = [m for m in install_modes if get_str(m, "type") == SINGLE_NAMESPACE]
    if not single:
        return Err(_shape_error(path, f"installMode {SINGLE_NAMESPACE}"))

    metadata["name"] = edits.name
    if edits.replaces:
        spec["replaces"] = edits.replaces
    else:
        spec.pop("replaces", None)

    for container in containers:
        _set_env(container, edits.env, edits.remove_env)
    for mode in single:
        mode["supported"] = True

    return Ok(None)


def update_csv_file(path: Path, edits: CSVEdits) -> Result[None, ManifestError]:
    loaded = _read_document(path)
    if isinstance(loaded, Err):
        return loaded

    applied = apply_csv_edits(loaded.value, edits, path=path)
    if isinstance(applied, Err):
        return applied

    return _write_document(path, loaded.value)


# -----------------------------------------------------------------------------
# Addon image-set
# -----------------------------------------------------------------------------


def _image_set_order(path: Path) -> tuple[tuple[int, ...], float]:
    # <directory>.v<version>.yaml; files without a parsable version sort first.
    stem = path.name.removesuffix(".yaml")
    version_key: tuple[int, ...] = ()
    if ".v" in stem:
        match parse_version(stem.rsplit(".v", 1)[1]):
            case Ok(version):
                version_key = (1, *version.sort_key()[:4])
            case Err(_):
                pass
    return (version_key, path.stat().st_mtime)


def latest_image_set(directory: Path) -> Path | None:
    """The newest image-set file of ``directory``, by version then mtime."""
    if not directory.is_dir():
        return None
    files = [p for p in directory.iterdir() if p.is_file() and p.suffix == ".yaml"]
    if not files:
        return None
    return max(files, key=_image_set_order)


def copy_image_set(
    source_dir: Path,
    dest_dir: Path,
    *,
    channel_directory: str,
    version: Version,
) -> Result[Path, ManifestError]:
    """Copy the newest stage image-set to ``<channel_directory>.v<base>.yaml``."""
    source = latest_image_set(source_dir)
    if source is None:
        return Err(
            ManifestError(
                kind="manifest_read_failed",
                message=f"no addon image-set found in {source_dir}",
                file=str(source_dir),
                what="addon image-set",
            )
        )

    dest = dest_dir / f"{channel_directory}.v{version.base}.yaml"
    try:
        dest_dir.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
    except OSError as e:
        return Err(
            ManifestError(
                kind="manifest_write_failed",
                message=f"can not copy {source} to {dest}: {e}",
                file=str(dest),
            )
        )
    return Ok(dest)
