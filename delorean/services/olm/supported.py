"""Supported versions of a product, read from the managed-tenants repo.

Production-current is the ``.v<version>`` suffix of the first channel's
``currentCSV`` in the production addon descriptor. RHOAM publishes through an
index image, so its bundles are first exported with ``opm``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_str_dict, get_list, get_str
from delorean.core.version import OLM_TYPE_RHMI, OLM_TYPE_RHOAM, OlmType, Version, parse_version
from delorean.git.repository import clone
from delorean.output.console import ConsoleProtocol
from delorean.platform.process import run as run_process
from delorean.platform.yaml_files import read_yaml
from delorean.services.olm.selector import SelectorError, SupportPolicy, select_supported

__all__ = [
    "OlmPaths",
    "olm_paths",
    "production_version",
    "bundle_versions",
    "supported_versions",
    "supported_versions_in",
]

_OPM_TIMEOUT_SECONDS = 10 * 60.0


@dataclass(frozen=True, slots=True)
class OlmPaths:
    """Locations inside a managed-tenants clone, relative to its root."""

    bundle_folder: str
    addon_file: str


def olm_paths(olm_type: OlmType) -> OlmPaths:
    if olm_type == OLM_TYPE_RHOAM:
        return OlmPaths(
            bundle_folder="managed-api-service",
            addon_file="addons/rhoams/metadata/production/addon.yaml",
        )
    return OlmPaths(
        bundle_folder="addons/integreatly-operator/bundles",
        addon_file="addons/integreatly-operator/metadata/production/addon.yaml",
    )


def _read_mapping(path: Path) -> Result[dict[str, object], SelectorError]:
    match read_yaml(path):
        case Err(e):
            return Err(SelectorError(kind="read_failed", message=e.message))
        case Ok(data):
            document = as_str_dict(data)
            if document is None:
                return Err(SelectorError(kind="read_failed", message=f"{path} is not a YAML mapping"))
            return Ok(document)


def production_version(addon_file: Path, olm_type: OlmType) -> Result[Version, SelectorError]:
    loaded = _read_mapping(addon_file)
    if isinstance(loaded, Err):
        return loaded

    channels = get_list(loaded.value, "channels") or []
    first = as_str_dict(channels[0]) if channels else None
    current = get_str(first, "currentCSV") if first is not None else None
    if current is None or ".v" not in current:
        return Err(
            SelectorError(
                kind="read_failed",
                message=f"{addon_file} has no channels[0].currentCSV of the form <name>.v<version>",
            )
        )

    match parse_version(current.split(".v", 1)[1], olm_type):
        case Err(e):
            return Err(SelectorError(kind="invalid_input", message=f"{addon_file}: {e.message}"))
        case Ok(version):
            return Ok(version)


def bundle_versions(bundle_folder: Path, olm_type: OlmType) -> Result[list[Version], SelectorError]:
    """Versions named by the bundle directories of ``bundle_folder``."""
    if not bundle_folder.is_dir():
        return Err(SelectorError(kind="read_failed", message=f"{bundle_folder} is not a directory"))

    versions: list[Version] = []
    for bundle in sorted(p for p in bundle_folder.iterdir() if p.is_dir()):
        if bundle.name.startswith("."):
            continue
        match parse_version(bundle.name, olm_type):
            case Err(e):
                return Err(
                    SelectorError(
                        kind="invalid_input",
                        message=f"bundle directory {bundle}: {e.message}",
                    )
                )
            case Ok(version):
                versions.append(version)
    return Ok(versions)


def _export_index(
    repo_dir: Path, paths: OlmPaths, *, console: ConsoleProtocol
) -> Result[OlmPaths, SelectorError]:
    loaded = _read_mapping(repo_dir / paths.addon_file)
    if isinstance(loaded, Err):
        return loaded
    index_image = get_str(loaded.value, "indexImage")
    if index_image is None:
        return Err(
            SelectorError(kind="read_failed", message=f"{paths.addon_file} has no indexImage")
        )

    cmd = ["opm", "index", "export", f"--index={index_image}", f"--download-folder={repo_dir}"]
    console.debug(" ".join(cmd))
    match run_process(cmd, cwd=repo_dir, timeout=_OPM_TIMEOUT_SECONDS):
        case Err(e):
            return Err(
                SelectorError(
                    kind="remote_failed",
                    message=f"error when executing {' '.join(cmd)}",
                    hint=e.detail,
                )
            )
        case Ok(_):
            return Ok(
                OlmPaths(
                    bundle_folder=paths.bundle_folder,
                    addon_file="managed-api-service/package.yaml",
                )
            )


def supported_versions_in(
    repo_dir: Path,
    *,
    olm_type: OlmType,
    policy: SupportPolicy,
    console: ConsoleProtocol,
) -> Result[list[Version], SelectorError]:
    """Compute the supported window from a managed-tenants clone."""
    paths = olm_paths(olm_type)
    if olm_type == OLM_TYPE_RHOAM:
        exported = _export_index(repo_dir, paths, console=console)
        if isinstance(exported, Err):
            return exported
        paths = exported.value

    production = production_version(repo_dir / paths.addon_file, olm_type)
    if isinstance(production, Err):
        return production
    console.debug(f"production version: {production.value}")

    versions = bundle_versions(repo_dir / paths.bundle_folder, olm_type)
    if isinstance(versions, Err):
        return versions

    return select_supported(versions.value, production.value, policy)


def supported_versions(
    repo_url: str,
    work_dir: Path,
    *,
    olm_type: OlmType = OLM_TYPE_RHMI,
    policy: SupportPolicy,
    console: ConsoleProtocol,
) -> Result[list[Version], SelectorError]:
    """Clone ``repo_url`` into ``work_dir`` and compute the supported window."""
    repo_dir = work_dir / "managed-tenants"
    console.debug(f"git clone {repo_url}")
    match clone(repo_url, repo_dir, depth=1):
        case Err(e):
            message = f"can not clone {repo_url}"
            return Err(SelectorError(kind="remote_failed", message=message, hint=e.message))
        case Ok(_):
            pass

    return supported_versions_in(repo_dir, olm_type=olm_type, policy=policy, console=console)
