"""Read-only checks over OLM manifest directories (``ews`` commands)."""

from __future__ import annotations

import json
from collections.abc import Collection
from pathlib import Path

from delorean.core.result import Err, Ok, Result
from delorean.core.structured import StrDict, as_str_dict, get_list, get_str
from delorean.output.console import ConsoleProtocol, Style
from delorean.platform.yaml_files import read_yaml
from delorean.services.olm.csv import find_csv_file, read_csv, read_csv_document
from delorean.services.olm.graph import GraphError, check_completeness, load_csv_set

__all__ = ["check_olm_graph", "find_current_csv", "write_current_csv"]


def _read_failed(message: str, directory: Path) -> GraphError:
    return GraphError(kind="graph_read_failed", message=message, directory=str(directory))


def check_olm_graph(
    root: Path,
    *,
    baselines: Collection[str],
    console: ConsoleProtocol,
) -> Result[None, GraphError]:
    """Check the graph of every sub-directory of ``root``.

    Prints one verdict line per sub-directory and fails if any is broken.
    """
    if not root.is_dir():
        return Err(_read_failed(f"{root} is not a directory", root))

    first_failure: GraphError | None = None
    for sub in sorted(p for p in root.iterdir() if p.is_dir() and not p.name.startswith(".")):
        loaded = load_csv_set(sub)
        if isinstance(loaded, Err):
            return loaded
        csv_set = loaded.value

        if len(csv_set) <= 1:
            console.scoped(sub.name, "no graph to check")
            continue

        match check_completeness(csv_set, baselines):
            case Ok(_):
                console.scoped(sub.name, "OLM graph is complete", Style.SUCCESS)
            case Err(e):
                console.print(e.message, Style.ERROR)
                first_failure = first_failure or e

    if first_failure is not None:
        return Err(
            GraphError(
                kind=first_failure.kind,
                message=f"OLM graph check failed in {root}",
                directory=str(root),
                csv_name=first_failure.csv_name,
                missing_target=first_failure.missing_target,
                hint=first_failure.message,
            )
        )
    return Ok(None)


def _default_channel_csv(package_dir: Path) -> Result[str, GraphError]:
    matches = sorted(package_dir.glob("*.package.yaml"))
    if not matches:
        return Err(
            GraphError(
                kind="graph_read_failed",
                message=f"no package.yaml file found in {package_dir}",
                directory=str(package_dir),
            )
        )

    loaded = read_yaml(matches[0])
    if isinstance(loaded, Err):
        return Err(_read_failed(loaded.error.message, package_dir))
    package = as_str_dict(loaded.value) or {}

    default_channel = get_str(package, "defaultChannel")
    channels = [c for c in (as_str_dict(item) for item in get_list(package, "channels") or []) if c]
    for channel in channels:
        # Without a defaultChannel the first channel is the default.
        if default_channel is None or get_str(channel, "name") == default_channel:
            current = get_str(channel, "currentCSV")
            if current:
                return Ok(current)
            break

    return Err(
        GraphError(
            kind="graph_read_failed",
            message=f"{matches[0]} has no currentCSV for its default channel",
            directory=str(package_dir),
        )
    )


def find_current_csv(directory: Path) -> Result[tuple[StrDict, Path], GraphError]:
    """The current CSV document of ``directory``.

    ``directory`` may be a single bundle, a package directory with a
    ``*.package.yaml`` naming the current CSV, or a plain manifest directory
    whose highest-ordered bundle wins.
    """
    if find_csv_file(directory) is not None:
        match read_csv_document(directory):
            case Err(e):
                return Err(_read_failed(e.message, directory))
            case Ok(found):
                return Ok(found)

    if any(directory.glob("*.package.yaml")):
        named = _default_channel_csv(directory)
        if isinstance(named, Err):
            return named
        for bundle_dir in sorted(p for p in directory.iterdir() if p.is_dir()):
            match read_csv(bundle_dir):
                case Err(e):
                    return Err(_read_failed(e.message, directory))
                case Ok(csv) if csv.name == named.value:
                    return _document(csv.path.parent, directory)
                case Ok(_):
                    continue
        return Err(
            GraphError(
                kind="graph_empty",
                message=f"failed to find current csv {named.value} in {directory}",
                directory=str(directory),
                csv_name=named.value,
            )
        )

    loaded = load_csv_set(directory)
    if isinstance(loaded, Err):
        return loaded
    current = loaded.value.current()
    if isinstance(current, Err):
        return current
    return _document(current.value.path.parent, directory)


def _document(bundle_dir: Path, directory: Path) -> Result[tuple[StrDict, Path], GraphError]:
    match read_csv_document(bundle_dir):
        case Err(e):
            return Err(_read_failed(e.message, directory))
        case Ok(found):
            return Ok(found)


def write_current_csv(
    directory: Path,
    output: Path,
    *,
    console: ConsoleProtocol,
) -> Result[Path, GraphError]:
    """Write the current CSV of ``directory`` to ``output`` as JSON."""
    found = find_current_csv(directory)
    if isinstance(found, Err):
        return found
    document, csv_file = found.value

    console.print(f"Write current CSV {csv_file} to {output}")
    try:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(document, indent=2, default=str) + "\n", encoding="utf-8")
    except OSError as e:
        return Err(
            GraphError(
                kind="graph_read_failed",
                message=f"can not write {output}: {e}",
                directory=str(directory),
            )
        )
    return Ok(csv_file)
