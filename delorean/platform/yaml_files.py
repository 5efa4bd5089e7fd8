"""YAML file I/O.

Documents are loaded into plain ``dict``/``list`` trees so that every key a
tool does not know about survives a load/edit/dump cycle. Key order is
preserved on dump.
"""

from __future__ import annotations

from pathlib import Path

import yaml

from delorean.core.result import Err, Ok, Result
from delorean.platform.files import FileError

__all__ = ["dump_yaml", "load_yaml_text", "read_yaml", "write_yaml"]


def load_yaml_text(text: str, *, source: Path) -> Result[object, FileError]:
    try:
        return Ok(yaml.safe_load(text))
    except yaml.YAMLError as e:
        return Err(FileError(source, f"invalid YAML in {source}: {e}"))


def read_yaml(path: Path) -> Result[object, FileError]:
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return Err(FileError(path, f"{path} does not exist"))
    except (OSError, UnicodeDecodeError) as e:
        return Err(FileError(path, f"can not read {path}: {e}"))
    return load_yaml_text(text, source=path)


def dump_yaml(data: object) -> str:
    return yaml.safe_dump(data, default_flow_style=False, sort_keys=False, allow_unicode=True)


def write_yaml(path: Path, data: object) -> Result[None, FileError]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(dump_yaml(data), encoding="utf-8")
    except (OSError, yaml.YAMLError) as e:
        return Err(FileError(path, f"can not write {path}: {e}"))
    return Ok(None)
