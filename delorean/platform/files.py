"""Filesystem helpers returning Result instead of raising."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path

from delorean.core.result import Err, Ok, Result

__all__ = ["FileError", "copy_tree", "remove_file"]


@dataclass(frozen=True, slots=True)
class FileError:
    path: Path
    message: str


def copy_tree(src: Path, dest: Path) -> Result[list[Path], FileError]:
    """Copy ``src`` into ``dest`` preserving file modes.

    Existing files in ``dest`` are overwritten. Returns the copied files,
    relative to ``dest``.
    """
    if not src.is_dir():
        return Err(FileError(src, f"source directory {src} does not exist"))
    try:
        shutil.copytree(src, dest, copy_function=shutil.copy2, dirs_exist_ok=True)
    except (OSError, shutil.Error) as e:
        return Err(FileError(dest, f"can not copy {src} to {dest}: {e}"))
    return Ok(sorted(p.relative_to(src) for p in src.rglob("*") if p.is_file()))


def remove_file(path: Path, *, missing_ok: bool = True) -> Result[bool, FileError]:
    """Remove a file; Ok(False) when it was already absent and ``missing_ok``."""
    try:
        path.unlink()
    except FileNotFoundError:
        if missing_ok:
            return Ok(False)
        return Err(FileError(path, f"{path} does not exist"))
    except OSError as e:
        return Err(FileError(path, f"can not remove {path}: {e}"))
    return Ok(True)

