"""Platform abstraction layer."""

from .files import FileError, copy_tree, remove_file
from .process import ProcessError, run

__all__ = [
    # files
    "FileError",
    "copy_tree",
    "remove_file",
    # process
    "ProcessError",
    "run",
]
