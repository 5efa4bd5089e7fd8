"""Core domain types and logic."""

from .config import Config, ConfigError, load_config, resolve_config
from .context import RunContext, TaskCancelled
from .errors import ErrorCode
from .result import Err, Ok, Result, is_err, is_ok
from .tasks import run_tasks
from .version import Version, VersionError, parse_version

__all__ = [
    # config
    "Config",
    "ConfigError",
    "load_config",
    "resolve_config",
    # context
    "RunContext",
    "TaskCancelled",
    # errors
    "ErrorCode",
    # result
    "Err",
    "Ok",
    "Result",
    "is_err",
    "is_ok",
    # tasks
    "run_tasks",
    # version
    "Version",
    "VersionError",
    "parse_version",
]
