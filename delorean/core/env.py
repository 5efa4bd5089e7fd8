"""Credentials from the environment.

Secrets are never read from the config file. Commands accept a flag for
each credential and fall back to the matching environment variable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

from delorean.core.result import Err, Ok, Result

__all__ = [
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "EnvError",
    "GITHUB_TOKEN",
    "GITHUB_USER",
    "GITLAB_TOKEN",
    "POLARION_PASSWORD",
    "POLARION_USERNAME",
    "PROMETHEUS_TOKEN",
    "REPORTPORTAL_TOKEN",
    "require_env",
    "require_value",
]

GITHUB_TOKEN = "GITHUB_TOKEN"
GITHUB_USER = "GITHUB_USER"
GITLAB_TOKEN = "GITLAB_TOKEN"
AWS_ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
AWS_SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"
REPORTPORTAL_TOKEN = "REPORTPORTAL_TOKEN"
POLARION_USERNAME = "POLARION_USERNAME"
POLARION_PASSWORD = "POLARION_PASSWORD"
PROMETHEUS_TOKEN = "PROMETHEUS_TOKEN"


@dataclass(frozen=True, slots=True)
class EnvError:
    kind: Literal["missing_env"]
    message: str
    hint: str | None = None


def require_env(name: str, *, flag: str | None = None) -> Result[str, EnvError]:
    """Return the non-empty value of ``name`` from the environment."""
    value = os.environ.get(name, "").strip()
    if value:
        return Ok(value)
    supply = f"set {name}" if flag is None else f"set {name} or pass {flag}"
    return Err(
        EnvError(
            kind="missing_env",
            message=f"{name} is required: {supply}",
        )
    )


def require_value(value: str | None, name: str, *, flag: str | None = None) -> Result[str, EnvError]:
    """Prefer an explicit flag value, then the environment."""
    if value is not None and value.strip():
        return Ok(value.strip())
    return require_env(name, flag=flag)
