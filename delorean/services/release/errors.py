from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReleaseErrorKind = Literal[
    "invalid_input",
    "precondition",
    "dirty_tree",
    "git_failed",
    "manifest_failed",
    "remote_failed",
    "tag_conflict",
    "mr_conflict",
    "gh_missing",
    "cancelled",
]


@dataclass(frozen=True, slots=True)
class ReleaseError:
    kind: ReleaseErrorKind
    message: str
    hint: str | None = None
