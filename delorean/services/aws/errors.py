from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

SweepErrorKind = Literal["remote_failed", "timeout", "cancelled"]


@dataclass(frozen=True, slots=True)
class SweepError:
    kind: SweepErrorKind
    message: str
    hint: str | None = None
