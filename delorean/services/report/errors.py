from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

ReportErrorKind = Literal["remote_failed", "timeout", "invalid_input", "io_failed", "cancelled"]


@dataclass(frozen=True, slots=True)
class ReportError:
    kind: ReportErrorKind
    message: str
    hint: str | None = None
