"""Exit codes and the shared error payload shape.

Each component defines its own frozen error dataclass. They all expose the
same three fields so the CLI can render any of them:

- ``kind``: a stable machine-readable identifier (taxonomy + sub-kind)
- ``message``: a single human-readable line
- ``hint``: optional detail (stderr of a failed command, a URL, ...)
"""

from __future__ import annotations

from enum import IntEnum

__all__ = ["ErrorCode", "render_error"]


class ErrorCode(IntEnum):
    """Process exit codes.

    Every command exits 0 on success and 1 on any error.
    """

    OK = 0
    ERROR = 1

    def __str__(self) -> str:
        return self.name.lower()

    @property
    def is_success(self) -> bool:
        return self == ErrorCode.OK


def render_error(error: object) -> str:
    """Format any error payload as the single stderr line ``Error: <message>``."""
    message: str = getattr(error, "message", str(error))
    first = message.splitlines()[0] if message else "unknown error"
    return f"Error: {first}"
