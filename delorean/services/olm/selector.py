"""Supported-version window.

The supported versions of a product are every patch release of the newest
``max_minors`` minor streams of the newest ``max_majors`` major streams,
never counting anything newer than what production currently runs.

Example: bundles 1.4.0 .. 1.7.2, production 1.6.1, policy (1, 3) gives
1.4.0, 1.5.0, 1.6.0, 1.6.1.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal

from delorean.core.result import Err, Ok, Result
from delorean.core.version import Version

__all__ = [
    "SelectorError",
    "SupportPolicy",
    "select_majors",
    "select_minors",
    "select_supported",
    "trim_to_production",
]


@dataclass(frozen=True, slots=True)
class SelectorError:
    kind: Literal[
        "all_newer_than_production",
        "empty_selection",
        "invalid_input",
        "read_failed",
        "remote_failed",
    ]
    message: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class SupportPolicy:
    max_majors: int = 1
    max_minors: int = 3


def trim_to_production(
    versions: Iterable[Version], production: Version
) -> Result[list[Version], SelectorError]:
    """Drop versions from a newer major or minor stream than ``production``.

    Patch releases of the production minor stream are kept even when newer.
    """
    kept = [
        v
        for v in versions
        if v.major < production.major
        or (v.major == production.major and v.minor <= production.minor)
    ]
    if not kept:
        return Err(
            SelectorError(
                kind="all_newer_than_production",
                message=f"all versions are newer than production {production}",
            )
        )
    return Ok(kept)


def select_majors(versions: Iterable[Version], max_majors: int) -> Result[list[int], SelectorError]:
    majors = sorted({v.major for v in versions})[-max_majors:]
    if not majors:
        return Err(SelectorError(kind="empty_selection", message="no major version to support"))
    return Ok(majors)


def select_minors(
    versions: Iterable[Version], majors: Iterable[int], max_minors: int
) -> dict[int, list[int]]:
    wanted = set(majors)
    minors: dict[int, set[int]] = {}
    for v in versions:
        if v.major in wanted:
            minors.setdefault(v.major, set()).add(v.minor)
    return {major: sorted(values)[-max_minors:] for major, values in sorted(minors.items())}


def select_supported(
    versions: Iterable[Version],
    production: Version,
    policy: SupportPolicy,
) -> Result[list[Version], SelectorError]:
    """Every version inside the supported window, ascending."""
    if policy.max_majors < 1 or policy.max_minors < 1:
        return Err(
            SelectorError(
                kind="invalid_input",
                message=(
                    "the number of supported major and minor versions must be at least 1 "
                    f"(got {policy.max_majors} and {policy.max_minors})"
                ),
            )
        )

    trimmed = trim_to_production(versions, production)
    if isinstance(trimmed, Err):
        return trimmed

    majors = select_majors(trimmed.value, policy.max_majors)
    if isinstance(majors, Err):
        return majors

    minors = select_minors(trimmed.value, majors.value, policy.max_minors)
    selected = sorted(v for v in trimmed.value if v.minor in minors.get(v.major, ()))
    if not selected:
        return Err(SelectorError(kind="empty_selection", message="no patch version to support"))
    return Ok(selected)
