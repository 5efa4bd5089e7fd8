"""Product release versions.

A version is ``M.m.p`` with an optional ``-build`` suffix (``2.0.0-er4``,
``1.12.0-rc1``). A non-empty build marks a pre-release, which orders before
the final release of the same base.

Two product families share the format but name their branches and tags
differently:

- ``integreatly-operator`` (RHMI): ``release-v2.0``, ``v2.0.0``
- ``managed-api-service`` (RHOAM): ``rhoam-release-v1.4``, ``rhoam-v1.4.0``
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

from delorean.core.result import Err, Ok, Result

__all__ = [
    "OLM_TYPE_RHMI",
    "OLM_TYPE_RHOAM",
    "OlmType",
    "Version",
    "VersionError",
    "compare",
    "parse_version",
]

OlmType = Literal["integreatly-operator", "managed-api-service"]

OLM_TYPE_RHMI: OlmType = "integreatly-operator"
OLM_TYPE_RHOAM: OlmType = "managed-api-service"

_FAMILY_PREFIX: dict[str, str] = {
    OLM_TYPE_RHMI: "",
    OLM_TYPE_RHOAM: "rhoam-",
}

_NUMBER_RE = re.compile(r"^(0|[1-9]\d*)$")
_PREPARE_BRANCH_TEMPLATE = "prepare-for-release-{tag}"


@dataclass(frozen=True, slots=True)
class VersionError:
    kind: Literal["invalid_version"]
    message: str
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class Version:
    """An immutable product version.

    Equality and ordering ignore the product family.
    """

    major: int
    minor: int
    patch: int
    build: str = ""
    olm_type: OlmType = field(default=OLM_TYPE_RHMI, compare=False)

    # -- ordering ---------------------------------------------------------

    def sort_key(self) -> tuple[int, int, int, int, str]:
        # Final releases (rank 1) sort after every pre-release of the same base.
        return (self.major, self.minor, self.patch, 0 if self.build else 1, self.build)

    def __lt__(self, other: Version) -> bool:
        return self.sort_key() < other.sort_key()

    def __le__(self, other: Version) -> bool:
        return self.sort_key() <= other.sort_key()

    def __gt__(self, other: Version) -> bool:
        return self.sort_key() > other.sort_key()

    def __ge__(self, other: Version) -> bool:
        return self.sort_key() >= other.sort_key()

    # -- classification ---------------------------------------------------

    @property
    def is_pre_release(self) -> bool:
        return self.build != ""

    @property
    def is_patch_release(self) -> bool:
        return self.patch != 0

    def final(self) -> Version:
        """The same base without a build suffix."""
        return Version(self.major, self.minor, self.patch, "", self.olm_type)

    # -- derived names ----------------------------------------------------

    @property
    def base(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def major_minor(self) -> str:
        return f"{self.major}.{self.minor}"

    @property
    def tag(self) -> str:
        """Git tag of the operator source repo: ``vM.m.p[-build]``."""
        return f"v{self}"

    @property
    def release_tag(self) -> str:
        """Family-specific release tag (``rhoam-v...`` for RHOAM)."""
        return f"{_FAMILY_PREFIX[self.olm_type]}v{self}"

    @property
    def release_branch(self) -> str:
        return f"{_FAMILY_PREFIX[self.olm_type]}release-v{self.major_minor}"

    @property
    def rc_tag_ref(self) -> str:
        """Prefix matching every pre-release tag of this base."""
        return f"{_FAMILY_PREFIX[self.olm_type]}v{self.base}-"

    @property
    def initial_point_release_tag(self) -> str:
        return f"v{self.major_minor}.0"

    @property
    def prepare_release_branch(self) -> str:
        return _PREPARE_BRANCH_TEMPLATE.format(tag=self.release_tag)

    @property
    def release_branch_image_tag(self) -> str:
        # OpenShift CI publishes release-branch images as M.m; minor releases come from master.
        return self.major_minor if self.is_patch_release else "master"

    @property
    def polarion_release_id(self) -> str:
        return f"v{self.major}_{self.minor}_{self.patch}"

    @property
    def polarion_milestone_id(self) -> str:
        return f"{self.polarion_release_id}_{self.build}"

    def __str__(self) -> str:
        if self.build:
            return f"{self.base}-{self.build}"
        return self.base


def parse_version(text: str, olm_type: OlmType = OLM_TYPE_RHMI) -> Result[Version, VersionError]:
    """Parse ``M.m.p`` or ``M.m.p-build``.

    Rejects the empty string, an empty build (``2.0.0-``), more than one ``-``
    and any component that is not a canonical non-negative integer.
    """
    if text == "":
        return Err(VersionError(kind="invalid_version", message="the version can not be empty"))

    parts = text.split("-")
    if len(parts) > 2:
        return Err(VersionError(kind="invalid_version", message=f"the version {text} is invalid"))

    build = ""
    if len(parts) == 2:
        build = parts[1]
        if build == "":
            return Err(
                VersionError(
                    kind="invalid_version",
                    message=f"the build part of the version {text} is empty",
                )
            )

    numbers = parts[0].split(".")
    if len(numbers) != 3 or not all(_NUMBER_RE.match(n) for n in numbers):
        return Err(
            VersionError(
                kind="invalid_version",
                message=f"the version {text} is invalid",
                hint="expected M.m.p or M.m.p-build",
            )
        )

    major, minor, patch = (int(n) for n in numbers)
    return Ok(Version(major, minor, patch, build, olm_type))


def compare(a: Version, b: Version) -> int:
    """Three-way comparison: -1, 0 or 1."""
    ka = a.sort_key()
    kb = b.sort_key()
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0
