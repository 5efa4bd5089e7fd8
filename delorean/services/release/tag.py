"""Tag a GitHub repository branch head with a release tag."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from delorean.core.result import Err, Ok, Result
from delorean.core.version import Version
from delorean.output.console import ConsoleProtocol, Style
from delorean.services.release.errors import ReleaseError
from delorean.services.release.gh import create_ref, get_ref_sha

__all__ = ["TagOutcome", "tag_repository"]


@dataclass(frozen=True, slots=True)
class TagOutcome:
    status: Literal["created", "exists", "skipped"]
    tag: str
    sha: str | None = None


def tag_repository(
    *,
    cwd: Path,
    repo: str,
    branch: str,
    version: Version,
    skip_pre_release: bool,
    console: ConsoleProtocol,
    dry_run: bool = False,
) -> Result[TagOutcome, ReleaseError]:
    """Tag the head of ``branch`` with ``version.release_tag``.

    Re-running is safe: an existing tag on the same commit is success, an
    existing tag on another commit is a ``tag_conflict``.
    """
    tag = version.release_tag
    if skip_pre_release and version.is_pre_release:
        console.print(f"Skip pre-release version: {version}")
        return Ok(TagOutcome(status="skipped", tag=tag))

    console.print(f"Fetch git ref: refs/heads/{branch}", Style.DIM)
    head = get_ref_sha(cwd=cwd, repo=repo, ref=f"heads/{branch}")
    if isinstance(head, Err):
        return head
    if head.value is None:
        return Err(
            ReleaseError(kind="precondition", message=f"can not find git ref: refs/heads/{branch}")
        )
    sha = head.value

    existing = get_ref_sha(cwd=cwd, repo=repo, ref=f"tags/{tag}")
    if isinstance(existing, Err):
        return existing
    if existing.value is not None:
        if existing.value != sha:
            return Err(
                ReleaseError(
                    kind="tag_conflict",
                    message=(
                        f"tag {tag} is already created but pointing to a different commit. "
                        "Please delete it first"
                    ),
                    hint=f"{tag} -> {existing.value}, {branch} -> {sha}",
                )
            )
        console.print(f"Git tag {tag} already points to {sha}")
        return Ok(TagOutcome(status="exists", tag=tag, sha=sha))

    console.print(f"Create git tag: {tag}")
    if dry_run:
        console.print(f"dry-run: would tag {repo}@{sha} as {tag}", Style.DIM)
        return Ok(TagOutcome(status="created", tag=tag, sha=sha))

    created = create_ref(cwd=cwd, repo=repo, ref=f"tags/{tag}", sha=sha)
    if isinstance(created, Err):
        return created
    console.success(f"Git tag {tag} created on {repo}@{sha}")
    return Ok(TagOutcome(status="created", tag=tag, sha=sha))
