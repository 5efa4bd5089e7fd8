"""GitLab merge requests through python-gitlab.

The promoter only depends on ``MergeRequestClient``; tests provide an
in-memory implementation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import gitlab
import requests

from delorean.core.result import Err, Ok, Result
from delorean.services.release.errors import ReleaseError
from delorean.services.release.timeouts import GITLAB_TIMEOUT_SECONDS

__all__ = ["GitLabMergeRequests", "MergeRequestClient", "MergeRequestSpec"]


@dataclass(frozen=True, slots=True)
class MergeRequestSpec:
    """A merge request from ``source_project:source_branch`` to ``target_project:target_branch``."""

    source_project: str
    source_branch: str
    target_project: str
    target_branch: str
    title: str
    description: str = ""
    remove_source_branch: bool = True


class MergeRequestClient(Protocol):
    def find_open(self, spec: MergeRequestSpec) -> Result[str | None, ReleaseError]:
        """URL of an open MR with the same source and target, if any."""
        ...

    def create(self, spec: MergeRequestSpec) -> Result[str, ReleaseError]:
        """Open the MR and return its URL."""
        ...


def _remote_error(action: str, e: Exception) -> ReleaseError:
    return ReleaseError(kind="remote_failed", message=f"GitLab: {action} failed", hint=str(e))


class GitLabMergeRequests:
    def __init__(self, url: str, token: str, *, timeout: float = GITLAB_TIMEOUT_SECONDS) -> None:
        self._gl = gitlab.Gitlab(url, private_token=token, timeout=timeout)

    def find_open(self, spec: MergeRequestSpec) -> Result[str | None, ReleaseError]:
        try:
            source = self._gl.projects.get(spec.source_project)
            target = self._gl.projects.get(spec.target_project)
            candidates = target.mergerequests.list(
                state="opened",
                source_branch=spec.source_branch,
                target_branch=spec.target_branch,
                get_all=True,
            )
        except (gitlab.exceptions.GitlabError, requests.RequestException) as e:
            return Err(_remote_error(f"list merge requests of {spec.target_project}", e))

        for mr in candidates:
            if getattr(mr, "source_project_id", None) == source.id:
                return Ok(str(mr.web_url))
        return Ok(None)

    def create(self, spec: MergeRequestSpec) -> Result[str, ReleaseError]:
        try:
            source = self._gl.projects.get(spec.source_project)
            target = self._gl.projects.get(spec.target_project)
            mr = source.mergerequests.create(
                {
                    "source_branch": spec.source_branch,
                    "target_branch": spec.target_branch,
                    "target_project_id": target.id,
                    "title": spec.title,
                    "description": spec.description,
                    "remove_source_branch": spec.remove_source_branch,
                }
            )
        except gitlab.exceptions.GitlabCreateError as e:
            if e.response_code == 409:
                return Err(
                    ReleaseError(
                        kind="mr_conflict",
                        message=f"a merge request for {spec.source_branch} is already open",
                        hint=str(e),
                    )
                )
            return Err(_remote_error("create merge request", e))
        except (gitlab.exceptions.GitlabError, requests.RequestException) as e:
            return Err(_remote_error("create merge request", e))

        return Ok(str(mr.web_url))
