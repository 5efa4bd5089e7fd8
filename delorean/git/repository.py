"""Git repository abstraction.

Wraps the ``git`` CLI for the operations a promotion needs: clone at a
branch or tag, branch, stage, commit as the bot identity, and push to a
token-authenticated remote. All operations return Result types.

Usage:
    match clone(url, dest, ref="main"):
        case Ok(repo):
            repo.create_branch("rhoams-stage-v1.4.0")
        case Err(e):
            print(f"Error: {e.message}")
"""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from pathlib import Path

from delorean.core.result import Err, Ok, Result
from delorean.platform.process import ProcessError
from delorean.platform.process import run as run_process

_GIT_TIMEOUT_SECONDS = 30.0
_GIT_NETWORK_TIMEOUT_SECONDS = 3 * 60.0
_NETWORK_COMMANDS = {"clone", "fetch", "ls-remote", "pull", "push"}

__all__ = [
    "GitError",
    "GitStatus",
    "Repository",
    "StatusEntry",
    "basic_auth_header",
    "clone",
]


@dataclass(frozen=True, slots=True)
class GitError:
    """Error from a git operation.

    Attributes:
        command: The git command that failed
        message: Error message
        returncode: Process return code
    """

    command: str
    message: str
    returncode: int = 1


@dataclass(frozen=True, slots=True)
class StatusEntry:
    """A single entry in git status.

    Attributes:
        xy: Two-character status code (e.g., "M ", " M", "??")
        path: File path
    """

    xy: str
    path: str

    @property
    def is_untracked(self) -> bool:
        return self.xy == "??"


@dataclass(frozen=True, slots=True)
class GitStatus:
    """Parsed ``git status --porcelain=v1 -b``."""

    branch: str
    entries: tuple[StatusEntry, ...] = field(default_factory=tuple)

    @property
    def is_clean(self) -> bool:
        return len(self.entries) == 0


def basic_auth_header(token: str, user: str = "oauth2") -> str:
    """HTTP header value authenticating git over HTTPS with a token."""
    raw = f"{user}:{token}".encode()
    return f"Authorization: Basic {base64.b64encode(raw).decode('ascii')}"


def _git_error(command: str, e: ProcessError, fallback: str) -> GitError:
    return GitError(
        command=command,
        message=e.stderr.strip() or e.stdout.strip() or fallback,
        returncode=e.returncode,
    )


def clone(
    url: str,
    dest: Path,
    *,
    ref: str | None = None,
    depth: int | None = None,
    auth_header: str | None = None,
) -> Result[Repository, GitError]:
    """Clone ``url`` into ``dest`` with ``ref`` (a branch or a tag) checked out.

    Without ``ref`` the remote default branch is checked out.
    """
    cmd = ["git"]
    if auth_header is not None:
        cmd += ["-c", f"http.extraHeader={auth_header}"]
    cmd += ["clone"]
    if ref is not None:
        cmd += ["--branch", ref]
    if depth is not None:
        cmd += ["--depth", str(depth)]
    cmd += [url, str(dest)]

    dest.parent.mkdir(parents=True, exist_ok=True)
    result = run_process(cmd, cwd=dest.parent, timeout=_GIT_NETWORK_TIMEOUT_SECONDS)
    match result:
        case Err(e):
            return Err(_git_error(f"clone {url}", e, "clone failed"))
        case Ok(_):
            return Ok(Repository(dest))


class Repository:
    """Git repository abstraction.

    Attributes:
        path: Path to the repository root
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return (self.path / ".git").exists()

    def status(self) -> Result[GitStatus, GitError]:
        result = self._run(["status", "--porcelain=v1", "-b", "--untracked-files=all"])
        match result:
            case Err(e):
                return Err(_git_error("status", e, "git status failed"))
            case Ok(stdout):
                return Ok(self._parse_status(stdout))

    def is_clean(self) -> bool:
        """Check if working tree is clean (no changes).

        Returns False if status cannot be determined.
        """
        match self.status():
            case Ok(status):
                return status.is_clean
            case Err(_):
                return False

    def current_branch(self) -> str | None:
        """Get current branch name.

        Returns None if detached HEAD or error.
        """
        result = self._run(["rev-parse", "--abbrev-ref", "HEAD"])
        match result:
            case Ok(stdout):
                branch = stdout.strip()
                return None if branch == "HEAD" else branch
            case Err(_):
                return None

    def head_sha(self) -> Result[str, GitError]:
        result = self._run(["rev-parse", "HEAD"])
        match result:
            case Err(e):
                return Err(_git_error("rev-parse HEAD", e, "can not resolve HEAD"))
            case Ok(stdout):
                return Ok(stdout.strip())

    def add_remote(self, name: str, url: str) -> Result[None, GitError]:
        result = self._run(["remote", "add", name, url])
        match result:
            case Err(e):
                return Err(_git_error(f"remote add {name}", e, "remote add failed"))
            case Ok(_):
                return Ok(None)

    def checkout(self, branch: str) -> Result[None, GitError]:
        result = self._run(["checkout", branch])
        match result:
            case Err(e):
                return Err(_git_error(f"checkout {branch}", e, "checkout failed"))
            case Ok(_):
                return Ok(None)

    def create_branch(self, branch: str, start_point: str | None = None) -> Result[None, GitError]:
        args = ["checkout", "-b", branch]
        if start_point is not None:
            args.append(start_point)
        result = self._run(args)
        match result:
            case Err(e):
                return Err(_git_error(f"checkout -b {branch}", e, "branch creation failed"))
            case Ok(_):
                return Ok(None)

    def add(self, pathspec: str) -> Result[None, GitError]:
        """Stage additions, modifications and deletions under ``pathspec``."""
        result = self._run(["add", "--all", "--", pathspec])
        match result:
            case Err(e):
                return Err(_git_error(f"add {pathspec}", e, "git add failed"))
            case Ok(_):
                return Ok(None)

    def commit(self, message: str, *, author_name: str, author_email: str) -> Result[str, GitError]:
        """Commit all tracked changes as the given identity; returns the new HEAD sha."""
        result = self._run(
            ["commit", "--all", "--message", message],
            config={"user.name": author_name, "user.email": author_email},
        )
        match result:
            case Err(e):
                return Err(_git_error("commit", e, "commit failed"))
            case Ok(_):
                return self.head_sha()

    def remote_branch_sha(
        self, remote: str, branch: str, *, auth_header: str | None = None
    ) -> Result[str | None, GitError]:
        """SHA of ``branch`` on ``remote``, or None when the branch does not exist."""
        result = self._run(
            ["ls-remote", "--heads", remote, f"refs/heads/{branch}"],
            config=self._auth_config(auth_header),
        )
        match result:
            case Err(e):
                return Err(_git_error(f"ls-remote {remote}", e, "ls-remote failed"))
            case Ok(stdout):
                for line in stdout.splitlines():
                    sha, _, ref = line.partition("\t")
                    if ref.strip() == f"refs/heads/{branch}":
                        return Ok(sha.strip())
                return Ok(None)

    def fetch_branch(
        self, remote: str, branch: str, *, auth_header: str | None = None
    ) -> Result[None, GitError]:
        result = self._run(
            ["fetch", remote, f"refs/heads/{branch}:refs/remotes/{remote}/{branch}"],
            config=self._auth_config(auth_header),
        )
        match result:
            case Err(e):
                return Err(_git_error(f"fetch {remote} {branch}", e, "fetch failed"))
            case Ok(_):
                return Ok(None)

    def push(
        self, remote: str, branch: str, *, auth_header: str | None = None
    ) -> Result[None, GitError]:
        """Push ``branch`` to the same name on ``remote`` (never forced)."""
        result = self._run(
            ["push", remote, f"refs/heads/{branch}:refs/heads/{branch}"],
            config=self._auth_config(auth_header),
        )
        match result:
            case Err(e):
                return Err(_git_error(f"push {remote} {branch}", e, "push failed"))
            case Ok(_):
                return Ok(None)

    def _auth_config(self, auth_header: str | None) -> dict[str, str]:
        if auth_header is None:
            return {}
        return {"http.extraHeader": auth_header}

    def _run(
        self, args: list[str], *, config: dict[str, str] | None = None
    ) -> Result[str, ProcessError]:
        """Run a git command in this repository."""
        command = args[0] if args else ""
        timeout = (
            _GIT_NETWORK_TIMEOUT_SECONDS if command in _NETWORK_COMMANDS else _GIT_TIMEOUT_SECONDS
        )
        options: list[str] = []
        for key, value in (config or {}).items():
            options += ["-c", f"{key}={value}"]
        return run_process(
            ["git", "-C", str(self.path), *options, *args], cwd=self.path, timeout=timeout
        )

    def _parse_status(self, output: str) -> GitStatus:
        lines = [ln for ln in output.splitlines() if ln.strip()]
        if not lines:
            return GitStatus(branch="")

        # First line is branch info: ## branch...upstream [ahead N]
        branch = lines[0].removeprefix("##").strip().split(" [", 1)[0]
        branch = branch.split("...", 1)[0].strip()

        entries: list[StatusEntry] = []
        for line in lines[1:]:
            if len(line) < 4:
                continue
            entries.append(StatusEntry(xy=line[:2], path=line[3:]))

        return GitStatus(branch=branch, entries=tuple(entries))
