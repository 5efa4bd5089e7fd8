from __future__ import annotations

import json
import shutil
from pathlib import Path
from time import sleep

from delorean.core.result import Err, Ok, Result
from delorean.core.structured import as_str_dict, get_str, get_table
from delorean.platform.process import ProcessError
from delorean.platform.process import run as run_process
from delorean.services.release.errors import ReleaseError, ReleaseErrorKind
from delorean.services.release.timeouts import (
    GH_READ_RETRY_ATTEMPTS,
    GH_READ_RETRY_DELAY_SECONDS,
    GH_TIMEOUT_SECONDS,
)

__all__ = [
    "create_ref",
    "ensure_gh_available",
    "gh_api_json",
    "get_ref_sha",
    "run_gh_read",
]


def _is_transient_gh_error(error: ProcessError) -> bool:
    text = f"{error.stderr}\n{error.stdout}".lower()
    markers = (
        "timed out",
        "timeout",
        "connection reset",
        "connection refused",
        "temporarily unavailable",
        "service unavailable",
        "bad gateway",
        "gateway timeout",
        "tls handshake timeout",
        "network is unreachable",
        "http 429",
        "http 500",
        "http 502",
        "http 503",
        "http 504",
    )
    if error.returncode == -1 and "timed out" in text:
        return True
    return any(marker in text for marker in markers)


def _is_not_found(error: ProcessError) -> bool:
    return "http 404" in f"{error.stderr}\n{error.stdout}".lower()


def run_gh_read(
    *,
    cwd: Path,
    cmd: list[str],
    kind: ReleaseErrorKind,
    message: str,
    hint: str | None = None,
    timeout: float = GH_TIMEOUT_SECONDS,
    retry_attempts: int = GH_READ_RETRY_ATTEMPTS,
) -> Result[str, ProcessError | ReleaseError]:
    """Run a read-only gh command, retrying transient failures.

    A 404 is returned as the raw ``ProcessError`` so callers can treat it as
    "absent"; every other failure becomes a ``ReleaseError``.
    """
    attempts = max(1, retry_attempts)
    for attempt in range(attempts):
        result = run_process(cmd, cwd=cwd, timeout=timeout)
        if isinstance(result, Ok):
            return result

        error = result.error
        if _is_not_found(error):
            return Err(error)
        if attempt < attempts - 1 and _is_transient_gh_error(error):
            sleep(GH_READ_RETRY_DELAY_SECONDS * (attempt + 1))
            continue

        return Err(ReleaseError(kind=kind, message=message, hint=error.stderr.strip() or hint))

    return Err(ReleaseError(kind=kind, message=message, hint=hint))


def ensure_gh_available() -> Result[None, ReleaseError]:
    if shutil.which("gh") is None:
        return Err(
            ReleaseError(
                kind="gh_missing",
                message="gh: missing",
                hint="Install GitHub CLI: https://cli.github.com/",
            )
        )
    return Ok(None)


def _parse_json(text: str, endpoint: str) -> Result[object, ReleaseError]:
    try:
        return Ok(json.loads(text))
    except json.JSONDecodeError as e:
        return Err(
            ReleaseError(
                kind="remote_failed",
                message=f"gh api returned invalid JSON: {e}",
                hint=endpoint,
            )
        )


def gh_api_json(*, cwd: Path, endpoint: str) -> Result[object | None, ReleaseError]:
    """GET ``endpoint``; Ok(None) when GitHub answers 404."""
    result = run_gh_read(
        cwd=cwd,
        cmd=["gh", "api", endpoint],
        kind="remote_failed",
        message=f"gh api failed: {endpoint}",
        hint=endpoint,
    )
    match result:
        case Err(ProcessError()):
            return Ok(None)
        case Err(ReleaseError() as e):
            return Err(e)
        case Ok(text):
            return _parse_json(text, endpoint)
    return Err(ReleaseError(kind="remote_failed", message=f"gh api failed: {endpoint}"))


def get_ref_sha(*, cwd: Path, repo: str, ref: str) -> Result[str | None, ReleaseError]:
    """SHA a ref (``heads/main``, ``tags/v1.0.0``) points at, or None if absent."""
    endpoint = f"repos/{repo}/git/ref/{ref}"
    obj = gh_api_json(cwd=cwd, endpoint=endpoint)
    if isinstance(obj, Err):
        return obj
    if obj.value is None:
        return Ok(None)

    data = as_str_dict(obj.value)
    target = get_table(data, "object") if data is not None else None
    sha = get_str(target, "sha") if target is not None else None
    if sha is None:
        return Err(
            ReleaseError(
                kind="remote_failed",
                message=f"unexpected ref payload: {repo}@{ref}",
                hint=endpoint,
            )
        )
    return Ok(sha)


def create_ref(*, cwd: Path, repo: str, ref: str, sha: str) -> Result[None, ReleaseError]:
    """Create ``refs/<ref>`` pointing at ``sha`` (never retried)."""
    cmd = [
        "gh",
        "api",
        "--method",
        "POST",
        f"repos/{repo}/git/refs",
        "-f",
        f"ref=refs/{ref}",
        "-f",
        f"sha={sha}",
    ]
    result = run_process(cmd, cwd=cwd, timeout=GH_TIMEOUT_SECONDS)
    if isinstance(result, Err):
        return Err(
            ReleaseError(
                kind="remote_failed",
                message=f"failed to create {ref} in {repo}",
                hint=result.error.stderr.strip() or None,
            )
        )
    return Ok(None)
