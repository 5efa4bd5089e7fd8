"""Promote one operator bundle version to one addon channel.

A promotion clones the managed-tenants repository and the operator
repository, copies the bundle into the channel directory, rewrites the
manifests, commits as the bot, pushes a branch to the fork and opens a merge
request against the origin.

Every remote write is keyed by the branch ``<addon>-<channel>-v<version>``,
so running the same promotion twice converges: an open merge request
short-circuits, an existing fork branch is reused, and an unchanged tree
produces no commit. The fork is never force-pushed.
"""

from __future__ import annotations

from delorean.core.context import RunContext
from delorean.core.result import Err, Ok, Result
from delorean.core.version import OLM_TYPE_RHOAM
from delorean.git.repository import GitError, Repository, basic_auth_header, clone
from delorean.output.console import ConsoleProtocol, Style
from delorean.platform.files import copy_tree, remove_file
from delorean.services.olm.csv import find_csv_file
from delorean.services.olm.graph import load_csv_set
from delorean.services.olm.manifests import (
    CSVEdits,
    ManifestError,
    copy_image_set,
    csv_name,
    find_package_manifest,
    operator_variant,
    update_csv_file,
    update_package_manifest,
)
from delorean.services.release.errors import ReleaseError
from delorean.services.release.gitlab import MergeRequestClient, MergeRequestSpec
from delorean.services.release.model import (
    PromotionJob,
    PromotionOutcome,
    PromotionRequest,
    PromotionState,
    branch_name,
    commit_message,
    merge_request_title,
)

__all__ = ["FORK_REMOTE", "promote"]

FORK_REMOTE = "fork"
BUNDLE_DOCKERFILE = "bundle.Dockerfile"
USE_CLUSTER_STORAGE = "USE_CLUSTER_STORAGE"
ALERTING_EMAIL_ADDRESS = "ALERTING_EMAIL_ADDRESS"
IMAGE_SET_CHANNELS = ("edge", "stable")
STAGE_CHANNEL = "stage"

_SCOPE = "promote"


def _git_failed(e: GitError) -> ReleaseError:
    return ReleaseError(kind="git_failed", message=f"git {e.command} failed", hint=e.message)


def _manifest_failed(e: ManifestError) -> ReleaseError:
    return ReleaseError(kind="manifest_failed", message=e.message, hint=e.hint)


class _Tracker:
    def __init__(self, console: ConsoleProtocol) -> None:
        self._console = console
        self.states: list[PromotionState] = [PromotionState.INIT]

    def advance(self, state: PromotionState) -> None:
        self.states.append(state)
        self._console.debug(f"promotion state: {state}")


def _precheck(request: PromotionRequest) -> Result[PromotionJob, ReleaseError]:
    channel = request.addon.channel(request.channel)
    if channel is None:
        known = ", ".join(c.name for c in request.addon.channels)
        return Err(
            ReleaseError(
                kind="invalid_input",
                message=f"unknown channel {request.channel!r} for addon {request.addon.name}",
                hint=f"known channels: {known}",
            )
        )
    if request.version.is_pre_release and not channel.allow_pre_release:
        return Err(
            ReleaseError(
                kind="precondition",
                message=f"pre-release version {request.version} can not be promoted to {channel.name}",
            )
        )

    mt_dir = request.work_dir / "managed-tenants"
    operator_dir = request.work_dir / "operator"
    bundles_dir = mt_dir / channel.bundles_directory
    return Ok(
        PromotionJob(
            channel=channel,
            branch=branch_name(request.addon, channel.name, request.version),
            managed_tenants_dir=mt_dir,
            operator_dir=operator_dir,
            source_bundle=operator_dir / request.addon.bundle_path / request.version.base,
            bundles_dir=bundles_dir,
            dest_bundle=bundles_dir / request.version.base,
        )
    )


def _merge_request(request: PromotionRequest, job: PromotionJob) -> MergeRequestSpec:
    return MergeRequestSpec(
        source_project=request.remotes.fork_project,
        source_branch=job.branch,
        target_project=request.remotes.origin_project,
        target_branch=request.remotes.main_branch,
        title=merge_request_title(request.addon, job.channel.name, request.version),
        description=request.description,
    )


def _clone_repositories(
    request: PromotionRequest,
    job: PromotionJob,
    *,
    auth_header: str | None,
    console: ConsoleProtocol,
) -> Result[Repository, ReleaseError]:
    remotes = request.remotes
    console.scoped(_SCOPE, f"clone {remotes.origin_url} ({remotes.main_branch})")
    cloned = clone(
        remotes.origin_url,
        job.managed_tenants_dir,
        ref=remotes.main_branch,
        auth_header=auth_header,
    )
    if isinstance(cloned, Err):
        return Err(_git_failed(cloned.error))
    repo = cloned.value

    added = repo.add_remote(FORK_REMOTE, remotes.fork_url)
    if isinstance(added, Err):
        return Err(_git_failed(added.error))

    tag = request.version.release_tag
    console.scoped(_SCOPE, f"clone {request.addon.bundle_repo} ({tag})")
    operator = clone(request.addon.bundle_repo, job.operator_dir, ref=tag, depth=1)
    if isinstance(operator, Err):
        return Err(_git_failed(operator.error))

    return Ok(repo)


def _create_branch(
    repo: Repository, job: PromotionJob, *, main_branch: str, auth_header: str | None
) -> Result[None, ReleaseError]:
    current = repo.current_branch()
    if current != main_branch:
        return Err(
            ReleaseError(
                kind="precondition",
                message=(
                    f"managed-tenants clone is on {current or 'a detached HEAD'}, "
                    f"expected {main_branch}"
                ),
            )
        )

    remote_sha = repo.remote_branch_sha(FORK_REMOTE, job.branch, auth_header=auth_header)
    if isinstance(remote_sha, Err):
        return Err(_git_failed(remote_sha.error))

    start_point: str | None = None
    if remote_sha.value is not None:
        fetched = repo.fetch_branch(FORK_REMOTE, job.branch, auth_header=auth_header)
        if isinstance(fetched, Err):
            return Err(_git_failed(fetched.error))
        start_point = f"{FORK_REMOTE}/{job.branch}"

    created = repo.create_branch(job.branch, start_point)
    if isinstance(created, Err):
        return Err(_git_failed(created.error))
    return Ok(None)


def _predecessor_name(
    request: PromotionRequest, job: PromotionJob
) -> Result[str | None, ReleaseError]:
    """Name of the CSV the promoted one replaces, from the destination channel."""
    if not job.bundles_dir.is_dir():
        return Ok(None)
    loaded = load_csv_set(job.bundles_dir, olm_type=request.addon.olm_type)
    if isinstance(loaded, Err):
        return Err(ReleaseError(kind="manifest_failed", message=loaded.error.message))
    existing = [csv for csv in loaded.value if csv.directory != request.version.base]
    older = [csv for csv in existing if csv.version < request.version]
    return Ok(older[-1].name if older else None)


def _copy_bundle(job: PromotionJob, *, console: ConsoleProtocol) -> Result[None, ReleaseError]:
    console.scoped(_SCOPE, f"copy {job.source_bundle.name} to {job.bundle_rel}")
    copied = copy_tree(job.source_bundle, job.dest_bundle)
    if isinstance(copied, Err):
        return Err(ReleaseError(kind="precondition", message=copied.error.message))
    for path in copied.value:
        console.debug(f"  {path}")

    removed = remove_file(job.dest_bundle / BUNDLE_DOCKERFILE)
    if isinstance(removed, Err):
        return Err(ReleaseError(kind="manifest_failed", message=removed.error.message))
    return Ok(None)


def _csv_edits(request: PromotionRequest, job: PromotionJob, replaces: str | None) -> CSVEdits:
    version = request.version
    alerting = request.alerting
    email = alerting.prerelease_email if version.is_pre_release else alerting.release_email
    env = {ALERTING_EMAIL_ADDRESS: email}
    remove_env: tuple[str, ...] = ()
    if request.addon.olm_type == OLM_TYPE_RHOAM:
        remove_env = (USE_CLUSTER_STORAGE,)
    else:
        env[USE_CLUSTER_STORAGE] = "false"

    variant = operator_variant(request.addon.operator_name, job.channel.name)
    return CSVEdits(
        name=csv_name(variant, version), replaces=replaces, env=env, remove_env=remove_env
    )


def _update_manifests(
    request: PromotionRequest, job: PromotionJob, *, replaces: str | None, console: ConsoleProtocol
) -> Result[list[str], ReleaseError]:
    """Rewrite the package manifest, the CSV and the image-set; returns the paths to stage."""
    edits = _csv_edits(request, job, replaces)
    staged = [job.bundle_rel]

    package = find_package_manifest(job.bundles_dir)
    if package is None:
        return Err(
            ReleaseError(kind="manifest_failed", message=f"no package manifest in {job.bundle_rel}")
        )
    console.scoped(_SCOPE, f"{package.name}: currentCSV = {edits.name}")
    updated = update_package_manifest(package, edits.name)
    if isinstance(updated, Err):
        return Err(_manifest_failed(updated.error))

    csv_file = find_csv_file(job.dest_bundle)
    if csv_file is None:
        return Err(
            ReleaseError(kind="manifest_failed", message=f"no CSV file in {job.dest_bundle}")
        )
    console.scoped(_SCOPE, f"{csv_file.name}: name = {edits.name}, replaces = {replaces or '-'}")
    edited = update_csv_file(csv_file, edits)
    if isinstance(edited, Err):
        return Err(_manifest_failed(edited.error))

    if job.channel.name in IMAGE_SET_CHANNELS:
        stage = request.addon.channel(STAGE_CHANNEL)
        if stage is None:
            return Err(
                ReleaseError(
                    kind="invalid_input",
                    message=(
                        f"addon {request.addon.name} has no {STAGE_CHANNEL} channel"
                        " to copy the image-set from"
                    ),
                )
            )
        copied = copy_image_set(
            job.managed_tenants_dir / stage.image_sets_directory,
            job.managed_tenants_dir / job.channel.image_sets_directory,
            channel_directory=job.channel.directory,
            version=request.version,
        )
        if isinstance(copied, Err):
            return Err(_manifest_failed(copied.error))
        console.scoped(_SCOPE, f"image-set {copied.value.name}")
        staged.append(job.channel.image_sets_directory)

    return Ok(staged)


def _commit(
    repo: Repository,
    request: PromotionRequest,
    job: PromotionJob,
    staged: list[str],
    *,
    console: ConsoleProtocol,
) -> Result[str | None, ReleaseError]:
    """Commit the staged paths; Ok(None) when there is nothing to commit."""
    for pathspec in staged:
        added = repo.add(pathspec)
        if isinstance(added, Err):
            return Err(_git_failed(added.error))

    status = repo.status()
    if isinstance(status, Err):
        return Err(_git_failed(status.error))
    if status.value.is_clean:
        console.scoped(_SCOPE, f"{job.branch} is already up to date", Style.DIM)
        return Ok(None)

    message = commit_message(request.addon, job.channel.name, request.version)
    console.scoped(_SCOPE, f"commit: {message}")
    committed = repo.commit(message, author_name=request.bot.name, author_email=request.bot.email)
    if isinstance(committed, Err):
        return Err(_git_failed(committed.error))

    after = repo.status()
    if isinstance(after, Err):
        return Err(_git_failed(after.error))
    if not after.value.is_clean:
        dirty = ", ".join(entry.path for entry in after.value.entries)
        return Err(
            ReleaseError(
                kind="dirty_tree",
                message="working tree is not clean after commit",
                hint=dirty,
            )
        )
    return Ok(committed.value)


def _open_merge_request(
    spec: MergeRequestSpec, *, mr_client: MergeRequestClient, console: ConsoleProtocol
) -> Result[tuple[str, bool], ReleaseError]:
    """Return ``(url, created)``."""
    existing = mr_client.find_open(spec)
    if isinstance(existing, Err):
        return existing
    if existing.value is not None:
        return Ok((existing.value, False))

    console.scoped(_SCOPE, f"open merge request: {spec.title}")
    created = mr_client.create(spec)
    if isinstance(created, Err):
        if created.error.kind != "mr_conflict":
            return created
        # Opened concurrently by another run.
        again = mr_client.find_open(spec)
        if isinstance(again, Err):
            return again
        if again.value is None:
            return created
        return Ok((again.value, False))
    return Ok((created.value, True))


def _run(
    request: PromotionRequest,
    job: PromotionJob,
    tracker: _Tracker,
    *,
    mr_client: MergeRequestClient,
    console: ConsoleProtocol,
    ctx: RunContext,
) -> Result[PromotionOutcome, ReleaseError]:
    def checkpoint() -> Result[None, ReleaseError]:
        match ctx.check():
            case Err(e):
                return Err(ReleaseError(kind="cancelled", message=e.message))
            case Ok(_):
                return Ok(None)

    spec = _merge_request(request, job)
    existing = mr_client.find_open(spec)
    if isinstance(existing, Err):
        return existing
    if existing.value is not None:
        console.scoped(_SCOPE, f"merge request already open: {existing.value}")
        tracker.advance(PromotionState.SKIPPED_ALREADY_OPEN)
        return Ok(
            PromotionOutcome(
                state=PromotionState.SKIPPED_ALREADY_OPEN,
                branch=job.branch,
                merge_request_url=existing.value,
                states=tuple(tracker.states),
            )
        )

    auth_header = basic_auth_header(request.token) if request.token else None
    main_branch = request.remotes.main_branch

    cloned = _clone_repositories(request, job, auth_header=auth_header, console=console)
    if isinstance(cloned, Err):
        return cloned
    repo = cloned.value
    tracker.advance(PromotionState.CLONED)

    gate = checkpoint()
    if isinstance(gate, Err):
        return gate
    branched = _create_branch(repo, job, main_branch=main_branch, auth_header=auth_header)
    if isinstance(branched, Err):
        return branched
    tracker.advance(PromotionState.BRANCHED)

    replaces = _predecessor_name(request, job)
    if isinstance(replaces, Err):
        return replaces
    copied = _copy_bundle(job, console=console)
    if isinstance(copied, Err):
        return copied
    tracker.advance(PromotionState.BUNDLE_COPIED)

    staged = _update_manifests(request, job, replaces=replaces.value, console=console)
    if isinstance(staged, Err):
        return staged
    tracker.advance(PromotionState.MANIFESTS_UPDATED)

    committed = _commit(repo, request, job, staged.value, console=console)
    if isinstance(committed, Err):
        return committed
    tracker.advance(PromotionState.COMMITTED)

    gate = checkpoint()
    if isinstance(gate, Err):
        return gate
    console.scoped(_SCOPE, f"push {job.branch} to {FORK_REMOTE}")
    pushed = repo.push(FORK_REMOTE, job.branch, auth_header=auth_header)
    if isinstance(pushed, Err):
        return Err(_git_failed(pushed.error))
    tracker.advance(PromotionState.PUSHED)

    opened = _open_merge_request(spec, mr_client=mr_client, console=console)
    if isinstance(opened, Err):
        return opened
    url, created = opened.value

    restored = repo.checkout(main_branch)
    if isinstance(restored, Err):
        return Err(_git_failed(restored.error))

    if not created:
        console.scoped(_SCOPE, f"merge request already open: {url}")
        tracker.advance(PromotionState.SKIPPED_ALREADY_OPEN)
        final = PromotionState.SKIPPED_ALREADY_OPEN
    else:
        console.success(f"Merge request created: {url}")
        tracker.advance(PromotionState.MR_OPENED)
        tracker.advance(PromotionState.DONE)
        final = PromotionState.DONE

    return Ok(
        PromotionOutcome(
            state=final,
            branch=job.branch,
            merge_request_url=url,
            commit_sha=committed.value,
            states=tuple(tracker.states),
        )
    )


def promote(
    request: PromotionRequest,
    *,
    mr_client: MergeRequestClient,
    console: ConsoleProtocol,
    ctx: RunContext | None = None,
) -> Result[PromotionOutcome, ReleaseError]:
    """Promote ``request.version`` to ``request.channel``.

    The clones are left in ``request.work_dir`` for the caller to inspect or
    remove.
    """
    job = _precheck(request)
    if isinstance(job, Err):
        return job

    console.header(f"Promote {request.addon.name} {request.version} to {job.value.channel.name}")
    tracker = _Tracker(console)
    result = _run(
        request,
        job.value,
        tracker,
        mr_client=mr_client,
        console=console,
        ctx=ctx or RunContext.background(),
    )
    if isinstance(result, Err):
        tracker.advance(PromotionState.FAILED)
        console.scoped(_SCOPE, f"failed after {tracker.states[-2]}", Style.DIM)
    return result

