from __future__ import annotations

import os
from pathlib import Path

import typer

from delorean.cli.commands._helpers import (
    exit_on_error,
    exit_with_message,
    parse_olm_type_arg,
    parse_version_arg,
    require_secret,
    value_or_exit,
    work_dir,
)
from delorean.cli.context import build_context
from delorean.core.env import GITHUB_TOKEN, GITLAB_TOKEN
from delorean.output.console import Style
from delorean.services.release.gh import ensure_gh_available
from delorean.services.release.gitlab import GitLabMergeRequests
from delorean.services.release.model import PromotionRequest, Remotes
from delorean.services.release.promoter import promote
from delorean.services.release.tag import tag_repository

release_app = typer.Typer(add_completion=False, no_args_is_help=True)


@release_app.command("osd-addon")
def osd_addon(
    version: str = typer.Option(..., "--version", help="Version to promote (e.g. 1.1.0)"),
    channel: str = typer.Option(..., "--channel", help="Target channel: stage, edge or stable"),
    addon_name: str = typer.Option(..., "--addon-name", "--name", help="Addon to update"),
    gitlab_token: str | None = typer.Option(
        None, "--gitlab-token", help=f"GitLab API token (or {GITLAB_TOKEN})"
    ),
    description: str = typer.Option("", "--description", help="Merge request description"),
    managed_tenants_origin: str | None = typer.Option(
        None, "--managed-tenants-origin", help="GitLab project of the managed-tenants origin"
    ),
    managed_tenants_fork: str | None = typer.Option(
        None, "--managed-tenants-fork", help="GitLab project of the managed-tenants fork"
    ),
    keep_work_dir: bool = typer.Option(
        False, "--keep-work-dir", help="Keep the clones for inspection"
    ),
) -> None:
    """Open a merge request promoting an operator version to an addon channel."""
    ctx = build_context()
    config = ctx.config

    addon = config.addon(addon_name)
    if addon is None:
        known = ", ".join(a.name for a in config.addons)
        exit_with_message(ctx, f"unknown addon {addon_name} (known: {known})")
    if addon.channel(channel) is None:
        known = ", ".join(c.name for c in addon.channels)
        exit_with_message(ctx, f"unknown channel {channel} for {addon.name} (known: {known})")

    token = require_secret(ctx, gitlab_token, GITLAB_TOKEN, flag="--gitlab-token")
    parsed = parse_version_arg(ctx, version, addon.olm_type)

    gitlab = config.gitlab
    origin = managed_tenants_origin or gitlab.managed_tenants_origin
    fork = managed_tenants_fork or gitlab.managed_tenants_fork
    remotes = Remotes(
        origin_url=gitlab.project_url(origin) + ".git",
        origin_project=origin,
        fork_url=gitlab.project_url(fork) + ".git",
        fork_project=fork,
        main_branch=gitlab.main_branch,
    )

    with work_dir("delorean-osd-addon-", keep=keep_work_dir) as tmp:
        if keep_work_dir:
            ctx.console.print(f"work dir: {tmp}", Style.DIM)
        request = PromotionRequest(
            addon=addon,
            channel=channel,
            version=parsed,
            remotes=remotes,
            bot=config.bot,
            alerting=config.alerting,
            work_dir=tmp,
            token=token,
            description=description,
        )
        result = promote(
            request,
            mr_client=GitLabMergeRequests(gitlab.url, token),
            console=ctx.console,
            ctx=ctx.run,
        )
    outcome = value_or_exit(result, ctx)
    if outcome.skipped:
        ctx.console.success(f"merge request already open: {outcome.merge_request_url}")
    else:
        ctx.console.success(f"merge request: {outcome.merge_request_url}")


@release_app.command("tag-repository")
def tag_repository_cmd(
    version: str = typer.Option(..., "--version", help="Release version"),
    organization: str = typer.Option("integr8ly", "--organization", help="GitHub organization"),
    repository: str = typer.Option(..., "--repository", help="Repository to tag"),
    branch: str = typer.Option("master", "--branch", help="Branch whose head is tagged"),
    olm_type: str = typer.Option(
        "integreatly-operator", "--olm-type", help="Product family of the version"
    ),
    skip_pre_release: bool = typer.Option(
        False, "--skip-pre-release", help="Do nothing for pre-release versions"
    ),
    github_token: str | None = typer.Option(
        None, "--token", "-t", help=f"GitHub access token (or {GITHUB_TOKEN})"
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Print what would be tagged"),
) -> None:
    """Tag the head of a GitHub repository branch with the release tag."""
    ctx = build_context()
    parsed = parse_version_arg(ctx, version, parse_olm_type_arg(ctx, olm_type))
    # gh reads its token from the environment
    os.environ[GITHUB_TOKEN] = require_secret(ctx, github_token, GITHUB_TOKEN, flag="--token")

    exit_on_error(ensure_gh_available(), ctx)
    result = tag_repository(
        cwd=Path.cwd(),
        repo=f"{organization}/{repository}",
        branch=branch,
        version=parsed,
        skip_pre_release=skip_pre_release,
        console=ctx.console,
        dry_run=dry_run,
    )
    exit_on_error(result, ctx)
