from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from delorean.core.config import AddonConfig, AlertingConfig, BotConfig, ChannelConfig
from delorean.core.version import Version


class PromotionState(StrEnum):
    INIT = "init"
    CLONED = "cloned"
    BRANCHED = "branched"
    BUNDLE_COPIED = "bundle_copied"
    MANIFESTS_UPDATED = "manifests_updated"
    COMMITTED = "committed"
    PUSHED = "pushed"
    MR_OPENED = "mr_opened"
    DONE = "done"
    SKIPPED_ALREADY_OPEN = "skipped_already_open"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Remotes:
    """Where the managed-tenants repository lives.

    ``*_url`` are git URLs; ``*_project`` are the GitLab project paths used
    for the merge request.
    """

    origin_url: str
    origin_project: str
    fork_url: str
    fork_project: str
    main_branch: str = "main"


@dataclass(frozen=True, slots=True)
class PromotionRequest:
    addon: AddonConfig
    channel: str
    version: Version
    remotes: Remotes
    bot: BotConfig
    alerting: AlertingConfig
    work_dir: Path
    token: str | None = None
    description: str = ""


@dataclass(frozen=True, slots=True)
class PromotionJob:
    """Paths resolved for one promotion, relative to the two clones."""

    channel: ChannelConfig
    branch: str
    managed_tenants_dir: Path
    operator_dir: Path
    source_bundle: Path
    bundles_dir: Path
    dest_bundle: Path

    @property
    def bundle_rel(self) -> str:
        return str(self.bundles_dir.relative_to(self.managed_tenants_dir))


@dataclass(frozen=True, slots=True)
class PromotionOutcome:
    state: PromotionState
    branch: str
    merge_request_url: str | None = None
    commit_sha: str | None = None
    states: tuple[PromotionState, ...] = ()

    @property
    def skipped(self) -> bool:
        return self.state == PromotionState.SKIPPED_ALREADY_OPEN


def branch_name(addon: AddonConfig, channel: str, version: Version) -> str:
    return f"{addon.name}-{channel}-v{version}"


def commit_message(addon: AddonConfig, channel: str, version: Version) -> str:
    return f"update {addon.name} {channel} to {version}"


def merge_request_title(addon: AddonConfig, channel: str, version: Version) -> str:
    return f"Update {addon.name} {channel} to {version}"
