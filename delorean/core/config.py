"""Typed configuration loading and access.

The config file is optional TOML (``delorean.toml`` in the working
directory, or the path given with ``--config`` / ``DELOREAN_CONFIG``). Every
value has a default, so an empty file and no file behave the same.

Credentials never live here; see ``delorean.core.env``.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from delorean.core.result import Err, Ok, Result
from delorean.core.structured import (
    StrDict,
    as_str_dict,
    get_bool,
    get_int,
    get_list,
    get_str,
    get_str_list,
    get_table,
)
from delorean.core.version import OLM_TYPE_RHMI, OLM_TYPE_RHOAM, OlmType

__all__ = [
    "AddonConfig",
    "AlertingConfig",
    "BotConfig",
    "ChannelConfig",
    "Config",
    "ConfigError",
    "GitlabConfig",
    "ImportConfig",
    "OlmConfig",
    "CONFIG_ENV_VAR",
    "DEFAULT_CONFIG_FILE",
    "load_config",
    "resolve_config",
]

CONFIG_ENV_VAR = "DELOREAN_CONFIG"
DEFAULT_CONFIG_FILE = "delorean.toml"

DEFAULT_GITLAB_URL = "https://gitlab.cee.redhat.com"
DEFAULT_MANAGED_TENANTS_ORIGIN = "service/managed-tenants-bundles"
DEFAULT_MANAGED_TENANTS_FORK = "integreatly-qe/managed-tenants-bundles"
DEFAULT_MANAGED_TENANTS_REPO = "https://gitlab.cee.redhat.com/service/managed-tenants.git"
DEFAULT_MAIN_BRANCH = "main"

DEFAULT_BOT_NAME = "Delorean"
DEFAULT_BOT_EMAIL = "cloud-services-delorean@redhat.com"

DEFAULT_PRERELEASE_EMAIL = "integreatly-qe@redhat.com"
DEFAULT_RELEASE_EMAIL = "integreatly-notifications@redhat.com"

DEFAULT_IMPORT_WORKERS = 10
DEFAULT_POLL_SECONDS = 2
DEFAULT_IMPORT_TIMEOUT_SECONDS = 1800

# Roots of the upgrade graph inherited from the operator's previous name.
DEFAULT_BASELINES: dict[str, tuple[str, ...]] = {
    "rhmi": ("keycloak-operator.v18.0.0", "keycloak-operator.v9.0.3"),
}

ChannelName = Literal["stage", "edge", "stable"]
CHANNEL_NAMES: tuple[ChannelName, ...] = ("stage", "edge", "stable")

_OPERATOR_REPO = "https://github.com/integr8ly/integreatly-operator"


@dataclass(frozen=True, slots=True)
class ConfigError:
    """Error when config cannot be loaded or parsed."""

    message: str
    path: Path | None = None
    kind: Literal["config_invalid"] = "config_invalid"
    hint: str | None = None


@dataclass(frozen=True, slots=True)
class GitlabConfig:
    url: str = DEFAULT_GITLAB_URL
    managed_tenants_origin: str = DEFAULT_MANAGED_TENANTS_ORIGIN
    managed_tenants_fork: str = DEFAULT_MANAGED_TENANTS_FORK
    managed_tenants_repo: str = DEFAULT_MANAGED_TENANTS_REPO
    main_branch: str = DEFAULT_MAIN_BRANCH

    def project_url(self, project: str) -> str:
        return f"{self.url.rstrip('/')}/{project}"


@dataclass(frozen=True, slots=True)
class BotConfig:
    """Commit author identity for automated changes."""

    name: str = DEFAULT_BOT_NAME
    email: str = DEFAULT_BOT_EMAIL


@dataclass(frozen=True, slots=True)
class AlertingConfig:
    """Recipients written into ALERTING_EMAIL_ADDRESS of promoted CSVs."""

    prerelease_email: str = DEFAULT_PRERELEASE_EMAIL
    release_email: str = DEFAULT_RELEASE_EMAIL


@dataclass(frozen=True, slots=True)
class ImportConfig:
    workers: int = DEFAULT_IMPORT_WORKERS
    poll_seconds: int = DEFAULT_POLL_SECONDS
    timeout_seconds: int = DEFAULT_IMPORT_TIMEOUT_SECONDS


def _default_baselines() -> dict[str, tuple[str, ...]]:
    return dict(DEFAULT_BASELINES)


@dataclass(frozen=True, slots=True)
class OlmConfig:
    baselines: dict[str, tuple[str, ...]] = field(default_factory=_default_baselines)

    def baselines_for(self, product: str | None = None) -> frozenset[str]:
        """Baseline names for ``product``, or for every product when None."""
        if product is not None:
            return frozenset(self.baselines.get(product, ()))
        names: set[str] = set()
        for values in self.baselines.values():
            names.update(values)
        return frozenset(names)


@dataclass(frozen=True, slots=True)
class ChannelConfig:
    """One release channel of an addon in the managed-tenants repo."""

    name: str
    directory: str
    allow_pre_release: bool = False

    @property
    def bundles_directory(self) -> str:
        return f"addons/{self.directory}/main"

    @property
    def image_sets_directory(self) -> str:
        return f"addons/{self.directory}/addonimagesets"


@dataclass(frozen=True, slots=True)
class AddonConfig:
    """An addon published through the managed-tenants repo.

    Attributes:
        name: Addon name, used in branch names, commits and MR titles.
        olm_type: Product family of the operator.
        operator_name: Base operator name (``<operator_name>.v<version>`` CSVs).
        bundle_repo: Git URL of the operator source repository.
        bundle_path: Path of the bundle directories inside ``bundle_repo``.
        channels: Release channels of the addon.
    """

    name: str
    olm_type: OlmType
    operator_name: str
    bundle_repo: str
    bundle_path: str
    channels: tuple[ChannelConfig, ...] = ()

    def channel(self, name: str) -> ChannelConfig | None:
        for channel in self.channels:
            if channel.name == name:
                return channel
        return None


def _family_channels(prefix: str) -> tuple[ChannelConfig, ...]:
    return (
        ChannelConfig(name="stage", directory=f"{prefix}-stage", allow_pre_release=True),
        ChannelConfig(name="edge", directory=f"{prefix}-internal"),
        ChannelConfig(name="stable", directory=prefix),
    )


def _default_addons() -> tuple[AddonConfig, ...]:
    return (
        AddonConfig(
            name="integreatly-operator",
            olm_type=OLM_TYPE_RHMI,
            operator_name="integreatly-operator",
            bundle_repo=_OPERATOR_REPO,
            bundle_path="bundles/integreatly-operator",
            channels=_family_channels("integreatly-operator"),
        ),
        AddonConfig(
            name="managed-api-service",
            olm_type=OLM_TYPE_RHOAM,
            operator_name="managed-api-service",
            bundle_repo=_OPERATOR_REPO,
            bundle_path="bundles/managed-api-service",
            channels=_family_channels("managed-api-service"),
        ),
    )


@dataclass(frozen=True, slots=True)
class Config:
    """Main configuration container."""

    gitlab: GitlabConfig = field(default_factory=GitlabConfig)
    bot: BotConfig = field(default_factory=BotConfig)
    alerting: AlertingConfig = field(default_factory=AlertingConfig)
    imports: ImportConfig = field(default_factory=ImportConfig)
    olm: OlmConfig = field(default_factory=OlmConfig)
    addons: tuple[AddonConfig, ...] = field(default_factory=_default_addons)

    def addon(self, name: str) -> AddonConfig | None:
        for addon in self.addons:
            if addon.name == name:
                return addon
        return None

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> Config:
        """Create Config from a mapping (parsed TOML)."""
        gitlab: StrDict = get_table(data, "gitlab") or {}
        bot: StrDict = get_table(data, "bot") or {}
        alerting: StrDict = get_table(data, "alerting") or {}
        imports: StrDict = get_table(data, "import") or {}
        olm: StrDict = get_table(data, "olm") or {}
        baselines: StrDict | None = get_table(olm, "baselines")

        addons = _parse_addons(get_list(data, "addons") or [])

        return cls(
            gitlab=GitlabConfig(
                url=get_str(gitlab, "url") or DEFAULT_GITLAB_URL,
                managed_tenants_origin=get_str(gitlab, "managed_tenants_origin")
                or DEFAULT_MANAGED_TENANTS_ORIGIN,
                managed_tenants_fork=get_str(gitlab, "managed_tenants_fork")
                or DEFAULT_MANAGED_TENANTS_FORK,
                managed_tenants_repo=get_str(gitlab, "managed_tenants_repo")
                or DEFAULT_MANAGED_TENANTS_REPO,
                main_branch=get_str(gitlab, "main_branch") or DEFAULT_MAIN_BRANCH,
            ),
            bot=BotConfig(
                name=get_str(bot, "name") or DEFAULT_BOT_NAME,
                email=get_str(bot, "email") or DEFAULT_BOT_EMAIL,
            ),
            alerting=AlertingConfig(
                prerelease_email=get_str(alerting, "prerelease_email") or DEFAULT_PRERELEASE_EMAIL,
                release_email=get_str(alerting, "release_email") or DEFAULT_RELEASE_EMAIL,
            ),
            imports=ImportConfig(
                workers=get_int(imports, "workers") or DEFAULT_IMPORT_WORKERS,
                poll_seconds=get_int(imports, "poll_seconds") or DEFAULT_POLL_SECONDS,
                timeout_seconds=get_int(imports, "timeout_seconds")
                or DEFAULT_IMPORT_TIMEOUT_SECONDS,
            ),
            olm=OlmConfig(
                baselines=(
                    {key: tuple(get_str_list(baselines, key)) for key in baselines}
                    if baselines is not None
                    else _default_baselines()
                ),
            ),
            addons=addons or _default_addons(),
        )


def _parse_olm_type(value: str | None) -> OlmType:
    if value == OLM_TYPE_RHOAM:
        return OLM_TYPE_RHOAM
    if value in (None, OLM_TYPE_RHMI):
        return OLM_TYPE_RHMI
    raise ValueError(f"unknown olm_type {value!r}")


def _parse_addons(items: list[object]) -> tuple[AddonConfig, ...]:
    addons: list[AddonConfig] = []
    for item in items:
        table = as_str_dict(item)
        if table is None:
            raise ValueError("each [[addons]] entry must be a table")
        name = get_str(table, "name")
        if name is None:
            raise ValueError("addon without a name")

        channels: list[ChannelConfig] = []
        for raw in get_list(table, "channels") or []:
            channel = as_str_dict(raw)
            if channel is None:
                raise ValueError(f"addon {name}: each channel must be a table")
            channel_name = get_str(channel, "name")
            directory = get_str(channel, "directory")
            if channel_name is None or directory is None:
                raise ValueError(f"addon {name}: channel needs a name and a directory")
            channels.append(
                ChannelConfig(
                    name=channel_name,
                    directory=directory,
                    allow_pre_release=get_bool(channel, "allow_pre_release") or False,
                )
            )

        addons.append(
            AddonConfig(
                name=name,
                olm_type=_parse_olm_type(get_str(table, "olm_type")),
                operator_name=get_str(table, "operator_name") or name,
                bundle_repo=get_str(table, "bundle_repo") or _OPERATOR_REPO,
                bundle_path=get_str(table, "bundle_path") or f"bundles/{name}",
                channels=tuple(channels),
            )
        )
    return tuple(addons)


def _parse_toml(path: Path) -> Result[StrDict, ConfigError]:
    """Parse a TOML file, handling read and parse errors."""
    import tomllib

    try:
        content = path.read_bytes()
        data_obj: object = tomllib.loads(content.decode("utf-8"))
        data = as_str_dict(data_obj)
        if data is None:
            return Err(ConfigError("Config root must be a TOML table", path=path))
        return Ok(data)
    except FileNotFoundError:
        return Err(ConfigError(f"Config file not found: {path}", path=path))
    except PermissionError:
        return Err(ConfigError(f"Permission denied reading: {path}", path=path))
    except tomllib.TOMLDecodeError as e:
        return Err(ConfigError(f"Invalid TOML syntax: {e}", path=path))
    except UnicodeDecodeError as e:
        return Err(ConfigError(f"Error reading config: {e}", path=path))


def load_config(path: Path) -> Result[Config, ConfigError]:
    """Load and parse configuration from a TOML file.

    Args:
        path: Path to the TOML file

    Returns:
        Ok(Config) on success, Err(ConfigError) on failure
    """
    result = _parse_toml(path)
    if isinstance(result, Err):
        return result

    try:
        config = Config.from_dict(result.value)
        return Ok(config)
    except (KeyError, TypeError, ValueError) as e:
        return Err(ConfigError(f"Invalid config structure: {e}", path=path))


def resolve_config(path: Path | None, *, cwd: Path | None = None) -> Result[Config, ConfigError]:
    """Load the explicit config, else ``$DELOREAN_CONFIG``, else ``./delorean.toml``.

    An explicitly named file must exist; the implicit ``delorean.toml`` is optional.
    """
    if path is not None:
        return load_config(path)

    from_env = os.environ.get(CONFIG_ENV_VAR, "").strip()
    if from_env:
        return load_config(Path(from_env))

    implicit = (cwd or Path.cwd()) / DEFAULT_CONFIG_FILE
    if implicit.is_file():
        return load_config(implicit)
    return Ok(Config())
