"""
Configuration management for binmate.

Declarative binaries and defaults come from a YAML (or JSON) config file,
overridable per setting through BINMATE_* environment variables.
"""

import os
from functools import partial
from pathlib import Path
from typing import Any

import yaml
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from binmate.errors import ConfigError
from binmate.providers.github import GitHubProvider
from binmate.types import FORMAT_TAR_GZ, BinaryDescriptor

DEFAULT_GITHUB_API_URL = "https://api.github.com"


def default_config_paths() -> list[Path]:
    """Config file locations searched when none is given explicitly."""
    home = Path.home()
    return [
        home / ".binmate" / "config.yaml",
        home / ".binmate" / "config.yml",
        home / ".binmate" / "config.json",
        Path("/etc/binmate/config.yaml"),
        Path("/etc/binmate/config.json"),
    ]


def find_config_file(config_path: str | Path | None = None) -> Path | None:
    """Locate the config file: explicit path, BINMATE_CONFIG_PATH, then defaults."""
    explicit = config_path or os.environ.get("BINMATE_CONFIG_PATH")
    if explicit:
        path = Path(explicit).expanduser()
        if not path.is_file():
            raise ConfigError(f"config file not found: {path}")
        return path
    for candidate in default_config_paths():
        if candidate.is_file():
            return candidate
    return None


def read_config_file(path: Path) -> dict[str, Any]:
    """Parse a config file. JSON is read by the YAML parser as well."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"unable to read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must be a mapping at the top level")
    # "global" is a Python keyword, the model field is global_config
    if "global" in data:
        data["global_config"] = data.pop("global")
    return data


def yaml_config_settings_source(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from the YAML file, if one exists."""
    path = find_config_file(config_path)
    if path is None:
        return {}
    data = read_config_file(path)
    data.setdefault("config_path", str(path))
    return data


# --- Config File Models ---


class ProviderDefaults(BaseModel):
    """Per-provider defaults applied to every binary using that provider."""

    authenticated: bool = Field(default=False)
    api_url: str | None = Field(default=None, description="API base URL override")


class GlobalConfig(BaseModel):
    """Defaults shared by all declared binaries."""

    model_config = ConfigDict(extra="ignore")

    install_path: str | None = Field(
        default=None,
        validation_alias=AliasChoices("install_path", "installPath"),
        description="Default bin directory for symlinks",
    )
    providers: dict[str, ProviderDefaults] = Field(default_factory=dict)


class BinaryConfig(BaseModel):
    """One binary declared in the config file."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    alias: str | None = Field(default=None)
    provider: str = Field(default=GitHubProvider.name)
    path: str = Field(default="", description="Provider path, e.g. owner/repo")
    install_path: str | None = Field(
        default=None, validation_alias=AliasChoices("install_path", "installPath")
    )
    format: str = Field(default=FORMAT_TAR_GZ)
    asset_regex: str | None = Field(
        default=None, validation_alias=AliasChoices("asset_regex", "assetRegex")
    )
    release_prefix: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "release_prefix", "release_regex", "releasePrefix", "releaseRegex"
        ),
        description="Literal prefix prepended to a requested version to form the tag",
    )
    authenticated: bool = Field(default=False)

    def to_descriptor(self, global_config: "GlobalConfig | None" = None) -> BinaryDescriptor:
        """Merge global defaults into this declaration.

        Binary-specific values win. The global install path fills an empty one,
        and provider defaults can only switch authentication on.
        """
        install_path = self.install_path
        authenticated = self.authenticated
        if global_config is not None:
            if not install_path and global_config.install_path:
                install_path = global_config.install_path
            defaults = global_config.providers.get(self.provider)
            if defaults is not None and not authenticated:
                authenticated = defaults.authenticated

        return BinaryDescriptor(
            user_id=self.id,
            name=self.name,
            alias=self.alias or None,
            provider=self.provider,
            provider_path=self.path,
            install_path=str(Path(install_path).expanduser()) if install_path else None,
            format=self.format,
            asset_regex=self.asset_regex or None,
            release_prefix=self.release_prefix or None,
            authenticated=authenticated,
        )


# --- Main Settings ---


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="BINMATE_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    config_path: str | None = Field(default=None, description="Config file that was loaded")

    # Config generation, compared on sync
    version: int = Field(default=1)

    # Logging
    log_level: str = Field(default="warn")
    json_logs: bool = Field(default=False)

    global_config: GlobalConfig = Field(default_factory=GlobalConfig)
    binaries: list[BinaryConfig] = Field(default_factory=list)

    # Filesystem overrides (defaults follow XDG and platform rules)
    data_dir: str | None = Field(default=None)
    cache_dir: str | None = Field(default=None)
    bin_dir: str | None = Field(default=None)

    # HTTP
    http_timeout: float = Field(default=60.0, description="Timeout for release metadata calls")
    download_timeout: float | None = Field(
        default=None, description="Read timeout for asset downloads; None waits indefinitely"
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: Any,
        env_settings: Any,
        dotenv_settings: Any,
        file_secret_settings: Any,
    ) -> tuple[Any, ...]:
        """Customize settings sources: env vars override the config file."""
        config_path = init_settings.init_kwargs.get("config_path")
        return (
            init_settings,
            env_settings,
            partial(yaml_config_settings_source, config_path),
            dotenv_settings,
            file_secret_settings,
        )

    def descriptors(self) -> list[BinaryDescriptor]:
        """Declared binaries merged with global defaults, in file order."""
        return [b.to_descriptor(self.global_config) for b in self.binaries]

    def find_binary(self, user_id: str) -> BinaryDescriptor:
        for binary in self.binaries:
            if binary.id == user_id:
                return binary.to_descriptor(self.global_config)
        raise ConfigError(f"binary {user_id} is not declared in the config file")

    def provider_api_url(self, provider: str) -> str | None:
        defaults = self.global_config.providers.get(provider)
        return defaults.api_url if defaults is not None else None


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> Settings:
    """Build Settings from the config file, environment and explicit overrides."""
    kwargs: dict[str, Any] = {k: v for k, v in overrides.items() if v is not None}
    if config_path is not None:
        kwargs["config_path"] = str(config_path)
    try:
        return Settings(**kwargs)
    except ValidationError as e:
        raise ConfigError(f"invalid configuration: {e}") from e
