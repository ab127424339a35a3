"""
Filesystem layout helpers for binmate.

All on-disk locations are derived here:
  <data>/binmate/user.db                            store file
  <data>/binmate/versions/<user_id>/<version>/<name>  extracted executables
  <user-cache>/binmate/<asset_name>                 downloaded archives
  ~/.local/bin (or <user-cache>/binmate/bin)        symlinks
"""

import sys
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

import platformdirs

from binmate.errors import FilesystemError

APP_NAME = "binmate"
DATABASE_FILENAME = "user.db"


def safe_component(value: str, what: str = "path component") -> str:
    """Reject values that would escape the directory they are joined onto."""
    if not value or value in (".", "..") or "/" in value or "\\" in value or "\x00" in value:
        raise FilesystemError(f"invalid {what}: {value!r}")
    return value


def _home(env: Mapping[str, str]) -> Path:
    home = env.get("HOME") or env.get("USERPROFILE")
    return Path(home) if home else Path.home()


def user_cache_root(env: Mapping[str, str], platform: str = sys.platform) -> Path:
    """OS user cache directory (XDG_CACHE_HOME honoured on Linux)."""
    if platform.startswith("linux") and env.get("XDG_CACHE_HOME"):
        return Path(env["XDG_CACHE_HOME"])
    return Path(platformdirs.user_cache_dir())


def user_data_root(env: Mapping[str, str], platform: str = sys.platform) -> Path:
    """XDG_DATA_HOME, else ~/.local/share. Windows keeps data in the cache dir."""
    if platform == "win32":
        return user_cache_root(env, platform)
    if env.get("XDG_DATA_HOME"):
        return Path(env["XDG_DATA_HOME"])
    return _home(env) / ".local" / "share"


def default_bin_root(env: Mapping[str, str], platform: str = sys.platform) -> Path:
    if platform == "win32":
        return user_cache_root(env, platform) / APP_NAME / "bin"
    return _home(env) / ".local" / "bin"


@dataclass(frozen=True)
class Paths:
    """Resolved directory roots for one engine instance."""

    data_dir: Path
    cache_dir: Path
    bin_dir: Path

    @classmethod
    def from_env(
        cls,
        env: Mapping[str, str],
        data_dir: str | None = None,
        cache_dir: str | None = None,
        bin_dir: str | None = None,
        platform: str = sys.platform,
    ) -> "Paths":
        """Resolve roots from overrides, falling back to platform defaults."""
        return cls(
            data_dir=(
                Path(data_dir).expanduser()
                if data_dir
                else user_data_root(env, platform) / APP_NAME
            ),
            cache_dir=(
                Path(cache_dir).expanduser()
                if cache_dir
                else user_cache_root(env, platform) / APP_NAME
            ),
            bin_dir=Path(bin_dir).expanduser() if bin_dir else default_bin_root(env, platform),
        )

    @property
    def database_path(self) -> Path:
        """Path of the SQLite store file."""
        return self.data_dir / DATABASE_FILENAME

    @property
    def versions_dir(self) -> Path:
        return self.data_dir / "versions"

    def binary_versions_dir(self, user_id: str) -> Path:
        """Directory holding every installed version of one binary."""
        return self.versions_dir / safe_component(user_id, "binary id")

    def payload_dir(self, user_id: str, version: str) -> Path:
        """Versioned payload directory for one installation."""
        return self.binary_versions_dir(user_id) / safe_component(version, "version")

    def bin_dir_for(self, install_path: str | None) -> Path:
        """Bin directory for a binary, honouring its install_path override."""
        if install_path:
            return Path(install_path).expanduser()
        return self.bin_dir
