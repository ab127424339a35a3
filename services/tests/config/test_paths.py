"""Tests for filesystem root resolution."""

from pathlib import Path

import platformdirs
import pytest

from binmate.errors import FilesystemError
from binmate.paths import Paths, default_bin_root, user_cache_root, user_data_root


@pytest.fixture
def os_cache(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    cache = tmp_path / "os-cache"
    monkeypatch.setattr(platformdirs, "user_cache_dir", lambda *args, **kwargs: str(cache))
    return cache


class TestRoots:
    def test_data_root_prefers_xdg(self, tmp_path: Path, home: Path) -> None:
        env = {"HOME": str(home), "XDG_DATA_HOME": str(tmp_path / "xdg-data")}
        assert user_data_root(env, "linux") == tmp_path / "xdg-data"

    def test_data_root_falls_back_to_home(self, home: Path) -> None:
        assert user_data_root({"HOME": str(home)}, "linux") == home / ".local" / "share"
        assert user_data_root({"HOME": str(home)}, "darwin") == home / ".local" / "share"

    def test_cache_root_honours_xdg_on_linux_only(
        self, tmp_path: Path, os_cache: Path
    ) -> None:
        env = {"XDG_CACHE_HOME": str(tmp_path / "xdg-cache")}
        assert user_cache_root(env, "linux") == tmp_path / "xdg-cache"
        assert user_cache_root(env, "darwin") == os_cache
        assert user_cache_root({}, "linux") == os_cache

    def test_bin_root(self, home: Path, os_cache: Path) -> None:
        assert default_bin_root({"HOME": str(home)}, "linux") == home / ".local" / "bin"
        assert default_bin_root({"HOME": str(home)}, "win32") == os_cache / "binmate" / "bin"

    def test_windows_keeps_data_in_cache(self, home: Path, os_cache: Path) -> None:
        env = {"HOME": str(home), "XDG_DATA_HOME": str(home / "ignored")}
        assert user_data_root(env, "win32") == os_cache


class TestFromEnv:
    def test_defaults(self, tmp_path: Path, home: Path) -> None:
        env = {
            "HOME": str(home),
            "XDG_DATA_HOME": str(tmp_path / "share"),
            "XDG_CACHE_HOME": str(tmp_path / "cache"),
        }

        paths = Paths.from_env(env, platform="linux")

        assert paths.data_dir == tmp_path / "share" / "binmate"
        assert paths.cache_dir == tmp_path / "cache" / "binmate"
        assert paths.bin_dir == home / ".local" / "bin"
        assert paths.database_path == tmp_path / "share" / "binmate" / "user.db"

    def test_overrides_expand_user(self, home: Path) -> None:
        paths = Paths.from_env(
            {"HOME": str(home)},
            data_dir="~/d",
            cache_dir="~/c",
            bin_dir="~/b",
            platform="linux",
        )
        assert (paths.data_dir, paths.cache_dir, paths.bin_dir) == (
            home / "d",
            home / "c",
            home / "b",
        )

    def test_windows_layout(self, home: Path, os_cache: Path) -> None:
        paths = Paths.from_env({"HOME": str(home)}, platform="win32")

        assert paths.data_dir == os_cache / "binmate"
        assert paths.cache_dir == paths.data_dir
        assert paths.bin_dir == os_cache / "binmate" / "bin"


class TestDerivedPaths:
    def test_payload_dir(self, paths: Paths) -> None:
        assert paths.payload_dir("gh", "v2.0.0") == paths.data_dir / "versions" / "gh" / "v2.0.0"

    @pytest.mark.parametrize(("user_id", "version"), [("..", "v1"), ("gh", "../v1"), ("a/b", "v1")])
    def test_payload_dir_rejects_traversal(self, paths: Paths, user_id: str, version: str) -> None:
        with pytest.raises(FilesystemError):
            paths.payload_dir(user_id, version)

    def test_install_path_override(self, paths: Paths, home: Path) -> None:
        assert paths.bin_dir_for(None) == paths.bin_dir
        assert paths.bin_dir_for("~/tools") == home / "tools"
