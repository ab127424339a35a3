"""Tests for the PATH symlink manager."""

import os
from pathlib import Path

import pytest

from binmate.errors import FilesystemError
from binmate.services.activation_service import remove_files, remove_link, set_active_version
from binmate.types import InstalledPath

pytestmark = pytest.mark.skipif(os.name != "posix", reason="symlinks need a POSIX host")


def _installed(root: Path, version: str, name: str = "gh") -> InstalledPath:
    payload = root / "versions" / "gh" / version
    payload.mkdir(parents=True)
    executable = payload / name
    executable.write_bytes(version.encode())
    return InstalledPath(executable)


class TestSetActiveVersion:
    def test_creates_link_and_bin_dir(self, tmp_path: Path) -> None:
        installed = _installed(tmp_path, "v1")
        bin_dir = tmp_path / "bin"

        link = set_active_version(installed, bin_dir, "gh")

        assert link == bin_dir / "gh"
        assert link.is_symlink()
        assert os.readlink(link) == str(installed)
        assert link.read_bytes() == b"v1"

    def test_switch_replaces_existing_link(self, tmp_path: Path) -> None:
        v1 = _installed(tmp_path, "v1")
        v2 = _installed(tmp_path, "v2")
        bin_dir = tmp_path / "bin"

        set_active_version(v1, bin_dir, "gh")
        link = set_active_version(v2, bin_dir, "gh")

        assert os.readlink(link) == str(v2)
        assert sorted(os.listdir(bin_dir)) == ["gh"]

    def test_relative_target_made_absolute(self, tmp_path: Path, monkeypatch) -> None:
        _installed(tmp_path, "v1")
        monkeypatch.chdir(tmp_path)

        link = set_active_version(InstalledPath(Path("versions/gh/v1/gh")), tmp_path / "bin", "gh")

        assert os.path.isabs(os.readlink(link))

    def test_refuses_symlink_target(self, tmp_path: Path) -> None:
        installed = _installed(tmp_path, "v1")
        alias = tmp_path / "alias"
        alias.symlink_to(installed)

        with pytest.raises(FilesystemError):
            set_active_version(InstalledPath(alias), tmp_path / "bin", "gh")

    def test_refuses_self_link(self, tmp_path: Path) -> None:
        bin_dir = tmp_path / "bin"
        bin_dir.mkdir()
        executable = bin_dir / "gh"
        executable.write_bytes(b"x")

        with pytest.raises(FilesystemError):
            set_active_version(InstalledPath(executable), bin_dir, "gh")
        assert not executable.is_symlink()

    def test_refuses_directory_at_link_path(self, tmp_path: Path) -> None:
        installed = _installed(tmp_path, "v1")
        (tmp_path / "bin" / "gh").mkdir(parents=True)

        with pytest.raises(FilesystemError):
            set_active_version(installed, tmp_path / "bin", "gh")


class TestRemoveLink:
    def test_removes_symlink(self, tmp_path: Path) -> None:
        link = set_active_version(_installed(tmp_path, "v1"), tmp_path / "bin", "gh")
        assert remove_link(link)
        assert not link.is_symlink()

    def test_leaves_regular_file(self, tmp_path: Path) -> None:
        regular = tmp_path / "gh"
        regular.write_bytes(b"mine")
        assert not remove_link(regular)
        assert regular.read_bytes() == b"mine"

    def test_missing_path(self, tmp_path: Path) -> None:
        assert not remove_link(tmp_path / "nothing")


class TestRemoveFiles:
    def test_removes_payloads_and_link(self, tmp_path: Path) -> None:
        v1 = _installed(tmp_path, "v1")
        v2 = _installed(tmp_path, "v2")
        link = set_active_version(v2, tmp_path / "bin", "gh")
        versions_root = tmp_path / "versions"

        removed = remove_files(link, [v1.parent, v2.parent], versions_root)

        assert set(removed) == {v1.parent, v2.parent}
        assert not link.is_symlink()
        assert not (versions_root / "gh").exists()
        assert versions_root.is_dir()

    def test_skips_directories_outside_root(self, tmp_path: Path) -> None:
        outside = tmp_path / "precious"
        outside.mkdir()
        versions_root = tmp_path / "versions"
        versions_root.mkdir()

        removed = remove_files(None, [outside, versions_root, tmp_path], versions_root)

        assert removed == []
        assert outside.is_dir()
        assert versions_root.is_dir()

    def test_missing_payload_is_ignored(self, tmp_path: Path) -> None:
        versions_root = tmp_path / "versions"
        assert remove_files(None, [versions_root / "gh" / "v9"], versions_root) == []
