"""Tests for the lifecycle operations against a fake GitHub."""

import hashlib
import os
import stat
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from binmate.context import EngineContext
from binmate.db.models import Binary, utc_now
from binmate.errors import (
    DigestMismatch,
    FilesystemError,
    MissingCredential,
    NotFound,
    UnsupportedFormat,
    UnsupportedProvider,
    UpstreamStatusError,
    VersionNotInstalled,
)
from binmate.providers.github import GitHubProvider
from binmate.repositories.binaries import binary_from_descriptor
from binmate.repositories.logs import STATUS_FAILED, STATUS_SUCCESS
from binmate.services import lifecycle_service as lifecycle
from binmate.types import BinaryDescriptor
from fakes import FakeGitHub, host_asset_name, make_tar_gz, make_zip

pytestmark = pytest.mark.skipif(os.name != "posix", reason="symlinks need a POSIX host")

GH_BYTES = b"#!/bin/sh\necho gh\n"


async def _add_binary(engine: EngineContext, user_id: str = "gh", **overrides) -> Binary:
    fields = {
        "user_id": user_id,
        "name": user_id,
        "provider": "github",
        "provider_path": f"cli/{user_id}",
        "format": ".tar.gz",
    }
    fields.update(overrides)
    return await engine.store.binaries.create(binary_from_descriptor(BinaryDescriptor(**fields)))


def _publish(github: FakeGitHub, tag: str, data: bytes = GH_BYTES, repo: str = "cli/gh", **kw):
    name = host_asset_name("gh", tag)
    github.add_release(repo, tag, {name: make_tar_gz({f"gh_{tag}/bin/gh": data})}, **kw)
    return name


class TestInstall:
    async def test_happy_path(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine)
        _publish(github, "v1.0.0")

        result = await lifecycle.install(engine, "gh")

        expected = engine.paths.versions_dir / "gh" / "v1.0.0" / "gh"
        assert result.version == "v1.0.0"
        assert not result.already_installed
        assert expected.read_bytes() == GH_BYTES
        assert stat.S_IMODE(expected.stat().st_mode) == 0o755

        link = engine.paths.bin_dir / "gh"
        assert result.symlink_path == str(link)
        assert os.readlink(link) == str(expected)

        installation = await engine.store.installations.get(result.binary.id, "v1.0.0")
        assert installation.installed_path == str(expected)
        assert installation.checksum == hashlib.sha256(GH_BYTES).hexdigest()
        assert installation.file_size == len(GH_BYTES)
        active = await engine.store.active_versions.get(result.binary.id)
        assert active.installation_id == installation.id
        assert active.symlink_path == str(link)

    async def test_second_install_does_not_download(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        _publish(github, "v1.0.0")

        first = await lifecycle.install(engine, "gh")
        second = await lifecycle.install(engine, "gh")

        assert second.already_installed
        assert second.installation.id == first.installation.id
        assert len(github.download_requests()) == 1

    async def test_explicit_version_uses_release_prefix(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine, release_prefix="v")
        _publish(github, "v1.0.0")
        _publish(github, "v2.0.0")

        result = await lifecycle.install(engine, "gh", "1.0.0")

        assert result.version == "1.0.0"
        assert github.requests[0].url.path == "/repos/cli/gh/releases/tags/v1.0.0"
        assert (engine.paths.versions_dir / "gh" / "1.0.0" / "gh").is_file()

    async def test_zip_release(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine, "jq", format=".zip")
        github.add_release(
            "cli/jq", "jq-1.7", {host_asset_name("jq", ext=".zip"): make_zip({"jq": b"jq!"})}
        )

        result = await lifecycle.install(engine, "jq")

        assert Path(result.installation.installed_path).read_bytes() == b"jq!"

    async def test_alias_names_the_link(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine, alias="github")
        _publish(github, "v1")

        result = await lifecycle.install(engine, "gh")

        assert result.symlink_path == str(engine.paths.bin_dir / "github")

    async def test_install_path_override(
        self, engine: EngineContext, github: FakeGitHub, tmp_path: Path
    ) -> None:
        custom = tmp_path / "tools" / "bin"
        await _add_binary(engine, install_path=str(custom))
        _publish(github, "v1")

        result = await lifecycle.install(engine, "gh")

        assert result.symlink_path == str(custom / "gh")
        assert (custom / "gh").is_symlink()

    async def test_digest_mismatch_aborts(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        binary = await _add_binary(engine)
        name = host_asset_name("gh", "v1")
        github.add_release(
            "cli/gh",
            "v1",
            {name: make_tar_gz({"gh": GH_BYTES})},
            digests={name: "sha256:" + "a" * 64},
        )

        with pytest.raises(DigestMismatch) as exc:
            await lifecycle.install(engine, "gh")

        assert str(exc.value).startswith("install gh@latest: digest mismatch")
        assert await engine.store.installations.list_by_binary(binary.id) == []
        assert not (engine.paths.bin_dir / "gh").is_symlink()
        assert not (engine.paths.versions_dir / "gh").exists()
        downloads = await engine.store.downloads.list_by_binary(binary.id)
        assert [d.is_complete for d in downloads] == [False]

    async def test_failure_is_logged(self, engine: EngineContext) -> None:
        await _add_binary(engine)

        with pytest.raises(UpstreamStatusError):
            await lifecycle.install(engine, "gh")

        failures = await engine.store.logs.get_failures()
        assert len(failures) == 1
        assert failures[0].operation_type == "install"
        assert failures[0].operation_status == STATUS_FAILED
        assert failures[0].entity_id == "gh"
        assert "HTTP 404" in failures[0].error_details

    async def test_success_is_logged(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine)
        _publish(github, "v1")

        await lifecycle.install(engine, "gh")

        (entry,) = await engine.store.logs.get_by_type("install")
        assert entry.operation_status == STATUS_SUCCESS
        assert entry.metadata_json == '{"version": "latest"}'
        assert entry.duration_ms is not None

    async def test_unknown_binary(self, engine: EngineContext) -> None:
        with pytest.raises(NotFound) as exc:
            await lifecycle.install(engine, "nope")
        assert str(exc.value) == "install nope@latest: binary not found: nope"

    async def test_unsupported_format(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine, format=".rar")
        with pytest.raises(UnsupportedFormat):
            await lifecycle.install(engine, "gh")
        assert github.requests == []

    async def test_unknown_provider(self, engine: EngineContext) -> None:
        await _add_binary(engine, provider="gitlab")
        with pytest.raises(UnsupportedProvider):
            await lifecycle.install(engine, "gh")

    async def test_authenticated_without_token(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine, authenticated=True)
        _publish(github, "v1")
        with pytest.raises(MissingCredential):
            await lifecycle.install(engine, "gh")
        assert github.requests == []


class TestCachedArchives:
    async def test_reuses_verified_cache(self, engine: EngineContext, github: FakeGitHub) -> None:
        binary = await _add_binary(engine)
        _publish(github, "v1")
        first = await lifecycle.install(engine, "gh")
        await engine.store.installations.delete(first.installation.id)

        await lifecycle.install(engine, "gh")

        assert len(github.download_requests()) == 1
        (download,) = await engine.store.downloads.list_by_binary(binary.id)
        assert download.is_complete

    async def test_tampered_cache_is_downloaded_again(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        name = _publish(github, "v1")
        first = await lifecycle.install(engine, "gh")
        await engine.store.installations.delete(first.installation.id)
        (engine.paths.cache_dir / name).write_bytes(b"tampered")

        result = await lifecycle.install(engine, "gh")

        assert len(github.download_requests()) == 2
        assert Path(result.installation.installed_path).read_bytes() == GH_BYTES


class TestSwitch:
    async def test_switch_between_versions(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        _publish(github, "v1", b"one")
        _publish(github, "v2", b"two")
        v1 = await lifecycle.install(engine, "gh", "v1")
        v2 = await lifecycle.install(engine, "gh", "v2")
        link = engine.paths.bin_dir / "gh"
        assert os.readlink(link) == v2.installation.installed_path

        result = await lifecycle.switch(engine, "gh", "v1")

        assert os.readlink(link) == v1.installation.installed_path
        assert link.read_bytes() == b"one"
        active = await engine.store.active_versions.get(result.binary.id)
        assert active.installation_id == v1.installation.id

    async def test_version_not_installed(self, engine: EngineContext) -> None:
        await _add_binary(engine)
        with pytest.raises(VersionNotInstalled) as exc:
            await lifecycle.switch(engine, "gh", "v9")
        assert str(exc.value) == "switch gh@v9: version v9 of gh is not installed"


class TestUpdate:
    async def test_update_installs_latest(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine)
        _publish(github, "v1")
        await lifecycle.install(engine, "gh")
        _publish(github, "v2")

        result = await lifecycle.update(engine, "gh")

        assert result.version == "v2"
        assert os.readlink(engine.paths.bin_dir / "gh") == result.installation.installed_path

    async def test_update_all_continues_past_failures(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine, "gh")
        await _add_binary(engine, "jq")
        _publish(github, "v1")

        report = await lifecycle.update_all(engine)

        assert [r.binary.user_id for r in report.results] == ["gh"]
        assert set(report.failures) == {"jq"}
        assert report.failures["jq"].startswith("update jq@latest:")
        assert not report.ok


class TestCheck:
    async def test_statuses(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine, "gh")
        await _add_binary(engine, "jq")
        _publish(github, "v1")
        github.add_release("cli/jq", "jq-1.7", {"jq.tar.gz": b"x"})
        await lifecycle.install(engine, "gh")

        assert (await lifecycle.check(engine, "gh")).status == lifecycle.CHECK_UP_TO_DATE

        _publish(github, "v2")
        gh = await lifecycle.check(engine, "gh")
        assert gh.status == lifecycle.CHECK_UPDATE_AVAILABLE
        assert (gh.current, gh.latest) == ("v1", "v2")
        assert gh.update_available

        jq = await lifecycle.check(engine, "jq")
        assert jq.status == lifecycle.CHECK_NOT_INSTALLED
        assert jq.latest == "jq-1.7"

    async def test_prefixed_version_is_up_to_date(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine, release_prefix="v")
        _publish(github, "v1.2")
        await lifecycle.install(engine, "gh", "1.2")

        result = await lifecycle.check(engine, "gh")

        assert result.status == lifecycle.CHECK_UP_TO_DATE
        assert result.current == "1.2"

    async def test_check_all_reports_errors(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine, "gh")
        await _add_binary(engine, "jq")
        _publish(github, "v1")

        report = await lifecycle.check_all(engine)

        statuses = {r.binary_id: r.status for r in report.results}
        assert statuses == {"gh": lifecycle.CHECK_NOT_INSTALLED, "jq": lifecycle.CHECK_ERROR}
        assert "jq" in report.failures


class TestRemove:
    async def test_remove_with_files(self, engine: EngineContext, github: FakeGitHub) -> None:
        binary = await _add_binary(engine)
        v1_asset = _publish(github, "v1")
        _publish(github, "v2")
        v1 = await lifecycle.install(engine, "gh", "v1")
        v2 = await lifecycle.install(engine, "gh", "v2")

        result = await lifecycle.remove(engine, "gh", delete_files=True)

        assert len(result.installations) == 2
        assert not (engine.paths.bin_dir / "gh").is_symlink()
        assert not Path(v1.installation.installed_path).exists()
        assert not Path(v2.installation.installed_path).exists()
        assert not (engine.paths.versions_dir / "gh").exists()
        assert not (engine.paths.cache_dir / v1_asset).exists()
        with pytest.raises(NotFound):
            await engine.store.binaries.get_by_user_id("gh")
        assert await engine.store.installations.list_by_binary(binary.id) == []
        with pytest.raises(NotFound):
            await engine.store.active_versions.get(binary.id)

    async def test_remove_keeps_files_by_default(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        _publish(github, "v1")
        installed = await lifecycle.install(engine, "gh")

        await lifecycle.remove(engine, "gh")

        assert (engine.paths.bin_dir / "gh").is_symlink()
        assert Path(installed.installation.installed_path).is_file()
        with pytest.raises(NotFound):
            await engine.store.binaries.get_by_user_id("gh")

    async def test_foreign_file_at_link_path_survives(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        engine.paths.bin_dir.mkdir(parents=True)
        foreign = engine.paths.bin_dir / "gh"
        foreign.write_bytes(b"someone else's gh")

        await lifecycle.remove(engine, "gh", delete_files=True)

        assert foreign.read_bytes() == b"someone else's gh"


class TestAddFromURL:
    URL = "https://github.com/cli/cli/releases/download/v2.30.0/gh_2.30.0_linux_amd64.tar.gz"

    async def test_creates_manual_binary(self, engine: EngineContext) -> None:
        result = await lifecycle.add_from_url(engine, self.URL)

        assert result.created
        assert result.version == "v2.30.0"
        binary = await engine.store.binaries.get_by_user_id("gh")
        assert (binary.provider, binary.provider_path, binary.format) == (
            GitHubProvider.name,
            "cli/cli",
            ".tar.gz",
        )
        assert binary.source == "manual"
        (entry,) = await engine.store.logs.get_by_entity("binary", "gh")
        assert entry.operation_type == "add"
        assert entry.message == self.URL

    async def test_existing_binary_is_returned(self, engine: EngineContext) -> None:
        first = await lifecycle.add_from_url(engine, self.URL)
        second = await lifecycle.add_from_url(engine, self.URL)
        assert not second.created
        assert second.binary.id == first.binary.id


class TestImport:
    @pytest.fixture
    def executable(self, tmp_path: Path) -> Path:
        path = tmp_path / "downloads" / "mytool"
        path.parent.mkdir()
        path.write_bytes(b"local build")
        path.chmod(0o644)
        return path

    async def test_copies_into_versions(self, engine: EngineContext, executable: Path) -> None:
        result = await lifecycle.import_binary(engine, executable, "mytool", version="1.0")

        installed = engine.paths.versions_dir / "mytool" / "1.0" / "mytool"
        assert result.installation.installed_path == str(installed)
        assert installed.read_bytes() == b"local build"
        assert stat.S_IMODE(installed.stat().st_mode) == 0o755
        assert os.readlink(engine.paths.bin_dir / "mytool") == str(installed)
        assert result.installation.source_url == Path(os.path.realpath(executable)).as_uri()
        assert result.binary.provider == lifecycle.LOCAL_PROVIDER

    async def test_keep_location(self, engine: EngineContext, executable: Path) -> None:
        result = await lifecycle.import_binary(
            engine, executable, "mytool", version="1.0", keep_location=True
        )

        assert result.installation.installed_path == os.path.realpath(executable)
        assert not (engine.paths.versions_dir / "mytool").exists()

        await lifecycle.remove(engine, "mytool", delete_files=True)
        assert executable.read_bytes() == b"local build"

    async def test_default_version_from_clock(
        self, engine: EngineContext, executable: Path
    ) -> None:
        engine.clock = lambda: datetime(2024, 1, 1, tzinfo=UTC)

        result = await lifecycle.import_binary(engine, executable, "mytool")

        assert result.version == "imported-1704067200"

    async def test_missing_source(self, engine: EngineContext, tmp_path: Path) -> None:
        with pytest.raises(FilesystemError) as exc:
            await lifecycle.import_binary(engine, tmp_path / "nothing", "mytool", version="1")
        assert "is not a file" in str(exc.value)

    async def test_batch_operations_skip_imported(
        self, engine: EngineContext, github: FakeGitHub, executable: Path
    ) -> None:
        await lifecycle.import_binary(engine, executable, "mytool", version="1.0")
        await _add_binary(engine, "gh")
        _publish(github, "v1")

        updated = await lifecycle.update_all(engine)
        checked = await lifecycle.check_all(engine)

        assert updated.ok and checked.ok
        assert updated.skipped == checked.skipped == ["mytool"]
        assert [r.binary.user_id for r in updated.results] == ["gh"]
        assert [r.binary_id for r in checked.results] == ["gh"]

    async def test_update_of_imported_binary_is_unsupported(
        self, engine: EngineContext, executable: Path
    ) -> None:
        await lifecycle.import_binary(engine, executable, "mytool", version="1.0")
        with pytest.raises(UnsupportedProvider):
            await lifecycle.update(engine, "mytool")


class TestQueries:
    async def test_list_versions_marks_active(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        _publish(github, "v1")
        _publish(github, "v2")
        v1 = await lifecycle.install(engine, "gh", "v1")
        await lifecycle.install(engine, "gh", "v2")
        await lifecycle.switch(engine, "gh", "v1")

        versions = await lifecycle.list_versions(engine, "gh")

        assert {i.version for i in versions.installations} == {"v1", "v2"}
        assert versions.active_installation_id == v1.installation.id

    async def test_remote_versions_and_notes(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        _publish(github, "v1", body="First")
        _publish(github, "v2", body="Second")

        assert await lifecycle.list_remote_versions(engine, "gh") == ["v2", "v1"]
        assert await lifecycle.release_notes(engine, "gh") == "Second"
        assert await lifecycle.release_notes(engine, "gh", "v1") == "First"

    async def test_list_binaries(self, engine: EngineContext, github: FakeGitHub) -> None:
        await _add_binary(engine, "gh")
        await _add_binary(engine, "jq")
        _publish(github, "v1")
        await lifecycle.install(engine, "gh")

        details = {d.binary.user_id: d for d in await lifecycle.list_binaries(engine)}

        assert details["gh"].active_version == "v1"
        assert details["jq"].install_count == 0


class TestSync:
    async def test_sync_config_is_audited(self, engine: EngineContext) -> None:
        declared = BinaryDescriptor(
            user_id="gh", name="gh", provider="github", provider_path="cli/cli", format=".tar.gz"
        )

        result = await lifecycle.sync_config(engine, [declared], config_version=4)

        assert result.created == ["gh"]
        (entry,) = await engine.store.logs.get_by_type("sync")
        assert entry.operation_status == STATUS_SUCCESS
        assert (await engine.store.binaries.get_by_user_id("gh")).config_version == 4


class TestCleanCache:
    async def test_removes_incomplete_downloads(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        binary = await _add_binary(engine)
        name = host_asset_name("gh", "v1")
        github.add_release(
            "cli/gh", "v1", {name: make_tar_gz({"gh": b"x"})}, digests={name: "sha256:" + "0" * 64}
        )
        with pytest.raises(DigestMismatch):
            await lifecycle.install(engine, "gh")
        cached = engine.paths.cache_dir / name
        assert cached.is_file()

        result = await lifecycle.clean_cache(engine)

        assert result.removed == [str(cached)]
        assert result.freed_bytes > 0
        assert not cached.exists()
        assert await engine.store.downloads.list_by_binary(binary.id) == []

    async def test_removes_stale_downloads_only(
        self, engine: EngineContext, github: FakeGitHub
    ) -> None:
        await _add_binary(engine)
        name = _publish(github, "v1")
        await lifecycle.install(engine, "gh")

        assert (await lifecycle.clean_cache(engine)).removed == []

        engine.clock = lambda: utc_now() + timedelta(days=60)
        result = await lifecycle.clean_cache(engine)

        assert result.removed == [str(engine.paths.cache_dir / name)]
        # installed executables do not depend on the cached archive
        assert (engine.paths.bin_dir / "gh").resolve().is_file()
