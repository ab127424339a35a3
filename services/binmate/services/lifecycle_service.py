"""Service layer for binary lifecycle operations.

Install, switch, update, check, remove, add and import, plus the catalogue
queries the CLI needs. Every operation takes the EngineContext first and
runs inside the audit helper, so the operation log brackets it.

Install side effects happen in a fixed order: archive cached, archive
verified, executable extracted, symlink flipped, store rows written. A
failure before extraction leaves the filesystem untouched; a failure after
it leaves a payload that the next install overwrites.
"""

import asyncio
import os
import shutil
import stat
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path

from binmate.context import EngineContext
from binmate.db.models import Binary, Download, Installation
from binmate.errors import (
    BinmateError,
    FilesystemError,
    NotFound,
    UnsupportedFormat,
    VersionNotInstalled,
)
from binmate.logging_config import get_logger
from binmate.paths import safe_component
from binmate.providers.github import LATEST, GitHubProvider
from binmate.providers.protocol import ReleaseAsset
from binmate.repositories.binaries import BinaryDetails, SyncResult, binary_from_descriptor
from binmate.services.activation_service import remove_files, set_active_version
from binmate.services.audit import OperationAudit, audited
from binmate.services.digest import CHECKSUM_ALGORITHM, compute_sha256, verify_digest
from binmate.services.extract_service import extract_binary
from binmate.services.release_service import latest_tag, resolve_release
from binmate.services.url_parser import generate_binary_id, parse_release_url
from binmate.types import (
    FORMAT_BINARY,
    SOURCE_MANUAL,
    SUPPORTED_ARCHIVE_FORMATS,
    BinaryDescriptor,
    InstalledPath,
)

logger = get_logger(__name__)

LOCAL_PROVIDER = "local"
DEFAULT_CACHE_MAX_AGE = timedelta(days=30)
DEFAULT_CLEAN_LIMIT = 100

CHECK_UP_TO_DATE = "up_to_date"
CHECK_UPDATE_AVAILABLE = "update_available"
CHECK_NOT_INSTALLED = "no_version_installed"
CHECK_ERROR = "error"


# --- Results ---


@dataclass
class InstallResult:
    binary: Binary
    installation: Installation
    version: str
    symlink_path: str | None = None
    already_installed: bool = False


@dataclass
class CheckResult:
    binary_id: str
    status: str
    current: str | None = None
    latest: str | None = None
    error: str | None = None

    @property
    def update_available(self) -> bool:
        return self.status in (CHECK_UPDATE_AVAILABLE, CHECK_NOT_INSTALLED)


@dataclass
class BatchReport:
    """Outcome of an operation applied to every binary.

    ``failures`` maps a binary id to its error message. ``skipped`` lists
    imported binaries, which have no upstream to compare against.
    """

    results: list = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


@dataclass
class RemoveResult:
    binary: Binary
    installations: list[Installation]
    removed_paths: list[Path] = field(default_factory=list)


@dataclass
class AddResult:
    binary: Binary
    created: bool
    version: str = ""


@dataclass
class VersionList:
    binary: Binary
    installations: list[Installation]
    active_installation_id: int | None = None


@dataclass
class CleanResult:
    removed: list[str] = field(default_factory=list)
    freed_bytes: int = 0


# --- Install ---


async def install(ctx: EngineContext, user_id: str, version: str = LATEST) -> InstallResult:
    """Install a version of a binary (the latest release by default) and activate it."""

    async def run(audit: OperationAudit) -> InstallResult:
        return await _install(ctx, user_id, version)

    return await audited(ctx.store.logs, "install", run, binary=user_id, version=version)


async def update(ctx: EngineContext, user_id: str) -> InstallResult:
    """Install and activate the latest release."""

    async def run(audit: OperationAudit) -> InstallResult:
        return await _install(ctx, user_id, LATEST)

    return await audited(ctx.store.logs, "update", run, binary=user_id, version=LATEST)


async def update_all(ctx: EngineContext) -> BatchReport:
    """Update every binary, continuing past individual failures."""

    async def run(audit: OperationAudit) -> BatchReport:
        report = BatchReport()
        for binary in await ctx.store.binaries.list():
            if binary.provider == LOCAL_PROVIDER:
                report.skipped.append(binary.user_id)
                continue
            try:
                report.results.append(await update(ctx, binary.user_id))
            except BinmateError as e:
                logger.warning("Update failed", binary=binary.user_id, error=str(e))
                report.failures[binary.user_id] = str(e)
        return report

    return await audited(ctx.store.logs, "update_all", run)


async def _install(ctx: EngineContext, user_id: str, version: str) -> InstallResult:
    binary = await ctx.store.binaries.get_by_user_id(user_id)
    provider = ctx.provider(binary.provider)
    if binary.format not in SUPPORTED_ARCHIVE_FORMATS:
        raise UnsupportedFormat(binary.format)

    release, asset = await resolve_release(provider, binary, version)
    effective_version = release.tag_name if version == LATEST else version
    safe_component(effective_version, "version")

    try:
        existing = await ctx.store.installations.get(binary.id, effective_version)
    except NotFound:
        existing = None
    if existing is not None:
        logger.info("Version already installed", binary=user_id, version=effective_version)
        return InstallResult(
            binary=binary,
            installation=existing,
            version=effective_version,
            already_installed=True,
        )

    url = provider.download_url(binary.provider_path, asset, binary.authenticated)
    archive = await _fetch_archive(ctx, binary, effective_version, asset, url)

    payload_dir = ctx.paths.payload_dir(binary.user_id, effective_version)
    installed = await asyncio.to_thread(
        extract_binary, archive, binary.format, payload_dir, binary.name
    )
    return await _record_installation(ctx, binary, effective_version, installed, url)


async def _reusable_download(
    ctx: EngineContext, binary: Binary, version: str, dest: Path
) -> Download | None:
    """A completed, unmodified cached archive for this version, if there is one."""
    try:
        download = await ctx.store.downloads.get(binary.id, version)
    except NotFound:
        return None
    if not download.is_complete or Path(download.cache_path) != dest or not dest.is_file():
        return None
    if download.checksum:
        actual = await asyncio.to_thread(compute_sha256, dest)
        if actual != download.checksum:
            logger.info("Cached archive changed, downloading again", path=str(dest))
            return None
    return download


async def _fetch_archive(
    ctx: EngineContext,
    binary: Binary,
    version: str,
    asset: ReleaseAsset,
    url: str,
) -> Path:
    """Cached archive for a release asset, downloaded and verified when needed."""
    provider = ctx.provider(binary.provider)
    fetcher = ctx.fetcher(provider)
    dest = fetcher.cache_path(asset.name)

    cached = await _reusable_download(ctx, binary, version, dest)
    if cached is not None:
        await ctx.store.downloads.update_last_accessed(cached.id)
        logger.info("Using cached archive", binary=binary.user_id, path=str(dest))
        return dest

    archive = await fetcher.download(
        url,
        asset.name,
        authenticated=binary.authenticated,
        headers=provider.download_headers(binary.authenticated),
    )
    download = await ctx.store.downloads.record(
        binary.id, version, str(archive), url, archive.stat().st_size
    )

    if asset.digest:
        checksum = await asyncio.to_thread(verify_digest, archive, asset.digest)
    else:
        logger.info("Asset has no published digest", binary=binary.user_id, asset=asset.name)
        checksum = await asyncio.to_thread(compute_sha256, archive)
    await ctx.store.downloads.mark_complete(download.id, checksum)
    return archive


async def _record_installation(
    ctx: EngineContext,
    binary: Binary,
    version: str,
    installed: InstalledPath,
    source_url: str,
) -> InstallResult:
    """Hash the executable, flip the symlink, then write the store rows."""
    checksum = await asyncio.to_thread(compute_sha256, installed)
    file_size = installed.stat().st_size

    bin_dir = ctx.paths.bin_dir_for(binary.install_path)
    symlink = set_active_version(installed, bin_dir, binary.link_name)

    installation = await ctx.store.installations.create(
        Installation(
            binary_id=binary.id,
            version=version,
            installed_path=str(installed),
            source_url=source_url,
            file_size=file_size,
            checksum=checksum,
            checksum_algorithm=CHECKSUM_ALGORITHM,
            installed_at=ctx.clock(),
        )
    )
    await ctx.store.active_versions.set(binary.id, installation.id, str(symlink))
    logger.info(
        "Version installed",
        binary=binary.user_id,
        version=version,
        path=str(installed),
        size_bytes=file_size,
    )
    return InstallResult(
        binary=binary,
        installation=installation,
        version=version,
        symlink_path=str(symlink),
    )


# --- Switch ---


async def switch(ctx: EngineContext, user_id: str, version: str) -> InstallResult:
    """Point a binary's symlink at an already installed version."""

    async def run(audit: OperationAudit) -> InstallResult:
        binary = await ctx.store.binaries.get_by_user_id(user_id)
        try:
            installation = await ctx.store.installations.get(binary.id, version)
        except NotFound:
            raise VersionNotInstalled(user_id, version) from None

        bin_dir = ctx.paths.bin_dir_for(binary.install_path)
        symlink = set_active_version(
            InstalledPath(Path(installation.installed_path)), bin_dir, binary.link_name
        )
        await ctx.store.active_versions.switch(binary.id, installation.id, str(symlink))
        logger.info("Version switched", binary=user_id, version=version)
        return InstallResult(
            binary=binary,
            installation=installation,
            version=version,
            symlink_path=str(symlink),
            already_installed=True,
        )

    return await audited(ctx.store.logs, "switch", run, binary=user_id, version=version)


# --- Check ---


async def _check(ctx: EngineContext, user_id: str) -> CheckResult:
    binary = await ctx.store.binaries.get_by_user_id(user_id)
    latest = await latest_tag(ctx.provider(binary.provider), binary)
    try:
        _, installation = await ctx.store.active_versions.get_with_installation(binary.id)
    except NotFound:
        return CheckResult(binary_id=user_id, status=CHECK_NOT_INSTALLED, latest=latest)

    current = installation.version
    # A version installed as "1.2" under prefix "v" is tag "v1.2"
    if latest in (current, f"{binary.release_prefix}{current}"):
        status = CHECK_UP_TO_DATE
    else:
        status = CHECK_UPDATE_AVAILABLE
    return CheckResult(binary_id=user_id, status=status, current=current, latest=latest)


async def check(ctx: EngineContext, user_id: str) -> CheckResult:
    """Compare the active version of a binary with its latest release."""

    async def run(audit: OperationAudit) -> CheckResult:
        return await _check(ctx, user_id)

    return await audited(ctx.store.logs, "check", run, binary=user_id)


async def check_all(ctx: EngineContext) -> BatchReport:
    """Check every binary. Failures become "error" results."""

    async def run(audit: OperationAudit) -> BatchReport:
        report = BatchReport()
        for binary in await ctx.store.binaries.list():
            if binary.provider == LOCAL_PROVIDER:
                report.skipped.append(binary.user_id)
                continue
            try:
                result = await check(ctx, binary.user_id)
            except BinmateError as e:
                report.failures[binary.user_id] = str(e)
                result = CheckResult(binary_id=binary.user_id, status=CHECK_ERROR, error=str(e))
            report.results.append(result)
        return report

    return await audited(ctx.store.logs, "check_all", run)


# --- Remove ---


def _linked_to_any(link: Path, installations: list[Installation]) -> bool:
    if not link.is_symlink():
        return False
    target = os.readlink(link)
    return any(target == inst.installed_path for inst in installations)


async def remove(ctx: EngineContext, user_id: str, delete_files: bool = False) -> RemoveResult:
    """Delete a binary from the catalogue, optionally with its files.

    With delete_files, the symlink, every payload directory under the
    versions directory and the cached archives go too. Imported executables
    kept at their original location are never deleted.
    """

    async def run(audit: OperationAudit) -> RemoveResult:
        binary = await ctx.store.binaries.get_by_user_id(user_id)
        installations = await ctx.store.installations.list_by_binary(binary.id)
        result = RemoveResult(binary=binary, installations=installations)

        if delete_files:
            try:
                active = await ctx.store.active_versions.get(binary.id)
                link: Path | None = Path(active.symlink_path)
            except NotFound:
                candidate = ctx.paths.bin_dir_for(binary.install_path) / binary.link_name
                link = candidate if _linked_to_any(candidate, installations) else None

            payload_dirs = [ctx.paths.payload_dir(user_id, i.version) for i in installations]
            downloads = await ctx.store.downloads.list_by_binary(binary.id)
            result.removed_paths = await asyncio.to_thread(
                remove_files, link, payload_dirs, ctx.paths.versions_dir
            )
            for download in downloads:
                _remove_cached_file(ctx, Path(download.cache_path))

        await ctx.store.binaries.delete(binary.id)
        logger.info(
            "Binary removed",
            binary=user_id,
            installations=len(installations),
            files_removed=delete_files,
        )
        return result

    return await audited(ctx.store.logs, "remove", run, binary=user_id)


def _remove_cached_file(ctx: EngineContext, path: Path) -> int:
    """Delete a cache file inside the cache directory. Returns the bytes freed."""
    root = Path(os.path.abspath(ctx.paths.cache_dir))
    path = Path(os.path.abspath(path))
    if not path.is_relative_to(root) or not path.is_file():
        return 0
    size = path.stat().st_size
    try:
        path.unlink()
    except OSError as e:
        raise FilesystemError(f"unable to remove cached archive {path}: {e}") from e
    return size


# --- Catalogue ---


async def add_from_url(
    ctx: EngineContext, raw_url: str, authenticated: bool = False
) -> AddResult:
    """Catalogue a binary from one of its release download URLs.

    An existing binary with the derived id is returned unchanged.
    """

    async def run(audit: OperationAudit) -> AddResult:
        parsed = parse_release_url(raw_url)
        user_id = generate_binary_id(parsed.asset_name)
        await audit.entity(user_id)
        try:
            existing = await ctx.store.binaries.get_by_user_id(user_id)
        except NotFound:
            existing = None
        if existing is not None:
            logger.info("Binary already exists", binary=user_id)
            return AddResult(binary=existing, created=False, version=parsed.version)

        descriptor = BinaryDescriptor(
            user_id=user_id,
            name=user_id,
            provider=GitHubProvider.name,
            provider_path=parsed.provider_path,
            format=parsed.format,
            authenticated=authenticated,
        )
        binary = await ctx.store.binaries.create(
            binary_from_descriptor(descriptor, source=SOURCE_MANUAL, config_version=0)
        )
        logger.info("Binary added", binary=user_id, provider_path=parsed.provider_path)
        return AddResult(binary=binary, created=True, version=parsed.version)

    return await audited(ctx.store.logs, "add", run, message=raw_url)


def _copy_executable(source: Path, dest_dir: Path, name: str) -> InstalledPath:
    try:
        dest_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
        target = dest_dir / name
        shutil.copy2(source, target)
        mode = stat.S_IMODE(target.stat().st_mode)
        target.chmod(mode | 0o755)
    except OSError as e:
        raise FilesystemError(f"unable to copy {source} to {dest_dir}: {e}") from e
    return InstalledPath(target)


async def import_binary(
    ctx: EngineContext,
    path: str | Path,
    name: str,
    version: str | None = None,
    keep_location: bool = False,
) -> InstallResult:
    """Adopt an executable that is already on disk and activate it.

    The file is copied into the versions directory unless keep_location is
    set, in which case the symlink points at it where it is.
    """
    version = version or f"imported-{int(ctx.clock().timestamp())}"

    async def run(audit: OperationAudit) -> InstallResult:
        safe_component(name, "binary name")
        safe_component(version, "version")
        source = Path(os.path.realpath(Path(path).expanduser()))
        if not source.is_file():
            raise FilesystemError(f"{path} is not a file")

        try:
            binary = await ctx.store.binaries.get_by_user_id(name)
        except NotFound:
            descriptor = BinaryDescriptor(
                user_id=name,
                name=name,
                provider=LOCAL_PROVIDER,
                provider_path="",
                format=FORMAT_BINARY,
            )
            binary = await ctx.store.binaries.create(
                binary_from_descriptor(descriptor, source=SOURCE_MANUAL)
            )

        try:
            existing = await ctx.store.installations.get(binary.id, version)
        except NotFound:
            existing = None
        if existing is not None:
            return InstallResult(
                binary=binary, installation=existing, version=version, already_installed=True
            )

        if keep_location:
            installed = InstalledPath(source)
        else:
            installed = await asyncio.to_thread(
                _copy_executable, source, ctx.paths.payload_dir(name, version), binary.name
            )
        return await _record_installation(ctx, binary, version, installed, source.as_uri())

    return await audited(ctx.store.logs, "import", run, binary=name, version=version)


async def list_binaries(ctx: EngineContext) -> list[BinaryDetails]:
    return await ctx.store.binaries.list_with_version_details()


async def list_versions(ctx: EngineContext, user_id: str) -> VersionList:
    """Installed versions of a binary, newest first, with the active one marked."""
    binary = await ctx.store.binaries.get_by_user_id(user_id)
    installations = await ctx.store.installations.list_by_binary(binary.id)
    try:
        active = await ctx.store.active_versions.get(binary.id)
        active_id: int | None = active.installation_id
    except NotFound:
        active_id = None
    return VersionList(binary=binary, installations=installations, active_installation_id=active_id)


async def list_remote_versions(ctx: EngineContext, user_id: str, limit: int = 10) -> list[str]:
    """Tags of the most recent upstream releases."""
    binary = await ctx.store.binaries.get_by_user_id(user_id)
    provider = ctx.provider(binary.provider)
    releases = await provider.list_releases(binary.provider_path, limit, binary.authenticated)
    return [r.tag_name for r in releases]


async def release_notes(ctx: EngineContext, user_id: str, version: str = LATEST) -> str:
    binary = await ctx.store.binaries.get_by_user_id(user_id)
    provider = ctx.provider(binary.provider)
    tag = version if version == LATEST else f"{binary.release_prefix}{version}"
    release = await provider.fetch_release_notes(binary.provider_path, tag, binary.authenticated)
    return release.body


# --- Config sync ---


async def sync_config(
    ctx: EngineContext,
    descriptors: list[BinaryDescriptor] | None = None,
    config_version: int | None = None,
) -> SyncResult:
    """Make config-declared binaries match the config file."""
    if descriptors is None:
        descriptors = ctx.settings.descriptors()
    if config_version is None:
        config_version = ctx.settings.version

    async def run(audit: OperationAudit) -> SyncResult:
        return await ctx.store.binaries.sync_from_config(descriptors, config_version)

    return await audited(
        ctx.store.logs,
        "sync",
        run,
        metadata={"config_version": config_version, "binaries": len(descriptors)},
    )


async def sync_binary(ctx: EngineContext, user_id: str) -> tuple[str, Binary]:
    """Create or update a single binary from its config declaration."""

    async def run(audit: OperationAudit) -> tuple[str, Binary]:
        descriptor = ctx.settings.find_binary(user_id)
        status = await ctx.store.binaries.sync_binary(descriptor, ctx.settings.version)
        return status, await ctx.store.binaries.get_by_user_id(user_id)

    return await audited(ctx.store.logs, "sync_binary", run, binary=user_id)


# --- Cache ---


async def clean_cache(
    ctx: EngineContext,
    max_age: timedelta = DEFAULT_CACHE_MAX_AGE,
    limit: int = DEFAULT_CLEAN_LIMIT,
) -> CleanResult:
    """Evict cached archives unused for max_age, and incomplete downloads."""

    async def run(audit: OperationAudit) -> CleanResult:
        cutoff = ctx.clock() - max_age
        stale = await ctx.store.downloads.list_for_cleanup(cutoff, limit)
        incomplete = await ctx.store.downloads.get_incomplete()
        seen: set[int] = set()
        result = CleanResult()
        for download in stale + incomplete:
            if download.id in seen:
                continue
            seen.add(download.id)
            result.freed_bytes += _remove_cached_file(ctx, Path(download.cache_path))
            await ctx.store.downloads.delete(download.id)
            result.removed.append(download.cache_path)
        logger.info("Cache cleaned", removed=len(result.removed), freed_bytes=result.freed_bytes)
        return result

    return await audited(ctx.store.logs, "clean", run, metadata={"limit": limit})
