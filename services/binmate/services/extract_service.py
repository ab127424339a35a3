"""Single-executable extraction from release archives.

Only one entry is ever written: the first regular file whose basename is
the binary name. Its destination is always ``<dest>/<name>``; paths stored
in the archive never influence where bytes land. Link entries abort the
whole extraction.
"""

import gzip
import os
import shutil
import stat
import tarfile
import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import IO

from binmate.errors import (
    ArchiveReadError,
    BinaryNotFoundInArchive,
    FilesystemError,
    SymlinksNotAllowed,
    UnsupportedFormat,
)
from binmate.logging_config import get_logger
from binmate.paths import safe_component
from binmate.types import FORMAT_TAR_GZ, FORMAT_ZIP, InstalledPath

logger = get_logger(__name__)

DEFAULT_MODE = 0o755

_READ_ERRORS = (tarfile.TarError, zipfile.BadZipFile, gzip.BadGzipFile, zlib.error, EOFError)


def _basename(entry_name: str) -> str:
    return PurePosixPath(entry_name.replace("\\", "/")).name


def _effective_mode(mode: int) -> int:
    perm = stat.S_IMODE(mode) & 0o777
    return perm or DEFAULT_MODE


def _write_entry(source: IO[bytes], target: Path, mode: int) -> None:
    # Never write through a link someone left at the destination
    if target.is_symlink():
        target.unlink()
    with open(target, "wb") as out:
        shutil.copyfileobj(source, out)
    os.chmod(target, mode)


def _extract_tar(archive: Path, target: Path, binary_name: str) -> None:
    with tarfile.open(archive, "r:gz") as tar:
        # Every entry is checked before anything is written
        members = tar.getmembers()
        for member in members:
            if member.issym() or member.islnk():
                raise SymlinksNotAllowed(member.name)

        match = next(
            (m for m in members if m.isreg() and _basename(m.name) == binary_name), None
        )
        if match is None:
            raise BinaryNotFoundInArchive(binary_name, str(archive))
        source = tar.extractfile(match)
        if source is None:
            raise ArchiveReadError(f"unable to read {match.name} from {archive}")
        with source:
            _write_entry(source, target, _effective_mode(match.mode))


def _extract_zip(archive: Path, target: Path, binary_name: str) -> None:
    with zipfile.ZipFile(archive) as zf:
        entries = zf.infolist()
        for info in entries:
            if stat.S_ISLNK(info.external_attr >> 16):
                raise SymlinksNotAllowed(info.filename)

        match = next(
            (i for i in entries if not i.is_dir() and _basename(i.filename) == binary_name), None
        )
        if match is None:
            raise BinaryNotFoundInArchive(binary_name, str(archive))
        with zf.open(match) as source:
            _write_entry(source, target, _effective_mode(match.external_attr >> 16))


_EXTRACTORS = {
    FORMAT_TAR_GZ: _extract_tar,
    FORMAT_ZIP: _extract_zip,
}


def extract_binary(archive: Path, fmt: str, dest_dir: Path, binary_name: str) -> InstalledPath:
    """Extract one executable from an archive to ``dest_dir/binary_name``."""
    extractor = _EXTRACTORS.get(fmt)
    if extractor is None:
        raise UnsupportedFormat(fmt)
    if not str(dest_dir):
        raise FilesystemError("destination directory is required")
    safe_component(binary_name, "binary name")

    try:
        dest_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"unable to create {dest_dir}: {e}") from e

    target = dest_dir / binary_name
    try:
        extractor(archive, target, binary_name)
    except _READ_ERRORS as e:
        raise ArchiveReadError(f"unable to read archive {archive}: {e}") from e
    except OSError as e:
        raise FilesystemError(f"unable to extract {binary_name} to {target}: {e}") from e

    logger.debug("Binary extracted", archive=str(archive), path=str(target))
    return InstalledPath(target)
