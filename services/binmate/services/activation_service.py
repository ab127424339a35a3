"""Management of the user-visible symlinks on PATH.

A link always points at an installation's extracted executable. It is
replaced by creating the new link beside it and renaming over the old one,
so the name on PATH never disappears mid-switch.
"""

import os
import shutil
from collections.abc import Iterable
from pathlib import Path

from binmate.errors import FilesystemError
from binmate.logging_config import get_logger
from binmate.paths import safe_component
from binmate.types import InstalledPath, SymlinkPath

logger = get_logger(__name__)


def ensure_bin_dir(bin_dir: Path) -> Path:
    try:
        bin_dir.mkdir(mode=0o755, parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"unable to create bin directory {bin_dir}: {e}") from e
    return bin_dir


def set_active_version(installed_path: InstalledPath, bin_dir: Path, link_name: str) -> SymlinkPath:
    """Point ``bin_dir/link_name`` at an installed executable."""
    safe_component(link_name, "link name")
    ensure_bin_dir(bin_dir)

    target = Path(os.path.abspath(installed_path))
    link = Path(os.path.abspath(bin_dir / link_name))
    if target == link:
        raise FilesystemError(f"refusing to link {link} to itself")
    if target.is_symlink():
        raise FilesystemError(f"{target} is a symlink, not an installed executable")

    if link.exists() and link.is_dir() and not link.is_symlink():
        raise FilesystemError(f"{link} is a directory")

    staged = link.with_name(f".{link_name}.binmate-link")
    try:
        if staged.is_symlink() or staged.exists():
            staged.unlink()
        os.symlink(target, staged)
        os.replace(staged, link)
    except OSError as e:
        staged.unlink(missing_ok=True)
        raise FilesystemError(f"unable to link {link} -> {target}: {e}") from e

    logger.info("Active version linked", link=str(link), target=str(target))
    return SymlinkPath(link)


def remove_link(link: Path) -> bool:
    """Unlink a symlink. Regular files are left alone. Returns whether one was removed."""
    if not link.is_symlink():
        return False
    try:
        link.unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FilesystemError(f"unable to remove symlink {link}: {e}") from e
    logger.info("Symlink removed", link=str(link))
    return True


def remove_files(
    link: Path | None, payload_dirs: Iterable[Path], versions_root: Path
) -> list[Path]:
    """Remove a binary's symlink and installation payload directories.

    Only directories inside versions_root are deleted. Returns the removed
    directories.
    """
    if link is not None:
        remove_link(link)

    root = Path(os.path.abspath(versions_root))
    removed: list[Path] = []
    for directory in payload_dirs:
        directory = Path(os.path.abspath(directory))
        if not directory.is_relative_to(root) or directory == root:
            logger.warning("Skipping directory outside managed versions", path=str(directory))
            continue
        if not directory.exists():
            continue
        try:
            shutil.rmtree(directory)
        except OSError as e:
            raise FilesystemError(f"unable to remove {directory}: {e}") from e
        removed.append(directory)
        logger.info("Installation removed", path=str(directory))

    # Drop the now-empty per-binary directory
    for parent in {d.parent for d in removed}:
        if parent != root and parent.is_relative_to(root) and parent.exists():
            try:
                parent.rmdir()
            except OSError:
                logger.debug("Versions directory not empty, keeping", path=str(parent))
    return removed
