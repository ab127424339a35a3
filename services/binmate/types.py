"""
Shared value types for binmate.

InstalledPath and SymlinkPath are kept distinct so that a symlink is never
handed to code expecting the extracted executable (which would make the
Activator link a name to itself).
"""

from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, NewType

# The extracted executable inside a versioned payload directory.
InstalledPath = NewType("InstalledPath", Path)

# The user-visible link in a bin directory.
SymlinkPath = NewType("SymlinkPath", Path)

SOURCE_CONFIG = "config"
SOURCE_MANUAL = "manual"

FORMAT_TAR_GZ = ".tar.gz"
FORMAT_ZIP = ".zip"
FORMAT_BINARY = "binary"

SUPPORTED_ARCHIVE_FORMATS = (FORMAT_TAR_GZ, FORMAT_ZIP)


@dataclass(frozen=True)
class BinaryDescriptor:
    """A user's declaration of a managed executable.

    Mirrors the stored Binary less the surrogate id, timestamps, digest and
    provenance. ``release_prefix`` is a literal string prepended to the
    requested version to form the upstream tag.
    """

    user_id: str
    name: str
    provider: str
    provider_path: str
    format: str
    alias: str | None = None
    install_path: str | None = None
    asset_regex: str | None = None
    release_prefix: str | None = None
    authenticated: bool = False

    def canonical_fields(self) -> dict[str, Any]:
        """Field values normalised for hashing (None and empty compare equal)."""
        fields = asdict(self)
        return {key: ("" if value is None else value) for key, value in fields.items()}
