"""
Exception hierarchy for binmate.

Every component raises a subclass of BinmateError. The lifecycle layer
attaches operation context (operation name, binary, version) before the
error reaches the CLI, which renders it as a single ``error: ...`` line.
"""

from typing import Any


class BinmateError(Exception):
    """Base exception for all binmate failures."""

    def __init__(self, message: str = "") -> None:
        self.message = message or self.__class__.__doc__ or self.__class__.__name__
        self.context: dict[str, Any] = {}
        super().__init__(self.message)

    def add_context(self, **context: Any) -> "BinmateError":
        """Attach operation context, keeping any value already set."""
        for key, value in context.items():
            if value is not None and key not in self.context:
                self.context[key] = value
        return self

    def __str__(self) -> str:
        operation = self.context.get("operation")
        if not operation:
            return self.message
        subject = self.context.get("binary", "")
        version = self.context.get("version")
        if subject and version:
            subject = f"{subject}@{version}"
        prefix = f"{operation} {subject}".strip()
        return f"{prefix}: {self.message}"


# --- Store ---


class StoreError(BinmateError):
    """Underlying storage failure."""


class NotFound(StoreError):
    """Raised when a requested entity does not exist in the store."""

    def __init__(self, entity: str, key: Any) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class Duplicate(StoreError):
    """Raised when a write violates a uniqueness constraint."""


class ForeignKey(StoreError):
    """Raised when a write references a missing parent row."""


class MigrationError(StoreError):
    """Raised when a schema migration fails to apply."""

    def __init__(self, version: int, reason: str) -> None:
        self.version = version
        super().__init__(f"migration {version} failed: {reason}")


# --- Binary configuration ---


class ConfigError(BinmateError):
    """Configuration file or settings are invalid."""


class InvalidBinaryConfig(BinmateError):
    """A binary descriptor is missing a required field."""


class UnsupportedProvider(BinmateError):
    def __init__(self, provider: str) -> None:
        self.provider = provider
        super().__init__(f"unsupported provider: {provider}")


class UnsupportedFormat(BinmateError):
    def __init__(self, fmt: str) -> None:
        self.format = fmt
        super().__init__(f"unsupported format: {fmt}")


class InvalidAssetRegex(BinmateError):
    def __init__(self, pattern: str, reason: str) -> None:
        self.pattern = pattern
        super().__init__(f"invalid asset regex {pattern!r}: {reason}")


class InvalidURL(BinmateError):
    """A release download URL could not be parsed."""


# --- Upstream ---


class UpstreamError(BinmateError):
    """Upstream release host returned something unusable."""


class UpstreamStatusError(UpstreamError):
    def __init__(self, status: int, url: str = "") -> None:
        self.status = status
        self.url = url
        detail = f" from {url}" if url else ""
        super().__init__(f"upstream returned HTTP {status}{detail}")


class UpstreamContentError(UpstreamError):
    def __init__(self, content_type: str) -> None:
        self.content_type = content_type
        super().__init__(f"unexpected upstream content type: {content_type or 'none'}")


class NoAssetsAvailable(UpstreamError):
    def __init__(self, tag: str) -> None:
        self.tag = tag
        super().__init__(f"release {tag} has no assets")


class NoMatchingAsset(UpstreamError):
    def __init__(self, tag: str, candidates: list[str] | None = None) -> None:
        self.tag = tag
        self.candidates = candidates or []
        super().__init__(f"no asset in release {tag} matches this platform")


class MissingCredential(BinmateError):
    def __init__(self, env_var: str) -> None:
        self.env_var = env_var
        super().__init__(f"authentication requested but {env_var} is not set")


class NetworkError(BinmateError):
    """Transport-level failure talking to the upstream host."""


# --- Integrity ---


class DigestError(BinmateError):
    """Content verification failure."""


class DigestMismatch(DigestError):
    def __init__(self, expected: str, actual: str) -> None:
        self.expected = expected
        self.actual = actual
        super().__init__(f"digest mismatch: expected {expected}, got {actual}")


class UnsupportedDigest(DigestError):
    def __init__(self, digest: str) -> None:
        self.digest = digest
        super().__init__(f"unsupported digest: {digest}")


class ChecksumComputationError(DigestError):
    """Reading a file to compute its checksum failed."""


# --- Archives ---


class ArchiveError(BinmateError):
    """Archive could not be turned into an executable."""


class BinaryNotFoundInArchive(ArchiveError):
    def __init__(self, name: str, archive: str) -> None:
        self.name = name
        self.archive = archive
        super().__init__(f"binary {name} not found in archive {archive}")


class SymlinksNotAllowed(ArchiveError):
    def __init__(self, entry: str) -> None:
        self.entry = entry
        super().__init__(f"archive entry {entry} is a link; links are not allowed")


class ArchiveReadError(ArchiveError):
    """Archive is corrupt or unreadable."""


# --- Local state ---


class FilesystemError(BinmateError):
    """Creating, renaming, linking or removing a path failed."""


class VersionNotInstalled(BinmateError):
    def __init__(self, binary: str, version: str) -> None:
        self.binary = binary
        self.version = version
        super().__init__(f"version {version} of {binary} is not installed")
