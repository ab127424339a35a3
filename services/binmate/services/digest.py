"""
Content digests for binmate.

Digests travel as ``<algorithm>:<lowercase-hex>``; only sha256 is accepted.
"""

import hashlib
import json
from pathlib import Path

from binmate.errors import ChecksumComputationError, DigestMismatch, UnsupportedDigest
from binmate.types import BinaryDescriptor

CHECKSUM_ALGORITHM = "SHA256"
_CHUNK_SIZE = 1024 * 1024


def compute_sha256(path: Path) -> str:
    """Hex SHA-256 of a file, read in chunks."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as f:
            while chunk := f.read(_CHUNK_SIZE):
                digest.update(chunk)
    except OSError as e:
        raise ChecksumComputationError(f"unable to checksum {path}: {e}") from e
    return digest.hexdigest()


def parse_digest(digest: str) -> tuple[str, str]:
    """Split ``algo:hex`` into a lowercased algorithm and hex value."""
    algorithm, sep, value = digest.strip().partition(":")
    algorithm = algorithm.lower()
    if not sep or not value or algorithm != "sha256":
        raise UnsupportedDigest(digest)
    return algorithm, value.lower()


def verify_digest(path: Path, digest: str) -> str:
    """Check a file against an ``algo:hex`` digest. Returns the computed hex."""
    _, expected = parse_digest(digest)
    actual = compute_sha256(path)
    if actual != expected:
        raise DigestMismatch(expected=f"sha256:{expected}", actual=f"sha256:{actual}")
    return actual


def compute_config_digest(descriptor: BinaryDescriptor) -> str:
    """Stable digest of a descriptor's canonical field tuple."""
    canonical = json.dumps(descriptor.canonical_fields(), sort_keys=True, separators=(",", ":"))
    return "sha256:" + hashlib.sha256(canonical.encode()).hexdigest()
