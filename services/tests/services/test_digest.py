"""Tests for content digests."""

import hashlib
from pathlib import Path

import pytest

from binmate.errors import ChecksumComputationError, DigestMismatch, UnsupportedDigest
from binmate.services.digest import compute_sha256, parse_digest, verify_digest

DATA = b"binmate"
HEX = hashlib.sha256(DATA).hexdigest()


@pytest.fixture
def payload(tmp_path: Path) -> Path:
    path = tmp_path / "payload"
    path.write_bytes(DATA)
    return path


def test_compute_sha256(payload: Path) -> None:
    assert compute_sha256(payload) == HEX


def test_compute_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ChecksumComputationError):
        compute_sha256(tmp_path / "missing")


@pytest.mark.parametrize("digest", [f"sha256:{HEX}", f"SHA256:{HEX.upper()}", f" sha256:{HEX} "])
def test_verify_accepts_case_and_whitespace(payload: Path, digest: str) -> None:
    assert verify_digest(payload, digest) == HEX


def test_verify_mismatch(payload: Path) -> None:
    with pytest.raises(DigestMismatch) as exc:
        verify_digest(payload, "sha256:" + "0" * 64)
    assert exc.value.actual == f"sha256:{HEX}"


@pytest.mark.parametrize("digest", ["md5:abc", HEX, "sha256:", ""])
def test_unsupported_digest(digest: str) -> None:
    with pytest.raises(UnsupportedDigest):
        parse_digest(digest)
