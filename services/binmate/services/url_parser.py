"""Parsing of GitHub release download URLs.

Supports https://github.com/<owner>/<repo>/releases/download/<tag>/<asset>.
"""

from dataclasses import dataclass
from urllib.parse import quote, unquote, urlsplit

from binmate.errors import InvalidURL, UnsupportedFormat
from binmate.types import FORMAT_TAR_GZ, FORMAT_ZIP

GITHUB_HOST = "github.com"

_FORMAT_SUFFIXES = (
    (".tar.gz", FORMAT_TAR_GZ),
    (".tgz", FORMAT_TAR_GZ),
    (".zip", FORMAT_ZIP),
)


@dataclass(frozen=True)
class ReleaseURL:
    owner: str
    repo: str
    version: str
    asset_name: str
    format: str

    @property
    def provider_path(self) -> str:
        return f"{self.owner}/{self.repo}"


def detect_format(asset_name: str) -> str:
    """Archive format of an asset name (.tgz counts as .tar.gz)."""
    lower = asset_name.lower()
    for suffix, fmt in _FORMAT_SUFFIXES:
        if lower.endswith(suffix):
            return fmt
    raise UnsupportedFormat(asset_name)


def strip_archive_extension(asset_name: str) -> str:
    lower = asset_name.lower()
    for suffix, _ in _FORMAT_SUFFIXES:
        if lower.endswith(suffix):
            return asset_name[: -len(suffix)]
    return asset_name


def generate_binary_id(asset_name: str) -> str:
    """First token of the asset name, split on - or _, without its extension.

    gh_2.30.0_linux_amd64.tar.gz -> gh
    """
    stem = strip_archive_extension(asset_name)
    tokens = [t for t in stem.replace("_", "-").split("-") if t]
    return tokens[0] if tokens else stem


def parse_release_url(raw_url: str) -> ReleaseURL:
    """Parse a release download URL into its owner, repo, tag and asset."""
    parts = urlsplit(raw_url.strip())
    if parts.scheme not in ("http", "https"):
        raise InvalidURL(f"invalid URL: {raw_url}")
    if parts.hostname != GITHUB_HOST:
        raise InvalidURL(f"not a GitHub URL: {parts.hostname or raw_url}")

    segments = [unquote(s) for s in parts.path.strip("/").split("/")]
    if len(segments) < 6:
        raise InvalidURL(
            "invalid GitHub release URL: expected at least 6 path segments, "
            f"got {len(segments)}"
        )
    if segments[2] != "releases" or segments[3] != "download":
        raise InvalidURL("invalid GitHub release URL: expected /releases/download/ in path")

    owner, repo, version, asset_name = segments[0], segments[1], segments[4], segments[5]
    if not all((owner, repo, version, asset_name)):
        raise InvalidURL(f"invalid GitHub release URL: {raw_url}")

    return ReleaseURL(
        owner=owner,
        repo=repo,
        version=version,
        asset_name=asset_name,
        format=detect_format(asset_name),
    )


def compose_release_url(owner: str, repo: str, version: str, asset_name: str) -> str:
    """Inverse of parse_release_url for canonical URLs."""
    segments = (owner, repo, "releases", "download", version, asset_name)
    path = "/".join(quote(s, safe="") for s in segments)
    return f"https://{GITHUB_HOST}/{path}"
