"""
Release provider protocol and types for binmate.

Defines the ReleaseProvider Protocol that upstream hosts must satisfy,
along with the release data shared by all providers.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol, runtime_checkable

import httpx

# --- Data Types ---


@dataclass(frozen=True)
class ReleaseAsset:
    """A downloadable file attached to a release."""

    id: int
    name: str
    content_type: str = ""
    size: int = 0
    digest: str = ""
    browser_download_url: str = ""


@dataclass(frozen=True)
class Release:
    """An upstream tagged release."""

    name: str
    tag_name: str
    assets: list[ReleaseAsset] = field(default_factory=list)
    body: str = ""
    draft: bool = False
    prerelease: bool = False
    published_at: datetime | None = None
    html_url: str = ""


# --- Protocol ---


@runtime_checkable
class ReleaseProvider(Protocol):
    """Interface for an upstream release host.

    Providers are registered by tag in ``binmate.providers``. No plugin
    loading: every implementation lives in this package.
    """

    name: str
    token_env_var: str

    def build_client(
        self, authenticated: bool, timeout: httpx.Timeout | None = None
    ) -> httpx.AsyncClient:
        """HTTP client for this host, carrying a bearer token when authenticated.

        ``timeout`` replaces the provider default (used for large downloads).

        Raises MissingCredential when authentication is requested without a token.
        """
        ...

    async def resolve(
        self, provider_path: str, selector: str, authenticated: bool = False
    ) -> Release:
        """Fetch the release for a tag, or the latest release for "latest"."""
        ...

    def download_url(self, provider_path: str, asset: ReleaseAsset, authenticated: bool) -> str:
        """URL to fetch an asset's bytes from."""
        ...

    def download_headers(self, authenticated: bool) -> dict[str, str]:
        """Extra headers for asset downloads."""
        ...

    async def list_releases(
        self, provider_path: str, limit: int = 30, authenticated: bool = False
    ) -> list[Release]:
        """Published releases, newest first."""
        ...

    async def fetch_release_notes(
        self, provider_path: str, tag: str, authenticated: bool = False
    ) -> Release:
        """A single release, read for its notes."""
        ...
