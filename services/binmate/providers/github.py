"""GitHub releases provider.

Resolves tagged releases and their assets through the GitHub REST API.
Anonymous by default; authenticated clients read GITHUB_TOKEN and download
assets through the API asset endpoint, which accepts bearer tokens where
browser download URLs do not.
"""

import os
from collections.abc import Mapping
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from binmate.errors import (
    InvalidBinaryConfig,
    NetworkError,
    UpstreamContentError,
    UpstreamStatusError,
)
from binmate.logging_config import get_logger
from binmate.providers.auth import BearerTokenAuth, token_from_env
from binmate.providers.protocol import Release, ReleaseAsset

logger = get_logger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"
API_VERSION = "2022-11-28"
LATEST = "latest"
MAX_PER_PAGE = 100


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def parse_release(data: Mapping[str, Any]) -> Release:
    """Build a Release from a GitHub release object."""
    assets = [
        ReleaseAsset(
            id=int(item.get("id") or 0),
            name=item.get("name") or "",
            content_type=item.get("content_type") or "",
            size=int(item.get("size") or 0),
            digest=item.get("digest") or "",
            browser_download_url=item.get("browser_download_url") or "",
        )
        for item in data.get("assets") or []
    ]
    return Release(
        name=data.get("name") or "",
        tag_name=data.get("tag_name") or "",
        assets=assets,
        body=data.get("body") or "",
        draft=bool(data.get("draft")),
        prerelease=bool(data.get("prerelease")),
        published_at=_parse_timestamp(data.get("published_at")),
        html_url=data.get("html_url") or "",
    )


def split_provider_path(provider_path: str) -> tuple[str, str]:
    """Split ``owner/repo``, rejecting anything else."""
    owner, _, repo = provider_path.strip().strip("/").partition("/")
    if not owner or not repo or "/" in repo:
        raise InvalidBinaryConfig(f"provider path must be owner/repo, got {provider_path!r}")
    return owner, repo


def _json_body(resp: httpx.Response) -> Any:
    if not resp.is_success:
        raise UpstreamStatusError(resp.status_code, str(resp.request.url))
    content_type = resp.headers.get("content-type", "")
    if "application/json" not in content_type:
        raise UpstreamContentError(content_type)
    try:
        return resp.json()
    except ValueError as e:
        raise UpstreamContentError(f"{content_type} (invalid JSON: {e})") from e


class GitHubProvider:
    """GitHub implementation of the release provider protocol."""

    name = "github"
    token_env_var = "GITHUB_TOKEN"

    def __init__(
        self,
        api_url: str | None = None,
        env: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 60.0,
    ) -> None:
        self.api_url = (api_url or DEFAULT_GITHUB_API_URL).rstrip("/")
        self._env = env if env is not None else os.environ
        self._transport = transport
        self._timeout = timeout

    def build_client(
        self, authenticated: bool, timeout: httpx.Timeout | None = None
    ) -> httpx.AsyncClient:
        auth = None
        if authenticated:
            auth = BearerTokenAuth(token_from_env(self.token_env_var, self._env))
        return httpx.AsyncClient(
            auth=auth,
            transport=self._transport,
            follow_redirects=True,
            timeout=timeout or httpx.Timeout(self._timeout),
            headers={"X-GitHub-Api-Version": API_VERSION},
        )

    def _release_url(self, provider_path: str, selector: str) -> str:
        owner, repo = split_provider_path(provider_path)
        base = f"{self.api_url}/repos/{owner}/{repo}/releases"
        if selector == LATEST:
            return f"{base}/latest"
        return f"{base}/tags/{quote(selector, safe='')}"

    async def _get_json(
        self, url: str, authenticated: bool, params: dict[str, Any] | None = None
    ) -> Any:
        async with self.build_client(authenticated) as client:
            try:
                resp = await client.get(
                    url,
                    params=params,
                    headers={"Accept": "application/vnd.github+json"},
                )
            except httpx.HTTPError as e:
                raise NetworkError(f"request to {url} failed: {e}") from e
        return _json_body(resp)

    async def resolve(
        self, provider_path: str, selector: str, authenticated: bool = False
    ) -> Release:
        """Fetch a release by tag, or the latest one for "latest"."""
        url = self._release_url(provider_path, selector)
        logger.debug("Fetching release", url=url, authenticated=authenticated)
        release = parse_release(await self._get_json(url, authenticated))
        logger.debug(
            "Release fetched",
            provider_path=provider_path,
            tag=release.tag_name,
            assets=len(release.assets),
        )
        return release

    async def list_releases(
        self, provider_path: str, limit: int = 30, authenticated: bool = False
    ) -> list[Release]:
        """Published releases, newest first. Drafts are dropped."""
        owner, repo = split_provider_path(provider_path)
        url = f"{self.api_url}/repos/{owner}/{repo}/releases"
        data = await self._get_json(
            url, authenticated, params={"per_page": min(max(limit, 1), MAX_PER_PAGE)}
        )
        releases = [parse_release(item) for item in data if not item.get("draft")]
        releases.sort(
            key=lambda r: r.published_at.timestamp() if r.published_at else 0.0,
            reverse=True,
        )
        return releases[:limit]

    def download_url(self, provider_path: str, asset: ReleaseAsset, authenticated: bool) -> str:
        if authenticated and asset.id:
            owner, repo = split_provider_path(provider_path)
            return f"{self.api_url}/repos/{owner}/{repo}/releases/assets/{asset.id}"
        return asset.browser_download_url

    def download_headers(self, authenticated: bool) -> dict[str, str]:
        if authenticated:
            return {"Accept": "application/octet-stream"}
        return {}

    async def fetch_release_notes(
        self, provider_path: str, tag: str, authenticated: bool = False
    ) -> Release:
        """The release for a tag (or "latest"), for its notes body."""
        return await self.resolve(provider_path, tag, authenticated)
