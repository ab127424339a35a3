"""Release provider registry.

Maps a binary's provider tag to the implementation that resolves its
releases. Only in-process providers exist.
"""

from collections.abc import Mapping

import httpx

from binmate.errors import UnsupportedProvider
from binmate.providers.github import GitHubProvider
from binmate.providers.protocol import ReleaseProvider

PROVIDER_CLASSES: dict[str, type[GitHubProvider]] = {
    GitHubProvider.name: GitHubProvider,
}


def build_providers(
    env: Mapping[str, str],
    transport: httpx.AsyncBaseTransport | None = None,
    timeout: float = 60.0,
    api_urls: Mapping[str, str | None] | None = None,
) -> dict[str, ReleaseProvider]:
    """Instantiate every known provider for one engine context."""
    api_urls = api_urls or {}
    return {
        name: cls(api_url=api_urls.get(name), env=env, transport=transport, timeout=timeout)
        for name, cls in PROVIDER_CLASSES.items()
    }


def get_provider(providers: Mapping[str, ReleaseProvider], name: str) -> ReleaseProvider:
    provider = providers.get(name)
    if provider is None:
        raise UnsupportedProvider(name)
    return provider
