"""Service layer for resolving a binary's release and asset.

Turns a version selector into an upstream tag (release prefix + version,
or the provider's latest release) and picks the asset for this host.
"""

from binmate.db.models import Binary
from binmate.errors import InvalidBinaryConfig
from binmate.logging_config import get_logger
from binmate.providers.assets import AssetFilter, choose_asset
from binmate.providers.github import LATEST
from binmate.providers.protocol import Release, ReleaseAsset, ReleaseProvider

logger = get_logger(__name__)


def release_tag(binary: Binary, selector: str) -> str:
    """Upstream tag for a version selector. "latest" passes through."""
    if selector == LATEST:
        return LATEST
    return f"{binary.release_prefix}{selector}"


def asset_filter_for(binary: Binary) -> AssetFilter:
    return AssetFilter.for_host(extension=binary.format, asset_regex=binary.asset_regex)


async def resolve_release(
    provider: ReleaseProvider,
    binary: Binary,
    selector: str,
) -> tuple[Release, ReleaseAsset]:
    """Resolve a release of the binary and the asset to download from it."""
    if not binary.provider_path:
        raise InvalidBinaryConfig(f"binary {binary.user_id} has no provider path")

    tag = release_tag(binary, selector)
    release = await provider.resolve(binary.provider_path, tag, binary.authenticated)
    asset = choose_asset(release, asset_filter_for(binary))
    logger.info(
        "Release resolved",
        binary=binary.user_id,
        selector=selector,
        tag=release.tag_name,
        asset=asset.name,
    )
    return release, asset


async def latest_tag(provider: ReleaseProvider, binary: Binary) -> str:
    """Tag of the latest release, without choosing an asset."""
    if not binary.provider_path:
        raise InvalidBinaryConfig(f"binary {binary.user_id} has no provider path")
    release = await provider.resolve(binary.provider_path, LATEST, binary.authenticated)
    return release.tag_name
