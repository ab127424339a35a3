"""
Release asset selection for binmate.

Narrows a release's assets to the one built for this host: by a user regex
when given, otherwise by OS, architecture, extension and optional prefix,
then picks the best remaining candidate by archive preference.
"""

import platform
import re
import sys
from dataclasses import dataclass

from binmate.errors import InvalidAssetRegex, NoAssetsAvailable, NoMatchingAsset
from binmate.providers.protocol import Release, ReleaseAsset

OS_VARIATIONS = {
    "linux": ("linux",),
    "darwin": ("darwin", "macos", "osx"),
    "windows": ("windows", "win"),
}

ARCH_VARIATIONS = {
    "amd64": ("amd64", "x86_64", "x64"),
    "386": ("i386", "i686", "386"),
    "arm64": ("arm64", "aarch64"),
    "arm": ("arm", "armv7"),
}

PREFERRED_EXTENSIONS = (".tar.gz", ".tgz", ".zip", ".tar.xz", ".tar.bz2")

_MACHINE_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "x64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
    "i386": "386",
    "i686": "386",
    "x86": "386",
    "armv7l": "arm",
    "armv7": "arm",
    "armv6l": "arm",
}


def host_os(sys_platform: str = sys.platform) -> str:
    """Normalise the interpreter platform to linux, darwin or windows."""
    if sys_platform.startswith("win"):
        return "windows"
    if sys_platform.startswith("linux"):
        return "linux"
    return sys_platform


def host_arch(machine: str | None = None) -> str:
    machine = (machine or platform.machine()).lower()
    return _MACHINE_ALIASES.get(machine, machine)


@dataclass(frozen=True)
class AssetFilter:
    """Criteria for picking an asset; empty fields are not applied."""

    os: str = ""
    arch: str = ""
    extension: str = ""
    prefix: str = ""
    asset_regex: str = ""

    @classmethod
    def for_host(
        cls, extension: str = "", asset_regex: str | None = None, prefix: str = ""
    ) -> "AssetFilter":
        return cls(
            os=host_os(),
            arch=host_arch(),
            extension=extension,
            prefix=prefix,
            asset_regex=asset_regex or "",
        )


def _matches_any(name: str, patterns: tuple[str, ...], guard_darwin: bool = False) -> bool:
    lower = name.lower()
    for pattern in patterns:
        if pattern in lower:
            # "win" is a substring of "darwin"
            if guard_darwin and pattern == "win" and "darwin" in lower:
                continue
            return True
    return False


def filter_by_regex(assets: list[ReleaseAsset], pattern: str) -> list[ReleaseAsset]:
    try:
        compiled = re.compile(pattern)
    except re.error as e:
        raise InvalidAssetRegex(pattern, str(e)) from e
    return [a for a in assets if compiled.search(a.name)]


def filter_by_os(assets: list[ReleaseAsset], os_name: str) -> list[ReleaseAsset]:
    patterns = OS_VARIATIONS.get(os_name, (os_name.lower(),))
    return [a for a in assets if _matches_any(a.name, patterns, guard_darwin=True)]


def filter_by_arch(assets: list[ReleaseAsset], arch: str) -> list[ReleaseAsset]:
    patterns = ARCH_VARIATIONS.get(arch, (arch.lower(),))
    return [a for a in assets if _matches_any(a.name, patterns)]


def filter_by_extension(assets: list[ReleaseAsset], extension: str) -> list[ReleaseAsset]:
    """Suffix match; multi-part extensions such as .tar.gz count as one suffix."""
    if not extension.startswith("."):
        extension = "." + extension
    return [a for a in assets if a.name.endswith(extension)]


def filter_by_prefix(assets: list[ReleaseAsset], prefix: str) -> list[ReleaseAsset]:
    return [a for a in assets if a.name.startswith(prefix)]


def filter_assets(assets: list[ReleaseAsset], asset_filter: AssetFilter) -> list[ReleaseAsset]:
    """Apply the filter. A regex, when present, replaces the platform filters."""
    if asset_filter.asset_regex:
        return filter_by_regex(assets, asset_filter.asset_regex)

    filtered = assets
    if asset_filter.os:
        filtered = filter_by_os(filtered, asset_filter.os)
    if asset_filter.arch:
        filtered = filter_by_arch(filtered, asset_filter.arch)
    if asset_filter.extension:
        filtered = filter_by_extension(filtered, asset_filter.extension)
    if asset_filter.prefix:
        filtered = filter_by_prefix(filtered, asset_filter.prefix)
    return filtered


def select_best_asset(assets: list[ReleaseAsset]) -> ReleaseAsset:
    """Prefer common archive formats, then the shortest name."""
    if len(assets) == 1:
        return assets[0]
    for extension in PREFERRED_EXTENSIONS:
        matching = [a for a in assets if a.name.endswith(extension)]
        if matching:
            return min(matching, key=lambda a: len(a.name))
    return min(assets, key=lambda a: len(a.name))


def choose_asset(release: Release, asset_filter: AssetFilter) -> ReleaseAsset:
    """Pick exactly one asset of a release for the filter."""
    if not release.assets:
        raise NoAssetsAvailable(release.tag_name)
    candidates = filter_assets(release.assets, asset_filter)
    if not candidates:
        raise NoMatchingAsset(release.tag_name, [a.name for a in release.assets])
    return select_best_asset(candidates)
