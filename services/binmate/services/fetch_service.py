"""Asset downloads into the per-user cache.

Bytes are streamed to a temporary file in the system temp directory and
renamed into ``<user-cache>/binmate/<asset_name>`` once complete, so a
cache entry is never half-written.
"""

import errno
import os
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path

import aiofiles
import aiofiles.os
import httpx

from binmate.errors import FilesystemError, NetworkError, UpstreamStatusError
from binmate.logging_config import get_logger
from binmate.paths import safe_component

logger = get_logger(__name__)

CONNECT_TIMEOUT = 30.0

ClientFactory = Callable[[bool, httpx.Timeout | None], httpx.AsyncClient]


async def _move_into_place(tmp: Path, dest: Path) -> None:
    """Rename tmp over dest, copying when they sit on different devices."""
    try:
        await aiofiles.os.replace(tmp, dest)
        return
    except OSError as e:
        if e.errno != errno.EXDEV:
            raise

    staged = dest.with_name(f".{dest.name}.partial")
    shutil.copyfile(tmp, staged)
    await aiofiles.os.replace(staged, dest)
    await aiofiles.os.remove(tmp)


class Fetcher:
    """Downloads release assets through a provider's HTTP client."""

    def __init__(
        self,
        client_factory: ClientFactory,
        cache_dir: Path,
        download_timeout: float | None = None,
    ) -> None:
        self._client_factory = client_factory
        self._cache_dir = cache_dir
        self._timeout = httpx.Timeout(download_timeout, connect=CONNECT_TIMEOUT)

    def cache_path(self, asset_name: str) -> Path:
        return self._cache_dir / safe_component(asset_name, "asset name")

    async def download(
        self,
        url: str,
        asset_name: str,
        authenticated: bool = False,
        headers: dict[str, str] | None = None,
    ) -> Path:
        """Download url to the cache. Returns the cached file path."""
        dest = self.cache_path(asset_name)
        # Building the client first surfaces a missing credential before any I/O
        client = self._client_factory(authenticated, self._timeout)

        fd, tmp_name = tempfile.mkstemp(prefix="binmate-", suffix=f"-{dest.name}")
        os.close(fd)
        tmp = Path(tmp_name)
        size = 0
        try:
            async with client:
                async with client.stream("GET", url, headers=headers) as resp:
                    if not resp.is_success:
                        raise UpstreamStatusError(resp.status_code, url)
                    async with aiofiles.open(tmp, "wb") as f:
                        async for chunk in resp.aiter_bytes():
                            await f.write(chunk)
                            size += len(chunk)

            await aiofiles.os.makedirs(self._cache_dir, exist_ok=True)
            await _move_into_place(tmp, dest)
        except httpx.HTTPError as e:
            tmp.unlink(missing_ok=True)
            raise NetworkError(f"download of {url} failed: {e}") from e
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise FilesystemError(f"unable to write {dest}: {e}") from e
        except BaseException:
            tmp.unlink(missing_ok=True)
            raise

        logger.info("Asset downloaded", asset=asset_name, path=str(dest), size_bytes=size)
        return dest
