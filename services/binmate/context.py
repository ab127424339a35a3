"""
Engine context: everything a lifecycle operation may touch.

Store, settings, filesystem roots, provider registry, environment, clock
and the optional HTTP transport override are carried here and passed to
each operation instead of living in module globals.
"""

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from binmate.config import Settings
from binmate.db.models import utc_now
from binmate.db.store import Store
from binmate.logging_config import get_logger
from binmate.paths import Paths
from binmate.providers import PROVIDER_CLASSES, build_providers, get_provider
from binmate.providers.protocol import ReleaseProvider
from binmate.services.fetch_service import Fetcher

logger = get_logger(__name__)


@dataclass
class EngineContext:
    store: Store
    settings: Settings
    paths: Paths
    providers: dict[str, ReleaseProvider]
    env: Mapping[str, str]
    clock: Callable[[], datetime] = utc_now
    transport: httpx.AsyncBaseTransport | None = field(default=None, repr=False)

    @classmethod
    async def create(
        cls,
        settings: Settings,
        env: Mapping[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        paths: Paths | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "EngineContext":
        """Resolve paths, open the store (migrating it) and build providers."""
        env = dict(os.environ) if env is None else env
        if paths is None:
            paths = Paths.from_env(
                env,
                data_dir=settings.data_dir,
                cache_dir=settings.cache_dir,
                bin_dir=settings.bin_dir or settings.global_config.install_path,
            )
        providers = build_providers(
            env,
            transport=transport,
            timeout=settings.http_timeout,
            api_urls={name: settings.provider_api_url(name) for name in PROVIDER_CLASSES},
        )
        store = await Store.open(paths.database_path)
        logger.debug("Engine context ready", data_dir=str(paths.data_dir))
        return cls(
            store=store,
            settings=settings,
            paths=paths,
            providers=providers,
            env=env,
            clock=clock,
            transport=transport,
        )

    def provider(self, name: str) -> ReleaseProvider:
        return get_provider(self.providers, name)

    def fetcher(self, provider: ReleaseProvider) -> Fetcher:
        return Fetcher(
            provider.build_client,
            self.paths.cache_dir,
            download_timeout=self.settings.download_timeout,
        )

    async def close(self) -> None:
        await self.store.close()

    async def __aenter__(self) -> "EngineContext":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
