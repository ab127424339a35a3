"""
The binmate store: one SQLite file and its repositories.

Opening a store creates the file if needed and applies pending migrations.
"""

from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncEngine

from binmate.db.migrations import run_migrations
from binmate.db.session import create_session_factory, init_db
from binmate.logging_config import get_logger
from binmate.repositories.active_versions import ActiveVersionsRepository
from binmate.repositories.binaries import BinariesRepository
from binmate.repositories.downloads import DownloadsRepository
from binmate.repositories.installations import InstallationsRepository
from binmate.repositories.logs import LogsRepository

logger = get_logger(__name__)


class Store:
    """Durable catalogue of binaries, installations and operations."""

    def __init__(self, engine: AsyncEngine, path: Path) -> None:
        self.engine = engine
        self.path = path
        session_factory = create_session_factory(engine)
        self.binaries = BinariesRepository(session_factory)
        self.installations = InstallationsRepository(session_factory)
        self.active_versions = ActiveVersionsRepository(session_factory)
        self.downloads = DownloadsRepository(session_factory)
        self.logs = LogsRepository(session_factory)

    @classmethod
    async def open(cls, path: Path, echo: bool = False) -> "Store":
        engine = await init_db(path, echo=echo)
        try:
            version = await run_migrations(engine)
        except Exception:
            await engine.dispose()
            raise
        logger.debug("Store opened", path=str(path), schema_version=version)
        return cls(engine, path)

    async def close(self) -> None:
        await self.engine.dispose()

    async def __aenter__(self) -> "Store":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
