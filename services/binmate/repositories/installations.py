"""Installation repository: one row per installed (binary, version)."""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from binmate.db.models import Installation
from binmate.db.session import get_db_session
from binmate.errors import NotFound


class InstallationsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, installation: Installation) -> Installation:
        """Insert an installation. Raises Duplicate for an existing version."""
        async with get_db_session(self._session_factory) as db:
            db.add(installation)
            await db.flush()
        return installation

    async def get(self, binary_id: int, version: str) -> Installation:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Installation).where(
                    Installation.binary_id == binary_id,
                    Installation.version == version,
                )
            )
            installation = result.scalar_one_or_none()
        if installation is None:
            raise NotFound("installation", f"{binary_id}@{version}")
        return installation

    async def get_by_id(self, installation_id: int) -> Installation:
        async with get_db_session(self._session_factory) as db:
            installation = await db.get(Installation, installation_id)
        if installation is None:
            raise NotFound("installation", installation_id)
        return installation

    async def list_by_binary(self, binary_id: int) -> list[Installation]:
        """Installations of a binary, newest first."""
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Installation)
                .where(Installation.binary_id == binary_id)
                .order_by(Installation.installed_at.desc(), Installation.id.desc())
            )
            return list(result.scalars().all())

    async def get_latest(self, binary_id: int) -> Installation:
        installations = await self.list_by_binary(binary_id)
        if not installations:
            raise NotFound("installation", f"{binary_id}@latest")
        return installations[0]

    async def delete(self, installation_id: int) -> None:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                delete(Installation).where(Installation.id == installation_id)
            )
            if result.rowcount == 0:
                raise NotFound("installation", installation_id)

    async def verify_checksum(self, installation_id: int, expected: str) -> bool:
        """Compare a stored checksum with an expected hex value."""
        installation = await self.get_by_id(installation_id)
        return installation.checksum.lower() == expected.strip().lower()
