"""Active version repository: which installation a binary's symlink targets."""

from sqlalchemy import delete, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from binmate.db.models import ActiveVersion, Installation, utc_now
from binmate.db.session import get_db_session
from binmate.errors import ForeignKey, NotFound


class ActiveVersionsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def set(self, binary_id: int, installation_id: int, symlink_path: str) -> ActiveVersion:
        """Upsert the active installation of a binary.

        The installation must belong to the same binary.
        """
        now = utc_now()
        async with get_db_session(self._session_factory) as db:
            owner = await db.scalar(
                select(Installation.binary_id).where(Installation.id == installation_id)
            )
            if owner is None:
                raise ForeignKey(f"installation {installation_id} does not exist")
            if owner != binary_id:
                raise ForeignKey(
                    f"installation {installation_id} belongs to binary {owner}, not {binary_id}"
                )

            stmt = sqlite_insert(ActiveVersion).values(
                binary_id=binary_id,
                installation_id=installation_id,
                symlink_path=symlink_path,
                activated_at=now,
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[ActiveVersion.binary_id],
                set_={
                    "installation_id": stmt.excluded.installation_id,
                    "symlink_path": stmt.excluded.symlink_path,
                    "activated_at": stmt.excluded.activated_at,
                },
            )
            await db.execute(stmt)

        return ActiveVersion(
            binary_id=binary_id,
            installation_id=installation_id,
            symlink_path=symlink_path,
            activated_at=now,
        )

    # Switching is a plain upsert
    switch = set

    async def get(self, binary_id: int) -> ActiveVersion:
        async with get_db_session(self._session_factory) as db:
            active = await db.get(ActiveVersion, binary_id)
        if active is None:
            raise NotFound("active version", binary_id)
        return active

    async def get_with_installation(self, binary_id: int) -> tuple[ActiveVersion, Installation]:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(ActiveVersion, Installation)
                .join(Installation, Installation.id == ActiveVersion.installation_id)
                .where(ActiveVersion.binary_id == binary_id)
            )
            row = result.first()
        if row is None:
            raise NotFound("active version", binary_id)
        return row[0], row[1]

    async def unset(self, binary_id: int) -> None:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                delete(ActiveVersion).where(ActiveVersion.binary_id == binary_id)
            )
            if result.rowcount == 0:
                raise NotFound("active version", binary_id)
