"""
Download cache repository.

Tracks archives in the cache directory so they can be reused and evicted
least-recently-used first.
"""

from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from binmate.db.models import Download, utc_now
from binmate.db.session import get_db_session
from binmate.errors import NotFound


class DownloadsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, download: Download) -> Download:
        now = utc_now()
        if download.downloaded_at is None:
            download.downloaded_at = now
        if download.last_accessed_at is None:
            download.last_accessed_at = now
        async with get_db_session(self._session_factory) as db:
            db.add(download)
            await db.flush()
        return download

    async def record(
        self,
        binary_id: int,
        version: str,
        cache_path: str,
        source_url: str,
        file_size: int,
    ) -> Download:
        """Create or refresh the row for a cache path, marked incomplete."""
        now = utc_now()
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(select(Download).where(Download.cache_path == cache_path))
            download = result.scalar_one_or_none()
            if download is None:
                download = Download(cache_path=cache_path)
                db.add(download)
            download.binary_id = binary_id
            download.version = version
            download.source_url = source_url
            download.file_size = file_size
            download.checksum = ""
            download.downloaded_at = now
            download.last_accessed_at = now
            download.is_complete = False
            await db.flush()
        return download

    async def get(self, binary_id: int, version: str) -> Download:
        """Most recent download of a binary version."""
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Download)
                .where(Download.binary_id == binary_id, Download.version == version)
                .order_by(Download.downloaded_at.desc(), Download.id.desc())
                .limit(1)
            )
            download = result.scalar_one_or_none()
        if download is None:
            raise NotFound("download", f"{binary_id}@{version}")
        return download

    async def update_last_accessed(self, download_id: int) -> None:
        await self._update(download_id, last_accessed_at=utc_now())

    async def mark_complete(self, download_id: int, checksum: str = "") -> None:
        values: dict[str, object] = {"is_complete": True, "last_accessed_at": utc_now()}
        if checksum:
            values["checksum"] = checksum
        await self._update(download_id, **values)

    async def list_for_cleanup(self, cutoff: datetime, limit: int = 100) -> list[Download]:
        """Downloads not accessed since cutoff, least recently used first."""
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Download)
                .where(Download.last_accessed_at < cutoff)
                .order_by(Download.last_accessed_at.asc(), Download.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_incomplete(self) -> list[Download]:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Download)
                .where(Download.is_complete.is_(False))
                .order_by(Download.downloaded_at.asc(), Download.id.asc())
            )
            return list(result.scalars().all())

    async def delete(self, download_id: int) -> None:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(delete(Download).where(Download.id == download_id))
            if result.rowcount == 0:
                raise NotFound("download", download_id)

    async def list_by_binary(self, binary_id: int) -> list[Download]:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Download)
                .where(Download.binary_id == binary_id)
                .order_by(Download.downloaded_at.desc(), Download.id.desc())
            )
            return list(result.scalars().all())

    async def _update(self, download_id: int, **values: object) -> None:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                update(Download).where(Download.id == download_id).values(**values)
            )
            if result.rowcount == 0:
                raise NotFound("download", download_id)
