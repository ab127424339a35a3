"""
Operation log repository.

Rows start as "started" and move once to "success" or "failed". Terminal
rows are never modified again.
"""

import json
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from binmate.db.models import OperationLog
from binmate.db.session import get_db_session
from binmate.errors import NotFound, StoreError

STATUS_STARTED = "started"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"

DEFAULT_LIMIT = 50


class LogsRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def log_start(
        self,
        operation_type: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        message: str | None = None,
        metadata: dict[str, Any] | None = None,
        user_context: str | None = None,
    ) -> int:
        """Record the start of an operation. Returns the log id."""
        entry = OperationLog(
            operation_type=operation_type,
            operation_status=STATUS_STARTED,
            entity_type=entity_type or None,
            entity_id=entity_id or None,
            message=message,
            metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
            user_context=user_context,
        )
        async with get_db_session(self._session_factory) as db:
            db.add(entry)
            await db.flush()
        return entry.id

    async def log_entity(self, log_id: int, entity_type: str, entity_id: str) -> None:
        """Attach the entity an in-flight operation turned out to concern."""
        await self._update_started(log_id, entity_type=entity_type, entity_id=entity_id)

    async def log_success(self, log_id: int, duration_ms: int) -> None:
        await self._update_started(
            log_id, operation_status=STATUS_SUCCESS, duration_ms=duration_ms
        )

    async def log_failure(self, log_id: int, error_details: str, duration_ms: int) -> None:
        await self._update_started(
            log_id,
            operation_status=STATUS_FAILED,
            error_details=error_details,
            duration_ms=duration_ms,
        )

    async def get(self, log_id: int) -> OperationLog:
        async with get_db_session(self._session_factory) as db:
            entry = await db.get(OperationLog, log_id)
        if entry is None:
            raise NotFound("log", log_id)
        return entry

    async def get_recent(self, limit: int = DEFAULT_LIMIT) -> list[OperationLog]:
        return await self._query(limit)

    async def get_by_type(
        self, operation_type: str, limit: int = DEFAULT_LIMIT
    ) -> list[OperationLog]:
        return await self._query(limit, OperationLog.operation_type == operation_type)

    async def get_by_status(self, status: str, limit: int = DEFAULT_LIMIT) -> list[OperationLog]:
        return await self._query(limit, OperationLog.operation_status == status)

    async def get_failures(self, limit: int = DEFAULT_LIMIT) -> list[OperationLog]:
        return await self.get_by_status(STATUS_FAILED, limit)

    async def get_by_entity(
        self, entity_type: str, entity_id: str, limit: int = DEFAULT_LIMIT
    ) -> list[OperationLog]:
        return await self._query(
            limit,
            OperationLog.entity_type == entity_type,
            OperationLog.entity_id == entity_id,
        )

    async def _query(self, limit: int, *criteria: Any) -> list[OperationLog]:
        stmt = (
            select(OperationLog)
            .where(*criteria)
            .order_by(OperationLog.timestamp.desc(), OperationLog.id.desc())
            .limit(limit)
        )
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(stmt)
            return list(result.scalars().all())

    async def _update_started(self, log_id: int, **values: Any) -> None:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                update(OperationLog)
                .where(
                    OperationLog.id == log_id,
                    OperationLog.operation_status == STATUS_STARTED,
                )
                .values(**values)
            )
            if result.rowcount == 0:
                status = await db.scalar(
                    select(OperationLog.operation_status).where(OperationLog.id == log_id)
                )
                if status is None:
                    raise NotFound("log", log_id)
                raise StoreError(f"operation log {log_id} is already {status}")
