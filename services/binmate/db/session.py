"""
Database session management for binmate.

The store is a single SQLite file accessed through async SQLAlchemy with
exactly one pooled connection, so there is at most one writer at a time.
Every connection gets WAL journaling, foreign keys and a 5 second busy
timeout.
"""

import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool

from binmate.errors import BinmateError, Duplicate, FilesystemError, ForeignKey, StoreError
from binmate.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_BUSY_TIMEOUT_MS = 5_000

CONNECTION_PRAGMAS = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
    "PRAGMA synchronous = NORMAL",
    f"PRAGMA busy_timeout = {DEFAULT_BUSY_TIMEOUT_MS}",
    "PRAGMA cache_size = -64000",
    "PRAGMA temp_store = MEMORY",
)


def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:
    # Let SQLAlchemy emit BEGIN itself so DDL is transactional too
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    try:
        for pragma in CONNECTION_PRAGMAS:
            cursor.execute(pragma)
    finally:
        cursor.close()


def _on_begin(conn: Any) -> None:
    conn.exec_driver_sql("BEGIN")


def create_engine_for_path(db_path: Path, echo: bool = False) -> AsyncEngine:
    """Create the single-connection async engine for a store file."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=echo,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=1,
        max_overflow=0,
    )
    event.listen(engine.sync_engine, "connect", _on_connect)
    event.listen(engine.sync_engine, "begin", _on_begin)
    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(db_path: Path, echo: bool = False) -> AsyncEngine:
    """Create the store directory (0700) and verify the database opens."""
    logger.debug("Initializing database", path=str(db_path))
    try:
        db_path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    except OSError as e:
        raise FilesystemError(f"unable to create database directory {db_path.parent}: {e}") from e

    engine = create_engine_for_path(db_path, echo=echo)
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        await engine.dispose()
        raise StoreError(f"unable to open database {db_path}: {e}") from e

    if os.name == "posix":
        db_path.chmod(0o600)
    return engine


def translate_integrity_error(error: IntegrityError) -> StoreError:
    """Map a SQLite constraint violation onto the store error taxonomy."""
    detail = str(error.orig) if error.orig is not None else str(error)
    if "UNIQUE" in detail or "PRIMARY KEY" in detail:
        return Duplicate(f"duplicate record: {detail}")
    if "FOREIGN KEY" in detail:
        return ForeignKey(f"foreign key violation: {detail}")
    return StoreError(f"constraint violation: {detail}")


@asynccontextmanager
async def get_db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """One transaction: commit on success, roll back and translate on error."""
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except IntegrityError as e:
            await session.rollback()
            raise translate_integrity_error(e) from e
        except BinmateError:
            await session.rollback()
            raise
        except SQLAlchemyError as e:
            await session.rollback()
            raise StoreError(f"database error: {e}") from e
        except Exception:
            await session.rollback()
            raise
