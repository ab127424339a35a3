"""
Schema migrations for the binmate store.

Versions are plain integers recorded in the ``migrations`` table. On open,
every migration above the recorded maximum runs through alembic operations
in its own transaction; a failure rolls that migration back and stops.
"""

from collections.abc import Callable
from dataclasses import dataclass

import sqlalchemy as sa
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy.engine import Connection
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from binmate.db.models import SchemaMigration, utc_now
from binmate.errors import MigrationError
from binmate.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    description: str
    upgrade: Callable[[Operations], None]


def _initial_schema(op: Operations) -> None:
    op.create_table(
        "binaries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("alias", sa.String(255), nullable=True),
        sa.Column("provider", sa.String(50), nullable=False),
        sa.Column("provider_path", sa.String(500), nullable=False),
        sa.Column("install_path", sa.Text(), nullable=True),
        sa.Column("format", sa.String(20), nullable=False),
        sa.Column("asset_regex", sa.Text(), nullable=True),
        sa.Column("release_regex", sa.Text(), nullable=True),
        sa.Column("config_digest", sa.String(100), nullable=False, server_default=""),
        sa.Column("config_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", name="uq_binaries_user_id"),
    )
    op.create_index("idx_binaries_user_id", "binaries", ["user_id"])
    op.create_index("idx_binaries_provider", "binaries", ["provider"])

    op.create_table(
        "installations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "binary_id",
            sa.Integer(),
            sa.ForeignKey("binaries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(255), nullable=False),
        sa.Column("installed_path", sa.Text(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("checksum", sa.String(128), nullable=False, server_default=""),
        sa.Column("checksum_algorithm", sa.String(20), nullable=False, server_default="SHA256"),
        sa.Column("installed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("binary_id", "version", name="uq_installations_binary_version"),
    )
    op.create_index("idx_installations_binary_id", "installations", ["binary_id"])
    op.create_index(
        "idx_installations_binary_installed", "installations", ["binary_id", "installed_at"]
    )

    op.create_table(
        "versions",
        sa.Column(
            "binary_id",
            sa.Integer(),
            sa.ForeignKey("binaries.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "installation_id",
            sa.Integer(),
            sa.ForeignKey("installations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("symlink_path", sa.Text(), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("idx_versions_installation_id", "versions", ["installation_id"])

    op.create_table(
        "downloads",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "binary_id",
            sa.Integer(),
            sa.ForeignKey("binaries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(255), nullable=False),
        sa.Column("cache_path", sa.Text(), nullable=False),
        sa.Column("source_url", sa.Text(), nullable=False, server_default=""),
        sa.Column("file_size", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("checksum", sa.String(128), nullable=False, server_default=""),
        sa.Column("checksum_algorithm", sa.String(20), nullable=False, server_default="SHA256"),
        sa.Column("downloaded_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_accessed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.UniqueConstraint("cache_path", name="uq_downloads_cache_path"),
    )
    op.create_index("idx_downloads_binary_version", "downloads", ["binary_id", "version"])
    op.create_index("idx_downloads_last_accessed", "downloads", ["last_accessed_at"])

    op.create_table(
        "logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operation_type", sa.String(50), nullable=False),
        sa.Column("operation_status", sa.String(20), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=True),
        sa.Column("entity_id", sa.String(255), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("error_details", sa.Text(), nullable=True),
        sa.Column("metadata", sa.Text(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("user_context", sa.Text(), nullable=True),
    )
    op.create_index("idx_logs_timestamp", "logs", ["timestamp"])
    op.create_index("idx_logs_operation", "logs", ["operation_type", "operation_status"])
    op.create_index(
        "idx_logs_entity_timestamp", "logs", ["entity_type", "entity_id", "timestamp"]
    )


def _binary_provenance(op: Operations) -> None:
    op.add_column(
        "binaries",
        sa.Column("source", sa.String(20), nullable=False, server_default="manual"),
    )
    op.add_column(
        "binaries",
        sa.Column("authenticated", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.create_index("idx_binaries_source", "binaries", ["source"])


MIGRATIONS: tuple[Migration, ...] = (
    Migration(1, "Initial schema", _initial_schema),
    Migration(2, "Add binary source and authenticated columns", _binary_provenance),
)

LATEST_VERSION = MIGRATIONS[-1].version


def _current_version(conn: Connection) -> int:
    SchemaMigration.__table__.create(conn, checkfirst=True)
    result = conn.execute(sa.select(sa.func.max(SchemaMigration.version)))
    return result.scalar() or 0


def _apply(conn: Connection, migration: Migration) -> None:
    context = MigrationContext.configure(connection=conn)
    migration.upgrade(Operations(context))
    conn.execute(
        sa.insert(SchemaMigration).values(
            version=migration.version,
            description=migration.description,
            applied_at=utc_now(),
        )
    )


async def get_current_version(engine: AsyncEngine) -> int:
    """Highest applied migration version, 0 for a fresh database."""
    async with engine.begin() as conn:
        return await conn.run_sync(_current_version)


async def run_migrations(
    engine: AsyncEngine, migrations: tuple[Migration, ...] = MIGRATIONS
) -> int:
    """Apply pending migrations in order. Returns the resulting version."""
    current = await get_current_version(engine)
    for migration in migrations:
        if migration.version <= current:
            continue
        logger.info(
            "Applying migration",
            version=migration.version,
            description=migration.description,
        )
        try:
            async with engine.begin() as conn:
                await conn.run_sync(_apply, migration)
        except SQLAlchemyError as e:
            raise MigrationError(migration.version, str(e)) from e
        current = migration.version
    return current
