"""
SQLAlchemy database models for binmate.

All models use:
- Integer surrogate primary keys (except versions, keyed by binary)
- snake_case column names
- Plural table names
- UTC timestamps
- Foreign keys with ON DELETE CASCADE; deleting a binary removes its
  installations, active version and downloads
"""

from datetime import UTC, datetime

import sqlalchemy as sa
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""


class SchemaMigration(Base):
    """One applied schema migration."""

    __tablename__ = "migrations"

    version: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    applied_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")


# --- Catalogue ---


class Binary(Base):
    """A catalogued binary descriptor.

    ``source`` is "config" when owned by the declarative config sync (and
    deleted when absent from it) or "manual" when added imperatively.
    ``release_regex`` holds a literal tag prefix despite its column name.
    """

    __tablename__ = "binaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    alias: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider: Mapped[str] = mapped_column(String(50), nullable=False)
    provider_path: Mapped[str] = mapped_column(String(500), nullable=False)
    install_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    asset_regex: Mapped[str | None] = mapped_column(Text, nullable=True)
    release_regex: Mapped[str | None] = mapped_column(Text, nullable=True)
    config_digest: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    authenticated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    config_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index("idx_binaries_user_id", "user_id"),
        Index("idx_binaries_provider", "provider"),
    )

    @property
    def release_prefix(self) -> str:
        return self.release_regex or ""

    @property
    def link_name(self) -> str:
        """Name of the symlink on PATH: alias when set, else name."""
        return self.alias or self.name


class Installation(Base):
    """One installed version of a binary on disk."""

    __tablename__ = "installations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    binary_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("binaries.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[str] = mapped_column(String(255), nullable=False)
    # The extracted executable, never the symlink
    installed_path: Mapped[str] = mapped_column(Text, nullable=False)
    source_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    checksum: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    checksum_algorithm: Mapped[str] = mapped_column(
        String(20), nullable=False, default="SHA256"
    )
    installed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        sa.UniqueConstraint("binary_id", "version", name="uq_installations_binary_version"),
        Index("idx_installations_binary_id", "binary_id"),
        Index("idx_installations_binary_installed", "binary_id", "installed_at"),
    )


class ActiveVersion(Base):
    """The installation currently linked on PATH, at most one per binary."""

    __tablename__ = "versions"

    binary_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("binaries.id", ondelete="CASCADE"), primary_key=True
    )
    installation_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("installations.id", ondelete="CASCADE"), nullable=False
    )
    symlink_path: Mapped[str] = mapped_column(Text, nullable=False)
    activated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (Index("idx_versions_installation_id", "installation_id"),)


class Download(Base):
    """A downloaded release archive in the cache directory."""

    __tablename__ = "downloads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    binary_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("binaries.id", ondelete="CASCADE"), nullable=False
    )
    version: Mapped[str] = mapped_column(String(255), nullable=False)
    cache_path: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    source_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    checksum: Mapped[str] = mapped_column(String(128), nullable=False, default="")
    checksum_algorithm: Mapped[str] = mapped_column(
        String(20), nullable=False, default="SHA256"
    )
    downloaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    last_accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_downloads_binary_version", "binary_id", "version"),
        Index("idx_downloads_last_accessed", "last_accessed_at"),
    )


# --- Audit ---


class OperationLog(Base):
    """Structured audit trail entry for one engine operation.

    Status moves forward only: started -> success | failed.
    """

    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    operation_status: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[str | None] = mapped_column(Text, nullable=True)
    # JSON-encoded
    metadata_json: Mapped[str | None] = mapped_column("metadata", Text, nullable=True)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    user_context: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_logs_timestamp", "timestamp"),
        Index("idx_logs_operation", "operation_type", "operation_status"),
        Index("idx_logs_entity_timestamp", "entity_type", "entity_id", "timestamp"),
    )
