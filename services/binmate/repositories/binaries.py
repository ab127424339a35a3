"""
Binary catalogue repository.

Each method runs in its own transaction. Config sync owns binaries whose
source is "config"; manual binaries are never deleted by it.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import aliased

from binmate.db.models import ActiveVersion, Binary, Installation, utc_now
from binmate.db.session import get_db_session
from binmate.errors import InvalidBinaryConfig, NotFound
from binmate.logging_config import get_logger
from binmate.services.digest import compute_config_digest
from binmate.types import SOURCE_CONFIG, SOURCE_MANUAL, BinaryDescriptor

logger = get_logger(__name__)

NO_ACTIVE_VERSION = "none"

_UPDATABLE_FIELDS = (
    "name",
    "alias",
    "provider",
    "provider_path",
    "install_path",
    "format",
    "asset_regex",
    "release_regex",
    "config_digest",
    "authenticated",
    "source",
    "config_version",
)


@dataclass
class BinaryDetails:
    """A binary with its active version and install count."""

    binary: Binary
    active_version: str
    install_count: int
    active_installation: Installation | None = None


@dataclass
class SyncResult:
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)


def binary_from_descriptor(
    descriptor: BinaryDescriptor,
    source: str = SOURCE_MANUAL,
    config_version: int = 0,
) -> Binary:
    """Build an unsaved Binary row from a descriptor."""
    binary = Binary(source=source, config_version=config_version)
    _apply_descriptor(binary, descriptor)
    return binary


def _apply_descriptor(binary: Binary, descriptor: BinaryDescriptor) -> None:
    binary.user_id = descriptor.user_id
    binary.name = descriptor.name
    binary.alias = descriptor.alias or None
    binary.provider = descriptor.provider
    binary.provider_path = descriptor.provider_path
    binary.install_path = descriptor.install_path or None
    binary.format = descriptor.format
    binary.asset_regex = descriptor.asset_regex or None
    binary.release_regex = descriptor.release_prefix or None
    binary.authenticated = descriptor.authenticated
    binary.config_digest = compute_config_digest(descriptor)


async def _sync_one(
    db: AsyncSession,
    existing: Binary | None,
    descriptor: BinaryDescriptor,
    config_version: int,
) -> str:
    """Upsert one declared binary. Returns created, updated or unchanged."""
    digest = compute_config_digest(descriptor)
    if existing is None:
        binary = binary_from_descriptor(descriptor, SOURCE_CONFIG, config_version)
        db.add(binary)
        await db.flush()
        return "created"

    if existing.config_digest == digest and existing.source == SOURCE_CONFIG:
        return "unchanged"

    # A manual binary declared in config is adopted by the config
    _apply_descriptor(existing, descriptor)
    existing.source = SOURCE_CONFIG
    existing.config_version = config_version
    existing.updated_at = utc_now()
    await db.flush()
    return "updated"


class BinariesRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, binary: Binary) -> Binary:
        """Insert a binary. Raises Duplicate when user_id is taken."""
        if not binary.source:
            binary.source = SOURCE_MANUAL
        async with get_db_session(self._session_factory) as db:
            db.add(binary)
            await db.flush()
        logger.debug("Binary created", binary=binary.user_id, source=binary.source)
        return binary

    async def get(self, binary_id: int) -> Binary:
        async with get_db_session(self._session_factory) as db:
            binary = await db.get(Binary, binary_id)
        if binary is None:
            raise NotFound("binary", binary_id)
        return binary

    async def get_by_user_id(self, user_id: str) -> Binary:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(select(Binary).where(Binary.user_id == user_id))
            binary = result.scalar_one_or_none()
        if binary is None:
            raise NotFound("binary", user_id)
        return binary

    async def get_by_name(self, name: str) -> Binary:
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                select(Binary).where(Binary.name == name).order_by(Binary.id).limit(1)
            )
            binary = result.scalar_one_or_none()
        if binary is None:
            raise NotFound("binary", name)
        return binary

    async def list(self) -> list[Binary]:
        """All binaries ordered by name."""
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(select(Binary).order_by(Binary.name, Binary.id))
            return list(result.scalars().all())

    async def update(self, binary: Binary) -> Binary:
        """Persist descriptor and provenance fields of an existing binary."""
        now = utc_now()
        values = {name: getattr(binary, name) for name in _UPDATABLE_FIELDS}
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(
                update(Binary).where(Binary.id == binary.id).values(**values, updated_at=now)
            )
            if result.rowcount == 0:
                raise NotFound("binary", binary.id)
        binary.updated_at = now
        return binary

    async def delete(self, binary_id: int) -> None:
        """Delete a binary; installations, active version and downloads cascade."""
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(delete(Binary).where(Binary.id == binary_id))
            if result.rowcount == 0:
                raise NotFound("binary", binary_id)
        logger.debug("Binary deleted", binary_id=binary_id)

    async def sync_from_config(
        self, descriptors: list[BinaryDescriptor], config_version: int
    ) -> SyncResult:
        """Make config-sourced binaries match the declared list.

        Declared binaries are created or updated (unchanged digests are
        skipped). Config-sourced binaries missing from the list are deleted.
        Manual binaries are left alone.
        """
        seen: set[str] = set()
        for descriptor in descriptors:
            if descriptor.user_id in seen:
                raise InvalidBinaryConfig(f"binary {descriptor.user_id} is declared twice")
            seen.add(descriptor.user_id)

        outcome = SyncResult()
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(select(Binary))
            existing = {b.user_id: b for b in result.scalars().all()}

            for descriptor in descriptors:
                status = await _sync_one(
                    db, existing.get(descriptor.user_id), descriptor, config_version
                )
                getattr(outcome, status).append(descriptor.user_id)

            for user_id, binary in existing.items():
                if binary.source == SOURCE_CONFIG and user_id not in seen:
                    await db.delete(binary)
                    outcome.deleted.append(user_id)

        logger.info(
            "Config synced",
            config_version=config_version,
            created=len(outcome.created),
            updated=len(outcome.updated),
            unchanged=len(outcome.unchanged),
            deleted=len(outcome.deleted),
        )
        return outcome

    async def sync_binary(self, descriptor: BinaryDescriptor, config_version: int) -> str:
        """Upsert a single declared binary without touching any other."""
        async with get_db_session(self._session_factory) as db:
            result = await db.execute(select(Binary).where(Binary.user_id == descriptor.user_id))
            status = await _sync_one(
                db, result.scalar_one_or_none(), descriptor, config_version
            )
        logger.debug("Binary synced", binary=descriptor.user_id, status=status)
        return status

    async def list_with_version_details(
        self, no_active_label: str = NO_ACTIVE_VERSION
    ) -> list[BinaryDetails]:
        """Every binary with its active version and number of installations."""
        counts = (
            select(
                Installation.binary_id,
                func.count(Installation.id).label("install_count"),
            )
            .group_by(Installation.binary_id)
            .subquery()
        )
        active = aliased(Installation)
        stmt = (
            select(Binary, active, func.coalesce(counts.c.install_count, 0))
            .outerjoin(ActiveVersion, ActiveVersion.binary_id == Binary.id)
            .outerjoin(active, active.id == ActiveVersion.installation_id)
            .outerjoin(counts, counts.c.binary_id == Binary.id)
            .order_by(Binary.name, Binary.id)
        )
        async with get_db_session(self._session_factory) as db:
            rows = (await db.execute(stmt)).all()

        return [
            BinaryDetails(
                binary=binary,
                active_version=installation.version if installation else no_active_label,
                install_count=int(install_count),
                active_installation=installation,
            )
            for binary, installation, install_count in rows
        ]
