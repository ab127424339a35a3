"""Operation audit trail.

Every lifecycle operation runs through ``audited``: a "started" log row is
written, the operation closure runs, and the row is finished as success or
failed with the elapsed time. Errors get their operation context attached
and are re-raised unchanged.
"""

import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog

from binmate.errors import BinmateError
from binmate.logging_config import get_logger
from binmate.repositories.logs import LogsRepository

logger = get_logger(__name__)

T = TypeVar("T")

ENTITY_BINARY = "binary"


@dataclass
class OperationAudit:
    """Handle given to an audited closure for the in-flight log row."""

    logs: LogsRepository
    log_id: int
    operation: str

    async def entity(self, entity_id: str, entity_type: str = ENTITY_BINARY) -> None:
        """Record the entity once the operation has worked out what it is."""
        await self.logs.log_entity(self.log_id, entity_type, entity_id)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


async def audited(
    logs: LogsRepository,
    operation: str,
    action: Callable[[OperationAudit], Awaitable[T]],
    binary: str | None = None,
    version: str | None = None,
    message: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> T:
    """Run action bracketed by start and success/failure log rows."""
    if metadata is None and version is not None:
        metadata = {"version": version}
    log_id = await logs.log_start(
        operation,
        entity_type=ENTITY_BINARY if binary else None,
        entity_id=binary,
        message=message,
        metadata=metadata,
    )
    audit = OperationAudit(logs=logs, log_id=log_id, operation=operation)

    started = time.monotonic()
    with structlog.contextvars.bound_contextvars(operation=operation):
        try:
            result = await action(audit)
        except BinmateError as e:
            e.add_context(operation=operation, binary=binary, version=version)
            await _record_failure(logs, log_id, str(e), started)
            raise
        except Exception as e:
            await _record_failure(logs, log_id, f"{type(e).__name__}: {e}", started)
            raise

    await logs.log_success(log_id, _elapsed_ms(started))
    logger.debug("Operation succeeded", binary=binary, version=version)
    return result


async def _record_failure(logs: LogsRepository, log_id: int, details: str, started: float) -> None:
    logger.info("Operation failed", log_id=log_id, error=details)
    try:
        await logs.log_failure(log_id, details, _elapsed_ms(started))
    except BinmateError as log_error:
        # The operation's own error is the one the caller needs to see
        logger.error("Unable to record operation failure", log_id=log_id, error=str(log_error))
