"""Retry policy for checkpoint writes against the database.

A checkpoint write is retried only when the database was briefly unavailable
(dropped connection, SQLite writer lock). Schema and permission problems are
raised on the first attempt: retrying cannot create a missing table.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError

logger = logging.getLogger(__name__)

_ResultT = TypeVar("_ResultT")

_PERMANENT_ERROR_MARKERS = (
    "no such table",
    "no such column",
    "does not exist",
    "undefinedtable",
    "permission denied",
    "readonly database",
    "syntax error",
)

_TRANSIENT_ERROR_MARKERS = (
    "database is locked",
    "connection is closed",
    "underlying connection is closed",
    "server closed the connection unexpectedly",
    "connection was closed",
    "could not connect",
)


@dataclass(frozen=True)
class CheckpointWriteRetryPolicy:
    """How often and how patiently a checkpoint write is retried."""

    attempts: int = 3
    base_delay_seconds: float = 0.2

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must be >= 0")

    @classmethod
    def from_settings(cls) -> CheckpointWriteRetryPolicy:
        from keyword_pipeline.config import settings

        return cls(
            attempts=settings.checkpoint_write_attempts,
            base_delay_seconds=settings.checkpoint_write_retry_delay_seconds,
        )

    def delay_for(self, attempt: int) -> float:
        """Linear backoff after the given failed attempt."""
        return self.base_delay_seconds * attempt


def is_transient_write_error(exc: Exception) -> bool:
    """Return True when a failed checkpoint write may succeed if repeated."""
    lowered = str(exc).lower()
    if any(marker in lowered for marker in _PERMANENT_ERROR_MARKERS):
        return False
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (InterfaceError, OperationalError)):
        return True
    return any(marker in lowered for marker in _TRANSIENT_ERROR_MARKERS)


async def retry_checkpoint_write(
    write: Callable[[], Awaitable[_ResultT]],
    *,
    policy: CheckpointWriteRetryPolicy | None = None,
    log_context: Mapping[str, Any] | None = None,
) -> _ResultT:
    """Run one checkpoint write, repeating it on transient database errors."""
    policy = policy or CheckpointWriteRetryPolicy()
    context = dict(log_context or {})

    for attempt in range(1, policy.attempts + 1):
        try:
            return await write()
        except Exception as exc:
            if not is_transient_write_error(exc) or attempt == policy.attempts:
                raise
            logger.warning(
                "Checkpoint write hit a transient database error; retrying",
                extra={
                    **context,
                    "attempt": attempt,
                    "max_attempts": policy.attempts,
                    "error": str(exc),
                },
            )
            await asyncio.sleep(policy.delay_for(attempt))

    raise RuntimeError("Checkpoint write retry loop exhausted unexpectedly")
