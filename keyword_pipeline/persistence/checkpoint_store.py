"""Durable, integrity-checked storage for batch orchestrator checkpoints."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from keyword_pipeline.core.database import get_session_context
from keyword_pipeline.core.db_retry import CheckpointWriteRetryPolicy, retry_checkpoint_write
from keyword_pipeline.core.exceptions import CheckpointIntegrityError
from keyword_pipeline.core.memory import current_memory_mb
from keyword_pipeline.models.base import generate_id, utcnow
from keyword_pipeline.models.checkpoint import BatchCheckpoint
from keyword_pipeline.persistence.serialization import (
    CHECKPOINT_TYPE_STAGE,
    compute_validation_hash,
    decode_state,
    encode_state,
    is_recoverable,
    recovery_instructions,
)

logger = logging.getLogger(__name__)


@dataclass
class CheckpointData:
    """What the orchestrator asks the store to persist."""

    stage_name: str
    state: dict[str, Any]
    batch_number: int = 0
    keywords_processed: int = 0
    checkpoint_type: str = CHECKPOINT_TYPE_STAGE
    performance_data: dict[str, Any] = field(default_factory=dict)
    keep_count: int | None = None  # overrides the store default for this run


@dataclass(frozen=True)
class SaveResult:
    checkpoint_id: str
    validation_hash: str
    memory_usage: float
    timestamp: datetime


@dataclass(frozen=True)
class Checkpoint:
    """A validated checkpoint with its decoded state."""

    id: str
    batch_run_id: str
    sequence: int
    checkpoint_type: str
    stage_name: str
    batch_number: int
    keywords_processed: int
    state: dict[str, Any]
    validation_hash: str
    memory_usage: float
    is_recoverable: bool
    recovery_instructions: list[str]
    performance_data: dict[str, Any]
    created_at: datetime


@dataclass(frozen=True)
class CheckpointSummary:
    id: str
    sequence: int
    checkpoint_type: str
    stage_name: str
    batch_number: int
    keywords_processed: int
    memory_usage: float
    is_recoverable: bool
    created_at: datetime


@dataclass
class CheckpointRecord:
    """Stored form of a checkpoint; field names match the BatchCheckpoint table."""

    id: str
    batch_run_id: str
    sequence: int
    checkpoint_type: str
    stage_name: str
    batch_number: int
    keywords_processed: int
    serialized_state: str
    state_encoding: str
    validation_hash: str
    memory_usage: float
    is_recoverable: bool
    recovery_instructions: list[str]
    performance_data: dict[str, Any]
    created_at: datetime


class _StoredCheckpoint(Protocol):
    id: str
    batch_run_id: str
    sequence: int
    checkpoint_type: str
    stage_name: str
    batch_number: int
    keywords_processed: int
    serialized_state: str
    state_encoding: str
    validation_hash: str
    memory_usage: float
    is_recoverable: bool
    recovery_instructions: list[str] | None
    performance_data: dict[str, Any] | None
    created_at: datetime


@dataclass
class StageStats:
    checkpoints: int = 0
    keywords_processed: int = 0
    memory_usage: list[float] = field(default_factory=list)


@dataclass
class PerformanceAnalysis:
    """Per-stage checkpoint counts, memory profile and timeline for one run."""

    batch_run_id: str
    total_checkpoints: int
    stages: dict[str, StageStats]
    memory_min: float
    memory_max: float
    memory_avg: float
    timeline: list[dict[str, Any]]


class CheckpointStore(ABC):
    """One writer per batch run; concurrent runs are independent."""

    def __init__(self, keep_count: int = 5, compression_threshold: int = 1000) -> None:
        self.keep_count = keep_count
        self.compression_threshold = compression_threshold

    @abstractmethod
    async def save(self, batch_run_id: str, data: CheckpointData) -> SaveResult:
        """Persist a checkpoint and prune to the newest keep_count for the run.

        The newest recoverable checkpoint is never pruned, so a run of
        failure checkpoints cannot make the batch run unresumable.
        """

    @abstractmethod
    async def load_latest(self, batch_run_id: str) -> Checkpoint | None:
        """Newest recoverable checkpoint, validated.

        Raises:
            CheckpointIntegrityError: If the stored hash does not match.
        """

    @abstractmethod
    async def list_all(self, batch_run_id: str) -> list[CheckpointSummary]:
        """All retained checkpoints for the run, newest first."""

    async def get_performance_analysis(self, batch_run_id: str) -> PerformanceAnalysis | None:
        summaries = list(reversed(await self.list_all(batch_run_id)))
        if not summaries:
            return None

        stages: dict[str, StageStats] = {}
        timeline: list[dict[str, Any]] = []
        for summary in summaries:
            stats = stages.setdefault(summary.stage_name, StageStats())
            stats.checkpoints += 1
            stats.keywords_processed = max(stats.keywords_processed, summary.keywords_processed)
            stats.memory_usage.append(summary.memory_usage)
            timeline.append(
                {
                    "stage": summary.stage_name,
                    "timestamp": summary.created_at.isoformat(),
                    "keywords_processed": summary.keywords_processed,
                    "memory_usage": summary.memory_usage,
                }
            )

        memory = [summary.memory_usage for summary in summaries]
        return PerformanceAnalysis(
            batch_run_id=batch_run_id,
            total_checkpoints=len(summaries),
            stages=stages,
            memory_min=min(memory),
            memory_max=max(memory),
            memory_avg=round(sum(memory) / len(memory), 1),
            timeline=timeline,
        )

    def _keep_count_for(self, data: CheckpointData) -> int:
        return data.keep_count if data.keep_count is not None else self.keep_count

    @staticmethod
    def _stale_ids(newest_first: list[tuple[str, bool]], keep_count: int) -> list[str]:
        """Ids beyond the newest keep_count, sparing the newest recoverable one."""
        newest_recoverable = next((cid for cid, recoverable in newest_first if recoverable), None)
        return [
            cid
            for cid, _ in newest_first[keep_count:]
            if cid != newest_recoverable
        ]

    def _build_record(self, batch_run_id: str, sequence: int, data: CheckpointData) -> CheckpointRecord:
        encoded = encode_state(data.state, self.compression_threshold)
        validation_hash = compute_validation_hash(
            data.stage_name,
            data.batch_number,
            data.keywords_processed,
            encoded.payload,
        )
        return CheckpointRecord(
            id=generate_id(),
            batch_run_id=batch_run_id,
            sequence=sequence,
            checkpoint_type=data.checkpoint_type,
            stage_name=data.stage_name,
            batch_number=data.batch_number,
            keywords_processed=data.keywords_processed,
            serialized_state=encoded.payload,
            state_encoding=encoded.encoding,
            validation_hash=validation_hash,
            memory_usage=current_memory_mb(),
            is_recoverable=is_recoverable(data.checkpoint_type, data.stage_name, data.state),
            recovery_instructions=recovery_instructions(
                data.checkpoint_type,
                data.stage_name,
                data.batch_number,
                data.keywords_processed,
            ),
            performance_data=dict(data.performance_data),
            created_at=utcnow(),
        )

    @staticmethod
    def _restore(stored: _StoredCheckpoint) -> Checkpoint:
        expected = compute_validation_hash(
            stored.stage_name,
            stored.batch_number,
            stored.keywords_processed,
            stored.serialized_state,
        )
        if expected != stored.validation_hash:
            logger.warning(
                "Checkpoint failed validation",
                extra={"checkpoint_id": stored.id, "batch_run_id": stored.batch_run_id},
            )
            raise CheckpointIntegrityError(stored.id)

        return Checkpoint(
            id=stored.id,
            batch_run_id=stored.batch_run_id,
            sequence=stored.sequence,
            checkpoint_type=stored.checkpoint_type,
            stage_name=stored.stage_name,
            batch_number=stored.batch_number,
            keywords_processed=stored.keywords_processed,
            state=decode_state(stored.serialized_state, stored.state_encoding),
            validation_hash=stored.validation_hash,
            memory_usage=stored.memory_usage,
            is_recoverable=stored.is_recoverable,
            recovery_instructions=list(stored.recovery_instructions or []),
            performance_data=dict(stored.performance_data or {}),
            created_at=stored.created_at,
        )

    @staticmethod
    def _summarize(stored: _StoredCheckpoint) -> CheckpointSummary:
        return CheckpointSummary(
            id=stored.id,
            sequence=stored.sequence,
            checkpoint_type=stored.checkpoint_type,
            stage_name=stored.stage_name,
            batch_number=stored.batch_number,
            keywords_processed=stored.keywords_processed,
            memory_usage=stored.memory_usage,
            is_recoverable=stored.is_recoverable,
            created_at=stored.created_at,
        )

    @staticmethod
    def _save_result(record: CheckpointRecord) -> SaveResult:
        logger.info(
            "Checkpoint saved",
            extra={
                "batch_run_id": record.batch_run_id,
                "checkpoint_id": record.id,
                "stage": record.stage_name,
                "checkpoint_type": record.checkpoint_type,
                "keywords_processed": record.keywords_processed,
                "encoding": record.state_encoding,
            },
        )
        return SaveResult(
            checkpoint_id=record.id,
            validation_hash=record.validation_hash,
            memory_usage=record.memory_usage,
            timestamp=record.created_at,
        )


class InMemoryCheckpointStore(CheckpointStore):
    """Process-local store for tests and single-shot CLI runs."""

    def __init__(self, keep_count: int = 5, compression_threshold: int = 1000) -> None:
        super().__init__(keep_count, compression_threshold)
        self._records: dict[str, list[CheckpointRecord]] = {}
        self._sequences: dict[str, int] = {}

    async def save(self, batch_run_id: str, data: CheckpointData) -> SaveResult:
        sequence = self._sequences.get(batch_run_id, 0) + 1
        self._sequences[batch_run_id] = sequence
        record = self._build_record(batch_run_id, sequence, data)

        records = self._records.setdefault(batch_run_id, [])
        records.append(record)
        stale = set(
            self._stale_ids(
                [(r.id, r.is_recoverable) for r in reversed(records)],
                self._keep_count_for(data),
            )
        )
        if stale:
            records[:] = [r for r in records if r.id not in stale]
        return self._save_result(record)

    async def load_latest(self, batch_run_id: str) -> Checkpoint | None:
        for record in reversed(self._records.get(batch_run_id, [])):
            if record.is_recoverable:
                return self._restore(record)
        return None

    async def list_all(self, batch_run_id: str) -> list[CheckpointSummary]:
        return [self._summarize(r) for r in reversed(self._records.get(batch_run_id, []))]


class SqlCheckpointStore(CheckpointStore):
    """Checkpoints in the batch_checkpoints table via async SQLAlchemy."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession] | None = None,
        keep_count: int = 5,
        compression_threshold: int = 1000,
        retry_policy: CheckpointWriteRetryPolicy | None = None,
    ) -> None:
        super().__init__(keep_count, compression_threshold)
        self.session_maker = session_maker
        self.retry_policy = retry_policy or CheckpointWriteRetryPolicy.from_settings()

    async def save(self, batch_run_id: str, data: CheckpointData) -> SaveResult:
        async def _write() -> CheckpointRecord:
            async with get_session_context(self.session_maker) as session:
                last_sequence = await session.scalar(
                    select(func.max(BatchCheckpoint.sequence)).where(
                        BatchCheckpoint.batch_run_id == batch_run_id
                    )
                )
                record = self._build_record(batch_run_id, (last_sequence or 0) + 1, data)
                session.add(
                    BatchCheckpoint(
                        id=record.id,
                        batch_run_id=record.batch_run_id,
                        sequence=record.sequence,
                        checkpoint_type=record.checkpoint_type,
                        stage_name=record.stage_name,
                        batch_number=record.batch_number,
                        keywords_processed=record.keywords_processed,
                        serialized_state=record.serialized_state,
                        state_encoding=record.state_encoding,
                        validation_hash=record.validation_hash,
                        memory_usage=record.memory_usage,
                        is_recoverable=record.is_recoverable,
                        recovery_instructions=record.recovery_instructions,
                        performance_data=record.performance_data,
                        created_at=record.created_at,
                    )
                )
                await session.flush()
                await self._prune(session, batch_run_id, self._keep_count_for(data))
                return record

        record = await retry_checkpoint_write(
            _write,
            policy=self.retry_policy,
            log_context={"batch_run_id": batch_run_id, "stage": data.stage_name},
        )
        return self._save_result(record)

    async def load_latest(self, batch_run_id: str) -> Checkpoint | None:
        async with get_session_context(self.session_maker, commit_on_exit=False) as session:
            row = await session.scalar(
                select(BatchCheckpoint)
                .where(
                    BatchCheckpoint.batch_run_id == batch_run_id,
                    BatchCheckpoint.is_recoverable.is_(True),
                )
                .order_by(BatchCheckpoint.sequence.desc())
                .limit(1)
            )
            if row is None:
                return None
            return self._restore(row)

    async def list_all(self, batch_run_id: str) -> list[CheckpointSummary]:
        async with get_session_context(self.session_maker, commit_on_exit=False) as session:
            result = await session.execute(
                select(BatchCheckpoint)
                .where(BatchCheckpoint.batch_run_id == batch_run_id)
                .order_by(BatchCheckpoint.sequence.desc())
            )
            return [self._summarize(row) for row in result.scalars()]

    async def _prune(self, session: AsyncSession, batch_run_id: str, keep_count: int) -> None:
        rows = (
            await session.execute(
                select(BatchCheckpoint.id, BatchCheckpoint.is_recoverable)
                .where(BatchCheckpoint.batch_run_id == batch_run_id)
                .order_by(BatchCheckpoint.sequence.desc())
            )
        ).all()
        stale_ids = self._stale_ids([(row.id, row.is_recoverable) for row in rows], keep_count)
        if stale_ids:
            await session.execute(delete(BatchCheckpoint).where(BatchCheckpoint.id.in_(stale_ids)))
            logger.info(
                "Pruned old checkpoints",
                extra={"batch_run_id": batch_run_id, "pruned": len(stale_ids)},
            )
