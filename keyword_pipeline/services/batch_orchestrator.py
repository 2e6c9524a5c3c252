"""Resumable batch orchestration of the keyword pipeline.

Stages run in a fixed order:

    cleaning -> deduplication -> clustering -> scoring -> finalizing -> completed

Only cleaning is chunked into batches; the other stages need the whole
keyword set. A pause request is observed between cleaning batches and at the
end of cleaning. A checkpoint is written after every stage (and every
``checkpoint_interval`` keywords during cleaning), so ``resume()`` continues
from the next incomplete stage, possibly in a fresh process.
"""

import asyncio
import inspect
import math
import random
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from keyword_pipeline.core.exceptions import (
    BatchAlreadyRunningError,
    BatchNotInitializedError,
    BatchNotRunningError,
    BatchPauseUnavailableError,
    BatchProcessingError,
    ConfigurationError,
    NoRecoverableCheckpointError,
)
from keyword_pipeline.core.logging import get_run_logger
from keyword_pipeline.core.memory import current_memory_mb
from keyword_pipeline.models.base import generate_id, utcnow
from keyword_pipeline.persistence.checkpoint_store import CheckpointData, CheckpointStore
from keyword_pipeline.persistence.serialization import (
    CHECKPOINT_TYPE_BATCH,
    CHECKPOINT_TYPE_FAILURE,
    CHECKPOINT_TYPE_STAGE,
)
from keyword_pipeline.schemas.pipeline import BatchConfig, BatchMode, ProcessingOptions
from keyword_pipeline.services.batch_state import BatchRunState, BatchStage, PipelineSnapshot
from keyword_pipeline.services.data_cleaning import DataCleaningService, RawKeyword
from keyword_pipeline.services.processing import ProcessingService
from keyword_pipeline.services.types import Cluster, KeywordRecord

SECONDS_PER_KEYWORD = {"fast": 0.02, "full": 0.05}
FAST_SAMPLE_TOP_SHARE = 0.5
LARGE_DATASET_MAX_CLUSTERS = 50


@dataclass(frozen=True)
class InitializeResult:
    total_keywords: int
    total_batches: int
    batch_size: int
    estimated_time_minutes: int


@dataclass(frozen=True)
class ProgressSnapshot:
    batch_run_id: str
    stage: str
    processed_keywords: int
    total_keywords: int
    progress_percent: float
    current_batch: int
    total_batches: int
    elapsed_seconds: float
    estimated_seconds_remaining: float | None


@dataclass(frozen=True)
class PauseInfo:
    paused_at: datetime
    progress: ProgressSnapshot


@dataclass
class BatchStats:
    batch_run_id: str
    batch_mode: str
    total_keywords: int
    processed_keywords: int
    cleaned_count: int
    dropped_count: int
    warning_count: int
    unique_count: int
    similar_group_count: int
    cluster_count: int
    checkpoints_written: int
    peak_memory_mb: float
    duration_seconds: float


@dataclass
class BatchResult:
    """Outcome of start() or resume(); status is "completed" or "paused"."""

    status: str
    keywords: list[KeywordRecord] = field(default_factory=list)
    clusters: list[Cluster] = field(default_factory=list)
    stats: BatchStats | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "keywords": [kw.to_dict() for kw in self.keywords],
            "clusters": [cluster.summary() for cluster in self.clusters],
            "stats": asdict(self.stats) if self.stats else None,
        }


ProgressCallback = Callable[[ProgressSnapshot], Awaitable[None] | None]


class BatchOrchestrator:
    """Drives the pipeline stages over large inputs with checkpoint/resume.

    One orchestrator owns checkpoint writes for its batch_run_id.
    """

    def __init__(
        self,
        checkpoint_store: CheckpointStore,
        config: BatchConfig | None = None,
        options: ProcessingOptions | None = None,
        batch_run_id: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        self.checkpoint_store = checkpoint_store
        self.config = config or BatchConfig()
        self.options = options or ProcessingOptions()
        self.batch_run_id = batch_run_id or generate_id()
        self.log = get_run_logger(__name__, self.batch_run_id)
        self.progress_callback = progress_callback

        self.state = BatchRunState(batch_run_id=self.batch_run_id)
        self._snapshot: PipelineSnapshot | None = None
        self._service = ProcessingService(self.options)
        self._running = False
        self._pause_requested = False
        self._started_monotonic: float | None = None
        self._checkpoints_written = 0
        self._keywords_since_checkpoint = 0
        self._peak_memory_mb = 0.0

    @property
    def is_running(self) -> bool:
        return self._running

    async def initialize(
        self,
        raw_keywords: Iterable[RawKeyword],
        batch_mode: BatchMode = "full",
        batch_size: int | None = None,
    ) -> InitializeResult:
        """Load input, sample it in fast mode, and size the cleaning batches."""
        if self._running:
            raise BatchAlreadyRunningError(self.batch_run_id)
        if batch_mode not in SECONDS_PER_KEYWORD:
            raise ConfigurationError(
                f"Unknown batch mode: {batch_mode}",
                {"batch_mode": batch_mode},
            )
        if batch_size is not None and batch_size < 1:
            raise ConfigurationError("batch_size must be >= 1", {"batch_size": batch_size})

        self.state = BatchRunState(batch_run_id=self.batch_run_id, batch_mode=batch_mode)
        rows = [DataCleaningService.normalize_row(row) for row in raw_keywords]
        input_count = len(rows)
        if batch_mode == "fast":
            rows = self._select_fast_sample(rows)

        total = len(rows)
        size = max(1, min(batch_size or self.config.batch_size, math.ceil(total / 10)))
        total_batches = math.ceil(total / size) if total else 0
        estimated_minutes = math.ceil(total * SECONDS_PER_KEYWORD[batch_mode] / 60)

        self._snapshot = PipelineSnapshot(pending=rows)
        self.state = self.state.with_stage(
            BatchStage.INITIALIZED,
            total_keywords=total,
            total_batches=total_batches,
            batch_size=size,
        )
        self._checkpoints_written = 0
        self._peak_memory_mb = 0.0

        self.log.info(
            "Batch processing initialized",
            extra={
                "batch_mode": batch_mode,
                "input_count": input_count,
                "total_keywords": total,
                "batch_size": size,
                "total_batches": total_batches,
                "estimated_time_minutes": estimated_minutes,
            },
        )
        return InitializeResult(
            total_keywords=total,
            total_batches=total_batches,
            batch_size=size,
            estimated_time_minutes=estimated_minutes,
        )

    async def start(
        self,
        options: ProcessingOptions | Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Run every stage from the beginning of an initialized run."""
        if self._running:
            raise BatchAlreadyRunningError(self.batch_run_id)
        if self._snapshot is None or self.state.stage != BatchStage.INITIALIZED:
            raise BatchNotInitializedError()
        self._apply_options(options)
        return await self._execute()

    async def pause(self) -> PauseInfo:
        """Request a pause; honored at the next cleaning-batch boundary.

        Raises:
            BatchNotRunningError: If no run is in progress.
            BatchPauseUnavailableError: If cleaning has already finished.
        """
        if not self._running:
            raise BatchNotRunningError(self.batch_run_id)
        if self.state.is_complete(BatchStage.CLEANING):
            raise BatchPauseUnavailableError(self.batch_run_id, self.state.stage.value)
        self._pause_requested = True
        paused_at = utcnow()
        self.log.info(
            "Batch pause requested",
            extra={
                "stage": self.state.stage.value,
                "processed_keywords": self.state.processed_keywords,
            },
        )
        return PauseInfo(paused_at=paused_at, progress=self.get_progress())

    async def resume(
        self,
        options: ProcessingOptions | Mapping[str, Any] | None = None,
    ) -> BatchResult:
        """Continue from the newest recoverable checkpoint.

        Raises:
            NoRecoverableCheckpointError: If the run has no usable checkpoint.
            CheckpointIntegrityError: If the newest checkpoint fails validation.
        """
        if self._running:
            raise BatchAlreadyRunningError(self.batch_run_id)

        checkpoint = await self.checkpoint_store.load_latest(self.batch_run_id)
        if checkpoint is None:
            raise NoRecoverableCheckpointError(self.batch_run_id)

        self.state, self._snapshot = PipelineSnapshot.from_state(checkpoint.state)
        self._apply_options(options)

        next_stage = self.state.next_stage
        self.log.info(
            "Resuming batch run",
            extra={
                "checkpoint_id": checkpoint.id,
                "checkpoint_stage": checkpoint.stage_name,
                "next_stage": next_stage.value if next_stage else None,
                "processed_keywords": self.state.processed_keywords,
            },
        )
        if next_stage is None:
            return self._build_result("completed")
        return await self._execute()

    def get_progress(self) -> ProgressSnapshot:
        state = self.state
        elapsed = 0.0
        if self._started_monotonic is not None:
            elapsed = time.monotonic() - self._started_monotonic

        remaining: float | None = None
        if 0 < state.processed_keywords < state.total_keywords:
            rate = elapsed / state.processed_keywords
            remaining = round(rate * (state.total_keywords - state.processed_keywords), 1)
        elif state.total_keywords and state.processed_keywords >= state.total_keywords:
            remaining = 0.0

        return ProgressSnapshot(
            batch_run_id=self.batch_run_id,
            stage=state.stage.value,
            processed_keywords=state.processed_keywords,
            total_keywords=state.total_keywords,
            progress_percent=state.progress_percent,
            current_batch=state.current_batch,
            total_batches=state.total_batches,
            elapsed_seconds=round(elapsed, 2),
            estimated_seconds_remaining=remaining,
        )

    async def _execute(self) -> BatchResult:
        self._running = True
        self._pause_requested = False
        self._started_monotonic = time.monotonic()
        self.state = self.state.with_stage(
            BatchStage.RUNNING,
            start_time=self.state.start_time or utcnow(),
            pause_time=None,
            error=None,
        )
        self.log.info(
            "Batch processing started",
            extra={
                "total_keywords": self.state.total_keywords,
                "completed_stages": [s.value for s in self.state.completed_stages],
            },
        )

        try:
            if not self.state.is_complete(BatchStage.CLEANING):
                if await self._run_cleaning_stage():
                    return self._build_result("paused")
                if await self._pause_if_requested():
                    return self._build_result("paused")

            if not self.state.is_complete(BatchStage.DEDUPLICATION):
                self.state = self._run_deduplication(self.state, self._require_snapshot())
                await self._checkpoint(BatchStage.DEDUPLICATION)

            if not self.state.is_complete(BatchStage.CLUSTERING):
                self.state = self._run_clustering(self.state, self._require_snapshot())
                await self._checkpoint(BatchStage.CLUSTERING)

            if not self.state.is_complete(BatchStage.SCORING):
                self.state = self._run_scoring(self.state, self._require_snapshot())
                await self._checkpoint(BatchStage.SCORING)

            self.state = self.state.with_stage(BatchStage.FINALIZING)
            self.state = self.state.with_completed(BatchStage.FINALIZING).with_stage(
                BatchStage.COMPLETED,
                end_time=utcnow(),
            )
            await self._checkpoint(BatchStage.COMPLETED)
            result = self._build_result("completed")
            self.log.info(
                "Batch processing completed",
                extra={
                    "keyword_count": len(result.keywords),
                    "cluster_count": len(result.clusters),
                    "checkpoints_written": self._checkpoints_written,
                },
            )
            return result
        except Exception as exc:
            failed_stage = self.state.stage
            await self._record_failure(failed_stage, exc)
            last_completed = self.state.last_completed_stage
            raise BatchProcessingError(
                stage=failed_stage.value,
                message=str(exc),
                last_completed_stage=last_completed.value if last_completed else None,
                processed_keywords=self.state.processed_keywords,
            ) from exc
        finally:
            self._running = False

    async def _run_cleaning_stage(self) -> bool:
        """Clean pending rows batch by batch; returns True if paused."""
        snapshot = self._require_snapshot()
        self.state = self.state.with_stage(BatchStage.CLEANING)

        while snapshot.pending:
            if await self._pause_if_requested():
                return True

            rows = snapshot.pending[: self.state.batch_size]
            self.state = self._clean_batch(self.state, snapshot, rows)
            self._sample_memory()
            self._keywords_since_checkpoint += len(rows)

            if self.config.enable_progress_logging:
                self.log.info(
                    "Cleaning batch complete",
                    extra={
                        "batch": self.state.current_batch,
                        "total_batches": self.state.total_batches,
                        "processed_keywords": self.state.processed_keywords,
                        "total_keywords": self.state.total_keywords,
                    },
                )
            if snapshot.pending and self._keywords_since_checkpoint >= self.config.checkpoint_interval:
                await self._checkpoint(BatchStage.CLEANING, CHECKPOINT_TYPE_BATCH)

            await self._notify_progress()
            # Yield so a concurrent pause() can land between batches
            await asyncio.sleep(0)

        self.state = self.state.with_completed(BatchStage.CLEANING)
        await self._checkpoint(BatchStage.CLEANING)
        return False

    def _clean_batch(
        self,
        state: BatchRunState,
        snapshot: PipelineSnapshot,
        rows: list[RawKeyword],
    ) -> BatchRunState:
        report = self._service.clean(rows)
        snapshot.cleaned.extend(report.keywords)
        snapshot.cleaned_count += len(report.keywords)
        snapshot.dropped_count += len(report.dropped)
        snapshot.warning_count += len(report.warnings)
        del snapshot.pending[: len(rows)]
        return state.with_stage(
            BatchStage.CLEANING,
            processed_keywords=state.processed_keywords + len(rows),
            current_batch=state.current_batch + 1,
        )

    def _run_deduplication(self, state: BatchRunState, snapshot: PipelineSnapshot) -> BatchRunState:
        self.state = state = state.with_stage(BatchStage.DEDUPLICATION)
        result = self._service.deduplicate(snapshot.cleaned)
        snapshot.unique = result.unique
        snapshot.similar_group_count = len(result.similar_groups)
        self._sample_memory()
        return state.with_completed(BatchStage.DEDUPLICATION)

    def _run_clustering(self, state: BatchRunState, snapshot: PipelineSnapshot) -> BatchRunState:
        self.state = state = state.with_stage(BatchStage.CLUSTERING)
        cluster_count = self._cluster_count_for(len(snapshot.unique))
        result = self._service.cluster(snapshot.unique, cluster_count=cluster_count)
        snapshot.clusters = result.clusters
        self._sample_memory()
        return state.with_completed(BatchStage.CLUSTERING)

    def _run_scoring(self, state: BatchRunState, snapshot: PipelineSnapshot) -> BatchRunState:
        self.state = state = state.with_stage(BatchStage.SCORING)
        snapshot.ranked = self._service.score(snapshot.unique, snapshot.clusters)
        self._sample_memory()
        return state.with_completed(BatchStage.SCORING)

    def _cluster_count_for(self, unique_count: int) -> int | None:
        """Bound k on large inputs unless a cluster count is configured."""
        clustering = self.options.clustering
        if clustering.cluster_count is not None:
            return clustering.cluster_count
        if unique_count > clustering.large_dataset_threshold:
            forced = min(
                LARGE_DATASET_MAX_CLUSTERS,
                math.ceil(unique_count / clustering.large_dataset_keywords_per_cluster),
            )
            self.log.info(
                "Large keyword set, bounding cluster count",
                extra={
                    "unique_count": unique_count,
                    "cluster_count": forced,
                },
            )
            return forced
        return None

    async def _pause_if_requested(self) -> bool:
        if not self._pause_requested:
            return False
        self._pause_requested = False
        self.state = self.state.with_stage(BatchStage.PAUSED, pause_time=utcnow())
        if not self.state.is_complete(BatchStage.CLEANING):
            await self._checkpoint(BatchStage.CLEANING, CHECKPOINT_TYPE_BATCH)
        self.log.info(
            "Batch processing paused",
            extra={
                "processed_keywords": self.state.processed_keywords,
                "current_batch": self.state.current_batch,
            },
        )
        return True

    async def _checkpoint(
        self,
        stage: BatchStage,
        checkpoint_type: str = CHECKPOINT_TYPE_STAGE,
    ) -> None:
        snapshot = self._require_snapshot()
        await self.checkpoint_store.save(
            self.batch_run_id,
            CheckpointData(
                stage_name=stage.value,
                state=snapshot.to_state(self.state),
                batch_number=self.state.current_batch,
                keywords_processed=self.state.processed_keywords,
                checkpoint_type=checkpoint_type,
                performance_data=self._performance_data(),
                keep_count=self.config.checkpoint_keep_count,
            ),
        )
        self._checkpoints_written += 1
        self._keywords_since_checkpoint = 0

    async def _record_failure(self, stage: BatchStage, exc: Exception) -> None:
        self.state = self.state.with_stage(BatchStage.FAILED, error=str(exc), end_time=utcnow())
        self.log.error(
            "Batch processing failed",
            extra={
                "stage": stage.value,
                "processed_keywords": self.state.processed_keywords,
                "error": str(exc),
            },
        )
        try:
            await self.checkpoint_store.save(
                self.batch_run_id,
                CheckpointData(
                    stage_name=stage.value,
                    state={"run": self.state.to_dict(), "error": str(exc)},
                    batch_number=self.state.current_batch,
                    keywords_processed=self.state.processed_keywords,
                    checkpoint_type=CHECKPOINT_TYPE_FAILURE,
                    performance_data=self._performance_data(),
                    keep_count=self.config.checkpoint_keep_count,
                ),
            )
        except Exception:
            self.log.warning(
                "Failed to write failure checkpoint",
                extra={"stage": stage.value},
            )

    async def _notify_progress(self) -> None:
        if self.progress_callback is None:
            return
        outcome = self.progress_callback(self.get_progress())
        if inspect.isawaitable(outcome):
            await outcome

    def _sample_memory(self) -> float:
        memory_mb = current_memory_mb()
        self._peak_memory_mb = max(self._peak_memory_mb, memory_mb)
        if memory_mb > self.config.max_memory_usage_mb:
            self.log.warning(
                "Memory usage above configured limit",
                extra={
                    "stage": self.state.stage.value,
                    "memory_mb": memory_mb,
                    "max_memory_usage_mb": self.config.max_memory_usage_mb,
                },
            )
        return memory_mb

    def _performance_data(self) -> dict[str, Any]:
        elapsed = 0.0
        if self._started_monotonic is not None:
            elapsed = time.monotonic() - self._started_monotonic
        return {
            "elapsed_seconds": round(elapsed, 3),
            "peak_memory_mb": self._peak_memory_mb,
            "current_batch": self.state.current_batch,
            "total_batches": self.state.total_batches,
        }

    def _build_result(self, status: str) -> BatchResult:
        snapshot = self._require_snapshot()
        state = self.state
        duration = 0.0
        if state.start_time is not None:
            duration = ((state.end_time or utcnow()) - state.start_time).total_seconds()

        stats = BatchStats(
            batch_run_id=self.batch_run_id,
            batch_mode=state.batch_mode,
            total_keywords=state.total_keywords,
            processed_keywords=state.processed_keywords,
            cleaned_count=snapshot.cleaned_count,
            dropped_count=snapshot.dropped_count,
            warning_count=snapshot.warning_count,
            unique_count=len(snapshot.unique),
            similar_group_count=snapshot.similar_group_count,
            cluster_count=len(snapshot.clusters),
            checkpoints_written=self._checkpoints_written,
            peak_memory_mb=self._peak_memory_mb,
            duration_seconds=round(duration, 3),
        )
        if status == "paused":
            return BatchResult(status=status, stats=stats)
        return BatchResult(
            status=status,
            keywords=list(snapshot.ranked),
            clusters=list(snapshot.clusters),
            stats=stats,
        )

    def _apply_options(self, options: ProcessingOptions | Mapping[str, Any] | None) -> None:
        if options is None:
            return
        if not isinstance(options, ProcessingOptions):
            options = ProcessingOptions.from_mapping(options)
        self.options = options
        self._service = ProcessingService(options)

    def _require_snapshot(self) -> PipelineSnapshot:
        if self._snapshot is None:
            raise BatchNotInitializedError()
        return self._snapshot

    def _select_fast_sample(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Highest-volume half of the sample plus a seeded random draw from the rest."""
        sample_size = max(
            math.ceil(len(rows) * self.config.fast_sample_percentage),
            self.config.fast_sample_minimum,
        )
        if sample_size >= len(rows):
            return rows

        cleaner = DataCleaningService(self.options.cleaning)

        def _volume(row: dict[str, Any]) -> int:
            return cleaner.parse_search_volume(row.get("search_volume")).value or 0

        by_volume = sorted(rows, key=_volume, reverse=True)
        top_count = math.ceil(sample_size * FAST_SAMPLE_TOP_SHARE)
        rest = by_volume[top_count:]
        rng = random.Random(self.config.random_seed)
        sample = by_volume[:top_count] + rng.sample(rest, sample_size - top_count)

        self.log.info(
            "Fast mode sample selected",
            extra={
                "input_count": len(rows),
                "sample_size": len(sample),
            },
        )
        return sample
