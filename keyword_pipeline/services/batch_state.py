"""Immutable batch-run state and checkpoint snapshots of intermediate results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from keyword_pipeline.services.types import Cluster, KeywordRecord


class BatchStage(str, Enum):
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    RUNNING = "running"
    CLEANING = "cleaning"
    DEDUPLICATION = "deduplication"
    CLUSTERING = "clustering"
    SCORING = "scoring"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"
    PAUSED = "paused"


PIPELINE_STAGES = (
    BatchStage.CLEANING,
    BatchStage.DEDUPLICATION,
    BatchStage.CLUSTERING,
    BatchStage.SCORING,
    BatchStage.FINALIZING,
)


@dataclass(frozen=True)
class BatchRunState:
    """Lifecycle of one batch run.

    Never mutated; stage code returns an updated copy via the with_* helpers.
    """

    batch_run_id: str
    stage: BatchStage = BatchStage.INITIALIZING
    batch_mode: str = "full"
    total_keywords: int = 0
    processed_keywords: int = 0
    current_batch: int = 0
    total_batches: int = 0
    batch_size: int = 1
    completed_stages: tuple[BatchStage, ...] = ()
    start_time: datetime | None = None
    pause_time: datetime | None = None
    end_time: datetime | None = None
    error: str | None = None

    @property
    def last_completed_stage(self) -> BatchStage | None:
        return self.completed_stages[-1] if self.completed_stages else None

    @property
    def next_stage(self) -> BatchStage | None:
        for stage in PIPELINE_STAGES:
            if stage not in self.completed_stages:
                return stage
        return None

    @property
    def progress_percent(self) -> float:
        if self.total_keywords <= 0:
            return 100.0 if self.stage == BatchStage.COMPLETED else 0.0
        return round(min(self.processed_keywords / self.total_keywords, 1.0) * 100, 1)

    def is_complete(self, stage: BatchStage) -> bool:
        return stage in self.completed_stages

    def with_stage(self, stage: BatchStage, **changes: Any) -> BatchRunState:
        return replace(self, stage=stage, **changes)

    def with_completed(self, stage: BatchStage, **changes: Any) -> BatchRunState:
        completed = self.completed_stages
        if stage not in completed:
            completed = (*completed, stage)
        return replace(self, completed_stages=completed, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_run_id": self.batch_run_id,
            "stage": self.stage.value,
            "batch_mode": self.batch_mode,
            "total_keywords": self.total_keywords,
            "processed_keywords": self.processed_keywords,
            "current_batch": self.current_batch,
            "total_batches": self.total_batches,
            "batch_size": self.batch_size,
            "completed_stages": [s.value for s in self.completed_stages],
            "start_time": _isoformat(self.start_time),
            "pause_time": _isoformat(self.pause_time),
            "end_time": _isoformat(self.end_time),
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> BatchRunState:
        return cls(
            batch_run_id=payload["batch_run_id"],
            stage=BatchStage(payload.get("stage", BatchStage.INITIALIZING.value)),
            batch_mode=payload.get("batch_mode", "full"),
            total_keywords=int(payload.get("total_keywords", 0)),
            processed_keywords=int(payload.get("processed_keywords", 0)),
            current_batch=int(payload.get("current_batch", 0)),
            total_batches=int(payload.get("total_batches", 0)),
            batch_size=int(payload.get("batch_size", 1)),
            completed_stages=tuple(BatchStage(s) for s in payload.get("completed_stages", [])),
            start_time=_parse_datetime(payload.get("start_time")),
            pause_time=_parse_datetime(payload.get("pause_time")),
            end_time=_parse_datetime(payload.get("end_time")),
            error=payload.get("error"),
        )


@dataclass
class PipelineSnapshot:
    """Intermediate results carried between stages and into checkpoints.

    Clusters are stored as member indices into ``unique`` so a keyword is
    serialized once.
    """

    pending: list[Any] = field(default_factory=list)
    cleaned: list[KeywordRecord] = field(default_factory=list)
    cleaned_count: int = 0
    dropped_count: int = 0
    warning_count: int = 0
    unique: list[KeywordRecord] = field(default_factory=list)
    similar_group_count: int = 0
    clusters: list[Cluster] = field(default_factory=list)
    ranked: list[KeywordRecord] = field(default_factory=list)

    def to_state(self, run_state: BatchRunState) -> dict[str, Any]:
        """Checkpoint payload holding only what later stages still need."""
        state: dict[str, Any] = {
            "run": run_state.to_dict(),
            "cleaned_count": self.cleaned_count,
            "dropped_count": self.dropped_count,
            "warning_count": self.warning_count,
        }
        if not run_state.is_complete(BatchStage.CLEANING):
            state["pending"] = list(self.pending)
            state["cleaned"] = [kw.to_dict() for kw in self.cleaned]
            return state

        if not run_state.is_complete(BatchStage.DEDUPLICATION):
            state["cleaned"] = [kw.to_dict() for kw in self.cleaned]
            return state

        state["unique"] = [kw.to_dict() for kw in self.unique]
        state["similar_group_count"] = self.similar_group_count
        if run_state.is_complete(BatchStage.CLUSTERING):
            index_of = {id(kw): i for i, kw in enumerate(self.unique)}
            state["clusters"] = [
                {
                    "id": c.id,
                    "name": c.name,
                    "members": [index_of[id(kw)] for kw in c.member_keywords],
                    "centroid": c.centroid,
                    "silhouette": c.silhouette,
                    "coherence": c.coherence,
                }
                for c in self.clusters
            ]
        if run_state.is_complete(BatchStage.SCORING):
            index_of = {id(kw): i for i, kw in enumerate(self.unique)}
            state["ranking"] = [index_of[id(kw)] for kw in self.ranked]
        return state

    @classmethod
    def from_state(cls, state: dict[str, Any]) -> tuple[BatchRunState, PipelineSnapshot]:
        run_state = BatchRunState.from_dict(state["run"])
        unique = [KeywordRecord.from_dict(p) for p in state.get("unique", [])]
        clusters = [
            Cluster(
                id=c["id"],
                name=c["name"],
                member_keywords=[unique[i] for i in c["members"]],
                centroid=list(c.get("centroid", [])),
                silhouette=c.get("silhouette", 0.0),
                coherence=c.get("coherence", 0.0),
            )
            for c in state.get("clusters", [])
        ]
        snapshot = cls(
            pending=list(state.get("pending", [])),
            cleaned=[KeywordRecord.from_dict(p) for p in state.get("cleaned", [])],
            cleaned_count=int(state.get("cleaned_count", 0)),
            dropped_count=int(state.get("dropped_count", 0)),
            warning_count=int(state.get("warning_count", 0)),
            unique=unique,
            similar_group_count=int(state.get("similar_group_count", 0)),
            clusters=clusters,
            ranked=[unique[i] for i in state.get("ranking", [])],
        )
        return run_state, snapshot


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_datetime(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None
