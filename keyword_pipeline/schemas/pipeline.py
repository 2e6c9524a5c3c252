"""Typed configuration for pipeline stages."""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from keyword_pipeline.core.exceptions import ConfigurationError

BatchMode = Literal["fast", "full"]


class _StageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class CleaningConfig(_StageConfig):
    """Configuration for keyword text and metric cleaning."""

    quality_threshold: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Records whose quality score falls below this are dropped.",
    )
    min_length: int = Field(default=2, ge=0, description="Shorter cleaned phrases score 0.")
    max_length: int = Field(default=100, ge=1, description="Longer cleaned phrases score 0.")
    transliterate: bool = Field(
        default=True,
        description="Transliterate non-ASCII letters to ASCII before filtering.",
    )


class DeduplicationConfig(_StageConfig):
    """Configuration for exact and near-duplicate detection."""

    similarity_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Normalized Levenshtein similarity for near-duplicate grouping.",
    )
    find_similar: bool = Field(
        default=True,
        description="Run the O(n^2) near-duplicate pass after exact deduplication.",
    )


class EmbeddingConfig(_StageConfig):
    """Configuration for tokenization and the feature matrix."""

    use_stopword_filtering: bool = True
    use_stemming: bool = True
    min_token_length: int = Field(
        default=3,
        ge=1,
        description="Tokens shorter than this are dropped when stopword filtering is on.",
    )
    semantic_weight: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Share of the feature vector given to the TF-IDF embedding.",
    )


class ClusteringConfig(_StageConfig):
    """Configuration for k-selection and the final k-means fit."""

    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    cluster_count: int | None = Field(
        default=None,
        ge=1,
        description="Force k instead of selecting it.",
    )
    max_clusters: int | None = Field(
        default=None,
        ge=1,
        description="Override the data-size-tiered upper bound for k.",
    )
    max_evaluated_k: int = Field(default=50, ge=2, description="Hard cap on scanned k.")
    random_seed: int = 42
    n_init: int = Field(default=10, ge=1, description="k-means++ restarts for the final fit.")
    max_iterations: int = Field(default=100, ge=1)
    tolerance: float = Field(default=1e-3, ge=0.0)
    silhouette_sample_size: int = Field(
        default=2000,
        ge=10,
        description="Silhouette is computed on a seeded subsample above this size.",
    )
    large_dataset_threshold: int = Field(
        default=1000,
        ge=1,
        description="Batch runs above this many unique keywords force a bounded k.",
    )
    large_dataset_keywords_per_cluster: int = Field(default=60, ge=1)


class ScoringWeights(_StageConfig):
    """Component weights for the base priority score; must sum to 1."""

    search_volume: float = Field(default=0.35, ge=0.0, le=1.0)
    competition: float = Field(default=0.25, ge=0.0, le=1.0)
    relevance: float = Field(default=0.25, ge=0.0, le=1.0)
    cluster_coherence: float = Field(default=0.15, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _weights_sum_to_one(self) -> ScoringWeights:
        total = self.search_volume + self.competition + self.relevance + self.cluster_coherence
        if not math.isclose(total, 1.0, abs_tol=1e-6):
            raise ValueError(f"Scoring weights must sum to 1, got {total:.6f}")
        return self


class PriorityThresholds(_StageConfig):
    """Tier thresholds and quick-win limits."""

    high: float = Field(default=0.8, ge=0.0, le=1.0)
    medium: float = Field(default=0.5, ge=0.0, le=1.0)
    quick_win_volume: int = Field(default=1000, ge=0)
    quick_win_competition: float = Field(default=0.3, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _ordered(self) -> PriorityThresholds:
        if self.medium > self.high:
            raise ValueError("medium threshold must not exceed high threshold")
        return self


class ScoringConfig(_StageConfig):
    """Configuration for priority scoring."""

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    thresholds: PriorityThresholds = Field(default_factory=PriorityThresholds)
    normalize_value_scores: bool = Field(
        default=True,
        description="Max-normalize business value and opportunity scores to [0, 1].",
    )


class BatchConfig(_StageConfig):
    """Configuration for the batch orchestrator."""

    batch_size: int = Field(default=100, ge=1)
    fast_sample_percentage: float = Field(default=0.1, gt=0.0, le=1.0)
    fast_sample_minimum: int = Field(default=50, ge=1)
    max_memory_usage_mb: int = Field(default=512, ge=1)
    checkpoint_interval: int = Field(default=100, ge=1)
    checkpoint_keep_count: int = Field(default=5, ge=1)
    enable_progress_logging: bool = True
    random_seed: int = 42

    @classmethod
    def from_settings(cls) -> BatchConfig:
        """Build batch config from process-wide settings."""
        from keyword_pipeline.config import settings

        return cls(
            batch_size=settings.batch_size,
            fast_sample_percentage=settings.fast_sample_percentage,
            fast_sample_minimum=settings.fast_sample_minimum,
            max_memory_usage_mb=settings.max_memory_usage_mb,
            checkpoint_interval=settings.checkpoint_interval,
            checkpoint_keep_count=settings.checkpoint_keep_count,
            random_seed=settings.random_seed,
        )


class ProcessingOptions(_StageConfig):
    """Options for one pipeline execution."""

    cleaning: CleaningConfig = Field(default_factory=CleaningConfig)
    deduplication: DeduplicationConfig = Field(default_factory=DeduplicationConfig)
    clustering: ClusteringConfig = Field(default_factory=ClusteringConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any] | None) -> ProcessingOptions:
        """Validate a plain mapping, raising ConfigurationError on bad values."""
        try:
            return cls.model_validate(dict(payload or {}))
        except ValidationError as exc:
            raise ConfigurationError(
                "Invalid processing options",
                {"errors": exc.errors(include_url=False)},
            ) from exc
