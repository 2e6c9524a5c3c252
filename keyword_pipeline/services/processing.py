"""Non-batch pipeline entry point: clean, deduplicate, cluster, score."""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from keyword_pipeline.schemas.pipeline import ProcessingOptions
from keyword_pipeline.services.clustering import ClusteringEngine, ClusteringResult
from keyword_pipeline.services.data_cleaning import CleaningReport, DataCleaningService, RawKeyword
from keyword_pipeline.services.deduplication import DeduplicationResult, DeduplicationService
from keyword_pipeline.services.priority_scoring import PriorityScoringService
from keyword_pipeline.services.types import Cluster, KeywordRecord, ParseWarning

logger = logging.getLogger(__name__)


@dataclass
class ProcessingResult:
    """Ranked keywords and the clusters they belong to."""

    keywords: list[KeywordRecord] = field(default_factory=list)
    clusters: list[Cluster] = field(default_factory=list)
    warnings: list[ParseWarning] = field(default_factory=list)
    stats: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "keywords": [kw.to_dict() for kw in self.keywords],
            "clusters": [cluster.summary() for cluster in self.clusters],
            "stats": dict(self.stats),
        }


class ProcessingService:
    """Runs every stage once over the full input."""

    def __init__(self, options: ProcessingOptions | None = None) -> None:
        self.options = options or ProcessingOptions()
        self.cleaner = DataCleaningService(self.options.cleaning)
        self.deduplicator = DeduplicationService(self.options.deduplication)
        self.clustering = ClusteringEngine(self.options.clustering)
        self.scorer = PriorityScoringService(self.options.scoring)

    def clean(self, raw_keywords: Iterable[RawKeyword]) -> CleaningReport:
        return self.cleaner.clean_with_report(raw_keywords)

    def deduplicate(self, cleaned: list[KeywordRecord]) -> DeduplicationResult:
        return self.deduplicator.deduplicate_keywords(cleaned)

    def cluster(
        self,
        unique: list[KeywordRecord],
        cluster_count: int | None = None,
    ) -> ClusteringResult:
        return self.clustering.cluster_keywords(unique, cluster_count=cluster_count)

    def score(
        self,
        keywords: list[KeywordRecord],
        clusters: list[Cluster],
    ) -> list[KeywordRecord]:
        return self.scorer.score_keywords(keywords, clusters)

    def run(
        self,
        raw_keywords: Iterable[RawKeyword],
        cluster_count: int | None = None,
    ) -> ProcessingResult:
        rows = list(raw_keywords)
        report = self.clean(rows)
        dedup = self.deduplicate(report.keywords)
        clustering = self.cluster(dedup.unique, cluster_count=cluster_count)
        ranked = self.score(dedup.unique, clustering.clusters)

        stats = {
            "input_count": len(rows),
            "cleaned_count": len(report.keywords),
            "dropped_count": len(report.dropped),
            "warning_count": len(report.warnings),
            "unique_count": len(dedup.unique),
            "similar_group_count": len(dedup.similar_groups),
            "cluster_count": len(clustering.clusters),
            "silhouette": clustering.silhouette,
        }
        logger.info("Keyword processing complete", extra=stats)
        return ProcessingResult(
            keywords=ranked,
            clusters=clustering.clusters,
            warnings=report.warnings,
            stats=stats,
        )


def process(
    raw_keywords: Iterable[RawKeyword],
    options: ProcessingOptions | Mapping[str, Any] | None = None,
    cluster_count: int | None = None,
) -> ProcessingResult:
    """Process raw keyword rows end to end.

    Options may be a ProcessingOptions or a plain mapping, which is validated
    and raises ConfigurationError on bad values.
    """
    if options is None or isinstance(options, ProcessingOptions):
        resolved = options
    else:
        resolved = ProcessingOptions.from_mapping(options)
    return ProcessingService(resolved).run(raw_keywords, cluster_count=cluster_count)
