"""Keyword priority scoring and tiering.

The base score blends four components in [0, 1]:

    volume      log10(search_volume + 1) / 5, capped at 1
    competition 1 - competition
    relevance   share of cluster-name tokens found in the phrase
    coherence   the owning cluster's coherence

and priority_score = base * (1 - difficulty), with difficulty = competition.
"""

import logging
import math
from dataclasses import dataclass

from keyword_pipeline.schemas.pipeline import ScoringConfig
from keyword_pipeline.services.types import Cluster, KeywordRecord, PriorityTier

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreBreakdown:
    """Component scores behind one keyword's priority."""

    volume: float
    competition: float
    relevance: float
    cluster_coherence: float
    base: float
    difficulty: float
    priority: float


class PriorityScoringService:
    """Scores, tiers and ranks clustered keywords."""

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    @staticmethod
    def volume_score(search_volume: int | None) -> float:
        if not search_volume or search_volume < 0:
            return 0.0
        return min(math.log10(search_volume + 1) / 5, 1.0)

    @staticmethod
    def competition_score(competition: float | None) -> float:
        if competition is None:
            return 0.0
        return 1.0 - competition

    @staticmethod
    def relevance_score(phrase: str, cluster_name: str | None) -> float:
        """Fraction of cluster-name tokens appearing as substrings of the phrase."""
        tokens = (cluster_name or "").split()
        if not tokens:
            return 0.0
        return sum(1 for token in tokens if token in phrase) / len(tokens)

    @staticmethod
    def difficulty_score(competition: float | None) -> float:
        return competition if competition is not None else 0.0

    def tier_for(self, priority_score: float) -> PriorityTier:
        thresholds = self.config.thresholds
        if priority_score >= thresholds.high:
            return "high"
        if priority_score >= thresholds.medium:
            return "medium"
        return "low"

    def is_quick_win(self, keyword: KeywordRecord) -> bool:
        """High-volume keywords with known low competition."""
        thresholds = self.config.thresholds
        return (
            (keyword.search_volume or 0) >= thresholds.quick_win_volume
            and keyword.competition is not None
            and keyword.competition <= thresholds.quick_win_competition
        )

    def calculate_priority(
        self,
        keyword: KeywordRecord,
        cluster: Cluster | None,
    ) -> ScoreBreakdown:
        weights = self.config.weights
        volume = self.volume_score(keyword.search_volume)
        competition = self.competition_score(keyword.competition)
        relevance = self.relevance_score(
            keyword.cleaned_phrase,
            cluster.name if cluster else keyword.cluster_name,
        )
        coherence = cluster.coherence if cluster else 0.0

        base = (
            weights.search_volume * volume
            + weights.competition * competition
            + weights.relevance * relevance
            + weights.cluster_coherence * coherence
        )
        difficulty = self.difficulty_score(keyword.competition)
        return ScoreBreakdown(
            volume=volume,
            competition=competition,
            relevance=relevance,
            cluster_coherence=coherence,
            base=base,
            difficulty=difficulty,
            priority=base * (1.0 - difficulty),
        )

    def score_keywords(
        self,
        keywords: list[KeywordRecord],
        clusters: list[Cluster],
    ) -> list[KeywordRecord]:
        """Score every keyword and return them ranked by priority, highest first.

        Records are updated in place; equal scores keep their input order.
        """
        clusters_by_id = {cluster.id: cluster for cluster in clusters}

        for kw in keywords:
            cluster = clusters_by_id.get(kw.cluster_id) if kw.cluster_id is not None else None
            breakdown = self.calculate_priority(kw, cluster)
            kw.priority_score = breakdown.priority
            kw.priority_tier = self.tier_for(breakdown.priority)
            kw.difficulty_score = breakdown.difficulty
            kw.business_value_raw = (kw.search_volume or 0) * (1.0 - breakdown.difficulty)
            kw.is_quick_win = self.is_quick_win(kw)

        self._assign_value_scores(keywords)

        ranked = sorted(keywords, key=lambda kw: kw.priority_score or 0.0, reverse=True)

        tier_counts: dict[str, int] = {"high": 0, "medium": 0, "low": 0}
        for kw in ranked:
            tier_counts[kw.priority_tier or "low"] += 1
        logger.info(
            "Priority scoring complete",
            extra={
                "keyword_count": len(ranked),
                "tiers": tier_counts,
                "quick_wins": sum(1 for kw in ranked if kw.is_quick_win),
            },
        )
        return ranked

    def _assign_value_scores(self, keywords: list[KeywordRecord]) -> None:
        # Business value and opportunity share one formula
        if not self.config.normalize_value_scores:
            for kw in keywords:
                kw.business_value_score = kw.business_value_raw
                kw.opportunity_score = kw.business_value_raw
            return

        max_value = max((kw.business_value_raw or 0.0 for kw in keywords), default=0.0)
        for kw in keywords:
            value = (kw.business_value_raw or 0.0) / max_value if max_value > 0 else 0.0
            kw.business_value_score = value
            kw.opportunity_score = value
