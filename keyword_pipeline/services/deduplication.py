"""Exact and near-duplicate keyword detection."""

import logging
from dataclasses import dataclass, field

from rapidfuzz.distance import Levenshtein

from keyword_pipeline.schemas.pipeline import DeduplicationConfig
from keyword_pipeline.services.types import KeywordRecord

logger = logging.getLogger(__name__)

# Absorbs float error so e.g. 1 edit in 5 chars meets a 0.8 threshold
_SIMILARITY_EPSILON = 1e-9


@dataclass
class DeduplicationResult:
    """Unique records plus groups of near-duplicates among them."""

    unique: list[KeywordRecord] = field(default_factory=list)
    similar_groups: list[list[KeywordRecord]] = field(default_factory=list)
    input_count: int = 0

    @property
    def removed_count(self) -> int:
        return self.input_count - len(self.unique)


class DeduplicationService:
    """Removes exact duplicates and groups near-duplicates by edit distance."""

    def __init__(self, config: DeduplicationConfig | None = None) -> None:
        self.config = config or DeduplicationConfig()

    @staticmethod
    def _dedup_key(keyword: KeywordRecord) -> str:
        return (keyword.cleaned_phrase or keyword.phrase or "").lower()

    def remove_exact_duplicates(self, keywords: list[KeywordRecord]) -> list[KeywordRecord]:
        """Keep the first occurrence of each case-insensitive cleaned phrase."""
        seen: set[str] = set()
        unique: list[KeywordRecord] = []
        for kw in keywords:
            key = self._dedup_key(kw)
            if key in seen:
                continue
            seen.add(key)
            unique.append(kw)
        return unique

    @staticmethod
    def similarity(a: str, b: str) -> float:
        """1 - levenshtein(a, b) / max(len(a), len(b))."""
        max_len = max(len(a), len(b))
        if max_len == 0:
            return 1.0
        return 1.0 - Levenshtein.distance(a, b) / max_len

    def find_similar_keywords(
        self,
        keywords: list[KeywordRecord],
        threshold: float | None = None,
    ) -> list[list[KeywordRecord]]:
        """Greedy single-link grouping anchored on the earliest unclaimed record.

        O(n^2) comparisons in the worst case. Groups of one are not reported.
        """
        limit = self.config.similarity_threshold if threshold is None else threshold
        phrases = [self._dedup_key(kw) for kw in keywords]
        claimed = [False] * len(keywords)
        groups: list[list[KeywordRecord]] = []

        for i, anchor in enumerate(phrases):
            if claimed[i]:
                continue
            claimed[i] = True
            group = [keywords[i]]
            for j in range(i + 1, len(phrases)):
                if claimed[j]:
                    continue
                # Cheap length bound before the edit-distance call
                longest = max(len(anchor), len(phrases[j]))
                if longest and 1.0 - abs(len(anchor) - len(phrases[j])) / longest < limit - _SIMILARITY_EPSILON:
                    continue
                if self.similarity(anchor, phrases[j]) >= limit - _SIMILARITY_EPSILON:
                    group.append(keywords[j])
                    claimed[j] = True
            if len(group) > 1:
                groups.append(group)
        return groups

    def deduplicate_keywords(self, cleaned_keywords: list[KeywordRecord]) -> DeduplicationResult:
        """Drop exact duplicates, then tag near-duplicate groups on the survivors."""
        unique = self.remove_exact_duplicates(cleaned_keywords)
        similar_groups: list[list[KeywordRecord]] = []
        if self.config.find_similar:
            similar_groups = self.find_similar_keywords(unique)

        for kw in unique:
            kw.similar_group_id = None
        for group_id, group in enumerate(similar_groups):
            for kw in group:
                kw.similar_group_id = group_id

        logger.info(
            "Deduplication complete",
            extra={
                "input_count": len(cleaned_keywords),
                "unique_count": len(unique),
                "removed": len(cleaned_keywords) - len(unique),
                "similar_groups": len(similar_groups),
            },
        )
        return DeduplicationResult(
            unique=unique,
            similar_groups=similar_groups,
            input_count=len(cleaned_keywords),
        )
