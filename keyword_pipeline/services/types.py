"""Domain types shared by the pipeline stages."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Generic, Literal, TypeVar

PriorityTier = Literal["high", "medium", "low"]

ValueT = TypeVar("ValueT")


@dataclass(slots=True)
class KeywordRecord:
    """A keyword as it moves through cleaning, clustering and scoring."""

    phrase: str
    cleaned_phrase: str
    search_volume: int | None = None
    competition: float | None = None
    cpc: float | None = None
    quality_score: float = 0.0
    similar_group_id: int | None = None
    cluster_id: int | None = None
    cluster_name: str | None = None
    priority_score: float | None = None
    priority_tier: PriorityTier | None = None
    difficulty_score: float | None = None
    business_value_raw: float | None = None
    business_value_score: float | None = None
    opportunity_score: float | None = None
    is_quick_win: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> KeywordRecord:
        known = {name for name in cls.__dataclass_fields__}
        return cls(**{key: value for key, value in payload.items() if key in known})


@dataclass(frozen=True, slots=True)
class Cluster:
    """A topic cluster produced by one clustering run."""

    id: int
    name: str
    member_keywords: list[KeywordRecord]
    centroid: list[float] = field(default_factory=list)
    silhouette: float = 0.0
    coherence: float = 0.0

    @property
    def size(self) -> int:
        return len(self.member_keywords)

    @property
    def total_volume(self) -> int:
        return sum(kw.search_volume or 0 for kw in self.member_keywords)

    def summary(self, top_n: int = 5) -> dict[str, Any]:
        """Compact JSON-friendly view, used by the CLI and title generation input."""
        top = sorted(
            self.member_keywords,
            key=lambda kw: kw.search_volume or 0,
            reverse=True,
        )[:top_n]
        return {
            "id": self.id,
            "name": self.name,
            "size": self.size,
            "total_volume": self.total_volume,
            "silhouette": round(self.silhouette, 4),
            "coherence": round(self.coherence, 4),
            "top_keywords": [kw.cleaned_phrase for kw in top],
        }


@dataclass(frozen=True, slots=True)
class ParseWarning:
    """A malformed input field that was degraded instead of failing the batch."""

    field: str
    raw_value: Any
    reason: str
    row_index: int | None = None


@dataclass(frozen=True)
class ParseResult(Generic[ValueT]):
    """Parsed value plus the warning explaining why it degraded, if it did."""

    value: ValueT | None
    warning: ParseWarning | None = None

    @property
    def ok(self) -> bool:
        return self.warning is None
