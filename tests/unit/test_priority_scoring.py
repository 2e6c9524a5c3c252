"""Unit tests for priority scoring, tiers and value scores."""

from __future__ import annotations

import math

import pytest
from pydantic import ValidationError

from keyword_pipeline.core.exceptions import ConfigurationError
from keyword_pipeline.schemas.pipeline import ProcessingOptions, ScoringConfig, ScoringWeights
from keyword_pipeline.services.priority_scoring import PriorityScoringService
from keyword_pipeline.services.types import Cluster, KeywordRecord


def _kw(
    phrase: str,
    volume: int | None = None,
    competition: float | None = None,
    cluster_id: int | None = None,
) -> KeywordRecord:
    return KeywordRecord(
        phrase=phrase,
        cleaned_phrase=phrase,
        search_volume=volume,
        competition=competition,
        cluster_id=cluster_id,
    )


@pytest.mark.parametrize(
    ("volume", "expected"),
    [
        (None, 0.0),
        (0, 0.0),
        (999, 0.6),
        (1000, math.log10(1001) / 5),
        (99_999, 1.0),
        (10**6, 1.0),
    ],
)
def test_volume_score_is_log_scaled_and_capped(volume: int | None, expected: float) -> None:
    assert PriorityScoringService.volume_score(volume) == pytest.approx(expected)


def test_missing_competition_contributes_nothing() -> None:
    assert PriorityScoringService.competition_score(None) == 0.0
    assert PriorityScoringService.difficulty_score(None) == 0.0
    assert PriorityScoringService.competition_score(0.25) == pytest.approx(0.75)


def test_relevance_counts_cluster_name_tokens_in_phrase() -> None:
    score = PriorityScoringService.relevance_score

    assert score("running shoes for men", "run shoe") == 1.0
    assert score("running socks", "run shoe") == 0.5
    assert score("car insurance", "run shoe") == 0.0
    assert score("anything", None) == 0.0
    assert score("anything", "") == 0.0


def test_calculate_priority_combines_weighted_components() -> None:
    service = PriorityScoringService()
    keyword = _kw("running shoes", volume=999, competition=0.2, cluster_id=0)
    cluster = Cluster(id=0, name="run shoe", member_keywords=[keyword], coherence=0.5)

    breakdown = service.calculate_priority(keyword, cluster)

    assert breakdown.volume == pytest.approx(0.6)
    assert breakdown.competition == pytest.approx(0.8)
    assert breakdown.relevance == 1.0
    assert breakdown.cluster_coherence == 0.5
    assert breakdown.base == pytest.approx(0.35 * 0.6 + 0.25 * 0.8 + 0.25 * 1.0 + 0.15 * 0.5)
    assert breakdown.difficulty == pytest.approx(0.2)
    assert breakdown.priority == pytest.approx(0.735 * 0.8)


@pytest.mark.parametrize(
    ("score", "tier"),
    [(1.0, "high"), (0.8, "high"), (0.79, "medium"), (0.5, "medium"), (0.49, "low"), (0.0, "low")],
)
def test_tier_thresholds_are_inclusive(score: float, tier: str) -> None:
    assert PriorityScoringService().tier_for(score) == tier


def test_score_keywords_ranks_by_priority_and_keeps_tiers_monotonic() -> None:
    service = PriorityScoringService()
    keywords = [
        _kw("car insurance quotes", volume=500, competition=0.6, cluster_id=1),
        _kw("buy running shoes", volume=1000, competition=0.3, cluster_id=0),
        _kw("best running shoes", volume=800, competition=0.4, cluster_id=0),
        _kw("obscure phrase"),
    ]
    clusters = [
        Cluster(id=0, name="run shoe", member_keywords=keywords[1:3], coherence=0.8),
        Cluster(id=1, name="car insur quot", member_keywords=keywords[:1], coherence=0.0),
    ]

    ranked = service.score_keywords(keywords, clusters)

    assert len(ranked) == 4
    scores = [kw.priority_score for kw in ranked]
    assert scores == sorted(scores, reverse=True)
    assert ranked[0].cleaned_phrase == "buy running shoes"
    assert ranked[-1].cleaned_phrase == "obscure phrase"
    assert ranked[-1].priority_score == 0.0

    order = {"high": 2, "medium": 1, "low": 0}
    tiers = [order[kw.priority_tier] for kw in ranked]
    assert tiers == sorted(tiers, reverse=True)
    assert all(0.0 <= kw.priority_score <= 1.0 for kw in ranked)


def test_equal_scores_keep_input_order() -> None:
    keywords = [_kw("alpha"), _kw("beta"), _kw("gamma")]

    ranked = PriorityScoringService().score_keywords(keywords, [])

    assert [kw.cleaned_phrase for kw in ranked] == ["alpha", "beta", "gamma"]


def test_quick_wins_need_volume_and_known_low_competition() -> None:
    service = PriorityScoringService()

    assert service.is_quick_win(_kw("a", volume=1000, competition=0.3))
    assert not service.is_quick_win(_kw("b", volume=999, competition=0.1))
    assert not service.is_quick_win(_kw("c", volume=5000, competition=0.31))
    assert not service.is_quick_win(_kw("d", volume=5000, competition=None))


def test_value_scores_are_max_normalized() -> None:
    service = PriorityScoringService()
    top = _kw("top", volume=1000, competition=0.3)
    other = _kw("other", volume=400, competition=0.5)
    empty = _kw("empty")

    service.score_keywords([top, other, empty], [])

    assert top.business_value_raw == pytest.approx(700.0)
    assert other.business_value_raw == pytest.approx(200.0)
    assert top.business_value_score == pytest.approx(1.0)
    assert other.business_value_score == pytest.approx(200 / 700)
    assert other.opportunity_score == other.business_value_score
    assert empty.business_value_score == 0.0


def test_value_scores_can_stay_raw() -> None:
    service = PriorityScoringService(ScoringConfig(normalize_value_scores=False))
    keyword = _kw("top", volume=1000, competition=0.3)

    service.score_keywords([keyword], [])

    assert keyword.business_value_score == pytest.approx(700.0)
    assert keyword.opportunity_score == pytest.approx(700.0)


def test_value_scores_are_zero_when_nothing_has_value() -> None:
    keywords = [_kw("a", volume=0), _kw("b", volume=100, competition=1.0)]

    PriorityScoringService().score_keywords(keywords, [])

    assert [kw.business_value_score for kw in keywords] == [0.0, 0.0]


def test_scoring_weights_must_sum_to_one() -> None:
    with pytest.raises(ValidationError):
        ScoringWeights(search_volume=0.5)

    weights = ScoringWeights(search_volume=0.4, competition=0.2, relevance=0.25, cluster_coherence=0.15)
    assert weights.search_volume == 0.4


def test_invalid_option_mapping_raises_configuration_error() -> None:
    with pytest.raises(ConfigurationError) as exc_info:
        ProcessingOptions.from_mapping({"scoring": {"weights": {"search_volume": 0.5}}})

    assert exc_info.value.details["errors"]


def test_unknown_option_keys_are_rejected() -> None:
    with pytest.raises(ConfigurationError):
        ProcessingOptions.from_mapping({"clusterng": {"cluster_count": 2}})
