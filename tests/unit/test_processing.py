"""Unit tests for the end-to-end processing entry point."""

from __future__ import annotations

import json

import pytest

from keyword_pipeline.core.exceptions import ConfigurationError
from keyword_pipeline.schemas.pipeline import ProcessingOptions
from keyword_pipeline.services.processing import ProcessingService, process

SHOE_ROWS = [
    {"keyword": "buy running shoes", "search_volume": 1000, "competition": 0.3},
    {"keyword": "best running shoes", "search_volume": 800, "competition": 0.4},
    {"keyword": "car insurance quotes", "search_volume": 500, "competition": 0.6},
]


def test_forced_cluster_count_groups_related_phrases() -> None:
    result = process(SHOE_ROWS, cluster_count=2)

    assert len(result.clusters) == 2
    assert sum(c.size for c in result.clusters) == 3
    by_phrase = {kw.cleaned_phrase: kw for kw in result.keywords}
    assert by_phrase["buy running shoes"].cluster_id == by_phrase["best running shoes"].cluster_id
    assert by_phrase["car insurance quotes"].cluster_id != by_phrase["buy running shoes"].cluster_id


def test_empty_input_returns_empty_result() -> None:
    result = process([])

    assert result.keywords == []
    assert result.clusters == []
    assert result.to_dict()["keywords"] == []
    assert result.to_dict()["clusters"] == []
    assert result.stats["input_count"] == 0


def test_single_keyword_forms_one_perfect_cluster() -> None:
    result = process([{"keyword": "running shoes", "search_volume": 100}])

    assert len(result.clusters) == 1
    assert result.clusters[0].silhouette == 1.0
    assert result.clusters[0].coherence == 1.0
    assert result.keywords[0].priority_tier is not None


def test_duplicates_are_removed_before_clustering() -> None:
    rows = SHOE_ROWS + [{"keyword": "BUY Running Shoes!!", "search_volume": 10}]

    result = process(rows, cluster_count=2)

    assert result.stats["cleaned_count"] == 4
    assert result.stats["unique_count"] == 3
    assert len(result.keywords) == 3
    kept = next(kw for kw in result.keywords if kw.cleaned_phrase == "buy running shoes")
    assert kept.search_volume == 1000


def test_every_unique_keyword_is_ranked_and_clustered() -> None:
    result = process(SHOE_ROWS)

    assert len(result.keywords) == 3
    assert sum(c.size for c in result.clusters) == 3
    assert all(kw.cluster_id is not None for kw in result.keywords)
    scores = [kw.priority_score for kw in result.keywords]
    assert scores == sorted(scores, reverse=True)


def test_malformed_metrics_surface_as_warnings() -> None:
    rows = [
        {"keyword": "running shoes", "search_volume": "plenty", "competition": "2"},
        {"keyword": "!!!"},
        {"keyword": "coffee beans", "search_volume": "1,500"},
    ]

    result = process(rows)

    assert result.stats["dropped_count"] == 1
    assert result.stats["warning_count"] == len(result.warnings) == 3
    assert {w.field for w in result.warnings} == {"search_volume", "competition", "phrase"}
    assert len(result.keywords) == 2


def test_options_mapping_is_validated() -> None:
    result = process(SHOE_ROWS, options={"clustering": {"cluster_count": 1}})

    assert len(result.clusters) == 1

    with pytest.raises(ConfigurationError):
        process(SHOE_ROWS, options={"clustering": {"cluster_count": 0}})


def test_result_serializes_to_json() -> None:
    service = ProcessingService(ProcessingOptions())

    payload = service.run(SHOE_ROWS, cluster_count=2).to_dict()

    encoded = json.loads(json.dumps(payload))
    assert len(encoded["keywords"]) == 3
    assert {c["size"] for c in encoded["clusters"]} == {1, 2}
    assert encoded["stats"]["cluster_count"] == 2
