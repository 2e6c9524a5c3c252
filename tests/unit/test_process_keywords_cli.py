"""Unit tests for the process_keywords CLI script."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from keyword_pipeline import config
from keyword_pipeline.config import Settings
from scripts import process_keywords

CSV_ROWS = [
    "Keyword,Volume,Competition,CPC",
    "buy running shoes,1000,0.3,1.20",
    "best running shoes,800,0.4,0.95",
    "car insurance quotes,500,0.6,4.10",
    "Car Insurance Quotes!!,50,0.6,4.10",
    "cheap car insurance,lots,0.5,3.00",
]


def _write_csv(tmp_path: Path) -> Path:
    path = tmp_path / "keywords.csv"
    path.write_text("\ufeff" + "\n".join(CSV_ROWS) + "\n", encoding="utf-8")
    return path


def test_read_keyword_rows_maps_header_variants(tmp_path: Path) -> None:
    rows = process_keywords.read_keyword_rows(_write_csv(tmp_path))

    assert len(rows) == 5
    assert rows[0] == {
        "phrase": "buy running shoes",
        "search_volume": "1000",
        "competition": "0.3",
        "cpc": "1.20",
    }
    assert rows[4]["search_volume"] == "lots"


def test_read_keyword_rows_accepts_query_column(tmp_path: Path) -> None:
    path = tmp_path / "queries.csv"
    path.write_text("query,search_volume\ncoffee beans,2400\n", encoding="utf-8")

    rows = process_keywords.read_keyword_rows(path)

    assert rows == [
        {"phrase": "coffee beans", "search_volume": "2400", "competition": None, "cpc": None}
    ]


def test_main_writes_processed_keywords(tmp_path: Path) -> None:
    output = tmp_path / "out.json"

    exit_code = process_keywords.main(
        [str(_write_csv(tmp_path)), "--output", str(output), "--cluster-count", "2"]
    )

    assert exit_code == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert len(payload["keywords"]) == 4
    assert len(payload["clusters"]) == 2
    assert payload["stats"]["warning_count"] == 1
    scores = [kw["priority_score"] for kw in payload["keywords"]]
    assert scores == sorted(scores, reverse=True)


def test_main_batch_mode_reports_run_id(tmp_path: Path) -> None:
    output = tmp_path / "batch.json"

    exit_code = process_keywords.main(
        [str(_write_csv(tmp_path)), "--output", str(output), "--batch", "full"]
    )

    assert exit_code == 0
    payload = json.loads(output.read_text(encoding="utf-8"))
    assert payload["status"] == "completed"
    assert payload["batch_run_id"]
    assert len(payload["keywords"]) == 4
    assert payload["stats"]["processed_keywords"] == 5


def test_main_returns_error_code_on_invalid_options(tmp_path: Path) -> None:
    output = tmp_path / "never.json"

    exit_code = process_keywords.main(
        [str(_write_csv(tmp_path)), "--output", str(output), "--cluster-count", "0"]
    )

    assert exit_code == 1
    assert not output.exists()


def test_parse_args_requires_input_unless_resuming() -> None:
    with pytest.raises(SystemExit) as exc_info:
        process_keywords.parse_args(["--batch", "full"])
    assert exc_info.value.code == 2

    args = process_keywords.parse_args(["--resume", "run-42"])
    assert args.input is None
    assert args.resume == "run-42"


def test_build_options_seeds_clustering_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(process_keywords, "settings", Settings(_env_file=None, random_seed=7))

    options = process_keywords.build_options(process_keywords.parse_args(["in.csv"]))

    assert options.clustering.random_seed == 7
    assert options.clustering.cluster_count is None


def test_resume_persisted_run_without_input_file(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    settings = Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'checkpoints.db'}")
    monkeypatch.setattr(process_keywords, "settings", settings)
    monkeypatch.setattr(config, "settings", settings)
    first = tmp_path / "first.json"

    assert process_keywords.main(
        [str(_write_csv(tmp_path)), "--output", str(first), "--batch", "full", "--persist-checkpoints"]
    ) == 0
    batch_run_id = json.loads(first.read_text(encoding="utf-8"))["batch_run_id"]

    resumed = tmp_path / "resumed.json"
    assert process_keywords.main(["--resume", batch_run_id, "--output", str(resumed)]) == 0

    payload = json.loads(resumed.read_text(encoding="utf-8"))
    assert payload["status"] == "completed"
    assert payload["batch_run_id"] == batch_run_id
    assert len(payload["keywords"]) == 4
