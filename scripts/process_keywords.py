"""Clean, cluster and prioritize keywords from a CSV export."""

from __future__ import annotations

import argparse
import asyncio
import csv
import json
import logging
from pathlib import Path
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from keyword_pipeline.config import settings
from keyword_pipeline.core.database import create_engine_for_url, create_session_factory, init_db
from keyword_pipeline.core.exceptions import KeywordPipelineError
from keyword_pipeline.core.logging import setup_logging
from keyword_pipeline.persistence.checkpoint_store import (
    CheckpointStore,
    InMemoryCheckpointStore,
    SqlCheckpointStore,
)
from keyword_pipeline.schemas.pipeline import BatchConfig, ProcessingOptions
from keyword_pipeline.services.batch_orchestrator import BatchOrchestrator
from keyword_pipeline.services.processing import process

logger = logging.getLogger("keyword_pipeline.scripts.process_keywords")

PHRASE_COLUMNS = ("keyword", "phrase", "query")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Build CLI parser."""
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "input",
        nargs="?",
        help="CSV with a keyword/phrase column and optional metrics (not needed with --resume)",
    )
    parser.add_argument(
        "--output",
        default="processed_keywords.json",
        help="Where to write the JSON result (default: processed_keywords.json)",
    )
    parser.add_argument(
        "--batch",
        choices=["fast", "full"],
        help="Run through the resumable batch orchestrator in this mode",
    )
    parser.add_argument("--batch-size", type=int, help="Cleaning batch size override")
    parser.add_argument("--cluster-count", type=int, help="Force the number of clusters")
    parser.add_argument(
        "--semantic-weight",
        type=float,
        help="Share of the feature vector given to TF-IDF (0-1)",
    )
    parser.add_argument(
        "--persist-checkpoints",
        action="store_true",
        help="Store checkpoints in DATABASE_URL instead of memory",
    )
    parser.add_argument("--resume", metavar="BATCH_RUN_ID", help="Resume a persisted batch run")
    args = parser.parse_args(argv)
    if args.input is None and args.resume is None:
        parser.error("an input CSV is required unless --resume is given")
    return args


def read_keyword_rows(path: Path) -> list[dict[str, Any]]:
    """Read raw rows, mapping the first recognised phrase column to ``phrase``."""
    with path.open(newline="", encoding="utf-8-sig") as handle:
        reader = csv.DictReader(handle)
        rows: list[dict[str, Any]] = []
        for raw in reader:
            normalized = {(key or "").strip().lower(): value for key, value in raw.items()}
            phrase = next((normalized[c] for c in PHRASE_COLUMNS if normalized.get(c)), "")
            rows.append(
                {
                    "phrase": phrase,
                    "search_volume": normalized.get("search_volume") or normalized.get("volume"),
                    "competition": normalized.get("competition"),
                    "cpc": normalized.get("cpc"),
                }
            )
    return rows


def build_options(args: argparse.Namespace) -> ProcessingOptions:
    clustering: dict[str, Any] = {"random_seed": settings.random_seed}
    if args.cluster_count is not None:
        clustering["cluster_count"] = args.cluster_count
    if args.semantic_weight is not None:
        clustering["embedding"] = {"semantic_weight": args.semantic_weight}
    return ProcessingOptions.from_mapping({"clustering": clustering})


async def run_batch(
    rows: list[dict[str, Any]],
    args: argparse.Namespace,
    options: ProcessingOptions,
) -> dict[str, Any]:
    engine: AsyncEngine | None = None
    store: CheckpointStore
    if args.persist_checkpoints or args.resume:
        engine = create_engine_for_url(settings.database_url, echo=settings.database_echo)
        await init_db(engine)
        store = SqlCheckpointStore(
            create_session_factory(engine),
            keep_count=settings.checkpoint_keep_count,
            compression_threshold=settings.checkpoint_compression_threshold,
        )
    else:
        store = InMemoryCheckpointStore(
            keep_count=settings.checkpoint_keep_count,
            compression_threshold=settings.checkpoint_compression_threshold,
        )

    orchestrator = BatchOrchestrator(
        store,
        config=BatchConfig.from_settings(),
        options=options,
        batch_run_id=args.resume,
    )
    try:
        if args.resume:
            result = await orchestrator.resume()
        else:
            await orchestrator.initialize(rows, batch_mode=args.batch, batch_size=args.batch_size)
            result = await orchestrator.start()
    finally:
        if engine is not None:
            await engine.dispose()

    payload = result.to_dict()
    payload["batch_run_id"] = orchestrator.batch_run_id
    return payload


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging()

    try:
        options = build_options(args)
        rows = [] if args.resume else read_keyword_rows(Path(args.input))
        if args.batch or args.resume:
            payload = asyncio.run(run_batch(rows, args, options))
        else:
            payload = process(rows, options).to_dict()
    except KeywordPipelineError as exc:
        logger.error("Keyword processing failed", extra={"error": exc.message, **exc.details})
        return 1

    output = Path(args.output)
    output.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    logger.info(
        "Results written",
        extra={
            "output": str(output),
            "keywords": len(payload["keywords"]),
            "clusters": len(payload["clusters"]),
        },
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
