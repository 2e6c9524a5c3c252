"""Unit tests for log formatting and logger setup."""

from __future__ import annotations

import io
import logging
import sys

import numpy as np
import pytest

from keyword_pipeline.core import logging as pipeline_logging
from keyword_pipeline.core.logging import JSONExtrasFormatter, get_run_logger, setup_logging


def _record(message: str, *args: object, exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        "keyword_pipeline.services.clustering",
        logging.INFO,
        __file__,
        10,
        message,
        args,
        exc_info,
    )


def test_formatter_hoists_run_id_and_appends_extras_as_json() -> None:
    record = _record("Clustering complete with %d clusters", 4)
    record.k = np.int64(4)
    record.silhouette = np.float64(0.5)
    record.batch_run_id = "run-1"

    line = JSONExtrasFormatter(datefmt="%Y-%m-%d").format(record)

    assert "| INFO     | keyword_pipeline.services.clustering | [run run-1] Clustering complete with 4 clusters" in line
    assert line.endswith('{"k": 4, "silhouette": 0.5}')


def test_formatter_without_extras_emits_plain_line() -> None:
    line = JSONExtrasFormatter().format(_record("Checkpoint saved"))

    assert line.endswith("| Checkpoint saved")


def test_formatter_includes_exception_text() -> None:
    try:
        raise RuntimeError("kmeans failed")
    except RuntimeError:
        record = _record("Batch processing failed", exc_info=sys.exc_info())

    line = JSONExtrasFormatter().format(record)

    assert "Batch processing failed" in line
    assert "RuntimeError: kmeans failed" in line


def test_setup_logging_is_idempotent(monkeypatch: pytest.MonkeyPatch) -> None:
    name = "keyword_pipeline_setup_logging_test"
    monkeypatch.setattr(pipeline_logging, "ROOT_LOGGER_NAME", name)
    logger = logging.getLogger(name)

    try:
        setup_logging("DEBUG")
        setup_logging("DEBUG")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONExtrasFormatter)
        assert logger.level == logging.DEBUG
        assert logger.propagate is False
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.propagate = True


def test_run_logger_merges_run_id_into_call_extras(caplog: pytest.LogCaptureFixture) -> None:
    log = get_run_logger("keyword_pipeline_run_logger_test", "run-7", batch_mode="fast")

    with caplog.at_level(logging.INFO, logger="keyword_pipeline_run_logger_test"):
        log.info("Cleaning batch complete", extra={"batch": 2})

    record = caplog.records[-1]
    assert record.batch_run_id == "run-7"
    assert record.batch_mode == "fast"
    assert record.batch == 2
    line = JSONExtrasFormatter().format(record)
    assert "[run run-7] Cleaning batch complete" in line
    assert line.endswith('{"batch_mode": "fast", "batch": 2}')


def test_setup_logging_writes_to_given_stream(monkeypatch: pytest.MonkeyPatch) -> None:
    name = "keyword_pipeline_stream_test"
    monkeypatch.setattr(pipeline_logging, "ROOT_LOGGER_NAME", name)
    stream = io.StringIO()
    logger = logging.getLogger(name)

    try:
        setup_logging("INFO", stream=stream)
        logger.getChild("services").info("Checkpoint saved", extra={"batch_run_id": "r1"})

        assert stream.getvalue().rstrip().endswith("| [run r1] Checkpoint saved")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
        logger.propagate = True
