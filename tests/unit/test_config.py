"""Unit tests for process-wide settings."""

from __future__ import annotations

import pytest

from keyword_pipeline import config
from keyword_pipeline.config import Settings
from keyword_pipeline.schemas.pipeline import BatchConfig


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("postgres://u:p@db:5432/kw", "postgresql+asyncpg://u:p@db:5432/kw"),
        ("postgresql://u:p@db/kw", "postgresql+asyncpg://u:p@db/kw"),
        ("postgresql+psycopg2://u:p@db/kw", "postgresql+asyncpg://u:p@db/kw"),
        ("postgresql+asyncpg://u:p@db/kw", "postgresql+asyncpg://u:p@db/kw"),
        ("sqlite:///./local.db", "sqlite+aiosqlite:///./local.db"),
        ("  sqlite+aiosqlite:///./local.db  ", "sqlite+aiosqlite:///./local.db"),
    ],
)
def test_database_url_is_normalized_for_async_drivers(raw: str, expected: str) -> None:
    assert Settings(_env_file=None, database_url=raw).database_url == expected


def test_settings_read_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://db/kw")
    monkeypatch.setenv("BATCH_SIZE", "25")
    monkeypatch.setenv("LOG_LEVEL", " debug ")

    settings = Settings(_env_file=None)

    assert settings.database_url == "postgresql+asyncpg://db/kw"
    assert settings.batch_size == 25
    assert settings.log_level == "DEBUG"
    assert settings.is_sqlite is False


def test_default_database_is_sqlite(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("DATABASE_URL", raising=False)

    assert Settings(_env_file=None).is_sqlite is True


def test_batch_config_from_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        config,
        "settings",
        Settings(_env_file=None, batch_size=7, checkpoint_interval=21, random_seed=3),
    )

    batch_config = BatchConfig.from_settings()

    assert batch_config.batch_size == 7
    assert batch_config.checkpoint_interval == 21
    assert batch_config.random_seed == 3
