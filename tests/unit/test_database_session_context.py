"""Unit tests for database session context finalization behavior."""

from __future__ import annotations

from typing import Any

import pytest

from keyword_pipeline.core.database import get_session_context


class _FakeSessionContextManager:
    def __init__(self, session: "_FakeSession") -> None:
        self._session = session

    async def __aenter__(self) -> "_FakeSession":
        return self._session

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        return None


class _FakeSessionMaker:
    def __init__(self, session: "_FakeSession") -> None:
        self._session = session

    def __call__(self) -> _FakeSessionContextManager:
        return _FakeSessionContextManager(self._session)


class _FakeSession:
    def __init__(self) -> None:
        self.commit_calls = 0
        self.rollback_calls = 0
        self.rollback_error: Exception | None = None

    async def commit(self) -> None:
        self.commit_calls += 1

    async def rollback(self) -> None:
        self.rollback_calls += 1
        if self.rollback_error is not None:
            raise self.rollback_error


@pytest.mark.asyncio
async def test_get_session_context_commits_on_clean_exit() -> None:
    session = _FakeSession()

    async with get_session_context(_FakeSessionMaker(session)) as yielded:
        assert yielded is session

    assert session.commit_calls == 1
    assert session.rollback_calls == 0


@pytest.mark.asyncio
async def test_get_session_context_read_only_mode_skips_commit() -> None:
    session = _FakeSession()

    async with get_session_context(_FakeSessionMaker(session), commit_on_exit=False):
        pass

    assert session.commit_calls == 0
    assert session.rollback_calls == 0


@pytest.mark.asyncio
async def test_get_session_context_rolls_back_and_reraises() -> None:
    session = _FakeSession()

    with pytest.raises(RuntimeError, match="write failed"):
        async with get_session_context(_FakeSessionMaker(session)):
            raise RuntimeError("write failed")

    assert session.commit_calls == 0
    assert session.rollback_calls == 1


@pytest.mark.asyncio
async def test_get_session_context_keeps_original_error_when_rollback_fails() -> None:
    session = _FakeSession()
    session.rollback_error = ConnectionError("connection is closed")

    with pytest.raises(RuntimeError, match="write failed"):
        async with get_session_context(_FakeSessionMaker(session)):
            raise RuntimeError("write failed")

    assert session.rollback_calls == 1


@pytest.mark.asyncio
async def test_get_session_context_uses_process_wide_factory_by_default(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    session = _FakeSession()
    monkeypatch.setattr(
        "keyword_pipeline.core.database.get_session_maker",
        lambda: _FakeSessionMaker(session),
    )

    async with get_session_context() as yielded:
        assert yielded is session

    assert session.commit_calls == 1
