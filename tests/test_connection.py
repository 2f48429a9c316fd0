"""Tests for pooled connections and connection decorators.

Uses a mocked AsyncEngine -- no database needed.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pg_it.connection import (
    ConnectionProvider,
    create_async_engine_pooled,
    enable_statement_logging,
)


def _make_mock_engine() -> tuple[MagicMock, AsyncMock]:
    """Create a mock AsyncEngine whose connect() and begin() yield one connection."""
    conn = AsyncMock()
    engine = MagicMock()
    engine.connect = AsyncMock(return_value=conn)
    engine.begin.return_value.__aenter__.return_value = conn
    engine.begin.return_value.__aexit__.return_value = False
    engine.dispose = AsyncMock()
    return engine, conn


def _executed_sql(conn: AsyncMock) -> list[str]:
    return [str(c.args[0]) for c in conn.execute.call_args_list]


def _driver_sql(conn: AsyncMock) -> list[str]:
    return [c.args[0] for c in conn.exec_driver_sql.call_args_list]


class TestCreateAsyncEnginePooled:
    """Verify URL normalization and pool defaults."""

    @pytest.mark.parametrize(
        "url",
        [
            "postgres://me@db/testbase",
            "postgresql://me@db/testbase",
            "postgresql+asyncpg://me@db/testbase",
        ],
    )
    def test_normalizes_to_asyncpg(self, url: str) -> None:
        with patch("pg_it.connection.create_async_engine") as mock_create:
            create_async_engine_pooled(url)
        assert mock_create.call_args.args[0] == "postgresql+asyncpg://me@db/testbase"

    def test_default_pool_settings(self) -> None:
        with patch("pg_it.connection.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql://me@db/testbase")
        assert mock_create.call_args.kwargs == {
            "pool_size": 5,
            "max_overflow": 10,
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "echo": False,
        }

    def test_kwargs_override_defaults(self) -> None:
        with patch("pg_it.connection.create_async_engine") as mock_create:
            create_async_engine_pooled("postgresql://me@db/testbase", pool_size=1, echo=True)
        assert mock_create.call_args.kwargs["pool_size"] == 1
        assert mock_create.call_args.kwargs["echo"] is True


class TestEnableStatementLogging:
    """Verify the statement logging decorator."""

    def test_sets_log_statement_and_commits(self) -> None:
        conn = AsyncMock()
        asyncio.run(enable_statement_logging(conn))
        assert _executed_sql(conn) == ["SET log_statement = 'all'"]
        conn.commit.assert_awaited_once()


class TestConnectionProvider:
    """Verify ConnectionProvider applies decorators and transactions."""

    def test_decorators_run_on_every_acquire(self) -> None:
        engine, conn = _make_mock_engine()
        calls: list[str] = []

        async def first(c) -> None:
            calls.append("first")

        async def second(c) -> None:
            calls.append("second")

        provider = ConnectionProvider(engine, decorators=[first, second])

        async def run() -> None:
            await provider.acquire()
            await provider.acquire()

        asyncio.run(run())
        assert calls == ["first", "second", "first", "second"]

    def test_undecorated_acquire(self) -> None:
        engine, conn = _make_mock_engine()
        decorator = AsyncMock()
        provider = ConnectionProvider(engine, decorators=[decorator])

        asyncio.run(provider.acquire(decorate=False))

        decorator.assert_not_awaited()

    def test_failing_decorator_releases_connection(self) -> None:
        engine, conn = _make_mock_engine()
        decorator = AsyncMock(side_effect=RuntimeError("permission denied"))
        provider = ConnectionProvider(engine, decorators=[decorator])

        with pytest.raises(RuntimeError, match="permission denied"):
            asyncio.run(provider.acquire())

        conn.close.assert_awaited_once()

    def test_connection_context_releases(self) -> None:
        engine, conn = _make_mock_engine()
        provider = ConnectionProvider(engine)

        async def run() -> None:
            async with provider.connection() as c:
                assert c is conn
                conn.close.assert_not_awaited()

        asyncio.run(run())
        conn.close.assert_awaited_once()

    def test_execute_uses_one_transaction(self) -> None:
        engine, conn = _make_mock_engine()
        provider = ConnectionProvider(engine)

        asyncio.run(provider.execute(["TRUNCATE foo CASCADE", "TRUNCATE bar CASCADE"]))

        engine.begin.assert_called_once()
        assert _driver_sql(conn) == ["TRUNCATE foo CASCADE", "TRUNCATE bar CASCADE"]
        conn.execute.assert_not_awaited()

    def test_execute_passes_colons_through(self) -> None:
        """A colon in a path is not taken for a bind parameter."""
        engine, conn = _make_mock_engine()
        provider = ConnectionProvider(engine)

        asyncio.run(provider.execute(["COPY foo TO '/srv/:cache/foo.dat'"]))

        assert _driver_sql(conn) == ["COPY foo TO '/srv/:cache/foo.dat'"]

    def test_test_connection(self) -> None:
        engine, conn = _make_mock_engine()
        conn.execute.return_value = MagicMock(scalar=MagicMock(return_value=1))
        provider = ConnectionProvider(engine)

        assert asyncio.run(provider.test_connection()) is True
        assert _executed_sql(conn) == ["SELECT 1"]

    def test_dispose(self) -> None:
        engine, _ = _make_mock_engine()
        provider = ConnectionProvider(engine)
        asyncio.run(provider.dispose())
        engine.dispose.assert_awaited_once()
