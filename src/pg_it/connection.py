"""Pooled connections with per-connection setup.

Provides ``ConnectionProvider``, which wraps an SQLAlchemy ``AsyncEngine``
(the pool, using the ``asyncpg`` driver) and runs a list of connection
decorators on every acquisition.  ``enable_statement_logging`` is the
decorator the data source installs by default.

Usage:
    from pg_it.connection import (
        ConnectionProvider,
        create_async_engine_pooled,
        enable_statement_logging,
    )

    engine = create_async_engine_pooled("postgresql+asyncpg://me@localhost/testbase")
    provider = ConnectionProvider(engine, decorators=[enable_statement_logging])

    async with provider.connection() as conn:
        await conn.execute(text("SELECT 1"))
    await provider.dispose()
"""

import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine

logger = logging.getLogger(__name__)

ConnectionDecorator = Callable[[AsyncConnection], Awaitable[None]]


def create_async_engine_pooled(database_url: str | URL, **kwargs: Any) -> AsyncEngine:
    """Create an async SQLAlchemy engine with connection pooling.

    Default pool settings:

    - ``pool_size=5``: Reasonable default for a test suite.
    - ``max_overflow=10``: Allow burst connections.
    - ``pool_pre_ping=True``: Validate connections before checkout.
    - ``pool_recycle=300``: Recycle connections every 5 minutes.

    Args:
        database_url: PostgreSQL URL.  ``postgres://`` and ``postgresql://``
            string URLs are normalized to ``postgresql+asyncpg://``.
        **kwargs: Additional keyword arguments forwarded to
            ``create_async_engine``; they override the defaults.

    Returns:
        Configured ``AsyncEngine``.
    """
    if isinstance(database_url, str):
        if database_url.startswith("postgres://"):
            database_url = "postgresql://" + database_url[len("postgres://"):]
        if database_url.startswith("postgresql://"):
            database_url = "postgresql+asyncpg://" + database_url[len("postgresql://"):]

    defaults: dict[str, Any] = {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "echo": False,
    }
    # Caller kwargs override defaults
    merged = {**defaults, **kwargs}

    return create_async_engine(database_url, **merged)


async def enable_statement_logging(connection: AsyncConnection) -> None:
    """Make the server log every statement run on this connection.

    The setting is session-wide, so it is committed right away and the
    connection is handed out without an open transaction.
    """
    await connection.execute(text("SET log_statement = 'all'"))
    await connection.commit()


class ConnectionProvider:
    """Hands out pooled connections, patching each one on acquisition.

    The pool is composed, not subclassed: the provider owns an
    ``AsyncEngine`` and applies ``decorators`` in order every time a
    connection is acquired.

    Args:
        engine: Pooled async engine.
        decorators: Async callables run on each acquired connection.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        decorators: Sequence[ConnectionDecorator] = (),
    ) -> None:
        self._engine = engine
        self._decorators: tuple[ConnectionDecorator, ...] = tuple(decorators)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @property
    def decorators(self) -> tuple[ConnectionDecorator, ...]:
        return self._decorators

    async def acquire(self, decorate: bool = True) -> AsyncConnection:
        """Check a connection out of the pool.

        Args:
            decorate: Run the decorators.  Administrative operations skip
                them and use the bare pooled connection.

        Returns:
            An open ``AsyncConnection``.  Give it back with ``release()``.

        Raises:
            Exception: Whatever a decorator raises; the connection is
                released first.
        """
        connection = await self._engine.connect()
        if decorate:
            try:
                for decorator in self._decorators:
                    await decorator(connection)
            except BaseException:
                await connection.close()
                raise
        return connection

    async def release(self, connection: AsyncConnection) -> None:
        """Return a connection to the pool."""
        await connection.close()

    @asynccontextmanager
    async def connection(self, decorate: bool = True) -> AsyncIterator[AsyncConnection]:
        """Acquire a connection for the duration of an ``async with`` block."""
        conn = await self.acquire(decorate=decorate)
        try:
            yield conn
        finally:
            await self.release(conn)

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncConnection]:
        """Bare connection inside one transaction.

        Commits when the block succeeds, rolls back when it raises.
        """
        async with self._engine.begin() as conn:
            yield conn

    async def execute(self, statements: Sequence[str]) -> None:
        """Run administrative statements in a single transaction.

        Statements go to the driver as-is, with no bind parameter parsing.
        """
        async with self.begin() as conn:
            for sql in statements:
                logger.debug(f"Executing: {sql}")
                await conn.exec_driver_sql(sql)

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` on a decorated connection."""
        async with self.connection() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self._engine.dispose()
