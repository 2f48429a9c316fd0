"""Pooled PostgreSQL data source for integration tests.

``PostgresITDataSource`` locates a test database, builds a connection pool
for it and offers the operations integration tests need to reset state:

- truncate tables in one transaction
- drop and recreate the schema
- list tables in foreign-key order
- copy table contents to and from disk with ``COPY``

Usage:
    from pg_it import PostgresITDataSource

    data_source = (
        PostgresITDataSource.builder()
        .from_property("testbase")
        .from_environment("LOCAL_POSTGRESQL_URL")
        .build()
    )

    async with data_source:
        await data_source.truncate_all_tables()
        async with data_source.connection() as conn:
            await conn.execute(text("INSERT INTO foo VALUES ('a')"))
        await data_source.copy_all_tables_to_disk()
"""

import logging
import re
import tempfile
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from pathlib import Path
from typing import Any, Literal

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine

from pg_it.config.models import ITConfig
from pg_it.connection import (
    ConnectionProvider,
    create_async_engine_pooled,
    enable_statement_logging,
)
from pg_it.errors import DumpFolderError
from pg_it.locations import (
    ConnectionDescriptor,
    DatabaseFromEnvironment,
    DatabaseFromProperty,
    Environment,
    Location,
    locate_database,
)
from pg_it.ordering import order_tables
from pg_it.schema.introspector import SchemaIntrospector

logger = logging.getLogger(__name__)

DUMP_FOLDER_PROPERTY = "postgresql.dump.folder"

_UNSAFE_IDENTIFIER_CHARS = re.compile(r"[^0-9_a-zA-Z]")


def sanitize_identifier(name: str) -> str:
    """Strip every character outside ``[0-9_a-zA-Z]`` from a table name.

    Raises:
        ValueError: If nothing is left.
    """
    cleaned = _UNSAFE_IDENTIFIER_CHARS.sub("", name)
    if not cleaned:
        raise ValueError(f"Not a usable table name: {name!r}")
    return cleaned


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class PostgresITDataSource:
    """A pooling data source for integration testing with PostgreSQL.

    The database is located when the data source is constructed: each
    location is tried in order, then (if enabled) the ``$PG*`` fallback.

    Args:
        locations: Locations to search, in order.
        use_fallback: If no location finds a database, use the ``$PG*``
            environment variables and the login name.
        environment: Inputs the locations read.  Defaults to the current
            process, with properties from ``config``.
        config: pg-it configuration.  Defaults to ``ITConfig()``.
        engine_factory: Builds the pooled engine from a URL.

    Raises:
        DatabaseNotFoundError: If no database can be located.
    """

    def __init__(
        self,
        locations: Iterable[Location],
        use_fallback: bool = True,
        *,
        environment: Environment | None = None,
        config: ITConfig | None = None,
        engine_factory: Callable[..., AsyncEngine] = create_async_engine_pooled,
    ) -> None:
        self._config = config or ITConfig()
        self._environment = environment or Environment.from_process(
            self._config.properties
        )
        self._descriptor = locate_database(
            list(locations), self._environment, use_fallback
        )

        engine = engine_factory(
            self._descriptor.sqlalchemy_url(), **self._config.pool.engine_kwargs()
        )
        decorators = [enable_statement_logging] if self._config.statement_logging else []
        self._provider = ConnectionProvider(engine, decorators=decorators)
        logger.debug(f"Data source for {self._descriptor}, schema {self.schema}")

    # ------------------------------------------------------------------
    # Construction helpers
    # ------------------------------------------------------------------

    @classmethod
    def for_location(cls, location: Location, **kwargs: Any) -> "PostgresITDataSource":
        """Data source for a single location, with fallback enabled."""
        return cls([location], True, **kwargs)

    @classmethod
    def for_database(
        cls,
        database_name: str,
        port_property: str | None = None,
        **kwargs: Any,
    ) -> "PostgresITDataSource":
        """Data source for a database whose port is held in a property.

        The property defaults to ``postgresql.<database_name>.port``.  Falls
        back to the ``$PG*`` environment variables.
        """
        return cls.for_location(
            DatabaseFromProperty(database_name, port_property), **kwargs
        )

    @staticmethod
    def builder() -> "Builder":
        """Construct a default builder."""
        return Builder()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def descriptor(self) -> ConnectionDescriptor:
        """Where the located database is."""
        return self._descriptor

    @property
    def schema(self) -> str:
        return self._config.schema_name

    @property
    def provider(self) -> ConnectionProvider:
        return self._provider

    @property
    def dump_folder(self) -> Path:
        """Folder the database server copies table data to and from.

        Taken from the ``postgresql.dump.folder`` property, then the config
        ``dump_folder``; otherwise ``pg_dumps`` under the temp directory,
        created when missing.

        Raises:
            DumpFolderError: If the default folder cannot be created.
        """
        location = (
            self._environment.get_property(DUMP_FOLDER_PROPERTY)
            or self._config.dump_folder
        )
        if location:
            return Path(location)

        folder = Path(tempfile.gettempdir()) / "pg_dumps"
        try:
            folder.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DumpFolderError(
                f"Could not make temp dir for postgres dumps: {folder}"
            ) from e
        return folder

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    async def acquire(self) -> AsyncConnection:
        """Pooled connection with statement logging enabled."""
        return await self._provider.acquire()

    async def release(self, connection: AsyncConnection) -> None:
        await self._provider.release(connection)

    def connection(self) -> AbstractAsyncContextManager[AsyncConnection]:
        """``async with data_source.connection() as conn: ...``"""
        return self._provider.connection()

    async def test_connection(self) -> bool:
        """Check the located database answers ``SELECT 1``."""
        return await self._provider.test_connection()

    async def close(self) -> None:
        """Close the pool."""
        await self._provider.dispose()

    async def __aenter__(self) -> "PostgresITDataSource":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Resetting state
    # ------------------------------------------------------------------

    def _qualified(self, table: str) -> str:
        """``<schema>.<table>``, both sanitized."""
        return f"{sanitize_identifier(self.schema)}.{sanitize_identifier(table)}"

    async def truncate_tables(self, *tables: str) -> None:
        """Truncate tables (``CASCADE``).

        Runs in a single transaction, so if one fails (table listed, but
        doesn't exist) all tables keep their content.

        Args:
            *tables: Table names of the schema.  Characters outside
                ``[0-9_a-zA-Z]`` are stripped.
        """
        statements = [f"TRUNCATE {self._qualified(t)} CASCADE" for t in tables]
        if not statements:
            return
        await self._provider.execute(statements)

    async def truncate_all_tables(self) -> None:
        """Truncate every table of the schema."""
        await self.truncate_tables(*await self.all_table_names())

    async def wipe(self) -> None:
        """Drop and create the schema.

        The fastest way to empty the database.
        """
        schema = sanitize_identifier(self.schema)
        await self._provider.execute(
            [
                f"DROP SCHEMA IF EXISTS {schema} CASCADE",
                f"CREATE SCHEMA {schema}",
            ]
        )

    @asynccontextmanager
    async def _introspector(self) -> AsyncIterator[SchemaIntrospector]:
        async with SchemaIntrospector(
            self._descriptor.conninfo(), schema_name=self.schema
        ) as introspector:
            yield introspector

    async def all_table_names(self) -> list[str]:
        """List all tables of the schema, referenced tables first.

        Tables with foreign keys come after the tables they refer to.

        Raises:
            TableCycleError: If tables have mutual foreign keys.
        """
        async with self._introspector() as introspector:
            snapshot = await introspector.snapshot()
        return order_tables(snapshot.tables, snapshot.foreign_keys)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def copy_tables_to_disk(self, *tables: str) -> None:
        """Ask the database to copy the content of tables to disk."""
        await self._copy_data(tables, "TO")

    async def copy_all_tables_to_disk(self) -> None:
        await self.copy_tables_to_disk(*await self.all_table_names())

    async def copy_tables_from_disk(self, *tables: str) -> None:
        """Ask the database to load the dump files back into the tables.

        Pass tables in foreign-key order (as ``all_table_names()`` returns
        them) so referenced rows are loaded first.
        """
        await self._copy_data(tables, "FROM")

    async def copy_all_tables_from_disk(self) -> None:
        await self.copy_tables_from_disk(*await self.all_table_names())

    def dump_file(self, table: str, folder: Path | None = None) -> Path:
        """Dump file of a table: ``<dump folder>/<table>.dat``."""
        return (folder or self.dump_folder) / f"{sanitize_identifier(table)}.dat"

    async def _copy_data(
        self,
        tables: Iterable[str],
        direction: Literal["TO", "FROM"],
    ) -> None:
        tables = list(tables)
        if not tables:
            return
        folder = self.dump_folder
        statements = []
        for table in tables:
            path = _quote_literal(str(self.dump_file(table, folder)))
            statements.append(f"COPY {self._qualified(table)} {direction} {path}")
        await self._provider.execute(statements)


class Builder:
    """Builder for a ``PostgresITDataSource``.

    Locations are searched in the order they are added.

    Example:
        data_source = (
            PostgresITDataSource.builder()
            .from_property("testbase")
            .from_environment("LOCAL_POSTGRESQL_URL")
            .without_fallback()
            .build()
        )
    """

    def __init__(self) -> None:
        self._locations: list[Location] = []
        self._use_fallback: bool | None = None
        self._environment: Environment | None = None
        self._config: ITConfig | None = None

    def from_property(
        self, database_name: str, port_property: str | None = None
    ) -> "Builder":
        """Database on localhost, port from a property.

        The property defaults to ``postgresql.<database_name>.port``.
        """
        self._locations.append(DatabaseFromProperty(database_name, port_property))
        return self

    def from_environment(self, variable: str) -> "Builder":
        """Database URL from an environment variable.

        The URL has:

        - no scheme or scheme ``postgres``/``postgresql``
        - optional user and password
        - hostname
        - port (optional, defaults to 5432)
        - database
        """
        self._locations.append(DatabaseFromEnvironment(variable))
        return self

    def from_resolver(self, location: Location) -> "Builder":
        """Any callable ``Environment -> ConnectionDescriptor | None``."""
        self._locations.append(location)
        return self

    def with_fallback(self) -> "Builder":
        """Allow the ``$PG*`` environment variables for database discovery.

        - user is $PGUSER or the login name
        - password is $PGPASSWORD or the login name
        - host is $PGHOST or localhost
        - port is $PGPORT or 5432
        - database is $PGDATABASE or the login name
        """
        self._use_fallback = self._set_or_fail(self._use_fallback, True, "with_fallback")
        return self

    def without_fallback(self) -> "Builder":
        """Disallow the fallback location."""
        self._use_fallback = self._set_or_fail(self._use_fallback, False, "without_fallback")
        return self

    def with_environment(self, environment: Environment) -> "Builder":
        self._environment = environment
        return self

    def with_config(self, config: ITConfig) -> "Builder":
        self._config = config
        return self

    def build(self, **kwargs: Any) -> PostgresITDataSource:
        """Build the data source.  Fallback is enabled unless disabled."""
        return PostgresITDataSource(
            self._locations,
            True if self._use_fallback is None else self._use_fallback,
            environment=self._environment,
            config=self._config,
            **kwargs,
        )

    @staticmethod
    def _set_or_fail(old_value: bool | None, new_value: bool, name: str) -> bool:
        if old_value is not None:
            raise ValueError(
                f"Cannot set {name} to: {new_value} has already been set to: {old_value}"
            )
        return new_value
