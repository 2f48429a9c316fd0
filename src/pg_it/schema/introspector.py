"""PostgreSQL schema introspection via pg_catalog.

Queries the live database for what table ordering needs:
- Table names of a schema (``pg_tables``)
- Foreign key edges between those tables (``pg_constraint``)

Uses psycopg (v3) async connections.

Usage:
    from pg_it.schema.introspector import SchemaIntrospector

    async with SchemaIntrospector(conninfo) as introspector:
        tables = await introspector.get_tables()
        edges = await introspector.get_foreign_keys()
"""

import logging

from psycopg import AsyncConnection

from pg_it.schema.models import ForeignKeyEdge, SchemaSnapshot

logger = logging.getLogger(__name__)


class SchemaIntrospector:
    """Introspects table names and foreign keys of one PostgreSQL schema.

    Args:
        database_url: libpq conninfo string or ``postgresql://`` URL.
        schema_name: Schema to introspect (default: public).
        connect_timeout: Seconds to wait for the connection, appended to the
            URL unless it already sets ``connect_timeout``.
    """

    def __init__(
        self,
        database_url: str,
        schema_name: str = "public",
        connect_timeout: int = 10,
    ) -> None:
        self._database_url = database_url
        self._schema_name = schema_name
        self._connect_timeout = connect_timeout
        self._conn: AsyncConnection | None = None

    @property
    def schema_name(self) -> str:
        return self._schema_name

    async def __aenter__(self) -> "SchemaIntrospector":
        """Async context manager entry - opens connection."""
        kwargs = {}
        if "connect_timeout" not in self._database_url:
            kwargs["connect_timeout"] = self._connect_timeout

        self._conn = await AsyncConnection.connect(self._database_url, **kwargs)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit - closes connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    def _require_connection(self) -> AsyncConnection:
        if not self._conn:
            raise RuntimeError("Introspector not connected. Use async with statement.")
        return self._conn

    async def test_connection(self) -> bool:
        """Run ``SELECT 1`` and report whether the database answered."""
        conn = self._require_connection()
        async with conn.cursor() as cur:
            await cur.execute("SELECT 1")
            row = await cur.fetchone()
            return row is not None and row[0] == 1

    async def get_tables(self) -> list[str]:
        """Get all table names in the schema, sorted."""
        conn = self._require_connection()
        query = """
            SELECT tablename
            FROM pg_tables
            WHERE schemaname = %s
            ORDER BY tablename
        """
        async with conn.cursor() as cur:
            await cur.execute(query, (self._schema_name,))
            return [row[0] for row in await cur.fetchall()]

    async def get_foreign_keys(self) -> list[ForeignKeyEdge]:
        """Get foreign key edges (dependent table -> referenced table).

        Composite keys appear once per constraint.  Duplicate edges from
        several constraints between the same two tables are kept, since the
        constraint name tells them apart.
        """
        conn = self._require_connection()
        query = """
            SELECT
                c.conname,
                ft.relname AS dependent_table,
                tt.relname AS referenced_table
            FROM pg_constraint AS c
            JOIN pg_namespace AS n ON c.connamespace = n.oid
            JOIN pg_class AS ft ON c.conrelid = ft.oid
            JOIN pg_class AS tt ON c.confrelid = tt.oid
            WHERE n.nspname = %s
              AND c.contype = 'f'
            ORDER BY ft.relname, c.conname
        """
        async with conn.cursor() as cur:
            await cur.execute(query, (self._schema_name,))
            return [
                ForeignKeyEdge(table=dependent, references=referenced, constraint=name)
                for name, dependent, referenced in await cur.fetchall()
            ]

    async def snapshot(self) -> SchemaSnapshot:
        """Read tables and foreign keys in one go."""
        tables = await self.get_tables()
        foreign_keys = await self.get_foreign_keys()
        logger.debug(
            f"Introspected schema {self._schema_name}: "
            f"{len(tables)} tables, {len(foreign_keys)} foreign keys"
        )
        return SchemaSnapshot(
            schema_name=self._schema_name,
            tables=tables,
            foreign_keys=foreign_keys,
        )
