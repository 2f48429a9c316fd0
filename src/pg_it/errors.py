"""Exceptions raised by pg-it.

All library errors derive from ``PgItError`` so callers can catch them in
one place.  Database driver errors (SQLAlchemy, psycopg) are not wrapped.
"""


class PgItError(Exception):
    """Base class for pg-it errors."""

    pass


class DatabaseNotFoundError(PgItError):
    """Raised when no location resolves to a database and fallback is off."""

    pass


class DumpFolderError(PgItError):
    """Raised when the folder for table dumps cannot be created."""

    pass


class TableCycleError(PgItError):
    """Raised when foreign keys form a cycle and no table order exists.

    Attributes:
        tables: Sorted names of the tables that could not be ordered.
    """

    def __init__(self, tables: list[str]) -> None:
        self.tables: list[str] = sorted(tables)
        super().__init__(
            "Tables have mutual foreign key. No order can be determined for: "
            + ", ".join(self.tables)
        )
