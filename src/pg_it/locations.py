"""Locating the test database.

A location is any callable taking an ``Environment`` and returning a
``ConnectionDescriptor`` or ``None`` when it cannot find a database.
``locate_database()`` tries an ordered list of locations and falls back to
the libpq ``PG*`` environment variables.

Usage:
    from pg_it.locations import (
        DatabaseFromEnvironment,
        DatabaseFromProperty,
        Environment,
        locate_database,
    )

    descriptor = locate_database(
        [DatabaseFromProperty("testbase"), DatabaseFromEnvironment("LOCAL_POSTGRESQL_URL")],
        Environment.from_process(),
    )
"""

import getpass
import logging
import os
import re
from collections.abc import Callable, Iterable, Mapping
from typing import Any
from urllib.parse import unquote

from psycopg.conninfo import make_conninfo
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.engine import URL

from pg_it.errors import DatabaseNotFoundError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 5432


# ============================================================================
# Models
# ============================================================================


class Environment(BaseModel):
    """Snapshot of the process inputs locations read from.

    ``properties`` plays the role of JVM system properties: they come from
    the ``[properties]`` table of pg-it.toml and ``-D key=value`` options.
    """

    model_config = ConfigDict(frozen=True)

    variables: dict[str, str] = Field(default_factory=dict)
    properties: dict[str, str] = Field(default_factory=dict)
    user_name: str | None = None

    @classmethod
    def from_process(cls, properties: Mapping[str, str] | None = None) -> "Environment":
        """Capture ``os.environ`` and the current login name."""
        try:
            user_name = getpass.getuser()
        except (KeyError, OSError):
            user_name = None
        return cls(
            variables=dict(os.environ),
            properties=dict(properties or {}),
            user_name=user_name,
        )

    def get_variable(self, name: str, default: str | None = None) -> str | None:
        return self.variables.get(name, default)

    def get_property(self, name: str, default: str | None = None) -> str | None:
        return self.properties.get(name, default)


class ConnectionDescriptor(BaseModel):
    """Where the database is and how to log in."""

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    database: str
    user: str | None = None
    password: str | None = None
    source: str = ""   # which location produced this descriptor

    def sqlalchemy_url(self, drivername: str = "postgresql+asyncpg") -> URL:
        """URL for the pooled SQLAlchemy engine."""
        return URL.create(
            drivername,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
        )

    def conninfo(self) -> str:
        """libpq conninfo string for psycopg."""
        params: dict[str, Any] = {
            "host": self.host,
            "port": self.port,
            "dbname": self.database,
        }
        if self.user is not None:
            params["user"] = self.user
        if self.password is not None:
            params["password"] = self.password
        return make_conninfo(**params)

    def display_url(self) -> str:
        """URL with the password masked, safe for logs."""
        return self.sqlalchemy_url("postgresql").render_as_string(hide_password=True)

    def __str__(self) -> str:
        return self.display_url()


Location = Callable[[Environment], ConnectionDescriptor | None]


# ============================================================================
# URL parsing
# ============================================================================

POSTGRES_URL_REGEX = re.compile(
    r"(?:postgres(?:ql)?://)?"
    r"(?:([^:@/]+)(?::([^@/]*))?@)?"
    r"([^:/]+)"
    r"(?::([1-9][0-9]*))?"
    r"/(.+)"
)


def parse_database_url(url: str, source: str = "") -> ConnectionDescriptor | None:
    """Parse ``[postgres[ql]://][user[:password]@]host[:port]/database``.

    Args:
        url: Database URL.  The scheme is optional; only ``postgres`` and
            ``postgresql`` are accepted.  Port defaults to 5432.
        source: Label stored on the descriptor.

    Returns:
        ConnectionDescriptor, or ``None`` if the URL doesn't match.

    Examples:
        >>> parse_database_url("postgres://me:secret@db:6543/testbase").port
        6543
        >>> parse_database_url("mysql://db/testbase") is None
        True
    """
    match = POSTGRES_URL_REGEX.fullmatch(url.strip())
    if match is None:
        return None

    user, password, host, port, database = match.groups()
    return ConnectionDescriptor(
        host=host,
        port=int(port) if port else DEFAULT_PORT,
        database=database,
        user=unquote(user) if user is not None else None,
        password=unquote(password) if password is not None else None,
        source=source,
    )


# ============================================================================
# Locations
# ============================================================================


def _parse_port(value: str, origin: str) -> int:
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Port in {origin} is not a number: {value!r}") from e


class DatabaseFromProperty:
    """Database on localhost whose port is given in a property.

    User and password are both the current login name.

    Args:
        database_name: Name of the database.
        port_property: Property holding the port.  Defaults to
            ``postgresql.<database_name>.port``, the convention for matching
            ports and databases.
    """

    def __init__(self, database_name: str, port_property: str | None = None) -> None:
        self.database_name = database_name
        self.port_property = port_property or f"postgresql.{database_name}.port"

    def __call__(self, environment: Environment) -> ConnectionDescriptor | None:
        port = environment.get_property(self.port_property)
        if port is None:
            return None
        return ConnectionDescriptor(
            host=DEFAULT_HOST,
            port=_parse_port(port, f"property {self.port_property}"),
            database=self.database_name,
            user=environment.user_name,
            password=environment.user_name,
            source=f"property {self.port_property}",
        )

    def __repr__(self) -> str:
        return f"DatabaseFromProperty({self.database_name!r}, {self.port_property!r})"


class DatabaseFromEnvironment:
    """Database URL held in an environment variable.

    See ``parse_database_url()`` for the accepted format.  A value that
    doesn't parse is logged and skipped, so the next location is tried.
    """

    def __init__(self, variable: str) -> None:
        self.variable = variable

    def __call__(self, environment: Environment) -> ConnectionDescriptor | None:
        url = environment.get_variable(self.variable)
        if url is None:
            return None
        descriptor = parse_database_url(url, source=f"environment {self.variable}")
        if descriptor is None:
            logger.warning(
                f"Cannot match environment url in ${self.variable} - falling back"
            )
        return descriptor

    def __repr__(self) -> str:
        return f"DatabaseFromEnvironment({self.variable!r})"


def pg_environment_fallback(environment: Environment) -> ConnectionDescriptor:
    """libpq-style defaults from ``$PG*`` with the login name as last resort.

    - user is $PGUSER or the login name
    - password is $PGPASSWORD or the login name
    - host is $PGHOST or localhost
    - port is $PGPORT or 5432
    - database is $PGDATABASE or the login name
    """
    user_name = environment.user_name
    database = environment.get_variable("PGDATABASE", user_name)
    if database is None:
        raise DatabaseNotFoundError(
            "Cannot locate database: $PGDATABASE is unset and the login name is unknown"
        )
    return ConnectionDescriptor(
        host=environment.get_variable("PGHOST", DEFAULT_HOST),
        port=_parse_port(environment.get_variable("PGPORT", str(DEFAULT_PORT)), "$PGPORT"),
        database=database,
        user=environment.get_variable("PGUSER", user_name),
        password=environment.get_variable("PGPASSWORD", user_name),
        source="PG* environment fallback",
    )


def locate_database(
    locations: Iterable[Location],
    environment: Environment,
    use_fallback: bool = True,
) -> ConnectionDescriptor:
    """Return the descriptor of the first location that finds a database.

    Args:
        locations: Locations to try, in order.
        environment: Process inputs the locations read.
        use_fallback: If no location matches, use ``pg_environment_fallback``.

    Returns:
        ConnectionDescriptor of the located database.

    Raises:
        DatabaseNotFoundError: If nothing matched and fallback is disabled.
    """
    for location in locations:
        descriptor = location(environment)
        if descriptor is not None:
            logger.debug(f"Located database via {location!r}: {descriptor}")
            return descriptor

    if use_fallback:
        descriptor = pg_environment_fallback(environment)
        logger.debug(f"Located database via fallback: {descriptor}")
        return descriptor

    raise DatabaseNotFoundError("Cannot locate database")
