"""pg-it: PostgreSQL data source for integration tests.

Locates a test database, pools connections to it, resets test state
(truncate, wipe) and snapshots table contents with ``COPY``.  Tables are
ordered so referenced tables come before the tables that depend on them.

Usage:
    from pg_it import PostgresITDataSource, order_tables
    from pg_it import DatabaseFromProperty, DatabaseFromEnvironment, Environment
    from pg_it import load_config, ITConfig
"""

__version__ = "0.1.0"

# Data source
from pg_it.datasource import Builder, PostgresITDataSource

# Locations
from pg_it.locations import (
    ConnectionDescriptor,
    DatabaseFromEnvironment,
    DatabaseFromProperty,
    Environment,
    locate_database,
    parse_database_url,
    pg_environment_fallback,
)

# Connections
from pg_it.connection import ConnectionProvider, enable_statement_logging

# Ordering
from pg_it.ordering import build_dependency_graph, order_tables

# Config
from pg_it.config.loader import load_config
from pg_it.config.models import ITConfig, PoolSettings

# Schema
from pg_it.schema.introspector import SchemaIntrospector
from pg_it.schema.models import ForeignKeyEdge, SchemaSnapshot

# Errors
from pg_it.errors import (
    DatabaseNotFoundError,
    DumpFolderError,
    PgItError,
    TableCycleError,
)

__all__ = [
    # Data source
    "PostgresITDataSource",
    "Builder",
    # Locations
    "ConnectionDescriptor",
    "DatabaseFromEnvironment",
    "DatabaseFromProperty",
    "Environment",
    "locate_database",
    "parse_database_url",
    "pg_environment_fallback",
    # Connections
    "ConnectionProvider",
    "enable_statement_logging",
    # Ordering
    "order_tables",
    "build_dependency_graph",
    # Config
    "load_config",
    "ITConfig",
    "PoolSettings",
    # Schema
    "SchemaIntrospector",
    "ForeignKeyEdge",
    "SchemaSnapshot",
    # Errors
    "PgItError",
    "DatabaseNotFoundError",
    "DumpFolderError",
    "TableCycleError",
]
