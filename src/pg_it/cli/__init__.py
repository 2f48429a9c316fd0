"""CLI module for integration-test database chores.

Locates the test database the same way the library does and runs the
data-source operations against it.

Usage:
    pg-it -D postgresql.testbase.port=15432 --from-property testbase tables
    pg-it --from-env LOCAL_POSTGRESQL_URL locate
    pg-it --from-env LOCAL_POSTGRESQL_URL truncate --all
    pg-it --from-env LOCAL_POSTGRESQL_URL truncate foo bar
    pg-it --from-env LOCAL_POSTGRESQL_URL wipe --confirm
    pg-it --from-env LOCAL_POSTGRESQL_URL dump
    pg-it --from-env LOCAL_POSTGRESQL_URL restore foo bar

Commands:
    locate    - Show which database would be used
    tables    - List tables in foreign-key order
    truncate  - Truncate tables in one transaction
    wipe      - Drop and recreate the schema
    dump      - Copy tables to the dump folder
    restore   - Copy tables back from the dump folder
"""

import argparse
import asyncio
import sys
from collections.abc import Awaitable, Callable

import psycopg
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from sqlalchemy.exc import SQLAlchemyError

from pg_it.config.loader import load_config
from pg_it.config.models import ITConfig
from pg_it.datasource import PostgresITDataSource
from pg_it.errors import PgItError
from pg_it.locations import (
    DatabaseFromEnvironment,
    DatabaseFromProperty,
    Environment,
    Location,
    locate_database,
)

console = Console()


# ============================================================================
# Argument helpers
# ============================================================================


def _parse_property(value: str) -> tuple[str, str]:
    """Parse a ``-D key=value`` option."""
    key, sep, prop_value = value.partition("=")
    if not sep or not key:
        raise argparse.ArgumentTypeError(f"Expected KEY=VALUE, got: {value!r}")
    return key, prop_value


def _load_settings(args: argparse.Namespace) -> tuple[ITConfig, Environment, list[Location]]:
    """Build config, environment and locations from parsed arguments.

    ``-D`` properties override the ``[properties]`` table of the config
    file.  Locations from ``--from-property`` come before ``--from-env``.
    """
    config = load_config(args.config)
    if args.schema:
        config = config.model_copy(update={"schema_name": args.schema})

    properties = dict(config.properties)
    properties.update(dict(args.properties or []))
    environment = Environment.from_process(properties)

    locations: list[Location] = [DatabaseFromProperty(name) for name in args.from_property or []]
    locations += [DatabaseFromEnvironment(var) for var in args.from_env or []]
    return config, environment, locations


def _data_source(args: argparse.Namespace) -> PostgresITDataSource:
    config, environment, locations = _load_settings(args)
    return PostgresITDataSource(
        locations,
        not args.no_fallback,
        environment=environment,
        config=config,
    )


async def _with_data_source(
    args: argparse.Namespace,
    action: Callable[[PostgresITDataSource], Awaitable[int]],
) -> int:
    async with _data_source(args) as data_source:
        return await action(data_source)


# ============================================================================
# Async command implementations
# ============================================================================


async def _async_tables(args: argparse.Namespace) -> int:
    async def action(data_source: PostgresITDataSource) -> int:
        tables = await data_source.all_table_names()
        if not tables:
            console.print(f"[yellow]No tables in schema {data_source.schema}.[/yellow]")
            return 0

        table = Table(
            title=f"Tables in {data_source.schema} (referenced first)",
            show_header=True,
            header_style="bold",
        )
        table.add_column("#", style="dim", justify="right")
        table.add_column("Table")
        for position, name in enumerate(tables, start=1):
            table.add_row(str(position), name)
        console.print(table)
        return 0

    return await _with_data_source(args, action)


async def _async_truncate(args: argparse.Namespace) -> int:
    async def action(data_source: PostgresITDataSource) -> int:
        if args.all:
            tables = await data_source.all_table_names()
        else:
            tables = args.tables
        await data_source.truncate_tables(*tables)
        console.print(
            f"[bold green]v[/bold green] Truncated {len(tables)} table(s)"
        )
        return 0

    if not args.all and not args.tables:
        console.print("[red]Error: name tables to truncate or pass --all[/red]")
        return 1
    return await _with_data_source(args, action)


async def _async_wipe(args: argparse.Namespace) -> int:
    async def action(data_source: PostgresITDataSource) -> int:
        await data_source.wipe()
        console.print(
            f"[bold green]v[/bold green] Recreated schema "
            f"[bold cyan]{data_source.schema}[/bold cyan]"
        )
        return 0

    if not args.confirm:
        console.print(
            "[yellow]wipe drops every table of the schema.[/yellow] "
            "[dim]Re-run with[/dim] [cyan]--confirm[/cyan]"
        )
        return 1
    return await _with_data_source(args, action)


async def _async_copy(args: argparse.Namespace, direction: str) -> int:
    async def action(data_source: PostgresITDataSource) -> int:
        tables = args.tables or await data_source.all_table_names()
        if direction == "to":
            await data_source.copy_tables_to_disk(*tables)
            verb = "Copied"
            preposition = "to"
        else:
            await data_source.copy_tables_from_disk(*tables)
            verb = "Restored"
            preposition = "from"
        console.print(
            f"[bold green]v[/bold green] {verb} {len(tables)} table(s) "
            f"{preposition} [bold]{data_source.dump_folder}[/bold]"
        )
        return 0

    return await _with_data_source(args, action)


# ============================================================================
# Command handlers
# ============================================================================


def cmd_locate(args: argparse.Namespace) -> int:
    """Show which database would be used.

    Resolves locations only -- no database calls.
    """
    config, environment, locations = _load_settings(args)
    descriptor = locate_database(locations, environment, not args.no_fallback)

    table = Table(title="Located Database", show_header=False)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("URL", f"[bold cyan]{descriptor.display_url()}[/bold cyan]")
    table.add_row("Found via", descriptor.source)
    table.add_row("Schema", config.schema_name)
    console.print(table)
    return 0


def cmd_tables(args: argparse.Namespace) -> int:
    """List tables in foreign-key order."""
    return asyncio.run(_async_tables(args))


def cmd_truncate(args: argparse.Namespace) -> int:
    """Truncate the named tables, or all tables with ``--all``."""
    return asyncio.run(_async_truncate(args))


def cmd_wipe(args: argparse.Namespace) -> int:
    """Drop and recreate the schema (requires ``--confirm``)."""
    return asyncio.run(_async_wipe(args))


def cmd_dump(args: argparse.Namespace) -> int:
    """Copy tables to the dump folder."""
    return asyncio.run(_async_copy(args, "to"))


def cmd_restore(args: argparse.Namespace) -> int:
    """Copy tables back from the dump folder."""
    return asyncio.run(_async_copy(args, "from"))


# ============================================================================
# Main entry point
# ============================================================================


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pg-it",
        description="PostgreSQL integration-test database helper",
    )

    parser.add_argument(
        "--config",
        default=None,
        help="Path to pg-it.toml (default: ./pg-it.toml if present)",
    )
    parser.add_argument(
        "-D",
        "--property",
        dest="properties",
        action="append",
        type=_parse_property,
        metavar="KEY=VALUE",
        help="Set a property (e.g., -D postgresql.testbase.port=15432)",
    )
    parser.add_argument(
        "--from-property",
        action="append",
        metavar="DATABASE",
        help="Look for DATABASE on localhost, port in postgresql.DATABASE.port",
    )
    parser.add_argument(
        "--from-env",
        action="append",
        metavar="VARIABLE",
        help="Look for a database URL in environment VARIABLE",
    )
    parser.add_argument(
        "--no-fallback",
        action="store_true",
        help="Don't fall back to $PG* environment variables",
    )
    parser.add_argument(
        "--schema",
        default=None,
        help="Schema to work on (default: from config, else public)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_locate = subparsers.add_parser("locate", help="Show which database would be used")
    p_locate.set_defaults(func=cmd_locate)

    p_tables = subparsers.add_parser("tables", help="List tables in foreign-key order")
    p_tables.set_defaults(func=cmd_tables)

    p_truncate = subparsers.add_parser("truncate", help="Truncate tables in one transaction")
    p_truncate.add_argument("tables", nargs="*", help="Tables to truncate")
    p_truncate.add_argument("--all", action="store_true", help="Truncate every table")
    p_truncate.set_defaults(func=cmd_truncate)

    p_wipe = subparsers.add_parser("wipe", help="Drop and recreate the schema")
    p_wipe.add_argument("--confirm", action="store_true", help="Really drop the schema")
    p_wipe.set_defaults(func=cmd_wipe)

    p_dump = subparsers.add_parser("dump", help="Copy tables to the dump folder")
    p_dump.add_argument("tables", nargs="*", help="Tables to copy (default: all)")
    p_dump.set_defaults(func=cmd_dump)

    p_restore = subparsers.add_parser("restore", help="Copy tables back from the dump folder")
    p_restore.add_argument("tables", nargs="*", help="Tables to restore (default: all)")
    p_restore.set_defaults(func=cmd_restore)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point.

    Returns:
        Exit code (0 for success, 1 for handled errors).
    """
    args = build_parser().parse_args(argv)
    try:
        return args.func(args)
    except (PgItError, FileNotFoundError, ValueError) as e:
        console.print(f"[bold red]x[/bold red] {e}")
        return 1
    except (psycopg.Error, SQLAlchemyError) as e:
        console.print(f"[bold red]x[/bold red] Database error: {escape(str(e))}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
