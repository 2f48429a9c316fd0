"""Foreign-key-aware table ordering.

Orders tables so every referenced table comes before the tables that hold
foreign keys to it.  Pure logic -- no I/O, no database connections.

Usage:
    from pg_it.ordering import order_tables

    order_tables(["foo", "bar", "fin"], [("bar", "foo")])
    # ['fin', 'foo', 'bar']
"""

import logging
from collections.abc import Iterable

from pg_it.errors import TableCycleError
from pg_it.schema.models import ForeignKeyEdge

logger = logging.getLogger(__name__)

Edge = ForeignKeyEdge | tuple[str, str]


def _edge_pair(edge: Edge) -> tuple[str, str]:
    if isinstance(edge, ForeignKeyEdge):
        return edge.as_pair()
    dependent, referenced = edge
    return dependent, referenced


def build_dependency_graph(
    tables: Iterable[str],
    edges: Iterable[Edge],
) -> dict[str, set[str]]:
    """Map each table to the set of tables it references.

    Edges with an endpoint outside ``tables`` are ignored.  Self-references
    are kept: they make the table unorderable.

    Args:
        tables: Table names.  Duplicates collapse.
        edges: ``(dependent, referenced)`` pairs or ``ForeignKeyEdge`` models.

    Returns:
        Dict mapping table name to the set of tables it depends on.
    """
    graph: dict[str, set[str]] = {table: set() for table in tables}
    for edge in edges:
        dependent, referenced = _edge_pair(edge)
        if dependent in graph and referenced in graph:
            graph[dependent].add(referenced)
    return graph


def order_tables(tables: Iterable[str], edges: Iterable[Edge]) -> list[str]:
    """Order tables so referenced tables precede their dependents.

    Kahn-style topological sort.  Each round takes every table whose
    dependencies are all placed; within a round tables are sorted
    lexicographically, so the result is deterministic.

    Args:
        tables: Table names to order.
        edges: ``(dependent, referenced)`` pairs or ``ForeignKeyEdge`` models.
            Edges naming a table outside ``tables`` are ignored.

    Returns:
        Every table exactly once, parents before children.

    Raises:
        TableCycleError: If the references form a cycle (a table
            referencing itself included).  No partial order is returned.

    Examples:
        >>> order_tables(["foo", "bar", "fin"], [("bar", "foo")])
        ['fin', 'foo', 'bar']
        >>> order_tables([], [])
        []
    """
    unresolved = build_dependency_graph(tables, edges)
    ordered: list[str] = []

    while unresolved:
        ready = sorted(table for table, deps in unresolved.items() if not deps)
        if not ready:
            raise TableCycleError(list(unresolved))

        for table in ready:
            del unresolved[table]
        placed = set(ready)
        for deps in unresolved.values():
            deps -= placed
        ordered.extend(ready)

    logger.debug(f"Table order: {', '.join(ordered)}")
    return ordered
