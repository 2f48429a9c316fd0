"""Schema introspection for table ordering.

Usage:
    from pg_it.schema import SchemaIntrospector, ForeignKeyEdge, SchemaSnapshot
"""

from pg_it.schema.introspector import SchemaIntrospector
from pg_it.schema.models import ForeignKeyEdge, SchemaSnapshot

__all__ = [
    "SchemaIntrospector",
    "ForeignKeyEdge",
    "SchemaSnapshot",
]
