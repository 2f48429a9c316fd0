"""Pydantic models for schema introspection results."""

from pydantic import BaseModel, Field


class ForeignKeyEdge(BaseModel):
    """A foreign key from a dependent table to the table it references."""

    table: str                      # dependent table (holds the FK)
    references: str                 # referenced table
    constraint: str | None = None   # constraint name, when known

    def as_pair(self) -> tuple[str, str]:
        """Return ``(dependent, referenced)``."""
        return self.table, self.references


class SchemaSnapshot(BaseModel):
    """Tables and foreign keys of one schema, read at a single point in time."""

    schema_name: str = "public"
    tables: list[str] = Field(default_factory=list)
    foreign_keys: list[ForeignKeyEdge] = Field(default_factory=list)
