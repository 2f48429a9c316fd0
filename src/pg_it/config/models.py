"""Pydantic models for pg-it configuration."""

from typing import Any

from pydantic import BaseModel, Field, field_validator


class PoolSettings(BaseModel):
    """Connection pool settings forwarded to the SQLAlchemy engine."""

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    pool_pre_ping: bool = True
    pool_recycle: int = 300
    echo: bool = False

    def engine_kwargs(self) -> dict[str, Any]:
        """Keyword arguments for ``create_async_engine_pooled``."""
        return self.model_dump()


class ITConfig(BaseModel):
    """Complete configuration from pg-it.toml."""

    schema_name: str = Field(default="public", alias="schema")
    statement_logging: bool = True
    dump_folder: str | None = None
    properties: dict[str, str] = Field(default_factory=dict)
    pool: PoolSettings = Field(default_factory=PoolSettings)

    model_config = {"populate_by_name": True}

    @field_validator("properties", mode="before")
    @classmethod
    def _stringify_properties(cls, value: Any) -> Any:
        # TOML lets ports be written as integers
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items()}
        return value
