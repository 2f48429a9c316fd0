"""Configuration management: TOML loading and config models.

Usage:
    >>> from pg_it.config import load_config, ITConfig, PoolSettings
"""

from pg_it.config.loader import load_config
from pg_it.config.models import ITConfig, PoolSettings

__all__ = ["load_config", "ITConfig", "PoolSettings"]
