"""Configuration loading for pg-it."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from pg_it.config.models import ITConfig

DEFAULT_CONFIG_FILE = "pg-it.toml"


def load_config(config_path: Path | str | None = None) -> ITConfig:
    """Load pg-it configuration from a TOML file.

    Args:
        config_path: Path to the TOML file.  When ``None``, ``pg-it.toml`` in
            the current working directory is used if it exists; otherwise
            the defaults are returned.

    Returns:
        ITConfig with properties, pool settings and dump folder.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        ValueError: If the file is not valid TOML or holds invalid values.
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_FILE
        if not config_path.exists():
            return ITConfig()

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"pg-it config not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        return ITConfig(**data)
    except ValidationError as e:
        raise ValueError(f"Invalid pg-it config in {config_path}: {e}") from e
