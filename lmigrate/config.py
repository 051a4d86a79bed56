"""
Configuration management for lmigrate.

Loads config.yaml from the lmigrate home directory:
    $LMIGRATE_HOME/config.yaml  (default ~/.config/lmigrate/config.yaml)

An optional env_file is loaded into the process environment so deployer
factories can read credentials from it.
"""

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

from lmigrate.errors import ConfigError

STORE_BACKENDS = ("file", "sqlite", "memory")
LOG_FORMATS = ("pretty", "structured")


def get_lmigrate_home() -> Path:
    """Directory holding config.yaml (LMIGRATE_HOME or ~/.config/lmigrate)."""
    home = os.environ.get("LMIGRATE_HOME")
    if home:
        return Path(home)
    return Path("~/.config/lmigrate").expanduser()


@dataclass
class LmigrateConfig:
    """Complete lmigrate configuration."""
    target: str = "development"
    migrations_dir: str = "migrations"
    store: str = "memory"
    store_path: Optional[str] = None
    deployer: str = "memory"
    deployer_options: dict[str, Any] = field(default_factory=dict)
    capability_methods: dict[str, str] = field(default_factory=dict)
    log_level: str = "INFO"
    log_format: str = "pretty"
    log_file: Optional[str] = None
    env_file: Optional[str] = None

    @property
    def migrations_path(self) -> Path:
        return Path(self.migrations_dir).expanduser()

    @property
    def store_location(self) -> Optional[Path]:
        return Path(self.store_path).expanduser() if self.store_path else None

    @property
    def log_file_path(self) -> Optional[Path]:
        return Path(self.log_file).expanduser() if self.log_file else None

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.target:
            raise ConfigError("target is required")
        if self.store not in STORE_BACKENDS:
            raise ConfigError(
                f"store must be one of {', '.join(STORE_BACKENDS)}, got {self.store!r}"
            )
        if self.log_format not in LOG_FORMATS:
            raise ConfigError(
                f"log_format must be one of {', '.join(LOG_FORMATS)}, got {self.log_format!r}"
            )
        if self.deployer == "memory" and self.store != "memory":
            # Addresses from the in-memory ledger vanish with the process
            raise ConfigError(
                f"deployer 'memory' cannot record to a durable {self.store!r} store; "
                f"use store: memory or a real deployer"
            )
        if not isinstance(self.deployer_options, dict):
            raise ConfigError("deployer_options must be a mapping")
        if not isinstance(self.capability_methods, dict):
            raise ConfigError("capability_methods must be a mapping")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LmigrateConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
        config = cls(**data)
        config.validate()
        return config

    def to_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def load_config(config_path: Optional[Path] = None) -> LmigrateConfig:
    """
    Load lmigrate configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to <home>/config.yaml

    Returns:
        LmigrateConfig instance

    Raises:
        FileNotFoundError: If the config file does not exist
        ConfigError: If the config is invalid
    """
    if config_path is None:
        config_path = get_lmigrate_home() / "config.yaml"

    if not config_path.exists():
        raise FileNotFoundError(
            f"lmigrate config.yaml not found at {config_path}. Run 'lmigrate init'."
        )

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML syntax: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError("Configuration file must contain a mapping")

    config = LmigrateConfig.from_dict(data)

    if config.env_file:
        env_path = Path(config.env_file).expanduser()
        if env_path.exists():
            load_dotenv(env_path)

    return config
