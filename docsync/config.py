"""Configuration loading for docsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError


@dataclass
class StoreConfig:
    """Configuration for the local document store."""

    db_path: str = "~/.docsync/store.db"
    primary_path: str = "_id"


@dataclass
class ReplicationConfig:
    """Configuration for replication with one remote endpoint."""

    endpoint: str = ""  # Base URL of the remote endpoint
    namespace: str = "docsync-replication"  # Prefix of checkpoint keys
    batch_size: int = 10
    sync_revisions: bool = False
    last_pulled_revision_field: str = "last_pulled_rev"
    deleted_field: str = "deleted"
    push: bool = True
    pull: bool = True
    sync_interval_seconds: int = 300
    retry_max_attempts: int = 3
    timeout_seconds: float = 30.0


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with DOCSYNC_ prefix."""
    return os.environ.get(f"DOCSYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Store overrides
    if db_path := _get_env("STORE_DB_PATH"):
        config.store.db_path = db_path
    if primary_path := _get_env("STORE_PRIMARY_PATH"):
        config.store.primary_path = primary_path

    # Replication overrides
    if endpoint := _get_env("ENDPOINT"):
        config.replication.endpoint = endpoint
    if namespace := _get_env("NAMESPACE"):
        config.replication.namespace = namespace
    if batch_size := _get_env("BATCH_SIZE"):
        config.replication.batch_size = int(batch_size)
    if sync_revisions := _get_env("SYNC_REVISIONS"):
        config.replication.sync_revisions = sync_revisions.lower() in ("true", "1", "yes")
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.replication.sync_interval_seconds = int(sync_interval)

    return config


def _validate(config: Config) -> None:
    replication = config.replication
    if replication.batch_size < 1:
        raise ConfigError(
            f"replication.batch_size must be >= 1, got {replication.batch_size}"
        )
    if not replication.namespace:
        raise ConfigError("replication.namespace must not be empty")
    if not config.store.primary_path:
        raise ConfigError("store.primary_path must not be empty")


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded and validated Config object.

    Raises:
        ConfigError: A value is out of range.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            # Parse store config
            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    db_path=store_data.get("db_path", config.store.db_path),
                    primary_path=store_data.get(
                        "primary_path", config.store.primary_path
                    ),
                )

            # Parse replication config
            if "replication" in data:
                repl_data = data["replication"]
                defaults = config.replication
                config.replication = ReplicationConfig(
                    endpoint=repl_data.get("endpoint", defaults.endpoint),
                    namespace=repl_data.get("namespace", defaults.namespace),
                    batch_size=repl_data.get("batch_size", defaults.batch_size),
                    sync_revisions=repl_data.get(
                        "sync_revisions", defaults.sync_revisions
                    ),
                    last_pulled_revision_field=repl_data.get(
                        "last_pulled_revision_field",
                        defaults.last_pulled_revision_field,
                    ),
                    deleted_field=repl_data.get(
                        "deleted_field", defaults.deleted_field
                    ),
                    push=repl_data.get("push", defaults.push),
                    pull=repl_data.get("pull", defaults.pull),
                    sync_interval_seconds=repl_data.get(
                        "sync_interval_seconds", defaults.sync_interval_seconds
                    ),
                    retry_max_attempts=repl_data.get(
                        "retry_max_attempts", defaults.retry_max_attempts
                    ),
                    timeout_seconds=repl_data.get(
                        "timeout_seconds", defaults.timeout_seconds
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    _validate(config)
    return config
