"""Checkpoint persistence."""

import logging
from pathlib import Path
from typing import Optional

from ..config import config
from ..exceptions import ConfigurationError
from .base import CheckpointStore, next_timestamp
from .memory import MemoryCheckpointStore
from .sqlite import SQLiteCheckpointStore

logger = logging.getLogger(__name__)

__all__ = [
    "CheckpointStore",
    "MemoryCheckpointStore",
    "SQLiteCheckpointStore",
    "create_checkpoint_store",
    "next_timestamp",
]


def create_checkpoint_store(
    backend: Optional[str] = None,
    database_path: Optional[Path] = None,
) -> CheckpointStore:
    """Build the checkpoint store selected by configuration.

    Call once at startup and pass the store to the services that need it.

    Args:
        backend: 'sqlite' or 'memory'. Defaults to config.store_backend.
        database_path: SQLite file. Defaults to config.database_path.

    Raises:
        ConfigurationError: If the backend name is unknown.
    """
    backend = backend or config.store_backend
    if backend == "memory":
        logger.info("Using in-memory checkpoint store")
        return MemoryCheckpointStore()
    if backend == "sqlite":
        path = database_path or config.database_path
        logger.info(f"Using SQLite checkpoint store at {path}")
        return SQLiteCheckpointStore(path)
    raise ConfigurationError(f"Unknown checkpoint store '{backend}'")
