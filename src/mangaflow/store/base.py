"""Checkpoint store interface."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from ..models import ProjectCheckpoint

logger = logging.getLogger(__name__)


def _parse_timestamp(value: str) -> Optional[datetime]:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: Optional[str] = None) -> str:
    """Return an ISO-8601 UTC timestamp strictly later than *previous*."""
    now = datetime.now(timezone.utc)
    if previous:
        last = _parse_timestamp(previous)
        if last is not None and now <= last:
            now = last + timedelta(microseconds=1)
    return now.isoformat(timespec="microseconds")


def stamp_record(record: dict, existing: Optional[dict]) -> dict:
    """Apply the save bookkeeping to a checkpoint record.

    ``createdAt`` is kept from the first save; ``updatedAt`` always moves
    forward.
    """
    previous_updated = existing.get("updatedAt") if existing else None
    now = next_timestamp(previous_updated)
    record = dict(record)
    record["createdAt"] = (existing or {}).get("createdAt") or now
    record["updatedAt"] = now
    return record


class CheckpointStore(ABC):
    """Persistence for project checkpoints.

    Every backend must give the same save/load/list/delete semantics,
    including keeping ``createdAt`` fixed across saves. Concurrent saves of
    the same project are last-writer-wins.
    """

    name: str = "base"

    @abstractmethod
    def save(self, checkpoint: ProjectCheckpoint) -> str:
        """Upsert *checkpoint* and return its project id.

        The stored ``createdAt``/``updatedAt`` values are also written back
        onto *checkpoint*.
        """
        ...

    @abstractmethod
    def load(self, project_id: str) -> Optional[ProjectCheckpoint]:
        """Return the checkpoint for *project_id*, or None."""
        ...

    @abstractmethod
    def list(self) -> List[ProjectCheckpoint]:
        """Return all checkpoints, most recently updated first."""
        ...

    @abstractmethod
    def delete(self, project_id: str) -> None:
        """Remove a checkpoint. Unknown ids are ignored."""
        ...

    def find_by_thread_id(self, thread_id: str) -> Optional[ProjectCheckpoint]:
        """Return the checkpoint bound to *thread_id*, or None.

        The default implementation scans ``list()``; indexed backends
        override it.
        """
        for checkpoint in self.list():
            if checkpoint.thread_id == thread_id:
                return checkpoint
        return None

    def close(self) -> None:
        """Release backend resources."""
        pass

    @staticmethod
    def _apply_stamps(checkpoint: ProjectCheckpoint, record: dict) -> None:
        checkpoint.created_at = record["createdAt"]
        checkpoint.updated_at = record["updatedAt"]
