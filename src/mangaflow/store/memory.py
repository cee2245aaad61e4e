"""Process-lifetime checkpoint store."""

import logging
from typing import Dict, List, Optional

from ..models import ProjectCheckpoint
from .base import CheckpointStore, stamp_record

logger = logging.getLogger(__name__)


class MemoryCheckpointStore(CheckpointStore):
    """Checkpoint store backed by a dict of serialized records.

    Records are kept in their canonical dict form so that callers never
    share model instances with the store.
    """

    name = "memory"

    def __init__(self) -> None:
        self._records: Dict[str, dict] = {}

    def save(self, checkpoint: ProjectCheckpoint) -> str:
        existing = self._records.get(checkpoint.project_id)
        record = stamp_record(checkpoint.to_record(), existing)
        self._records[checkpoint.project_id] = record
        self._apply_stamps(checkpoint, record)
        logger.debug(f"Saved checkpoint {checkpoint.project_id} at {record['updatedAt']}")
        return checkpoint.project_id

    def load(self, project_id: str) -> Optional[ProjectCheckpoint]:
        record = self._records.get(project_id)
        if record is None:
            return None
        return ProjectCheckpoint.from_record(record)

    def list(self) -> List[ProjectCheckpoint]:
        records = sorted(
            self._records.values(),
            key=lambda record: record["updatedAt"],
            reverse=True,
        )
        return [ProjectCheckpoint.from_record(record) for record in records]

    def delete(self, project_id: str) -> None:
        self._records.pop(project_id, None)

    def __len__(self) -> int:
        return len(self._records)
