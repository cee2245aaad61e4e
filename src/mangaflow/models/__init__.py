"""Data models for manga-flow."""

from .scene import Scene, SceneStatus, RefinementStage, GENERATING_STATUSES
from .project import (
    ProjectCheckpoint,
    WorkflowState,
    WizardState,
    BASIC_INFO_FIELDS,
    SCENE_LIST_FIELDS,
    new_id,
)
from .results import GenerationResult, ToolResult

__all__ = [
    "Scene",
    "SceneStatus",
    "RefinementStage",
    "GENERATING_STATUSES",
    "ProjectCheckpoint",
    "WorkflowState",
    "WizardState",
    "BASIC_INFO_FIELDS",
    "SCENE_LIST_FIELDS",
    "new_id",
    "GenerationResult",
    "ToolResult",
]
