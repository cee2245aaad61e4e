"""Project checkpoint model."""

import uuid
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, Field

from ..exceptions import SceneNotFoundError
from .scene import Scene, SceneStatus


class WorkflowState(str, Enum):
    """Canonical project workflow state."""
    IDLE = "IDLE"
    COLLECTING_BASIC_INFO = "COLLECTING_BASIC_INFO"
    BASIC_INFO_COMPLETE = "BASIC_INFO_COMPLETE"
    GENERATING_SCENES = "GENERATING_SCENES"
    SCENE_LIST_EDITING = "SCENE_LIST_EDITING"
    SCENE_LIST_CONFIRMED = "SCENE_LIST_CONFIRMED"
    REFINING_SCENES = "REFINING_SCENES"
    ALL_SCENES_COMPLETE = "ALL_SCENES_COMPLETE"
    EXPORTING = "EXPORTING"
    EXPORTED = "EXPORTED"


class WizardState(str, Enum):
    """Workflow state names used by the step-by-step wizard flow."""
    IDLE = "IDLE"
    DATA_COLLECTING = "DATA_COLLECTING"
    DATA_COLLECTED = "DATA_COLLECTED"
    SCENE_LIST_GENERATING = "SCENE_LIST_GENERATING"
    SCENE_LIST_EDITING = "SCENE_LIST_EDITING"
    SCENE_LIST_CONFIRMED = "SCENE_LIST_CONFIRMED"
    SCENE_PROCESSING = "SCENE_PROCESSING"
    ALL_SCENES_COMPLETE = "ALL_SCENES_COMPLETE"
    EXPORTING = "EXPORTING"


BASIC_INFO_FIELDS = ("title", "summary", "art_style", "protagonist")
SCENE_LIST_FIELDS = ("title", "summary", "art_style")


class ProjectCheckpoint(BaseModel):
    """Full persisted snapshot of one project."""

    project_id: str = Field(
        ...,
        validation_alias=AliasChoices("projectId", "project_id", "id"),
        serialization_alias="projectId",
        description="Stable project identifier",
    )
    thread_id: str = Field(
        ...,
        validation_alias=AliasChoices("threadId", "thread_id"),
        serialization_alias="threadId",
        description="Conversation/session key resolving to this project",
    )
    workflow_state: WorkflowState = Field(
        default=WorkflowState.IDLE,
        validation_alias=AliasChoices("workflowState", "workflow_state"),
        serialization_alias="workflowState",
    )
    title: str = Field(default="", description="Project title")
    summary: str = Field(default="", description="Story synopsis")
    art_style: str = Field(
        default="",
        validation_alias=AliasChoices("artStyle", "style", "art_style"),
        serialization_alias="artStyle",
        description="Visual style used as generation context",
    )
    protagonist: str = Field(default="", description="Protagonist description")
    scenes: List[Scene] = Field(default_factory=list, description="Scenes in presentation order")
    created_at: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt",
    )
    updated_at: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("updatedAt", "updated_at"),
        serialization_alias="updatedAt",
    )

    class Config:
        """Pydantic config."""
        frozen = False
        populate_by_name = True

    @classmethod
    def empty(cls, project_id: str, thread_id: str) -> "ProjectCheckpoint":
        """Return a blank checkpoint in the IDLE state."""
        return cls(project_id=project_id, thread_id=thread_id)

    @classmethod
    def from_record(cls, record: dict) -> "ProjectCheckpoint":
        """Build a checkpoint from its canonical dict layout."""
        return cls.model_validate(record)

    def to_record(self) -> dict:
        """Serialize to the canonical checkpoint layout."""
        record = self.model_dump(by_alias=True, exclude={"scenes"}, mode="json")
        record["scenes"] = [scene.to_record() for scene in self.scenes]
        return record

    def copy_deep(self) -> "ProjectCheckpoint":
        return self.model_copy(deep=True)

    @property
    def has_basic_info(self) -> bool:
        """Whether all four basic settings are filled in."""
        return all(getattr(self, name).strip() for name in BASIC_INFO_FIELDS)

    @property
    def can_generate_scenes(self) -> bool:
        """Whether the settings needed for a scene list are present."""
        return all(getattr(self, name).strip() for name in SCENE_LIST_FIELDS)

    def missing_fields(self, names=BASIC_INFO_FIELDS) -> list[str]:
        return [name for name in names if not getattr(self, name).strip()]

    def find_scene(self, scene_id: str) -> Optional[Scene]:
        for scene in self.scenes:
            if scene.id == scene_id:
                return scene
        return None

    def get_scene(self, scene_id: str) -> Scene:
        """Return the scene with the given id.

        Raises:
            SceneNotFoundError: If no scene has that id.
        """
        scene = self.find_scene(scene_id)
        if scene is None:
            raise SceneNotFoundError(scene_id, self.project_id)
        return scene

    def sorted_scenes(self) -> List[Scene]:
        return sorted(self.scenes, key=lambda scene: scene.order)

    def previous_scene(self, scene: Scene) -> Optional[Scene]:
        """Return the scene immediately before *scene* in order, if any."""
        for candidate in self.scenes:
            if candidate.order == scene.order - 1:
                return candidate
        return None

    def completed_scenes(self) -> List[Scene]:
        return [scene for scene in self.sorted_scenes() if scene.status == SceneStatus.COMPLETED]

    @property
    def all_scenes_complete(self) -> bool:
        """True when there is at least one scene and every scene is completed."""
        return bool(self.scenes) and all(scene.is_completed for scene in self.scenes)


def new_id(prefix: str) -> str:
    """Return a fresh random identifier such as ``scene-3f2a9c0d1b7e``."""
    return f"{prefix}-{uuid.uuid4().hex[:12]}"
