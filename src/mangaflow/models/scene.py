"""Scene data model."""

from enum import Enum
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator


class SceneStatus(str, Enum):
    """Scene lifecycle status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    SCENE_GENERATING = "scene_generating"
    SCENE_CONFIRMED = "scene_confirmed"
    ACTION_GENERATING = "action_generating"
    ACTION_CONFIRMED = "action_confirmed"
    PROMPT_GENERATING = "prompt_generating"
    COMPLETED = "completed"
    NEEDS_UPDATE = "needs_update"
    ERROR = "error"


GENERATING_STATUSES = frozenset({
    SceneStatus.IN_PROGRESS,
    SceneStatus.SCENE_GENERATING,
    SceneStatus.ACTION_GENERATING,
    SceneStatus.PROMPT_GENERATING,
})

class RefinementStage(str, Enum):
    """The three generation stages of a scene, in order."""
    SCENE_DESCRIPTION = "scene_description"
    ACTION_DESCRIPTION = "action_description"
    SHOT_PROMPT = "shot_prompt"

    @property
    def field(self) -> str:
        """Scene attribute this stage fills in."""
        return self.value

    @property
    def generating_status(self) -> SceneStatus:
        return _STAGE_STATUS[self][0]

    @property
    def confirmed_status(self) -> SceneStatus:
        return _STAGE_STATUS[self][1]

    @property
    def prerequisites(self) -> tuple[str, ...]:
        """Scene fields that must be non-empty before this stage runs."""
        order = list(RefinementStage)
        return tuple(stage.field for stage in order[:order.index(self)])


_STAGE_STATUS = {
    RefinementStage.SCENE_DESCRIPTION: (SceneStatus.SCENE_GENERATING, SceneStatus.SCENE_CONFIRMED),
    RefinementStage.ACTION_DESCRIPTION: (SceneStatus.ACTION_GENERATING, SceneStatus.ACTION_CONFIRMED),
    RefinementStage.SHOT_PROMPT: (SceneStatus.PROMPT_GENERATING, SceneStatus.COMPLETED),
}

# Older checkpoints used a different name for the second confirmed stage
_LEGACY_STATUSES = {"keyframe_confirmed": SceneStatus.ACTION_CONFIRMED.value}


class Scene(BaseModel):
    """A single storyboard scene and its generated content."""

    id: str = Field(..., description="Scene identifier, unique within a project")
    order: int = Field(..., description="1-based position in the scene list", ge=1)
    summary: str = Field(..., description="Short description of the scene")
    status: SceneStatus = Field(default=SceneStatus.PENDING, description="Lifecycle status")
    scene_description: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("sceneDescription", "scene_description"),
        serialization_alias="sceneDescription",
        description="Stage 1: detailed scene description",
    )
    action_description: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("keyframePrompt", "actionDescription", "action_description"),
        serialization_alias="keyframePrompt",
        description="Stage 2: action / keyframe description",
    )
    shot_prompt: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("spatialPrompt", "shotPrompt", "shot_prompt"),
        serialization_alias="spatialPrompt",
        description="Stage 3: shot / spatial prompt for image generation",
    )
    error: Optional[str] = Field(None, description="Message from the last failed generation")
    notes: Optional[str] = Field(None, description="Free-form user notes")

    class Config:
        """Pydantic config."""
        frozen = False
        populate_by_name = True

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        if isinstance(value, str):
            return _LEGACY_STATUSES.get(value, value)
        return value

    @property
    def is_completed(self) -> bool:
        return self.status == SceneStatus.COMPLETED

    @property
    def is_generating(self) -> bool:
        return self.status in GENERATING_STATUSES

    def to_record(self) -> dict:
        """Serialize to the canonical checkpoint layout."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")
