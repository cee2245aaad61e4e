"""Input schemas for the agent tools.

Field names are snake_case in Python and camelCase on the wire; both are
accepted when validating.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from ..config import SCENE_COUNT_MAX, SCENE_COUNT_MIN, TITLE_MAX_LENGTH, config


class _ToolInput(BaseModel):
    class Config:
        """Pydantic config."""
        populate_by_name = True
        str_strip_whitespace = True


class CreateProjectInput(_ToolInput):
    title: str = Field(..., min_length=1, max_length=TITLE_MAX_LENGTH, description="Project title")


class GetProjectStateInput(_ToolInput):
    project_id: Optional[str] = Field(
        None,
        alias="projectId",
        description="Project to load. Defaults to the project bound to this conversation.",
    )


class SetProjectInfoInput(_ToolInput):
    title: Optional[str] = Field(None, min_length=1, max_length=TITLE_MAX_LENGTH, description="Project title")
    summary: Optional[str] = Field(None, description="Story synopsis")
    art_style: Optional[str] = Field(None, alias="artStyle", description="Visual style, e.g. 'black and white shonen manga'")
    protagonist: Optional[str] = Field(None, description="Protagonist description")


class GenerateScenesInput(_ToolInput):
    count: int = Field(
        default_factory=lambda: config.default_scene_count,
        ge=SCENE_COUNT_MIN,
        le=SCENE_COUNT_MAX,
        description="Number of scenes to generate",
    )


class RefineSceneInput(_ToolInput):
    scene_id: str = Field(..., alias="sceneId", min_length=1, description="Id of the scene to refine")


class BatchRefineInput(_ToolInput):
    scene_ids: List[str] = Field(..., alias="sceneIds", min_length=1, description="Ids of the scenes to refine")


class ExportPromptsInput(_ToolInput):
    format: Literal["json", "markdown", "text", "yaml"] = Field("json", description="Export format")
    include_metadata: bool = Field(False, alias="includeMetadata", description="Include project metadata")
