"""Prompt agents for scene list generation and scene refinement."""

from .base import BaseAgent
from .refinement import (
    STAGE_AGENTS,
    ActionDescriptionAgent,
    SceneContext,
    SceneDescriptionAgent,
    ShotPromptAgent,
)
from .scene_list import SceneListAgent, SceneListInput, parse_scene_list

__all__ = [
    "BaseAgent",
    "STAGE_AGENTS",
    "ActionDescriptionAgent",
    "SceneContext",
    "SceneDescriptionAgent",
    "ShotPromptAgent",
    "SceneListAgent",
    "SceneListInput",
    "parse_scene_list",
]
