"""Per-scene refinement agents."""

from dataclasses import dataclass

from ..exceptions import GenerationError
from ..models import ProjectCheckpoint, RefinementStage, Scene
from .base import BaseAgent


@dataclass
class SceneContext:
    """Everything a refinement stage may draw on for one scene."""

    scene_id: str
    scene_summary: str
    project_title: str = ""
    story_summary: str = ""
    art_style: str = ""
    protagonist: str = ""
    previous_scene_summary: str = ""
    scene_description: str = ""
    action_description: str = ""

    @classmethod
    def for_scene(cls, project: ProjectCheckpoint, scene: Scene) -> "SceneContext":
        previous = project.previous_scene(scene)
        return cls(
            scene_id=scene.id,
            scene_summary=scene.summary,
            project_title=project.title,
            story_summary=project.summary,
            art_style=project.art_style,
            protagonist=project.protagonist,
            previous_scene_summary=previous.summary if previous else "",
            scene_description=scene.scene_description or "",
            action_description=scene.action_description or "",
        )


class _StageAgent(BaseAgent[SceneContext, str]):
    """Shared reply handling for the three single-text stages."""

    stage: RefinementStage

    def parse(self, response: str, input_data: SceneContext) -> str:
        text = response.strip()
        if not text:
            raise GenerationError(f"{self.name} returned an empty response")
        return text

    def _header(self, ctx: SceneContext) -> list[str]:
        lines = []
        if ctx.project_title:
            lines.append(f"PROJECT: {ctx.project_title}")
        if ctx.art_style:
            lines.append(f"VISUAL STYLE: {ctx.art_style}")
        if ctx.protagonist:
            lines.append(f"PROTAGONIST: {ctx.protagonist}")
        return lines


class SceneDescriptionAgent(_StageAgent):
    """Stage 1: expand a scene summary into a setting description."""

    stage = RefinementStage.SCENE_DESCRIPTION

    @property
    def name(self) -> str:
        return "SceneDescriptionAgent"

    @property
    def system_prompt(self) -> str:
        return (
            "You are a manga scene designer. Describe the setting of the scene: "
            "location, time of day, lighting, atmosphere and the key visual "
            "elements. Keep it under 150 words and keep continuity with the "
            "previous scene."
        )

    def build_prompt(self, ctx: SceneContext) -> str:
        lines = self._header(ctx)
        if ctx.story_summary:
            lines.append(f"STORY: {ctx.story_summary}")
        if ctx.previous_scene_summary:
            lines.append(f"PREVIOUS SCENE: {ctx.previous_scene_summary}")
        lines.append(f"THIS SCENE: {ctx.scene_summary}")
        return "\n".join(lines)


class ActionDescriptionAgent(_StageAgent):
    """Stage 2: describe the characters' action in the keyframe."""

    stage = RefinementStage.ACTION_DESCRIPTION

    @property
    def name(self) -> str:
        return "ActionDescriptionAgent"

    @property
    def system_prompt(self) -> str:
        return (
            "You are a manga director. Given a scene and its setting, describe "
            "the single keyframe moment: what the characters are doing, their "
            "poses, expressions and interactions. Under 100 words."
        )

    def build_prompt(self, ctx: SceneContext) -> str:
        lines = self._header(ctx)
        lines.append(f"SCENE: {ctx.scene_summary}")
        lines.append(f"SETTING: {ctx.scene_description}")
        return "\n".join(lines)


class ShotPromptAgent(_StageAgent):
    """Stage 3: turn setting and action into an image-generation prompt."""

    stage = RefinementStage.SHOT_PROMPT
    temperature = 0.5

    @property
    def name(self) -> str:
        return "ShotPromptAgent"

    @property
    def system_prompt(self) -> str:
        return (
            "You write prompts for text-to-image models. Combine the setting and "
            "the action into one comma-separated English prompt that names the "
            "shot type, camera angle, composition, subject, environment and "
            "lighting. Output only the prompt."
        )

    def build_prompt(self, ctx: SceneContext) -> str:
        lines = self._header(ctx)
        lines.append(f"SETTING: {ctx.scene_description}")
        lines.append(f"ACTION: {ctx.action_description}")
        return "\n".join(lines)


STAGE_AGENTS = {
    RefinementStage.SCENE_DESCRIPTION: SceneDescriptionAgent,
    RefinementStage.ACTION_DESCRIPTION: ActionDescriptionAgent,
    RefinementStage.SHOT_PROMPT: ShotPromptAgent,
}
