"""The project tools the conversational agent can call.

A ToolSet is bound to one conversation through its ToolScope. The first
tool that resolves a project binds the scope, and later calls operate on
that project without naming it.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from ..exceptions import ProjectNotFoundError
from ..export import ExportFormat
from ..models import ProjectCheckpoint, ToolResult, new_id
from ..pipeline import ScenePipeline
from ..services.generation import GenerationService, join_prompt
from ..services.projects import ProjectService
from ..store import CheckpointStore
from ..workflow import current_step
from .base import Tool
from .schemas import (
    BatchRefineInput,
    CreateProjectInput,
    ExportPromptsInput,
    GenerateScenesInput,
    GetProjectStateInput,
    RefineSceneInput,
    SetProjectInfoInput,
)

logger = logging.getLogger(__name__)


@dataclass
class ToolScope:
    """The project and thread a tool set is working on."""

    thread_id: Optional[str] = None
    project_id: Optional[str] = None

    def bind(self, project: ProjectCheckpoint) -> None:
        if self.project_id != project.project_id:
            logger.debug(f"Tool scope bound to project {project.project_id}")
        self.project_id = project.project_id
        self.thread_id = project.thread_id


class ToolSet:
    """The seven project tools sharing one scope.

    Args:
        store: Checkpoint store holding the projects.
        generator: Generation service used by the generating tools.
        scope: Scope to bind. A fresh, unbound scope if not given.
        timeout: Seconds allowed per generation call.
    """

    def __init__(
        self,
        store: CheckpointStore,
        generator: GenerationService,
        scope: Optional[ToolScope] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.scope = scope or ToolScope()
        self.projects = ProjectService(store)
        self.pipeline = ScenePipeline(store, generator, timeout=timeout)
        self.tools: Dict[str, Tool] = {
            tool.name: tool
            for tool in (
                Tool("create_project", "Create a new manga project, or reuse the one this conversation already has.",
                     CreateProjectInput, self.create_project),
                Tool("get_project_state", "Get the full state of the current project, including all scenes.",
                     GetProjectStateInput, self.get_project_state),
                Tool("set_project_info", "Set or update the project's title, story summary, art style and protagonist.",
                     SetProjectInfoInput, self.set_project_info),
                Tool("generate_scenes", "Generate the scene list from the story settings. Replaces existing scenes.",
                     GenerateScenesInput, self.generate_scenes),
                Tool("refine_scene", "Refine one scene into a scene description, an action description and an image prompt.",
                     RefineSceneInput, self.refine_scene),
                Tool("batch_refine_scenes", "Refine several scenes at once.",
                     BatchRefineInput, self.batch_refine_scenes),
                Tool("export_prompts", "Export the prompts of all completed scenes.",
                     ExportPromptsInput, self.export_prompts),
            )
        }

    def tool_definitions(self) -> List[dict]:
        """Tool specs in the shape the Anthropic messages API expects."""
        return [tool.to_anthropic_spec() for tool in self.tools.values()]

    async def invoke(self, name: str, raw_input: Optional[Mapping[str, Any]] = None) -> ToolResult:
        """Run the tool called *name* with unvalidated input."""
        tool = self.tools.get(name)
        if tool is None:
            return ToolResult.failed(f"Unknown tool: '{name}'")
        return await tool.execute(raw_input)

    def _resolve(self) -> Optional[ProjectCheckpoint]:
        if self.scope.project_id:
            project = self.store.load(self.scope.project_id)
            if project is not None:
                return project
        if self.scope.thread_id:
            return self.store.find_by_thread_id(self.scope.thread_id)
        return None

    def _require_project(self) -> ProjectCheckpoint:
        project = self._resolve()
        if project is None:
            raise ProjectNotFoundError()
        self.scope.bind(project)
        return project

    def _ids(self, project: ProjectCheckpoint) -> dict:
        return {"projectId": project.project_id, "threadId": project.thread_id}

    async def create_project(self, params: CreateProjectInput) -> ToolResult:
        existing = self._resolve()
        if existing is not None:
            self.scope.bind(existing)
            title = existing.title or params.title
            return ToolResult.ok(
                {**self._ids(existing), "title": title, "createdAt": existing.created_at, "reused": True},
                f"Found the existing project '{title}'. Let's continue.",
            )

        project = self.projects.create_project(
            params.title,
            project_id=self.scope.project_id or new_id("project"),
            thread_id=self.scope.thread_id or new_id("thread"),
        )
        self.scope.bind(project)
        return ToolResult.ok(
            {**self._ids(project), "title": project.title, "createdAt": project.created_at, "reused": False},
            f"Created project '{project.title}'. Tell me the story summary, art style and protagonist.",
        )

    async def get_project_state(self, params: GetProjectStateInput) -> ToolResult:
        if params.project_id:
            project = self.store.load(params.project_id)
        else:
            project = self._resolve()
        if project is None:
            return ToolResult.failed("Project not found")

        self.scope.bind(project)
        data = project.to_record()
        data["scenesCount"] = len(project.scenes)
        data["completedScenes"] = len(project.completed_scenes())
        data["currentStep"] = current_step(project.workflow_state).value
        return ToolResult.ok(data, "Loaded project state")

    async def set_project_info(self, params: SetProjectInfoInput) -> ToolResult:
        project = self._require_project()
        fields = {
            "title": params.title or None,
            "summary": params.summary or None,
            "art_style": params.art_style or None,
            "protagonist": params.protagonist or None,
        }
        project = self.projects.update_project(project.project_id, **fields)

        updated = params.model_dump(by_alias=True, exclude_none=True)
        updated = {name: value for name, value in updated.items() if value}
        return ToolResult.ok(
            {**updated, **self._ids(project), "workflowState": project.workflow_state.value},
            f"Updated project info: {', '.join(updated) or 'nothing'}",
        )

    async def generate_scenes(self, params: GenerateScenesInput) -> ToolResult:
        project = self._require_project()
        result = await self.pipeline.generate_scene_list(project.project_id, params.count)
        if not result.success:
            return ToolResult.failed(result.error or "Scene generation failed")

        project = result.project
        return ToolResult.ok(
            {
                **self._ids(project),
                "scenes": [scene.to_record() for scene in project.sorted_scenes()],
                "workflowState": project.workflow_state.value,
            },
            f"Generated {len(project.scenes)} scenes. Review them, then start refining.",
        )

    async def refine_scene(self, params: RefineSceneInput) -> ToolResult:
        project = self._require_project()
        result = await self.pipeline.refine_scene(project.project_id, params.scene_id)
        if not result.success:
            return ToolResult.failed(result.error or "Scene refinement failed")

        project, scene = result.project, result.scene
        return ToolResult.ok(
            {
                **self._ids(project),
                "sceneId": scene.id,
                "sceneDescription": scene.scene_description,
                "keyframePrompt": scene.action_description,
                "spatialPrompt": scene.shot_prompt,
                "fullPrompt": join_prompt(project.art_style, scene.action_description),
                "status": scene.status.value,
                "workflowState": project.workflow_state.value,
            },
            f"Scene {scene.order} refined",
        )

    async def batch_refine_scenes(self, params: BatchRefineInput) -> ToolResult:
        project = self._require_project()
        result = await self.pipeline.batch_refine(project.project_id, params.scene_ids)
        if not result.success:
            return ToolResult.failed(result.error or "Batch refinement failed")

        project = result.project
        results = []
        for item in result.items:
            entry: dict = {"sceneId": item.scene_id, "success": item.success}
            if item.success:
                entry.update({
                    "sceneDescription": item.refinement.scene_description,
                    "keyframePrompt": item.refinement.action_description,
                    "spatialPrompt": item.refinement.shot_prompt,
                    "fullPrompt": item.refinement.full_prompt(project.art_style),
                })
            else:
                entry["error"] = item.error
            results.append(entry)

        succeeded = sum(1 for item in result.items if item.success)
        data = {**self._ids(project), "results": results, "workflowState": project.workflow_state.value}
        if result.missing:
            data["missing"] = result.missing
        return ToolResult.ok(data, f"Refined {succeeded} of {len(result.items)} scenes")

    async def export_prompts(self, params: ExportPromptsInput) -> ToolResult:
        project = self._require_project()
        content, project = self.projects.export_project(
            project.project_id, ExportFormat(params.format), params.include_metadata
        )
        count = len(project.completed_scenes())
        return ToolResult.ok(
            {
                **self._ids(project),
                "format": params.format,
                "includeMetadata": params.include_metadata,
                "content": content,
                "scenesCount": count,
                "workflowState": project.workflow_state.value,
            },
            f"Exported {count} scenes as {params.format}",
        )


def create_agent_tools(
    store: CheckpointStore,
    generator: GenerationService,
    scope: Optional[ToolScope] = None,
    timeout: Optional[float] = None,
) -> ToolSet:
    """Build a tool set for one conversation."""
    return ToolSet(store, generator, scope=scope, timeout=timeout)
