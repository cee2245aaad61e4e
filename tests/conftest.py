"""
Pytest Configuration and Fixtures

Shared fixtures for all tests.
"""

from typing import Any, AsyncIterator, Dict, List, Optional

import pytest

from mangaflow.agents.refinement import SceneContext
from mangaflow.agents.scene_list import SceneListInput
from mangaflow.exceptions import GenerationError
from mangaflow.models import ProjectCheckpoint, RefinementStage, Scene, SceneStatus, WorkflowState
from mangaflow.services.generation import GenerationService
from mangaflow.store import MemoryCheckpointStore, SQLiteCheckpointStore


class FakeGenerationService(GenerationService):
    """Scripted generation service.

    Every stage returns ``"<stage> of <scene summary>"``. Scenes listed in
    ``failing_scenes`` raise GenerationError at ``failing_stage``.
    """

    def __init__(self, scene_summaries: Optional[List[str]] = None) -> None:
        self.scene_summaries = scene_summaries if scene_summaries is not None else [
            "Mika finds a glowing map in the school library",
            "Mika follows the map into the abandoned subway",
            "Mika meets the guardian of the lost city",
        ]
        self.failing_scenes: set = set()
        self.failing_stage: RefinementStage = RefinementStage.SCENE_DESCRIPTION
        self.scene_list_error: Optional[Exception] = None
        self.stream_fragments: Optional[List[Any]] = None
        self.requests: List[SceneListInput] = []
        self.calls: List[tuple] = []
        self.closed = False

    async def generate_scene_list(self, request: SceneListInput) -> List[str]:
        self.requests.append(request)
        if self.scene_list_error is not None:
            raise self.scene_list_error
        return list(self.scene_summaries[:request.count])

    async def _stage(self, stage: RefinementStage, ctx: SceneContext) -> str:
        self.calls.append((stage, ctx.scene_id))
        if ctx.scene_id in self.failing_scenes and stage == self.failing_stage:
            raise GenerationError(f"{stage.value} failed for {ctx.scene_id}")
        return f"{stage.value} of {ctx.scene_summary}"

    async def generate_scene_description(self, ctx: SceneContext) -> str:
        return await self._stage(RefinementStage.SCENE_DESCRIPTION, ctx)

    async def generate_action_description(self, ctx: SceneContext) -> str:
        return await self._stage(RefinementStage.ACTION_DESCRIPTION, ctx)

    async def generate_shot_prompt(self, ctx: SceneContext) -> str:
        return await self._stage(RefinementStage.SHOT_PROMPT, ctx)

    async def stream_stage(self, stage: RefinementStage, ctx: SceneContext) -> AsyncIterator[Any]:
        if self.stream_fragments is not None:
            for fragment in self.stream_fragments:
                if isinstance(fragment, Exception):
                    raise fragment
                yield fragment
            return
        text = await self._stage(stage, ctx)
        for word in text.split(" "):
            yield word + " "

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def store() -> MemoryCheckpointStore:
    """Fresh in-memory checkpoint store."""
    return MemoryCheckpointStore()


@pytest.fixture
def sqlite_path(tmp_path):
    """Path for a throwaway SQLite database."""
    return tmp_path / "checkpoints.db"


@pytest.fixture
def generator() -> FakeGenerationService:
    """Scripted generation service."""
    return FakeGenerationService()


def make_scene(order: int, status: SceneStatus = SceneStatus.PENDING, **fields) -> Scene:
    """Build a scene with a predictable id."""
    return Scene(id=f"scene-{order}", order=order, summary=f"Scene number {order}", status=status, **fields)


def completed_scene(order: int) -> Scene:
    return make_scene(
        order,
        SceneStatus.COMPLETED,
        scene_description=f"A rainy rooftop, scene {order}",
        action_description=f"Mika leaps across the gap, scene {order}",
        shot_prompt=f"wide shot, low angle, rooftop, rain, scene {order}",
    )


@pytest.fixture
def project_info() -> Dict[str, str]:
    """Complete basic settings."""
    return {
        "title": "Lost City",
        "summary": "A schoolgirl discovers a city under Tokyo",
        "art_style": "black and white shonen manga",
        "protagonist": "Mika, 15, stubborn and curious",
    }


@pytest.fixture
def ready_project(store, project_info) -> ProjectCheckpoint:
    """Saved project with complete basic info and no scenes."""
    project = ProjectCheckpoint(
        project_id="project-1",
        thread_id="thread-1",
        workflow_state=WorkflowState.BASIC_INFO_COMPLETE,
        **project_info,
    )
    store.save(project)
    return project


@pytest.fixture
def project_with_scenes(store, project_info) -> ProjectCheckpoint:
    """Saved project with three pending scenes."""
    project = ProjectCheckpoint(
        project_id="project-2",
        thread_id="thread-2",
        workflow_state=WorkflowState.SCENE_LIST_EDITING,
        scenes=[make_scene(1), make_scene(2), make_scene(3)],
        **project_info,
    )
    store.save(project)
    return project


@pytest.fixture(params=["memory", "sqlite"])
def any_store(request, tmp_path):
    """Each checkpoint store backend in turn."""
    if request.param == "memory":
        yield MemoryCheckpointStore()
        return
    backend = SQLiteCheckpointStore(tmp_path / "store.db")
    yield backend
    backend.close()
