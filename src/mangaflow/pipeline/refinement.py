"""Scene refinement pipeline.

Drives scene-list generation and the three refinement stages against the
checkpoint store. Every entry point reloads the project before mutating it,
saves the in-progress status before calling the generator, and never leaves
a scene or project in a generating state when it returns.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Mapping, Optional, Sequence

from ..agents.refinement import SceneContext
from ..agents.scene_list import SceneListInput
from ..config import SCENE_COUNT_MAX, SCENE_COUNT_MIN, config
from ..exceptions import MangaFlowError, PreconditionError, ProjectNotFoundError
from ..models import (
    ProjectCheckpoint,
    RefinementStage,
    Scene,
    SceneStatus,
    WorkflowState,
    new_id,
)
from ..services.generation import (
    BatchRefineItem,
    GenerationService,
    SceneRefinement,
    run_generation,
)
from ..store import CheckpointStore
from ..streaming import CancellationToken, ChunkCallback, StreamingGeneration, StreamOutcome
from ..workflow import (
    enter_refinement,
    finish_scene_generation,
    require_scene_generation_ready,
    require_stage_ready,
    restore,
    rollback_status,
    sync_completion,
    transition,
)

logger = logging.getLogger(__name__)

PROJECT_GONE = "Project was deleted during generation"


class OutcomeStatus(str, Enum):
    """Terminal status of a pipeline operation."""
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class StageResult:
    """Result of a pipeline operation."""

    status: OutcomeStatus
    project: Optional[ProjectCheckpoint] = None
    scene: Optional[Scene] = None
    content: str = ""
    error: Optional[str] = None
    refinement: Optional[SceneRefinement] = None
    items: List[BatchRefineItem] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCESS

    @property
    def cancelled(self) -> bool:
        return self.status == OutcomeStatus.CANCELLED

    @classmethod
    def failed(cls, error: str, **kwargs) -> "StageResult":
        return cls(OutcomeStatus.FAILED, error=error, **kwargs)


class ScenePipeline:
    """Scene list generation and per-scene refinement.

    Args:
        store: Checkpoint store the project lives in.
        generator: Generation service used for every LLM call.
        timeout: Seconds allowed per generation call. Defaults to
            config.generation_timeout.
    """

    def __init__(
        self,
        store: CheckpointStore,
        generator: GenerationService,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.timeout = config.generation_timeout if timeout is None else timeout

    def _load(self, project_id: str) -> ProjectCheckpoint:
        project = self.store.load(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id=project_id)
        return project

    async def generate_scene_list(self, project_id: str, count: Optional[int] = None) -> StageResult:
        """Generate a fresh scene list for the project.

        On success the scenes are replaced with *count* pending scenes and the
        project is in SCENE_LIST_EDITING. On failure no scenes are written and
        the project returns to the state it had before the call.
        """
        count = config.default_scene_count if count is None else count
        try:
            if not SCENE_COUNT_MIN <= count <= SCENE_COUNT_MAX:
                raise PreconditionError(
                    f"Scene count must be between {SCENE_COUNT_MIN} and {SCENE_COUNT_MAX}",
                    {"count": count},
                )
            project = self._load(project_id)
            require_scene_generation_ready(project)
            previous_state = transition(project, WorkflowState.GENERATING_SCENES)
            self.store.save(project)
        except MangaFlowError as e:
            logger.error(f"Cannot generate scenes for {project_id}: {e}")
            return StageResult.failed(e.message)

        request = SceneListInput(
            title=project.title,
            summary=project.summary,
            art_style=project.art_style,
            protagonist=project.protagonist,
            count=count,
        )
        try:
            summaries = await run_generation(self.generator.generate_scene_list(request), self.timeout)
            if not summaries:
                raise PreconditionError("The generator returned no scenes")
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Scene list generation failed for {project_id}: {error}")
            return self._restore_state(project_id, previous_state, error)
        except BaseException:
            logger.warning(f"Scene list generation for {project_id} interrupted")
            self._recover(project_id, lambda current: restore(current, previous_state))
            raise

        try:
            project = self.store.load(project_id)
            if project is None:
                return StageResult.failed(PROJECT_GONE)
            scenes = [
                Scene(id=new_id("scene"), order=index, summary=summary)
                for index, summary in enumerate(summaries, start=1)
            ]
            finish_scene_generation(project, scenes)
            self.store.save(project)
        except MangaFlowError as e:
            logger.error(f"Could not save the scene list for {project_id}: {e}")
            return self._restore_state(project_id, previous_state, e.message)
        logger.info(f"Generated {len(scenes)} scenes for project {project_id}")
        return StageResult(OutcomeStatus.SUCCESS, project=project)

    def _recover(
        self, project_id: str, repair: Callable[[ProjectCheckpoint], None]
    ) -> Optional[ProjectCheckpoint]:
        """Reload the project, apply *repair* and save it.

        Used when a generation fails, is interrupted or cannot save its
        result. Returns None when the project is gone or the store fails.
        """
        try:
            project = self.store.load(project_id)
            if project is None:
                return None
            repair(project)
            self.store.save(project)
        except MangaFlowError as e:
            logger.error(f"Could not roll back project {project_id}: {e}")
            return None
        return project

    def _restore_state(self, project_id: str, previous: WorkflowState, error: str) -> StageResult:
        project = self._recover(project_id, lambda current: restore(current, previous))
        return StageResult.failed(error, project=project)

    async def run_stage(
        self,
        project_id: str,
        scene_id: str,
        stage: RefinementStage,
        *,
        stream: bool = True,
        on_chunk: Optional[ChunkCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> StageResult:
        """Generate one refinement stage for one scene.

        The scene moves to the stage's generating status, then to its
        confirmed status on success. On failure it goes back to its
        pre-attempt status with the error recorded; on cancellation it goes
        back without an error and the project state is restored too. A
        cancelled task rolls back the same way before the cancellation
        propagates.
        """
        try:
            project = self._load(project_id)
            scene = project.get_scene(scene_id)
            require_stage_ready(scene, stage)
            previous_state = enter_refinement(project)
            previous = {scene_id: scene.status}
            scene.status = stage.generating_status
            scene.error = None
            self.store.save(project)
        except MangaFlowError as e:
            logger.error(f"Cannot run {stage.value} for scene {scene_id}: {e}")
            return StageResult.failed(e.message)

        ctx = SceneContext.for_scene(project, scene)
        try:
            outcome = await self._generate_stage(stage, ctx, stream, on_chunk, cancel_token)
            if outcome.is_complete and not outcome.content.strip():
                outcome = StreamOutcome.failed("The generator returned an empty response")

            project = self.store.load(project_id)
            if project is None:
                return StageResult.failed(PROJECT_GONE)
            scene = project.find_scene(scene_id)
            if scene is None:
                return StageResult.failed("Scene was removed during generation", project=project)

            if outcome.is_complete:
                content = outcome.content.strip()
                setattr(scene, stage.field, content)
                scene.status = stage.confirmed_status
                scene.error = None
                sync_completion(project)
                self.store.save(project)
                logger.info(f"Scene {scene_id}: {stage.value} done ({len(content)} chars)")
                return StageResult(OutcomeStatus.SUCCESS, project=project, scene=scene, content=content)

            if outcome.is_cancelled:
                _roll_back_scenes(project, previous, previous_state=previous_state)
                self.store.save(project)
                logger.warning(f"Scene {scene_id}: {stage.value} cancelled")
                return StageResult(
                    OutcomeStatus.CANCELLED, project=project, scene=scene, content=outcome.content
                )

            error = outcome.error or "Generation failed"
            _roll_back_scenes(project, previous, error=error)
            self.store.save(project)
            logger.error(f"Scene {scene_id}: {stage.value} failed: {error}")
            return StageResult.failed(error, project=project, scene=scene)
        except MangaFlowError as e:
            logger.error(f"Scene {scene_id}: could not save {stage.value}: {e}")
            project = self._recover(
                project_id,
                lambda current: _roll_back_scenes(current, previous, error=e.message),
            )
            scene = project.find_scene(scene_id) if project is not None else None
            return StageResult.failed(e.message, project=project, scene=scene)
        except BaseException:
            logger.warning(f"Scene {scene_id}: {stage.value} interrupted")
            self._recover(
                project_id,
                lambda current: _roll_back_scenes(current, previous, previous_state=previous_state),
            )
            raise

    async def _generate_stage(
        self,
        stage: RefinementStage,
        ctx: SceneContext,
        stream: bool,
        on_chunk: Optional[ChunkCallback],
        cancel_token: Optional[CancellationToken],
    ) -> StreamOutcome:
        if stream:
            streaming = StreamingGeneration(
                parser=self.generator.fragment_parser,
                on_chunk=on_chunk,
                cancel_token=cancel_token,
                timeout=self.timeout,
            )
            return await streaming.consume(self.generator.stream_stage(stage, ctx))
        try:
            content = await run_generation(self.generator.generate_stage(stage, ctx), self.timeout)
        except Exception as e:
            return StreamOutcome.failed(str(e) or type(e).__name__)
        return StreamOutcome.complete(content)

    async def refine_scene_fully(
        self,
        project_id: str,
        scene_id: str,
        *,
        start: Optional[RefinementStage] = None,
        stream: bool = True,
    ) -> StageResult:
        """Run the stages of a scene one after another.

        Without *start* only stages whose field is still empty run. With
        *start* that stage and every later one are regenerated. Stops at the
        first stage that does not succeed and returns its result.
        """
        stages = list(RefinementStage)
        first = stages.index(start) if start is not None else 0
        result: Optional[StageResult] = None
        for stage in stages[first:]:
            project = self.store.load(project_id)
            if project is None:
                return StageResult.failed(ProjectNotFoundError(project_id=project_id).message)
            scene = project.find_scene(scene_id)
            if scene is None:
                return StageResult.failed(f"Scene not found: '{scene_id}'", project=project)
            if start is None and getattr(scene, stage.field):
                continue
            result = await self.run_stage(project_id, scene_id, stage, stream=stream)
            if not result.success:
                return result

        if result is None:
            return StageResult(OutcomeStatus.SUCCESS, project=project, scene=scene)
        return result

    async def refine_scene(self, project_id: str, scene_id: str) -> StageResult:
        """Generate all three fields for one scene in a single call.

        The scene is ``in_progress`` while the generator runs and ends up
        ``completed`` or ``error``. Other scenes are not touched. A cancelled
        task puts the scene back to its previous status.
        """
        try:
            project = self._load(project_id)
            scene = project.get_scene(scene_id)
            previous_state = enter_refinement(project)
            previous = {scene_id: scene.status}
            scene.status = SceneStatus.IN_PROGRESS
            scene.error = None
            self.store.save(project)
        except MangaFlowError as e:
            logger.error(f"Cannot refine scene {scene_id}: {e}")
            return StageResult.failed(e.message)

        ctx = SceneContext.for_scene(project, scene)
        try:
            refinement = await run_generation(self.generator.refine_scene(ctx), self.timeout)
            _check_refinement(refinement)

            project = self.store.load(project_id)
            if project is None:
                return StageResult.failed(PROJECT_GONE)
            scene = project.find_scene(scene_id)
            if scene is None:
                return StageResult.failed("Scene was removed during generation", project=project)
            _apply_refinement(scene, refinement)
            sync_completion(project)
            self.store.save(project)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.error(f"Refining scene {scene_id} failed: {error}")
            project = self._recover(project_id, lambda current: _mark_failed(current, [scene_id], error))
            scene = project.find_scene(scene_id) if project is not None else None
            return StageResult.failed(error, project=project, scene=scene)
        except BaseException:
            logger.warning(f"Refining scene {scene_id} interrupted")
            self._recover(
                project_id,
                lambda current: _roll_back_scenes(current, previous, previous_state=previous_state),
            )
            raise

        logger.info(f"Scene {scene_id} refined")
        return StageResult(OutcomeStatus.SUCCESS, project=project, scene=scene, refinement=refinement)

    async def batch_refine(self, project_id: str, scene_ids: Sequence[str]) -> StageResult:
        """Refine several scenes concurrently and save once.

        Unknown ids are reported in ``missing``. Each scene that fails ends
        up ``error`` with its own message; the others are unaffected.
        """
        try:
            project = self._load(project_id)
        except MangaFlowError as e:
            return StageResult.failed(e.message)

        targets: List[Scene] = []
        missing: List[str] = []
        for scene_id in dict.fromkeys(scene_ids):
            scene = project.find_scene(scene_id)
            if scene is None:
                missing.append(scene_id)
            else:
                targets.append(scene)
        if not targets:
            return StageResult.failed("None of the requested scenes exist", missing=missing)

        previous = {scene.id: scene.status for scene in targets}
        target_ids = list(previous)
        try:
            previous_state = enter_refinement(project)
            for scene in targets:
                scene.status = SceneStatus.IN_PROGRESS
                scene.error = None
            self.store.save(project)
        except MangaFlowError as e:
            return StageResult.failed(e.message, missing=missing)
        contexts = [SceneContext.for_scene(project, scene) for scene in targets]

        try:
            try:
                items = await self.generator.batch_refine(contexts, timeout=self.timeout)
            except Exception as e:
                error = str(e) or type(e).__name__
                logger.error(f"Batch refine failed for project {project_id}: {error}")
                items = [BatchRefineItem(scene_id, error=error) for scene_id in target_ids]

            results = {item.scene_id: item for item in items}
            project = self.store.load(project_id)
            if project is None:
                return StageResult.failed(PROJECT_GONE)
            for scene_id in target_ids:
                scene = project.find_scene(scene_id)
                if scene is None:
                    continue
                item = results.get(scene_id)
                if item is None:
                    item = BatchRefineItem(scene_id, error="No result returned for this scene")
                    results[scene_id] = item
                if item.success:
                    try:
                        _check_refinement(item.refinement)
                    except PreconditionError as e:
                        item.refinement, item.error = None, str(e)
                if item.success:
                    _apply_refinement(scene, item.refinement)
                else:
                    scene.status = SceneStatus.ERROR
                    scene.error = item.error
            sync_completion(project)
            self.store.save(project)
        except MangaFlowError as e:
            logger.error(f"Could not save batch results for project {project_id}: {e}")
            project = self._recover(project_id, lambda current: _mark_failed(current, target_ids, e.message))
            return StageResult.failed(e.message, project=project, missing=missing)
        except BaseException:
            logger.warning(f"Batch refine for project {project_id} interrupted")
            self._recover(
                project_id,
                lambda current: _roll_back_scenes(current, previous, previous_state=previous_state),
            )
            raise

        ordered = [results[scene_id] for scene_id in target_ids]
        succeeded = sum(1 for item in ordered if item.success)
        logger.info(f"Batch refined {succeeded}/{len(ordered)} scenes in project {project_id}")
        return StageResult(OutcomeStatus.SUCCESS, project=project, items=ordered, missing=missing)


def _roll_back_scenes(
    project: ProjectCheckpoint,
    previous: Mapping[str, SceneStatus],
    error: Optional[str] = None,
    previous_state: Optional[WorkflowState] = None,
) -> None:
    """Put scenes still in a generating status back to their prior status."""
    for scene_id, status in previous.items():
        scene = project.find_scene(scene_id)
        if scene is None or not scene.is_generating:
            continue
        scene.status = rollback_status(status, scene)
        scene.error = error
    if previous_state is not None:
        restore(project, previous_state)
    sync_completion(project)


def _mark_failed(project: ProjectCheckpoint, scene_ids: Sequence[str], error: str) -> None:
    for scene_id in scene_ids:
        scene = project.find_scene(scene_id)
        if scene is not None:
            scene.status = SceneStatus.ERROR
            scene.error = error
    sync_completion(project)


def _check_refinement(refinement: SceneRefinement) -> None:
    for stage in RefinementStage:
        value = getattr(refinement, stage.field)
        if not value or not value.strip():
            raise PreconditionError(f"The generator returned an empty {stage.value.replace('_', ' ')}")


def _apply_refinement(scene: Scene, refinement: SceneRefinement) -> None:
    scene.scene_description = refinement.scene_description.strip()
    scene.action_description = refinement.action_description.strip()
    scene.shot_prompt = refinement.shot_prompt.strip()
    scene.status = SceneStatus.COMPLETED
    scene.error = None
