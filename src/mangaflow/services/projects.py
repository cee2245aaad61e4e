"""Project and scene management on top of the checkpoint store."""

import logging
from typing import Any, List, Optional, Sequence, Tuple

from ..config import TITLE_MAX_LENGTH
from ..exceptions import PreconditionError, ProjectNotFoundError
from ..export import ExportFormat, format_export
from ..models import BASIC_INFO_FIELDS, ProjectCheckpoint, Scene, WorkflowState, new_id
from ..store import CheckpointStore
from ..workflow import (
    CONTENT_FIELDS,
    WorkflowStep,
    apply_basic_info_rule,
    apply_update,
    can_enter_step,
    check_stage_gating,
    current_step,
    mark_stale_downstream,
    require_exportable,
    restore,
    stable_status,
    sync_completion,
    transition,
)

logger = logging.getLogger(__name__)

# Scene fields a caller may edit directly. Status is owned by the pipeline.
EDITABLE_SCENE_FIELDS = frozenset({"summary", "notes"}) | frozenset(CONTENT_FIELDS)


def validate_title(title: str) -> str:
    """Strip *title* and check its length.

    Raises:
        PreconditionError: If the title is empty or too long.
    """
    title = (title or "").strip()
    if not title:
        raise PreconditionError("Title is required")
    if len(title) > TITLE_MAX_LENGTH:
        raise PreconditionError(f"Title must be at most {TITLE_MAX_LENGTH} characters")
    return title


class ProjectService:
    """CRUD for projects and scenes plus the wizard's workflow triggers.

    Every method loads the current checkpoint from the store, applies one
    change and saves the full checkpoint before returning.
    """

    def __init__(self, store: CheckpointStore) -> None:
        self.store = store

    # Projects

    def create_project(
        self,
        title: str,
        summary: str = "",
        art_style: str = "",
        protagonist: str = "",
        *,
        project_id: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> ProjectCheckpoint:
        """Create and save a new project.

        The project starts in COLLECTING_BASIC_INFO, or BASIC_INFO_COMPLETE
        when all four settings are given.
        """
        project = ProjectCheckpoint(
            project_id=project_id or new_id("project"),
            thread_id=thread_id or new_id("thread"),
            title=validate_title(title),
            summary=summary.strip(),
            art_style=art_style.strip(),
            protagonist=protagonist.strip(),
        )
        apply_basic_info_rule(project)
        self.store.save(project)
        logger.info(f"Created project {project.project_id} ({project.title})")
        return project

    def get_project(self, project_id: str) -> ProjectCheckpoint:
        """Raises ProjectNotFoundError for unknown ids."""
        project = self.store.load(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id=project_id)
        return project

    def resolve_project(
        self,
        project_id: Optional[str] = None,
        thread_id: Optional[str] = None,
    ) -> ProjectCheckpoint:
        """Find a project by id, falling back to its thread id.

        Raises:
            ProjectNotFoundError: If neither key resolves.
        """
        if project_id:
            project = self.store.load(project_id)
            if project is not None:
                return project
        if thread_id:
            project = self.store.find_by_thread_id(thread_id)
            if project is not None:
                return project
        raise ProjectNotFoundError(project_id=project_id, thread_id=thread_id)

    def list_projects(self) -> List[ProjectCheckpoint]:
        """All projects, most recently updated first."""
        return self.store.list()

    def update_project(self, project_id: str, **fields: Any) -> ProjectCheckpoint:
        """Merge basic settings into the project.

        ``None`` values are left unchanged. All four settings present
        promotes the project to BASIC_INFO_COMPLETE.

        Raises:
            PreconditionError: For fields other than the basic settings or an
                invalid title.
        """
        unknown = set(fields) - set(BASIC_INFO_FIELDS)
        if unknown:
            raise PreconditionError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        patch = {name: value.strip() for name, value in fields.items() if value is not None}
        if "title" in patch:
            patch["title"] = validate_title(patch["title"])

        project = apply_update(self.get_project(project_id), patch)
        apply_basic_info_rule(project)
        self.store.save(project)
        return project

    def delete_project(self, project_id: str) -> None:
        """Delete a project and its scenes.

        Raises:
            ProjectNotFoundError: For unknown ids.
        """
        self.get_project(project_id)
        self.store.delete(project_id)
        logger.info(f"Deleted project {project_id}")

    # Workflow

    def set_workflow_state(self, project_id: str, state: WorkflowState) -> ProjectCheckpoint:
        """Apply an explicit transition.

        Raises:
            InvalidTransitionError: If the transition table forbids it.
        """
        project = self.get_project(project_id)
        transition(project, WorkflowState(state))
        self.store.save(project)
        return project

    def confirm_scene_list(self, project_id: str) -> ProjectCheckpoint:
        """Confirm the scene list so refinement can start.

        Raises:
            PreconditionError: If the project has no scenes.
            InvalidTransitionError: If the project is not editing a scene list.
        """
        project = self.get_project(project_id)
        if not project.scenes:
            raise PreconditionError("Add at least one scene before confirming")
        transition(project, WorkflowState.SCENE_LIST_CONFIRMED)
        self.store.save(project)
        return project

    def current_step(self, project_id: str) -> WorkflowStep:
        return current_step(self.get_project(project_id).workflow_state)

    def can_enter_step(self, project_id: str, step: WorkflowStep) -> bool:
        return can_enter_step(self.get_project(project_id).workflow_state, WorkflowStep(step))

    def export_project(
        self,
        project_id: str,
        fmt: ExportFormat = ExportFormat.JSON,
        include_metadata: bool = False,
    ) -> Tuple[str, ProjectCheckpoint]:
        """Export the completed scenes and mark the project EXPORTED.

        EXPORTING is saved before formatting and EXPORTED after, so an
        interrupted export stays visible as EXPORTING.

        Raises:
            PreconditionError: If no scene is completed.
            InvalidTransitionError: If the project cannot export from its state.
        """
        project = self.get_project(project_id)
        require_exportable(project)
        previous_state = transition(project, WorkflowState.EXPORTING)
        self.store.save(project)

        try:
            content = format_export(project, fmt, include_metadata)
        except Exception:
            restore(project, previous_state)
            self.store.save(project)
            raise

        transition(project, WorkflowState.EXPORTED)
        self.store.save(project)
        logger.info(
            f"Exported {len(project.completed_scenes())} scenes of {project_id} as {ExportFormat(fmt).value}"
        )
        return content, project

    # Scenes

    def add_scene(
        self,
        project_id: str,
        summary: str,
        notes: Optional[str] = None,
        position: Optional[int] = None,
    ) -> Scene:
        """Insert a pending scene, at the end unless *position* (1-based) is given."""
        summary = (summary or "").strip()
        if not summary:
            raise PreconditionError("Scene summary is required")

        project = self.get_project(project_id)
        scenes = project.sorted_scenes()
        index = len(scenes) if position is None else min(max(position, 1), len(scenes) + 1) - 1
        scene = Scene(id=new_id("scene"), order=index + 1, summary=summary, notes=notes)
        scenes.insert(index, scene)
        project.scenes = _renumber(scenes)
        sync_completion(project)
        self.store.save(project)
        return scene

    def update_scene(self, project_id: str, scene_id: str, **fields: Any) -> Scene:
        """Edit a scene's summary, notes or content.

        Editing the summary or a content field while later stages already
        have content marks the scene ``needs_update``.

        Raises:
            PreconditionError: For non-editable fields, an empty summary or
                content that skips a stage.
            SceneNotFoundError: For unknown scene ids.
        """
        unknown = set(fields) - EDITABLE_SCENE_FIELDS
        if unknown:
            raise PreconditionError(f"Cannot update scene fields: {', '.join(sorted(unknown))}")
        if "summary" in fields and not (fields["summary"] or "").strip():
            raise PreconditionError("Scene summary is required")

        current = self.get_project(project_id)
        before = current.get_scene(scene_id)
        project = apply_update(current, {"scene_patches": {scene_id: fields}})
        scene = project.get_scene(scene_id)
        check_stage_gating(scene)

        changed = {
            name: getattr(scene, name)
            for name in ("summary",) + CONTENT_FIELDS
            if name in fields and getattr(scene, name) != getattr(before, name)
        }
        if not mark_stale_downstream(scene, changed) and set(changed) & set(CONTENT_FIELDS):
            scene.status = stable_status(scene)
        sync_completion(project)
        self.store.save(project)
        return scene

    def reset_scene(self, project_id: str, scene_id: str) -> Scene:
        """Clear an error or needs_update flag, keeping the content."""
        project = self.get_project(project_id)
        scene = project.get_scene(scene_id)
        scene.status = stable_status(scene)
        scene.error = None
        sync_completion(project)
        self.store.save(project)
        return scene

    def delete_scene(self, project_id: str, scene_id: str) -> ProjectCheckpoint:
        """Remove a scene and close the gap in the ordering."""
        project = self.get_project(project_id)
        project.get_scene(scene_id)
        project.scenes = _renumber(s for s in project.sorted_scenes() if s.id != scene_id)
        sync_completion(project)
        self.store.save(project)
        return project

    def reorder_scenes(self, project_id: str, scene_ids: Sequence[str]) -> List[Scene]:
        """Put the scenes in the order of *scene_ids*, numbered 1..N.

        Raises:
            PreconditionError: If *scene_ids* is not a permutation of the
                project's scene ids.
        """
        project = self.get_project(project_id)
        by_id = {scene.id: scene for scene in project.scenes}
        if len(scene_ids) != len(by_id) or set(scene_ids) != set(by_id):
            raise PreconditionError(
                "Reorder must list every scene exactly once",
                {"expected": sorted(by_id), "given": list(scene_ids)},
            )
        project.scenes = _renumber(by_id[scene_id] for scene_id in scene_ids)
        self.store.save(project)
        return project.scenes


def _renumber(scenes) -> List[Scene]:
    ordered = list(scenes)
    for order, scene in enumerate(ordered, start=1):
        scene.order = order
    return ordered
