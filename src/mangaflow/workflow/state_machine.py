"""Project workflow state machine.

Forward transitions are checked against ``TRANSITIONS``. ``restore`` bypasses the
table to put a project back to its last known-good state after a failed
step. ``enter_refinement`` starts a scene refinement from wherever the
project is. ``sync_completion`` derives ALL_SCENES_COMPLETE from the scene
statuses.
"""

import logging
from enum import Enum
from typing import List, Optional

from ..exceptions import InvalidTransitionError, PreconditionError
from ..models import ProjectCheckpoint, Scene, WizardState, WorkflowState
from ..models.project import SCENE_LIST_FIELDS

logger = logging.getLogger(__name__)

S = WorkflowState

TRANSITIONS: dict[WorkflowState, frozenset[WorkflowState]] = {
    S.IDLE: frozenset({S.COLLECTING_BASIC_INFO, S.BASIC_INFO_COMPLETE, S.GENERATING_SCENES}),
    S.COLLECTING_BASIC_INFO: frozenset({S.BASIC_INFO_COMPLETE, S.GENERATING_SCENES}),
    S.BASIC_INFO_COMPLETE: frozenset({S.GENERATING_SCENES}),
    S.GENERATING_SCENES: frozenset({S.SCENE_LIST_EDITING}),
    S.SCENE_LIST_EDITING: frozenset({
        S.GENERATING_SCENES, S.SCENE_LIST_CONFIRMED, S.REFINING_SCENES, S.EXPORTING,
    }),
    S.SCENE_LIST_CONFIRMED: frozenset({
        S.GENERATING_SCENES, S.SCENE_LIST_EDITING, S.REFINING_SCENES, S.EXPORTING,
    }),
    S.REFINING_SCENES: frozenset({S.GENERATING_SCENES, S.ALL_SCENES_COMPLETE, S.EXPORTING}),
    S.ALL_SCENES_COMPLETE: frozenset({S.GENERATING_SCENES, S.REFINING_SCENES, S.EXPORTING}),
    S.EXPORTING: frozenset({S.EXPORTED}),
    S.EXPORTED: frozenset({S.GENERATING_SCENES, S.REFINING_SCENES, S.EXPORTING}),
}

# States in which set_project_info may still promote the project
_INFO_COLLECTION_STATES = frozenset({S.IDLE, S.COLLECTING_BASIC_INFO, S.BASIC_INFO_COMPLETE})


def can_transition(current: WorkflowState, target: WorkflowState) -> bool:
    """Return whether *target* is a legal next state from *current*."""
    if current == target:
        return True
    return target in TRANSITIONS.get(current, frozenset())


def transition(project: ProjectCheckpoint, target: WorkflowState) -> WorkflowState:
    """Move *project* to *target*, returning the state it left.

    Raises:
        InvalidTransitionError: If the move is not in the transition table.
    """
    current = project.workflow_state
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)
    if current != target:
        logger.info(f"Project {project.project_id}: {current.value} -> {target.value}")
    project.workflow_state = target
    return current


def restore(project: ProjectCheckpoint, previous: WorkflowState) -> None:
    """Put *project* back into a previously recorded state after a failure."""
    if project.workflow_state != previous:
        logger.warning(
            f"Project {project.project_id}: restoring {previous.value} "
            f"(was {project.workflow_state.value})"
        )
    project.workflow_state = previous


def enter_refinement(project: ProjectCheckpoint) -> WorkflowState:
    """Move *project* to REFINING_SCENES for a scene refinement, returning the state it left.

    Refining is allowed from any state that can hold scenes, so a scene added
    by hand before a list was generated, or a project left in EXPORTING, can
    still be refined. Only a running scene list generation blocks it.

    Raises:
        InvalidTransitionError: While the scene list is being generated.
    """
    current = project.workflow_state
    if current == S.GENERATING_SCENES:
        raise InvalidTransitionError(current.value, S.REFINING_SCENES.value)
    if current != S.REFINING_SCENES:
        logger.info(f"Project {project.project_id}: {current.value} -> {S.REFINING_SCENES.value}")
    project.workflow_state = S.REFINING_SCENES
    return current


def apply_basic_info_rule(project: ProjectCheckpoint) -> WorkflowState:
    """Recompute the state after basic settings changed.

    All four fields present promotes the project to BASIC_INFO_COMPLETE.
    Partial info keeps it in COLLECTING_BASIC_INFO. Projects that already
    moved past info collection are left alone.
    """
    if project.workflow_state not in _INFO_COLLECTION_STATES:
        return project.workflow_state
    if project.has_basic_info:
        transition(project, S.BASIC_INFO_COMPLETE)
    elif project.workflow_state == S.IDLE:
        transition(project, S.COLLECTING_BASIC_INFO)
    return project.workflow_state


def finish_scene_generation(project: ProjectCheckpoint, scenes: List[Scene]) -> None:
    """Replace the scene list and enter SCENE_LIST_EDITING.

    A successful scene list generation always lands in SCENE_LIST_EDITING,
    whatever state the project was in.
    """
    project.scenes = list(scenes)
    if project.workflow_state != S.SCENE_LIST_EDITING:
        logger.info(
            f"Project {project.project_id}: {project.workflow_state.value} -> "
            f"{S.SCENE_LIST_EDITING.value} ({len(scenes)} scenes)"
        )
    project.workflow_state = S.SCENE_LIST_EDITING


def require_scene_generation_ready(project: ProjectCheckpoint) -> None:
    """Check the settings needed to generate a scene list.

    Raises:
        PreconditionError: If title, summary or art style is missing.
    """
    missing = project.missing_fields(SCENE_LIST_FIELDS)
    if missing:
        raise PreconditionError(
            "Complete the basic info first (title, summary, art style)",
            {"missing": missing},
        )


def require_exportable(project: ProjectCheckpoint) -> None:
    """Raises PreconditionError unless at least one scene is completed."""
    if not project.completed_scenes():
        raise PreconditionError("No completed scenes to export")


def sync_completion(project: ProjectCheckpoint) -> WorkflowState:
    """Derive ALL_SCENES_COMPLETE from the scene statuses.

    Called after every scene mutation. A project whose scenes are all
    completed moves to ALL_SCENES_COMPLETE; one that was complete and no
    longer is drops back to REFINING_SCENES, or SCENE_LIST_EDITING when it
    has no scenes left.
    """
    if project.all_scenes_complete:
        if project.workflow_state != S.ALL_SCENES_COMPLETE:
            logger.info(f"Project {project.project_id}: all scenes complete")
            project.workflow_state = S.ALL_SCENES_COMPLETE
    elif project.workflow_state == S.ALL_SCENES_COMPLETE:
        project.workflow_state = S.REFINING_SCENES if project.scenes else S.SCENE_LIST_EDITING
        logger.info(
            f"Project {project.project_id}: no longer complete, "
            f"back to {project.workflow_state.value}"
        )
    return project.workflow_state


class WorkflowStep(str, Enum):
    """Wizard step a workflow state belongs to."""
    SETTINGS = "settings"
    SCENES = "scenes"
    REFINE = "refine"
    EXPORT = "export"


STEP_ORDER = [WorkflowStep.SETTINGS, WorkflowStep.SCENES, WorkflowStep.REFINE, WorkflowStep.EXPORT]

_STEP_BY_STATE = {
    S.IDLE: WorkflowStep.SETTINGS,
    S.COLLECTING_BASIC_INFO: WorkflowStep.SETTINGS,
    S.BASIC_INFO_COMPLETE: WorkflowStep.SETTINGS,
    S.GENERATING_SCENES: WorkflowStep.SCENES,
    S.SCENE_LIST_EDITING: WorkflowStep.SCENES,
    S.SCENE_LIST_CONFIRMED: WorkflowStep.SCENES,
    S.REFINING_SCENES: WorkflowStep.REFINE,
    S.ALL_SCENES_COMPLETE: WorkflowStep.EXPORT,
    S.EXPORTING: WorkflowStep.EXPORT,
    S.EXPORTED: WorkflowStep.EXPORT,
}

# States that finish their step and unlock the next one
_READY_FOR_NEXT = frozenset({S.BASIC_INFO_COMPLETE, S.SCENE_LIST_CONFIRMED})

_PROCESSING_STATES = frozenset({S.GENERATING_SCENES, S.REFINING_SCENES, S.EXPORTING})


def current_step(state: WorkflowState) -> WorkflowStep:
    """Return the wizard step that *state* belongs to."""
    return _STEP_BY_STATE[state]


def can_enter_step(state: WorkflowState, step: WorkflowStep) -> bool:
    """Whether the wizard may show *step* for a project in *state*.

    Earlier steps are always reachable and revisiting them keeps generated
    content. The step right after the current one opens once the current
    step's work is confirmed.
    """
    current_index = STEP_ORDER.index(current_step(state))
    target_index = STEP_ORDER.index(step)
    if target_index <= current_index:
        return True
    return target_index == current_index + 1 and state in _READY_FOR_NEXT


def is_processing(state: WorkflowState) -> bool:
    return state in _PROCESSING_STATES


_TO_WIZARD = {
    S.IDLE: WizardState.IDLE,
    S.COLLECTING_BASIC_INFO: WizardState.DATA_COLLECTING,
    S.BASIC_INFO_COMPLETE: WizardState.DATA_COLLECTED,
    S.GENERATING_SCENES: WizardState.SCENE_LIST_GENERATING,
    S.SCENE_LIST_EDITING: WizardState.SCENE_LIST_EDITING,
    S.SCENE_LIST_CONFIRMED: WizardState.SCENE_LIST_CONFIRMED,
    S.REFINING_SCENES: WizardState.SCENE_PROCESSING,
    S.ALL_SCENES_COMPLETE: WizardState.ALL_SCENES_COMPLETE,
    S.EXPORTING: WizardState.EXPORTING,
    S.EXPORTED: WizardState.ALL_SCENES_COMPLETE,
}

_FROM_WIZARD = {
    WizardState.IDLE: S.IDLE,
    WizardState.DATA_COLLECTING: S.COLLECTING_BASIC_INFO,
    WizardState.DATA_COLLECTED: S.BASIC_INFO_COMPLETE,
    WizardState.SCENE_LIST_GENERATING: S.GENERATING_SCENES,
    WizardState.SCENE_LIST_EDITING: S.SCENE_LIST_EDITING,
    WizardState.SCENE_LIST_CONFIRMED: S.SCENE_LIST_CONFIRMED,
    WizardState.SCENE_PROCESSING: S.REFINING_SCENES,
    WizardState.ALL_SCENES_COMPLETE: S.ALL_SCENES_COMPLETE,
    WizardState.EXPORTING: S.EXPORTING,
}


def to_wizard_state(state: WorkflowState) -> WizardState:
    """Map a canonical state onto the wizard's state names."""
    return _TO_WIZARD[state]


def from_wizard_state(state) -> WorkflowState:
    """Map a wizard state (enum or name) onto the canonical state set."""
    return _FROM_WIZARD[WizardState(state)]


def parse_state(value: str) -> Optional[WorkflowState]:
    """Accept either a canonical or a wizard state name."""
    try:
        return WorkflowState(value)
    except ValueError:
        pass
    try:
        return from_wizard_state(value)
    except ValueError:
        return None
