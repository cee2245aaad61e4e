"""Scene status sub-machine and stage gating."""

import logging
from typing import Mapping, Optional

from ..exceptions import PreconditionError
from ..models import GENERATING_STATUSES, RefinementStage, Scene, SceneStatus

logger = logging.getLogger(__name__)

CONTENT_FIELDS = tuple(stage.field for stage in RefinementStage)

# The summary feeds every stage
_UPSTREAM_ORDER = ("summary",) + CONTENT_FIELDS

_FIELD_LABELS = {
    "scene_description": "scene description",
    "action_description": "action description",
    "shot_prompt": "shot prompt",
}


def _filled(scene: Scene, name: str) -> bool:
    value = getattr(scene, name)
    return bool(value and value.strip())


def require_stage_ready(scene: Scene, stage: RefinementStage) -> None:
    """Check that every earlier stage of *scene* has content.

    Raises:
        PreconditionError: If a prerequisite field is empty.
    """
    missing = [name for name in stage.prerequisites if not _filled(scene, name)]
    if missing:
        labels = ", ".join(_FIELD_LABELS[name] for name in missing)
        raise PreconditionError(
            f"Scene {scene.order} needs a {labels} before generating the {_FIELD_LABELS[stage.field]}",
            {"scene_id": scene.id, "missing": missing},
        )


def check_stage_gating(scene: Scene) -> None:
    """Reject a scene whose content skips a stage.

    Raises:
        PreconditionError: If a later content field is set while an earlier
            one is empty.
    """
    for stage in RefinementStage:
        if _filled(scene, stage.field):
            require_stage_ready(scene, stage)


def stable_status(scene: Scene) -> SceneStatus:
    """Return the last confirmed status that the scene's content supports."""
    if _filled(scene, "shot_prompt") and _filled(scene, "action_description") and _filled(scene, "scene_description"):
        return SceneStatus.COMPLETED
    if _filled(scene, "action_description") and _filled(scene, "scene_description"):
        return SceneStatus.ACTION_CONFIRMED
    if _filled(scene, "scene_description"):
        return SceneStatus.SCENE_CONFIRMED
    return SceneStatus.PENDING


def rollback_status(previous: SceneStatus, scene: Scene) -> SceneStatus:
    """Status to return to after a failed or cancelled generation.

    The pre-attempt status is used unless it was itself a generating status
    (left over from an interrupted run), in which case the status is
    derived from the content.
    """
    if previous in GENERATING_STATUSES:
        return stable_status(scene)
    return previous


def mark_stale_downstream(scene: Scene, changed: Mapping[str, Optional[str]]) -> bool:
    """Flag *scene* as needs_update when an edited stage has later content.

    Args:
        scene: The scene after the edit.
        changed: Summary or content fields whose values changed in the edit.

    Returns:
        True if the scene was marked.
    """
    edited = [_UPSTREAM_ORDER.index(name) for name in changed if name in _UPSTREAM_ORDER]
    if not edited:
        return False
    downstream = _UPSTREAM_ORDER[min(edited) + 1:]
    if any(_filled(scene, name) for name in downstream):
        scene.status = SceneStatus.NEEDS_UPDATE
        logger.info(f"Scene {scene.id}: upstream content edited, marked needs_update")
        return True
    return False
