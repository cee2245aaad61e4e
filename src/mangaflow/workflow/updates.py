"""Pure state merge for project checkpoints."""

from typing import Any, Mapping

from ..exceptions import PreconditionError, SceneNotFoundError
from ..models import ProjectCheckpoint, Scene

PROJECT_FIELDS = frozenset({"title", "summary", "art_style", "protagonist", "workflow_state"})
SCENE_FIELDS = frozenset({
    "order", "summary", "status", "scene_description", "action_description",
    "shot_prompt", "error", "notes",
})


def apply_update(current: ProjectCheckpoint, patch: Mapping[str, Any]) -> ProjectCheckpoint:
    """Return a new checkpoint with *patch* merged into *current*.

    Merge rules:

    * Project fields (``title``, ``summary``, ``art_style``, ``protagonist``,
      ``workflow_state``) are shallow-merged. Keys that are absent keep their
      value; ``None`` values are ignored.
    * ``scenes`` replaces the whole scene list.
    * ``scene_patches`` maps scene ids to field patches applied to those
      scenes only. It cannot be combined with ``scenes``.

    Identity and timestamp fields cannot be patched. *current* is never
    modified.

    Raises:
        PreconditionError: For unknown keys or a patch mixing ``scenes`` and
            ``scene_patches``.
        SceneNotFoundError: If ``scene_patches`` names an unknown scene.
    """
    unknown = set(patch) - PROJECT_FIELDS - {"scenes", "scene_patches"}
    if unknown:
        raise PreconditionError(f"Cannot update fields: {', '.join(sorted(unknown))}")
    if "scenes" in patch and "scene_patches" in patch:
        raise PreconditionError("Use either 'scenes' or 'scene_patches', not both")

    data = current.model_dump()
    for name in PROJECT_FIELDS:
        value = patch.get(name)
        if value is not None:
            data[name] = value

    if "scenes" in patch:
        data["scenes"] = [
            scene.model_dump() if isinstance(scene, Scene) else dict(scene)
            for scene in patch["scenes"]
        ]
    elif "scene_patches" in patch:
        data["scenes"] = _patch_scenes(current, patch["scene_patches"])

    return ProjectCheckpoint.model_validate(data)


def _patch_scenes(current: ProjectCheckpoint, scene_patches: Mapping[str, Mapping[str, Any]]) -> list[dict]:
    for scene_id in scene_patches:
        if current.find_scene(scene_id) is None:
            raise SceneNotFoundError(scene_id, current.project_id)

    scenes = []
    for scene in current.scenes:
        data = scene.model_dump()
        scene_patch = scene_patches.get(scene.id)
        if scene_patch:
            unknown = set(scene_patch) - SCENE_FIELDS
            if unknown:
                raise PreconditionError(
                    f"Cannot update scene fields: {', '.join(sorted(unknown))}"
                )
            data.update(scene_patch)
        scenes.append(data)
    return scenes
