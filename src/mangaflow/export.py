"""Export formatting for completed scenes."""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import yaml

from .models import ProjectCheckpoint
from .services.generation import join_prompt


class ExportFormat(str, Enum):
    """Supported export formats."""
    JSON = "json"
    MARKDOWN = "markdown"
    TEXT = "text"
    YAML = "yaml"


def build_export_data(
    project: ProjectCheckpoint,
    include_metadata: bool = False,
    exported_at: Optional[str] = None,
) -> dict:
    """Collect the completed scenes of *project* into a plain dict.

    ``fullPrompt`` is the action description prefixed with the art style.
    """
    scenes = []
    for scene in project.completed_scenes():
        scenes.append({
            "order": scene.order,
            "summary": scene.summary,
            "sceneDescription": scene.scene_description,
            "keyframePrompt": scene.action_description,
            "spatialPrompt": scene.shot_prompt,
            "fullPrompt": join_prompt(project.art_style, scene.action_description) or None,
        })

    data = {
        "projectTitle": project.title,
        "artStyle": project.art_style,
        "scenes": scenes,
        "exportedAt": exported_at or datetime.now(timezone.utc).isoformat(),
    }
    if include_metadata:
        data["metadata"] = {
            "projectId": project.project_id,
            "threadId": project.thread_id,
            "summary": project.summary,
            "protagonist": project.protagonist,
            "totalScenes": len(project.scenes),
            "completedScenes": len(scenes),
            "createdAt": project.created_at,
            "updatedAt": project.updated_at,
        }
    return data


def format_export(
    project: ProjectCheckpoint,
    fmt: ExportFormat = ExportFormat.JSON,
    include_metadata: bool = False,
    exported_at: Optional[str] = None,
) -> str:
    """Render the completed scenes of *project* in *fmt*."""
    fmt = ExportFormat(fmt)
    data = build_export_data(project, include_metadata, exported_at)
    if fmt == ExportFormat.JSON:
        return json.dumps(data, indent=2, ensure_ascii=False)
    if fmt == ExportFormat.YAML:
        return yaml.safe_dump(data, default_flow_style=False, allow_unicode=True, sort_keys=False)
    if fmt == ExportFormat.MARKDOWN:
        return _to_markdown(data)
    return _to_text(data)


def _to_markdown(data: dict) -> str:
    lines = [f"# {data['projectTitle']}", "", "## Visual Style", data["artStyle"], ""]
    metadata = data.get("metadata")
    if metadata:
        if metadata["protagonist"]:
            lines.extend(["## Protagonist", metadata["protagonist"], ""])
        if metadata["summary"]:
            lines.extend(["## Story", metadata["summary"], ""])
    lines.extend(["---", ""])

    for scene in data["scenes"]:
        lines.extend([f"## Scene {scene['order']}: {scene['summary']}", ""])
        if scene["sceneDescription"]:
            lines.extend(["### Scene Description", scene["sceneDescription"], ""])
        if scene["keyframePrompt"]:
            lines.extend(["### Action", scene["keyframePrompt"], ""])
        if scene["spatialPrompt"]:
            lines.extend(["### Image Prompt", "```", scene["spatialPrompt"], "```", ""])
        lines.extend(["---", ""])
    return "\n".join(lines).strip()


def _to_text(data: dict) -> str:
    blocks = []
    for scene in data["scenes"]:
        prompt = scene["spatialPrompt"] or scene["fullPrompt"]
        if prompt:
            blocks.append(f"[Scene {scene['order']}] {scene['summary']}\n{prompt}")
    return "\n\n---\n\n".join(blocks)
