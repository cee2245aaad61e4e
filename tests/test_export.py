"""
Tests for export formatting
"""

import json

import pytest
import yaml

from mangaflow.export import ExportFormat, build_export_data, format_export
from mangaflow.models import ProjectCheckpoint, WorkflowState

from conftest import completed_scene, make_scene

EXPORTED_AT = "2024-05-01T12:00:00+00:00"


@pytest.fixture
def project(project_info) -> ProjectCheckpoint:
    return ProjectCheckpoint(
        project_id="p-1",
        thread_id="t-1",
        workflow_state=WorkflowState.REFINING_SCENES,
        scenes=[completed_scene(2), make_scene(3), completed_scene(1)],
        **project_info,
    )


class TestBuildExportData:
    """Tests for the export payload."""

    def test_only_completed_scenes_in_order(self, project):
        """Test that pending scenes are left out and order is kept."""
        data = build_export_data(project, exported_at=EXPORTED_AT)

        assert [scene["order"] for scene in data["scenes"]] == [1, 2]
        assert data["projectTitle"] == "Lost City"
        assert data["artStyle"] == "black and white shonen manga"
        assert data["exportedAt"] == EXPORTED_AT
        assert "metadata" not in data

    def test_full_prompt_prefixes_art_style(self, project):
        """Test the combined prompt."""
        scene = build_export_data(project)["scenes"][0]

        assert scene["fullPrompt"] == "black and white shonen manga, Mika leaps across the gap, scene 1"
        assert scene["keyframePrompt"] == "Mika leaps across the gap, scene 1"
        assert scene["spatialPrompt"] == "wide shot, low angle, rooftop, rain, scene 1"

    def test_metadata(self, project):
        """Test the optional metadata block."""
        metadata = build_export_data(project, include_metadata=True)["metadata"]

        assert metadata["projectId"] == "p-1"
        assert metadata["totalScenes"] == 3
        assert metadata["completedScenes"] == 2
        assert metadata["protagonist"] == "Mika, 15, stubborn and curious"


class TestFormatExport:
    """Tests for each output format."""

    def test_json(self, project):
        """Test that JSON output parses back to the payload."""
        content = format_export(project, ExportFormat.JSON, exported_at=EXPORTED_AT)

        assert json.loads(content) == build_export_data(project, exported_at=EXPORTED_AT)

    def test_json_keeps_unicode(self, project):
        """Test that non-ASCII text is not escaped."""
        project.title = "迷宮都市"

        assert "迷宮都市" in format_export(project, "json")

    def test_yaml(self, project):
        """Test that YAML output parses back to the payload."""
        content = format_export(project, ExportFormat.YAML, exported_at=EXPORTED_AT)

        assert yaml.safe_load(content) == build_export_data(project, exported_at=EXPORTED_AT)

    def test_markdown(self, project):
        """Test the markdown layout."""
        content = format_export(project, ExportFormat.MARKDOWN)

        assert content.startswith("# Lost City")
        assert "## Visual Style\nblack and white shonen manga" in content
        assert "## Scene 1: Scene number 1" in content
        assert "### Scene Description\nA rainy rooftop, scene 1" in content
        assert "```\nwide shot, low angle, rooftop, rain, scene 1\n```" in content
        assert "Scene number 3" not in content

    def test_markdown_metadata_sections(self, project):
        """Test the extra sections added with metadata."""
        content = format_export(project, ExportFormat.MARKDOWN, include_metadata=True)

        assert "## Protagonist\nMika, 15, stubborn and curious" in content
        assert "## Story\nA schoolgirl discovers a city under Tokyo" in content

    def test_text(self, project):
        """Test the plain text layout."""
        content = format_export(project, ExportFormat.TEXT)

        blocks = content.split("\n\n---\n\n")
        assert blocks[0] == "[Scene 1] Scene number 1\nwide shot, low angle, rooftop, rain, scene 1"
        assert len(blocks) == 2

    def test_unknown_format(self, project):
        """Test that an unsupported format name is rejected."""
        with pytest.raises(ValueError):
            format_export(project, "pdf")
