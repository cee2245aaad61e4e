"""
Tests for the prompt agents and the LLM-backed generation service
"""

from typing import Any, AsyncIterator, List, Optional

import pytest

from mangaflow.agents import (
    SceneContext,
    SceneListAgent,
    SceneListInput,
    parse_scene_list,
)
from mangaflow.agents.refinement import ActionDescriptionAgent, SceneDescriptionAgent, ShotPromptAgent
from mangaflow.exceptions import GenerationError
from mangaflow.models import ProjectCheckpoint, RefinementStage
from mangaflow.services.generation import LLMGenerationService, join_prompt, run_generation
from mangaflow.services.llm import LLMClient
from mangaflow.streaming import consume_stream

from conftest import make_scene


class FakeLLMClient(LLMClient):
    """Returns scripted replies and records every prompt."""

    def __init__(self, replies: Optional[List[str]] = None, error: Optional[Exception] = None) -> None:
        self.replies = list(replies or [])
        self.error = error
        self.prompts: List[dict] = []

    @property
    def model(self) -> str:
        return "fake-model"

    async def create_message(self, prompt, max_tokens=4096, system=None, temperature=0.7) -> str:
        self.prompts.append({"prompt": prompt, "system": system, "temperature": temperature})
        if self.error is not None:
            raise self.error
        return self.replies.pop(0)

    async def stream_message(self, prompt, max_tokens=4096, system=None, temperature=0.7) -> AsyncIterator[Any]:
        self.prompts.append({"prompt": prompt, "system": system, "temperature": temperature})
        for word in self.replies.pop(0).split(" "):
            yield word + " "


@pytest.fixture
def scene_request() -> SceneListInput:
    return SceneListInput(
        title="Lost City",
        summary="A schoolgirl discovers a city under Tokyo",
        art_style="shonen manga",
        protagonist="Mika",
        count=3,
    )


@pytest.fixture
def ctx() -> SceneContext:
    return SceneContext(
        scene_id="scene-2",
        scene_summary="Mika follows the map into the subway",
        project_title="Lost City",
        story_summary="A schoolgirl discovers a city under Tokyo",
        art_style="shonen manga",
        protagonist="Mika",
        previous_scene_summary="Mika finds a glowing map",
    )


class TestParseSceneList:
    """Tests for scene list parsing."""

    def test_numbered_lines(self):
        """Test the preferred numbered format and its separators."""
        reply = "Here you go:\n1. Mika wakes up\n2、Mika runs to school\n3: Mika finds the map\n4) The end"

        assert parse_scene_list(reply) == [
            "Mika wakes up",
            "Mika runs to school",
            "Mika finds the map",
            "The end",
        ]

    def test_bracketed_items(self):
        """Test that square brackets around an item are dropped."""
        assert parse_scene_list("1. [Mika wakes up]") == ["Mika wakes up"]

    def test_json_list_of_strings(self):
        """Test a JSON array reply."""
        assert parse_scene_list('["Mika wakes up", "Mika runs"]') == ["Mika wakes up", "Mika runs"]

    def test_json_object_in_code_block(self):
        """Test a fenced JSON object with scene objects."""
        reply = '```json\n{"scenes": [{"summary": "Mika wakes up"}, {"description": "Mika runs"}]}\n```'

        assert parse_scene_list(reply) == ["Mika wakes up", "Mika runs"]

    def test_fence_without_language(self):
        """Test a fenced block with no language tag."""
        reply = "Sure:\n```\n[\"Mika wakes up\", \"Mika runs\"]\n```\nEnjoy!"

        assert parse_scene_list(reply) == ["Mika wakes up", "Mika runs"]

    def test_array_inside_prose(self):
        """Test a bare array surrounded by text."""
        reply = 'Here are the scenes: [{"summary": "Mika wakes up"}] Let me know.'

        assert parse_scene_list(reply) == ["Mika wakes up"]

    def test_nothing_found(self):
        """Test prose without any scenes."""
        assert parse_scene_list("I cannot help with that.") == []


class TestSceneListAgent:
    """Tests for the scene list agent."""

    @pytest.mark.asyncio
    async def test_run_trims_to_count(self, scene_request):
        """Test that extra scenes are dropped."""
        client = FakeLLMClient(["1. One\n2. Two\n3. Three\n4. Four"])
        agent = SceneListAgent(client=client)

        summaries = await agent.run(scene_request)

        assert summaries == ["One", "Two", "Three"]
        prompt = client.prompts[0]["prompt"]
        assert "TITLE: Lost City" in prompt
        assert "PROTAGONIST: Mika" in prompt
        assert "Write exactly 3 scenes." in prompt
        assert client.prompts[0]["temperature"] == 0.8

    @pytest.mark.asyncio
    async def test_unparseable_reply(self, scene_request):
        """Test a reply without scenes."""
        agent = SceneListAgent(client=FakeLLMClient(["Sorry, no."]))

        with pytest.raises(GenerationError, match="Could not find any scenes"):
            await agent.run(scene_request)

    @pytest.mark.asyncio
    async def test_client_failure(self, scene_request):
        """Test that a failing client becomes a GenerationError."""
        agent = SceneListAgent(client=FakeLLMClient(error=RuntimeError("socket closed")))

        with pytest.raises(GenerationError, match="socket closed"):
            await agent.run(scene_request)

    @pytest.mark.asyncio
    async def test_blank_reply(self, scene_request):
        """Test a reply that is only whitespace."""
        agent = SceneListAgent(client=FakeLLMClient(["   "]))

        with pytest.raises(GenerationError, match="empty response"):
            await agent.run(scene_request)


class TestStageAgents:
    """Tests for the three refinement prompts."""

    def test_scene_description_prompt(self, ctx):
        """Test the continuity context in stage one."""
        prompt = SceneDescriptionAgent(client=FakeLLMClient()).build_prompt(ctx)

        assert "PREVIOUS SCENE: Mika finds a glowing map" in prompt
        assert "THIS SCENE: Mika follows the map into the subway" in prompt
        assert "VISUAL STYLE: shonen manga" in prompt

    def test_later_stages_use_earlier_output(self, ctx):
        """Test that stages two and three see the earlier content."""
        ctx.scene_description = "A flooded subway tunnel"
        ctx.action_description = "Mika wades forward"

        action_prompt = ActionDescriptionAgent(client=FakeLLMClient()).build_prompt(ctx)
        shot_prompt = ShotPromptAgent(client=FakeLLMClient()).build_prompt(ctx)

        assert "SETTING: A flooded subway tunnel" in action_prompt
        assert "ACTION: Mika wades forward" in shot_prompt

    def test_context_for_scene(self, project_info):
        """Test building a context from a project."""
        project = ProjectCheckpoint(
            project_id="p-1",
            thread_id="t-1",
            scenes=[make_scene(1), make_scene(2, scene_description="Rooftop")],
            **project_info,
        )

        ctx = SceneContext.for_scene(project, project.scenes[1])

        assert ctx.previous_scene_summary == "Scene number 1"
        assert ctx.scene_description == "Rooftop"
        assert ctx.action_description == ""
        assert ctx.art_style == project_info["art_style"]


class TestLLMGenerationService:
    """Tests for the generation service backed by an LLM client."""

    @pytest.mark.asyncio
    async def test_refine_scene_chains_stages(self, ctx):
        """Test that each stage is fed the previous output."""
        client = FakeLLMClient(["A flooded tunnel", "Mika wades forward", "wide shot, tunnel"])
        service = LLMGenerationService(client=client)

        refinement = await service.refine_scene(ctx)

        assert refinement.scene_description == "A flooded tunnel"
        assert refinement.action_description == "Mika wades forward"
        assert refinement.shot_prompt == "wide shot, tunnel"
        assert "SETTING: A flooded tunnel" in client.prompts[1]["prompt"]
        assert "ACTION: Mika wades forward" in client.prompts[2]["prompt"]
        assert refinement.full_prompt("shonen manga") == "shonen manga, Mika wades forward"

    @pytest.mark.asyncio
    async def test_stream_stage(self, ctx):
        """Test streaming one stage through the client."""
        service = LLMGenerationService(client=FakeLLMClient(["A flooded tunnel"]))

        outcome = await consume_stream(
            service.stream_stage(RefinementStage.SCENE_DESCRIPTION, ctx),
            parser=service.fragment_parser,
        )

        assert outcome.content.strip() == "A flooded tunnel"

    @pytest.mark.asyncio
    async def test_batch_refine_isolates_failures(self, ctx):
        """Test that a failing scene does not sink the batch."""
        service = LLMGenerationService(client=FakeLLMClient(error=GenerationError("rate limited")))

        items = await service.batch_refine([ctx])

        assert items[0].scene_id == "scene-2"
        assert not items[0].success
        assert items[0].error == "rate limited"

    def test_model_name(self):
        """Test that the client's model is exposed."""
        assert LLMGenerationService(client=FakeLLMClient()).model == "fake-model"


class TestGenerationHelpers:
    """Tests for the small generation helpers."""

    def test_join_prompt(self):
        """Test prefixing the art style."""
        assert join_prompt("ink", "Mika runs") == "ink, Mika runs"
        assert join_prompt("", "Mika runs") == "Mika runs"
        assert join_prompt("ink", None) == ""

    @pytest.mark.asyncio
    async def test_run_generation_without_timeout(self):
        """Test awaiting a call with no time limit."""

        async def answer():
            return "done"

        assert await run_generation(answer(), None) == "done"
