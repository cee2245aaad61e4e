"""
Tests for the conversational project agent

The Anthropic client is replaced by an AsyncMock returning scripted
responses.
"""

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from mangaflow.agents.project_agent import ProjectAgent
from mangaflow.models import WorkflowState
from mangaflow.tools import ToolScope, create_agent_tools


def _text(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="text", text=text)


def _tool_use(tool_id: str, name: str, tool_input: dict) -> SimpleNamespace:
    return SimpleNamespace(type="tool_use", id=tool_id, name=name, input=tool_input)


def _response(stop_reason: str, *blocks) -> SimpleNamespace:
    return SimpleNamespace(stop_reason=stop_reason, content=list(blocks))


@pytest.fixture
def tools(store, generator):
    return create_agent_tools(store, generator, scope=ToolScope(thread_id="chat-1"), timeout=5)


class TestProjectAgent:
    """Tests for the tool-use loop."""

    @pytest.mark.asyncio
    async def test_plain_reply(self, tools):
        """Test a reply that needs no tools."""
        client = SimpleNamespace(create_with_tools=AsyncMock(
            return_value=_response("end_turn", _text("What is your story about?"))
        ))
        agent = ProjectAgent(tools, client=client)

        reply = await agent.chat("Hi")

        assert reply == "What is your story about?"
        kwargs = client.create_with_tools.call_args.kwargs
        assert [tool["name"] for tool in kwargs["tools"]][0] == "create_project"
        assert kwargs["system"] == agent.system_prompt
        assert agent.messages[0] == {"role": "user", "content": "Hi"}

    @pytest.mark.asyncio
    async def test_tool_round(self, tools, store):
        """Test executing a tool and feeding its result back."""
        client = SimpleNamespace(create_with_tools=AsyncMock(side_effect=[
            _response("tool_use", _text("Creating it."), _tool_use("tu-1", "create_project", {"title": "Lost City"})),
            _response("end_turn", _text("Created. What is the story?")),
        ]))
        agent = ProjectAgent(tools, client=client)

        reply = await agent.chat("Make a manga called Lost City")

        assert reply == "Created. What is the story?"
        assert agent.project_id is not None
        assert store.load(agent.project_id).title == "Lost City"

        tool_message = agent.messages[2]
        assert tool_message["role"] == "user"
        result_block = tool_message["content"][0]
        assert result_block["tool_use_id"] == "tu-1"
        assert result_block["is_error"] is False
        assert json.loads(result_block["content"])["data"]["title"] == "Lost City"

    @pytest.mark.asyncio
    async def test_failed_tool_is_reported_as_error(self, tools):
        """Test that a failing tool call is flagged for the model."""
        client = SimpleNamespace(create_with_tools=AsyncMock(side_effect=[
            _response("tool_use", _tool_use("tu-1", "generate_scenes", {"count": 3})),
            _response("end_turn", _text("Let's create a project first.")),
        ]))
        agent = ProjectAgent(tools, client=client)

        await agent.chat("Generate scenes")

        result_block = agent.messages[2]["content"][0]
        assert result_block["is_error"] is True
        assert json.loads(result_block["content"])["error"] == "No project in scope. Create a project first."

    @pytest.mark.asyncio
    async def test_iteration_limit(self, tools):
        """Test that a model which never stops calling tools is cut off."""
        looping = _response("tool_use", _tool_use("tu-x", "get_project_state", {}))
        client = SimpleNamespace(create_with_tools=AsyncMock(return_value=looping))
        agent = ProjectAgent(tools, client=client, max_iterations=2)

        reply = await agent.chat("Status?")

        assert client.create_with_tools.await_count == 3
        assert reply == "I stopped before finishing. Ask me to continue."
        assert agent.messages[-1] == {"role": "assistant", "content": reply}

    @pytest.mark.asyncio
    async def test_full_conversation(self, tools, store, project_info):
        """Test a scripted session from idea to scene list."""
        client = SimpleNamespace(create_with_tools=AsyncMock(side_effect=[
            _response(
                "tool_use",
                _tool_use("tu-1", "create_project", {"title": project_info["title"]}),
                _tool_use("tu-2", "set_project_info", {
                    "summary": project_info["summary"],
                    "artStyle": project_info["art_style"],
                    "protagonist": project_info["protagonist"],
                }),
            ),
            _response("tool_use", _tool_use("tu-3", "generate_scenes", {"count": 3})),
            _response("end_turn", _text("Here are three scenes.")),
        ]))
        agent = ProjectAgent(tools, client=client)

        reply = await agent.chat("Lost City, a schoolgirl finds a city under Tokyo, shonen style, Mika")

        assert reply == "Here are three scenes."
        project = store.load(agent.project_id)
        assert project.workflow_state == WorkflowState.SCENE_LIST_EDITING
        assert len(project.scenes) == 3
        assert [block["tool_use_id"] for block in agent.messages[2]["content"]] == ["tu-1", "tu-2"]
