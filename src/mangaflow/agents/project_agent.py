"""Conversational agent that drives a project through the tool set."""

import json
import logging
from typing import List, Optional

from ..tools import ToolSet

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a manga storyboard assistant. You help the user turn a story idea into a
finished storyboard by calling tools:

1. create_project once, with the project title.
2. set_project_info with the story summary, art style and protagonist.
3. generate_scenes once the title, summary and art style are known.
4. refine_scene or batch_refine_scenes for the scenes the user approves.
5. export_prompts when the user wants the final prompts.

Call get_project_state whenever you are unsure what has been done. Ask the
user for missing information instead of inventing it. Keep replies short."""


class ProjectAgent:
    """Runs a tool-use conversation against one ToolSet.

    Args:
        tools: Tool set bound to this conversation.
        client: Anthropic client wrapper offering ``create_with_tools``.
        max_iterations: Upper bound on tool rounds per user message.
    """

    def __init__(
        self,
        tools: ToolSet,
        client=None,
        system_prompt: str = SYSTEM_PROMPT,
        max_iterations: int = 10,
        max_tokens: int = 4096,
    ) -> None:
        if client is None:
            from ..services.anthropic import AnthropicClient
            client = AnthropicClient()
        self.tools = tools
        self.client = client
        self.system_prompt = system_prompt
        self.max_iterations = max_iterations
        self.max_tokens = max_tokens
        self.messages: List[dict] = []

    async def chat(self, user_message: str) -> str:
        """Send one user message and return the assistant's final text.

        Tool calls requested by the model are executed and their results fed
        back until the model stops asking for tools or the iteration limit
        is reached.
        """
        self.messages.append({"role": "user", "content": user_message})
        definitions = self.tools.tool_definitions()
        response = await self._send(definitions)

        iteration = 0
        while response.stop_reason == "tool_use" and iteration < self.max_iterations:
            iteration += 1
            tool_uses = [block for block in response.content if block.type == "tool_use"]

            tool_results = []
            for tool_use in tool_uses:
                result = await self.tools.invoke(tool_use.name, tool_use.input)
                logger.info(f"Tool {tool_use.name}: {'ok' if result.success else result.error}")
                tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": tool_use.id,
                    "content": json.dumps(result.to_dict(), ensure_ascii=False, default=str),
                    "is_error": not result.success,
                })

            self.messages.append({"role": "assistant", "content": response.content})
            self.messages.append({"role": "user", "content": tool_results})
            response = await self._send(definitions)

        if response.stop_reason == "tool_use":
            # Unanswered tool_use blocks cannot stay in the history
            logger.warning(f"Stopped after {self.max_iterations} tool rounds")
            text = _text_of(response.content) or "I stopped before finishing. Ask me to continue."
            self.messages.append({"role": "assistant", "content": text})
            return text

        self.messages.append({"role": "assistant", "content": response.content})
        return _text_of(response.content)

    async def _send(self, definitions: List[dict]):
        return await self.client.create_with_tools(
            messages=self.messages,
            tools=definitions,
            system=self.system_prompt,
            max_tokens=self.max_tokens,
        )

    @property
    def project_id(self) -> Optional[str]:
        return self.tools.scope.project_id


def _text_of(content) -> str:
    parts = [block.text for block in content if getattr(block, "type", None) == "text"]
    return "\n".join(part.strip() for part in parts if part.strip())
