"""Scene list agent."""

import json
import re
from dataclasses import dataclass
from typing import Optional

from ..exceptions import GenerationError
from .base import BaseAgent

# "1. text", "1、text", "1: text", "1) text"
_NUMBERED_LINE = re.compile(r"^\s*\d+\s*[.、:：)]\s*(.+)$")
_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL)


@dataclass
class SceneListInput:
    """Story settings used to plan a scene list."""

    title: str
    summary: str
    art_style: str
    protagonist: str = ""
    count: int = 5


class SceneListAgent(BaseAgent[SceneListInput, list[str]]):
    """Agent that splits a story into an ordered list of scene summaries."""

    temperature = 0.8

    @property
    def name(self) -> str:
        return "SceneListAgent"

    @property
    def system_prompt(self) -> str:
        return (
            "You are a manga storyboard planner. Break the story into scenes that "
            "flow naturally from one to the next. Reply with a numbered list, one "
            "scene per line, each a single sentence of 10 to 20 words. No other text."
        )

    def build_prompt(self, input_data: SceneListInput) -> str:
        prompt_parts = [
            f"TITLE: {input_data.title}",
            f"STORY: {input_data.summary}",
            f"VISUAL STYLE: {input_data.art_style}",
        ]
        if input_data.protagonist:
            prompt_parts.append(f"PROTAGONIST: {input_data.protagonist}")
        prompt_parts.extend([
            "",
            f"Write exactly {input_data.count} scenes.",
        ])
        return "\n".join(prompt_parts)

    def parse(self, response: str, input_data: SceneListInput) -> list[str]:
        """Extract scene summaries from a numbered list or a JSON reply.

        Raises:
            GenerationError: If no scenes can be found.
        """
        summaries = parse_scene_list(response)
        if not summaries:
            self._logger.debug(f"Raw response: {response}")
            raise GenerationError("Could not find any scenes in the response")
        if len(summaries) > input_data.count:
            summaries = summaries[:input_data.count]
        self._logger.info(f"Generated {len(summaries)} scenes")
        return summaries


def parse_scene_list(response: str) -> list[str]:
    """Parse scene summaries from an LLM reply.

    Numbered lines are preferred. Replies that are JSON (a list of strings,
    a list of objects with ``summary``, or ``{"scenes": [...]}``) are
    accepted as well.
    """
    summaries: list[str] = []
    for line in response.splitlines():
        match = _NUMBERED_LINE.match(line)
        if not match:
            continue
        summary = match.group(1).strip().strip("[]").strip()
        if summary:
            summaries.append(summary)
    if summaries:
        return summaries

    return _parse_json_scenes(response)


def _parse_json_scenes(response: str) -> list[str]:
    try:
        data = json.loads(_json_text(response))
    except json.JSONDecodeError:
        return []

    items = data.get("scenes", []) if isinstance(data, dict) else data
    if not isinstance(items, list):
        return []

    summaries: list[str] = []
    for item in items:
        summary: Optional[str] = None
        if isinstance(item, str):
            summary = item
        elif isinstance(item, dict):
            summary = item.get("summary") or item.get("description")
        if summary and summary.strip():
            summaries.append(summary.strip())
    return summaries


def _json_text(response: str) -> str:
    """Return the JSON part of a reply: a fenced block, else the outermost array or object."""
    fenced = _CODE_FENCE.search(response)
    if fenced:
        return fenced.group(1)

    starts = [index for index in (response.find("["), response.find("{")) if index != -1]
    if not starts:
        return response
    start = min(starts)
    end = response.rfind("]" if response[start] == "[" else "}")
    return response[start:end + 1] if end > start else response
