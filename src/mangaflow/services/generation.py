"""Generation service used by the refinement pipeline and the agent tools."""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, AsyncIterator, Awaitable, List, Optional, Sequence, TypeVar

from ..agents.refinement import STAGE_AGENTS, SceneContext
from ..agents.scene_list import SceneListAgent, SceneListInput
from ..exceptions import GenerationError
from ..models import RefinementStage
from ..streaming import FragmentParser, passthrough_fragment
from .llm import LLMClient, create_llm_client

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class SceneRefinement:
    """All three stage outputs for one scene."""

    scene_description: str
    action_description: str
    shot_prompt: str

    def full_prompt(self, art_style: str) -> str:
        return join_prompt(art_style, self.action_description)


@dataclass
class BatchRefineItem:
    """Per-scene result of a batch refinement."""

    scene_id: str
    refinement: Optional[SceneRefinement] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.refinement is not None


def join_prompt(art_style: str, prompt: Optional[str]) -> str:
    """Prefix *prompt* with the art style, the way exported prompts are shown."""
    if not prompt:
        return ""
    return f"{art_style}, {prompt}" if art_style else prompt


async def run_generation(call: Awaitable[T], timeout: Optional[float]) -> T:
    """Await *call*, converting a timeout into GenerationError."""
    if not timeout:
        return await call
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as e:
        raise GenerationError(f"Generation timed out after {timeout:g}s") from e


class GenerationService(ABC):
    """External generation interface consumed by the core.

    Implementations raise GenerationError on failure. ``stream_stage``
    returns raw fragments to be read with ``fragment_parser``.
    """

    fragment_parser: FragmentParser = staticmethod(passthrough_fragment)

    @abstractmethod
    async def generate_scene_list(self, request: SceneListInput) -> List[str]:
        ...

    @abstractmethod
    async def generate_scene_description(self, ctx: SceneContext) -> str:
        ...

    @abstractmethod
    async def generate_action_description(self, ctx: SceneContext) -> str:
        ...

    @abstractmethod
    async def generate_shot_prompt(self, ctx: SceneContext) -> str:
        ...

    async def generate_stage(self, stage: RefinementStage, ctx: SceneContext) -> str:
        if stage == RefinementStage.SCENE_DESCRIPTION:
            return await self.generate_scene_description(ctx)
        if stage == RefinementStage.ACTION_DESCRIPTION:
            return await self.generate_action_description(ctx)
        return await self.generate_shot_prompt(ctx)

    async def stream_stage(self, stage: RefinementStage, ctx: SceneContext) -> AsyncIterator[Any]:
        """Stream one stage. The default yields the whole result as one fragment."""
        yield await self.generate_stage(stage, ctx)

    async def refine_scene(self, ctx: SceneContext) -> SceneRefinement:
        """Run all three stages for one scene, feeding each into the next."""
        scene_description = await self.generate_scene_description(ctx)
        ctx = replace(ctx, scene_description=scene_description)
        action_description = await self.generate_action_description(ctx)
        ctx = replace(ctx, action_description=action_description)
        shot_prompt = await self.generate_shot_prompt(ctx)
        return SceneRefinement(scene_description, action_description, shot_prompt)

    async def batch_refine(
        self,
        contexts: Sequence[SceneContext],
        timeout: Optional[float] = None,
    ) -> List[BatchRefineItem]:
        """Refine several scenes concurrently.

        One failing scene does not affect the others; its item carries the
        error instead of a refinement.
        """
        results = await asyncio.gather(
            *(run_generation(self.refine_scene(ctx), timeout) for ctx in contexts),
            return_exceptions=True,
        )

        items: List[BatchRefineItem] = []
        for ctx, result in zip(contexts, results):
            if isinstance(result, SceneRefinement):
                items.append(BatchRefineItem(ctx.scene_id, refinement=result))
            elif isinstance(result, Exception):
                logger.warning(f"Batch refine failed for scene {ctx.scene_id}: {result}")
                items.append(BatchRefineItem(ctx.scene_id, error=str(result) or type(result).__name__))
            else:
                raise result
        return items

    async def aclose(self) -> None:
        """Release client resources. Nothing to release by default."""


class LLMGenerationService(GenerationService):
    """Generation service backed by the prompt agents and one LLM client."""

    def __init__(self, client: Optional[LLMClient] = None) -> None:
        self._client = client or create_llm_client()
        self._scene_list_agent = SceneListAgent(client=self._client)
        self._stage_agents = {
            stage: agent_cls(client=self._client) for stage, agent_cls in STAGE_AGENTS.items()
        }

    @property
    def fragment_parser(self) -> FragmentParser:
        return self._client.fragment_parser

    @property
    def model(self) -> str:
        return self._client.model

    async def generate_scene_list(self, request: SceneListInput) -> List[str]:
        return await self._scene_list_agent.run(request)

    async def generate_scene_description(self, ctx: SceneContext) -> str:
        return await self._stage_agents[RefinementStage.SCENE_DESCRIPTION].run(ctx)

    async def generate_action_description(self, ctx: SceneContext) -> str:
        return await self._stage_agents[RefinementStage.ACTION_DESCRIPTION].run(ctx)

    async def generate_shot_prompt(self, ctx: SceneContext) -> str:
        return await self._stage_agents[RefinementStage.SHOT_PROMPT].run(ctx)

    def stream_stage(self, stage: RefinementStage, ctx: SceneContext) -> AsyncIterator[Any]:
        return self._stage_agents[stage].stream(ctx)

    async def aclose(self) -> None:
        await self._client.aclose()
