"""Streaming generation adapter.

Consumes the fragments of a streaming LLM call and reports one of three
terminal outcomes: complete, error or cancelled.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator, Callable, List, Optional

logger = logging.getLogger(__name__)

DONE_MARKER = "[DONE]"


class _Done:
    """Sentinel returned by fragment parsers at the end of a stream."""

    def __repr__(self) -> str:
        return "DONE"


DONE = _Done()

FragmentParser = Callable[[Any], Any]
ChunkCallback = Callable[[str, str], None]


class StreamStatus(str, Enum):
    """Terminal status of a consumed stream."""
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class StreamOutcome:
    """Result of consuming a stream."""

    status: StreamStatus
    content: str = ""
    error: Optional[str] = None

    @classmethod
    def complete(cls, content: str) -> "StreamOutcome":
        return cls(StreamStatus.COMPLETE, content=content)

    @classmethod
    def failed(cls, reason: str, content: str = "") -> "StreamOutcome":
        return cls(StreamStatus.ERROR, content=content, error=reason)

    @classmethod
    def cancelled(cls, content: str = "") -> "StreamOutcome":
        return cls(StreamStatus.CANCELLED, content=content)

    @property
    def is_complete(self) -> bool:
        return self.status == StreamStatus.COMPLETE

    @property
    def is_cancelled(self) -> bool:
        return self.status == StreamStatus.CANCELLED


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a stream."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


def passthrough_fragment(fragment: Any) -> Optional[str]:
    """Parser for streams that already yield decoded text."""
    if isinstance(fragment, bytes):
        fragment = fragment.decode("utf-8")
    if not isinstance(fragment, str):
        raise TypeError(f"Unexpected fragment type: {type(fragment).__name__}")
    return fragment


def parse_sse_fragment(line: Any) -> Any:
    """Parse one OpenAI-compatible server-sent-event line.

    Returns the delta text, ``DONE`` for the end marker, or None for lines
    that carry no content (comments, keep-alives, role-only deltas).

    Raises:
        ValueError: If the ``data:`` payload is not valid JSON.
        TypeError: If the payload has an unexpected shape.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8")
    line = line.strip()
    if not line.startswith("data:"):
        return None

    data = line[len("data:"):].strip()
    if data == DONE_MARKER:
        return DONE

    payload = json.loads(data)
    if not isinstance(payload, dict):
        raise TypeError("SSE payload is not an object")
    choices = payload.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    return delta.get("content") or None


class _StreamCancelled(Exception):
    pass


async def _anext(iterator):
    return await iterator.__anext__()


class StreamingGeneration:
    """Consume one fragment stream into a running buffer.

    Fragments that fail to parse are skipped. Exhausting the stream without
    a done marker counts as success. A set cancellation token stops
    consumption at once, closes the underlying iterator and yields a
    CANCELLED outcome.
    """

    def __init__(
        self,
        parser: FragmentParser = passthrough_fragment,
        on_chunk: Optional[ChunkCallback] = None,
        cancel_token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self._parser = parser
        self._on_chunk = on_chunk
        self._cancel_token = cancel_token
        self._timeout = timeout
        self._parts: List[str] = []
        self.skipped_fragments = 0

    @property
    def buffer(self) -> str:
        """Content accumulated so far."""
        return "".join(self._parts)

    async def consume(self, fragments: AsyncIterator[Any]) -> StreamOutcome:
        iterator = fragments.__aiter__()
        try:
            if self._timeout:
                return await asyncio.wait_for(self._consume(iterator), self._timeout)
            return await self._consume(iterator)
        except asyncio.TimeoutError:
            logger.warning(f"Stream timed out after {self._timeout}s")
            return StreamOutcome.failed(
                f"Generation timed out after {self._timeout:g}s", self.buffer
            )
        finally:
            await self._close(iterator)

    async def _consume(self, iterator) -> StreamOutcome:
        while True:
            if self._cancel_token is not None and self._cancel_token.cancelled:
                return StreamOutcome.cancelled(self.buffer)

            try:
                fragment = await self._next(iterator)
            except StopAsyncIteration:
                return StreamOutcome.complete(self.buffer)
            except _StreamCancelled:
                logger.info("Stream cancelled by caller")
                return StreamOutcome.cancelled(self.buffer)
            except Exception as e:
                logger.error(f"Stream failed: {e}")
                return StreamOutcome.failed(str(e) or type(e).__name__, self.buffer)

            try:
                parsed = self._parser(fragment)
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                self.skipped_fragments += 1
                logger.debug(f"Skipping unparseable fragment: {e}")
                continue

            if parsed is DONE:
                return StreamOutcome.complete(self.buffer)
            if not parsed:
                continue

            self._parts.append(parsed)
            if self._on_chunk is not None:
                try:
                    self._on_chunk(parsed, self.buffer)
                except Exception as e:
                    logger.error(f"Chunk callback failed: {e}")
                    return StreamOutcome.failed(
                        f"Chunk callback failed: {str(e) or type(e).__name__}", self.buffer
                    )

    async def _next(self, iterator):
        if self._cancel_token is None:
            return await iterator.__anext__()

        next_task = asyncio.ensure_future(_anext(iterator))
        cancel_task = asyncio.ensure_future(self._cancel_token.wait())
        try:
            await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            pending = [task for task in (next_task, cancel_task) if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        if cancel_task.done() and not cancel_task.cancelled():
            if next_task.done() and not next_task.cancelled():
                next_task.exception()
            raise _StreamCancelled()
        return next_task.result()

    @staticmethod
    async def _close(iterator) -> None:
        aclose = getattr(iterator, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except RuntimeError as e:
            logger.debug(f"Could not close stream: {e}")


async def consume_stream(
    fragments: AsyncIterator[Any],
    parser: FragmentParser = passthrough_fragment,
    on_chunk: Optional[ChunkCallback] = None,
    cancel_token: Optional[CancellationToken] = None,
    timeout: Optional[float] = None,
) -> StreamOutcome:
    """Convenience wrapper around StreamingGeneration.consume."""
    stream = StreamingGeneration(
        parser=parser, on_chunk=on_chunk, cancel_token=cancel_token, timeout=timeout
    )
    return await stream.consume(fragments)
