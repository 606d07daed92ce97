"""Streaming execution engine: forward text, run buffered tool calls, resume generation."""

from __future__ import annotations

import asyncio
import dataclasses
import enum
import json
from collections.abc import AsyncIterator, Sequence
from typing import Any

from loguru import logger

from switchyard.errors import ToolExecutionError
from switchyard.inference import GenerationRequest, InferenceService, ModelEvent
from switchyard.session.cache import ToolResultCache
from switchyard.streaming.calls import parse_tool_calls, render_payload
from switchyard.streaming.chunks import OutputChunk, ProgressChunk, ProgressKind, TextChunk
from switchyard.tools.registry import ToolProvider
from switchyard.types import ToolInvocationRequest, ToolResult


class ExecutionState(enum.StrEnum):
    STREAMING_INITIAL = "streaming_initial"
    AWAITING_TOOL_EXECUTION = "awaiting_tool_execution"
    STREAMING_CONTINUATION = "streaming_continuation"
    DONE = "done"


class ExecutionStream:
    """One handler response as an async iterator of output chunks.

    Text deltas of the initial phase are forwarded as they arrive while tool requests
    are buffered. Once the initial stream closes, buffered requests run concurrently,
    bracketed by `tool_started`/`tool_completed` progress chunks, and the model is
    resumed with the primary result. A stream that produced no text at all ends with
    one empty `TextChunk`.
    """

    def __init__(
        self,
        engine: StreamingExecutionEngine,
        request: GenerationRequest,
        *,
        cache: ToolResultCache | None = None,
        turn_index: int | None = None,
    ) -> None:
        self._engine = engine
        self._request = request
        self._cache = cache
        self._turn_index = turn_index
        self.state = ExecutionState.STREAMING_INITIAL
        self.text_parts: list[str] = []
        self.results: list[ToolResult] = []
        self.usage: list[dict[str, Any]] = []

    @property
    def text(self) -> str:
        return "".join(self.text_parts)

    @property
    def emitted_text(self) -> bool:
        return any(self.text_parts)

    def tool_annotations(self) -> list[dict[str, Any]]:
        return [
            {"tool": result.name, "call_id": result.call_id, "status": "ok" if result.ok else "error"}
            for result in self.results
        ]

    def __aiter__(self) -> AsyncIterator[OutputChunk]:
        return self._run()

    async def _run(self) -> AsyncIterator[OutputChunk]:
        pending_calls: list[dict[str, Any]] = []
        initial_parts: list[str] = []
        async for event in self._engine.inference.generate(self._request):
            if event.tool_call is not None:
                pending_calls.append(event.tool_call)
            for chunk in self._forward(event):
                initial_parts.append(chunk.text)
                yield chunk

        requests = parse_tool_calls(pending_calls, turn_index=self._turn_index)
        if pending_calls and not requests:
            logger.warning("stream.tool.malformed count={}", len(pending_calls))
        if requests:
            self.state = ExecutionState.AWAITING_TOOL_EXECUTION
            yield ProgressChunk(
                ProgressKind.TOOL_STARTED,
                {"tools": [request.name for request in requests], "count": len(requests)},
            )
            self.results = await self._engine.execute_batch(requests, cache=self._cache)
            succeeded = sum(1 for result in self.results if result.ok)
            yield ProgressChunk(
                ProgressKind.TOOL_COMPLETED,
                {
                    "succeeded": succeeded,
                    "failed": len(self.results) - succeeded,
                    "tools": [{"name": result.name, "status": "ok" if result.ok else "error"} for result in self.results],
                },
            )

            self.state = ExecutionState.STREAMING_CONTINUATION
            continuation = self._engine.continuation_request(self._request, "".join(initial_parts), requests, self.results)
            async for event in self._engine.inference.generate(continuation):
                if event.tool_call is not None:
                    logger.warning("stream.continuation.tool_ignored name={}", _call_name(event.tool_call))
                for chunk in self._forward(event):
                    yield chunk

        self.state = ExecutionState.DONE
        if not self.emitted_text:
            yield TextChunk("")

    def _forward(self, event: ModelEvent) -> list[TextChunk]:
        if event.usage:
            self.usage.append(dict(event.usage))
        if not event.text:
            return []
        self.text_parts.append(event.text)
        return [TextChunk(event.text)]


class StreamingExecutionEngine:
    """Runs handler generations and the tool calls they request."""

    def __init__(
        self,
        inference: InferenceService,
        tools: ToolProvider,
        *,
        tool_timeout_seconds: float = 20.0,
        max_inflight_tools: int = 3,
    ) -> None:
        self.inference = inference
        self._tools = tools
        self._tool_timeout_seconds = tool_timeout_seconds
        self._max_inflight_tools = max_inflight_tools
        self._background: set[asyncio.Task[list[ToolResult]]] = set()

    def stream(
        self,
        request: GenerationRequest,
        *,
        cache: ToolResultCache | None = None,
        turn_index: int | None = None,
    ) -> ExecutionStream:
        return ExecutionStream(self, request, cache=cache, turn_index=turn_index)

    async def execute_batch(
        self,
        requests: Sequence[ToolInvocationRequest],
        *,
        cache: ToolResultCache | None = None,
    ) -> list[ToolResult]:
        """Execute requests concurrently and return results in request order.

        If the awaiting caller is cancelled, in-flight tools still run to completion
        and their results are discarded.
        """
        batch = asyncio.create_task(self._execute_all(requests, cache))
        self._background.add(batch)
        batch.add_done_callback(self._background.discard)
        try:
            return await asyncio.shield(batch)
        except asyncio.CancelledError:
            logger.info("stream.tool.detached count={}", len(requests))
            raise

    async def drain(self) -> None:
        """Wait for tool batches detached by cancelled callers."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _execute_all(
        self,
        requests: Sequence[ToolInvocationRequest],
        cache: ToolResultCache | None,
    ) -> list[ToolResult]:
        semaphore = asyncio.Semaphore(self._max_inflight_tools)

        async def run_one(request: ToolInvocationRequest) -> ToolResult:
            async with semaphore:
                return await self.execute_one(request, cache=cache)

        return list(await asyncio.gather(*(run_one(request) for request in requests)))

    async def execute_one(self, request: ToolInvocationRequest, *, cache: ToolResultCache | None = None) -> ToolResult:
        signature = request.signature()
        if cache is not None and (cached := cache.get(signature)) is not None:
            logger.info("stream.tool.cache_hit name={}", request.name)
            return dataclasses.replace(cached, call_id=request.call_id)

        logger.info("stream.tool.start name={} call_id={}", request.name, request.call_id)
        try:
            async with asyncio.timeout(self._tool_timeout_seconds):
                payload = await self._tools.invoke(request.name, request.arguments)
        except TimeoutError:
            logger.warning("stream.tool.timeout name={} timeout={}s", request.name, self._tool_timeout_seconds)
            return ToolResult(
                request.name, request.call_id, error=f"timed out after {self._tool_timeout_seconds:g}s"
            )
        except KeyError:
            logger.warning("stream.tool.unknown name={}", request.name)
            return ToolResult(request.name, request.call_id, error=f"unknown tool: {request.name}")
        except ToolExecutionError as exc:
            logger.warning("stream.tool.error name={} error={}", request.name, exc)
            return ToolResult(request.name, request.call_id, error=str(exc))
        except Exception as exc:
            logger.exception("stream.tool.error name={}", request.name)
            return ToolResult(request.name, request.call_id, error=f"{type(exc).__name__}: {exc!s}")

        result = ToolResult(request.name, request.call_id, payload=payload)
        if cache is not None:
            cache.store(signature, result)
        logger.info("stream.tool.end name={} call_id={}", request.name, request.call_id)
        return result

    @staticmethod
    def continuation_request(
        request: GenerationRequest,
        initial_text: str,
        requests: Sequence[ToolInvocationRequest],
        results: Sequence[ToolResult],
    ) -> GenerationRequest:
        """Resubmit the primary tool result, noting failures and extra results inline."""
        primary_index = next((index for index, result in enumerate(results) if result.ok), 0)
        primary_request = requests[primary_index]
        primary = results[primary_index]

        body = primary.to_payload()
        others = [result for index, result in enumerate(results) if index != primary_index]
        errors = [{"tool": result.name, "error": result.error} for result in others if not result.ok]
        additional = [{"tool": result.name, "output": result.payload} for result in others if result.ok]
        if errors:
            body["tool_errors"] = errors
        if additional:
            body["additional_results"] = additional

        assistant = {
            "role": "assistant",
            "content": initial_text,
            "tool_calls": [
                {
                    "id": primary_request.call_id,
                    "type": "function",
                    "function": {
                        "name": primary_request.name,
                        "arguments": json.dumps(primary_request.arguments, ensure_ascii=False),
                    },
                }
            ],
        }
        tool_message = {"role": "tool", "tool_call_id": primary_request.call_id, "content": render_payload(body)}
        continuation = request.with_parts([assistant, tool_message])
        return dataclasses.replace(continuation, tool_choice="none")


def _call_name(raw: dict[str, Any]) -> str:
    function = raw.get("function")
    if isinstance(function, dict):
        return str(function.get("name", "?"))
    return str(raw.get("name", "?"))
