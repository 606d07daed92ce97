"""Republic integration helpers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger
from republic import LLM

from switchyard.config import Settings
from switchyard.errors import InferenceError
from switchyard.inference import GenerationRequest, ModelEvent

_TOOL_CHOICES = {"any": "required", "auto": "auto", "none": "none"}
# Kinds that fail the same way on every attempt.
_PERMANENT_ERROR_KINDS = frozenset({"invalid_input", "config", "not_found"})
# Republic reports this kind when it cannot run the calls itself; schema-only tools are run by the engine.
_TOOL_ERROR_KIND = "tool"


def build_llm(settings: Settings, model: str | None = None) -> LLM:
    """Build Republic LLM client configured for one model."""

    return LLM(
        model or settings.model,
        api_key=settings.api_key,
        api_base=settings.api_base,
    )


class RepublicInference:
    """`InferenceService` backed by Republic's event stream.

    Tools are sent as schemas only, so Republic reports tool calls without running
    them. Text deltas are yielded as they arrive; the timeout bounds the wait for
    each event, not the whole response.
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._clients: dict[str, LLM] = {}

    def _client(self, model: str | None) -> LLM:
        key = model or self._settings.model
        client = self._clients.get(key)
        if client is None:
            client = self._clients[key] = build_llm(self._settings, key)
        return client

    async def generate(self, request: GenerationRequest) -> AsyncIterator[ModelEvent]:
        client = self._client(request.model)
        kwargs: dict[str, Any] = {
            "messages": request.messages(),
            "max_tokens": self._settings.max_tokens,
            **request.model_params,
        }
        if request.tools:
            kwargs["tools"] = [tool.schema() for tool in request.tools]
            kwargs["tool_choice"] = _TOOL_CHOICES[request.tool_choice]

        stream = await self._wait(client.stream_events_async(**kwargs), request)
        events = aiter(stream)
        saw_tool_call = False
        while True:
            event = await self._wait(anext(events, None), request)
            if event is None:
                break
            kind = getattr(event, "kind", None)
            data = getattr(event, "data", None)
            if not isinstance(data, dict):
                continue
            if kind == "text":
                delta = data.get("delta")
                if isinstance(delta, str) and delta:
                    yield ModelEvent(text=delta)
            elif kind == "tool_call":
                call = data.get("call")
                if isinstance(call, dict):
                    saw_tool_call = True
                    yield ModelEvent(tool_call=call)
            elif kind == "usage":
                yield ModelEvent(usage=dict(data))
            elif kind == "error":
                if saw_tool_call and data.get("kind") == _TOOL_ERROR_KIND:
                    continue
                raise _error_from_event(data)

        stream_error = getattr(stream, "error", None)
        if stream_error is not None and not (saw_tool_call and _error_kind(stream_error) == _TOOL_ERROR_KIND):
            raise InferenceError(
                _format_stream_error(stream_error),
                retryable=_error_kind(stream_error) not in _PERMANENT_ERROR_KINDS,
            )

    async def _wait(self, awaitable: Any, request: GenerationRequest) -> Any:
        timeout = self._settings.model_timeout_seconds
        try:
            if timeout:
                async with asyncio.timeout(timeout):
                    return await awaitable
            return await awaitable
        except TimeoutError as exc:
            logger.warning("inference.timeout model={} timeout={}s", request.model, timeout)
            raise InferenceError("model call timed out") from exc
        except InferenceError:
            raise
        except Exception as exc:
            logger.warning("inference.error model={} error={}", request.model, exc)
            raise InferenceError(f"model call failed: {exc!s}") from exc


def _error_kind(error: object) -> str | None:
    kind = getattr(error, "kind", None)
    kind_value = getattr(kind, "value", kind)
    return kind_value if isinstance(kind_value, str) else None


def _error_from_event(error_event: dict[str, Any]) -> InferenceError:
    kind = error_event.get("kind")
    message = error_event.get("message")
    if isinstance(kind, str) and isinstance(message, str):
        text = f"{kind}: {message}"
    elif isinstance(message, str):
        text = message
    else:
        text = "model call failed"
    logger.warning("inference.error_event kind={} message={}", kind, message)
    return InferenceError(text, retryable=kind not in _PERMANENT_ERROR_KINDS)


def _format_stream_error(error: object) -> str:
    kind = _error_kind(error)
    message = getattr(error, "message", None)
    if kind is not None and isinstance(message, str):
        return f"{kind}: {message}"
    if isinstance(message, str):
        return message
    return str(error)
