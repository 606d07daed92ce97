"""Inference service contract consumed by the classifier and the streaming engine."""

from __future__ import annotations

from collections.abc import AsyncIterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from republic import Tool

ToolChoice = Literal["auto", "any", "none"]


@dataclass(frozen=True)
class ModelEvent:
    """One streamed element: a text delta, a tool invocation request or usage metadata."""

    text: str | None = None
    tool_call: dict[str, Any] | None = None
    usage: dict[str, Any] | None = None


@dataclass(frozen=True)
class GenerationRequest:
    system_instruction: str
    history: Sequence[dict[str, Any]] = ()
    parts: Sequence[dict[str, Any]] = ()
    tools: Sequence[Tool] = ()
    tool_choice: ToolChoice = "auto"
    model: str | None = None
    model_params: Mapping[str, Any] = field(default_factory=dict)

    def messages(self) -> list[dict[str, Any]]:
        messages: list[dict[str, Any]] = []
        if self.system_instruction:
            messages.append({"role": "system", "content": self.system_instruction})
        messages.extend(dict(item) for item in self.history)
        messages.extend(dict(item) for item in self.parts)
        return messages

    def with_parts(self, parts: Sequence[dict[str, Any]]) -> GenerationRequest:
        return GenerationRequest(
            system_instruction=self.system_instruction,
            history=[*self.history, *self.parts],
            parts=list(parts),
            tools=self.tools,
            tool_choice=self.tool_choice,
            model=self.model,
            model_params=self.model_params,
        )


class InferenceService(Protocol):
    def generate(self, request: GenerationRequest) -> AsyncIterator[ModelEvent]:
        """Stream one model response; raise `InferenceError` on service failure."""
        ...


def user_part(text: str) -> dict[str, Any]:
    return {"role": "user", "content": text}


def total_tokens(usage: Mapping[str, Any] | None) -> int | None:
    if not usage:
        return None
    for key in ("total_tokens", "totalTokenCount", "total"):
        value = usage.get(key)
        if isinstance(value, int) and value > 0:
            return value
    return None
