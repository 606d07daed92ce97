from __future__ import annotations

import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import pytest

from switchyard.config import Settings
from switchyard.inference import GenerationRequest, ModelEvent
from switchyard.routing.classifier import CLASSIFIER_INSTRUCTION

Script = list[ModelEvent | Exception] | Exception


def call_event(name: str, arguments: dict[str, Any] | str, call_id: str | None = None) -> ModelEvent:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    payload: dict[str, Any] = {"function": {"name": name, "arguments": raw}}
    if call_id is not None:
        payload["id"] = call_id
    return ModelEvent(tool_call=payload)


def text_event(text: str) -> ModelEvent:
    return ModelEvent(text=text)


@dataclass
class ScriptedInference:
    """Replays scripted responses; classifier and handler calls have separate queues."""

    classifier: list[Script] = field(default_factory=list)
    handler: list[Script] = field(default_factory=list)
    requests: list[GenerationRequest] = field(default_factory=list)

    @property
    def classifier_requests(self) -> list[GenerationRequest]:
        return [item for item in self.requests if item.system_instruction == CLASSIFIER_INSTRUCTION]

    @property
    def handler_requests(self) -> list[GenerationRequest]:
        return [item for item in self.requests if item.system_instruction != CLASSIFIER_INSTRUCTION]

    async def generate(self, request: GenerationRequest) -> AsyncIterator[ModelEvent]:
        self.requests.append(request)
        queue = self.classifier if request.system_instruction == CLASSIFIER_INSTRUCTION else self.handler
        if not queue:
            raise AssertionError(f"unexpected model call: {request.system_instruction[:40]!r}")
        script = queue.pop(0)
        if isinstance(script, Exception):
            raise script
        for event in script:
            if isinstance(event, Exception):
                raise event
            yield event


@pytest.fixture
def settings() -> Settings:
    return Settings(api_key="test", tool_timeout_seconds=0.2, max_inflight_tools=3, _env_file=None)


@pytest.fixture
def inference() -> ScriptedInference:
    return ScriptedInference()
