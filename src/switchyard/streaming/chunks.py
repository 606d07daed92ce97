"""Output chunks delivered to callers of `Orchestrator.route_turn`."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from switchyard.types import ContextualReference, HandlerKind


class ProgressKind(enum.StrEnum):
    TOOL_STARTED = "tool_started"
    TOOL_COMPLETED = "tool_completed"


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class ProgressChunk:
    progress: ProgressKind
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ReferencesChunk:
    references: tuple[ContextualReference, ...]

    def to_list(self) -> list[dict[str, Any]]:
        return [reference.to_dict() for reference in self.references]


@dataclass(frozen=True)
class ErrorChunk:
    error: str
    retryable: bool = True


@dataclass(frozen=True)
class RoutingChunk:
    """Routing outcome of the turn, emitted before any handler output."""

    handler: HandlerKind
    confidence: float
    clarification_needed: bool = False
    explicit: bool = False
    rationale: str = ""


OutputChunk = TextChunk | ProgressChunk | ReferencesChunk | ErrorChunk | RoutingChunk


def collect_text(chunks: list[OutputChunk]) -> str:
    return "".join(chunk.text for chunk in chunks if isinstance(chunk, TextChunk))
