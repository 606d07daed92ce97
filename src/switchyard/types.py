"""Shared domain types."""

from __future__ import annotations

import enum
import json
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str, *, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    """Rough token estimate used for budgeting, not billing."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class HandlerKind(enum.StrEnum):
    """Closed set of response handlers."""

    SOCRATIC = "socratic"
    DOCUMENTATION = "documentation"
    ACADEMIC = "academic"


class Role(enum.StrEnum):
    USER = "user"
    HANDLER = "handler"


class EntityType(enum.StrEnum):
    THERAPEUTIC_TECHNIQUE = "therapeutic_technique"
    TARGET_POPULATION = "target_population"
    DISORDER_CONDITION = "disorder_condition"
    CLINICAL_CONCEPT = "clinical_concept"
    DOCUMENTATION_PROCESS = "documentation_process"
    ACADEMIC_VALIDATION = "academic_validation"
    SOCRATIC_EXPLORATION = "socratic_exploration"


class ReferenceType(enum.StrEnum):
    HANDLER_MENTION = "handler_mention"
    TECHNIQUE_REFERENCE = "technique_reference"
    PATIENT_REFERENCE = "patient_reference"
    SESSION_REFERENCE = "session_reference"


class Turn(BaseModel):
    """One immutable conversational turn."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str
    handler: HandlerKind | None = None
    attachment_ids: tuple[str, ...] = ()
    tool_annotations: tuple[dict[str, Any], ...] = ()
    created_at: datetime = Field(default_factory=_utcnow)

    def to_message(self) -> dict[str, Any]:
        role = "user" if self.role is Role.USER else "assistant"
        return {"role": role, "content": self.content}


class SessionMetadata(BaseModel):
    last_updated: datetime = Field(default_factory=_utcnow)
    token_estimate: int = 0
    attachment_ids: list[str] = Field(default_factory=list)
    processed_attachment_ids: list[str] = Field(default_factory=list)


class Session(BaseModel):
    """Conversation state owned by the session manager."""

    session_id: str
    active_handler: HandlerKind | None = None
    turns: list[Turn] = Field(default_factory=list)
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)

    def append_turn(self, turn: Turn) -> None:
        self.turns.append(turn)
        self.metadata.token_estimate += estimate_tokens(turn.content)
        for attachment_id in turn.attachment_ids:
            if attachment_id not in self.metadata.attachment_ids:
                self.metadata.attachment_ids.append(attachment_id)
        self.touch()

    def touch(self) -> None:
        self.metadata.last_updated = _utcnow()

    def pending_attachment_ids(self) -> list[str]:
        processed = set(self.metadata.processed_attachment_ids)
        return [item for item in self.metadata.attachment_ids if item not in processed]

    def mark_attachments_processed(self, attachment_ids: list[str]) -> None:
        for attachment_id in attachment_ids:
            if attachment_id not in self.metadata.processed_attachment_ids:
                self.metadata.processed_attachment_ids.append(attachment_id)

    def user_turns(self) -> list[Turn]:
        return [turn for turn in self.turns if turn.role is Role.USER]


@dataclass(frozen=True)
class Entity:
    type: EntityType
    value: str
    confidence: float
    context: str | None = None


@dataclass(frozen=True)
class EntityExtraction:
    """Entities of one turn, partitioned by relevance."""

    entities: tuple[Entity, ...] = ()
    primary: tuple[Entity, ...] = ()
    secondary: tuple[Entity, ...] = ()
    confidence: float = 0.0

    @classmethod
    def empty(cls) -> EntityExtraction:
        return cls()

    def types(self) -> set[EntityType]:
        return {entity.type for entity in self.entities}


@dataclass(frozen=True)
class ClassificationResult:
    handler: HandlerKind
    confidence: float
    extraction: EntityExtraction
    rationale: str
    action: str = ""
    arguments: dict[str, Any] = field(default_factory=dict)

    @property
    def entities(self) -> tuple[Entity, ...]:
        return self.extraction.entities


@dataclass(frozen=True)
class ContextualReference:
    type: ReferenceType
    content: str
    turn_index: int
    relevance: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": str(self.type),
            "content": self.content,
            "turn_index": self.turn_index,
            "relevance": round(self.relevance, 3),
        }


@dataclass(frozen=True)
class CompressedContext:
    """Turns selected for the next model call plus preserved references."""

    turns: tuple[Turn, ...]
    references: tuple[ContextualReference, ...]
    token_estimate: int
    original_length: int
    compression_applied: bool

    def annotation(self) -> str:
        if not self.references:
            return ""
        rendered = "; ".join(f"{ref.type}: {ref.content}" for ref in self.references)
        return f"[Earlier context: {rendered}]"

    def messages(self) -> list[dict[str, Any]]:
        messages = [turn.to_message() for turn in self.turns]
        if note := self.annotation():
            messages.insert(0, {"role": "system", "content": note})
        return messages


@dataclass(frozen=True)
class ToolInvocationRequest:
    name: str
    arguments: dict[str, Any]
    call_id: str
    turn_index: int | None = None

    def signature(self) -> str:
        normalized = json.dumps(self.arguments, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        return f"{self.name}:{normalized}"


@dataclass(frozen=True)
class ToolResult:
    name: str
    call_id: str
    payload: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> dict[str, Any]:
        if self.ok:
            return {"tool": self.name, "status": "ok", "output": self.payload}
        return {"tool": self.name, "status": "error", "error": self.error}
