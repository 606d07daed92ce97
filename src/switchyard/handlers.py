"""Handler profiles and the catalog built once at startup."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

from switchyard.config import Settings
from switchyard.errors import UnknownHandlerError
from switchyard.types import EntityType, HandlerKind

LITERATURE_TOOL = "search_literature"


@dataclass(frozen=True)
class HandlerWeights:
    """Blend of intent and entity confidence; sums to 1."""

    intent: float
    entity: float

    def __post_init__(self) -> None:
        if self.intent < 0 or self.entity < 0 or abs(self.intent + self.entity - 1.0) > 1e-9:
            raise ValueError(f"weights must be non-negative and sum to 1, got {self.intent}/{self.entity}")


@dataclass(frozen=True)
class HandlerProfile:
    kind: HandlerKind
    title: str
    system_prompt: str
    intent_action: str
    keywords: tuple[str, ...]
    switch_aliases: tuple[str, ...]
    weights: HandlerWeights
    switch_names: tuple[str, ...] = ()
    threshold_offset: float = 0.0
    specialized_entity_types: frozenset[EntityType] = frozenset()
    tool_names: tuple[str, ...] = ()
    model_params: Mapping[str, Any] = field(default_factory=dict)
    confirmation_prompt: str = ""


class HandlerCatalog:
    """Explicit handler configuration passed to every orchestration component."""

    def __init__(self, profiles: list[HandlerProfile], *, fallback: HandlerKind) -> None:
        self._profiles = {profile.kind: profile for profile in profiles}
        missing = [kind for kind in HandlerKind if kind not in self._profiles]
        if missing:
            raise UnknownHandlerError(f"missing handler profiles: {', '.join(missing)}")
        self._by_action = {profile.intent_action: profile for profile in profiles}
        if len(self._by_action) != len(self._profiles):
            raise ValueError("intent action names must be unique per handler")
        self.fallback = fallback

    def __iter__(self) -> Iterator[HandlerProfile]:
        return iter(self._profiles[kind] for kind in HandlerKind)

    def get(self, kind: HandlerKind) -> HandlerProfile:
        return self._profiles[kind]

    def by_action(self, action: str) -> HandlerProfile | None:
        return self._by_action.get(action)

    def action_names(self) -> list[str]:
        return [profile.intent_action for profile in self]

    @staticmethod
    def parse_kind(name: str) -> HandlerKind:
        try:
            return HandlerKind(name.strip().casefold())
        except ValueError as exc:
            raise UnknownHandlerError(f"unknown handler: {name!r}") from exc


SOCRATIC_PROMPT = (
    "You are the reflective facet of a clinical assistant for psychotherapists. "
    "Guide the clinician through Socratic questioning, surface assumptions and help them "
    "reach their own insight. Ask one focused question at a time."
)
DOCUMENTATION_PROMPT = (
    "You are the documentation facet of a clinical assistant for psychotherapists. "
    "Turn session material and uploaded documents into structured clinical notes, summaries "
    "and treatment plans. Prefer clear headings and professional register."
)
ACADEMIC_PROMPT = (
    "You are the research facet of a clinical assistant for psychotherapists. "
    "Answer with empirical evidence, cite studies you retrieved and state the strength of "
    "the evidence. Use the search_literature tool when the answer depends on current research."
)

CONFIRMATION_TEMPLATE = (
    'The clinician asked to switch modes with the message: "{message}". '
    "Confirm in one or two sentences that you are now active, summarise what you can help with "
    "in this mode and invite them to continue."
)


def build_default_catalog(settings: Settings) -> HandlerCatalog:
    """Build the three handler profiles with their tuned routing constants."""

    profiles = [
        HandlerProfile(
            kind=HandlerKind.SOCRATIC,
            title="Socratic",
            system_prompt=SOCRATIC_PROMPT,
            intent_action="activate_socratic_mode",
            keywords=("reflect", "explore", "think", "analy", "insight", "question", "deeper", "reflexionar", "explorar"),
            switch_aliases=("socratic", "socrático", "socratico", "reflective"),
            switch_names=("socratic", "socrático", "socratico"),
            weights=HandlerWeights(intent=0.6, entity=0.4),
            threshold_offset=0.0,
            specialized_entity_types=frozenset({EntityType.SOCRATIC_EXPLORATION}),
            model_params={"temperature": 0.7, "top_p": 0.95},
            confirmation_prompt=CONFIRMATION_TEMPLATE,
        ),
        HandlerProfile(
            kind=HandlerKind.DOCUMENTATION,
            title="Documentation",
            system_prompt=DOCUMENTATION_PROMPT,
            intent_action="activate_documentation_mode",
            keywords=("summary", "summar", "document", "note", "session", "progress", "plan", "soap", "resumen"),
            switch_aliases=("documentation", "clinical", "clínico", "clinico", "documentación", "documentacion"),
            switch_names=("documentation", "documentación", "documentacion"),
            weights=HandlerWeights(intent=0.7, entity=0.3),
            threshold_offset=0.2,
            specialized_entity_types=frozenset({EntityType.DOCUMENTATION_PROCESS}),
            model_params={"temperature": 0.2, "top_p": 0.9},
            confirmation_prompt=CONFIRMATION_TEMPLATE,
        ),
        HandlerProfile(
            kind=HandlerKind.ACADEMIC,
            title="Academic",
            system_prompt=ACADEMIC_PROMPT,
            intent_action="activate_academic_mode",
            keywords=("research", "study", "studies", "evidence", "paper", "scientific", "meta-analysis", "estudio"),
            switch_aliases=("academic", "académico", "academico", "research"),
            switch_names=("academic", "académico", "academico"),
            weights=HandlerWeights(intent=0.5, entity=0.5),
            threshold_offset=-0.1,
            specialized_entity_types=frozenset({EntityType.ACADEMIC_VALIDATION}),
            tool_names=(LITERATURE_TOOL,),
            model_params={"temperature": 0.3, "top_p": 0.9},
            confirmation_prompt=CONFIRMATION_TEMPLATE,
        ),
    ]
    fallback = HandlerCatalog.parse_kind(settings.fallback_handler)
    return HandlerCatalog(profiles, fallback=fallback)
