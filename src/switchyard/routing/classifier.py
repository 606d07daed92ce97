"""Combined intent classification and entity extraction in one model call."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from loguru import logger

from switchyard.config import ScoringSettings, Settings
from switchyard.handlers import HandlerCatalog, HandlerProfile
from switchyard.inference import GenerationRequest, InferenceService, total_tokens, user_part
from switchyard.routing.actions import INTENT_MODELS, build_classification_tools, required_fields
from switchyard.routing.entities import EntityExtractor
from switchyard.routing.scoring import confidence_category
from switchyard.session.cache import EntityCache
from switchyard.streaming.calls import parse_tool_calls
from switchyard.types import ClassificationResult, CompressedContext, Entity, EntityExtraction, Turn

RECENT_TURNS = 2
RECENT_SNIPPET_CHARS = 100
TOPIC_TURNS = 5
TOPIC_WORDS_PER_TURN = 3
MAX_TOPICS = 10
MIN_TOPIC_LENGTH = 5
_WORD_RE = re.compile(r"[^\W\d_]+(?:-[^\W\d_]+)*")

CLASSIFIER_INSTRUCTION = (
    "You route messages from a psychotherapist to the right assistant mode. "
    "Call exactly one activate_* function for the mode that fits the message best, "
    "and call the extract_* functions for every entity type present in the message."
)

PROMPT_TEMPLATE = """Classify the intent of the user's message.

1. Look for keywords about:
{guide}
2. Consider the conversation context.
3. Choose the most appropriate function.

Examples:
- "How can I help my patient reflect on their trauma?" -> activate_socratic_mode
- "I need to document the progress of this session" -> activate_documentation_mode
- "What does research say about EMDR for veterans?" -> activate_academic_mode
- "Are there studies supporting this technique?" -> activate_academic_mode

Recent context: {recent}
Recent topics: {topics}
{references}{compression}
User message: "{text}"

You MUST call one of the activate_* functions."""


def summarize_recent(turns: Sequence[Turn]) -> str:
    recent = [turn.content.strip() for turn in turns[-RECENT_TURNS:] if turn.content.strip()]
    if not recent:
        return "start of conversation"
    return " | ".join(
        text[:RECENT_SNIPPET_CHARS] + ("..." if len(text) > RECENT_SNIPPET_CHARS else "") for text in recent
    )


def extract_recent_topics(turns: Sequence[Turn]) -> list[str]:
    """Collect up to ten distinct content words from the last five turns, at most three per turn."""
    topics: list[str] = []
    for turn in turns[-TOPIC_TURNS:]:
        words = [word for word in _WORD_RE.findall(turn.content.casefold()) if len(word) >= MIN_TOPIC_LENGTH]
        for word in words[:TOPIC_WORDS_PER_TURN]:
            if word not in topics:
                topics.append(word)
    return topics[:MAX_TOPICS]

class IntentClassifier:
    """Issues one call exposing every intent action and every entity action.

    `classify` returns `None` when the model produced no valid intent action;
    `InferenceError` from the service propagates to the caller.
    """

    def __init__(
        self,
        inference: InferenceService,
        catalog: HandlerCatalog,
        *,
        settings: Settings | None = None,
        extractor: EntityExtractor | None = None,
    ) -> None:
        self._inference = inference
        self._catalog = catalog
        self._settings = settings or Settings()
        self._scoring: ScoringSettings = self._settings.scoring
        self._extractor = extractor or EntityExtractor(self._scoring)
        self._tools = build_classification_tools(catalog)
        self._intent_tools = self._tools[: len(self._catalog.action_names())]

    def build_request(self, text: str, context: CompressedContext, *, include_entities: bool = True) -> GenerationRequest:
        guide = "\n".join(
            f"   - {', '.join(profile.keywords[:6])} -> {profile.intent_action}" for profile in self._catalog
        )
        references = f"Earlier references: {context.annotation()}\n" if context.references else ""
        compression = (
            f"Context compressed: {context.original_length} turns -> {len(context.turns)} "
            f"(~{context.token_estimate} tokens)\n"
            if context.compression_applied
            else ""
        )
        prompt = PROMPT_TEMPLATE.format(
            guide=guide,
            recent=summarize_recent(context.turns),
            topics=", ".join(extract_recent_topics(context.turns)) or "none",
            references=references,
            compression=compression,
            text=text,
        )
        return GenerationRequest(
            system_instruction=CLASSIFIER_INSTRUCTION,
            parts=[user_part(prompt)],
            tools=self._tools if include_entities else self._intent_tools,
            tool_choice="any",
            model=self._settings.resolved_classifier_model,
            model_params={"temperature": 0.0},
        )

    async def classify(
        self,
        text: str,
        context: CompressedContext,
        *,
        entity_cache: EntityCache | None = None,
    ) -> ClassificationResult | None:
        cached = entity_cache.lookup(text) if entity_cache is not None else None
        request = self.build_request(text, context, include_entities=cached is None)

        raw_calls: list[dict[str, Any]] = []
        usage: dict[str, Any] = {}
        async for event in self._inference.generate(request):
            if event.tool_call is not None:
                raw_calls.append(event.tool_call)
            if event.usage:
                usage.update(event.usage)

        intent: tuple[HandlerProfile, dict[str, Any]] | None = None
        entities: list[Entity] = []
        for call in parse_tool_calls(raw_calls):
            profile = self._catalog.by_action(call.name)
            if profile is not None:
                if intent is None:
                    intent = (profile, call.arguments)
                continue
            if self._extractor.is_entity_action(call.name):
                entities.extend(self._extractor.parse_call(call.name, call.arguments))
                continue
            logger.warning("router.classify.unknown_action name={}", call.name)

        if intent is None:
            logger.warning("router.classify.no_intent calls={}", len(raw_calls))
            return None

        if cached is not None:
            extraction = cached
            logger.debug("router.entities.cache_hit count={}", len(cached.entities))
        else:
            extraction = self._extractor.build(entities)
            if entity_cache is not None:
                entity_cache.store(text, extraction)

        profile, arguments = intent
        confidence = self.intent_confidence(profile, arguments, text, usage)
        return ClassificationResult(
            handler=profile.kind,
            confidence=confidence,
            extraction=extraction,
            rationale=self._rationale(profile, confidence, extraction),
            action=profile.intent_action,
            arguments=arguments,
        )

    def intent_confidence(
        self,
        profile: HandlerProfile,
        arguments: Mapping[str, Any],
        text: str,
        usage: Mapping[str, Any] | None = None,
    ) -> float:
        settings = self._scoring
        confidence = settings.intent_baseline

        if arguments:
            required = required_fields(INTENT_MODELS[profile.kind])
            provided = [name for name in required if arguments.get(name) not in (None, "", [])]
            completeness = len(provided) / len(required) if required else 1.0
            confidence += completeness * settings.completeness_weight

        lowered = text.casefold()
        matches = sum(1 for keyword in profile.keywords if keyword in lowered)
        clarity = min(1.0, matches / max(1.0, len(profile.keywords) * 0.3))
        confidence += clarity * settings.clarity_weight

        tokens = total_tokens(usage)
        if tokens:
            efficiency = min(1.0, settings.efficiency_reference_tokens / tokens)
            confidence += efficiency * settings.efficiency_weight

        return min(1.0, max(0.1, confidence))

    @staticmethod
    def _rationale(profile: HandlerProfile, confidence: float, extraction: EntityExtraction) -> str:
        entity_note = ", ".join(f"{entity.type}={entity.value}" for entity in extraction.primary) or "none"
        return (
            f"{profile.intent_action} selected with {confidence_category(confidence)} intent confidence "
            f"({confidence:.2f}); primary entities: {entity_note}"
        )
