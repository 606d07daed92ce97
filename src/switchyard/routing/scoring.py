"""Confidence blending and the dynamic acceptance threshold."""

from __future__ import annotations

from dataclasses import dataclass

from switchyard.config import ScoringSettings
from switchyard.handlers import HandlerCatalog
from switchyard.types import ClassificationResult, EntityExtraction, HandlerKind

OVERRIDE_HANDLER = HandlerKind.DOCUMENTATION

_CATEGORY_FLOORS = (
    (0.9, "excellent"),
    (0.8, "high"),
    (0.6, "medium"),
    (0.4, "low"),
)


def confidence_category(confidence: float) -> str:
    for floor, label in _CATEGORY_FLOORS:
        if confidence >= floor:
            return label
    return "critical"


@dataclass(frozen=True)
class ScoreDecision:
    handler: HandlerKind
    combined: float
    threshold: float
    accepted: bool
    override_applied: bool = False

    @property
    def clarification_needed(self) -> bool:
        return not self.accepted

    @property
    def category(self) -> str:
        return confidence_category(self.combined)


class ConfidenceScorer:
    """Blends intent and entity confidence and compares it with a per-handler threshold."""

    def __init__(self, catalog: HandlerCatalog, settings: ScoringSettings | None = None) -> None:
        self._catalog = catalog
        self._settings = settings or ScoringSettings()

    def combined(self, handler: HandlerKind, intent_confidence: float, entity_confidence: float) -> float:
        weights = self._catalog.get(handler).weights
        return intent_confidence * weights.intent + entity_confidence * weights.entity

    def threshold(self, handler: HandlerKind, extraction: EntityExtraction, intent_confidence: float) -> float:
        settings = self._settings
        profile = self._catalog.get(handler)
        density_bonus = min(settings.entity_density_cap, len(extraction.entities) * settings.entity_density_step)
        specialized_bonus = (
            settings.specialized_entity_bonus if extraction.types() & profile.specialized_entity_types else 0.0
        )
        if intent_confidence >= settings.high_intent_confidence:
            quality = -settings.intent_quality_adjustment
        elif intent_confidence < settings.marginal_intent_confidence:
            quality = settings.intent_quality_adjustment
        else:
            quality = 0.0
        value = settings.base_threshold - profile.threshold_offset - density_bonus - specialized_bonus + quality
        return min(1.0, max(settings.threshold_floor, value))

    def decide(self, classification: ClassificationResult, *, pending_attachments: bool = False) -> ScoreDecision:
        handler = classification.handler
        combined = self.combined(handler, classification.confidence, classification.extraction.confidence)
        threshold = self.threshold(handler, classification.extraction, classification.confidence)
        if combined >= threshold:
            return ScoreDecision(handler, combined, threshold, accepted=True)

        settings = self._settings
        if (
            pending_attachments
            and settings.attachment_override_enabled
            and threshold - settings.override_band <= combined
        ):
            return ScoreDecision(OVERRIDE_HANDLER, combined, threshold, accepted=True, override_applied=True)
        return ScoreDecision(handler, combined, threshold, accepted=False)
