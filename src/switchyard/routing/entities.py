"""Entity parsing, de-duplication and aggregation."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from loguru import logger

from switchyard.config import ScoringSettings
from switchyard.routing.actions import ENTITY_ACTIONS_BY_NAME, EntityAction
from switchyard.types import Entity, EntityExtraction, EntityType

PRIMARY_ENTITY_TYPES = frozenset({EntityType.THERAPEUTIC_TECHNIQUE, EntityType.DISORDER_CONDITION})


def _coerce_confidence(value: object) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        confidence = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return min(1.0, max(0.0, confidence))


def _present(value: object) -> bool:
    if value is None:
        return False
    if isinstance(value, str | list | dict):
        return bool(value)
    return True


class EntityExtractor:
    """Turns entity actions of the classification response into an `EntityExtraction`."""

    def __init__(self, settings: ScoringSettings | None = None) -> None:
        self._settings = settings or ScoringSettings()

    @staticmethod
    def is_entity_action(name: str) -> bool:
        return name in ENTITY_ACTIONS_BY_NAME

    def parse_call(self, name: str, arguments: Mapping[str, Any]) -> list[Entity]:
        action = ENTITY_ACTIONS_BY_NAME.get(name)
        if action is None:
            return []
        items = arguments.get(action.items_field)
        if not isinstance(items, list):
            logger.debug("router.entities.malformed action={}", name)
            return []
        entities: list[Entity] = []
        for item in items:
            entity = self._parse_item(action, item)
            if entity is not None:
                entities.append(entity)
        return entities

    def _parse_item(self, action: EntityAction, item: object) -> Entity | None:
        if not isinstance(item, dict):
            return None
        value = item.get(action.value_field)
        if not isinstance(value, str) or not value.strip():
            return None
        reported = _coerce_confidence(item.get("confidence"))
        if reported is None:
            return None
        required = action.required_item_fields()
        completeness = sum(1 for field in required if _present(item.get(field))) / max(1, len(required))
        context = item.get("context")
        return Entity(
            type=action.entity_type,
            value=value.strip(),
            confidence=reported * (0.9 + 0.1 * completeness),
            context=context if isinstance(context, str) else None,
        )

    def build(self, entities: Iterable[Entity]) -> EntityExtraction:
        """Drop low-confidence entities, de-duplicate, partition and aggregate."""
        settings = self._settings
        unique: dict[tuple[EntityType, str], Entity] = {}
        for entity in entities:
            if entity.confidence < settings.entity_min_confidence:
                continue
            key = (entity.type, entity.value.casefold())
            existing = unique.get(key)
            if existing is None or existing.confidence < entity.confidence:
                unique[key] = entity

        kept = tuple(unique.values())
        primary = tuple(entity for entity in kept if self.is_primary(entity))
        secondary = tuple(entity for entity in kept if not self.is_primary(entity))
        return EntityExtraction(
            entities=kept,
            primary=primary,
            secondary=secondary,
            confidence=self.aggregate(primary, secondary),
        )

    def is_primary(self, entity: Entity) -> bool:
        return entity.confidence >= self._settings.primary_entity_cutoff or entity.type in PRIMARY_ENTITY_TYPES

    def aggregate(self, primary: tuple[Entity, ...], secondary: tuple[Entity, ...]) -> float:
        weight = self._settings.primary_entity_weight
        total_weight = weight * len(primary) + len(secondary)
        if total_weight == 0:
            return 0.0
        weighted = weight * sum(entity.confidence for entity in primary) + sum(e.confidence for e in secondary)
        return min(1.0, weighted / total_weight)
