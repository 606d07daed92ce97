"""Lexical detection of explicit handler-switch requests."""

from __future__ import annotations

import re
from dataclasses import dataclass

from switchyard.handlers import HandlerCatalog
from switchyard.types import HandlerKind

_MODE_TEMPLATES = (
    r"\bactiv(?:ate|ar)\s+(?:the\s+|el\s+)?(?:mode|modo)\s+{alias}\b",
    r"\bactiv(?:ate|ar)\s+(?:the\s+|el\s+)?{alias}\s+(?:mode|modo)\b",
    r"\b(?:switch|change|go)\s+(?:back\s+)?to\s+(?:the\s+)?{alias}\s+(?:mode|handler|assistant)\b",
    r"\buse\s+(?:the\s+)?{alias}\s+mode\b",
    r"\b(?:cambiar?|pasar|volver)\s+al?\s+(?:agente|modo)\s+{alias}\b",
    r"\b(?:quiero|necesito|usar)\s+(?:el\s+)?modo\s+{alias}\b",
)
# Without a mode word only a bare handler name counts, and only as the whole message.
_BARE_TEMPLATES = (
    r"^(?:please\s+)?(?:activ(?:ate|ar)|(?:switch|change|go)\s+(?:back\s+)?to)\s+(?:the\s+|el\s+)?{alias}[\s.!]*$",
    r"^(?:cambiar?|pasar|volver)\s+al?\s+{alias}[\s.!]*$",
)


@dataclass(frozen=True)
class ExplicitSwitch:
    handler: HandlerKind
    matched: str


class ExplicitSwitchDetector:
    """Matches control phrases such as "activate documentation mode" or "cambiar al modo académico"."""

    def __init__(self, catalog: HandlerCatalog) -> None:
        self._patterns: list[tuple[HandlerKind, re.Pattern[str]]] = []
        for profile in catalog:
            self._add(profile.kind, _MODE_TEMPLATES, profile.switch_aliases)
            self._add(profile.kind, _BARE_TEMPLATES, profile.switch_names)

    def _add(self, kind: HandlerKind, templates: tuple[str, ...], aliases: tuple[str, ...]) -> None:
        if not aliases:
            return
        group = "(?:" + "|".join(re.escape(alias) for alias in sorted(aliases, key=len, reverse=True)) + ")"
        for template in templates:
            self._patterns.append((kind, re.compile(template.format(alias=group), re.IGNORECASE)))

    def detect(self, text: str) -> ExplicitSwitch | None:
        candidate = text.strip()
        if not candidate:
            return None
        for kind, pattern in self._patterns:
            match = pattern.search(candidate)
            if match is not None:
                return ExplicitSwitch(handler=kind, matched=match.group(0))
        return None
