"""Context window compression with preserved cross-turn references."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger
from rapidfuzz import fuzz

from switchyard.config import CompressionSettings
from switchyard.types import CompressedContext, ContextualReference, ReferenceType, Turn, estimate_tokens

TRUNCATION_MARKER = "\n[...]\n"
MIN_TRUNCATED_TOKENS = 8
ANNOTATION_SHARE = 4
BASE_RELEVANCE = 0.5
RECENCY_DECAY = 0.15
MIN_RECENCY = 0.1
DIRECT_OVERLAP_BOOST = 0.4
FUZZY_OVERLAP_BOOST = 0.3
FUZZY_OVERLAP_SCORE = 85
MIN_FUZZY_REFERENCE_LENGTH = 4
TYPE_BOOSTS = {
    ReferenceType.HANDLER_MENTION: 0.3,
    ReferenceType.SESSION_REFERENCE: 0.25,
}


@dataclass(frozen=True)
class _ReferencePattern:
    type: ReferenceType
    pattern: re.Pattern[str]


REFERENCE_PATTERNS: tuple[_ReferencePattern, ...] = (
    _ReferencePattern(
        ReferenceType.HANDLER_MENTION,
        re.compile(
            r"(?i:\b(?:socratic|documentation|academic|research|clinical)\s+(?:mode|handler|assistant)\b"
            r"|fil[óo]sofo\s+socr[áa]tico|archivista\s+cl[íi]nico|investigador\s+acad[ée]mico)"
        ),
    ),
    _ReferencePattern(
        ReferenceType.TECHNIQUE_REFERENCE,
        re.compile(
            r"\b(?:EMDR|CBT|TCC|DBT|ACT)\b"
            r"|(?i:cognitive[\s-]behaviou?ral\s+therapy|dialectical\s+behaviou?r(?:al)?\s+therapy"
            r"|acceptance\s+and\s+commitment\s+therapy|exposure\s+therapy|mindfulness)"
        ),
    ),
    _ReferencePattern(
        ReferenceType.PATIENT_REFERENCE,
        re.compile(r"\b(?:[Pp]atient|[Cc]lient)\s+[A-Z][\w.]*|(?i:\bcase\s+of\s+\w+|\bmy\s+(?:patient|client)\b)"),
    ),
    _ReferencePattern(
        ReferenceType.SESSION_REFERENCE,
        re.compile(
            r"(?i:\b(?:the|that|this)\s+(?:file|document|report|attachment|pdf|transcript|approach|technique)\b"
            r"(?:\s+(?:I|we)\s+(?:sent|shared|uploaded|discussed|mentioned))?)"
        ),
    ),
)


class ContextWindowCompressor:
    """Bounds the history sent per turn.

    Recent exchanges are kept verbatim. Older turns are reduced to de-duplicated
    contextual references whose relevance (recency decay plus lexical overlap with
    the incoming turn) exceeds the configured cutoff. When compression applies, the
    estimated token count never exceeds `target_tokens`; turns that cannot fit are
    truncated or, oldest first, omitted.
    """

    def __init__(self, settings: CompressionSettings | None = None) -> None:
        self._settings = settings or CompressionSettings()

    @property
    def settings(self) -> CompressionSettings:
        return self._settings

    def estimate(self, text: str) -> int:
        return estimate_tokens(text, chars_per_token=self._settings.chars_per_token)

    def compress(self, turns: Sequence[Turn], incoming: str) -> CompressedContext:
        settings = self._settings
        total_tokens = sum(self.estimate(turn.content) for turn in turns)
        window = settings.max_exchanges * 2
        if len(turns) <= window and total_tokens <= settings.trigger_tokens:
            return CompressedContext(
                turns=tuple(turns),
                references=(),
                token_estimate=total_tokens,
                original_length=len(turns),
                compression_applied=False,
            )

        if total_tokens > settings.trigger_tokens:
            window = settings.reduced_exchanges * 2
        kept = list(turns[-window:]) if window < len(turns) else list(turns)
        dropped = list(turns[: len(turns) - len(kept)])

        references = self.extract_references(dropped, incoming)
        references, annotation_tokens = self._fit_references(references)
        kept = self._fit_turns(kept, settings.target_tokens - annotation_tokens)
        token_estimate = annotation_tokens + sum(self.estimate(turn.content) for turn in kept)

        logger.info(
            "context.compress original={} kept={} references={} tokens={}->{}",
            len(turns),
            len(kept),
            len(references),
            total_tokens,
            token_estimate,
        )
        return CompressedContext(
            turns=tuple(kept),
            references=tuple(references),
            token_estimate=token_estimate,
            original_length=len(turns),
            compression_applied=True,
        )

    def extract_references(self, turns: Sequence[Turn], incoming: str) -> list[ContextualReference]:
        best: dict[tuple[ReferenceType, str], ContextualReference] = {}
        newest = len(turns) - 1
        for index, turn in enumerate(turns):
            age = newest - index
            for candidate in REFERENCE_PATTERNS:
                for match in candidate.pattern.finditer(turn.content):
                    content = match.group(0).strip()
                    if not content:
                        continue
                    relevance = self._relevance(candidate.type, content, incoming, age)
                    if relevance <= self._settings.reference_cutoff:
                        continue
                    key = (candidate.type, content.casefold())
                    existing = best.get(key)
                    if existing is None or existing.relevance < relevance:
                        best[key] = ContextualReference(
                            type=candidate.type,
                            content=content,
                            turn_index=index,
                            relevance=relevance,
                        )
        ordered = sorted(best.values(), key=lambda ref: (-ref.relevance, ref.turn_index, ref.content))
        return ordered[: self._settings.max_references]

    @staticmethod
    def _relevance(ref_type: ReferenceType, content: str, incoming: str, age: int) -> float:
        relevance = BASE_RELEVANCE * max(MIN_RECENCY, 1.0 - age * RECENCY_DECAY)
        reference = content.casefold()
        query = incoming.casefold().strip()
        if query and (reference in query or query in reference):
            relevance += DIRECT_OVERLAP_BOOST
        elif (
            query
            and len(reference) >= MIN_FUZZY_REFERENCE_LENGTH
            and fuzz.partial_ratio(reference, query) >= FUZZY_OVERLAP_SCORE
        ):
            relevance += FUZZY_OVERLAP_BOOST
        relevance += TYPE_BOOSTS.get(ref_type, 0.0)
        return min(1.0, relevance)

    def _fit_references(self, references: list[ContextualReference]) -> tuple[list[ContextualReference], int]:
        budget = self._settings.target_tokens // ANNOTATION_SHARE
        fitted = list(references)
        while fitted:
            tokens = self.estimate(_annotation(fitted))
            if tokens <= budget:
                return fitted, tokens
            fitted.pop()
        return [], 0

    def _fit_turns(self, turns: list[Turn], budget: int) -> list[Turn]:
        remaining = budget
        fitted: list[Turn] = []
        for turn in reversed(turns):
            tokens = self.estimate(turn.content)
            if tokens <= remaining:
                fitted.append(turn)
                remaining -= tokens
                continue
            if remaining >= MIN_TRUNCATED_TOKENS:
                content = _truncate_middle(turn.content, remaining * self._settings.chars_per_token)
                fitted.append(turn.model_copy(update={"content": content}))
                remaining -= self.estimate(content)
            logger.debug("context.compress.omit remaining_budget={}", remaining)
            break
        fitted.reverse()
        return fitted


def _annotation(references: list[ContextualReference]) -> str:
    rendered = "; ".join(f"{ref.type}: {ref.content}" for ref in references)
    return f"[Earlier context: {rendered}]"


def _truncate_middle(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    head_len = (max_chars - len(TRUNCATION_MARKER)) // 2
    tail_len = max_chars - len(TRUNCATION_MARKER) - head_len
    if head_len <= 0 or tail_len <= 0:
        return text[:max_chars]
    return f"{text[:head_len]}{TRUNCATION_MARKER}{text[-tail_len:]}"
