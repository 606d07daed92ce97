"""Routing decision for one turn."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from switchyard.config import Settings
from switchyard.context.compressor import ContextWindowCompressor
from switchyard.errors import ClassificationError, InferenceError
from switchyard.handlers import HandlerCatalog
from switchyard.routing.classifier import IntentClassifier
from switchyard.routing.explicit import ExplicitSwitchDetector
from switchyard.routing.scoring import ConfidenceScorer, confidence_category
from switchyard.session.cache import SessionCaches
from switchyard.types import ClassificationResult, CompressedContext, HandlerKind, Session


@dataclass(frozen=True)
class RoutingDecision:
    handler: HandlerKind
    confidence: float
    rationale: str
    explicit: bool = False
    hinted: bool = False
    clarification_needed: bool = False
    override_applied: bool = False
    fallback: bool = False
    threshold: float | None = None
    context: CompressedContext | None = None
    classification: ClassificationResult | None = None

    @property
    def is_control(self) -> bool:
        """Lexical switch requests are directives, not conversation content."""
        return self.explicit


class IntentRouter:
    def __init__(
        self,
        catalog: HandlerCatalog,
        classifier: IntentClassifier,
        *,
        settings: Settings | None = None,
        scorer: ConfidenceScorer | None = None,
        compressor: ContextWindowCompressor | None = None,
        detector: ExplicitSwitchDetector | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._catalog = catalog
        self._classifier = classifier
        self._scorer = scorer or ConfidenceScorer(catalog, self._settings.scoring)
        self._compressor = compressor or ContextWindowCompressor(self._settings.compression)
        self._detector = detector or ExplicitSwitchDetector(catalog)

    async def route(
        self,
        session: Session,
        text: str,
        *,
        hint: HandlerKind | None = None,
        caches: SessionCaches | None = None,
        pending_attachments: bool = False,
    ) -> RoutingDecision:
        if hint is not None:
            logger.info("router.hint handler={}", hint)
            return RoutingDecision(
                handler=hint,
                confidence=1.0,
                rationale=f"caller requested {hint}",
                hinted=True,
                context=self._compress(session, text),
            )

        switch = self._detector.detect(text)
        if switch is not None:
            logger.info("router.explicit handler={} matched={!r}", switch.handler, switch.matched)
            return RoutingDecision(
                handler=switch.handler,
                confidence=1.0,
                rationale=f"explicit switch request: {switch.matched}",
                explicit=True,
            )

        context: CompressedContext | None = None
        try:
            context = self._compress(session, text)
            result = await self._classifier.classify(
                text,
                context,
                entity_cache=caches.entities if caches is not None else None,
            )
            if result is None:
                raise ClassificationError("no valid intent action returned")
        except ClassificationError as exc:
            logger.warning("router.classify.fallback reason={}", exc)
            return self._fallback(context, str(exc))
        except InferenceError as exc:
            logger.warning("router.classify.fallback reason=inference error={}", exc)
            return self._fallback(context, f"classifier unavailable: {exc}")
        except Exception as exc:
            logger.exception("router.classify.fallback reason=unexpected")
            return self._fallback(context, f"classification failed: {type(exc).__name__}")

        score = self._scorer.decide(result, pending_attachments=pending_attachments)
        logger.info(
            "router.decision handler={} combined={:.3f} threshold={:.3f} category={} accepted={} override={}",
            score.handler,
            score.combined,
            score.threshold,
            score.category,
            score.accepted,
            score.override_applied,
        )
        if score.accepted:
            rationale = result.rationale
            if score.override_applied:
                rationale = f"{rationale}; pending attachments routed to {score.handler}"
            return RoutingDecision(
                handler=score.handler,
                confidence=score.combined,
                rationale=rationale,
                override_applied=score.override_applied,
                threshold=score.threshold,
                context=context,
                classification=result,
            )

        return RoutingDecision(
            handler=self._catalog.fallback,
            confidence=score.combined,
            rationale=(
                f"{confidence_category(score.combined)} confidence {score.combined:.2f} below threshold "
                f"{score.threshold:.2f} for {result.handler}"
            ),
            clarification_needed=True,
            threshold=score.threshold,
            context=context,
            classification=result,
        )

    def _compress(self, session: Session, text: str) -> CompressedContext:
        return self._compressor.compress(session.turns, text)

    def _fallback(self, context: CompressedContext | None, reason: str) -> RoutingDecision:
        return RoutingDecision(
            handler=self._catalog.fallback,
            confidence=self._settings.scoring.fallback_confidence,
            rationale=f"fallback: {reason}",
            fallback=True,
            context=context,
        )
