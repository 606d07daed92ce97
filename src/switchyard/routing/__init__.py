"""Intent routing: explicit switches, classification and confidence scoring."""

from switchyard.routing.classifier import IntentClassifier
from switchyard.routing.entities import EntityExtractor
from switchyard.routing.explicit import ExplicitSwitch, ExplicitSwitchDetector
from switchyard.routing.router import IntentRouter, RoutingDecision
from switchyard.routing.scoring import ConfidenceScorer, ScoreDecision, confidence_category

__all__ = [
    "ConfidenceScorer",
    "EntityExtractor",
    "ExplicitSwitch",
    "ExplicitSwitchDetector",
    "IntentClassifier",
    "IntentRouter",
    "RoutingDecision",
    "ScoreDecision",
    "confidence_category",
]
