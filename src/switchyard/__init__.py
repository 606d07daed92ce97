"""Switchyard - route each turn to the right handler, stream the answer."""

from .config import Settings, load_settings
from .logging_utils import configure_logging
from .orchestrator import Orchestrator, build_orchestrator
from .streaming import ErrorChunk, OutputChunk, ProgressChunk, ReferencesChunk, RoutingChunk, TextChunk
from .types import HandlerKind

__version__ = "0.1.0"

__all__ = [
    "ErrorChunk",
    "HandlerKind",
    "Orchestrator",
    "OutputChunk",
    "ProgressChunk",
    "ReferencesChunk",
    "RoutingChunk",
    "Settings",
    "TextChunk",
    "build_orchestrator",
    "configure_logging",
    "load_settings",
]
