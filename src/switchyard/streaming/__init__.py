"""Streaming execution of handler responses with mid-stream tool calls."""

from switchyard.streaming.chunks import (
    ErrorChunk,
    OutputChunk,
    ProgressChunk,
    ProgressKind,
    ReferencesChunk,
    RoutingChunk,
    TextChunk,
)
from switchyard.streaming.engine import ExecutionState, ExecutionStream, StreamingExecutionEngine

__all__ = [
    "ErrorChunk",
    "ExecutionState",
    "ExecutionStream",
    "OutputChunk",
    "ProgressChunk",
    "ProgressKind",
    "ReferencesChunk",
    "RoutingChunk",
    "StreamingExecutionEngine",
    "TextChunk",
]
