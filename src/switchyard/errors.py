"""Application-level exception types for Switchyard."""

from __future__ import annotations


class SwitchyardError(Exception):
    """Base exception for Switchyard."""


class ConfigurationError(SwitchyardError):
    """Base exception for configuration and startup validation errors."""


class UnknownHandlerError(ConfigurationError):
    """Raised when a handler name does not belong to the closed handler set."""


class ClassificationError(SwitchyardError):
    """Raised when the classifier produced no usable structured output."""


class InferenceError(SwitchyardError):
    """Raised when the inference service fails (network, quota, timeout)."""

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ToolExecutionError(SwitchyardError):
    """Raised by tool providers; converted into a structured error payload."""


class SessionStoreError(SwitchyardError):
    """Raised when the session store cannot read or write a session."""
