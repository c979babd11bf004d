"""Core workflow engine components."""

from .exceptions import (
    WorkflowEngineError,
    MalformedDefinition,
    HandlerFailure,
    IterationLimitExceeded,
    Cancelled,
    PromptCancelled,
    RegenerationRequested,
    StorageError,
    ConfigurationError,
    HandlerRegistryError,
    CollaboratorUnavailable,
)
from .logging import setup_logging, get_logger
from .handler_registry import HandlerRegistry

__all__ = [
    "WorkflowEngineError",
    "MalformedDefinition",
    "HandlerFailure",
    "IterationLimitExceeded",
    "Cancelled",
    "PromptCancelled",
    "RegenerationRequested",
    "StorageError",
    "ConfigurationError",
    "HandlerRegistryError",
    "CollaboratorUnavailable",
    "setup_logging",
    "get_logger",
    "HandlerRegistry",
]
