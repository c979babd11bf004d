"""Exceptions raised by the workflow engine, with structured error information."""

from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    CONTROL_FLOW = "control_flow"
    STORAGE = "storage"
    NETWORK = "network"
    CONFIGURATION = "configuration"
    RESOURCE = "resource"


class WorkflowEngineError(Exception):
    """Base exception for all workflow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.recoverable = recoverable
        self.retry_after = retry_after
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class MalformedDefinition(WorkflowEngineError):
    """Raised when a workflow definition cannot be turned into a graph."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_name: Optional[str] = None,
        node_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.VALIDATION,
            **kwargs
        )
        self.validation_errors = validation_errors or []
        if workflow_name:
            self.add_context(workflow_name=workflow_name)
        if node_id:
            self.add_context(node_id=node_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class HandlerFailure(WorkflowEngineError):
    """Raised when a node handler fails; fatal to the whole execution."""

    def __init__(
        self,
        message: str,
        node_id: Optional[str] = None,
        node_type: Optional[str] = None,
        run_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.node_id = node_id
        self.node_type = node_type
        if node_id:
            self.add_context(node_id=node_id)
        if node_type:
            self.add_context(node_type=node_type)
        if run_id:
            self.add_context(run_id=run_id)


class IterationLimitExceeded(WorkflowEngineError):
    """Raised when the global step cap or a single while loop's cap is exceeded."""

    GLOBAL = "global"
    LOOP = "loop"

    def __init__(
        self,
        message: str,
        scope: str = GLOBAL,
        limit: Optional[int] = None,
        node_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONTROL_FLOW,
            **kwargs
        )
        self.scope = scope
        self.limit = limit
        self.node_id = node_id
        self.add_details(scope=scope, limit=limit)
        if node_id:
            self.add_context(node_id=node_id)


class Cancelled(WorkflowEngineError):
    """Raised when an execution is cancelled by its caller."""

    def __init__(self, message: str = "Workflow execution was stopped", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.CONTROL_FLOW,
            **kwargs
        )


class PromptCancelled(Cancelled):
    """Raised when the user dismisses an interactive prompt."""


class RegenerationRequested(WorkflowEngineError):
    """Signal asking the interpreter to replay the last command node.

    Handlers may raise this after setting ``context.regenerate_info``; the
    preferred form is returning a ``RequestRegeneration`` result.
    """

    def __init__(self, message: str = "Regeneration requested", **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.CONTROL_FLOW,
            recoverable=True,
            **kwargs
        )


class StorageError(WorkflowEngineError):
    """Raised when history storage operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.STORAGE,
            recoverable=True,
            retry_after=3,
            **kwargs
        )
        if operation:
            self.add_context(operation=operation)
        if table:
            self.add_context(table=table)


class TransientError(WorkflowEngineError):
    """Raised for transient errors that should be retried."""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            recoverable=True,
            retry_after=5,
            **kwargs
        )


class ConfigurationError(WorkflowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


class HandlerRegistryError(WorkflowEngineError):
    """Raised when handler registry operations fail."""

    def __init__(
        self,
        message: str,
        node_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if node_type:
            self.add_context(node_type=node_type)
        if operation:
            self.add_context(operation=operation)


class CollaboratorUnavailable(ConfigurationError):
    """Raised when a handler needs a collaborator that was never registered."""

    def __init__(self, name: str, message: Optional[str] = None, **kwargs):
        super().__init__(
            message or f"Collaborator '{name}' is not available",
            config_key=name,
            **kwargs
        )
        self.name = name


def create_error_response(error: WorkflowEngineError) -> Dict[str, Any]:
    """Create a standardized error response from a WorkflowEngineError."""
    return {
        "error": error.error_code,
        "message": error.message,
        "details": {
            **error.details,
            "severity": error.severity.value,
            "category": error.category.value,
            "recoverable": error.recoverable,
            "retry_after": error.retry_after,
            "timestamp": error.timestamp.isoformat()
        },
        "context": error.context
    }
