"""Result types returned by node handlers."""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..models.core import RegenerateInfo


class Continue(BaseModel):
    """A sequential node finished; its successors run next."""
    message: Optional[str] = Field(None, description="Success log message")
    input: Optional[Dict[str, Any]] = Field(None, description="Input summary for logs and history")
    output: Optional[Any] = Field(None, description="Output summary for logs and history")


class Branch(BaseModel):
    """An if/while node evaluated its condition."""
    value: bool = Field(..., description="Condition result")
    input: Optional[Dict[str, Any]] = Field(None, description="Input summary for logs and history")


class RequestRegeneration(BaseModel):
    """Ask the interpreter to replay a command node with user feedback."""
    info: RegenerateInfo = Field(..., description="Command to replay and the feedback to apply")
