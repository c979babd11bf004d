"""Typed per-node-type configuration validated when a workflow is parsed.

Property values arrive as plain strings. Fields that are template-resolved at
run time stay strings; enums are coerced here so that a malformed workflow is
rejected before its first node runs. Flags, counts and timeouts may hold
templates, so only their literal values are checked here.
"""

from typing import Dict, Literal, Optional, Type
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..core.conditions import parse_condition
from ..core.templating import parse_float, parse_int


HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


def is_templated(value: str) -> bool:
    return "{{" in value


def check_flag(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_templated(value) and value.strip().lower() not in ("true", "false"):
        raise ValueError(f"expected true or false, got {value!r}")
    return value


def check_count(value: Optional[str]) -> Optional[str]:
    if value is not None and not is_templated(value) and (parse_int(value) or 0) < 1:
        raise ValueError(f"expected a positive integer, got {value!r}")
    return value


class NodeConfig(BaseModel):
    """Base class for typed node configuration."""
    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)


class VariableConfig(NodeConfig):
    name: str = Field(..., min_length=1, description="Variable to declare")
    value: str = Field("", description="Initial value, template-resolved")


class SetConfig(NodeConfig):
    name: str = Field(..., min_length=1, description="Variable to assign")
    value: str = Field("", description="Value or simple arithmetic expression")


class ConditionConfig(NodeConfig):
    """Configuration shared by ``if`` and ``while`` nodes."""
    condition: str = Field(..., description="Binary comparison such as '{{count}} < 10'")

    @field_validator('condition')
    @classmethod
    def validate_condition(cls, v):
        if parse_condition(v) is None:
            raise ValueError(f"Invalid condition format: {v}")
        return v


class SleepConfig(NodeConfig):
    duration: str = Field("0", description="Milliseconds to wait, template-resolved")


class CommandConfig(NodeConfig):
    prompt: str = Field(..., description="Prompt sent to the command runner")
    model: Optional[str] = Field(None, description="Model override")
    tools: Optional[str] = Field(None, description="Comma-separated tool names")
    save_to: Optional[str] = Field(None, alias="saveTo", description="Variable receiving the output")


class HttpConfig(NodeConfig):
    url: str = Field(..., description="Request URL, template-resolved")
    method: str = Field("GET", description="HTTP method")
    headers: Optional[str] = Field(None, description="JSON object or 'Key: Value' lines")
    body: Optional[str] = Field(None, description="Request body for POST/PUT/PATCH")
    content_type: Literal["json", "text"] = Field("json", alias="contentType")
    save_to: Optional[str] = Field(None, alias="saveTo")
    save_status: Optional[str] = Field(None, alias="saveStatus")
    throw_on_error: Optional[str] = Field(None, alias="throwOnError")
    timeout: Optional[str] = Field(None, description="Timeout in seconds")

    @field_validator('method')
    @classmethod
    def validate_method(cls, v):
        method = v.strip().upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {v}")
        return method

    @field_validator('throw_on_error')
    @classmethod
    def validate_flags(cls, v):
        return check_flag(v)

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, v):
        if v is not None and not is_templated(v):
            seconds = parse_float(v)
            if seconds is None or not 0 < seconds < float("inf"):
                raise ValueError(f"expected a positive number of seconds, got {v!r}")
        return v


class JsonConfig(NodeConfig):
    source: str = Field(..., description="Variable holding JSON text")
    save_to: str = Field(..., alias="saveTo")


class NoteConfig(NodeConfig):
    path: str = Field(..., description="Note path; '.md' is appended when missing")
    content: str = Field("", description="Content to write, template-resolved")
    mode: Literal["overwrite", "append", "create"] = Field("overwrite")
    confirm: Optional[str] = Field(None, description="Ask the user before writing unless 'false'")

    @field_validator('confirm')
    @classmethod
    def validate_confirm(cls, v):
        return check_flag(v)


class NoteReadConfig(NodeConfig):
    path: str = Field(...)
    save_to: str = Field(..., alias="saveTo")


class NoteSearchConfig(NodeConfig):
    query: str = Field(...)
    search_content: Optional[str] = Field(None, alias="searchContent")
    limit: Optional[str] = Field(None, description="Maximum results, 10 when unset")
    save_to: str = Field(..., alias="saveTo")

    @field_validator('search_content')
    @classmethod
    def validate_flags(cls, v):
        return check_flag(v)

    @field_validator('limit')
    @classmethod
    def validate_limit(cls, v):
        return check_count(v)


class NoteListConfig(NodeConfig):
    folder: str = Field("")
    recursive: Optional[str] = Field(None)
    limit: Optional[str] = Field(None, description="Maximum notes, 50 when unset")
    sort_by: Literal["", "name", "modified"] = Field("", alias="sortBy")
    sort_order: Literal["asc", "desc"] = Field("desc", alias="sortOrder")
    save_to: str = Field(..., alias="saveTo")

    @field_validator('recursive')
    @classmethod
    def validate_flags(cls, v):
        return check_flag(v)

    @field_validator('limit')
    @classmethod
    def validate_limit(cls, v):
        return check_count(v)


class FolderListConfig(NodeConfig):
    folder: str = Field("")
    save_to: str = Field(..., alias="saveTo")


class OpenConfig(NodeConfig):
    path: str = Field(...)


class DialogConfig(NodeConfig):
    title: str = Field("Dialog")
    message: str = Field("")
    options: str = Field("", description="Comma-separated choices")
    multi_select: bool = Field(False, alias="multiSelect")
    button1: str = Field("OK")
    button2: Optional[str] = Field(None)
    input_title: Optional[str] = Field(None, alias="inputTitle")
    multiline: bool = Field(False)
    defaults: Optional[str] = Field(None, description="JSON with 'input' and 'selected'")
    markdown: bool = Field(False)
    save_to: Optional[str] = Field(None, alias="saveTo")


class PromptFileConfig(NodeConfig):
    default: str = Field("", description="Path preselected in the picker")
    save_to: str = Field(..., alias="saveTo")
    save_file_to: Optional[str] = Field(None, alias="saveFileTo")


class PromptSelectionConfig(NodeConfig):
    save_to: str = Field(..., alias="saveTo")
    save_selection_to: Optional[str] = Field(None, alias="saveSelectionTo")


class FileSaveConfig(NodeConfig):
    source: str = Field(..., description="Variable holding file data JSON")
    path: str = Field(...)
    save_path_to: Optional[str] = Field(None, alias="savePathTo")


class WorkflowCallConfig(NodeConfig):
    path: str = Field(..., description="Definition file of the sub-workflow")
    name: Optional[str] = Field(None, description="Workflow block name inside the file")
    input: Optional[str] = Field(None, description="Input mapping")
    output: Optional[str] = Field(None, description="Output mapping")
    prefix: str = Field("", description="Prefix used when copying all results")


class McpConfig(NodeConfig):
    url: str = Field(..., description="Remote tool server URL")
    tool: str = Field(..., description="Tool name")
    args: Optional[str] = Field(None, description="JSON arguments")
    headers: Optional[str] = Field(None, description="JSON headers")
    save_to: Optional[str] = Field(None, alias="saveTo")


NODE_CONFIG_TYPES: Dict[str, Type[NodeConfig]] = {
    "variable": VariableConfig,
    "set": SetConfig,
    "if": ConditionConfig,
    "while": ConditionConfig,
    "sleep": SleepConfig,
    "command": CommandConfig,
    "http": HttpConfig,
    "json": JsonConfig,
    "note": NoteConfig,
    "note-read": NoteReadConfig,
    "note-search": NoteSearchConfig,
    "note-list": NoteListConfig,
    "folder-list": FolderListConfig,
    "open": OpenConfig,
    "dialog": DialogConfig,
    "prompt-file": PromptFileConfig,
    "prompt-selection": PromptSelectionConfig,
    "file-save": FileSaveConfig,
    "workflow": WorkflowCallConfig,
    "mcp": McpConfig,
}

# Display names used in "missing property" messages
NODE_LABELS: Dict[str, str] = {
    "variable": "Variable",
    "set": "Set",
    "if": "If",
    "while": "While",
    "command": "Command",
    "http": "HTTP",
    "json": "JSON",
    "note": "Note",
    "workflow": "Workflow",
    "mcp": "MCP",
}


def node_label(node_type: str) -> str:
    """Human readable label for a node type."""
    return NODE_LABELS.get(node_type, node_type)


def describe_validation_error(error: ValidationError, node_type: str) -> str:
    """Turn a pydantic validation error into a single readable message."""
    messages = []
    for item in error.errors():
        field = ".".join(str(part) for part in item.get("loc", ())) or "config"
        if item.get("type") == "missing":
            messages.append(f"{node_label(node_type)} node missing '{field}' property")
        else:
            detail = item.get("msg", "invalid value")
            if detail.startswith("Value error, "):
                detail = detail[len("Value error, "):]
            messages.append(f"Invalid '{field}' property: {detail}")
    return "; ".join(messages)


def build_node_config(node_type: str, properties: Dict[str, str]) -> Optional[NodeConfig]:
    """Validate raw properties into the typed config for ``node_type``.

    Returns:
        The typed config, or None for node types without one

    Raises:
        pydantic.ValidationError: If the properties are invalid
    """
    config_cls = NODE_CONFIG_TYPES.get(node_type)
    if config_cls is None:
        return None
    return config_cls.model_validate(properties)
