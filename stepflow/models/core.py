"""Core Pydantic models for workflow definitions, execution logs and history."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .node_configs import NodeConfig


VariableValue = Union[str, int, float]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class NodeType(str, Enum):
    """Enumeration of supported workflow node types."""
    VARIABLE = "variable"
    SET = "set"
    IF = "if"
    WHILE = "while"
    SLEEP = "sleep"
    COMMAND = "command"
    HTTP = "http"
    JSON = "json"
    NOTE = "note"
    NOTE_READ = "note-read"
    NOTE_SEARCH = "note-search"
    NOTE_LIST = "note-list"
    FOLDER_LIST = "folder-list"
    OPEN = "open"
    DIALOG = "dialog"
    PROMPT_FILE = "prompt-file"
    PROMPT_SELECTION = "prompt-selection"
    FILE_SAVE = "file-save"
    WORKFLOW = "workflow"
    MCP = "mcp"

    @classmethod
    def is_known(cls, value: Any) -> bool:
        """Check whether a raw record type names a supported node type."""
        return isinstance(value, str) and value in cls._value2member_map_

    @property
    def is_branch(self) -> bool:
        """Branch nodes route through labeled true/false edges."""
        return self in (NodeType.IF, NodeType.WHILE)


class EdgeLabel(str, Enum):
    """Labels for edges leaving a branch node."""
    TRUE = "true"
    FALSE = "false"


class LogStatus(str, Enum):
    """Status of an execution log entry."""
    INFO = "info"
    SUCCESS = "success"
    ERROR = "error"


class ExecutionStatus(str, Enum):
    """Status of a persisted execution record."""
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class StepStatus(str, Enum):
    """Status of one recorded execution step."""
    SUCCESS = "success"
    ERROR = "error"
    SKIPPED = "skipped"


class WorkflowNode(BaseModel):
    """One typed step of a workflow graph. Immutable after parsing."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique identifier for the node")
    type: NodeType = Field(..., description="Node type")
    properties: Dict[str, str] = Field(default_factory=dict, description="Raw string properties")
    config: Optional[NodeConfig] = Field(None, description="Typed configuration validated at parse time")

    @field_validator('id')
    @classmethod
    def validate_id(cls, id_value):
        """Ensure node ID is not empty."""
        if not id_value or not id_value.strip():
            raise ValueError("Node ID cannot be empty")
        return id_value

    def prop(self, key: str, default: str = "") -> str:
        """Raw property value, or ``default`` when absent."""
        return self.properties.get(key, default)


class WorkflowEdge(BaseModel):
    """Directed link between two nodes, optionally labeled for branches."""
    model_config = ConfigDict(frozen=True)

    from_node: str = Field(..., description="Source node ID")
    to_node: str = Field(..., description="Target node ID")
    label: Optional[EdgeLabel] = Field(None, description="Branch label for if/while edges")


class Workflow(BaseModel):
    """A parsed workflow graph."""
    nodes: Dict[str, WorkflowNode] = Field(default_factory=dict, description="Nodes keyed by ID")
    edges: List[WorkflowEdge] = Field(default_factory=list, description="Edges in declaration order")
    start_node: Optional[str] = Field(None, description="ID of the first node")
    name: Optional[str] = Field(None, description="Workflow name from its definition block")

    @model_validator(mode='after')
    def validate_graph_structure(self):
        """Validate edge endpoints and branch labels."""
        if self.start_node is not None and self.start_node not in self.nodes:
            raise ValueError(f"Start node '{self.start_node}' does not exist in nodes")

        labeled: Dict[tuple, int] = {}
        for edge in self.edges:
            if edge.from_node not in self.nodes or edge.to_node not in self.nodes:
                raise ValueError(f"Invalid edge reference: {edge.from_node} -> {edge.to_node}")
            if edge.label is not None:
                key = (edge.from_node, edge.label)
                labeled[key] = labeled.get(key, 0) + 1
                if labeled[key] > 1:
                    raise ValueError(
                        f"Node {edge.from_node} has more than one '{edge.label.value}' edge"
                    )
        return self

    def outgoing(self, node_id: str) -> List[WorkflowEdge]:
        """Edges leaving ``node_id`` in declaration order."""
        return [edge for edge in self.edges if edge.from_node == node_id]

    def next_nodes(self, node_id: str, branch: Optional[bool] = None) -> List[str]:
        """Successor IDs of a node.

        Branch nodes only follow edges whose label matches ``branch``; other
        nodes follow every outgoing edge.
        """
        node = self.nodes.get(node_id)
        if node is None:
            return []

        if node.type.is_branch:
            if branch is None:
                return []
            expected = EdgeLabel.TRUE if branch else EdgeLabel.FALSE
            return [edge.to_node for edge in self.outgoing(node_id) if edge.label == expected]

        return [edge.to_node for edge in self.outgoing(node_id)]


class LastCommandInfo(BaseModel):
    """The most recent command node that saved its output."""
    node_id: str = Field(..., description="Command node ID")
    original_prompt: str = Field(..., description="Prompt after template resolution")
    save_to: str = Field(..., description="Variable holding the command output")


class RegenerateInfo(BaseModel):
    """Everything a command node needs to regenerate its output."""
    command_node_id: str = Field(..., description="Command node to replay")
    original_prompt: str = Field(..., description="Prompt used for the previous output")
    previous_output: str = Field(..., description="Output being revised")
    additional_request: str = Field(..., description="User feedback")


class ExecutionLog(BaseModel):
    """One entry of the execution log stream."""
    node_id: str = Field(..., description="Node that produced the entry")
    node_type: str = Field(..., description="Node type, or 'system'")
    message: str = Field(..., description="Log message")
    timestamp: datetime = Field(default_factory=utc_now, description="When the entry was produced")
    status: LogStatus = Field(LogStatus.INFO, description="Entry status")
    input: Optional[Dict[str, Any]] = Field(None, description="Node input summary")
    output: Optional[Any] = Field(None, description="Node output summary")


class ExecutionStep(BaseModel):
    """One node execution recorded in history."""
    node_id: str = Field(..., description="Executed node ID")
    node_type: str = Field(..., description="Executed node type")
    timestamp: datetime = Field(default_factory=utc_now, description="When the step was recorded")
    input: Optional[Dict[str, Any]] = Field(None, description="Node input summary")
    output: Optional[Any] = Field(None, description="Node output summary")
    status: StepStatus = Field(StepStatus.SUCCESS, description="Step status")
    error: Optional[str] = Field(None, description="Error message for failed steps")


class ExecutionRecord(BaseModel):
    """Persisted history of one workflow execution."""
    id: str = Field(..., description="Unique record identifier")
    workflow_path: str = Field(..., description="Path of the executed workflow")
    workflow_name: Optional[str] = Field(None, description="Name of the executed workflow block")
    start_time: datetime = Field(default_factory=utc_now, description="Execution start")
    end_time: Optional[datetime] = Field(None, description="Execution end")
    status: ExecutionStatus = Field(ExecutionStatus.RUNNING, description="Execution status")
    steps: List[ExecutionStep] = Field(default_factory=list, description="Recorded steps")
    error_node_id: Optional[str] = Field(None, description="Node that failed, if any")
    variables_snapshot: Optional[Dict[str, VariableValue]] = Field(
        None, description="Variables at the end of the execution"
    )


class ExecutionContext:
    """Variable store and log accumulator scoped to one execution."""

    def __init__(self, variables: Optional[Dict[str, VariableValue]] = None):
        self.variables: Dict[str, VariableValue] = dict(variables or {})
        self.logs: List[ExecutionLog] = []
        self.last_command_info: Optional[LastCommandInfo] = None
        self.regenerate_info: Optional[RegenerateInfo] = None

    def get(self, name: str, default: Optional[VariableValue] = None) -> Optional[VariableValue]:
        """Look up a variable."""
        return self.variables.get(name, default)

    def set(self, name: str, value: VariableValue) -> None:
        """Assign a variable."""
        self.variables[name] = value

    def snapshot(self) -> Dict[str, VariableValue]:
        """Copy of the current variables."""
        return dict(self.variables)
