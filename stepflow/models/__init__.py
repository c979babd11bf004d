"""Data models for the workflow engine."""

from .core import (
    NodeType,
    EdgeLabel,
    LogStatus,
    ExecutionStatus,
    StepStatus,
    WorkflowNode,
    WorkflowEdge,
    Workflow,
    LastCommandInfo,
    RegenerateInfo,
    ExecutionLog,
    ExecutionStep,
    ExecutionRecord,
    ExecutionContext,
)
from .node_configs import NodeConfig, build_node_config

__all__ = [
    "NodeType",
    "EdgeLabel",
    "LogStatus",
    "ExecutionStatus",
    "StepStatus",
    "WorkflowNode",
    "WorkflowEdge",
    "Workflow",
    "LastCommandInfo",
    "RegenerateInfo",
    "ExecutionLog",
    "ExecutionStep",
    "ExecutionRecord",
    "ExecutionContext",
    "NodeConfig",
    "build_node_config",
]
