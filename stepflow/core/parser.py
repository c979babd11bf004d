"""Workflow parser.

Builds a ``Workflow`` graph from an ordered list of step records, from a YAML
document, or from a markdown document holding ```` ```workflow ```` blocks.
"""

import json
import re
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from ..models.core import NodeType, Workflow, WorkflowEdge, WorkflowNode, EdgeLabel
from ..models.node_configs import build_node_config, describe_validation_error
from .exceptions import MalformedDefinition
from .logging import get_logger
from .templating import format_number


logger = get_logger(__name__)

BLOCK_PATTERN = re.compile(r"^```workflow[^\n]*\r?\n([\s\S]*?)\r?\n```\s*$", re.MULTILINE)

# Successor value that terminates a branch without adding an edge
END_SENTINEL = "end"

RESERVED_KEYS = ("id", "type", "next", "trueNext", "falseNext")


class WorkflowBlock(BaseModel):
    """A ```workflow code block found in a markdown document."""
    name: Optional[str] = Field(None, description="Block name, if any")
    data: Dict[str, Any] = Field(default_factory=dict, description="Parsed YAML body")
    start: int = Field(..., description="Offset of the opening fence")
    end: int = Field(..., description="Offset just past the closing fence")
    raw: str = Field(..., description="Block text including fences")


class WorkflowOption(BaseModel):
    """Selectable workflow block inside a document."""
    label: str
    name: Optional[str] = None
    index: int
    start_line: int = Field(..., description="0-based line of the opening fence")
    end_line: int = Field(..., description="0-based line of the closing fence")


def normalize_value(value: Any) -> str:
    """Convert a raw record value to its string property form."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def _record_id(records: List[Any], position: int) -> str:
    record = records[position]
    raw_id = record.get("id") if isinstance(record, dict) else None
    node_id = normalize_value(raw_id)
    # blank ids fall back to the record position
    return node_id if node_id.strip() else f"node-{position + 1}"


def _block_name(data: Dict[str, Any]) -> Optional[str]:
    if isinstance(data.get("name"), str):
        return data["name"]
    container = data.get("workflow")
    if isinstance(container, dict) and isinstance(container.get("name"), str):
        return container["name"]
    return None


def _load_yaml(text: str) -> Any:
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedDefinition(f"Invalid workflow YAML: {e}")


def find_workflow_blocks(content: str) -> List[WorkflowBlock]:
    """Find every ```workflow block in a markdown document."""
    blocks = []
    for match in BLOCK_PATTERN.finditer(content):
        data = _load_yaml(match.group(1))
        if not isinstance(data, dict):
            data = {}
        blocks.append(WorkflowBlock(
            name=data.get("name") if isinstance(data.get("name"), str) else None,
            data=data,
            start=match.start(),
            end=match.end(),
            raw=match.group(0),
        ))
    return blocks


def list_workflow_options(content: str) -> List[WorkflowOption]:
    """List the workflow blocks of a document for selection."""
    options = []
    for index, block in enumerate(find_workflow_blocks(content)):
        name = _block_name(block.data)
        options.append(WorkflowOption(
            label=name or f"unnamed #{index + 1}",
            name=name,
            index=index,
            start_line=content.count("\n", 0, block.start),
            end_line=content.count("\n", 0, block.end),
        ))
    return options


def _container_records(data: Any) -> List[Any]:
    """Extract the node list from a block body or YAML document."""
    container = data
    if isinstance(data, dict) and isinstance(data.get("workflow"), dict):
        container = data["workflow"]
    if not isinstance(container, dict) or not isinstance(container.get("nodes"), list):
        raise MalformedDefinition("Invalid workflow block")
    return container["nodes"]


def parse_nodes(
    records: List[Any],
    name: Optional[str] = None,
    allow_back_edges: bool = False
) -> Workflow:
    """Build a workflow from an ordered list of step records.

    Records whose ``type`` is not a known node type, and records that are not
    mappings, are skipped. A sequential node without ``next`` (or a branch
    node without ``falseNext``) falls through to the following record; only
    the ``"end"`` sentinel terminates explicitly.

    Args:
        records: Step records in source order
        name: Optional workflow name
        allow_back_edges: Accept references to earlier non-while nodes

    Returns:
        The parsed workflow

    Raises:
        MalformedDefinition: If the records do not form a valid workflow
    """
    nodes: Dict[str, WorkflowNode] = {}
    positions: Dict[str, int] = {}
    start_node: Optional[str] = None

    for i, record in enumerate(records):
        if not isinstance(record, dict):
            continue
        node_type = record.get("type")
        if not NodeType.is_known(node_type):
            logger.debug(f"Skipping record {i + 1} with unknown type: {node_type!r}")
            continue

        node_id = _record_id(records, i)
        if node_id in nodes:
            raise MalformedDefinition(
                f"Duplicate node id: {node_id}", workflow_name=name, node_id=node_id
            )

        properties = {}
        for key, value in record.items():
            if key in RESERVED_KEYS:
                continue
            normalized = normalize_value(value)
            if normalized != "":
                properties[str(key)] = normalized

        try:
            config = build_node_config(node_type, properties)
        except ValidationError as e:
            message = describe_validation_error(e, node_type)
            raise MalformedDefinition(
                f"Node {node_id} ({node_type}): {message}",
                validation_errors=message.split("; "),
                workflow_name=name,
                node_id=node_id,
            )

        nodes[node_id] = WorkflowNode(
            id=node_id, type=NodeType(node_type), properties=properties, config=config
        )
        positions[node_id] = i
        if start_node is None:
            start_node = node_id

    edges: List[WorkflowEdge] = []

    def add_edge(source: str, target: str, label: Optional[EdgeLabel] = None):
        if source not in nodes or target not in nodes:
            raise MalformedDefinition(
                f"Invalid edge reference: {source} -> {target}", workflow_name=name, node_id=source
            )
        if (
            not allow_back_edges
            and positions[target] <= positions[source]
            and nodes[target].type != NodeType.WHILE
        ):
            raise MalformedDefinition(
                f'Invalid back-reference: "{source}" -> "{target}". '
                f"Only while nodes can be loop targets.",
                workflow_name=name,
                node_id=source,
            )
        edges.append(WorkflowEdge(from_node=source, to_node=target, label=label))

    def fallthrough(position: int, node_id: str) -> Optional[str]:
        if position >= len(records) - 1:
            return None
        fallback_id = _record_id(records, position + 1)
        if fallback_id != node_id and fallback_id in nodes:
            return fallback_id
        return None

    for i, record in enumerate(records):
        if not isinstance(record, dict) or not NodeType.is_known(record.get("type")):
            continue
        node_id = _record_id(records, i)
        node = nodes[node_id]

        if node.type.is_branch:
            true_next = normalize_value(record.get("trueNext"))
            false_next = normalize_value(record.get("falseNext"))

            if not true_next:
                raise MalformedDefinition(
                    f"Node {node_id} ({node.type.value}) missing trueNext",
                    workflow_name=name,
                    node_id=node_id,
                )
            if true_next != END_SENTINEL:
                add_edge(node_id, true_next, EdgeLabel.TRUE)

            if false_next:
                if false_next != END_SENTINEL:
                    add_edge(node_id, false_next, EdgeLabel.FALSE)
            else:
                fallback_id = fallthrough(i, node_id)
                if fallback_id:
                    add_edge(node_id, fallback_id, EdgeLabel.FALSE)
        else:
            next_id = normalize_value(record.get("next"))
            if next_id:
                if next_id != END_SENTINEL:
                    add_edge(node_id, next_id)
            else:
                fallback_id = fallthrough(i, node_id)
                if fallback_id:
                    add_edge(node_id, fallback_id)

    if start_node is None:
        raise MalformedDefinition("Workflow has no nodes", workflow_name=name)

    try:
        workflow = Workflow(nodes=nodes, edges=edges, start_node=start_node, name=name)
    except ValidationError as e:
        messages = [item.get("msg", "invalid value") for item in e.errors()]
        raise MalformedDefinition(
            f"Invalid workflow: {'; '.join(messages)}",
            validation_errors=messages,
            workflow_name=name,
        )

    logger.debug(f"Parsed workflow {name or '<unnamed>'}: {len(nodes)} nodes, {len(edges)} edges")
    return workflow


def parse_yaml(text: str, allow_back_edges: bool = False) -> Workflow:
    """Parse a YAML document holding a workflow (``nodes`` or ``workflow.nodes``)."""
    data = _load_yaml(text)
    records = _container_records(data)
    return parse_nodes(records, name=_block_name(data), allow_back_edges=allow_back_edges)


def parse_markdown(
    content: str,
    name: Optional[str] = None,
    index: Optional[int] = None,
    allow_back_edges: bool = False
) -> Workflow:
    """Parse one ```workflow block of a markdown document.

    Args:
        content: Markdown text
        name: Select the block with this name
        index: Select the block at this position when no name is given
        allow_back_edges: Accept references to earlier non-while nodes

    Raises:
        MalformedDefinition: If no block can be selected or it is invalid
    """
    blocks = find_workflow_blocks(content)
    if not blocks:
        raise MalformedDefinition("No workflow code block found")

    block = blocks[0]
    if name:
        matches = [b for b in blocks if _block_name(b.data) == name]
        if not matches:
            raise MalformedDefinition(f"Workflow '{name}' not found", workflow_name=name)
        block = matches[0]
    elif index is not None:
        if index < 0 or index >= len(blocks):
            raise MalformedDefinition("Workflow index out of range")
        block = blocks[index]
    elif len(blocks) > 1:
        raise MalformedDefinition("Multiple workflows found. Specify a workflow name.")

    records = _container_records(block.data)
    return parse_nodes(records, name=_block_name(block.data), allow_back_edges=allow_back_edges)


def parse(
    definition: Union[str, List[Any], Dict[str, Any]],
    name: Optional[str] = None,
    index: Optional[int] = None,
    allow_back_edges: bool = False
) -> Workflow:
    """Parse a workflow from any supported source.

    ``definition`` may be a list of step records, a mapping with ``nodes``
    (optionally nested under ``workflow``), a markdown document with
    ```workflow blocks, or a plain YAML document.
    """
    if isinstance(definition, list):
        return parse_nodes(definition, name=name, allow_back_edges=allow_back_edges)
    if isinstance(definition, dict):
        records = _container_records(definition)
        return parse_nodes(
            records, name=name or _block_name(definition), allow_back_edges=allow_back_edges
        )
    if "```workflow" in definition:
        return parse_markdown(definition, name=name, index=index, allow_back_edges=allow_back_edges)
    return parse_yaml(definition, allow_back_edges=allow_back_edges)


def next_nodes(workflow: Workflow, node_id: str, branch: Optional[bool] = None) -> List[str]:
    """Successor IDs of ``node_id``; see ``Workflow.next_nodes``."""
    return workflow.next_nodes(node_id, branch)
