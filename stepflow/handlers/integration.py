"""Sub-workflow and remote tool handlers."""

import json
from typing import Dict

from ..core.collaborators import REMOTE_TOOLS, WORKFLOW_LOADER
from ..core.logging import get_logger
from ..core.results import Continue
from ..models.core import VariableValue
from .utils import as_variable, failure, missing_property, parse_json_object, parse_pairs

logger = get_logger(__name__)


def build_input_variables(text: str, context) -> Dict[str, VariableValue]:
    """Build the sub-workflow's initial variables from an input mapping.

    A JSON object maps sub-workflow variables to values. Otherwise the text is
    read as ``subVar=parentVar`` pairs; a value naming a parent variable takes
    that variable's value, anything else is used literally.
    """
    mapping = parse_json_object(text)
    if mapping is not None:
        return {key: as_variable(value) for key, value in mapping.items()}

    variables = {}
    for key, value in parse_pairs(text).items():
        parent_value = context.get(value)
        variables[key] = parent_value if parent_value is not None else value
    return variables


def build_output_mapping(text: str) -> Dict[str, str]:
    """Parse an output mapping of ``parentVar`` to ``subVar``."""
    mapping = parse_json_object(text)
    if mapping is not None:
        return {key: value for key, value in mapping.items() if isinstance(value, str)}
    return {key: value for key, value in parse_pairs(text).items() if value}


async def handle_workflow(node, context, runtime):
    """
    Run another workflow definition as a sub-workflow.

    The sub-workflow gets a fresh context seeded from the input mapping. Its
    results flow back through the output mapping, or all of them are copied
    under ``prefix`` when no mapping is given.
    """
    config = node.config
    path = runtime.resolve(config.path, context)
    if not path:
        raise missing_property(node, "path")
    name = runtime.resolve(config.name, context) if config.name else None

    loader = runtime.collaborator(WORKFLOW_LOADER)
    workflow = await loader.load(path, name)

    inputs = build_input_variables(runtime.resolve(config.input, context), context) if config.input else {}
    sub_context = await runtime.run_subworkflow(workflow, inputs, node)
    results = sub_context.variables
    runtime.log(node, f"Sub-workflow completed: {path}")

    copied = []
    if config.output:
        for parent_var, sub_var in build_output_mapping(runtime.resolve(config.output, context)).items():
            if sub_var in results:
                context.set(parent_var, results[sub_var])
                copied.append(parent_var)
    else:
        for key, value in results.items():
            context.set(f"{config.prefix}{key}", value)
            copied.append(f"{config.prefix}{key}")

    return Continue(
        input={"path": path, "name": name, "variables": sorted(inputs)},
        output={"copied": copied}
    )


def _parse_json_property(node, label: str, text: str) -> Dict:
    try:
        parsed = json.loads(text)
    except ValueError:
        raise failure(node, f"Invalid JSON in MCP {label}: {text}")
    if not isinstance(parsed, dict):
        raise failure(node, f"Invalid JSON in MCP {label}: {text}")
    return parsed


async def handle_mcp(node, context, runtime):
    """Call a tool on a remote tool server and store its text output."""
    config = node.config
    url = runtime.resolve(config.url, context)
    tool = runtime.resolve(config.tool, context)
    if not url:
        raise missing_property(node, "url")
    if not tool:
        raise missing_property(node, "tool")

    headers = _parse_json_property(node, "headers", runtime.resolve(config.headers, context)) if config.headers else {}
    args = _parse_json_property(node, "args", runtime.resolve(config.args, context)) if config.args else {}

    client = runtime.collaborator(REMOTE_TOOLS)
    result = await client.call_tool(url, tool, args, headers=headers)
    if result.is_error:
        raise failure(node, f"MCP tool execution failed: {result.text}")

    if config.save_to:
        context.set(config.save_to, result.text)
    logger.debug(f"MCP tool {tool} on {url} returned {len(result.content)} content parts")
    return Continue(input={"url": url, "tool": tool, "args": args}, output=result.text)
