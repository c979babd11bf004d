"""Helpers shared by the built-in node handlers."""

import json
from typing import Any, Dict, Optional

from ..core.collaborators import PROMPTER
from ..core.exceptions import HandlerFailure, PromptCancelled
from ..core.templating import parse_int
from ..models.core import VariableValue, WorkflowNode
from ..models.node_configs import node_label


def missing_property(node: WorkflowNode, prop: str, hint: str = "") -> HandlerFailure:
    """Build the error raised when a property resolves to nothing."""
    message = f"{node_label(node.type.value)} node missing '{prop}' property"
    if hint:
        message = f"{message}. {hint}"
    return HandlerFailure(message, node_id=node.id, node_type=node.type.value)


def failure(node: WorkflowNode, message: str) -> HandlerFailure:
    return HandlerFailure(message, node_id=node.id, node_type=node.type.value)


def resolve_flag(runtime, value: Optional[str], context, default: bool = False) -> bool:
    """Resolve a templated flag. Anything but 'true' or 'false' keeps ``default``."""
    if value is None:
        return default
    text = runtime.resolve(value, context).strip().lower()
    if text in ("true", "false"):
        return text == "true"
    return default


def resolve_count(runtime, value: Optional[str], context, default: int) -> int:
    if value is None:
        return default
    count = parse_int(runtime.resolve(value, context))
    return count if count and count > 0 else default


def note_path(path: str) -> str:
    """Append ``.md`` unless the path already ends with it."""
    return path if path.endswith(".md") else f"{path}.md"


def split_name(basename: str):
    """Split a file name into name and extension on the last dot."""
    dot = basename.rfind(".")
    if dot > 0:
        return basename[:dot], basename[dot + 1:]
    return basename, ""


def parse_json_object(text: str) -> Optional[Dict[str, Any]]:
    """Parse ``text`` as a JSON object, returning None for anything else."""
    try:
        parsed = json.loads(text)
    except (ValueError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_pairs(text: str) -> Dict[str, str]:
    """Parse comma-separated ``key=value`` pairs; entries without '=' are ignored."""
    pairs = {}
    for pair in text.split(","):
        key, sep, value = pair.partition("=")
        key = key.strip()
        if sep and key:
            pairs[key] = value.strip()
    return pairs


def as_variable(value: Any) -> VariableValue:
    """Coerce a JSON value into something a variable can hold."""
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return value


async def ask_user(runtime, node: WorkflowNode, kind: str, params: Dict[str, Any],
                   unavailable: str, cancelled: str) -> Any:
    """Prompt the user and turn a dismissal into ``PromptCancelled``."""
    prompter = runtime.collaborator(PROMPTER, required=False)
    if prompter is None:
        raise failure(node, unavailable)
    response = await prompter.prompt_user(kind, params)
    if response is None:
        raise PromptCancelled(cancelled, context={"node_id": node.id})
    return response
