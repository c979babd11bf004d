"""Template resolution for ``{{...}}`` placeholders.

Placeholders reference execution variables either by bare name (``{{name}}``)
or by a JSON path into a variable holding JSON text (``{{data.items[0].id}}``,
``{{data.items[idx].id}}``, ``{{data[0].id}}``). A ``:json`` suffix escapes the
result for embedding inside a JSON string literal. Anything that cannot be
resolved is left in place unchanged.
"""

import json
import math
import re
from typing import Any, Mapping, Optional

from .logging import get_logger


logger = get_logger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([\w.\[\]]+)(:json)?\}\}", re.ASCII)
CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
ROOT_INDEX_PATTERN = re.compile(r"^\[(\w+)\](.*)$", re.ASCII | re.DOTALL)
SEGMENT_INDEX_PATTERN = re.compile(r"^(\w+)\[(\w+)\]$", re.ASCII)
LEADING_FLOAT_PATTERN = re.compile(
    r"^[+-]?(?:Infinity|(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"
)
LEADING_INT_PATTERN = re.compile(r"^[+-]?\d+")

DEFAULT_MAX_PASSES = 10


class _Missing:
    """Marker for a path that does not resolve."""

    def __repr__(self):
        return "MISSING"


MISSING = _Missing()


def parse_float(text: Any) -> Optional[float]:
    """Parse the leading number of ``text`` the way JavaScript's parseFloat does.

    Returns:
        The parsed float, or None when no leading number exists
    """
    if isinstance(text, bool):
        return None
    if isinstance(text, (int, float)):
        return float(text)
    match = LEADING_FLOAT_PATTERN.match(str(text).lstrip())
    if not match:
        return None
    token = match.group(0)
    if token.lstrip("+-") == "Infinity":
        return -math.inf if token.startswith("-") else math.inf
    return float(token)


def parse_int(text: Any) -> Optional[int]:
    """Parse the leading integer of ``text`` like JavaScript's parseInt."""
    if isinstance(text, bool):
        return None
    if isinstance(text, int):
        return text
    if isinstance(text, float):
        return int(text) if math.isfinite(text) else None
    match = LEADING_INT_PATTERN.match(str(text).lstrip())
    return int(match.group(0)) if match else None


def format_number(value: float) -> str:
    """Render a number the way JavaScript's String() does."""
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    text = repr(value)
    if "e" in text:
        mantissa, exponent = text.split("e")
        sign = "-" if exponent.startswith("-") else "+"
        text = f"{mantissa}e{sign}{exponent.lstrip('+-').lstrip('0') or '0'}"
    return text


def normalize_number(value: float):
    """Collapse integral floats to ints so they render without a fraction."""
    if isinstance(value, float) and value.is_integer() and abs(value) < 1e21:
        return int(value)
    return value


def canonical_number(text: str):
    """Return ``text`` as a number when it is the canonical rendering of one.

    ``"5"`` and ``"-2.5"`` become numbers; ``"05"``, ``"5.0"`` and ``"abc"``
    stay as they are.
    """
    parsed = parse_float(text)
    if parsed is None or not math.isfinite(parsed):
        return text
    if format_number(parsed) != text:
        return text
    return normalize_number(parsed)


def _normalize_json(value: Any) -> Any:
    if isinstance(value, float):
        return normalize_number(value)
    if isinstance(value, dict):
        return {key: _normalize_json(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalize_json(item) for item in value]
    return value


def to_json_text(value: Any) -> str:
    """Serialize ``value`` as compact JSON, rendering integral floats as ints."""
    return json.dumps(
        _normalize_json(value), separators=(",", ":"), ensure_ascii=False, default=str
    )


def format_value(value: Any) -> str:
    """Render a variable or JSON value as template text."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return value
    return to_json_text(value)


def json_escape(text: str) -> str:
    """Escape ``text`` for embedding inside a JSON string literal."""
    return json.dumps(text, ensure_ascii=False)[1:-1]


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json fence, if any, and trim whitespace."""
    match = CODE_FENCE_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


def _index_into(container: Any, index: Any) -> Any:
    if isinstance(container, list):
        if isinstance(index, float):
            if not index.is_integer():
                return MISSING
            index = int(index)
        if isinstance(index, int) and not isinstance(index, bool) and 0 <= index < len(container):
            return container[index]
        return MISSING
    if isinstance(container, dict):
        return container.get(str(index), MISSING)
    return MISSING


def _resolve_index(token: str, variables: Mapping[str, Any]) -> Any:
    """Resolve a bracket index: a numeric literal or a variable holding one."""
    if token.isdigit():
        return int(token)
    value = variables.get(token)
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return parse_int(value)


def get_nested_value(data: Any, path: str, variables: Optional[Mapping[str, Any]] = None) -> Any:
    """Navigate ``data`` along a dotted path such as ``items[0].name``.

    Args:
        data: Parsed JSON value to navigate
        path: Dot-separated segments, each optionally followed by one ``[index]``
        variables: Variables used to resolve non-numeric indices

    Returns:
        The value found, or ``MISSING`` when any segment does not resolve
    """
    variables = variables or {}
    current = data

    for part in path.split("."):
        if current is None or current is MISSING:
            return MISSING

        match = SEGMENT_INDEX_PATTERN.match(part)
        if match:
            name, token = match.groups()
            current = current.get(name, MISSING) if isinstance(current, dict) else MISSING
            if not isinstance(current, list):
                return MISSING
            index = _resolve_index(token, variables)
            if index is None:
                return MISSING
            current = _index_into(current, index)
        elif isinstance(current, list) and part.isdigit():
            current = _index_into(current, int(part))
        elif isinstance(current, dict):
            current = current.get(part, MISSING)
        else:
            return MISSING

    return current


def _resolve_path(full_path: str, variables: Mapping[str, Any]) -> Any:
    """Resolve a dotted or bracketed path expression to a value or ``MISSING``."""
    root = re.match(r"\w+", full_path, re.ASCII)
    if root is None:
        return MISSING
    var_name = root.group(0)
    rest = full_path[len(var_name):]

    if var_name not in variables:
        return MISSING
    raw = variables[var_name]
    if not isinstance(raw, str):
        return MISSING

    try:
        parsed = json.loads(strip_code_fence(raw))
    except ValueError:
        return MISSING

    if rest.startswith("["):
        bracket = ROOT_INDEX_PATTERN.match(rest)
        if not bracket or not isinstance(parsed, list):
            return MISSING
        token, remaining = bracket.groups()
        index = _resolve_index(token, variables)
        if index is None:
            return MISSING
        value = _index_into(parsed, index)
        if remaining.startswith("."):
            remaining = remaining[1:]
        if remaining and value is not MISSING:
            value = get_nested_value(value, remaining, variables)
        return value

    return get_nested_value(parsed, rest[1:], variables)


def _replace_once(template: str, variables: Mapping[str, Any]) -> str:
    def substitute(match: "re.Match[str]") -> str:
        expression, json_suffix = match.group(1), match.group(2)

        if "." in expression or "[" in expression:
            value = _resolve_path(expression, variables)
        else:
            value = variables.get(expression, MISSING)
            if value is None:
                value = MISSING

        if value is MISSING:
            return match.group(0)

        text = format_value(value)
        return json_escape(text) if json_suffix else text

    return PLACEHOLDER_PATTERN.sub(substitute, template)


def resolve(template: str, context: Any, max_passes: int = DEFAULT_MAX_PASSES) -> str:
    """Resolve every placeholder in ``template`` against ``context``.

    Resolution repeats until a pass changes nothing or ``max_passes`` passes
    have run, so placeholders produced by substituted values resolve too.

    Args:
        template: Text containing ``{{...}}`` placeholders
        context: An execution context, or a plain mapping of variables
        max_passes: Upper bound on resolution passes

    Returns:
        The resolved text
    """
    if not template or "{{" not in template:
        return template

    variables = getattr(context, "variables", context)
    result = template
    for _ in range(max_passes):
        previous = result
        result = _replace_once(result, variables)
        if result == previous:
            break
    else:
        logger.debug(f"Template resolution stopped after {max_passes} passes")

    return result
