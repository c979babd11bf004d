"""Condition parsing and evaluation for ``if`` and ``while`` nodes."""

import json
import operator
import re
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field

from .templating import DEFAULT_MAX_PASSES, parse_float, resolve


# Two-character operators come first so '<=' is never split on '<'
OPERATORS = ("==", "!=", "<=", ">=", "<", ">", "contains")

QUOTED_PATTERN = re.compile(r"""["'](.*)["']""")

_COMPARATORS = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}


class Condition(BaseModel):
    """A parsed binary comparison."""
    model_config = ConfigDict(frozen=True)

    left: str = Field(..., description="Left operand, may contain placeholders")
    operator: str = Field(..., description="One of the supported operators")
    right: str = Field(..., description="Right operand, may contain placeholders")


def parse_condition(raw: str) -> Optional[Condition]:
    """Split ``raw`` on the first operator that yields exactly two parts.

    Returns:
        The parsed condition, or None if no operator splits it cleanly
    """
    for op in OPERATORS:
        parts = raw.split(op)
        if len(parts) == 2:
            return Condition(left=parts[0].strip(), operator=op, right=parts[1].strip())
    return None


def _unquote(text: str) -> str:
    match = QUOTED_PATTERN.fullmatch(text)
    return match.group(1) if match else text


def _contains(left: str, right: str) -> bool:
    try:
        parsed = json.loads(left)
    except ValueError:
        parsed = None
    if isinstance(parsed, list):
        return any(isinstance(item, str) and item == right for item in parsed)
    return right in left


def evaluate(condition: Condition, context: Any, max_passes: int = DEFAULT_MAX_PASSES) -> bool:
    """Evaluate a parsed condition against the context's variables.

    Both sides are template-resolved and stripped of one layer of quotes.
    Comparison is numeric when both sides start with a number, otherwise it
    is a plain string comparison.
    """
    left = _unquote(resolve(condition.left, context, max_passes))
    right = _unquote(resolve(condition.right, context, max_passes))

    if condition.operator == "contains":
        return _contains(left, right)

    left_num = parse_float(left)
    right_num = parse_float(right)
    compare = _COMPARATORS[condition.operator]

    if left_num is not None and right_num is not None:
        return compare(left_num, right_num)
    return compare(left, right)


def evaluate_expression(raw: str, context: Any, max_passes: int = DEFAULT_MAX_PASSES) -> bool:
    """Parse and evaluate ``raw`` in one step.

    Raises:
        ValueError: If ``raw`` is not a valid condition
    """
    condition = parse_condition(raw)
    if condition is None:
        raise ValueError(f"Invalid condition format: {raw}")
    return evaluate(condition, context, max_passes)
