"""Variable, set, if, while and sleep node handlers."""

import asyncio
import math
import operator
import re

from ..core.conditions import evaluate_expression
from ..core.logging import get_logger
from ..core.results import Branch, Continue
from ..core.templating import canonical_number, normalize_number, parse_int
from .utils import failure, missing_property

logger = get_logger(__name__)

ARITHMETIC_PATTERN = re.compile(r"^(-?\d+(?:\.\d+)?)\s*([+\-*/%])\s*(-?\d+(?:\.\d+)?)$", re.ASCII)


def _divide(left: float, right: float) -> float:
    return left / right if right != 0 else 0


def _modulo(left: float, right: float) -> float:
    return math.fmod(left, right) if right != 0 else math.nan


ARITHMETIC_OPERATORS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": _divide,
    "%": _modulo,
}


def evaluate_arithmetic(text: str):
    """Evaluate ``a op b`` on two numeric literals.

    Falls back to a canonical number, then to the text itself.
    """
    match = ARITHMETIC_PATTERN.match(text)
    if match:
        left, op, right = match.groups()
        result = ARITHMETIC_OPERATORS[op](float(left), float(right))
        return normalize_number(result)
    return canonical_number(text)


def handle_variable(node, context, runtime):
    """Declare a variable, storing canonical numeric text as a number."""
    name = node.config.name
    value = canonical_number(runtime.resolve(node.config.value, context))
    context.set(name, value)
    return Continue(input={"name": name}, output=value)


def handle_set(node, context, runtime):
    """Assign a variable from a value or a simple arithmetic expression."""
    name = node.config.name
    if not name:
        raise missing_property(node, "name")
    result = evaluate_arithmetic(runtime.resolve(node.config.value, context))
    context.set(name, result)
    return Continue(input={"name": name, "expression": node.config.value}, output=result)


def _evaluate_condition(node, context, runtime) -> Branch:
    condition = node.config.condition
    try:
        value = evaluate_expression(condition, context, runtime.max_template_passes)
    except ValueError as e:
        raise failure(node, str(e))
    return Branch(value=value, input={"condition": condition})


def handle_if(node, context, runtime):
    return _evaluate_condition(node, context, runtime)


def handle_while(node, context, runtime):
    return _evaluate_condition(node, context, runtime)


async def handle_sleep(node, context, runtime):
    """Pause for ``duration`` milliseconds."""
    text = runtime.resolve(node.config.duration or "0", context)
    duration = parse_int(text) or 0
    if duration > 0:
        runtime.log(node, f"Sleeping for {duration}ms")
        await asyncio.sleep(duration / 1000)
        return Continue(message="Sleep completed", input={"duration": duration})
    return Continue(input={"duration": duration})


__all__ = [
    "evaluate_arithmetic",
    "handle_variable",
    "handle_set",
    "handle_if",
    "handle_while",
    "handle_sleep",
]
