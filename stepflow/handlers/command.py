"""Command node handler: runs a prompt through the command runner."""

import inspect
from typing import List, Optional

from ..core.collaborators import COMMAND_RUNNER
from ..core.logging import get_logger
from ..core.results import Continue
from ..models.core import LastCommandInfo, RegenerateInfo
from .utils import missing_property

logger = get_logger(__name__)

PREVIEW_LENGTH = 50


def build_regeneration_prompt(info: RegenerateInfo) -> str:
    """Prompt asking the model to revise its previous output."""
    return (
        f"{info.original_prompt}\n\n"
        f"[Previous output]\n{info.previous_output}\n\n"
        f"[User feedback]\n{info.additional_request}\n\n"
        "Please revise the output based on the user's feedback above."
    )


def _tool_names(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    names = [name.strip() for name in raw.split(",") if name.strip()]
    return names or None


async def _collect(stream) -> str:
    if inspect.isawaitable(stream):
        stream = await stream
    if isinstance(stream, str):
        return stream

    chunks = []
    async for chunk in stream:
        chunks.append(str(chunk))
    return "".join(chunks)


async def handle_command(node, context, runtime):
    """
    Execute a command node.

    When ``context.regenerate_info`` targets this node, the prompt is replaced
    by a revision prompt carrying the previous output and the user's feedback,
    and the regeneration info is cleared.

    Args:
        node: Command node
        context: Execution context
        runtime: Interpreter runtime

    Returns:
        Continue result with the prompt preview and output length
    """
    config = node.config
    prompt = runtime.resolve(config.prompt, context)
    if not prompt:
        raise missing_property(node, "prompt")
    original_prompt = prompt

    info = context.regenerate_info
    if info is not None and info.command_node_id == node.id:
        prompt = build_regeneration_prompt(info)
        context.regenerate_info = None
        logger.debug(f"Regenerating output of command node {node.id}")

    model = config.model or runtime.default_model

    runner = runtime.collaborator(COMMAND_RUNNER)
    runtime.log(node, f"Executing LLM: {prompt[:PREVIEW_LENGTH]}", input={"model": model})

    response = await _collect(runner.run_command(prompt, model, _tool_names(config.tools)))

    if config.save_to:
        context.set(config.save_to, response)
        context.last_command_info = LastCommandInfo(
            node_id=node.id,
            original_prompt=original_prompt,
            save_to=config.save_to
        )

    return Continue(
        input={"prompt": prompt[:200], "model": model},
        output=response[:200] if len(response) > 200 else response
    )
