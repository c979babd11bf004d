"""Interactive handlers: dialog, prompt-file, prompt-selection and open."""

import json
from typing import Any, Dict

from ..core.collaborators import FILE_STORE, PROMPTER
from ..core.logging import get_logger
from ..core.results import Continue
from ..core.templating import to_json_text
from .utils import ask_user, failure, missing_property, note_path, split_name

logger = get_logger(__name__)


def _parse_defaults(text: str) -> Dict[str, Any]:
    try:
        parsed = json.loads(text)
    except ValueError:
        logger.debug("Ignoring invalid dialog defaults")
        return {}
    if not isinstance(parsed, dict):
        return {}
    defaults = {}
    if "input" in parsed:
        defaults["input"] = parsed["input"]
    if isinstance(parsed.get("selected"), list):
        defaults["selected"] = parsed["selected"]
    return defaults


async def handle_dialog(node, context, runtime):
    """Show a dialog and store the user's response as JSON."""
    config = node.config
    resolve = runtime.resolve
    options_text = resolve(config.options, context)
    params = {
        "title": resolve(config.title or "Dialog", context),
        "message": resolve(config.message, context),
        "options": [option.strip() for option in options_text.split(",") if option.strip()],
        "multiSelect": config.multi_select,
        "button1": resolve(config.button1 or "OK", context),
        "button2": resolve(config.button2, context) if config.button2 else None,
        "markdown": config.markdown,
        "inputTitle": resolve(config.input_title, context) if config.input_title else None,
        "multiline": config.multiline,
        "defaults": _parse_defaults(resolve(config.defaults, context)) if config.defaults else None,
    }

    result = await ask_user(
        runtime, node, "dialog", params,
        unavailable="Dialog prompt callback not available",
        cancelled="Dialog cancelled by user"
    )

    if config.save_to:
        context.set(config.save_to, to_json_text(result))
    return Continue(input={"title": params["title"]}, output=result)


def file_info(path: str) -> Dict[str, str]:
    """Describe a picked file as ``{path, basename, name, extension}``."""
    basename = path.rsplit("/", 1)[-1]
    name, extension = split_name(basename)
    return {"path": path, "basename": basename, "name": name, "extension": extension}


async def handle_prompt_file(node, context, runtime):
    """Let the user pick a note, then read it into ``saveTo``."""
    config = node.config
    default = runtime.resolve(config.default, context)

    picked = await ask_user(
        runtime, node, "file", {"default": default},
        unavailable="File prompt callback not available",
        cancelled="File selection cancelled by user"
    )
    path = str(picked)
    target = note_path(path)

    store = runtime.collaborator(FILE_STORE)
    if not await store.exists(target):
        raise failure(node, f"File not found: {target}")
    content = await store.read_file(target)
    if isinstance(content, bytes):
        raise failure(node, f"File is not a text note: {target}")

    context.set(config.save_to, content)
    if config.save_file_to:
        context.set(config.save_file_to, to_json_text(file_info(path)))
    return Continue(input={"default": default}, output={"path": target, "length": len(content)})


def _offset(lines, position: Dict[str, Any]) -> int:
    line = int(position.get("line", 0))
    return sum(len(text) + 1 for text in lines[:line]) + int(position.get("ch", 0))


async def handle_prompt_selection(node, context, runtime):
    """
    Let the user select text in a note.

    The prompter answers ``{path, start: {line, ch}, end: {line, ch}}``; the
    selected text is cut out of the note's content.
    """
    config = node.config
    result = await ask_user(
        runtime, node, "selection", {},
        unavailable="Selection prompt callback not available",
        cancelled="Selection cancelled by user"
    )
    if not isinstance(result, dict) or "path" not in result:
        raise failure(node, "Invalid selection result")

    path = result["path"]
    store = runtime.collaborator(FILE_STORE)
    if not await store.exists(path):
        raise failure(node, f"File not found: {path}")
    content = await store.read_file(path)
    if isinstance(content, bytes):
        raise failure(node, f"File is not a text note: {path}")

    lines = content.split("\n")
    start_pos = result.get("start") or {}
    end_pos = result.get("end") or {}
    start = _offset(lines, start_pos)
    end = _offset(lines, end_pos)
    selected = content[start:end]

    context.set(config.save_to, selected)
    if config.save_selection_to:
        context.set(config.save_selection_to, to_json_text({
            "filePath": path,
            "startLine": int(start_pos.get("line", 0)),
            "endLine": int(end_pos.get("line", 0)),
            "start": start,
            "end": end,
        }))
    return Continue(input={"path": path}, output={"length": len(selected)})


async def handle_open(node, context, runtime):
    """Ask the prompter to open a note; a no-op without a prompter."""
    path = runtime.resolve(node.config.path, context)
    if not path:
        raise missing_property(node, "path")
    target = note_path(path)

    prompter = runtime.collaborator(PROMPTER, required=False)
    if prompter is not None:
        await prompter.prompt_user("open", {"path": target})
    return Continue(input={"path": target})
