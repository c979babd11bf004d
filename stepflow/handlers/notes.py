"""Note and file handlers backed by the file store."""

import base64
import binascii
import json
from typing import Any, Dict, List

from ..core.collaborators import FILE_STORE, PROMPTER, FileInfo
from ..core.exceptions import PromptCancelled
from ..core.logging import get_logger
from ..core.results import Continue, RequestRegeneration
from ..core.templating import format_value, to_json_text
from ..models.core import RegenerateInfo
from .utils import failure, missing_property, note_path, resolve_count, resolve_flag

logger = get_logger(__name__)

CONTEXT_CHARS = 50


def _is_note(info: FileInfo) -> bool:
    return info.path.endswith(".md")


def _confirmed(response: Any) -> bool:
    if isinstance(response, dict):
        return bool(response.get("confirmed"))
    return bool(response)


def _additional_request(response: Any) -> str:
    if isinstance(response, dict):
        return str(response.get("additionalRequest") or response.get("additional_request") or "")
    return ""


async def handle_note(node, context, runtime):
    """
    Write a note.

    When ``confirm`` is on and a prompter is available, the user is asked to
    confirm the write first. Declining with feedback after a command node has
    saved output requests regeneration of that command.
    """
    config = node.config
    path = runtime.resolve(config.path, context)
    if not path:
        raise missing_property(node, "path")
    content = runtime.resolve(config.content, context)
    mode = config.mode
    target = note_path(path)

    prompter = runtime.collaborator(PROMPTER, required=False)
    if resolve_flag(runtime, config.confirm, context, default=True) and prompter is not None:
        response = await prompter.prompt_user(
            "confirmation", {"path": target, "content": content, "mode": mode}
        )
        if not _confirmed(response):
            feedback = _additional_request(response)
            last = context.last_command_info
            if feedback and last is not None:
                previous = context.get(last.save_to)
                return RequestRegeneration(info=RegenerateInfo(
                    command_node_id=last.node_id,
                    original_prompt=last.original_prompt,
                    previous_output="" if previous is None else format_value(previous),
                    additional_request=feedback,
                ))
            raise PromptCancelled("Note write cancelled by user", context={"node_id": node.id})

    store = runtime.collaborator(FILE_STORE)
    written = await store.write_file(target, content, mode)
    if not written:
        logger.debug(f"Note {target} already exists, skipping create")
        return Continue(message=f"Note already exists: {target}", input={"path": target, "mode": mode})

    return Continue(
        message=f"Note written: {target}",
        input={"path": target, "mode": mode},
        output={"length": len(content)}
    )


async def handle_note_read(node, context, runtime):
    config = node.config
    if not config.save_to:
        raise missing_property(node, "saveTo")
    path = runtime.resolve(config.path, context)
    if not path.strip():
        raise missing_property(node, "path", "Use prompt-file first to get the file path.")

    target = note_path(path)
    store = runtime.collaborator(FILE_STORE)
    if not await store.exists(target):
        raise failure(node, f"Note not found: {target}")

    content = await store.read_file(target)
    if isinstance(content, bytes):
        raise failure(node, f"Path is not a text note: {target}")

    context.set(config.save_to, content)
    return Continue(input={"path": target}, output={"length": len(content)})


async def handle_note_search(node, context, runtime):
    """Search notes by name/path, or by content with surrounding context."""
    config = node.config
    query = runtime.resolve(config.query, context)
    if not query:
        raise missing_property(node, "query")
    search_content = resolve_flag(runtime, config.search_content, context)
    limit = resolve_count(runtime, config.limit, context, default=10)

    store = runtime.collaborator(FILE_STORE)
    files = [info for info in await store.list_files("", recursive=True) if _is_note(info)]
    needle = query.lower()
    results: List[Dict[str, Any]] = []

    for info in files:
        if len(results) >= limit:
            break

        if search_content:
            content = await store.read_file(info.path)
            if isinstance(content, bytes):
                continue
            index = content.lower().find(needle)
            if index < 0:
                continue
            start = max(0, index - CONTEXT_CHARS)
            end = min(len(content), index + len(query) + CONTEXT_CHARS)
            snippet = content[start:end]
            if start > 0:
                snippet = "..." + snippet
            if end < len(content):
                snippet = snippet + "..."
            results.append({"name": info.name, "path": info.path, "matchedContent": snippet})
        elif needle in info.name.lower() or needle in info.path.lower():
            results.append({"name": info.name, "path": info.path})

    context.set(config.save_to, to_json_text(results))
    return Continue(input={"query": query}, output={"count": len(results)})


def _in_folder(path: str, folder: str, recursive: bool) -> bool:
    prefix = folder if folder.endswith("/") else f"{folder}/"
    if recursive:
        return path.startswith(prefix) or path == f"{folder.rstrip('/')}.md"
    parent = path[:path.rfind("/") + 1]
    return parent == prefix


async def handle_note_list(node, context, runtime):
    """List notes in a folder, optionally sorted, as ``{notes, count, totalCount, hasMore}``."""
    config = node.config
    folder = runtime.resolve(config.folder, context)
    recursive = resolve_flag(runtime, config.recursive, context)
    limit = resolve_count(runtime, config.limit, context, default=50)

    store = runtime.collaborator(FILE_STORE)
    files = [info for info in await store.list_files("", recursive=True) if _is_note(info)]
    if folder:
        files = [info for info in files if _in_folder(info.path, folder, recursive)]

    descending = config.sort_order == "desc"
    if config.sort_by == "modified":
        files.sort(key=lambda info: info.modified, reverse=descending)
    elif config.sort_by == "name":
        files.sort(key=lambda info: info.name.lower(), reverse=descending)

    total = len(files)
    notes = [
        {"name": info.name, "path": info.path, "modified": int(info.modified * 1000)}
        for info in files[:limit]
    ]
    result = {
        "notes": notes,
        "count": len(notes),
        "totalCount": total,
        "hasMore": total > limit,
    }
    context.set(config.save_to, to_json_text(result))
    return Continue(input={"folder": folder}, output={"count": len(notes), "totalCount": total})


async def handle_folder_list(node, context, runtime):
    config = node.config
    parent = runtime.resolve(config.folder, context).rstrip("/")

    store = runtime.collaborator(FILE_STORE)
    folders = [
        folder for folder in await store.list_folders("")
        if folder and (not parent or folder == parent or folder.startswith(f"{parent}/"))
    ]
    folders = sorted(set(folders))

    context.set(config.save_to, to_json_text({"folders": folders, "count": len(folders)}))
    return Continue(input={"folder": parent}, output={"count": len(folders)})


async def handle_file_save(node, context, runtime):
    """Write file data (``{data, contentType, extension, ...}`` JSON) to a path."""
    config = node.config
    raw = context.get(config.source)
    if not raw or not isinstance(raw, str):
        raise failure(node, f"Source variable '{config.source}' not found or not a string")

    try:
        file_data = json.loads(raw)
    except ValueError:
        file_data = None
    if not isinstance(file_data, dict) or not file_data.get("data") or not file_data.get("contentType"):
        raise failure(node, f"Source variable '{config.source}' is not valid file data JSON")

    path = runtime.resolve(config.path, context)
    if not path:
        raise missing_property(node, "path")
    extension = file_data.get("extension")
    if "." not in path and extension:
        path = f"{path}.{extension}"

    if file_data["contentType"] == "binary":
        try:
            content = base64.b64decode(file_data["data"], validate=True)
        except (binascii.Error, ValueError) as e:
            raise failure(node, f"Invalid base64 data in '{config.source}': {e}")
    else:
        content = str(file_data["data"])

    store = runtime.collaborator(FILE_STORE)
    await store.write_file(path, content, "overwrite")

    if config.save_path_to:
        context.set(config.save_path_to, path)
    return Continue(
        message=f"File saved: {path}",
        input={"source": config.source, "path": path},
        output={"contentType": file_data["contentType"], "size": len(content)}
    )
