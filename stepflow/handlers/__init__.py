"""Built-in node handlers."""

from ..models.core import NodeType
from .command import handle_command
from .control_flow import handle_if, handle_set, handle_sleep, handle_variable, handle_while
from .http import handle_http, handle_json
from .integration import handle_mcp, handle_workflow
from .notes import (
    handle_file_save,
    handle_folder_list,
    handle_note,
    handle_note_list,
    handle_note_read,
    handle_note_search,
)
from .prompts import handle_dialog, handle_open, handle_prompt_file, handle_prompt_selection

BUILTIN_HANDLERS = {
    NodeType.VARIABLE: (handle_variable, "Declare a variable"),
    NodeType.SET: (handle_set, "Assign a variable, with simple arithmetic"),
    NodeType.IF: (handle_if, "Branch on a condition"),
    NodeType.WHILE: (handle_while, "Loop while a condition holds"),
    NodeType.SLEEP: (handle_sleep, "Pause for a number of milliseconds"),
    NodeType.COMMAND: (handle_command, "Run a prompt through the command runner"),
    NodeType.HTTP: (handle_http, "Send an HTTP request"),
    NodeType.JSON: (handle_json, "Parse JSON text from a variable"),
    NodeType.NOTE: (handle_note, "Write a note"),
    NodeType.NOTE_READ: (handle_note_read, "Read a note"),
    NodeType.NOTE_SEARCH: (handle_note_search, "Search notes by name or content"),
    NodeType.NOTE_LIST: (handle_note_list, "List notes in a folder"),
    NodeType.FOLDER_LIST: (handle_folder_list, "List folders"),
    NodeType.OPEN: (handle_open, "Open a note"),
    NodeType.DIALOG: (handle_dialog, "Show a dialog"),
    NodeType.PROMPT_FILE: (handle_prompt_file, "Ask the user to pick a note"),
    NodeType.PROMPT_SELECTION: (handle_prompt_selection, "Ask the user to select text"),
    NodeType.FILE_SAVE: (handle_file_save, "Save file data to a path"),
    NodeType.WORKFLOW: (handle_workflow, "Run a sub-workflow"),
    NodeType.MCP: (handle_mcp, "Call a remote tool"),
}


def register_builtin_handlers(registry, replace: bool = False):
    """Register every built-in handler on ``registry``."""
    for node_type, (handler, description) in BUILTIN_HANDLERS.items():
        registry.register(node_type, handler, description=description, replace=replace)
    return registry


__all__ = ["BUILTIN_HANDLERS", "register_builtin_handlers"]
