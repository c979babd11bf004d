"""Workflow loading for sub-workflow nodes."""

from typing import Optional

from .collaborators import FileStore, WorkflowLoader
from .exceptions import HandlerFailure
from .logging import get_logger
from .parser import parse

logger = get_logger(__name__)


class FileStoreWorkflowLoader(WorkflowLoader):
    """Loads workflow definitions through a ``FileStore``.

    ``path`` is tried as given, then with ``.md`` appended.
    """

    def __init__(self, file_store: FileStore, allow_back_edges: bool = False):
        self.file_store = file_store
        self.allow_back_edges = allow_back_edges

    async def load(self, path: str, name: Optional[str] = None):
        candidates = [path] if path.endswith(".md") else [path, f"{path}.md"]

        for candidate in candidates:
            if await self.file_store.exists(candidate):
                content = await self.file_store.read_file(candidate)
                if isinstance(content, bytes):
                    raise HandlerFailure(f"Invalid workflow file: {candidate}")
                logger.debug(f"Loading workflow from {candidate}")
                return parse(content, name=name, allow_back_edges=self.allow_back_edges)

        raise HandlerFailure(f"Workflow file not found: {path}")
