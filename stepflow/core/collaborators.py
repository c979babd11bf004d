"""External collaborator interfaces and the registry that owns their lifecycle.

Handlers never talk to LLM providers, HTTP servers, remote tool servers, the
file system or the user directly. They look up a collaborator by name in the
``CollaboratorRegistry`` handed to the interpreter.
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Union

import requests
from pydantic import BaseModel, Field

from .error_recovery import RetryConfig, with_async_retry
from .exceptions import CollaboratorUnavailable, TransientError
from .logging import get_logger

logger = get_logger(__name__)

COMMAND_RUNNER = "command_runner"
HTTP_CLIENT = "http_client"
REMOTE_TOOLS = "remote_tools"
FILE_STORE = "file_store"
PROMPTER = "prompter"
WORKFLOW_LOADER = "workflow_loader"


class HttpResponse(BaseModel):
    """Response returned by an ``HttpClient``."""
    status: int = Field(..., description="HTTP status code")
    body: str = Field("", description="Response body as text")
    headers: Dict[str, str] = Field(default_factory=dict, description="Response headers")


class ToolResult(BaseModel):
    """Result of a remote tool call."""
    content: List[Dict[str, Any]] = Field(default_factory=list, description="Content parts")
    is_error: bool = Field(False, description="Whether the tool reported an error")

    @property
    def text(self) -> str:
        """Text parts joined by newlines."""
        return "\n".join(
            str(part.get("text", "")) for part in self.content if part.get("type") == "text"
        )


class FileInfo(BaseModel):
    """A file known to a ``FileStore``."""
    path: str = Field(..., description="Path relative to the store root")
    name: str = Field(..., description="File name without extension")
    modified: float = Field(0.0, description="Modification time as a POSIX timestamp")


class CommandRunner(ABC):
    """Runs a prompt against a language model and streams the answer."""

    @abstractmethod
    def run_command(
        self,
        prompt: str,
        model: str,
        tools: Optional[List[str]] = None
    ) -> AsyncIterator[str]:
        """Stream text chunks for ``prompt``.

        Args:
            prompt: Fully resolved prompt
            model: Model name
            tools: Optional tool names the model may use

        Returns:
            Async iterator of text chunks
        """


class HttpClient(ABC):
    """Performs HTTP requests for ``http`` nodes."""

    @abstractmethod
    async def request(
        self,
        url: str,
        method: str = "GET",
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Union[str, bytes]] = None,
        timeout: Optional[float] = None
    ) -> HttpResponse:
        """Send a request and return the response."""


class RemoteToolClient(ABC):
    """Calls tools on a remote tool server."""

    @abstractmethod
    async def call_tool(
        self,
        server_url: str,
        tool_name: str,
        args: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None
    ) -> ToolResult:
        """Invoke ``tool_name`` on ``server_url``."""


class FileStore(ABC):
    """Reads and writes notes and files."""

    @abstractmethod
    async def read_file(self, path: str) -> Union[str, bytes]:
        """Read a file.

        Raises:
            FileNotFoundError: If the file does not exist
        """

    @abstractmethod
    async def write_file(self, path: str, content: Union[str, bytes], mode: str = "overwrite") -> bool:
        """Write a file.

        ``overwrite`` replaces the content, ``append`` adds it on a new line
        after the existing content and ``create`` only writes when the file
        does not exist yet.

        Returns:
            True if the file was written
        """

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether a file exists."""

    @abstractmethod
    async def list_files(self, folder: str = "", recursive: bool = True) -> List[FileInfo]:
        """List files below ``folder``."""

    @abstractmethod
    async def list_folders(self, parent: str = "") -> List[str]:
        """List folders below ``parent``, including nested ones."""


class UserPrompter(ABC):
    """Asks the user for input during an execution."""

    @abstractmethod
    async def prompt_user(self, kind: str, params: Dict[str, Any]) -> Optional[Any]:
        """Show a prompt of the given kind.

        Kinds used by the built-in handlers are ``confirmation``, ``dialog``,
        ``file``, ``selection`` and ``open``.

        Returns:
            The user's response, or None if the user cancelled
        """


class WorkflowLoader(ABC):
    """Loads workflow definitions for sub-workflow nodes."""

    @abstractmethod
    async def load(self, path: str, name: Optional[str] = None):
        """Load and parse the workflow stored at ``path``.

        Returns:
            The parsed ``Workflow``
        """


class RequestsHttpClient(HttpClient):
    """``HttpClient`` backed by a ``requests.Session``."""

    def __init__(
        self,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        retry_attempts: int = 1
    ):
        self.timeout = timeout
        self._session = session or requests.Session()
        self._retry_config = RetryConfig(
            max_attempts=retry_attempts,
            base_delay=0.2,
            retryable_exceptions=[TransientError]
        )

    def _send(self, url, method, headers, body, timeout) -> HttpResponse:
        data = body.encode("utf-8") if isinstance(body, str) else body
        try:
            response = self._session.request(
                method,
                url,
                headers=headers or {},
                data=data,
                timeout=timeout or self.timeout
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientError(str(e), context={"url": url, "method": method}) from e
        return HttpResponse(
            status=response.status_code,
            body=response.text,
            headers=dict(response.headers)
        )

    async def request(self, url, method="GET", headers=None, body=None, timeout=None) -> HttpResponse:
        logger.debug(f"HTTP {method} {url}")
        send = with_async_retry(self._retry_config)(self._send_async)
        return await send(url, method, headers, body, timeout)

    async def _send_async(self, url, method, headers, body, timeout) -> HttpResponse:
        return await asyncio.to_thread(self._send, url, method, headers, body, timeout)

    def close(self):
        self._session.close()


class LocalFileStore(FileStore):
    """``FileStore`` rooted at a local directory."""

    def __init__(self, base_dir: Union[str, Path] = "."):
        self.base_dir = Path(base_dir).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.base_dir / path.lstrip("/")).resolve()
        if target != self.base_dir and self.base_dir not in target.parents:
            raise ValueError(f"Path escapes the store root: {path}")
        return target

    def _relative(self, target: Path) -> str:
        return target.relative_to(self.base_dir).as_posix()

    async def read_file(self, path: str) -> Union[str, bytes]:
        target = self._resolve(path)

        def read():
            if not target.is_file():
                raise FileNotFoundError(f"File not found: {path}")
            data = target.read_bytes()
            try:
                return data.decode("utf-8")
            except UnicodeDecodeError:
                return data

        return await asyncio.to_thread(read)

    async def write_file(self, path: str, content: Union[str, bytes], mode: str = "overwrite") -> bool:
        target = self._resolve(path)

        def write() -> bool:
            if mode == "create" and target.exists():
                return False
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(content, bytes):
                target.write_bytes(content)
            elif mode == "append" and target.is_file():
                existing = target.read_text(encoding="utf-8")
                target.write_text(existing + "\n" + content, encoding="utf-8")
            else:
                target.write_text(content, encoding="utf-8")
            return True

        return await asyncio.to_thread(write)

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_file)

    async def list_files(self, folder: str = "", recursive: bool = True) -> List[FileInfo]:
        root = self._resolve(folder) if folder else self.base_dir

        def scan() -> List[FileInfo]:
            if not root.is_dir():
                return []
            candidates = root.rglob("*") if recursive else root.glob("*")
            files = []
            for candidate in candidates:
                if candidate.is_file():
                    files.append(FileInfo(
                        path=self._relative(candidate),
                        name=candidate.stem,
                        modified=candidate.stat().st_mtime
                    ))
            return sorted(files, key=lambda info: info.path)

        return await asyncio.to_thread(scan)

    async def list_folders(self, parent: str = "") -> List[str]:
        root = self._resolve(parent) if parent else self.base_dir

        def scan() -> List[str]:
            if not root.is_dir():
                return []
            return sorted(self._relative(d) for d in root.rglob("*") if d.is_dir())

        folders = await asyncio.to_thread(scan)
        if parent and root.is_dir():
            folders.insert(0, self._relative(root))
        return folders


async def _dispose_instance(name: str, instance: Any) -> None:
    closer = getattr(instance, "aclose", None) or getattr(instance, "close", None)
    if closer is None:
        return
    result = closer()
    if inspect.isawaitable(result):
        await result
    logger.debug(f"Disposed collaborator '{name}'")


class CollaboratorRegistry:
    """Explicitly constructed registry of collaborators.

    Collaborators are registered either as ready instances or as factories.
    Factory-made instances are created lazily on first use, owned by the
    registry, and released by ``invalidate`` or ``dispose``. Instances
    registered directly stay owned by the caller.
    """

    def __init__(self):
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._instances: Dict[str, Any] = {}
        self._owned: Dict[str, bool] = {}

    def register(
        self,
        name: str,
        instance: Any = None,
        factory: Optional[Callable[[], Any]] = None
    ) -> None:
        """Register a collaborator instance or a factory producing one."""
        if (instance is None) == (factory is None):
            raise ValueError("Register exactly one of 'instance' or 'factory'")
        if factory is not None:
            self._factories[name] = factory
            self._instances.pop(name, None)
            self._owned.pop(name, None)
        else:
            self._factories.pop(name, None)
            self._instances[name] = instance
            self._owned[name] = False

    def has(self, name: str) -> bool:
        return name in self._instances or name in self._factories

    def create(self, name: str) -> Any:
        """Build a fresh instance from the registered factory and cache it."""
        factory = self._factories.get(name)
        if factory is None:
            raise CollaboratorUnavailable(name)
        instance = factory()
        self._instances[name] = instance
        self._owned[name] = True
        logger.debug(f"Created collaborator '{name}'")
        return instance

    def get(self, name: str, required: bool = True) -> Any:
        """Return the collaborator registered under ``name``.

        Raises:
            CollaboratorUnavailable: If ``required`` and nothing is registered
        """
        if name in self._instances:
            return self._instances[name]
        if name in self._factories:
            return self.create(name)
        if required:
            raise CollaboratorUnavailable(name)
        return None

    async def invalidate(self, name: str) -> None:
        """Dispose a factory-made instance so the next ``get`` recreates it."""
        if name in self._factories and name in self._instances:
            instance = self._instances.pop(name)
            if self._owned.pop(name, False):
                await _dispose_instance(name, instance)

    async def dispose(self) -> None:
        """Release every instance the registry created."""
        for name in list(self._instances):
            if self._owned.get(name):
                instance = self._instances.pop(name)
                self._owned.pop(name, None)
                try:
                    await _dispose_instance(name, instance)
                except Exception as e:
                    logger.error(f"Failed to dispose collaborator '{name}': {e}")

    def list_collaborators(self) -> Dict[str, bool]:
        """Map collaborator names to whether an instance is currently live."""
        names = set(self._instances) | set(self._factories)
        return {name: name in self._instances for name in sorted(names)}

    async def __aenter__(self) -> "CollaboratorRegistry":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.dispose()
