"""Pytest configuration and fixtures."""

import pytest
from typing import Any, Dict, List, Optional

from stepflow.config import get_testing_config
from stepflow.core.collaborators import (
    COMMAND_RUNNER,
    FILE_STORE,
    HTTP_CLIENT,
    PROMPTER,
    REMOTE_TOOLS,
    WORKFLOW_LOADER,
    CollaboratorRegistry,
    CommandRunner,
    FileInfo,
    FileStore,
    HttpClient,
    HttpResponse,
    RemoteToolClient,
    ToolResult,
    UserPrompter,
)
from stepflow.core.history import InMemoryHistoryStore
from stepflow.core.interpreter import ExecuteOptions, WorkflowInterpreter
from stepflow.core.loader import FileStoreWorkflowLoader
from stepflow.core.parser import parse


class FakeCommandRunner(CommandRunner):
    """Streams canned responses, one per call; repeats the last one when exhausted."""

    def __init__(self, responses: Optional[List[str]] = None):
        self.responses = list(responses or ["output"])
        self.calls: List[Dict[str, Any]] = []

    def run_command(self, prompt, model, tools=None):
        index = min(len(self.calls), len(self.responses) - 1)
        self.calls.append({"prompt": prompt, "model": model, "tools": tools})
        return self._stream(self.responses[index])

    async def _stream(self, text):
        half = len(text) // 2
        for chunk in (text[:half], text[half:]):
            if chunk:
                yield chunk


class FakePrompter(UserPrompter):
    """Answers prompts from a per-kind queue of responses."""

    def __init__(self, responses: Optional[Dict[str, List[Any]]] = None):
        self.responses = {kind: list(items) for kind, items in (responses or {}).items()}
        self.calls: List[tuple] = []

    async def prompt_user(self, kind, params):
        self.calls.append((kind, params))
        queue = self.responses.get(kind)
        if not queue:
            return None
        return queue.pop(0) if len(queue) > 1 else queue[0]


class FakeHttpClient(HttpClient):
    def __init__(self, response: Optional[HttpResponse] = None, error: Optional[Exception] = None):
        self.response = response or HttpResponse(status=200, body="{}")
        self.error = error
        self.requests: List[Dict[str, Any]] = []

    async def request(self, url, method="GET", headers=None, body=None, timeout=None):
        self.requests.append({
            "url": url, "method": method, "headers": headers, "body": body, "timeout": timeout
        })
        if self.error is not None:
            raise self.error
        return self.response


class FakeRemoteTools(RemoteToolClient):
    def __init__(self, result: Optional[ToolResult] = None):
        self.result = result or ToolResult(content=[{"type": "text", "text": "tool output"}])
        self.calls: List[Dict[str, Any]] = []

    async def call_tool(self, server_url, tool_name, args, headers=None):
        self.calls.append({"url": server_url, "tool": tool_name, "args": args, "headers": headers})
        return self.result


class MemoryFileStore(FileStore):
    """File store keeping files in a dictionary keyed by path."""

    def __init__(self, files: Optional[Dict[str, Any]] = None):
        self.files: Dict[str, Any] = dict(files or {})
        self.modified: Dict[str, float] = {path: float(i) for i, path in enumerate(self.files)}

    async def read_file(self, path):
        if path not in self.files:
            raise FileNotFoundError(f"File not found: {path}")
        return self.files[path]

    async def write_file(self, path, content, mode="overwrite"):
        if mode == "create" and path in self.files:
            return False
        if mode == "append" and path in self.files:
            content = f"{self.files[path]}\n{content}"
        self.files[path] = content
        self.modified[path] = float(len(self.modified))
        return True

    async def exists(self, path):
        return path in self.files

    async def list_files(self, folder="", recursive=True):
        infos = []
        for path in sorted(self.files):
            basename = path.rsplit("/", 1)[-1]
            infos.append(FileInfo(
                path=path,
                name=basename.rsplit(".", 1)[0],
                modified=self.modified.get(path, 0.0)
            ))
        return infos

    async def list_folders(self, parent=""):
        folders = set()
        for path in self.files:
            parts = path.split("/")[:-1]
            for depth in range(1, len(parts) + 1):
                folders.add("/".join(parts[:depth]))
        return sorted(folders)


@pytest.fixture
def config():
    """Testing configuration with history enabled."""
    return get_testing_config()


@pytest.fixture
def history():
    return InMemoryHistoryStore()


@pytest.fixture
def file_store():
    return MemoryFileStore()


@pytest.fixture
def command_runner():
    return FakeCommandRunner()


@pytest.fixture
def prompter():
    return FakePrompter()


@pytest.fixture
def http_client():
    return FakeHttpClient()


@pytest.fixture
def remote_tools():
    return FakeRemoteTools()


@pytest.fixture
def collaborators(file_store, command_runner, prompter, http_client, remote_tools):
    """Registry holding every fake collaborator."""
    registry = CollaboratorRegistry()
    registry.register(FILE_STORE, instance=file_store)
    registry.register(WORKFLOW_LOADER, instance=FileStoreWorkflowLoader(file_store))
    registry.register(COMMAND_RUNNER, instance=command_runner)
    registry.register(PROMPTER, instance=prompter)
    registry.register(HTTP_CLIENT, instance=http_client)
    registry.register(REMOTE_TOOLS, instance=remote_tools)
    return registry


@pytest.fixture
def interpreter(collaborators, history, config):
    return WorkflowInterpreter(collaborators=collaborators, history=history, config=config)


@pytest.fixture
def run_nodes(interpreter):
    """Parse a node list and execute it, returning the execution result."""
    async def run(records, variables=None, **options):
        workflow = parse(records, allow_back_edges=options.pop("allow_back_edges", False))
        return await interpreter.execute(
            workflow,
            variables,
            on_log=options.pop("on_log", None),
            options=ExecuteOptions(**options) if options else None
        )
    return run
