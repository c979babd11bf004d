"""Tests for the built-in node handlers."""

import base64
import json
import math

import pytest

from stepflow.config import get_testing_config
from stepflow.core.collaborators import CollaboratorRegistry, HttpResponse, ToolResult
from stepflow.core.exceptions import HandlerFailure, PromptCancelled
from stepflow.core.interpreter import WorkflowInterpreter
from stepflow.core.parser import parse
from stepflow.handlers.command import build_regeneration_prompt
from stepflow.handlers.control_flow import evaluate_arithmetic
from stepflow.handlers.http import compact_json, parse_headers
from stepflow.handlers.integration import build_input_variables, build_output_mapping
from stepflow.models.core import ExecutionContext, RegenerateInfo


class TestControlFlowHandlers:

    def test_arithmetic(self):
        assert evaluate_arithmetic("2 + 3") == 5
        assert evaluate_arithmetic("7 / 2") == 3.5
        assert evaluate_arithmetic("-4 * 2.5") == -10
        assert evaluate_arithmetic("7 % 3") == 1
        assert evaluate_arithmetic("5 / 0") == 0
        assert math.isnan(evaluate_arithmetic("5 % 0"))
        assert evaluate_arithmetic("12") == 12
        assert evaluate_arithmetic("a + b") == "a + b"

    @pytest.mark.asyncio
    async def test_variable_and_set(self, run_nodes):
        result = await run_nodes([
            {"id": "a", "type": "variable", "name": "count", "value": "10"},
            {"id": "b", "type": "variable", "name": "label", "value": "007"},
            {"id": "c", "type": "set", "name": "count", "value": "{{count}} * 3"},
        ])

        assert result.variables["count"] == 30
        assert result.variables["label"] == "007"

    @pytest.mark.asyncio
    async def test_sleep(self, run_nodes):
        result = await run_nodes([{"id": "wait", "type": "sleep", "duration": "5"}])

        messages = [log.message for log in result.context.logs]
        assert "Sleeping for 5ms" in messages
        assert "Sleep completed" in messages


class TestCommandHandler:

    @pytest.mark.asyncio
    async def test_streams_and_saves(self, run_nodes, command_runner, config):
        command_runner.responses = ["streamed answer"]

        result = await run_nodes(
            [{"id": "ask", "type": "command", "prompt": "Summarize {{doc}}", "tools": "search, fetch",
              "model": "small", "saveTo": "summary"}],
            {"doc": "the notes"},
        )

        assert result.variables["summary"] == "streamed answer"
        call = command_runner.calls[0]
        assert call == {"prompt": "Summarize the notes", "model": "small", "tools": ["search", "fetch"]}
        assert result.context.last_command_info.save_to == "summary"
        assert any(log.message == "Executing LLM: Summarize the notes" for log in result.context.logs)

    @pytest.mark.asyncio
    async def test_default_model(self, collaborators, history, command_runner):
        config = get_testing_config().model_copy(update={"default_model": "house-model"})
        interpreter = WorkflowInterpreter(collaborators=collaborators, history=history, config=config)

        await interpreter.execute(parse([{"id": "ask", "type": "command", "prompt": "hi"}]))

        assert command_runner.calls[0]["model"] == "house-model"

    @pytest.mark.asyncio
    async def test_empty_prompt_fails(self, run_nodes):
        with pytest.raises(HandlerFailure, match="Command node missing 'prompt' property"):
            await run_nodes([{"id": "ask", "type": "command", "prompt": "{{blank}}"}], {"blank": ""})

    def test_regeneration_prompt(self):
        prompt = build_regeneration_prompt(RegenerateInfo(
            command_node_id="c",
            original_prompt="Write a poem",
            previous_output="Roses",
            additional_request="Make it rhyme",
        ))

        assert prompt.startswith("Write a poem\n\n[Previous output]\nRoses\n\n[User feedback]\nMake it rhyme")


class TestHttpHandlers:

    def test_parse_headers(self):
        assert parse_headers('{"Authorization": "Bearer x"}') == {"Authorization": "Bearer x"}
        assert parse_headers("Accept: text/html\nX-Trace: 1:2") == {"Accept": "text/html", "X-Trace": "1:2"}

    def test_compact_json(self):
        assert compact_json('{ "a" : [1, 2.0] }') == '{"a":[1,2]}'
        assert compact_json("plain text") == "plain text"

    @pytest.mark.asyncio
    async def test_post_with_body(self, run_nodes, http_client):
        http_client.response = HttpResponse(status=201, body='{ "id": 7 }')

        result = await run_nodes(
            [{"id": "req", "type": "http", "url": "https://api.test/items", "method": "post",
              "body": '{"name": "{{name}}"}', "saveTo": "created", "saveStatus": "status"}],
            {"name": "widget"},
        )

        sent = http_client.requests[0]
        assert sent["method"] == "POST"
        assert sent["body"] == '{"name": "widget"}'
        assert sent["headers"]["Content-Type"] == "application/json"
        assert result.variables["created"] == '{"id":7}'
        assert result.variables["status"] == 201

    @pytest.mark.asyncio
    async def test_get_ignores_body(self, run_nodes, http_client, config):
        await run_nodes([{"id": "req", "type": "http", "url": "https://api.test", "body": "ignored"}])

        sent = http_client.requests[0]
        assert sent["body"] is None
        assert sent["timeout"] == config.http_timeout

    @pytest.mark.asyncio
    async def test_throw_on_error(self, run_nodes, http_client):
        http_client.response = HttpResponse(status=404, body="missing")

        with pytest.raises(HandlerFailure, match="HTTP 404 GET https://api.test: missing"):
            await run_nodes([{"id": "req", "type": "http", "url": "https://api.test", "throwOnError": "true"}])

    @pytest.mark.asyncio
    async def test_templated_timeout_and_throw(self, run_nodes, http_client):
        http_client.response = HttpResponse(status=503, body="busy")
        node = {"id": "req", "type": "http", "url": "https://api.test", "timeout": "{{secs}}",
                "throwOnError": "{{strict}}"}

        await run_nodes([node], {"secs": "2.5", "strict": "false"})
        assert http_client.requests[0]["timeout"] == 2.5

        with pytest.raises(HandlerFailure, match="HTTP 503"):
            await run_nodes([node], {"secs": "2.5", "strict": "true"})

        with pytest.raises(HandlerFailure, match="Invalid timeout"):
            await run_nodes([node], {"secs": "soon", "strict": "false"})

    @pytest.mark.asyncio
    async def test_error_status_is_stored_without_throw(self, run_nodes, http_client):
        http_client.response = HttpResponse(status=500, body="oops")

        result = await run_nodes([{"id": "req", "type": "http", "url": "https://api.test", "saveTo": "out"}])

        assert result.variables["out"] == "oops"

    @pytest.mark.asyncio
    async def test_client_error(self, run_nodes, http_client):
        http_client.error = ConnectionError("refused")

        with pytest.raises(HandlerFailure, match="HTTP request failed: GET https://api.test - refused"):
            await run_nodes([{"id": "req", "type": "http", "url": "https://api.test"}])

    @pytest.mark.asyncio
    async def test_json_node(self, run_nodes):
        result = await run_nodes(
            [{"id": "parse", "type": "json", "source": "reply", "saveTo": "data"},
             {"id": "pick", "type": "variable", "name": "first", "value": "{{data.items[0]}}"}],
            {"reply": '```json\n{"items": ["a", "b"]}\n```'},
        )

        assert result.variables["data"] == '{"items":["a","b"]}'
        assert result.variables["first"] == "a"

    @pytest.mark.asyncio
    async def test_json_node_invalid(self, run_nodes):
        with pytest.raises(HandlerFailure, match="Failed to parse JSON from 'reply'"):
            await run_nodes(
                [{"id": "parse", "type": "json", "source": "reply", "saveTo": "data"}],
                {"reply": "not json"},
            )


class TestNoteHandlers:
    """Test cases for note and file handlers."""

    @pytest.mark.asyncio
    async def test_note_write_modes(self, run_nodes, file_store):
        await run_nodes([
            {"id": "w", "type": "note", "path": "journal", "content": "one", "confirm": "false"},
            {"id": "a", "type": "note", "path": "journal.md", "content": "two", "mode": "append", "confirm": "false"},
            {"id": "c", "type": "note", "path": "journal", "content": "three", "mode": "create", "confirm": "false"},
        ])

        assert file_store.files["journal.md"] == "one\ntwo"

    @pytest.mark.asyncio
    async def test_note_confirmation(self, run_nodes, file_store, prompter):
        prompter.responses["confirmation"] = [True]

        await run_nodes([{"id": "w", "type": "note", "path": "ok", "content": "yes"}])

        assert prompter.calls[0] == ("confirmation", {"path": "ok.md", "content": "yes", "mode": "overwrite"})
        assert file_store.files["ok.md"] == "yes"

    @pytest.mark.asyncio
    async def test_note_read(self, run_nodes, file_store):
        file_store.files["ideas.md"] = "# Ideas"

        result = await run_nodes([{"id": "r", "type": "note-read", "path": "ideas", "saveTo": "text"}])

        assert result.variables["text"] == "# Ideas"

    @pytest.mark.asyncio
    async def test_note_read_errors(self, run_nodes):
        with pytest.raises(HandlerFailure, match="Note not found: ghost.md"):
            await run_nodes([{"id": "r", "type": "note-read", "path": "ghost", "saveTo": "text"}])

        with pytest.raises(HandlerFailure, match="Use prompt-file first"):
            await run_nodes([{"id": "r", "type": "note-read", "path": "{{where}}", "saveTo": "t"}], {"where": " "})

    @pytest.mark.asyncio
    async def test_note_search_by_name(self, run_nodes, file_store):
        file_store.files.update({
            "projects/alpha.md": "first",
            "projects/beta.md": "second",
            "archive/alpha-old.md": "old",
            "image.png": "binary",
        })

        result = await run_nodes(
            [{"id": "s", "type": "note-search", "query": "ALPHA", "saveTo": "hits"}]
        )

        hits = json.loads(result.variables["hits"])
        assert [hit["path"] for hit in hits] == ["archive/alpha-old.md", "projects/alpha.md"]

    @pytest.mark.asyncio
    async def test_note_search_content(self, run_nodes, file_store):
        file_store.files["long.md"] = "x" * 80 + "needle" + "y" * 80
        file_store.files["short.md"] = "a needle here"

        result = await run_nodes(
            [{"id": "s", "type": "note-search", "query": "needle", "searchContent": "true",
              "limit": "1", "saveTo": "hits"}]
        )

        hits = json.loads(result.variables["hits"])
        assert len(hits) == 1
        assert hits[0]["path"] == "long.md"
        assert hits[0]["matchedContent"] == "..." + "x" * 50 + "needle" + "y" * 50 + "..."

    @pytest.mark.asyncio
    async def test_note_list(self, run_nodes, file_store):
        file_store.files.update({
            "daily/a.md": "",
            "daily/b.md": "",
            "daily/old/c.md": "",
            "other.md": "",
        })

        flat = await run_nodes(
            [{"id": "l", "type": "note-list", "folder": "daily", "sortBy": "name", "sortOrder": "asc",
              "saveTo": "out"}]
        )
        deep = await run_nodes(
            [{"id": "l", "type": "note-list", "folder": "daily", "recursive": "true", "limit": "2",
              "saveTo": "out"}]
        )

        flat_out = json.loads(flat.variables["out"])
        assert [n["name"] for n in flat_out["notes"]] == ["a", "b"]
        deep_out = json.loads(deep.variables["out"])
        assert deep_out["count"] == 2
        assert deep_out["totalCount"] == 3
        assert deep_out["hasMore"] is True

    @pytest.mark.asyncio
    async def test_templated_options(self, run_nodes, file_store, prompter):
        file_store.files.update({"daily/a.md": "", "daily/b.md": "", "daily/old/c.md": ""})

        result = await run_nodes(
            [
                {"id": "l", "type": "note-list", "folder": "daily", "recursive": "{{deep}}",
                 "limit": "{{n}}", "saveTo": "out"},
                {"id": "w", "type": "note", "path": "log", "content": "{{out}}", "confirm": "{{ask}}"},
            ],
            {"deep": "true", "n": 1, "ask": "false"},
        )

        listed = json.loads(result.variables["out"])
        # limit and recursive resolve from variables at run time
        assert listed["count"] == 1
        assert listed["totalCount"] == 3
        assert prompter.calls == []
        assert file_store.files["log.md"] == result.variables["out"]

    @pytest.mark.asyncio
    async def test_unusable_templated_limit_falls_back(self, run_nodes, file_store):
        file_store.files.update({f"n{i}.md": "needle" for i in range(12)})

        result = await run_nodes(
            [{"id": "s", "type": "note-search", "query": "n", "limit": "{{n}}", "saveTo": "hits"}],
            {"n": "lots"},
        )

        assert len(json.loads(result.variables["hits"])) == 10

    @pytest.mark.asyncio
    async def test_folder_list(self, run_nodes, file_store):
        file_store.files.update({"a/b/c.md": "", "a/d.md": "", "z/e.md": ""})

        result = await run_nodes([{"id": "f", "type": "folder-list", "folder": "a", "saveTo": "out"}])

        assert json.loads(result.variables["out"]) == {"folders": ["a", "a/b"], "count": 2}

    @pytest.mark.asyncio
    async def test_file_save_binary(self, run_nodes, file_store):
        payload = json.dumps({
            "data": base64.b64encode(b"\x89PNG").decode("ascii"),
            "contentType": "binary",
            "extension": "png",
        })

        result = await run_nodes(
            [{"id": "save", "type": "file-save", "source": "file", "path": "images/logo", "savePathTo": "where"}],
            {"file": payload},
        )

        assert file_store.files["images/logo.png"] == b"\x89PNG"
        assert result.variables["where"] == "images/logo.png"

    @pytest.mark.asyncio
    async def test_file_save_invalid_data(self, run_nodes):
        with pytest.raises(HandlerFailure, match="is not valid file data JSON"):
            await run_nodes(
                [{"id": "save", "type": "file-save", "source": "file", "path": "x.txt"}],
                {"file": '{"data": "abc"}'},
            )


class TestPromptHandlers:
    """Test cases for interactive handlers."""

    @pytest.mark.asyncio
    async def test_dialog(self, run_nodes, prompter):
        prompter.responses["dialog"] = [{"button": "OK", "selected": ["red"], "input": "note"}]

        result = await run_nodes(
            [{"id": "d", "type": "dialog", "title": "Pick", "message": "Hi {{who}}", "options": "red, blue",
              "multiSelect": "true", "defaults": '{"selected": ["red"], "ignored": 1}', "saveTo": "choice"}],
            {"who": "you"},
        )

        kind, params = prompter.calls[0]
        assert kind == "dialog"
        assert params["message"] == "Hi you"
        assert params["options"] == ["red", "blue"]
        assert params["multiSelect"] is True
        assert params["defaults"] == {"selected": ["red"]}
        assert json.loads(result.variables["choice"])["selected"] == ["red"]

    @pytest.mark.asyncio
    async def test_dialog_without_prompter(self, config):
        interpreter = WorkflowInterpreter(collaborators=CollaboratorRegistry(), config=config)

        with pytest.raises(HandlerFailure, match="Dialog prompt callback not available"):
            await interpreter.execute(parse([{"id": "d", "type": "dialog"}]))

    @pytest.mark.asyncio
    async def test_prompt_file(self, run_nodes, file_store, prompter):
        file_store.files["notes/todo.md"] = "- milk"
        prompter.responses["file"] = ["notes/todo.md"]

        result = await run_nodes(
            [{"id": "p", "type": "prompt-file", "saveTo": "text", "saveFileTo": "info"}]
        )

        assert result.variables["text"] == "- milk"
        assert json.loads(result.variables["info"]) == {
            "path": "notes/todo.md", "basename": "todo.md", "name": "todo", "extension": "md"
        }

    @pytest.mark.asyncio
    async def test_prompt_file_cancelled(self, run_nodes):
        with pytest.raises(PromptCancelled, match="File selection cancelled by user"):
            await run_nodes([{"id": "p", "type": "prompt-file", "saveTo": "text"}])

    @pytest.mark.asyncio
    async def test_prompt_selection(self, run_nodes, file_store, prompter):
        file_store.files["doc.md"] = "first line\nsecond line"
        prompter.responses["selection"] = [
            {"path": "doc.md", "start": {"line": 0, "ch": 6}, "end": {"line": 1, "ch": 6}}
        ]

        result = await run_nodes(
            [{"id": "s", "type": "prompt-selection", "saveTo": "picked", "saveSelectionTo": "range"}]
        )

        assert result.variables["picked"] == "line\nsecond"
        assert json.loads(result.variables["range"]) == {
            "filePath": "doc.md", "startLine": 0, "endLine": 1, "start": 6, "end": 17
        }

    @pytest.mark.asyncio
    async def test_open(self, run_nodes, prompter):
        await run_nodes([{"id": "o", "type": "open", "path": "daily/today"}])

        assert prompter.calls == [("open", {"path": "daily/today.md"})]


class TestIntegrationHandlers:

    def test_input_variables(self):
        context = ExecutionContext({"title": "Plan", "count": 3})

        assert build_input_variables("name=title, n=count, mode=draft", context) == {
            "name": "Plan", "n": 3, "mode": "draft"
        }
        assert build_input_variables('{"a": 1, "b": [1, 2], "c": true}', context) == {
            "a": 1, "b": "[1,2]", "c": "true"
        }

    def test_output_mapping(self):
        assert build_output_mapping("result=y, other=") == {"result": "y"}
        assert build_output_mapping('{"result": "y", "bad": 1}') == {"result": "y"}

    @pytest.mark.asyncio
    async def test_mcp(self, run_nodes, remote_tools):
        result = await run_nodes(
            [{"id": "tool", "type": "mcp", "url": "https://tools.test", "tool": "lookup",
              "args": '{"q": "{{term}}"}', "headers": '{"X-Key": "k"}', "saveTo": "answer"}],
            {"term": "owl"},
        )

        assert remote_tools.calls[0] == {
            "url": "https://tools.test", "tool": "lookup", "args": {"q": "owl"}, "headers": {"X-Key": "k"}
        }
        assert result.variables["answer"] == "tool output"

    @pytest.mark.asyncio
    async def test_mcp_errors(self, run_nodes, remote_tools):
        with pytest.raises(HandlerFailure, match="Invalid JSON in MCP args"):
            await run_nodes([{"id": "t", "type": "mcp", "url": "u", "tool": "x", "args": "{oops"}])

        remote_tools.result = ToolResult(content=[{"type": "text", "text": "denied"}], is_error=True)
        with pytest.raises(HandlerFailure, match="MCP tool execution failed: denied"):
            await run_nodes([{"id": "t", "type": "mcp", "url": "u", "tool": "x"}])
