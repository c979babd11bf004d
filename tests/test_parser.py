"""Tests for workflow parsing."""

import pytest

from stepflow.core.exceptions import MalformedDefinition
from stepflow.core.parser import (
    find_workflow_blocks,
    list_workflow_options,
    next_nodes,
    normalize_value,
    parse,
    parse_markdown,
    parse_nodes,
)
from stepflow.models.core import EdgeLabel, NodeType
from stepflow.models.node_configs import HttpConfig, NoteConfig


def edge_set(workflow):
    return {(e.from_node, e.to_node, e.label) for e in workflow.edges}


class TestParseNodes:
    """Test cases for building graphs from step records."""

    def test_sequential_fallthrough(self):
        workflow = parse_nodes([
            {"id": "a", "type": "variable", "name": "x", "value": "1"},
            {"id": "b", "type": "variable", "name": "y", "value": "2"},
            {"id": "c", "type": "variable", "name": "z", "value": "3"},
        ])

        assert workflow.start_node == "a"
        assert edge_set(workflow) == {("a", "b", None), ("b", "c", None)}
        assert workflow.next_nodes("c") == []

    def test_explicit_next_to_following_record_matches_fallthrough(self):
        implicit = parse_nodes([
            {"id": "a", "type": "variable", "name": "x"},
            {"id": "b", "type": "variable", "name": "y"},
        ])
        explicit = parse_nodes([
            {"id": "a", "type": "variable", "name": "x", "next": "b"},
            {"id": "b", "type": "variable", "name": "y"},
        ])

        assert edge_set(implicit) == edge_set(explicit)

    def test_end_sentinel_terminates(self):
        workflow = parse_nodes([
            {"id": "a", "type": "variable", "name": "x", "next": "end"},
            {"id": "b", "type": "variable", "name": "y"},
        ])

        assert workflow.next_nodes("a") == []

    def test_missing_ids_are_generated(self):
        workflow = parse_nodes([
            {"type": "variable", "name": "x"},
            {"type": "variable", "name": "y"},
        ])

        assert set(workflow.nodes) == {"node-1", "node-2"}
        assert workflow.next_nodes("node-1") == ["node-2"]

    def test_blank_ids_are_generated(self):
        workflow = parse([
            {"id": " ", "type": "variable", "name": "x"},
            {"id": "", "type": "variable", "name": "y"},
        ])

        # whitespace-only ids get the positional id like missing ones
        assert set(workflow.nodes) == {"node-1", "node-2"}
        assert workflow.start_node == "node-1"

    def test_unknown_types_are_dropped(self):
        workflow = parse_nodes([
            {"id": "a", "type": "variable", "name": "x"},
            {"id": "junk", "type": "not-a-node"},
            "not a mapping",
            {"id": "c", "type": "variable", "name": "z"},
        ])

        assert set(workflow.nodes) == {"a", "c"}
        # the dropped record breaks the implicit chain
        assert workflow.next_nodes("a") == []

    def test_branch_edges(self):
        workflow = parse_nodes([
            {"id": "check", "type": "if", "condition": "1 < 2", "trueNext": "yes", "falseNext": "no"},
            {"id": "yes", "type": "variable", "name": "r", "value": "y", "next": "end"},
            {"id": "no", "type": "variable", "name": "r", "value": "n"},
        ])

        assert edge_set(workflow) == {
            ("check", "yes", EdgeLabel.TRUE),
            ("check", "no", EdgeLabel.FALSE),
        }
        assert workflow.next_nodes("check", True) == ["yes"]
        assert workflow.next_nodes("check", False) == ["no"]
        assert next_nodes(workflow, "yes") == []

    def test_branch_false_falls_through(self):
        workflow = parse_nodes([
            {"id": "check", "type": "if", "condition": "1 < 2", "trueNext": "end"},
            {"id": "after", "type": "variable", "name": "r"},
        ])

        assert workflow.next_nodes("check", True) == []
        assert workflow.next_nodes("check", False) == ["after"]

    def test_branch_requires_true_next(self):
        with pytest.raises(MalformedDefinition, match="missing trueNext"):
            parse_nodes([{"id": "check", "type": "if", "condition": "1 < 2"}])

    def test_dangling_reference_fails(self):
        with pytest.raises(MalformedDefinition, match="Invalid edge reference: a -> ghost"):
            parse_nodes([{"id": "a", "type": "variable", "name": "x", "next": "ghost"}])

    def test_duplicate_ids_fail(self):
        with pytest.raises(MalformedDefinition, match="Duplicate node id: a"):
            parse_nodes([
                {"id": "a", "type": "variable", "name": "x"},
                {"id": "a", "type": "variable", "name": "y"},
            ])

    def test_back_reference_only_to_while(self):
        records = [
            {"id": "first", "type": "variable", "name": "x"},
            {"id": "second", "type": "variable", "name": "y", "next": "first"},
        ]
        with pytest.raises(MalformedDefinition, match="Only while nodes can be loop targets"):
            parse_nodes(records)

        workflow = parse_nodes(records, allow_back_edges=True)
        assert workflow.next_nodes("second") == ["first"]

    def test_loop_back_to_while_is_allowed(self):
        workflow = parse_nodes([
            {"id": "loop", "type": "while", "condition": "{{n}} > 0", "trueNext": "dec", "falseNext": "end"},
            {"id": "dec", "type": "set", "name": "n", "value": "{{n}} - 1", "next": "loop"},
        ])

        assert workflow.next_nodes("dec") == ["loop"]

    def test_empty_workflow_fails(self):
        with pytest.raises(MalformedDefinition, match="Workflow has no nodes"):
            parse_nodes([{"id": "x", "type": "unknown"}])

    def test_properties_are_strings(self):
        workflow = parse_nodes([
            {"id": "req", "type": "http", "url": "http://x", "throwOnError": True, "timeout": 5,
             "headers": {"X-Key": "1"}},
        ])
        node = workflow.nodes["req"]

        assert node.properties["throwOnError"] == "true"
        assert node.properties["timeout"] == "5"
        assert node.properties["headers"] == '{"X-Key":"1"}'
        assert isinstance(node.config, HttpConfig)
        assert node.config.throw_on_error == "true"
        assert node.config.timeout == "5"
        assert node.config.method == "GET"

    def test_config_validation_errors(self):
        with pytest.raises(MalformedDefinition, match="Variable node missing 'name' property"):
            parse_nodes([{"id": "v", "type": "variable", "value": "1"}])

        with pytest.raises(MalformedDefinition, match="Invalid condition format"):
            parse_nodes([{"id": "c", "type": "if", "condition": "nonsense", "trueNext": "end"}])

        with pytest.raises(MalformedDefinition, match="mode"):
            parse_nodes([{"id": "n", "type": "note", "path": "x", "mode": "replace"}])

        with pytest.raises(MalformedDefinition, match="Unsupported HTTP method"):
            parse_nodes([{"id": "h", "type": "http", "url": "http://x", "method": "FETCH"}])

        with pytest.raises(MalformedDefinition, match="expected a positive integer"):
            parse_nodes([{"id": "s", "type": "note-search", "query": "q", "limit": "0", "saveTo": "x"}])

        with pytest.raises(MalformedDefinition, match="expected true or false"):
            parse_nodes([{"id": "n", "type": "note", "path": "x", "confirm": "maybe"}])

    def test_templated_options_pass_parsing(self):
        workflow = parse_nodes([
            {"id": "s", "type": "note-search", "query": "q", "limit": "{{n}}", "saveTo": "x"},
            {"id": "h", "type": "http", "url": "http://x", "timeout": "{{secs}}", "throwOnError": "{{strict}}"},
        ])

        # values holding templates are left for run time
        assert workflow.nodes["s"].config.limit == "{{n}}"
        assert workflow.nodes["h"].config.timeout == "{{secs}}"

    def test_note_defaults(self):
        workflow = parse_nodes([{"id": "n", "type": "note", "path": "out"}])
        config = workflow.nodes["n"].config

        assert isinstance(config, NoteConfig)
        assert config.mode == "overwrite"
        assert config.confirm is None


class TestNormalizeValue:

    def test_scalars(self):
        assert normalize_value(None) == ""
        assert normalize_value(True) == "true"
        assert normalize_value(3) == "3"
        assert normalize_value(2.5) == "2.5"
        assert normalize_value(4.0) == "4"
        assert normalize_value("text") == "text"

    def test_containers_become_json(self):
        assert normalize_value({"a": [1, 2]}) == '{"a":[1,2]}'


MARKDOWN = """# Notes

```workflow
name: first
nodes:
  - id: a
    type: variable
    name: x
    value: 1
```

Some text.

```workflow
name: second
nodes:
  - id: b
    type: variable
    name: y
    value: 2
```
"""


class TestMarkdown:
    """Test cases for workflow blocks embedded in markdown."""

    def test_find_blocks(self):
        blocks = find_workflow_blocks(MARKDOWN)

        assert [b.name for b in blocks] == ["first", "second"]
        assert blocks[0].raw.startswith("```workflow")

    def test_options(self):
        options = list_workflow_options(MARKDOWN)

        assert [o.label for o in options] == ["first", "second"]
        assert options[0].start_line == 2
        assert options[1].index == 1

    def test_select_by_name_and_index(self):
        assert set(parse_markdown(MARKDOWN, name="second").nodes) == {"b"}
        assert set(parse_markdown(MARKDOWN, index=0).nodes) == {"a"}

    def test_ambiguous_selection_fails(self):
        with pytest.raises(MalformedDefinition, match="Multiple workflows found"):
            parse_markdown(MARKDOWN)

    def test_unknown_name_fails(self):
        with pytest.raises(MalformedDefinition, match="Workflow 'third' not found"):
            parse_markdown(MARKDOWN, name="third")

    def test_no_block_fails(self):
        with pytest.raises(MalformedDefinition, match="No workflow code block found"):
            parse_markdown("# nothing here")

    def test_nested_workflow_key(self):
        content = "```workflow\nworkflow:\n  name: inner\n  nodes:\n    - id: a\n      type: variable\n      name: x\n```\n"
        workflow = parse(content)

        assert workflow.name == "inner"
        assert workflow.start_node == "a"


class TestParseDispatch:

    def test_yaml_document(self):
        workflow = parse("nodes:\n  - id: a\n    type: variable\n    name: x\n")

        assert workflow.nodes["a"].type == NodeType.VARIABLE

    def test_mapping(self):
        workflow = parse({"name": "m", "nodes": [{"id": "a", "type": "sleep"}]})

        assert workflow.name == "m"

    def test_invalid_yaml(self):
        with pytest.raises(MalformedDefinition, match="Invalid workflow YAML"):
            parse("nodes: [unclosed")

    def test_invalid_block(self):
        with pytest.raises(MalformedDefinition, match="Invalid workflow block"):
            parse("just: a mapping")
