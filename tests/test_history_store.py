"""Tests for execution history stores."""

import re
from datetime import timedelta

import pytest

from stepflow.core.history import InMemoryHistoryStore, generate_record_id, truncate_binary_data
from stepflow.models.core import ExecutionStatus, StepStatus, utc_now
from stepflow.storage.database import configure_database, create_tables, reset_database_engine
from stepflow.storage.history_store import SqlHistoryStore


@pytest.fixture
def sql_store(tmp_path):
    """History store backed by a temporary SQLite database."""
    configure_database(f"sqlite:///{tmp_path / 'history.db'}")
    create_tables()
    yield SqlHistoryStore(retry_attempts=1)
    reset_database_engine()


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryHistoryStore()
    else:
        yield request.getfixturevalue("sql_store")


def make_record(store, path, minutes_ago=0, record_id=None):
    record = store.create_record(path, workflow_name="demo", record_id=record_id)
    record.start_time = utc_now() - timedelta(minutes=minutes_ago)
    return record


class TestHelpers:

    def test_record_id_format(self):
        record_id = generate_record_id()

        assert re.fullmatch(r"exec-\d+-[a-z0-9]{7}", record_id)
        assert generate_record_id() != record_id

    def test_truncate_binary_data(self):
        blob = "A" * 1500

        assert truncate_binary_data(blob) == "[Binary data: 1500 chars]"
        assert truncate_binary_data("short") == "short"
        assert truncate_binary_data({"data": "x!" * 600, "name": "f"}) == {
            "data": "[Binary data: 1200 chars]",
            "name": "f",
        }
        # long text that does not look like base64 is kept
        prose = "hello world " * 100
        assert truncate_binary_data([prose]) == [prose]


class TestHistoryStore:
    """Behaviour shared by the in-memory and SQL stores."""

    def test_round_trip(self, store):
        record = make_record(store, "flows/a.md")
        store.add_step(record, "n1", "variable", {"name": "x"}, 5)
        store.add_step(record, "n2", "http", None, None, StepStatus.ERROR, "HTTP 500")
        store.complete_record(record, ExecutionStatus.ERROR, error_node_id="n2", variables={"x": 5})
        store.save_record(record)

        loaded = store.get_record(record.id)

        assert loaded.status == ExecutionStatus.ERROR
        assert loaded.error_node_id == "n2"
        assert loaded.variables_snapshot == {"x": 5}
        assert [step.node_id for step in loaded.steps] == ["n1", "n2"]
        assert loaded.steps[0].input == {"name": "x"}
        assert loaded.steps[0].output == 5
        assert loaded.steps[1].status == StepStatus.ERROR
        assert loaded.steps[1].error == "HTTP 500"
        assert loaded.end_time is not None

    def test_save_replaces_previous_version(self, store):
        record = make_record(store, "flows/a.md")
        store.save_record(record)
        store.add_step(record, "n1", "sleep")
        store.complete_record(record, ExecutionStatus.COMPLETED)
        store.save_record(record)

        loaded = store.get_record(record.id)
        assert loaded.status == ExecutionStatus.COMPLETED
        assert len(loaded.steps) == 1
        assert len(store.list_records()) == 1

    def test_list_newest_first(self, store):
        old = make_record(store, "flows/a.md", minutes_ago=10, record_id="old")
        new = make_record(store, "flows/a.md", minutes_ago=1, record_id="new")
        other = make_record(store, "flows/b.md", minutes_ago=5, record_id="other")
        for record in (old, new, other):
            store.save_record(record)

        assert [r.id for r in store.list_records()] == ["new", "other", "old"]
        assert [r.id for r in store.list_records("flows/a.md")] == ["new", "old"]

    def test_delete(self, store):
        record = make_record(store, "flows/a.md")
        store.save_record(record)

        assert store.delete_record(record.id) is True
        assert store.delete_record(record.id) is False
        assert store.get_record(record.id) is None

    def test_delete_all(self, store):
        for index, path in enumerate(["flows/a.md", "flows/a.md", "flows/b.md"]):
            store.save_record(make_record(store, path, record_id=f"r{index}"))

        assert store.delete_all_records("flows/a.md") == 2
        assert [r.id for r in store.list_records()] == ["r2"]
        assert store.delete_all_records() == 1
        assert store.list_records() == []


class TestInterpreterHistory:

    @pytest.mark.asyncio
    async def test_execution_is_persisted_to_sql(self, sql_store, collaborators, config):
        from stepflow.core.interpreter import ExecuteOptions, WorkflowInterpreter
        from stepflow.core.parser import parse

        interpreter = WorkflowInterpreter(collaborators=collaborators, history=sql_store, config=config)
        workflow = parse([
            {"id": "a", "type": "variable", "name": "x", "value": "2"},
            {"id": "b", "type": "set", "name": "x", "value": "{{x}} + 3"},
        ])

        result = await interpreter.execute(workflow, options=ExecuteOptions(workflow_path="flows/sum.md"))

        stored = sql_store.get_record(result.record.id)
        assert stored.status == ExecutionStatus.COMPLETED
        assert stored.workflow_path == "flows/sum.md"
        assert stored.variables_snapshot == {"x": 5}
        assert [step.node_id for step in stored.steps] == ["a", "b"]
