"""Execution history stores."""

import random
import re
import string
import time
from abc import ABC, abstractmethod
from copy import deepcopy
from typing import Any, Dict, List, Optional

from ..models.core import (
    ExecutionRecord,
    ExecutionStatus,
    ExecutionStep,
    StepStatus,
    VariableValue,
    utc_now,
)
from .logging import get_logger

logger = get_logger(__name__)

BINARY_THRESHOLD = 1000
BASE64_PREFIX_PATTERN = re.compile(r"^[A-Za-z0-9+/=]+$")


def generate_record_id() -> str:
    """Create a record id of the form ``exec-<millis>-<random>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=7))
    return f"exec-{int(time.time() * 1000)}-{suffix}"


def truncate_binary_data(data: Any) -> Any:
    """Replace long base64-looking strings with a short placeholder."""
    if data is None:
        return None
    if isinstance(data, str):
        if len(data) > BINARY_THRESHOLD and BASE64_PREFIX_PATTERN.match(data[:100]):
            return f"[Binary data: {len(data)} chars]"
        return data
    if isinstance(data, list):
        return [truncate_binary_data(item) for item in data]
    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if key == "data" and isinstance(value, str) and len(value) > BINARY_THRESHOLD:
                result[key] = f"[Binary data: {len(value)} chars]"
            else:
                result[key] = truncate_binary_data(value)
        return result
    return data


class HistoryStore(ABC):
    """Interface used by the interpreter to persist execution records.

    ``create_record``, ``add_step`` and ``complete_record`` work on the
    in-memory record; ``save_record`` persists it.
    """

    def create_record(
        self,
        workflow_path: str,
        workflow_name: Optional[str] = None,
        record_id: Optional[str] = None
    ) -> ExecutionRecord:
        """Start a new record in ``running`` status."""
        record = ExecutionRecord(
            id=record_id or generate_record_id(),
            workflow_path=workflow_path,
            workflow_name=workflow_name,
            start_time=utc_now(),
            status=ExecutionStatus.RUNNING,
        )
        logger.debug(f"Created execution record {record.id} for {workflow_path}")
        return record

    def add_step(
        self,
        record: ExecutionRecord,
        node_id: str,
        node_type: str,
        input: Optional[Dict[str, Any]] = None,
        output: Any = None,
        status: StepStatus = StepStatus.SUCCESS,
        error: Optional[str] = None
    ) -> ExecutionStep:
        """Append a step, truncating binary payloads."""
        step = ExecutionStep(
            node_id=node_id,
            node_type=node_type,
            timestamp=utc_now(),
            input=truncate_binary_data(input),
            output=truncate_binary_data(output),
            status=status,
            error=error,
        )
        record.steps.append(step)
        return step

    def complete_record(
        self,
        record: ExecutionRecord,
        status: ExecutionStatus,
        error_node_id: Optional[str] = None,
        variables: Optional[Dict[str, VariableValue]] = None
    ) -> ExecutionRecord:
        """Finalize a record with its end time and status."""
        record.end_time = utc_now()
        record.status = status
        if error_node_id:
            record.error_node_id = error_node_id
        if variables is not None:
            record.variables_snapshot = dict(variables)
        return record

    @abstractmethod
    def save_record(self, record: ExecutionRecord) -> None:
        """Persist a record, replacing any previous version."""

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[ExecutionRecord]:
        """Load a record by id."""

    @abstractmethod
    def list_records(self, workflow_path: Optional[str] = None) -> List[ExecutionRecord]:
        """List records, newest first, optionally for one workflow."""

    @abstractmethod
    def delete_record(self, record_id: str) -> bool:
        """Delete a record. Returns False if it did not exist."""

    @abstractmethod
    def delete_all_records(self, workflow_path: Optional[str] = None) -> int:
        """Delete records, optionally only those of one workflow."""


class InMemoryHistoryStore(HistoryStore):
    """History store keeping records in a dictionary."""

    def __init__(self):
        self._records: Dict[str, ExecutionRecord] = {}

    def save_record(self, record: ExecutionRecord) -> None:
        self._records[record.id] = deepcopy(record)

    def get_record(self, record_id: str) -> Optional[ExecutionRecord]:
        record = self._records.get(record_id)
        return deepcopy(record) if record else None

    def list_records(self, workflow_path: Optional[str] = None) -> List[ExecutionRecord]:
        records = [
            r for r in self._records.values()
            if workflow_path is None or r.workflow_path == workflow_path
        ]
        return [deepcopy(r) for r in sorted(records, key=lambda r: r.start_time, reverse=True)]

    def delete_record(self, record_id: str) -> bool:
        return self._records.pop(record_id, None) is not None

    def delete_all_records(self, workflow_path: Optional[str] = None) -> int:
        doomed = [
            record_id for record_id, r in self._records.items()
            if workflow_path is None or r.workflow_path == workflow_path
        ]
        for record_id in doomed:
            del self._records[record_id]
        return len(doomed)
