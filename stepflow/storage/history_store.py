"""SQLAlchemy-backed execution history store."""

from datetime import timezone
from typing import Callable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..core.error_recovery import RetryConfig, with_retry
from ..core.exceptions import StorageError
from ..core.history import HistoryStore
from ..core.logging import get_logger
from ..models.core import ExecutionRecord, ExecutionStep
from .database import SessionLocal, get_database_engine
from .models import ExecutionRecordModel, ExecutionStepModel

logger = get_logger(__name__)


def _aware(value):
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(model: ExecutionRecordModel) -> ExecutionRecord:
    return ExecutionRecord(
        id=model.id,
        workflow_path=model.workflow_path,
        workflow_name=model.workflow_name,
        start_time=_aware(model.start_time),
        end_time=_aware(model.end_time),
        status=model.status,
        error_node_id=model.error_node_id,
        variables_snapshot=model.variables_snapshot,
        steps=[
            ExecutionStep(
                node_id=step.node_id,
                node_type=step.node_type,
                timestamp=_aware(step.timestamp),
                input=step.input,
                output=step.output,
                status=step.status,
                error=step.error,
            )
            for step in model.steps
        ],
    )


class SqlHistoryStore(HistoryStore):
    """History store persisting records through SQLAlchemy sessions."""

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        retry_attempts: int = 3
    ):
        """Initialize the store.

        Args:
            session_factory: Callable returning a new session; defaults to the
                global ``SessionLocal``
            retry_attempts: Attempts made when persisting a record fails
        """
        if session_factory is None:
            get_database_engine()
            session_factory = SessionLocal
        self._session_factory = session_factory
        self._retry_config = RetryConfig(
            max_attempts=retry_attempts,
            base_delay=0.1,
            retryable_exceptions=[StorageError]
        )

    def save_record(self, record: ExecutionRecord) -> None:
        with_retry(self._retry_config)(self._save_record)(record)

    def _save_record(self, record: ExecutionRecord) -> None:
        session = self._session_factory()
        try:
            existing = session.get(ExecutionRecordModel, record.id)
            if existing is not None:
                session.delete(existing)
                session.flush()

            data = record.model_dump(mode="json")
            model = ExecutionRecordModel(
                id=record.id,
                workflow_path=record.workflow_path,
                workflow_name=record.workflow_name,
                status=record.status.value,
                start_time=record.start_time,
                end_time=record.end_time,
                error_node_id=record.error_node_id,
                variables_snapshot=data["variables_snapshot"],
            )
            for position, (step, step_data) in enumerate(zip(record.steps, data["steps"])):
                model.steps.append(ExecutionStepModel(
                    position=position,
                    node_id=step.node_id,
                    node_type=step.node_type,
                    timestamp=step.timestamp,
                    input=step_data["input"],
                    output=step_data["output"],
                    status=step.status.value,
                    error=step.error,
                ))

            session.add(model)
            session.commit()
            logger.debug(f"Saved execution record {record.id} with {len(record.steps)} steps")
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                f"Failed to save execution record {record.id}: {e}",
                operation="save_record",
                table="execution_records"
            )
        finally:
            session.close()

    def get_record(self, record_id: str) -> Optional[ExecutionRecord]:
        session = self._session_factory()
        try:
            model = session.get(ExecutionRecordModel, record_id)
            return _to_record(model) if model else None
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to load execution record {record_id}: {e}",
                operation="get_record",
                table="execution_records"
            )
        finally:
            session.close()

    def list_records(self, workflow_path: Optional[str] = None) -> List[ExecutionRecord]:
        session = self._session_factory()
        try:
            query = session.query(ExecutionRecordModel)
            if workflow_path is not None:
                query = query.filter(ExecutionRecordModel.workflow_path == workflow_path)
            models = query.order_by(ExecutionRecordModel.start_time.desc()).all()
            return [_to_record(model) for model in models]
        except SQLAlchemyError as e:
            raise StorageError(
                f"Failed to list execution records: {e}",
                operation="list_records",
                table="execution_records"
            )
        finally:
            session.close()

    def delete_record(self, record_id: str) -> bool:
        session = self._session_factory()
        try:
            model = session.get(ExecutionRecordModel, record_id)
            if model is None:
                return False
            session.delete(model)
            session.commit()
            return True
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                f"Failed to delete execution record {record_id}: {e}",
                operation="delete_record",
                table="execution_records"
            )
        finally:
            session.close()

    def delete_all_records(self, workflow_path: Optional[str] = None) -> int:
        session = self._session_factory()
        try:
            query = session.query(ExecutionRecordModel)
            if workflow_path is not None:
                query = query.filter(ExecutionRecordModel.workflow_path == workflow_path)
            models = query.all()
            for model in models:
                session.delete(model)
            session.commit()
            return len(models)
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageError(
                f"Failed to delete execution records: {e}",
                operation="delete_all_records",
                table="execution_records"
            )
        finally:
            session.close()
