"""Database models and storage layer."""

from .database import Base, configure_database, create_tables, drop_tables
from .models import ExecutionRecordModel, ExecutionStepModel
from .history_store import SqlHistoryStore

__all__ = [
    "Base",
    "configure_database",
    "create_tables",
    "drop_tables",
    "ExecutionRecordModel",
    "ExecutionStepModel",
    "SqlHistoryStore",
]
