"""SQLAlchemy database models for execution history."""

from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, ForeignKey
from sqlalchemy.orm import relationship
from .database import Base


class ExecutionRecordModel(Base):
    """Database model for one workflow execution."""
    __tablename__ = "execution_records"

    id = Column(String, primary_key=True)
    workflow_path = Column(String, nullable=False, index=True)
    workflow_name = Column(String)
    status = Column(String, nullable=False)  # running, completed, error, cancelled
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True))
    error_node_id = Column(String)
    variables_snapshot = Column(JSON)

    steps = relationship(
        "ExecutionStepModel",
        back_populates="record",
        order_by="ExecutionStepModel.position",
        cascade="all, delete-orphan"
    )


class ExecutionStepModel(Base):
    """Database model for one executed node."""
    __tablename__ = "execution_steps"

    id = Column(Integer, primary_key=True, autoincrement=True)
    record_id = Column(String, ForeignKey("execution_records.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    node_id = Column(String, nullable=False)
    node_type = Column(String, nullable=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    input = Column(JSON)
    output = Column(JSON)
    status = Column(String, nullable=False)  # success, error, skipped
    error = Column(Text)

    record = relationship("ExecutionRecordModel", back_populates="steps")
