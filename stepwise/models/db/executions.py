import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, TIMESTAMP, UUID, UniqueConstraint, text
from sqlalchemy.orm import relationship

from stepwise.core.database import Base, JSONVariant
from stepwise.models.enums import ExecutionStatus, Priority, StepStatus


class Execution(Base):
    __tablename__ = 'executions'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey('users.user_id', ondelete="CASCADE"), nullable=False, index=True)
    workflow_id = Column(UUID(as_uuid=True), ForeignKey('workflows.id', ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String)
    description = Column(String)
    status = Column(String, nullable=False, default=ExecutionStatus.IN_PROGRESS.value, index=True)
    priority = Column(String, nullable=False, default=Priority.MEDIUM.value, index=True)
    progress = Column(Integer, nullable=False, default=0)
    tags = Column(JSONVariant, default=list)
    due_date = Column(TIMESTAMP(timezone=True))
    started_at = Column(TIMESTAMP(timezone=True))
    completed_at = Column(TIMESTAMP(timezone=True))
    paused_at = Column(TIMESTAMP(timezone=True))
    resumed_at = Column(TIMESTAMP(timezone=True))
    review_notes = Column(String)
    reviewed_at = Column(TIMESTAMP(timezone=True))
    execution_metadata = Column("metadata", JSONVariant)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", back_populates="executions")
    workflow = relationship("Workflow", back_populates="executions")
    records = relationship(
        "ExecutionRecord",
        back_populates="execution",
        cascade="all, delete-orphan",
        order_by="ExecutionRecord.sequence",
    )
    review = relationship("Review", back_populates="execution", uselist=False, cascade="all, delete-orphan")


class ExecutionRecord(Base):
    __tablename__ = 'execution_records'
    __table_args__ = (UniqueConstraint("execution_id", "step_id", name="uq_execution_records_execution_step"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    execution_id = Column(UUID(as_uuid=True), ForeignKey('executions.id', ondelete="CASCADE"), nullable=False, index=True)
    step_id = Column(UUID(as_uuid=True), ForeignKey('workflow_steps.id', ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=StepStatus.PENDING.value, index=True)
    notes = Column(String)
    data = Column(JSONVariant)
    result = Column(JSONVariant)
    started_at = Column(TIMESTAMP(timezone=True))
    completed_at = Column(TIMESTAMP(timezone=True))
    actual_duration = Column(Integer)
    review_notes = Column(String)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    execution = relationship("Execution", back_populates="records")
    step = relationship("WorkflowStep", back_populates="execution_records")
    attachments = relationship("Attachment", back_populates="execution_record", cascade="all, delete-orphan")
