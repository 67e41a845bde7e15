import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, TIMESTAMP, UUID, UniqueConstraint, text
from sqlalchemy.orm import relationship

from stepwise.core.database import Base, JSONVariant
from stepwise.models.enums import StepType


class Workflow(Base):
    __tablename__ = 'workflows'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey('users.user_id', ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String)
    category = Column(String, index=True)
    tags = Column(JSONVariant, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    workflow_metadata = Column("metadata", JSONVariant)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", back_populates="workflows")
    steps = relationship(
        "WorkflowStep",
        back_populates="workflow",
        cascade="all, delete-orphan",
        order_by="WorkflowStep.order",
    )
    executions = relationship("Execution", back_populates="workflow")


class WorkflowStep(Base):
    __tablename__ = 'workflow_steps'
    __table_args__ = (UniqueConstraint("workflow_id", "order", name="uq_workflow_steps_workflow_order"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    workflow_id = Column(UUID(as_uuid=True), ForeignKey('workflows.id', ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(String)
    order = Column(Integer, nullable=False)
    is_required = Column(Boolean, nullable=False, default=False)
    step_type = Column(String, nullable=False, default=StepType.CHECKLIST.value)
    estimated_time = Column(Integer)
    dependencies = Column(JSONVariant, default=list)
    step_metadata = Column("metadata", JSONVariant)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    workflow = relationship("Workflow", back_populates="steps")
    execution_records = relationship("ExecutionRecord", back_populates="step")
