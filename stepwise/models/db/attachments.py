import uuid

from sqlalchemy import Column, ForeignKey, Integer, String, TIMESTAMP, UUID, text
from sqlalchemy.orm import relationship

from stepwise.core.database import Base, JSONVariant


class Attachment(Base):
    __tablename__ = 'attachments'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    execution_record_id = Column(
        UUID(as_uuid=True), ForeignKey('execution_records.id', ondelete="CASCADE"), nullable=True, index=True
    )
    review_id = Column(UUID(as_uuid=True), ForeignKey('reviews.id', ondelete="CASCADE"), nullable=True, index=True)
    file_name = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    file_type = Column(String, nullable=False, index=True)
    file_size = Column(Integer, nullable=False)
    file_path = Column(String, nullable=False)
    mime_type = Column(String)
    description = Column(String)
    tags = Column(JSONVariant, default=list)
    uploaded_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    execution_record = relationship("ExecutionRecord", back_populates="attachments")
    review = relationship("Review", back_populates="attachments")
