import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, TIMESTAMP, UUID, text
from sqlalchemy.orm import relationship

from stepwise.core.database import Base, JSONVariant


class Review(Base):
    __tablename__ = 'reviews'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), ForeignKey('users.user_id', ondelete="CASCADE"), nullable=False, index=True)
    execution_id = Column(
        UUID(as_uuid=True), ForeignKey('executions.id', ondelete="CASCADE"), nullable=False, unique=True
    )
    title = Column(String, nullable=False)
    content = Column(String)
    rating = Column(Integer, index=True)
    lessons = Column(String)
    improvements = Column(String)
    tags = Column(JSONVariant, default=list)
    is_public = Column(Boolean, nullable=False, default=False)
    review_metadata = Column("metadata", JSONVariant)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))

    user = relationship("User", back_populates="reviews")
    execution = relationship("Execution", back_populates="review")
    attachments = relationship("Attachment", back_populates="review", cascade="all, delete-orphan")
