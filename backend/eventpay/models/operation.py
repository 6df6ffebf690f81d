"""Operation model"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from eventpay.models.base import Base


class OperationType(str, enum.Enum):
    CREATION = "creation"
    RESERVATION = "reservation"
    OTHER = "other"


class Operation(Base):
    """Booking record linking a user, an event and a payment"""
    __tablename__ = "operations"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True, unique=True)
    quantity = Column(Integer, nullable=False)
    type = Column(String(20), default=OperationType.RESERVATION.value, nullable=False)  # See OperationType
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    user = relationship("User", back_populates="operations")
    event = relationship("Event", back_populates="operations")
    payment = relationship("Payment", back_populates="operation")
    refund_requests = relationship("RefundRequest", back_populates="operation")

    __table_args__ = (
        Index('ix_operations_user_created', 'user_id', 'created_at'),
    )
