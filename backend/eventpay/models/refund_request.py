"""Refund request model"""
import enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from eventpay.models.base import Base


class RefundRequestStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REFUSED = "refused"


class RefundRequest(Base):
    """A buyer's request to refund a paid reservation, decided by an admin"""
    __tablename__ = "refund_requests"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    operation_id = Column(Integer, ForeignKey("operations.id", ondelete="SET NULL"), nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="SET NULL"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)  # At most the payment total
    reason = Column(Text, nullable=False)
    status = Column(String(20), default=RefundRequestStatus.PENDING.value, nullable=False, index=True)  # See RefundRequestStatus
    admin_comment = Column(Text, nullable=True)
    processed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    user = relationship("User", foreign_keys=[user_id])
    operation = relationship("Operation", back_populates="refund_requests")
    payment = relationship("Payment")
