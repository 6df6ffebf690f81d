"""Payment model"""
import enum

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from eventpay.models.base import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"
    EXPIRED = "expired"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentProvider(str, enum.Enum):
    STRIPE = "stripe"
    PAYPAL = "paypal"


class Payment(Base):
    """Payment record for a reservation checkout"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    total = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True)  # See PaymentStatus
    provider = Column(String(20), nullable=False)  # See PaymentProvider
    provider_reference = Column(String(255), nullable=True, index=True)  # Stripe checkout session id or PayPal order id
    capture_id = Column(String(255), nullable=True)  # PayPal capture id
    commission_rate = Column(Numeric(5, 2), default=0, nullable=False)
    vendor_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    operation = relationship("Operation", back_populates="payment", uselist=False)

    __table_args__ = (
        UniqueConstraint("provider", "provider_reference", name="uq_payments_provider_reference"),
    )
