"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, DateTime, UniqueConstraint
from datetime import datetime, timezone
from eventpay.models.base import Base


class WebhookEvent(Base):
    """Provider webhook event log for idempotency"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(20), nullable=False)
    event_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    processed = Column(Boolean, default=False, nullable=False)
    payload = Column(JSON, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )
