"""Event model"""
from sqlalchemy import Column, Integer, String, Text, DateTime, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from eventpay.models.base import Base


class Event(Base):
    """Bookable event with a live capacity counter"""
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    start_date = Column(DateTime(timezone=True), nullable=False, index=True)
    end_date = Column(DateTime(timezone=True), nullable=False)
    base_price = Column(Numeric(10, 2), nullable=False)
    capacity = Column(Integer, nullable=False)  # Fixed maximum
    available_places = Column(Integer, nullable=False)  # Decremented on confirmed payment only
    organizer_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    organizer = relationship("User", back_populates="events")
    operations = relationship("Operation", back_populates="event")

    __table_args__ = (
        CheckConstraint("available_places >= 0", name="ck_events_available_places_non_negative"),
        CheckConstraint("available_places <= capacity", name="ck_events_available_places_within_capacity"),
    )
