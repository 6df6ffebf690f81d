"""User model"""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from eventpay.models.base import Base


class User(Base):
    """User accounts (end users and organizers)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    commission_rate = Column(Numeric(5, 2), default=0, nullable=False)  # Percent taken by the platform on this organizer's sales
    is_admin = Column(Boolean, default=False, nullable=False)  # Decides refund requests
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    events = relationship("Event", back_populates="organizer")
    operations = relationship("Operation", back_populates="user", cascade="all, delete-orphan")
