"""Capacity ledger for event places.

``reserve`` only checks; places are taken by ``commit`` once a payment is
confirmed and given back by ``release`` when a paid reservation is cancelled.
Refunded, expired and failed payments never took places, so nothing is
released for them.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from eventpay.core.errors import CapacityError, Err, Ok, Result, TimingError
from eventpay.core.metrics import capacity_commits_counter
from eventpay.db.store import PaymentStore
from eventpay.models import Event

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def has_started(event: Event, now: Optional[datetime] = None) -> bool:
    now = now or utcnow()
    return as_utc(event.start_date) <= now


def reserve(event: Event, quantity: int, now: Optional[datetime] = None) -> Result[Event]:
    """Check that ``quantity`` places can be booked on ``event`` right now"""
    if event.available_places < quantity:
        return Err(CapacityError(available=event.available_places, requested=quantity))
    if has_started(event, now):
        return Err(TimingError("Cannot book an event that has already started"))
    return Ok(event)


def commit(event_id: int, quantity: int, store: PaymentStore) -> bool:
    """Take ``quantity`` places from the event. False if not enough are left."""
    applied = store.decrement_capacity(event_id, quantity)
    capacity_commits_counter.labels(outcome="applied" if applied else "insufficient").inc()
    if not applied:
        logger.warning(f"Capacity commit of {quantity} place(s) rejected for event {event_id}")
    return applied


def release(event_id: int, quantity: int, store: PaymentStore) -> bool:
    """Give ``quantity`` places back to the event, never above its capacity"""
    applied = store.increment_capacity(event_id, quantity)
    if not applied:
        logger.warning(f"Capacity release of {quantity} place(s) would exceed capacity for event {event_id}")
    return applied
