"""Pydantic schemas for checkout"""
from pydantic import BaseModel


class CheckoutRequest(BaseModel):
    event_id: int
    quantity: int  # range checked against MAX_TICKETS_PER_CHECKOUT by the checkout service
