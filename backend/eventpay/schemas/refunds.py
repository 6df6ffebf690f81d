"""Pydantic schemas for refund requests"""
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class RefundRequestCreate(BaseModel):
    operation_id: int
    amount: Decimal = Field(gt=0, decimal_places=2)  # capped at the payment total by the refund service
    reason: str = Field(min_length=1, max_length=500)


class RefundDecision(BaseModel):
    status: Literal["approved", "refused"]
    admin_comment: Optional[str] = Field(None, max_length=500)
