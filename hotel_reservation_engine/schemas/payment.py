"""
Pydantic schemas for payment initiation, gateway webhooks and refunds.
"""

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field


class PaymentInitiateRequest(BaseModel):
    """Schema for opening a checkout session."""

    currency: Optional[str] = Field(None, min_length=3, max_length=10, description="Defaults to the configured currency")


class PaymentSessionResponse(BaseModel):
    """Checkout session the client redirects the guest to."""

    booking_id: int
    session_id: str
    checkout_url: Optional[str] = None
    amount: Decimal
    currency: str


class PaymentWebhookEvent(BaseModel):
    """Payment notification posted by the gateway."""

    event_type: Literal["payment.succeeded", "payment.failed"]
    booking_id: int
    session_id: str = Field(..., min_length=1, max_length=100)
    payment_intent: Optional[str] = Field(None, max_length=100)
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentWebhookResponse(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    outcome: str


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RefundResponse(BaseModel):
    booking_id: int
    refunded: bool
    message: str
