"""
FastAPI routes for payments: checkout initiation, gateway webhook and refunds.
"""

import logging

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import get_db
from ..schemas.payment import (
    PaymentInitiateRequest,
    PaymentSessionResponse,
    PaymentWebhookEvent,
    PaymentWebhookResponse,
    RefundRequest,
    RefundResponse,
)
from ..services.notification_service import BookingNotifier
from ..services.payment_gateway import PaymentGateway, verify_webhook_signature
from ..services.payment_service import PaymentService
from ..utils.dependencies import (
    CurrentUser,
    get_current_admin_user,
    get_current_user,
    get_notifier,
    get_payment_gateway,
)
from ..utils.exceptions import AuthorizationError, ValidationError
from ..utils.logging_config import log_business_event

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])

SIGNATURE_HEADER = "X-Payment-Signature"


@router.post("/bookings/{booking_id}/initiate", response_model=PaymentSessionResponse)
async def initiate_payment(
    booking_id: int,
    request: PaymentInitiateRequest,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """Open a checkout session for one of the caller's pending bookings."""
    payment_service = PaymentService(db, gateway=gateway)
    payment_session = await payment_service.initiate_payment(
        booking_id,
        current_user.user_id,
        currency=request.currency
    )

    return PaymentSessionResponse(
        booking_id=booking_id,
        session_id=payment_session.session_id,
        checkout_url=payment_session.checkout_url,
        amount=payment_session.amount,
        currency=payment_session.currency
    )


@router.post("/webhook", response_model=PaymentWebhookResponse)
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """
    Receive a payment notification from the gateway.

    Duplicate deliveries and unknown bookings are acknowledged with 200 so
    the gateway stops retrying; the ``outcome`` field says what happened.
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    if not verify_webhook_signature(body, signature, get_settings().payment_webhook_secret):
        logger.warning("Rejected payment webhook with an invalid signature")
        raise AuthorizationError("Invalid webhook signature")

    try:
        event = PaymentWebhookEvent.model_validate_json(body)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed webhook payload: {e.error_count()} error(s)")

    payment_service = PaymentService(db, gateway=gateway, notifier=notifier)

    if event.event_type == "payment.succeeded":
        outcome = await payment_service.confirm_payment(
            event.booking_id,
            event.session_id,
            amount=event.amount,
            currency=event.currency,
            external_intent_id=event.payment_intent
        )
        return PaymentWebhookResponse(outcome=outcome.value)

    recorded = await payment_service.record_payment_failure(
        event.booking_id,
        event.session_id,
        reason=event.failure_reason
    )
    log_business_event(
        "payment_failed",
        {"booking_id": event.booking_id, "session_id": event.session_id, "recorded": recorded}
    )
    return PaymentWebhookResponse(outcome="failure_recorded" if recorded else "ignored")


@router.post("/bookings/{booking_id}/refund", response_model=RefundResponse)
async def refund_booking(
    booking_id: int,
    request: RefundRequest,
    admin_user: CurrentUser = Depends(get_current_admin_user),
    db: AsyncSession = Depends(get_db),
    notifier: BookingNotifier = Depends(get_notifier),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """Refund a paid booking and cancel it (admin only)."""
    payment_service = PaymentService(db, gateway=gateway, notifier=notifier)
    refunded = await payment_service.refund_and_cancel(
        booking_id,
        changed_by_user_id=admin_user.user_id,
        reason=request.reason
    )

    return RefundResponse(
        booking_id=booking_id,
        refunded=refunded,
        message="Booking refunded and cancelled" if refunded else "Booking was not refunded"
    )
