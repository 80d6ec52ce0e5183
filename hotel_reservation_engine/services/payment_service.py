"""
Payment service: starts checkouts, applies gateway confirmations and refunds.
"""

import enum
import logging
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..database import unit_of_work
from ..models.booking import Booking, BookingStatus
from ..models.booking_payment import BookingPayment, PaymentStatus
from ..models.booking_status_history import SYSTEM_ACTOR
from ..utils.exceptions import (
    BookingAccessDeniedError,
    ConcurrencyError,
    InvalidTransitionError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_on_concurrency_error
from .booking_state_machine import BookingStateMachine
from .notification_service import BookingNotifier, NotificationKind
from .payment_gateway import HttpPaymentGateway, PaymentGateway, PaymentSession

logger = logging.getLogger(__name__)


class PaymentConfirmationOutcome(str, enum.Enum):
    """Result of applying a payment confirmation. Duplicates are results, not errors."""
    CONFIRMED = "confirmed"
    ALREADY_PROCESSED = "already_processed"
    BOOKING_NOT_FOUND = "booking_not_found"


class PaymentService:
    """Service tying gateway payments to booking state."""

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[BookingNotifier] = None
    ):
        self.session = session
        self.settings = get_settings()
        self.gateway = gateway if gateway is not None else HttpPaymentGateway()
        self.notifier = notifier if notifier is not None else BookingNotifier()
        self.state_machine = BookingStateMachine(session)

    async def initiate_payment(
        self,
        booking_id: int,
        user_id: str,
        currency: Optional[str] = None
    ) -> PaymentSession:
        """
        Open a gateway checkout session for a pending booking.

        Nothing is written locally; the confirmation webhook records the payment.

        Raises:
            BookingAccessDeniedError: When the booking is missing or not owned
            InvalidTransitionError: When the booking is no longer pending
            PaymentServiceError: When the gateway call fails
        """
        booking = await self._get_booking(booking_id)
        if booking is None or booking.user_id != user_id:
            raise BookingAccessDeniedError(booking_id)

        if booking.status != BookingStatus.PENDING:
            raise InvalidTransitionError(booking_id, booking.status.value, BookingStatus.PAID.value)

        amount = booking.total_amount
        currency = currency or self.settings.default_currency

        # No transaction may stay open across the gateway call
        await self._end_read_transaction()

        payment_session = await self.gateway.initiate(
            amount,
            currency,
            {"booking_id": booking_id, "user_id": user_id}
        )

        logger.info(f"Payment session {payment_session.session_id} opened for booking {booking_id}")
        return payment_session

    async def confirm_payment(
        self,
        booking_id: int,
        external_session_id: str,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        external_intent_id: Optional[str] = None
    ) -> PaymentConfirmationOutcome:
        """
        Apply a successful payment notification. Safe to call repeatedly.

        Args:
            booking_id: Booking the payment was made for
            external_session_id: Gateway checkout session reference
            amount: Captured amount; defaults to the booking total
            currency: Captured currency; defaults to ``default_currency``
            external_intent_id: Optional gateway payment intent reference

        Returns:
            CONFIRMED on the first application, ALREADY_PROCESSED for a
            duplicate delivery, BOOKING_NOT_FOUND when there is no such booking
        """
        logger.info(f"Confirming payment {external_session_id} for booking {booking_id}")

        try:
            outcome = await self._apply_confirmation(
                booking_id, external_session_id, amount, currency, external_intent_id
            )
        except (ConcurrencyError, IntegrityError) as e:
            # A concurrent delivery of the same confirmation won the race
            logger.warning(f"Concurrent confirmation for booking {booking_id}: {e}")
            if await self._is_confirmed(booking_id, external_session_id):
                return PaymentConfirmationOutcome.ALREADY_PROCESSED
            raise

        if outcome == PaymentConfirmationOutcome.CONFIRMED:
            logger.info(f"Booking {booking_id} paid via session {external_session_id}")
            log_business_event(
                "booking_paid",
                {"booking_id": booking_id, "session_id": external_session_id}
            )
            self._notify(NotificationKind.BOOKING_CONFIRMED, booking_id)

        return outcome

    async def record_payment_failure(
        self,
        booking_id: int,
        external_session_id: str,
        reason: Optional[str] = None
    ) -> bool:
        """
        Record a failed payment attempt. The booking stays pending.

        Returns:
            True if a failed attempt was recorded, False if the booking is
            missing or the session already has a recorded payment
        """
        try:
            async with unit_of_work(self.session):
                booking = await self._get_booking(booking_id)
                if booking is None:
                    logger.error(f"Payment failure for unknown booking {booking_id}")
                    return False

                existing = await self._get_payment_by_session(external_session_id)
                if existing is not None:
                    logger.info(f"Session {external_session_id} already recorded as {existing.payment_status.value}")
                    return False

                self.session.add(BookingPayment(
                    booking_id=booking_id,
                    external_session_id=external_session_id,
                    amount=booking.total_amount,
                    currency=self.settings.default_currency,
                    payment_status=PaymentStatus.FAILED,
                    failure_reason=reason
                ))
                await self.session.flush()
        except IntegrityError as e:
            # A concurrent delivery recorded this session first
            logger.info(f"Session {external_session_id} was recorded concurrently: {e.orig}")
            return False

        logger.warning(f"Payment {external_session_id} for booking {booking_id} failed: {reason}")
        return True

    async def refund_and_cancel(
        self,
        booking_id: int,
        changed_by_user_id: str = SYSTEM_ACTOR,
        reason: Optional[str] = None
    ) -> bool:
        """
        Refund a paid booking at the gateway, then cancel it locally.

        The completed payment is first claimed (completed -> refund_pending)
        in its own committed transaction, so of several concurrent callers
        only one reaches the gateway. No transaction is open during the
        gateway call. Once the gateway accepts, the payment is marked
        refunded even if the booking has meanwhile moved on and can no
        longer be cancelled.

        Returns:
            True if the gateway refunded the payment; False if the booking is
            not paid, has no refundable payment, another refund holds the
            payment, or the gateway declined the refund

        Raises:
            ExternalServiceError: When the gateway cannot be reached; the
                claim on the payment is released first
        """
        claim = await self._claim_refund(booking_id)
        if claim is None:
            return False
        payment_id, reference, amount = claim

        try:
            refund = await self.gateway.refund(
                reference,
                amount,
                idempotency_key=f"refund-payment-{payment_id}"
            )
        except Exception:
            await self._release_refund_claim(payment_id)
            raise

        if not refund.succeeded:
            logger.warning(f"Refund for booking {booking_id} declined: {refund.failure_reason}")
            await self._release_refund_claim(payment_id)
            return False

        async with unit_of_work(self.session):
            await self._move_payment(payment_id, PaymentStatus.REFUND_PENDING, PaymentStatus.REFUNDED)

        notes = f"Refunded payment {reference}"
        if refund.refund_id:
            notes += f" (refund {refund.refund_id})"
        if reason:
            notes += f" - Reason: {reason}"

        cancelled = await self._cancel_refunded_booking(booking_id, changed_by_user_id, notes)

        logger.info(f"Booking {booking_id} refunded" + (" and cancelled" if cancelled else ""))
        log_business_event(
            "booking_refunded",
            {"booking_id": booking_id, "payment_id": payment_id, "cancelled": cancelled},
            user_id=changed_by_user_id
        )
        self._notify(NotificationKind.BOOKING_REFUNDED, booking_id)
        return True

    # Private helper methods

    async def _claim_refund(self, booking_id: int) -> Optional[Tuple[int, str, Decimal]]:
        async with unit_of_work(self.session):
            booking = await self._get_booking(booking_id)
            if booking is None or booking.status != BookingStatus.PAID:
                logger.info(f"Booking {booking_id} is not paid, nothing to refund")
                return None

            payment = await self._get_completed_payment(booking_id)
            if payment is None or not payment.gateway_reference:
                logger.warning(f"Booking {booking_id} has no refundable payment on record")
                return None

            if not await self._move_payment(payment.id, PaymentStatus.COMPLETED, PaymentStatus.REFUND_PENDING):
                logger.info(f"Refund of payment {payment.id} is already in progress")
                return None

            return payment.id, payment.gateway_reference, payment.amount

    async def _release_refund_claim(self, payment_id: int) -> None:
        async with unit_of_work(self.session):
            await self._move_payment(payment_id, PaymentStatus.REFUND_PENDING, PaymentStatus.COMPLETED)

    async def _move_payment(self, payment_id: int, expected: PaymentStatus, new: PaymentStatus) -> bool:
        """Conditional status change; False when the row is no longer in ``expected``."""
        result = await self.session.execute(
            update(BookingPayment)
            .where(
                BookingPayment.id == payment_id,
                BookingPayment.payment_status == expected,
            )
            .values(payment_status=new)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @retry_on_concurrency_error(max_attempts=3, base_delay=0.05, max_delay=0.5)
    async def _cancel_refunded_booking(self, booking_id: int, changed_by_user_id: str, notes: str) -> bool:
        async with unit_of_work(self.session):
            booking = await self._get_booking(booking_id)
            if booking is None or booking.status != BookingStatus.PAID:
                logger.warning(
                    f"Booking {booking_id} is no longer paid; refund recorded, booking left unchanged"
                )
                return False

            await self.state_machine.transition(
                booking,
                BookingStatus.CANCELLED,
                changed_by_user_id,
                notes
            )
        return True

    async def _apply_confirmation(
        self,
        booking_id: int,
        external_session_id: str,
        amount: Optional[Decimal],
        currency: Optional[str],
        external_intent_id: Optional[str]
    ) -> PaymentConfirmationOutcome:
        async with unit_of_work(self.session):
            booking = await self._get_booking(booking_id)
            if booking is None:
                logger.error(f"Payment {external_session_id} refers to unknown booking {booking_id}")
                return PaymentConfirmationOutcome.BOOKING_NOT_FOUND

            existing = await self._get_payment_by_session(external_session_id)
            if existing is not None and existing.payment_status in (
                PaymentStatus.COMPLETED, PaymentStatus.REFUND_PENDING, PaymentStatus.REFUNDED
            ):
                logger.info(f"Session {external_session_id} already processed")
                return PaymentConfirmationOutcome.ALREADY_PROCESSED

            if booking.status != BookingStatus.PENDING:
                logger.info(
                    f"Booking {booking_id} is {booking.status.value}, "
                    f"ignoring confirmation {external_session_id}"
                )
                return PaymentConfirmationOutcome.ALREADY_PROCESSED

            await self.state_machine.transition(
                booking,
                BookingStatus.PAID,
                SYSTEM_ACTOR,
                f"Payment confirmed for session {external_session_id}"
            )

            if existing is not None:
                # Promote an earlier failed or pending attempt for the same session
                existing.payment_status = PaymentStatus.COMPLETED
                existing.failure_reason = None
                existing.amount = amount if amount is not None else booking.total_amount
                if currency:
                    existing.currency = currency
                if external_intent_id:
                    existing.external_intent_id = external_intent_id
            else:
                self.session.add(BookingPayment(
                    booking_id=booking_id,
                    external_session_id=external_session_id,
                    external_intent_id=external_intent_id,
                    amount=amount if amount is not None else booking.total_amount,
                    currency=currency or self.settings.default_currency,
                    payment_status=PaymentStatus.COMPLETED
                ))

            await self.session.flush()

        return PaymentConfirmationOutcome.CONFIRMED

    async def _is_confirmed(self, booking_id: int, external_session_id: str) -> bool:
        await self.session.rollback()

        payment = await self._get_payment_by_session(external_session_id)
        if payment is not None and payment.payment_status in (
            PaymentStatus.COMPLETED, PaymentStatus.REFUND_PENDING, PaymentStatus.REFUNDED
        ):
            return True

        booking = await self._get_booking(booking_id)
        return booking is not None and booking.status != BookingStatus.PENDING

    async def _end_read_transaction(self) -> None:
        if self.session.in_transaction():
            await self.session.commit()

    async def _get_booking(self, booking_id: int) -> Optional[Booking]:
        result = await self.session.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_payment_by_session(self, external_session_id: str) -> Optional[BookingPayment]:
        result = await self.session.execute(
            select(BookingPayment)
            .where(BookingPayment.external_session_id == external_session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_completed_payment(self, booking_id: int) -> Optional[BookingPayment]:
        result = await self.session.execute(
            select(BookingPayment)
            .where(
                and_(
                    BookingPayment.booking_id == booking_id,
                    BookingPayment.payment_status == PaymentStatus.COMPLETED
                )
            )
            .order_by(BookingPayment.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    def _notify(self, kind: NotificationKind, booking_id: int) -> None:
        try:
            self.notifier.notify(kind, booking_id)
        except Exception as e:
            logger.warning(f"Failed to queue {kind.value} notification for booking {booking_id}: {e}")
