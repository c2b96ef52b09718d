"""Cancellation settlement: refund the charge, then unwind loyalty and status"""
import logging
from typing import Optional, Set

from pydantic import BaseModel

from domain.collaborators import PaymentGateway
from domain.entities import Booking, Payment
from domain.enums import PaymentStatus
from domain.exceptions import BookingNotFound, InvalidBookingState, RefundFailed
from domain.value_objects import ReversalResult
from application.loyalty import LoyaltyLedger
from application.resilience import retry_on_conflict, with_timeout

logger = logging.getLogger(__name__)


class CancellationResult(BaseModel):
    booking: Booking
    refund: Optional[Payment] = None
    reversal: ReversalResult = ReversalResult()
    changed_hotels: Set[str] = set()


class RefundCoordinator:
    """Refunds a paid booking before its loyalty effects are reversed.

    The refund is persisted in its own unit of work as soon as the gateway
    accepts it, so a cancellation retried after a later failure finds the
    payment already REFUNDED and does not call the gateway again.
    """

    def __init__(
        self,
        uow_factory,
        payment_gateway: PaymentGateway,
        ledger: LoyaltyLedger,
        payment_timeout: float = 10.0,
        max_retries: int = 3
    ):
        self.uow_factory = uow_factory
        self.payment_gateway = payment_gateway
        self.ledger = ledger
        self.payment_timeout = payment_timeout
        self.max_retries = max_retries

    async def settle_cancellation(self, booking: Booking, reason: str) -> CancellationResult:
        refund = None
        if booking.is_paid():
            refund = await self.refund_payment(booking)

        async def cancel_and_reverse():
            async with self.uow_factory() as uow:
                current = await uow.bookings.find_by_id(booking.booking_id)
                if current is None:
                    raise BookingNotFound(f"Booking with ID {booking.booking_id} not found")
                if not current.is_cancellable():
                    raise InvalidBookingState(
                        f"Cannot cancel booking with status {current.status.value}"
                    )
                reversal = await self.ledger.reverse(uow, current)
                current.cancel(reason)
                await uow.bookings.save(current)
            return current, reversal, uow.changed_hotels

        cancelled, reversal, changed = await retry_on_conflict(
            cancel_and_reverse, self.max_retries, f"cancel booking {booking.booking_id}"
        )
        logger.info("Booking %s cancelled: %s", cancelled.booking_id, reason)
        return CancellationResult(booking=cancelled, refund=refund, reversal=reversal, changed_hotels=changed)

    async def refund_payment(self, booking: Booking) -> Optional[Payment]:
        """Refund the booking's payment unless an earlier attempt already did"""
        async with self.uow_factory() as uow:
            payment = await uow.payments.find_by_id(booking.payment_id)
        if payment is None:
            raise InvalidBookingState(f"Payment {booking.payment_id} for booking {booking.booking_id} not found")

        if payment.status == PaymentStatus.REFUNDED:
            logger.info("Payment %s already refunded, skipping gateway", payment.payment_id)
            return payment
        if not payment.is_completed():
            return None

        result = await with_timeout(
            self.payment_gateway.refund(payment.transaction_id, payment.amount),
            self.payment_timeout,
            "refund"
        )
        if result.status != PaymentStatus.REFUNDED:
            logger.warning("Refund declined for payment %s: %s", payment.payment_id, result.error_message)
            raise RefundFailed(
                f"Refund failed: {result.error_message or 'declined by payment gateway'}",
                payment_id=payment.payment_id
            )

        async def persist():
            async with self.uow_factory() as uow:
                stored = await uow.payments.find_by_id(payment.payment_id)
                stored.mark_refunded(result)
                await uow.payments.save(stored)
            return stored

        refunded = await retry_on_conflict(persist, self.max_retries, f"record refund {payment.payment_id}")
        logger.info("Refunded %s %s for booking %s (transaction %s)",
                    refunded.amount, refunded.currency, booking.booking_id, refunded.refund_transaction_id)
        return refunded
