"""Application Services - Business use cases"""
import logging
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Callable, Hashable, Iterable, List, Optional, Set, Tuple
from uuid import UUID

from pydantic import BaseModel, ValidationError as PydanticValidationError

from domain.auth import User
from domain.collaborators import HotelCatalog, PaymentGateway, CacheInvalidator
from domain.entities import Booking, Payment
from domain.enums import BookingStatus, PaymentMethod, PaymentStatus, UserRole
from domain.exceptions import (
    BookingEngineError, BookingNotFound, InsufficientRooms, InvalidBookingState,
    PaymentFailed, Unauthorized, ValidationError
)
from domain.policies import policy_for
from domain.value_objects import AvailabilityResult, BookingRequest, CardDetails, PaymentRequest
from application.availability import AvailabilityCalculator
from application.loyalty import LoyaltyLedger
from application.refunds import CancellationResult, RefundCoordinator
from application.resilience import retry_on_conflict, with_timeout
from infrastructure.locks import KeyedLocks

logger = logging.getLogger(__name__)

_PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.HOTEL_MANAGER)


class PaymentOutcome(BaseModel):
    booking: Booking
    payment: Payment
    points_earned: int = 0


def _validation_messages(error: PydanticValidationError) -> List[str]:
    return [err["msg"].replace("Value error, ", "") for err in error.errors()]


def build_payment_request(
    amount: Decimal,
    currency: str,
    payment_method: PaymentMethod,
    **card_fields
) -> PaymentRequest:
    """Validate card and currency data, reporting every problem as one ValidationError"""
    messages = []
    card = CardDetails()
    try:
        card = CardDetails(**card_fields)
    except PydanticValidationError as e:
        messages.extend(_validation_messages(e))
    try:
        request = PaymentRequest(amount=amount, currency=currency, payment_method=payment_method, card=card)
    except PydanticValidationError as e:
        messages.extend(_validation_messages(e))
    if messages:
        raise ValidationError("; ".join(messages), messages)
    return request


class BookingOrchestrator:
    """Drives a booking through creation, payment and cancellation"""

    def __init__(
        self,
        uow_factory,
        hotel_catalog: HotelCatalog,
        payment_gateway: PaymentGateway,
        cache_invalidator: Optional[CacheInvalidator] = None,
        locks: Optional[KeyedLocks] = None,
        ledger: Optional[LoyaltyLedger] = None,
        availability: Optional[AvailabilityCalculator] = None,
        refunds: Optional[RefundCoordinator] = None,
        payment_timeout: float = 10.0,
        max_retries: int = 3,
        clock: Callable[[], date] = date.today
    ):
        self.uow_factory = uow_factory
        self.hotel_catalog = hotel_catalog
        self.payment_gateway = payment_gateway
        self.cache_invalidator = cache_invalidator
        self.locks = locks or KeyedLocks()
        self.ledger = ledger or LoyaltyLedger(uow_factory)
        self.availability = availability or AvailabilityCalculator(hotel_catalog, uow_factory)
        self.refunds = refunds or RefundCoordinator(
            uow_factory, payment_gateway, self.ledger,
            payment_timeout=payment_timeout, max_retries=max_retries
        )
        self.payment_timeout = payment_timeout
        self.max_retries = max_retries
        self.clock = clock

    # ==================== AVAILABILITY ====================
    async def check_availability(
        self,
        hotel_id: str,
        check_in: date,
        check_out: date,
        number_of_guests: int
    ) -> AvailabilityResult:
        return await self.availability.check_availability(hotel_id, check_in, check_out, number_of_guests)

    # ==================== CREATE ====================
    async def create_booking(
        self,
        hotel_id: str,
        guest_name: str,
        guest_email: str,
        check_in: date,
        check_out: date,
        number_of_guests: int,
        acting_user: Optional[User] = None,
        points_to_redeem: Optional[int] = None
    ) -> Booking:
        """Reserve rooms, optionally paying part of the stay with loyalty points"""
        date_range, guest_count = self.availability.validate_stay(check_in, check_out, number_of_guests)
        if points_to_redeem is not None and points_to_redeem < 0:
            raise ValidationError("Points to redeem cannot be negative")
        try:
            request = BookingRequest(
                hotel_id=hotel_id,
                guest_name=guest_name,
                guest_email=guest_email,
                date_range=date_range,
                guest_count=guest_count,
                points_to_redeem=points_to_redeem
            )
        except PydanticValidationError as e:
            messages = _validation_messages(e)
            raise ValidationError("; ".join(messages), messages)

        user_id = acting_user.user_id if acting_user else None
        role = acting_user.role if acting_user else UserRole.GUEST
        if request.points_to_redeem and user_id is None:
            raise ValidationError("Loyalty points can only be redeemed by a signed-in user")

        hotel = await self.availability.get_hotel(hotel_id)
        policy = policy_for(role)

        async def attempt() -> Tuple[Booking, Set[str]]:
            async with self.locks.hold(("hotel", hotel_id)):
                async with self.uow_factory() as uow:
                    own_bookings = []
                    if user_id is not None:
                        own_bookings = [
                            b for b in await uow.bookings.find_by_user_id(user_id) if b.hotel_id == hotel_id
                        ]
                    errors = policy.violations(request, own_bookings, self.clock())
                    if errors:
                        raise ValidationError("; ".join(errors), errors)

                    existing = await uow.bookings.find_by_hotel(hotel_id)
                    availability = self.availability.evaluate(hotel, request.date_range, request.guest_count, existing)
                    if not availability.is_available:
                        raise InsufficientRooms(
                            f"Not enough rooms available. {availability.message}",
                            available_rooms=availability.available_rooms,
                            requested_rooms=availability.requested_rooms
                        )

                    booking = Booking.create(request, hotel, user_id)
                    if request.points_to_redeem:
                        redemption = await self.ledger.redeem(
                            uow, user_id, request.points_to_redeem, booking.pre_discount_amount, booking.booking_id
                        )
                        booking.apply_loyalty_discount(redemption.points_redeemed, redemption.discount_amount)

                    await uow.bookings.save(booking)
                return booking, uow.changed_hotels

        booking, changed = await retry_on_conflict(attempt, self.max_retries, f"create booking at hotel {hotel_id}")
        logger.info(
            "Booking %s created at hotel %s for %s (%s..%s, %d room(s), total %s, policy %s)",
            booking.booking_id, hotel_id, booking.guest_email, booking.date_range.check_in,
            booking.date_range.check_out, booking.requested_rooms(), booking.total_amount, policy.name
        )
        await self._notify_cache(changed)
        return booking

    # ==================== PAYMENT ====================
    async def process_payment(
        self,
        booking_id: UUID,
        payment_request: PaymentRequest,
        acting_user: User
    ) -> PaymentOutcome:
        """Charge the booking's total and credit loyalty points on success"""
        async with self._exclusive(("booking", booking_id)):
            async with self.uow_factory() as uow:
                booking = await uow.bookings.find_by_id(booking_id)
            self._validate_payment(booking, booking_id, payment_request, acting_user)

            result = await with_timeout(
                self.payment_gateway.charge(
                    payment_request.amount,
                    payment_request.currency,
                    payment_request.payment_method,
                    payment_request.card
                ),
                self.payment_timeout,
                "charge"
            )
            payment = Payment.from_charge(
                booking_id, payment_request.amount, payment_request.currency,
                payment_request.payment_method, result
            )

            if payment.status == PaymentStatus.FAILED:
                async with self.uow_factory() as uow:
                    await uow.payments.save(payment)
                logger.warning("Payment for booking %s declined: %s", booking_id, payment.error_message)
                raise PaymentFailed(payment.error_message or "Payment declined", payment=payment)

            async def record() -> Tuple[Booking, int]:
                async with self.uow_factory() as uow:
                    current = await uow.bookings.find_by_id(booking_id)
                    if current is None:
                        raise BookingNotFound(f"Booking with ID {booking_id} not found")
                    current.record_payment(payment.payment_id)
                    await uow.payments.save(payment)
                    points = 0
                    if current.user_id is not None:
                        points = await self.ledger.earn(uow, current.user_id, current.total_amount, booking_id)
                    await uow.bookings.save(current)
                return current, points

            try:
                paid, points = await retry_on_conflict(record, self.max_retries, f"record payment for {booking_id}")
            except BookingEngineError:
                await self._compensate_charge(payment)
                raise

        logger.info("Payment %s of %s %s completed for booking %s, %d points earned",
                    payment.payment_id, payment.amount, payment.currency, booking_id, points)
        return PaymentOutcome(booking=paid, payment=payment, points_earned=points)

    def _validate_payment(
        self,
        booking: Optional[Booking],
        booking_id: UUID,
        payment_request: PaymentRequest,
        acting_user: User
    ) -> None:
        if booking is None:
            raise BookingNotFound(f"Booking with ID {booking_id} not found")
        if booking.user_id != acting_user.user_id and acting_user.role not in _PRIVILEGED_ROLES:
            raise Unauthorized("You can only pay for your own bookings.")
        if booking.status == BookingStatus.CANCELLED:
            raise InvalidBookingState("Cannot process payment for a cancelled booking.")
        if booking.status == BookingStatus.COMPLETED:
            raise InvalidBookingState("Cannot process payment for a completed booking.")
        if booking.is_paid():
            raise InvalidBookingState("Payment has already been processed for this booking.")

        errors = []
        if payment_request.amount != booking.total_amount:
            errors.append(
                f"Payment amount ({payment_request.amount}) must match booking total amount ({booking.total_amount})."
            )
        if payment_request.requires_card():
            errors.extend(payment_request.card.missing_fields())
        if errors:
            raise ValidationError("; ".join(errors), errors)

    async def _compensate_charge(self, payment: Payment) -> None:
        """Give the money back when a completed charge could not be recorded"""
        logger.error("Refunding charge %s for booking %s: payment could not be recorded",
                     payment.transaction_id, payment.booking_id)
        try:
            result = await with_timeout(
                self.payment_gateway.refund(payment.transaction_id, payment.amount),
                self.payment_timeout,
                "compensating refund"
            )
        except BookingEngineError:
            logger.error("Compensating refund for charge %s timed out; needs manual reconciliation",
                         payment.transaction_id)
            return

        if result.status != PaymentStatus.REFUNDED:
            logger.error("Compensating refund for charge %s failed: %s", payment.transaction_id, result.error_message)
            return

        payment.mark_refunded(result)
        async with self.uow_factory() as uow:
            await uow.payments.save(payment)

    # ==================== CANCELLATION ====================
    async def cancel_booking(
        self,
        booking_id: UUID,
        acting_user: User,
        reason: str = "Cancelled by guest"
    ) -> CancellationResult:
        """Cancel a confirmed booking, refunding and reversing loyalty as needed"""
        async with self._exclusive(("booking", booking_id)):
            async with self.uow_factory() as uow:
                booking = await uow.bookings.find_by_id(booking_id)
            if booking is None:
                raise BookingNotFound(f"Booking with ID {booking_id} not found")
            if booking.user_id != acting_user.user_id and not acting_user.is_admin():
                raise Unauthorized("You can only cancel your own bookings.")
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidBookingState("Booking is already cancelled.")
            if not booking.is_cancellable():
                raise InvalidBookingState(f"Cannot cancel booking with status {booking.status.value}.")

            result = await self.refunds.settle_cancellation(booking, reason)

        await self._notify_cache(result.changed_hotels)
        return result

    # ==================== LIFECYCLE ====================
    async def complete_booking(self, booking_id: UUID, today: Optional[date] = None) -> Booking:
        """Mark a stay completed once the guest has checked out"""
        async def attempt() -> Booking:
            async with self.uow_factory() as uow:
                booking = await uow.bookings.find_by_id(booking_id)
                if booking is None:
                    raise BookingNotFound(f"Booking with ID {booking_id} not found")
                booking.complete(today or self.clock())
                await uow.bookings.save(booking)
            return booking

        async with self._exclusive(("booking", booking_id)):
            booking = await retry_on_conflict(attempt, self.max_retries, f"complete booking {booking_id}")
        logger.info("Booking %s completed", booking_id)
        return booking

    async def delete_booking(self, booking_id: UUID, acting_user: User) -> bool:
        """Remove a booking that never had a payment attempt"""
        if not acting_user.is_admin():
            raise Unauthorized("Only administrators can delete bookings.")

        async def attempt() -> Set[str]:
            async with self.uow_factory() as uow:
                booking = await uow.bookings.find_by_id(booking_id)
                if booking is None:
                    raise BookingNotFound(f"Booking with ID {booking_id} not found")
                if await uow.payments.find_by_booking(booking_id):
                    raise InvalidBookingState("Cannot delete a booking with payment records.")
                await self.ledger.reverse(uow, booking)
                await uow.bookings.delete(booking_id)
            return uow.changed_hotels

        async with self._exclusive(("booking", booking_id)):
            changed = await retry_on_conflict(attempt, self.max_retries, f"delete booking {booking_id}")
        logger.info("Booking %s deleted by %s", booking_id, acting_user.username)
        await self._notify_cache(changed)
        return True

    # ==================== QUERIES ====================
    async def get_booking(self, booking_id: UUID, acting_user: User) -> Booking:
        async with self.uow_factory() as uow:
            booking = await uow.bookings.find_by_id(booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking with ID {booking_id} not found")
        if booking.user_id != acting_user.user_id and not acting_user.is_admin():
            raise Unauthorized("You can only view your own bookings.")
        return booking

    async def list_my_bookings(self, acting_user: User) -> List[Booking]:
        async with self.uow_factory() as uow:
            return await uow.bookings.find_by_user_id(acting_user.user_id)

    async def list_bookings(self, acting_user: User) -> List[Booking]:
        self._require_admin(acting_user)
        async with self.uow_factory() as uow:
            return await uow.bookings.find_all()

    async def list_bookings_by_email(self, email: str, acting_user: User) -> List[Booking]:
        self._require_admin(acting_user)
        async with self.uow_factory() as uow:
            return await uow.bookings.find_by_email(email)

    async def get_payments(self, booking_id: UUID) -> List[Payment]:
        async with self.uow_factory() as uow:
            return await uow.payments.find_by_booking(booking_id)

    @asynccontextmanager
    async def _exclusive(self, key: Hashable):
        """Hold a keyed lock, retrying acquisition timeouts like any other conflict"""
        await retry_on_conflict(lambda: self.locks.acquire(key), self.max_retries, f"lock {key}")
        try:
            yield
        finally:
            self.locks.release(key)

    @staticmethod
    def _require_admin(acting_user: User) -> None:
        if not acting_user.is_admin():
            raise Unauthorized("Administrator access required.")

    async def _notify_cache(self, hotel_ids: Iterable[str]) -> None:
        if self.cache_invalidator is None:
            return
        for hotel_id in hotel_ids:
            try:
                await self.cache_invalidator.invalidate_hotel(hotel_id)
            except Exception:
                logger.warning("Cache invalidation failed for hotel %s", hotel_id, exc_info=True)
