"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, date
from typing import Optional
from decimal import Decimal

from domain.enums import BookingStatus, PaymentMethod, PaymentStatus, PointsTransactionKind
from domain.exceptions import InvalidBookingState, ValidationError
from domain.value_objects import DateRange, GuestCount, Hotel, BookingRequest, GatewayResult

MAX_DISCOUNT_RATIO = Decimal("0.5")


class Booking(BaseModel):
    """Booking Aggregate Root Entity"""

    # Identity
    booking_id: UUID = Field(default_factory=uuid4)

    # References to other contexts
    hotel_id: str
    user_id: Optional[UUID] = None

    # Guest details
    guest_name: str
    guest_email: str

    # Value Objects
    date_range: DateRange
    guest_count: GuestCount

    # Amounts
    pre_discount_amount: Decimal = Field(ge=0)
    total_amount: Decimal = Field(ge=0)
    loyalty_points_redeemed: Optional[int] = Field(default=None, ge=0)
    loyalty_discount_amount: Optional[Decimal] = Field(default=None, ge=0)

    # Status
    status: BookingStatus = BookingStatus.CONFIRMED
    payment_id: Optional[UUID] = None

    # Metadata
    created_at: datetime = Field(default_factory=datetime.utcnow)
    modified_at: datetime = Field(default_factory=datetime.utcnow)
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        request: BookingRequest,
        hotel: Hotel,
        user_id: Optional[UUID],
        booking_id: Optional[UUID] = None
    ) -> "Booking":
        """Create a confirmed booking priced from the hotel's nightly rate"""
        pre_discount = hotel.price_per_night * request.date_range.nights()
        return Booking(
            booking_id=booking_id or uuid4(),
            hotel_id=hotel.hotel_id,
            user_id=user_id,
            guest_name=request.guest_name,
            guest_email=request.guest_email,
            date_range=request.date_range,
            guest_count=request.guest_count,
            pre_discount_amount=pre_discount,
            total_amount=pre_discount,
            status=BookingStatus.CONFIRMED
        )

    # ==================== MODIFICATION METHODS ====================
    def apply_loyalty_discount(self, points: int, discount: Decimal) -> None:
        """Reduce the total by a loyalty discount, capped at half the stay price"""
        if discount < 0:
            raise ValidationError("Discount cannot be negative")
        if discount > self.pre_discount_amount * MAX_DISCOUNT_RATIO:
            raise ValidationError("Discount cannot exceed 50% of the booking amount")

        self.loyalty_points_redeemed = points
        self.loyalty_discount_amount = discount
        self.total_amount = max(Decimal("0"), self.pre_discount_amount - discount)
        self._touch()

    # ==================== STATE TRANSITION METHODS ====================
    def record_payment(self, payment_id: UUID) -> None:
        """Attach a completed payment; status stays CONFIRMED"""
        if self.status != BookingStatus.CONFIRMED:
            raise InvalidBookingState(
                f"Cannot record payment for booking with status {self.status.value}"
            )
        if self.payment_id is not None:
            raise InvalidBookingState("Payment has already been processed for this booking.")

        self.payment_id = payment_id
        self._touch()

    def cancel(self, reason: str) -> None:
        """Cancel booking"""
        if not self.is_cancellable():
            raise InvalidBookingState(
                f"Cannot cancel booking with status {self.status.value}"
            )

        self.status = BookingStatus.CANCELLED
        self.cancelled_at = datetime.utcnow()
        self.cancellation_reason = reason
        self._touch()

    def complete(self, today: date) -> None:
        """Mark a stay as completed once its checkout date has passed"""
        if self.status != BookingStatus.CONFIRMED:
            raise InvalidBookingState(
                f"Cannot complete booking with status {self.status.value}"
            )
        if today < self.date_range.check_out:
            raise InvalidBookingState("Cannot complete a booking before its checkout date")

        self.status = BookingStatus.COMPLETED
        self._touch()

    # ==================== QUERY METHODS ====================
    def is_cancellable(self) -> bool:
        return self.status == BookingStatus.CONFIRMED

    def occupies_rooms(self) -> bool:
        """Cancelled bookings never hold inventory"""
        return self.status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)

    def is_paid(self) -> bool:
        return self.payment_id is not None

    def payment_required(self) -> bool:
        return self.payment_id is None and self.status != BookingStatus.CANCELLED

    def requested_rooms(self) -> int:
        return self.guest_count.rooms_required()

    def overlaps(self, check_in: date, check_out: date) -> bool:
        return self.date_range.overlaps(check_in, check_out)

    def get_nights(self) -> int:
        return self.date_range.nights()

    def _touch(self) -> None:
        self.modified_at = datetime.utcnow()


class Payment(BaseModel):
    """Payment attempt recorded against a booking"""

    payment_id: UUID = Field(default_factory=uuid4)
    booking_id: UUID
    amount: Decimal = Field(ge=0)
    currency: str = "USD"
    payment_method: PaymentMethod
    status: PaymentStatus = PaymentStatus.PENDING
    transaction_id: Optional[str] = None
    refund_transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    @staticmethod
    def from_charge(
        booking_id: UUID,
        amount: Decimal,
        currency: str,
        payment_method: PaymentMethod,
        result: GatewayResult
    ) -> "Payment":
        status = PaymentStatus.COMPLETED if result.status == PaymentStatus.COMPLETED else PaymentStatus.FAILED
        return Payment(
            booking_id=booking_id,
            amount=amount,
            currency=currency,
            payment_method=payment_method,
            status=status,
            transaction_id=result.transaction_id,
            error_message=result.error_message,
            processed_at=result.processed_at
        )

    def mark_refunded(self, result: GatewayResult) -> None:
        if self.status != PaymentStatus.COMPLETED:
            raise InvalidBookingState(
                f"Cannot refund payment with status {self.status.value}"
            )
        self.status = PaymentStatus.REFUNDED
        self.refund_transaction_id = result.transaction_id
        self.refunded_at = result.processed_at

    def is_completed(self) -> bool:
        return self.status == PaymentStatus.COMPLETED


class PointsTransaction(BaseModel):
    """Immutable ledger row; corrections are new offsetting rows"""

    transaction_id: UUID = Field(default_factory=uuid4)
    account_id: UUID
    booking_id: Optional[UUID] = None
    points_delta: int
    kind: PointsTransactionKind
    description: str = ""
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        from_attributes = True
        frozen = True


class LoyaltyAccount(BaseModel):
    """Loyalty Aggregate Root; the balance is a cached view of the ledger"""

    account_id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    points_balance: int = Field(default=0, ge=0)
    total_points_earned: int = Field(default=0, ge=0)
    last_updated: datetime = Field(default_factory=datetime.utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    def post(
        self,
        points_delta: int,
        kind: PointsTransactionKind,
        description: str,
        booking_id: Optional[UUID] = None
    ) -> PointsTransaction:
        """Apply a delta to the cached balance and return the matching ledger row"""
        new_balance = self.points_balance + points_delta
        if new_balance < 0:
            raise ValueError("Points balance cannot go negative")

        new_total = self.total_points_earned
        if kind == PointsTransactionKind.EARN:
            new_total += points_delta
        if new_balance > new_total:
            raise ValueError("Points balance cannot exceed total points earned")

        self.points_balance = new_balance
        self.total_points_earned = new_total
        self.last_updated = datetime.utcnow()

        return PointsTransaction(
            account_id=self.account_id,
            booking_id=booking_id,
            points_delta=points_delta,
            kind=kind,
            description=description
        )


class ReversalShortfall(BaseModel):
    """Earned points that could not be clawed back because they were spent"""

    shortfall_id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    booking_id: UUID
    points: int = Field(gt=0)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        from_attributes = True
        frozen = True
