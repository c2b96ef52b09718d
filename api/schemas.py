"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, EmailStr, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from domain.enums import PaymentMethod


# ============================================================================
# AVAILABILITY SCHEMAS
# ============================================================================

class CheckAvailabilityRequest(BaseModel):
    """Check availability request DTO"""
    hotel_id: str
    check_in: date
    check_out: date
    number_of_guests: int = Field(ge=1, le=10, default=1)


class AvailabilityResponse(BaseModel):
    """Availability response DTO"""
    hotel_id: str
    is_available: bool
    available_rooms: int
    requested_rooms: int
    total_price: Decimal
    nights: int
    message: str


# ============================================================================
# BOOKING SCHEMAS
# ============================================================================

class CreateBookingRequest(BaseModel):
    """Create booking request DTO"""
    hotel_id: str
    guest_name: str = Field(min_length=2, max_length=100)
    guest_email: EmailStr
    check_in: date
    check_out: date
    number_of_guests: int = Field(ge=1, le=10)
    points_to_redeem: Optional[int] = Field(default=None, ge=0)


class CancelBookingRequest(BaseModel):
    """Cancel booking request DTO"""
    reason: str = Field(default="Cancelled by guest", max_length=500)


class BookingResponse(BaseModel):
    """Booking response DTO"""
    booking_id: UUID
    hotel_id: str
    user_id: Optional[UUID] = None
    guest_name: str
    guest_email: str
    check_in: date
    check_out: date
    number_of_guests: int
    rooms: int
    nights: int
    pre_discount_amount: Decimal
    total_amount: Decimal
    loyalty_points_redeemed: Optional[int] = None
    loyalty_discount_amount: Optional[Decimal] = None
    status: str
    payment_id: Optional[UUID] = None
    payment_required: bool
    created_at: datetime
    modified_at: datetime
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================

class ProcessPaymentRequest(BaseModel):
    """Process payment request DTO"""
    amount: Decimal = Field(gt=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_method: PaymentMethod
    card_number: Optional[str] = None
    card_holder_name: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    cvv: Optional[str] = None


class PaymentResponse(BaseModel):
    """Payment response DTO"""
    payment_id: UUID
    booking_id: UUID
    amount: Decimal
    currency: str
    payment_method: str
    status: str
    transaction_id: Optional[str] = None
    refund_transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None
    loyalty_points_earned: int = 0


class CancellationResponse(BaseModel):
    """Cancellation response DTO"""
    booking: BookingResponse
    refund: Optional[PaymentResponse] = None
    points_restored: int = 0
    points_reversed: int = 0
    points_shortfall: int = 0


# ============================================================================
# LOYALTY SCHEMAS
# ============================================================================

class PointsTransactionResponse(BaseModel):
    """Points ledger row response DTO"""
    transaction_id: UUID
    booking_id: Optional[UUID] = None
    points_delta: int
    kind: str
    description: str
    created_at: datetime


class LoyaltyAccountResponse(BaseModel):
    """Loyalty account response DTO"""
    user_id: UUID
    points_balance: int
    total_points_earned: int
    points_value: Decimal
    last_updated: Optional[datetime] = None
    recent_transactions: List[PointsTransactionResponse] = []


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: str
    disabled: bool
