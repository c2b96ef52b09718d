"""Domain Value Objects"""
import math
import re
from pydantic import BaseModel, Field, validator
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from domain.enums import PaymentMethod, PaymentStatus

GUESTS_PER_ROOM = 2

_NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-\.]+$")
_EXPIRY_MONTH_PATTERN = re.compile(r"^(0[1-9]|1[0-2])$")
_EXPIRY_YEAR_PATTERN = re.compile(r"^\d{2}$")
_CVV_PATTERN = re.compile(r"^\d{3,4}$")
_CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")


class DateRange(BaseModel):
    """Value Object for date ranges, half-open [check_in, check_out)"""
    check_in: date
    check_out: date

    @validator('check_out')
    def check_out_after_check_in(cls, v, values):
        if 'check_in' in values and v <= values['check_in']:
            raise ValueError('Check-out must be after check-in')
        return v

    def nights(self) -> int:
        """Calculate number of nights (at least one)"""
        return max(1, (self.check_out - self.check_in).days)

    def overlaps(self, check_in: date, check_out: date) -> bool:
        """Half-open interval overlap test"""
        return self.check_in < check_out and self.check_out > check_in

    class Config:
        frozen = True


class GuestCount(BaseModel):
    """Value Object for guest count"""
    count: int = Field(ge=1, le=10)

    def rooms_required(self) -> int:
        return math.ceil(self.count / GUESTS_PER_ROOM)

    class Config:
        frozen = True


class Hotel(BaseModel):
    """Read-only hotel snapshot supplied by the catalog"""
    hotel_id: str
    name: str = ""
    total_rooms: int = Field(ge=0)
    price_per_night: Decimal = Field(ge=0)
    manager_id: Optional[str] = None

    class Config:
        frozen = True


class BookingRequest(BaseModel):
    """Validated input for a new booking"""
    hotel_id: str
    guest_name: str = Field(min_length=2, max_length=100)
    guest_email: str = Field(max_length=255)
    date_range: DateRange
    guest_count: GuestCount
    points_to_redeem: Optional[int] = Field(default=None, ge=0)

    @validator('guest_name')
    def guest_name_characters(cls, v):
        if not _NAME_PATTERN.match(v):
            raise ValueError('Guest name can only contain letters, spaces, hyphens, and periods')
        return v

    @validator('guest_email')
    def guest_email_shape(cls, v):
        if '@' not in v or v.startswith('@') or v.endswith('@'):
            raise ValueError('Please provide a valid email address')
        return v

    class Config:
        frozen = True


class CardDetails(BaseModel):
    """Card data forwarded to the gateway; never persisted"""
    card_number: Optional[str] = None
    card_holder_name: Optional[str] = None
    expiry_month: Optional[str] = None
    expiry_year: Optional[str] = None
    cvv: Optional[str] = None

    @validator('card_number')
    def card_number_passes_luhn(cls, v):
        if v is None:
            return v
        digits = v.replace(" ", "").replace("-", "")
        if not (digits.isascii() and digits.isdigit()) or not 13 <= len(digits) <= 19 or not _luhn_valid(digits):
            raise ValueError('Card number is not a valid credit card number.')
        return digits

    @validator('card_holder_name')
    def card_holder_name_characters(cls, v):
        if v is None:
            return v
        if not 2 <= len(v) <= 100:
            raise ValueError('Card holder name must be between 2 and 100 characters')
        if not _NAME_PATTERN.match(v):
            raise ValueError('Card holder name can only contain letters, spaces, hyphens, and periods')
        return v

    @validator('expiry_month')
    def expiry_month_range(cls, v):
        if v is not None and not _EXPIRY_MONTH_PATTERN.match(v):
            raise ValueError('Expiry month must be between 01 and 12')
        return v

    @validator('expiry_year')
    def expiry_year_not_passed(cls, v, values):
        if v is None:
            return v
        if not _EXPIRY_YEAR_PATTERN.match(v):
            raise ValueError('Expiry year must be a 2-digit year')
        month = values.get('expiry_month')
        if month:
            today = date.today()
            # valid through the last day of the expiry month
            if (2000 + int(v), int(month)) < (today.year, today.month):
                raise ValueError('Card has expired.')
        return v

    @validator('cvv')
    def cvv_digits(cls, v):
        if v is not None and not _CVV_PATTERN.match(v):
            raise ValueError('CVV must be 3 or 4 digits')
        return v

    def missing_fields(self) -> list:
        errors = []
        if not self.card_number:
            errors.append("Card number is required for card payments.")
        if not self.card_holder_name:
            errors.append("Card holder name is required for card payments.")
        if not self.expiry_month or not self.expiry_year:
            errors.append("Card expiry date is required for card payments.")
        if not self.cvv:
            errors.append("CVV is required for card payments.")
        return errors

    class Config:
        frozen = True


def _luhn_valid(digits: str) -> bool:
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


class PaymentRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    currency: str = "USD"
    payment_method: PaymentMethod
    card: CardDetails = CardDetails()

    @validator('currency')
    def currency_code(cls, v):
        if not _CURRENCY_PATTERN.match(v):
            raise ValueError('Currency must be a valid 3-letter currency code (e.g., USD, EUR, GBP).')
        return v

    def requires_card(self) -> bool:
        return self.payment_method in (PaymentMethod.CREDIT_CARD, PaymentMethod.DEBIT_CARD)

    class Config:
        frozen = True


class GatewayResult(BaseModel):
    """Outcome reported by the payment gateway for a charge or refund"""
    status: PaymentStatus
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        frozen = True


class AvailabilityResult(BaseModel):
    is_available: bool
    available_rooms: int
    requested_rooms: int
    total_price: Decimal
    nights: int
    message: str = ""

    class Config:
        frozen = True


class RedemptionResult(BaseModel):
    points_redeemed: int
    discount_amount: Decimal
    new_balance: int

    class Config:
        frozen = True


class ReversalResult(BaseModel):
    points_restored: int = 0
    points_reversed: int = 0
    shortfall: int = 0

    class Config:
        frozen = True
