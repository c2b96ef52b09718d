import logging
from decimal import Decimal
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.responses import JSONResponse
from uuid import UUID
from datetime import timedelta
from typing import List
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Availability
    CheckAvailabilityRequest, AvailabilityResponse,
    # Booking
    CreateBookingRequest, CancelBookingRequest, BookingResponse,
    # Payment
    ProcessPaymentRequest, PaymentResponse, CancellationResponse,
    # Loyalty
    LoyaltyAccountResponse, PointsTransactionResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import get_current_active_user, get_current_admin_user, fake_users_db, get_user
from infrastructure.security import verify_password, create_user_token, ACCESS_TOKEN_EXPIRE_MINUTES
from infrastructure.config import Config
from domain.auth import User

from application.services import BookingOrchestrator, build_payment_request
from application.loyalty import LoyaltyLedger
from infrastructure.collaborators import InMemoryHotelCatalog, MockPaymentGateway, RecordingCacheInvalidator
from infrastructure.locks import KeyedLocks
from infrastructure.repositories.in_memory_repositories import InMemoryUnitOfWorkFactory
from domain.enums import BookingStatus, PaymentMethod
from domain.exceptions import (
    BookingEngineError, ValidationError, HotelNotFound, BookingNotFound, InsufficientRooms,
    InsufficientPoints, RedemptionLimitExceeded, Unauthorized, InvalidBookingState,
    PaymentFailed, PaymentTimeout, RefundFailed, ConcurrencyConflict
)
from domain.value_objects import Hotel

logging.basicConfig(
    level=logging.DEBUG if Config.DEBUG_MODE else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Hotel Booking API",
    description="Booking reservation and loyalty settlement engine",
    version="1.0.0"
)

# Initialize collaborators
uow_factory = InMemoryUnitOfWorkFactory()
hotel_catalog = InMemoryHotelCatalog([
    Hotel(hotel_id="hotel-001", name="Grand Plaza", total_rooms=10, price_per_night=Decimal("150.00")),
    Hotel(hotel_id="hotel-002", name="Seaside Inn", total_rooms=3, price_per_night=Decimal("89.50")),
    Hotel(hotel_id="hotel-003", name="Mountain Lodge", total_rooms=1, price_per_night=Decimal("250.00")),
])
payment_gateway = MockPaymentGateway(
    success_rate=Config.PAYMENT_SUCCESS_RATE,
    refund_success_rate=Config.REFUND_SUCCESS_RATE,
    delay_seconds=Config.PAYMENT_DELAY_SECONDS,
    refund_delay_seconds=Config.REFUND_DELAY_SECONDS
)
cache_invalidator = RecordingCacheInvalidator()

orchestrator = BookingOrchestrator(
    uow_factory,
    hotel_catalog,
    payment_gateway,
    cache_invalidator=cache_invalidator,
    locks=KeyedLocks(timeout=Config.LOCK_TIMEOUT_SECONDS),
    payment_timeout=Config.PAYMENT_TIMEOUT_SECONDS,
    max_retries=Config.BOOKING_MAX_RETRIES
)

# Dependency injection
def get_booking_orchestrator() -> BookingOrchestrator:
    return orchestrator

def get_loyalty_ledger(service: BookingOrchestrator = Depends(get_booking_orchestrator)) -> LoyaltyLedger:
    return service.ledger

# ============================================================================
# ERROR HANDLING
# ============================================================================

_STATUS_CODES = {
    ValidationError: 400,
    HotelNotFound: 404,
    BookingNotFound: 404,
    Unauthorized: 403,
    InsufficientRooms: 409,
    InvalidBookingState: 409,
    ConcurrencyConflict: 409,
    InsufficientPoints: 422,
    RedemptionLimitExceeded: 422,
    PaymentFailed: 402,
    RefundFailed: 502,
    PaymentTimeout: 504,
}

@app.exception_handler(BookingEngineError)
async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    status_code = next(
        (code for exc_type, code in _STATUS_CODES.items() if isinstance(exc, exc_type)),
        500
    )
    if status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/booking-status", tags=["Enum Reference"])
async def get_booking_statuses():
    """Get all BookingStatus enum values"""
    return {
        "values": [f"{item.name}" for item in BookingStatus],
        "description": "Booking status values: CONFIRMED, CANCELLED, COMPLETED"
    }

@app.get("/api/enums/payment-method", tags=["Enum Reference"])
async def get_payment_methods():
    """Get all PaymentMethod enum values"""
    return {
        "values": [f"{item.name}" for item in PaymentMethod],
        "description": "Payment method values: CREDIT_CARD, DEBIT_CARD, PAYPAL, BANK_TRANSFER"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token_expires = timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    access_token = create_user_token(user, access_token_expires)
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return UserResponse(
        user_id=current_user.user_id,
        username=current_user.username,
        email=current_user.email,
        full_name=current_user.full_name,
        role=current_user.role.value,
        disabled=current_user.disabled
    )

# ============================================================================
# AVAILABILITY ENDPOINTS
# ============================================================================

@app.post("/api/availability/check", response_model=AvailabilityResponse, tags=["Availability"])
async def check_availability(
    request: CheckAvailabilityRequest,
    service: BookingOrchestrator = Depends(get_booking_orchestrator)
):
    """Check room availability for a stay"""
    result = await service.check_availability(
        hotel_id=request.hotel_id,
        check_in=request.check_in,
        check_out=request.check_out,
        number_of_guests=request.number_of_guests
    )
    return AvailabilityResponse(hotel_id=request.hotel_id, **result.model_dump())

# ============================================================================
# BOOKING ENDPOINTS
# ============================================================================

@app.post("/api/bookings", response_model=BookingResponse, status_code=201, tags=["Bookings"])
async def create_booking(
    request: CreateBookingRequest,
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Create a new booking"""
    try:
        booking = await service.create_booking(
            hotel_id=request.hotel_id,
            guest_name=request.guest_name,
            guest_email=request.guest_email,
            check_in=request.check_in,
            check_out=request.check_out,
            number_of_guests=request.number_of_guests,
            acting_user=current_user,
            points_to_redeem=request.points_to_redeem
        )
        return _booking_to_response(booking)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

@app.get("/api/bookings", response_model=List[BookingResponse], tags=["Bookings"])
async def get_all_bookings(
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Get all bookings (admin only)"""
    bookings = await service.list_bookings(current_user)
    return [_booking_to_response(b) for b in bookings]

@app.get("/api/bookings/my", response_model=List[BookingResponse], tags=["Bookings"])
async def get_my_bookings(
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Get the current user's bookings"""
    bookings = await service.list_my_bookings(current_user)
    return [_booking_to_response(b) for b in bookings]

@app.get("/api/bookings/guest/{email}", response_model=List[BookingResponse], tags=["Bookings"])
async def get_guest_bookings(
    email: str,
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Get bookings by guest email (admin only)"""
    bookings = await service.list_bookings_by_email(email, current_user)
    return [_booking_to_response(b) for b in bookings]

@app.get("/api/bookings/{booking_id}", response_model=BookingResponse, tags=["Bookings"])
async def get_booking(
    booking_id: UUID,
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Get booking by ID"""
    booking = await service.get_booking(booking_id, current_user)
    return _booking_to_response(booking)

@app.post("/api/bookings/{booking_id}/payment", response_model=PaymentResponse, tags=["Bookings"])
async def process_payment(
    booking_id: UUID,
    request: ProcessPaymentRequest,
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Pay for a booking"""
    payment_request = build_payment_request(
        amount=request.amount,
        currency=request.currency or Config.DEFAULT_CURRENCY,
        payment_method=request.payment_method,
        card_number=request.card_number,
        card_holder_name=request.card_holder_name,
        expiry_month=request.expiry_month,
        expiry_year=request.expiry_year,
        cvv=request.cvv
    )
    outcome = await service.process_payment(booking_id, payment_request, current_user)
    return _payment_to_response(outcome.payment, outcome.points_earned)

@app.post("/api/bookings/{booking_id}/cancel", response_model=CancellationResponse, tags=["Bookings"])
async def cancel_booking(
    booking_id: UUID,
    request: CancelBookingRequest = CancelBookingRequest(),
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel a booking, refunding its payment if there is one"""
    result = await service.cancel_booking(booking_id, current_user, reason=request.reason)
    return CancellationResponse(
        booking=_booking_to_response(result.booking),
        refund=_payment_to_response(result.refund) if result.refund else None,
        points_restored=result.reversal.points_restored,
        points_reversed=result.reversal.points_reversed,
        points_shortfall=result.reversal.shortfall
    )

@app.post("/api/bookings/{booking_id}/complete", response_model=BookingResponse, tags=["Bookings"])
async def complete_booking(
    booking_id: UUID,
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_admin_user)
):
    """Mark a booking completed after checkout (admin only)"""
    booking = await service.complete_booking(booking_id)
    return _booking_to_response(booking)

@app.delete("/api/bookings/{booking_id}", status_code=204, tags=["Bookings"])
async def delete_booking(
    booking_id: UUID,
    service: BookingOrchestrator = Depends(get_booking_orchestrator),
    current_user: User = Depends(get_current_active_user)
):
    """Delete an unpaid booking (admin only)"""
    await service.delete_booking(booking_id, current_user)

# ============================================================================
# LOYALTY ENDPOINTS
# ============================================================================

@app.get("/api/loyalty/account", response_model=LoyaltyAccountResponse, tags=["Loyalty"])
async def get_loyalty_account(
    ledger: LoyaltyLedger = Depends(get_loyalty_ledger),
    current_user: User = Depends(get_current_active_user)
):
    """Get the current user's points balance and recent activity"""
    account, recent = await ledger.get_account(current_user.user_id)
    if account is None:
        return LoyaltyAccountResponse(
            user_id=current_user.user_id,
            points_balance=0,
            total_points_earned=0,
            points_value=Decimal("0")
        )
    return LoyaltyAccountResponse(
        user_id=account.user_id,
        points_balance=account.points_balance,
        total_points_earned=account.total_points_earned,
        points_value=ledger.calculate_discount(account.points_balance),
        last_updated=account.last_updated,
        recent_transactions=[_transaction_to_response(t) for t in recent]
    )

@app.get("/api/loyalty/history", response_model=List[PointsTransactionResponse], tags=["Loyalty"])
async def get_loyalty_history(
    page: int = 1,
    page_size: int = 20,
    ledger: LoyaltyLedger = Depends(get_loyalty_ledger),
    current_user: User = Depends(get_current_active_user)
):
    """Get the current user's points history, newest first"""
    transactions = await ledger.get_history(current_user.user_id, page=page, page_size=page_size)
    return [_transaction_to_response(t) for t in transactions]

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _booking_to_response(booking) -> BookingResponse:
    """Convert Booking entity to BookingResponse"""
    return BookingResponse(
        booking_id=booking.booking_id,
        hotel_id=booking.hotel_id,
        user_id=booking.user_id,
        guest_name=booking.guest_name,
        guest_email=booking.guest_email,
        check_in=booking.date_range.check_in,
        check_out=booking.date_range.check_out,
        number_of_guests=booking.guest_count.count,
        rooms=booking.requested_rooms(),
        nights=booking.get_nights(),
        pre_discount_amount=booking.pre_discount_amount,
        total_amount=booking.total_amount,
        loyalty_points_redeemed=booking.loyalty_points_redeemed,
        loyalty_discount_amount=booking.loyalty_discount_amount,
        status=booking.status.value,
        payment_id=booking.payment_id,
        payment_required=booking.payment_required(),
        created_at=booking.created_at,
        modified_at=booking.modified_at,
        cancelled_at=booking.cancelled_at,
        cancellation_reason=booking.cancellation_reason,
        version=booking.version
    )

def _payment_to_response(payment, points_earned: int = 0) -> PaymentResponse:
    """Convert Payment entity to PaymentResponse"""
    return PaymentResponse(
        payment_id=payment.payment_id,
        booking_id=payment.booking_id,
        amount=payment.amount,
        currency=payment.currency,
        payment_method=payment.payment_method.value,
        status=payment.status.value,
        transaction_id=payment.transaction_id,
        refund_transaction_id=payment.refund_transaction_id,
        error_message=payment.error_message,
        processed_at=payment.processed_at,
        refunded_at=payment.refunded_at,
        loyalty_points_earned=points_earned
    )

def _transaction_to_response(transaction) -> PointsTransactionResponse:
    """Convert PointsTransaction entity to PointsTransactionResponse"""
    return PointsTransactionResponse(
        transaction_id=transaction.transaction_id,
        booking_id=transaction.booking_id,
        points_delta=transaction.points_delta,
        kind=transaction.kind.value,
        description=transaction.description,
        created_at=transaction.created_at
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
