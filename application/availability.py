"""Room availability for a hotel over a half-open date range"""
import logging
from datetime import date
from typing import Iterable, Tuple

from domain.collaborators import HotelCatalog
from domain.entities import Booking
from domain.exceptions import HotelNotFound, ValidationError
from domain.value_objects import AvailabilityResult, DateRange, GuestCount, Hotel

logger = logging.getLogger(__name__)


class AvailabilityCalculator:
    """Derives occupancy from non-cancelled bookings; no inventory counter is kept"""

    def __init__(self, hotel_catalog: HotelCatalog, uow_factory):
        self.hotel_catalog = hotel_catalog
        self.uow_factory = uow_factory

    @staticmethod
    def validate_stay(check_in: date, check_out: date, number_of_guests: int) -> Tuple[DateRange, GuestCount]:
        """Build the stay value objects, reporting bad input as ValidationError"""
        errors = []
        date_range = guest_count = None
        try:
            date_range = DateRange(check_in=check_in, check_out=check_out)
        except ValueError:
            errors.append("Check-out must be after check-in")
        try:
            guest_count = GuestCount(count=number_of_guests)
        except ValueError:
            errors.append("Number of guests must be between 1 and 10")
        if errors:
            raise ValidationError("; ".join(errors), errors)
        return date_range, guest_count

    async def get_hotel(self, hotel_id: str) -> Hotel:
        hotel = await self.hotel_catalog.get_hotel(hotel_id)
        if hotel is None:
            raise HotelNotFound(f"Hotel with ID {hotel_id} does not exist.")
        return hotel

    async def check_availability(
        self,
        hotel_id: str,
        check_in: date,
        check_out: date,
        number_of_guests: int
    ) -> AvailabilityResult:
        """Check whether the hotel can take the requested stay"""
        date_range, guest_count = self.validate_stay(check_in, check_out, number_of_guests)
        hotel = await self.get_hotel(hotel_id)

        async with self.uow_factory() as uow:
            bookings = await uow.bookings.find_by_hotel(hotel_id)

        return self.evaluate(hotel, date_range, guest_count, bookings)

    @staticmethod
    def occupied_rooms(bookings: Iterable[Booking], date_range: DateRange) -> int:
        """Rooms held by confirmed or completed bookings overlapping the range"""
        return sum(
            booking.requested_rooms()
            for booking in bookings
            if booking.occupies_rooms() and booking.overlaps(date_range.check_in, date_range.check_out)
        )

    @classmethod
    def evaluate(
        cls,
        hotel: Hotel,
        date_range: DateRange,
        guest_count: GuestCount,
        bookings: Iterable[Booking]
    ) -> AvailabilityResult:
        requested = guest_count.rooms_required()
        occupied = cls.occupied_rooms(bookings, date_range)
        available = max(0, hotel.total_rooms - occupied)
        nights = date_range.nights()
        is_available = hotel.total_rooms > 0 and available >= requested

        if is_available:
            message = f"{available} room(s) available for {nights} night(s)"
        elif hotel.total_rooms == 0:
            message = "This hotel has no rooms"
        else:
            message = f"Only {available} room(s) available, {requested} required"

        logger.debug(
            "Availability for hotel %s %s..%s: occupied=%d available=%d requested=%d",
            hotel.hotel_id, date_range.check_in, date_range.check_out, occupied, available, requested
        )

        return AvailabilityResult(
            is_available=is_available,
            available_rooms=available,
            requested_rooms=requested,
            total_price=hotel.price_per_night * nights,
            nights=nights,
            message=message
        )
