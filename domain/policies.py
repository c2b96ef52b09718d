"""Booking validation policies selected by the acting user's role.

Guests are held to the stay-length, advance-window and self-overlap rules;
administrators and hotel managers book on behalf of walk-in guests and long
stays, so they get a policy that accepts any well-formed request.
"""
from abc import ABC, abstractmethod
from datetime import date, timedelta
from typing import List, Iterable

from domain.enums import UserRole
from domain.value_objects import BookingRequest

MAX_STAY_NIGHTS = 30
MAX_ADVANCE_DAYS = 365


class BookingPolicy(ABC):
    """Business-rule checks applied before availability is consulted"""

    name: str = "base"

    @abstractmethod
    def violations(self, request: BookingRequest, existing_bookings: Iterable, today: date) -> List[str]:
        """Return human-readable rule violations; empty when the request is acceptable"""
        pass


class GuestPolicy(BookingPolicy):
    name = "guest"

    def violations(self, request: BookingRequest, existing_bookings: Iterable, today: date) -> List[str]:
        errors = []
        date_range = request.date_range

        if date_range.check_in < today:
            errors.append("Check-in date must be today or later")

        if (date_range.check_out - date_range.check_in).days > MAX_STAY_NIGHTS:
            errors.append(f"Booking duration cannot exceed {MAX_STAY_NIGHTS} days.")

        if date_range.check_in > today + timedelta(days=MAX_ADVANCE_DAYS):
            errors.append("Bookings cannot be made more than 1 year in advance.")

        # existing_bookings are the acting user's own bookings at this hotel
        for booking in existing_bookings:
            if booking.occupies_rooms() and booking.overlaps(date_range.check_in, date_range.check_out):
                errors.append(
                    "You already have a booking at this hotel that overlaps with the requested dates."
                )
                break

        return errors


class PrivilegedPolicy(BookingPolicy):
    name = "privileged"

    def violations(self, request: BookingRequest, existing_bookings: Iterable, today: date) -> List[str]:
        return []


_PRIVILEGED_ROLES = (UserRole.ADMIN, UserRole.HOTEL_MANAGER)


def policy_for(role: UserRole) -> BookingPolicy:
    if role in _PRIVILEGED_ROLES:
        return PrivilegedPolicy()
    return GuestPolicy()
