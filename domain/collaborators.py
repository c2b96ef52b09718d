"""Contracts for the external systems the booking engine consumes"""
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Optional

from domain.enums import PaymentMethod
from domain.value_objects import Hotel, CardDetails, GatewayResult


class HotelCatalog(ABC):
    """Read-only source of hotel inventory and pricing"""

    @abstractmethod
    async def get_hotel(self, hotel_id: str) -> Optional[Hotel]:
        pass


class PaymentGateway(ABC):
    """Opaque, possibly slow payment processor"""

    @abstractmethod
    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: PaymentMethod,
        card: CardDetails
    ) -> GatewayResult:
        """Returns COMPLETED or FAILED"""
        pass

    @abstractmethod
    async def refund(self, transaction_id: str, amount: Decimal) -> GatewayResult:
        """Returns REFUNDED or FAILED"""
        pass


class CacheInvalidator(ABC):
    """Notified whenever a booking changes hotel occupancy"""

    @abstractmethod
    async def invalidate_hotel(self, hotel_id: str) -> None:
        pass
