"""In-process stand-ins for the hotel catalog, payment gateway and cache"""
import asyncio
import logging
import random
import string
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from domain.collaborators import HotelCatalog, PaymentGateway, CacheInvalidator
from domain.enums import PaymentMethod, PaymentStatus
from domain.value_objects import Hotel, CardDetails, GatewayResult

logger = logging.getLogger(__name__)


class InMemoryHotelCatalog(HotelCatalog):
    """Hotel catalog backed by a dict"""

    def __init__(self, hotels: Optional[Iterable[Hotel]] = None):
        self._hotels: Dict[str, Hotel] = {}
        for hotel in hotels or []:
            self.add(hotel)

    def add(self, hotel: Hotel) -> Hotel:
        self._hotels[hotel.hotel_id] = hotel
        return hotel

    async def get_hotel(self, hotel_id: str) -> Optional[Hotel]:
        return self._hotels.get(hotel_id)

    def all(self) -> List[Hotel]:
        return list(self._hotels.values())


class MockPaymentGateway(PaymentGateway):
    """Simulated processor with configurable latency and success rates"""

    def __init__(
        self,
        success_rate: float = 0.9,
        refund_success_rate: float = 0.95,
        delay_seconds: float = 1.0,
        refund_delay_seconds: float = 0.5,
        rng: Optional[random.Random] = None
    ):
        self.success_rate = success_rate
        self.refund_success_rate = refund_success_rate
        self.delay_seconds = delay_seconds
        self.refund_delay_seconds = refund_delay_seconds
        self._rng = rng or random.Random()
        self._charges: Dict[str, Decimal] = {}
        self._refunded: set = set()

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: PaymentMethod,
        card: CardDetails
    ) -> GatewayResult:
        logger.info("Processing %s charge of %s %s", payment_method.value, amount, currency)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)

        transaction_id = self._generate_transaction_id()
        if self._rng.random() >= self.success_rate:
            return GatewayResult(
                status=PaymentStatus.FAILED,
                transaction_id=transaction_id,
                error_message="Payment processing failed - insufficient funds or card declined"
            )

        self._charges[transaction_id] = amount
        return GatewayResult(status=PaymentStatus.COMPLETED, transaction_id=transaction_id)

    async def refund(self, transaction_id: str, amount: Decimal) -> GatewayResult:
        logger.info("Processing refund of %s for transaction %s", amount, transaction_id)
        charged = self._charges.get(transaction_id)
        if charged is None:
            return GatewayResult(status=PaymentStatus.FAILED, error_message="Payment not found")
        if transaction_id in self._refunded:
            return GatewayResult(
                status=PaymentStatus.FAILED,
                error_message="Cannot refund a payment that is not completed"
            )
        if amount > charged:
            return GatewayResult(
                status=PaymentStatus.FAILED,
                error_message="Refund amount cannot exceed original payment amount"
            )

        if self.refund_delay_seconds:
            await asyncio.sleep(self.refund_delay_seconds)

        if self._rng.random() >= self.refund_success_rate:
            return GatewayResult(
                status=PaymentStatus.FAILED,
                error_message="Refund processing failed - please try again later"
            )

        self._refunded.add(transaction_id)
        return GatewayResult(
            status=PaymentStatus.REFUNDED,
            transaction_id=self._generate_transaction_id(),
            processed_at=datetime.utcnow()
        )

    def _generate_transaction_id(self) -> str:
        """12-character alphanumeric transaction id"""
        return ''.join(self._rng.choices(string.ascii_uppercase + string.digits, k=12))


class RecordingCacheInvalidator(CacheInvalidator):
    """Keeps a log of invalidated hotels for whoever owns the listing cache"""

    def __init__(self):
        self.invalidated: List[str] = []

    async def invalidate_hotel(self, hotel_id: str) -> None:
        logger.debug("Invalidating listing cache for hotel %s", hotel_id)
        self.invalidated.append(hotel_id)
