"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import Optional, List, Set
from uuid import UUID

from domain.entities import Booking, Payment, LoyaltyAccount, PointsTransaction, ReversalShortfall


class BookingRepository(ABC):
    """Repository interface for Booking Aggregate"""

    @abstractmethod
    async def save(self, booking: Booking) -> Booking:
        """Stage a new or modified booking"""
        pass

    @abstractmethod
    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID"""
        pass

    @abstractmethod
    async def find_by_hotel(self, hotel_id: str) -> List[Booking]:
        """Find every booking on a hotel; pins the hotel's occupancy version"""
        pass

    @abstractmethod
    async def find_by_user_id(self, user_id: UUID) -> List[Booking]:
        """Find bookings owned by a user"""
        pass

    @abstractmethod
    async def find_by_email(self, email: str) -> List[Booking]:
        """Find bookings by guest email (case-insensitive)"""
        pass

    @abstractmethod
    async def find_all(self) -> List[Booking]:
        """Find all bookings"""
        pass

    @abstractmethod
    async def delete(self, booking_id: UUID) -> bool:
        """Delete booking"""
        pass


class PaymentRepository(ABC):
    """Repository interface for payment attempts"""

    @abstractmethod
    async def save(self, payment: Payment) -> Payment:
        pass

    @abstractmethod
    async def find_by_id(self, payment_id: UUID) -> Optional[Payment]:
        pass

    @abstractmethod
    async def find_by_booking(self, booking_id: UUID) -> List[Payment]:
        pass


class LoyaltyAccountRepository(ABC):
    """Repository interface for LoyaltyAccount Aggregate"""

    @abstractmethod
    async def find_by_user_id(self, user_id: UUID) -> Optional[LoyaltyAccount]:
        pass

    @abstractmethod
    async def save(self, account: LoyaltyAccount) -> LoyaltyAccount:
        pass


class PointsTransactionRepository(ABC):
    """Append-only ledger of points movements"""

    @abstractmethod
    async def add(self, transaction: PointsTransaction) -> PointsTransaction:
        pass

    @abstractmethod
    async def find_by_account(self, account_id: UUID) -> List[PointsTransaction]:
        """Ledger rows for an account, oldest first"""
        pass

    @abstractmethod
    async def find_by_booking(self, booking_id: UUID) -> List[PointsTransaction]:
        pass


class ShortfallRepository(ABC):
    """Uncollectible reversal amounts awaiting reconciliation"""

    @abstractmethod
    async def add(self, shortfall: ReversalShortfall) -> ReversalShortfall:
        pass

    @abstractmethod
    async def find_by_user_id(self, user_id: UUID) -> List[ReversalShortfall]:
        pass

    @abstractmethod
    async def find_all(self) -> List[ReversalShortfall]:
        pass


class UnitOfWork(ABC):
    """Staged set of writes committed atomically or discarded as a whole.

    Used as ``async with uow_factory() as uow``: leaving the block normally
    commits, leaving it through an exception rolls everything back.
    """

    bookings: BookingRepository
    payments: PaymentRepository
    loyalty_accounts: LoyaltyAccountRepository
    points_transactions: PointsTransactionRepository
    shortfalls: ShortfallRepository

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.commit()
        else:
            await self.rollback()

    @property
    @abstractmethod
    def changed_hotels(self) -> Set[str]:
        """Hotels whose occupancy changed in the last commit"""
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass
