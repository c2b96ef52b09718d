"""In-Memory Repository Implementations

Committed state lives in an ``InMemoryStore``. Each ``InMemoryUnitOfWork``
hands out deep copies through an identity map, stages writes, and applies
them to the store in a single step on commit after checking that nothing it
read has been changed by another unit of work in the meantime.
"""
import logging
from typing import Optional, List, Dict, Set, Tuple, Any
from uuid import UUID

from domain.repositories import (
    BookingRepository, PaymentRepository, LoyaltyAccountRepository,
    PointsTransactionRepository, ShortfallRepository, UnitOfWork
)
from domain.entities import Booking, Payment, LoyaltyAccount, PointsTransaction, ReversalShortfall
from domain.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Committed state shared by every unit of work"""

    def __init__(self):
        self.bookings: Dict[UUID, Booking] = {}
        self.payments: Dict[UUID, Payment] = {}
        self.accounts: Dict[UUID, LoyaltyAccount] = {}
        self.transactions: List[PointsTransaction] = []
        self.shortfalls: List[ReversalShortfall] = []
        # bumped every time a hotel's occupancy changes
        self.hotel_versions: Dict[str, int] = {}

    def hotel_version(self, hotel_id: str) -> int:
        return self.hotel_versions.get(hotel_id, 0)


class InMemoryBookingRepository(BookingRepository):
    """In-memory implementation of BookingRepository"""

    def __init__(self, store: InMemoryStore, uow: "InMemoryUnitOfWork"):
        self._store = store
        self._uow = uow

    def _load(self, booking_id: UUID) -> Optional[Booking]:
        key = ("booking", booking_id)
        if key in self._uow._identity:
            return self._uow._identity[key]
        if booking_id in self._uow._deleted_bookings:
            return None
        stored = self._store.bookings.get(booking_id)
        if stored is None:
            return None
        return self._uow._track(key, stored.model_copy(deep=True), stored.version)

    def _matching(self, predicate) -> List[Booking]:
        ids = {b.booking_id for b in self._store.bookings.values() if predicate(b)}
        ids.update(
            entity.booking_id for (kind, _), entity in self._uow._identity.items()
            if kind == "booking" and predicate(entity)
        )
        results = []
        for booking_id in ids:
            booking = self._load(booking_id)
            if booking is not None and predicate(booking):
                results.append(booking)
        return sorted(results, key=lambda b: b.created_at)

    async def save(self, booking: Booking) -> Booking:
        """Stage booking for commit"""
        key = ("booking", booking.booking_id)
        if key not in self._uow._identity:
            self._uow._track(key, booking, None)
        self._uow._identity[key] = booking
        self._uow._dirty.add(key)
        return booking

    async def find_by_id(self, booking_id: UUID) -> Optional[Booking]:
        """Find booking by ID"""
        return self._load(booking_id)

    async def find_by_hotel(self, hotel_id: str) -> List[Booking]:
        """Find bookings for a hotel and pin its occupancy version"""
        self._uow._pin_hotel(hotel_id)
        return self._matching(lambda b: b.hotel_id == hotel_id)

    async def find_by_user_id(self, user_id: UUID) -> List[Booking]:
        """Find bookings by owner"""
        return self._matching(lambda b: b.user_id == user_id)

    async def find_by_email(self, email: str) -> List[Booking]:
        """Find bookings by guest email"""
        wanted = email.lower()
        return self._matching(lambda b: b.guest_email.lower() == wanted)

    async def find_all(self) -> List[Booking]:
        """Find all bookings"""
        return self._matching(lambda b: True)

    async def delete(self, booking_id: UUID) -> bool:
        """Delete booking"""
        booking = self._load(booking_id)
        if booking is None:
            return False
        key = ("booking", booking_id)
        self._uow._identity.pop(key, None)
        self._uow._dirty.discard(key)
        self._uow._deleted_bookings[booking_id] = booking
        return True


class InMemoryPaymentRepository(PaymentRepository):
    """In-memory implementation of PaymentRepository"""

    def __init__(self, store: InMemoryStore, uow: "InMemoryUnitOfWork"):
        self._store = store
        self._uow = uow

    def _load(self, payment_id: UUID) -> Optional[Payment]:
        key = ("payment", payment_id)
        if key in self._uow._identity:
            return self._uow._identity[key]
        stored = self._store.payments.get(payment_id)
        if stored is None:
            return None
        return self._uow._track(key, stored.model_copy(deep=True), stored.version)

    async def save(self, payment: Payment) -> Payment:
        key = ("payment", payment.payment_id)
        if key not in self._uow._identity:
            self._uow._track(key, payment, None)
        self._uow._identity[key] = payment
        self._uow._dirty.add(key)
        return payment

    async def find_by_id(self, payment_id: UUID) -> Optional[Payment]:
        return self._load(payment_id)

    async def find_by_booking(self, booking_id: UUID) -> List[Payment]:
        ids = {p.payment_id for p in self._store.payments.values() if p.booking_id == booking_id}
        ids.update(
            entity.payment_id for (kind, _), entity in self._uow._identity.items()
            if kind == "payment" and entity.booking_id == booking_id
        )
        payments = [self._load(payment_id) for payment_id in ids]
        return sorted((p for p in payments if p is not None), key=lambda p: p.created_at)


class InMemoryLoyaltyAccountRepository(LoyaltyAccountRepository):
    """In-memory implementation of LoyaltyAccountRepository, keyed by user"""

    def __init__(self, store: InMemoryStore, uow: "InMemoryUnitOfWork"):
        self._store = store
        self._uow = uow

    async def find_by_user_id(self, user_id: UUID) -> Optional[LoyaltyAccount]:
        key = ("account", user_id)
        if key in self._uow._identity:
            return self._uow._identity[key]
        stored = self._store.accounts.get(user_id)
        if stored is None:
            # remember the absence so a concurrent lazy creation is detected
            self._uow._read_versions.setdefault(key, None)
            return None
        return self._uow._track(key, stored.model_copy(deep=True), stored.version)

    async def save(self, account: LoyaltyAccount) -> LoyaltyAccount:
        key = ("account", account.user_id)
        if key not in self._uow._identity and key not in self._uow._read_versions:
            self._uow._read_versions[key] = None
        self._uow._identity[key] = account
        self._uow._dirty.add(key)
        return account


class InMemoryPointsTransactionRepository(PointsTransactionRepository):
    """Append-only in-memory ledger"""

    def __init__(self, store: InMemoryStore, uow: "InMemoryUnitOfWork"):
        self._store = store
        self._uow = uow

    async def add(self, transaction: PointsTransaction) -> PointsTransaction:
        self._uow._new_transactions.append(transaction)
        return transaction

    async def find_by_account(self, account_id: UUID) -> List[PointsTransaction]:
        return [
            t for t in self._store.transactions + self._uow._new_transactions
            if t.account_id == account_id
        ]

    async def find_by_booking(self, booking_id: UUID) -> List[PointsTransaction]:
        return [
            t for t in self._store.transactions + self._uow._new_transactions
            if t.booking_id == booking_id
        ]


class InMemoryShortfallRepository(ShortfallRepository):

    def __init__(self, store: InMemoryStore, uow: "InMemoryUnitOfWork"):
        self._store = store
        self._uow = uow

    async def add(self, shortfall: ReversalShortfall) -> ReversalShortfall:
        self._uow._new_shortfalls.append(shortfall)
        return shortfall

    async def find_by_user_id(self, user_id: UUID) -> List[ReversalShortfall]:
        return [s for s in await self.find_all() if s.user_id == user_id]

    async def find_all(self) -> List[ReversalShortfall]:
        return self._store.shortfalls + self._uow._new_shortfalls


class InMemoryUnitOfWork(UnitOfWork):
    """Unit of work over an InMemoryStore with optimistic version checks"""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._changed_hotels: Set[str] = set()
        self._reset()

    def _reset(self) -> None:
        self._identity: Dict[Tuple[str, Any], Any] = {}
        self._read_versions: Dict[Tuple[str, Any], Optional[int]] = {}
        self._dirty: Set[Tuple[str, Any]] = set()
        self._deleted_bookings: Dict[UUID, Booking] = {}
        self._new_transactions: List[PointsTransaction] = []
        self._new_shortfalls: List[ReversalShortfall] = []
        self.bookings = InMemoryBookingRepository(self._store, self)
        self.payments = InMemoryPaymentRepository(self._store, self)
        self.loyalty_accounts = InMemoryLoyaltyAccountRepository(self._store, self)
        self.points_transactions = InMemoryPointsTransactionRepository(self._store, self)
        self.shortfalls = InMemoryShortfallRepository(self._store, self)

    def _track(self, key, entity, version):
        self._identity[key] = entity
        self._read_versions.setdefault(key, version)
        return entity

    def _pin_hotel(self, hotel_id: str) -> None:
        self._read_versions.setdefault(("hotel", hotel_id), self._store.hotel_version(hotel_id))

    @property
    def changed_hotels(self) -> Set[str]:
        return set(self._changed_hotels)

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        self._reset()
        self._changed_hotels = set()
        return self

    def _current_version(self, key) -> Optional[int]:
        kind, ident = key
        if kind == "hotel":
            return self._store.hotel_version(ident)
        source = {
            "booking": self._store.bookings,
            "payment": self._store.payments,
            "account": self._store.accounts,
        }[kind]
        stored = source.get(ident)
        return stored.version if stored is not None else None

    def _check_versions(self) -> None:
        keys = {k for k in self._read_versions if k[0] == "hotel"}
        keys.update(self._dirty)
        keys.update(("booking", booking_id) for booking_id in self._deleted_bookings)
        for key in keys:
            expected = self._read_versions.get(key)
            current = self._current_version(key)
            if current != expected:
                logger.info("Version conflict on %s: read %s, now %s", key, expected, current)
                raise ConcurrencyConflict(f"Concurrent modification detected on {key[0]} {key[1]}")

    async def commit(self) -> None:
        # no awaits below: the check and the apply happen in one step
        self._check_versions()

        changed_hotels: Set[str] = set()
        for key in self._dirty:
            kind, ident = key
            entity = self._identity[key]
            previous = self._read_versions.get(key)
            entity.version = (previous or 0) + 1
            if kind == "booking":
                before = self._store.bookings.get(ident)
                if before is None or before.occupies_rooms() != entity.occupies_rooms() \
                        or before.date_range != entity.date_range or before.guest_count != entity.guest_count:
                    changed_hotels.add(entity.hotel_id)
                self._store.bookings[ident] = entity.model_copy(deep=True)
            elif kind == "payment":
                self._store.payments[ident] = entity.model_copy(deep=True)
            elif kind == "account":
                self._store.accounts[ident] = entity.model_copy(deep=True)

        for booking_id, booking in self._deleted_bookings.items():
            self._store.bookings.pop(booking_id, None)
            changed_hotels.add(booking.hotel_id)

        for hotel_id in changed_hotels:
            self._store.hotel_versions[hotel_id] = self._store.hotel_version(hotel_id) + 1

        self._store.transactions.extend(self._new_transactions)
        self._store.shortfalls.extend(self._new_shortfalls)

        self._changed_hotels = changed_hotels
        self._reset()

    async def rollback(self) -> None:
        if self._dirty or self._new_transactions or self._deleted_bookings:
            logger.debug(
                "Rolling back unit of work, discarding %d staged entities and %d ledger rows",
                len(self._dirty), len(self._new_transactions)
            )
        self._reset()


class InMemoryUnitOfWorkFactory:
    """Creates units of work bound to one shared store"""

    def __init__(self, store: Optional[InMemoryStore] = None):
        self.store = store or InMemoryStore()

    def __call__(self) -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(self.store)
