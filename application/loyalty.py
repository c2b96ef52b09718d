"""Loyalty ledger: earning, redemption and reversal of points"""
import logging
from decimal import Decimal, ROUND_FLOOR
from typing import List, Optional, Tuple
from uuid import UUID

from domain.entities import Booking, LoyaltyAccount, PointsTransaction, ReversalShortfall, MAX_DISCOUNT_RATIO
from domain.enums import PointsTransactionKind
from domain.exceptions import InsufficientPoints, RedemptionLimitExceeded, ValidationError
from domain.value_objects import RedemptionResult, ReversalResult

logger = logging.getLogger(__name__)

EARN_RATE = Decimal("0.10")
POINT_VALUE = Decimal("1")


class LoyaltyLedger:
    """Points ledger and cached account balances.

    The ledger rows are the source of truth. Every movement posts a row and
    updates the account's cached balance inside the caller's unit of work, so
    a redemption commits or rolls back together with the booking it pays for.
    """

    def __init__(self, uow_factory=None):
        self.uow_factory = uow_factory

    # ==================== CALCULATIONS ====================
    @staticmethod
    def calculate_points(amount: Decimal) -> int:
        """Points earned for a paid amount, rounded down"""
        if amount <= 0:
            return 0
        return int((Decimal(amount) * EARN_RATE).to_integral_value(rounding=ROUND_FLOOR))

    @staticmethod
    def calculate_discount(points: int) -> Decimal:
        return Decimal(points) * POINT_VALUE

    # ==================== MOVEMENTS ====================
    async def _get_or_create_account(self, uow, user_id: UUID) -> LoyaltyAccount:
        account = await uow.loyalty_accounts.find_by_user_id(user_id)
        if account is None:
            account = LoyaltyAccount(user_id=user_id)
            logger.info("Opening loyalty account %s for user %s", account.account_id, user_id)
        return account

    async def earn(self, uow, user_id: UUID, booking_amount: Decimal, booking_id: UUID) -> int:
        """Credit points for a paid booking; a second call for the same booking is a no-op"""
        rows = await uow.points_transactions.find_by_booking(booking_id)
        if any(row.kind == PointsTransactionKind.EARN for row in rows):
            logger.info("Points for booking %s already earned, skipping", booking_id)
            return 0

        points = self.calculate_points(booking_amount)
        if points == 0:
            return 0

        account = await self._get_or_create_account(uow, user_id)
        transaction = account.post(
            points,
            PointsTransactionKind.EARN,
            f"Earned {points} points for booking {booking_id}",
            booking_id=booking_id
        )
        await uow.points_transactions.add(transaction)
        await uow.loyalty_accounts.save(account)

        logger.info("User %s earned %d points for booking %s, balance %d",
                    user_id, points, booking_id, account.points_balance)
        return points

    async def redeem(
        self,
        uow,
        user_id: UUID,
        points: int,
        pre_discount_amount: Decimal,
        booking_id: Optional[UUID] = None
    ) -> RedemptionResult:
        """Debit points against a booking; rejected outright rather than clamped"""
        if points is None or points < 1:
            raise ValidationError("Points to redeem must be at least 1")

        discount = self.calculate_discount(points)
        max_discount = pre_discount_amount * MAX_DISCOUNT_RATIO
        if discount > max_discount:
            raise RedemptionLimitExceeded(
                f"Loyalty discount of {discount} exceeds the maximum of {max_discount} "
                f"(50% of the booking amount)"
            )

        account = await uow.loyalty_accounts.find_by_user_id(user_id)
        balance = account.points_balance if account is not None else 0
        if points > balance:
            raise InsufficientPoints(
                f"Insufficient loyalty points. Available: {balance}, requested: {points}",
                balance=balance,
                requested=points
            )

        transaction = account.post(
            -points,
            PointsTransactionKind.REDEEM,
            f"Redeemed {points} points for booking {booking_id}",
            booking_id=booking_id
        )
        await uow.points_transactions.add(transaction)
        await uow.loyalty_accounts.save(account)

        logger.info("User %s redeemed %d points (discount %s), balance %d",
                    user_id, points, discount, account.points_balance)
        return RedemptionResult(
            points_redeemed=points,
            discount_amount=discount,
            new_balance=account.points_balance
        )

    async def reverse(self, uow, booking: Booking) -> ReversalResult:
        """Undo a booking's loyalty effects.

        Redeemed points come back first. Earned points are then taken back,
        but never more than the current balance; whatever could not be
        collected is recorded as a shortfall. Running it twice changes nothing.
        """
        if booking.user_id is None:
            return ReversalResult()

        rows = await uow.points_transactions.find_by_booking(booking.booking_id)
        if not rows:
            return ReversalResult()

        account = await uow.loyalty_accounts.find_by_user_id(booking.user_id)
        if account is None:
            return ReversalResult()

        redeemed = -sum(r.points_delta for r in rows if r.kind == PointsTransactionKind.REDEEM)
        restored_before = sum(r.points_delta for r in rows if r.kind == PointsTransactionKind.REDEMPTION_REFUND)
        to_restore = redeemed - restored_before

        restored = 0
        if to_restore > 0:
            transaction = account.post(
                to_restore,
                PointsTransactionKind.REDEMPTION_REFUND,
                f"Restored {to_restore} redeemed points for cancelled booking {booking.booking_id}",
                booking_id=booking.booking_id
            )
            await uow.points_transactions.add(transaction)
            restored = to_restore

        earned = sum(r.points_delta for r in rows if r.kind == PointsTransactionKind.EARN)
        reversed_before = -sum(r.points_delta for r in rows if r.kind == PointsTransactionKind.EARN_REVERSAL)
        recorded_shortfall = sum(
            s.points for s in await uow.shortfalls.find_by_user_id(booking.user_id)
            if s.booking_id == booking.booking_id
        )
        outstanding = earned - reversed_before - recorded_shortfall

        reversed_points = 0
        shortfall = 0
        if outstanding > 0:
            reversed_points = min(outstanding, account.points_balance)
            shortfall = outstanding - reversed_points
            if reversed_points > 0:
                transaction = account.post(
                    -reversed_points,
                    PointsTransactionKind.EARN_REVERSAL,
                    f"Reversed {reversed_points} earned points for cancelled booking {booking.booking_id}",
                    booking_id=booking.booking_id
                )
                await uow.points_transactions.add(transaction)
            if shortfall > 0:
                await uow.shortfalls.add(ReversalShortfall(
                    user_id=booking.user_id,
                    booking_id=booking.booking_id,
                    points=shortfall
                ))
                logger.warning(
                    "Could not reverse %d of %d earned points for booking %s: already spent",
                    shortfall, outstanding, booking.booking_id
                )

        if restored or reversed_points:
            await uow.loyalty_accounts.save(account)
            logger.info(
                "Reversed loyalty for booking %s: restored %d, reversed %d, balance %d",
                booking.booking_id, restored, reversed_points, account.points_balance
            )

        return ReversalResult(points_restored=restored, points_reversed=reversed_points, shortfall=shortfall)

    # ==================== QUERIES ====================
    async def get_account(
        self,
        user_id: UUID,
        recent: int = 10
    ) -> Tuple[Optional[LoyaltyAccount], List[PointsTransaction]]:
        """Account with its most recent ledger rows, newest first"""
        async with self.uow_factory() as uow:
            account = await uow.loyalty_accounts.find_by_user_id(user_id)
            if account is None:
                return None, []
            rows = await uow.points_transactions.find_by_account(account.account_id)
        return account, list(reversed(rows))[:recent]

    async def get_history(self, user_id: UUID, page: int = 1, page_size: int = 20) -> List[PointsTransaction]:
        if page < 1 or page_size < 1:
            raise ValidationError("Page and page size must be positive")
        async with self.uow_factory() as uow:
            account = await uow.loyalty_accounts.find_by_user_id(user_id)
            if account is None:
                return []
            rows = await uow.points_transactions.find_by_account(account.account_id)
        newest_first = list(reversed(rows))
        start = (page - 1) * page_size
        return newest_first[start:start + page_size]

    async def verify_account(self, user_id: UUID) -> dict:
        """Recompute the balance from the ledger and compare with the cached one"""
        async with self.uow_factory() as uow:
            account = await uow.loyalty_accounts.find_by_user_id(user_id)
            if account is None:
                return {"user_id": user_id, "cached_balance": 0, "ledger_balance": 0,
                        "total_points_earned": 0, "consistent": True}
            rows = await uow.points_transactions.find_by_account(account.account_id)

        ledger_balance = sum(r.points_delta for r in rows)
        ledger_earned = sum(r.points_delta for r in rows if r.kind == PointsTransactionKind.EARN)
        consistent = ledger_balance == account.points_balance and ledger_earned == account.total_points_earned
        if not consistent:
            logger.warning(
                "Loyalty account %s drifted: cached %d, ledger %d",
                account.account_id, account.points_balance, ledger_balance
            )
        return {
            "user_id": user_id,
            "cached_balance": account.points_balance,
            "ledger_balance": ledger_balance,
            "total_points_earned": account.total_points_earned,
            "consistent": consistent
        }
