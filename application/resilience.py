"""Bounded retries and timeouts shared by the application services"""
import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from domain.exceptions import ConcurrencyConflict, PaymentTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_conflict(operation: Callable[[], Awaitable[T]], max_attempts: int, description: str) -> T:
    """Run ``operation`` again on ConcurrencyConflict, at most ``max_attempts`` times"""
    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except ConcurrencyConflict:
            if attempt == attempts:
                logger.warning("%s: giving up after %d conflicting attempts", description, attempt)
                raise
            logger.warning("%s: concurrency conflict on attempt %d, retrying", description, attempt)
            await asyncio.sleep(0)
    raise ConcurrencyConflict(f"{description}: retries exhausted")


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await a gateway call, turning an expired deadline into PaymentTimeout"""
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        logger.warning("Payment gateway %s timed out after %.1fs", operation, timeout)
        raise PaymentTimeout(f"Payment gateway {operation} timed out after {timeout:.1f} seconds")
