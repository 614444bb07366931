"""Rate-limit policy: a discrete request budget refilled once per window.

The exchange allows 50 requests per second. The engine keeps a margin and
hands out a fixed number of permits (40 by default) that are all restored
at the start of every window, regardless of how many were used. This is a
bucket refill rather than a smoothly leaking token bucket: a burst can
consume the whole budget at once, after which every caller waits for the
next refill.
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from .execution import ExchangeAdapter
from .logging_setup import logger
from .models import Fill, OrderSide, Portfolio, TopOfBook
from .order_state import TrackedOrder


@dataclass
class RateLimitQuota:
    """Permit budget for one refill window."""
    permits_per_window: int = 40  # 80% of the exchange's 50 req/sec cap
    window_seconds: float = 1.0


class RequestBudget:
    """Bound the rate of outbound exchange calls.

    ``acquire()`` never fails; it only delays the caller until a permit is
    available. The refill timer runs as a background task on the current
    event loop and must be started with ``start()`` (or ``async with``).

    Attributes:
        blocked_requests: Number of acquisitions that found the bucket empty
        refills: Number of refill ticks that have run so far
    """

    STATUS_LOG_EVERY = 10  # refills between status lines

    def __init__(self, quota: Optional[RateLimitQuota] = None):
        self.quota = quota or RateLimitQuota()
        if self.quota.permits_per_window <= 0:
            raise ValueError("permits_per_window must be positive")
        if self.quota.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._available = self.quota.permits_per_window
        self._condition: Optional[asyncio.Condition] = None
        self._refill_task: Optional[asyncio.Task] = None
        self.blocked_requests = 0
        self.refills = 0

    async def __aenter__(self) -> "RequestBudget":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    @property
    def capacity(self) -> int:
        return self.quota.permits_per_window

    @property
    def available_permits(self) -> int:
        return self._available

    @property
    def running(self) -> bool:
        return self._refill_task is not None and not self._refill_task.done()

    def _get_condition(self) -> asyncio.Condition:
        # Created lazily so the condition binds to the loop that uses it.
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    def start(self) -> None:
        """Start the refill timer. Calling it twice is a no-op."""
        if self.running:
            return
        self._get_condition()
        self._refill_task = asyncio.get_running_loop().create_task(self._refill_loop())
        logger.info(
            f"Request budget started | permits={self.capacity} "
            f"window={self.quota.window_seconds}s"
        )

    async def close(self) -> None:
        """Cancel the refill timer."""
        task, self._refill_task = self._refill_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info(f"Request budget closed | total_blocked={self.blocked_requests}")

    async def acquire(self) -> None:
        """Wait for and take one permit."""
        condition = self._get_condition()
        async with condition:
            if self._available == 0:
                self.blocked_requests += 1
                logger.warning("Rate limit hit | no permits available, waiting for refill")
                await condition.wait_for(lambda: self._available > 0)
            self._available -= 1
            logger.trace(f"Permit acquired | remaining={self._available}")

    async def refill(self) -> int:
        """Restore the bucket to capacity. Returns the number of permits released."""
        condition = self._get_condition()
        async with condition:
            released = self.capacity - self._available
            self.refills += 1
            if released <= 0:
                return 0
            self._available = self.capacity
            condition.notify_all()
        return released

    async def _refill_loop(self) -> None:
        try:
            while True:
                await asyncio.sleep(self.quota.window_seconds)
                await self.refill()
                if self.refills % self.STATUS_LOG_EVERY == 0:
                    self._log_status()
        except asyncio.CancelledError:
            logger.debug("Request budget refill timer cancelled")
            raise

    def _log_status(self) -> None:
        used = self.capacity - self._available
        logger.info(
            f"Rate limiter status | used={used}/{self.capacity} "
            f"available={self._available} total_blocked={self.blocked_requests}"
        )


class RateLimitedAdapter(ExchangeAdapter):
    """Exchange adapter wrapper that takes a budget permit before every call."""

    def __init__(self, adapter: ExchangeAdapter, budget: RequestBudget):
        self.adapter = adapter
        self.budget = budget

    async def fetch_top_of_book(self, symbol: str) -> TopOfBook:
        await self.budget.acquire()
        return await self.adapter.fetch_top_of_book(symbol)

    async def fetch_portfolio(self) -> Portfolio:
        await self.budget.acquire()
        return await self.adapter.fetch_portfolio()

    async def submit_limit_order(
        self, symbol: str, side: OrderSide, quantity: int, limit_price: Decimal
    ) -> TrackedOrder:
        await self.budget.acquire()
        return await self.adapter.submit_limit_order(symbol, side, quantity, limit_price)

    async def fetch_fills_since(self, cursor: Optional[int]) -> Tuple[List[Fill], Optional[int]]:
        await self.budget.acquire()
        return await self.adapter.fetch_fills_since(cursor)
