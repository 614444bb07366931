"""Fill reconciler: poll the exchange for executions and apply them.

Each cycle fetches fills after the last acknowledged cursor, retires the
matching tracked orders and forwards every fill to the position ledger. The
cursor only advances after a successful fetch, so a failed poll is simply
retried after the longer retry interval. The loop never stops itself on an
exchange error; only ``stop()`` ends it.
"""
import asyncio
from typing import Optional

from .async_event_loop import interruptible_sleep
from .execution import ExchangeAdapter
from .logging_setup import logger
from .models import Fill
from .order_state import OrderBook
from .position import PositionLedger


class FillReconciler:
    """Poll fills and keep OrderBook and PositionLedger up to date.

    Attributes:
        cursor: Last acknowledged pagination cursor (None before the first fetch)
        fills_processed: Fills handled, including duplicates
        failed_polls: Fetches that raised
    """

    def __init__(
        self,
        adapter: ExchangeAdapter,
        order_book: OrderBook,
        ledger: PositionLedger,
        *,
        poll_interval: float = 5.0,
        retry_interval: float = 10.0,
    ):
        self.adapter = adapter
        self.order_book = order_book
        self.ledger = ledger
        self.poll_interval = poll_interval
        self.retry_interval = retry_interval
        self.cursor: Optional[int] = None
        self.fills_processed = 0
        self.failed_polls = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start polling in a background task. Safe to call more than once."""
        if self.running:
            logger.warning("Fill reconciler is already running")
            return
        self._stop_event = asyncio.Event()
        logger.info(f"Starting fill reconciler | poll={self.poll_interval}s retry={self.retry_interval}s")
        self._task = asyncio.get_running_loop().create_task(self.run())

    async def stop(self) -> None:
        """Stop polling. Safe to call more than once."""
        task, self._task = self._task, None
        if self._stop_event is not None:
            self._stop_event.set()
        if task is None:
            return
        logger.info("Stopping fill reconciler")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def run(self) -> None:
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        stop_event = self._stop_event
        while not stop_event.is_set():
            try:
                ok = await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                # ledger dedups by fill id, so replaying this page is safe
                logger.exception("Fill processing failed, cursor not advanced")
                ok = False
            delay = self.poll_interval if ok else self.retry_interval
            if not ok:
                logger.warning(f"Fill polling failed, retrying in {delay}s")
            if await interruptible_sleep(stop_event, delay):
                break

    async def poll_once(self) -> bool:
        """Run one fetch-and-apply cycle.

        Returns:
            True if the fetch succeeded, False if it failed (cursor unchanged)
        """
        try:
            fills, next_cursor = await self.adapter.fetch_fills_since(self.cursor)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.failed_polls += 1
            logger.error(f"Failed to fetch fills | cursor={self.cursor} error={e}")
            return False

        if fills:
            logger.info(f"Received {len(fills)} new fills")
        else:
            logger.debug("No new fills received")

        for fill in fills:
            self.process_fill(fill)

        if next_cursor is not None:
            self.cursor = next_cursor
        return True

    def process_fill(self, fill: Fill) -> None:
        """Retire the matching order (if still tracked) and apply the fill."""
        logger.info(
            f"Processing fill | fill_id={fill.fill_id} order_id={fill.order_id} "
            f"{fill.symbol} {fill.side.value} {fill.quantity}@{fill.price}"
        )
        removed = self.order_book.remove(fill.order_id, symbol=fill.symbol)
        if removed is None:
            logger.debug(f"Order not tracked, likely already retired | order_id={fill.order_id}")
        self.ledger.on_fill(fill)
        self.fills_processed += 1
