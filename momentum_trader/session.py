"""Trading session orchestrator.

Runs the engine's independent loops on one event loop:

- market data: poll top-of-book for every symbol, record mid-prices,
  refresh the cached P&L estimate
- decisions: started with an offset so it interleaves with market data;
  derive a momentum signal per symbol and execute it
- fills: FillReconciler applying executions to the order book and ledger
- reconciliation: overwrite ledger positions with exchange holdings,
  once at start and then periodically

The session ends when ``max_orders`` orders have been placed or when
``stop()`` is called. Stopping interrupts every sleeping loop at once and
cancels in-flight exchange calls.
"""
import asyncio
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from .async_event_loop import PeriodicTask
from .config import TradingConfig
from .execution import ExchangeAdapter, ExecutionResult, OrderExecutor
from .fill_reconciler import FillReconciler
from .logging_setup import logger
from .models import DataCorruptionError, OrderSide
from .momentum import generate_signal
from .order_state import OrderBook
from .pnl import estimate_pnl
from .position import PositionLedger, ReconciliationReport
from .price_history import PriceHistory
from .rate_limit_policy import RateLimitedAdapter, RateLimitQuota, RequestBudget


@dataclass
class SessionState:
    """Mutable session bookkeeping, owned by SessionOrchestrator."""
    orders_placed: int = 0
    started_at: Optional[float] = None  # wall clock, for display
    started_monotonic: Optional[float] = None
    cached_pnl: Optional[Decimal] = None
    last_buy: Optional[str] = None
    last_sell: Optional[str] = None
    running: bool = False


@dataclass(frozen=True)
class SessionStatus:
    """Read-only snapshot returned by SessionOrchestrator.status()."""
    orders_placed: int
    max_orders: int
    elapsed_seconds: float
    estimated_pnl: Optional[Decimal]
    last_buy: Optional[str]
    last_sell: Optional[str]
    running: bool

    def as_dict(self) -> Dict:
        return {
            "orders_placed": self.orders_placed,
            "max_orders": self.max_orders,
            "elapsed_seconds": round(self.elapsed_seconds, 1),
            "estimated_pnl": float(self.estimated_pnl) if self.estimated_pnl is not None else None,
            "last_buy": self.last_buy,
            "last_sell": self.last_sell,
            "running": self.running,
        }


class SessionOrchestrator:
    """Compose budget, history, signals, execution and fills into one session.

    Args:
        adapter: Raw exchange adapter; every call is routed through the request budget
        config: Engine configuration (defaults to TradingConfig.default())
    """

    def __init__(self, adapter: ExchangeAdapter, config: Optional[TradingConfig] = None):
        self.config = config or TradingConfig.default()
        self.symbols: List[str] = list(self.config.session.symbols)

        self.budget = RequestBudget(RateLimitQuota(
            permits_per_window=self.config.rate_limit.permits_per_window,
            window_seconds=self.config.rate_limit.window_seconds,
        ))
        self.exchange = RateLimitedAdapter(adapter, self.budget)
        self.price_history = PriceHistory(capacity=self.config.strategy.history_size)
        self.order_book = OrderBook()
        self.ledger = PositionLedger()
        self.signal_params = self.config.strategy.signal_params()
        self.executor = OrderExecutor(self.exchange, self.ledger, self.order_book, self.config.execution)
        self.fill_reconciler = FillReconciler(
            self.exchange,
            self.order_book,
            self.ledger,
            poll_interval=self.config.session.fill_poll_interval,
            retry_interval=self.config.session.fill_retry_interval,
        )

        self._state = SessionState()
        self._state_lock = threading.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._loops: List[asyncio.Task] = []
        self._supervisor: Optional[asyncio.Task] = None

    # -- lifecycle -----------------------------------------------------

    @property
    def max_orders(self) -> int:
        return self.config.session.max_orders

    @property
    def running(self) -> bool:
        with self._state_lock:
            return self._state.running

    def should_stop(self) -> bool:
        with self._state_lock:
            return self._state.orders_placed >= self.max_orders

    def _active(self) -> bool:
        return (
            self._stop_event is not None
            and not self._stop_event.is_set()
            and not self.should_stop()
        )

    async def start(self) -> None:
        """Start every loop in the background and return immediately.

        Calling start() on a running session is a no-op.
        """
        if self._supervisor is not None and not self._supervisor.done():
            logger.warning("Trading session already running")
            return

        s = self.config.session
        self._stop_event = asyncio.Event()
        with self._state_lock:
            self._state.running = True
            self._state.started_at = time.time()
            self._state.started_monotonic = time.monotonic()

        logger.info(f"Starting trading session | symbols={self.symbols}")
        logger.info(
            f"Price polling every {s.price_poll_interval}s, decisions every "
            f"{s.decision_interval}s with {s.decision_offset}s offset"
        )
        logger.info(f"Session runs until stopped or {self.max_orders} orders are placed")

        self.budget.start()
        self.fill_reconciler.start()

        loops = [
            PeriodicTask("Position reconciliation", self.reconcile_positions,
                         s.reconcile_interval, self._stop_event),
            PeriodicTask("Market data", self.poll_market_data,
                         s.price_poll_interval, self._stop_event,
                         should_continue=self._active),
            PeriodicTask("Decision", self.run_decision_cycle,
                         s.decision_interval, self._stop_event,
                         initial_delay=s.decision_offset, should_continue=self._active),
        ]
        loop = asyncio.get_running_loop()
        self._loops = [loop.create_task(task.run()) for task in loops]
        self._supervisor = loop.create_task(self._supervise())

    async def stop(self) -> None:
        """Stop the session and wait until every loop has ended. Idempotent."""
        if self._stop_event is None:
            return
        if not self._stop_event.is_set():
            logger.info("Stopping trading session...")
            self._stop_event.set()
        await self.wait_closed()

    async def wait_closed(self) -> None:
        """Wait until the session has fully shut down."""
        if self._supervisor is not None:
            await asyncio.shield(self._supervisor)

    async def run(self) -> SessionStatus:
        """Start the session, wait for it to end, and return the final status."""
        await self.start()
        try:
            await self.wait_closed()
        finally:
            await self.stop()
        return self.status()

    async def _supervise(self) -> None:
        await self._stop_event.wait()
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        await self.fill_reconciler.stop()
        await self.budget.close()
        with self._state_lock:
            self._state.running = False
            orders = self._state.orders_placed
        logger.info(f"Trading session stopped | orders_placed={orders}/{self.max_orders}")

    def _request_stop(self, reason: str) -> None:
        if self._stop_event is not None and not self._stop_event.is_set():
            logger.info(f"Trading session completed | reason={reason}")
            self._stop_event.set()

    # -- status --------------------------------------------------------

    def status(self) -> SessionStatus:
        """Return a snapshot of the session. Safe to call from any task or thread."""
        with self._state_lock:
            state = replace(self._state)
        elapsed = 0.0
        if state.started_monotonic is not None:
            elapsed = time.monotonic() - state.started_monotonic
        return SessionStatus(
            orders_placed=state.orders_placed,
            max_orders=self.max_orders,
            elapsed_seconds=elapsed,
            estimated_pnl=state.cached_pnl,
            last_buy=state.last_buy,
            last_sell=state.last_sell,
            running=state.running,
        )

    # -- loops ---------------------------------------------------------

    async def poll_market_data(self) -> None:
        """Record a mid-price for every symbol, then refresh the cached P&L."""
        results = await asyncio.gather(
            *(self.poll_symbol(symbol) for symbol in self.symbols),
            return_exceptions=True,
        )
        for symbol, result in zip(self.symbols, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, Exception):
                logger.error(f"Failed to poll price | symbol={symbol} error={result}")
        await self.refresh_pnl()

    async def poll_symbol(self, symbol: str) -> Optional[Decimal]:
        book = await self.exchange.fetch_top_of_book(symbol)
        mid = book.mid_price
        if mid is None or mid <= 0:
            logger.warning(f"Could not calculate valid mid price | symbol={symbol}")
            return None
        self.price_history.record(symbol, mid)
        return mid

    async def refresh_pnl(self) -> None:
        try:
            portfolio = await self.exchange.fetch_portfolio()
        except Exception as e:
            logger.debug(f"Could not update P&L cache | error={e}")
            return
        mids = {}
        for symbol in self.symbols:
            latest = self.price_history.latest(symbol)
            if latest is not None:
                mids[symbol] = latest.mid_price
        pnl = estimate_pnl(portfolio, mids, self.config.session.initial_cash)
        if pnl is None:
            logger.debug("P&L unavailable: missing mid price for a held symbol")
            return
        with self._state_lock:
            self._state.cached_pnl = pnl
        logger.debug(f"Updated cached P&L | pnl={pnl:.2f}")

    async def run_decision_cycle(self) -> List[ExecutionResult]:
        """Decide and execute for every symbol in turn."""
        results = []
        # one symbol at a time so the order cap is never overshot
        for symbol in self.symbols:
            if not self._active():
                break
            result = await self.decide(symbol)
            if result is not None:
                results.append(result)
        return results

    async def decide(self, symbol: str) -> Optional[ExecutionResult]:
        """Derive a signal for ``symbol`` and execute it if there is one."""
        snapshot = self.price_history.snapshot(symbol)
        try:
            signal = generate_signal(symbol, snapshot, self.signal_params)
        except DataCorruptionError as e:
            logger.warning(f"Corrupted price history | symbol={symbol} error={e}")
            return None
        if signal is None:
            logger.debug(f"No trading signal | symbol={symbol}")
            return None

        result = await self.executor.execute(symbol, signal)
        if result.placed:
            self._record_order(result)
        else:
            logger.info(f"No order placed | symbol={symbol} reason={result.reason}")
        return result

    def _record_order(self, result: ExecutionResult) -> None:
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
        with self._state_lock:
            self._state.orders_placed += 1
            n = self._state.orders_placed
            descriptor = (
                f"{result.signal.side.value.title()} #{n}: {result.quantity} {result.symbol} "
                f"@ {result.limit_price} ({stamp} UTC)"
            )
            if result.signal.side is OrderSide.BUY:
                self._state.last_buy = descriptor
            else:
                self._state.last_sell = descriptor
        logger.info(f"Order placed successfully | total_orders={n}/{self.max_orders}")
        if n >= self.max_orders:
            self._request_stop(f"reached maximum orders ({self.max_orders})")

    async def reconcile_positions(self) -> ReconciliationReport:
        return await self.ledger.reconcile_with_exchange(self.exchange)
