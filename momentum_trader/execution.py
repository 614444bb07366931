"""
Order execution: turn a trading signal into one priced, sized limit order.

Provides the exchange adapter boundary, an in-memory exchange used by tests
and the simulated session, and the OrderExecutor decision state machine.

Decision States:
    IDLE → SIGNAL_RECEIVED → PRICED → SUBMITTED → TRACKED
                    ↓            ↓          ↓
                 REJECTED     REJECTED   REJECTED

Sizing Rules:
    BUY:  limit = best_ask * (1 - discount), qty = floor(budget / limit)
    SELL: limit = best_bid, qty = max(1, floor(position * fraction)),
          only when the tracked position is strictly positive
"""

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import ROUND_FLOOR, Decimal
from enum import Enum, auto
from typing import Dict, List, Optional, Set, Tuple

from .config import ExecutionConfig
from .logging_setup import logger
from .models import Fill, OrderSide, Portfolio, TopOfBook, TradingSignal, require_symbol, to_decimal
from .order_state import OrderBook, OrderStatus, TrackedOrder


class ExchangeError(Exception):
    """Transient exchange failure: network, timeout, or a rejected request."""


class RateLimitExceededError(ExchangeError):
    """Raised when the exchange keeps rate limiting after backoff is exhausted."""


class ExchangeAdapter(ABC):
    """Async boundary to the exchange.

    All prices are Decimal, quantities are int. Implementations raise
    ExchangeError for anything that went wrong on the way to or at the
    exchange.
    """

    @abstractmethod
    async def fetch_top_of_book(self, symbol: str) -> TopOfBook:
        """Return best bid/ask for symbol. Either side may be None."""

    @abstractmethod
    async def fetch_portfolio(self) -> Portfolio:
        """Return cash and share holdings."""

    async def fetch_portfolio_positions(self) -> Dict[str, int]:
        """Return share holdings keyed by symbol."""
        portfolio = await self.fetch_portfolio()
        return dict(portfolio.positions)

    @abstractmethod
    async def submit_limit_order(
        self, symbol: str, side: OrderSide, quantity: int, limit_price: Decimal
    ) -> TrackedOrder:
        """Place a limit order and return it as acknowledged by the exchange."""

    @abstractmethod
    async def fetch_fills_since(self, cursor: Optional[int]) -> Tuple[List[Fill], Optional[int]]:
        """Return fills after ``cursor`` and the cursor to use for the next call."""


class InMemoryExchange(ExchangeAdapter):
    """A deterministic exchange used for tests and simulated sessions.

    Tests drive it directly: set books with ``set_book``, execute resting
    orders with ``fill_order``, or inject failures with ``fail_next``.
    Cash and positions move when orders are filled.
    """

    def __init__(self, cash: Decimal = Decimal("100000"), positions: Optional[Dict[str, int]] = None):
        self.cash = to_decimal(cash)
        self.positions: Dict[str, int] = dict(positions or {})
        self.books: Dict[str, TopOfBook] = {}
        self.orders: Dict[str, TrackedOrder] = {}
        self.fills: List[Fill] = []
        self.submitted: List[TrackedOrder] = []
        self.calls: List[str] = []
        self._failures: Dict[str, List[Exception]] = {}
        self._order_ids = itertools.count(1)
        self._fill_ids = itertools.count(1)
        self._lock = threading.Lock()

    def set_book(self, symbol: str, best_bid=None, best_ask=None) -> None:
        self.books[symbol] = TopOfBook(
            symbol=symbol,
            best_bid=to_decimal(best_bid) if best_bid is not None else None,
            best_ask=to_decimal(best_ask) if best_ask is not None else None,
        )

    def fail_next(self, method: str, error: Optional[Exception] = None, times: int = 1) -> None:
        """Make the next ``times`` calls to ``method`` raise ``error``."""
        error = error or ExchangeError(f"simulated {method} failure")
        self._failures.setdefault(method, []).extend([error] * times)

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    async def fetch_top_of_book(self, symbol: str) -> TopOfBook:
        self._enter("fetch_top_of_book")
        return self.books.get(symbol, TopOfBook(symbol=symbol))

    async def fetch_portfolio(self) -> Portfolio:
        self._enter("fetch_portfolio")
        return Portfolio(cash=self.cash, positions=dict(self.positions))

    async def submit_limit_order(
        self, symbol: str, side: OrderSide, quantity: int, limit_price: Decimal
    ) -> TrackedOrder:
        self._enter("submit_limit_order")
        order = TrackedOrder(
            order_id=f"m{next(self._order_ids)}",
            symbol=symbol,
            side=side,
            quantity=quantity,
            limit_price=limit_price,
        )
        self.orders[order.order_id] = order
        self.submitted.append(order)
        return order

    async def fetch_fills_since(self, cursor: Optional[int]) -> Tuple[List[Fill], Optional[int]]:
        self._enter("fetch_fills_since")
        start = cursor or 0
        with self._lock:
            fills = [f for f in self.fills if f.cursor is not None and f.cursor > start]
            next_cursor = max([start] + [f.cursor for f in fills])
        return fills, next_cursor

    def fill_order(self, order_id: str, quantity: Optional[int] = None, price=None) -> Fill:
        """Execute (part of) a resting order and publish the fill."""
        order = self.orders[order_id]
        qty = quantity if quantity is not None else order.quantity
        px = to_decimal(price) if price is not None else order.limit_price
        with self._lock:
            seq = next(self._fill_ids)
            fill = Fill(
                fill_id=f"f{seq}",
                order_id=order_id,
                symbol=order.symbol,
                side=order.side,
                quantity=qty,
                price=px,
                cursor=seq,
            )
            self.fills.append(fill)
        order.status = OrderStatus.FILLED if qty >= order.quantity else OrderStatus.PARTIALLY_FILLED
        self.positions[order.symbol] = self.positions.get(order.symbol, 0) + fill.signed_quantity
        self.cash -= px * fill.signed_quantity
        return fill

    def replay_fill(self, fill: Fill) -> Fill:
        """Publish an already delivered fill again under a new cursor."""
        with self._lock:
            seq = next(self._fill_ids)
            again = Fill(
                fill_id=fill.fill_id,
                order_id=fill.order_id,
                symbol=fill.symbol,
                side=fill.side,
                quantity=fill.quantity,
                price=fill.price,
                cursor=seq,
            )
            self.fills.append(again)
        return again


class ExecutionState(Enum):
    """States of a single decision."""

    IDLE = auto()
    SIGNAL_RECEIVED = auto()
    PRICED = auto()
    SUBMITTED = auto()
    TRACKED = auto()
    REJECTED = auto()


@dataclass
class ExecutionResult:
    """Outcome of executing one signal.

    Attributes:
        symbol: Instrument
        signal: The signal that was acted on
        state: Final ExecutionState (TRACKED or REJECTED)
        reason: Why the decision ended where it did
        order: The tracked order when state is TRACKED
        limit_price: Computed limit price, if pricing was reached
        quantity: Computed quantity, if pricing was reached
        history: Every state the decision passed through
    """

    symbol: str
    signal: TradingSignal
    state: ExecutionState = ExecutionState.IDLE
    reason: str = ""
    order: Optional[TrackedOrder] = None
    limit_price: Optional[Decimal] = None
    quantity: Optional[int] = None
    history: List[ExecutionState] = field(default_factory=lambda: [ExecutionState.IDLE])

    @property
    def placed(self) -> bool:
        return self.state is ExecutionState.TRACKED

    def advance(self, state: ExecutionState, reason: str = "") -> "ExecutionResult":
        self.state = state
        self.history.append(state)
        if reason:
            self.reason = reason
        return self


class OrderExecutor:
    """Execute trading signals against the exchange.

    Responsibilities:
    - Price and size one limit order per signal
    - Refuse to act on an empty book side or without a position to sell
    - Register acknowledged orders in the OrderBook
    - Allow at most one in-flight decision per symbol

    Attributes:
        adapter: Exchange adapter (normally rate limited)
        ledger: PositionLedger read for SELL sizing
        order_book: OrderBook receiving acknowledged orders
        config: ExecutionConfig sizing parameters
    """

    def __init__(self, adapter: ExchangeAdapter, ledger, order_book: OrderBook,
                 config: Optional[ExecutionConfig] = None):
        self.adapter = adapter
        self.ledger = ledger
        self.order_book = order_book
        self.config = config or ExecutionConfig()
        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    def buy_terms(self, book: TopOfBook) -> Tuple[Decimal, int]:
        """Return (limit_price, quantity) for a BUY against ``book``.

        The limit is the discounted ask as computed, never rounded up past it.
        """
        limit_price = book.best_ask * (Decimal(1) - self.config.buy_discount_pct)
        if limit_price <= 0:
            return limit_price, 0
        quantity = int((self.config.budget_per_trade / limit_price).to_integral_value(rounding=ROUND_FLOOR))
        return limit_price, quantity

    def sell_terms(self, book: TopOfBook, position: int) -> Tuple[Decimal, int]:
        """Return (limit_price, quantity) for a SELL of part of ``position``."""
        fraction = Decimal(position) * self.config.sell_fraction_pct
        quantity = max(1, int(fraction.to_integral_value(rounding=ROUND_FLOOR)))
        return book.best_bid, quantity

    async def execute(
        self, symbol: str, signal: TradingSignal, book: Optional[TopOfBook] = None
    ) -> ExecutionResult:
        """Execute ``signal`` for ``symbol``.

        Args:
            symbol: Instrument to trade
            signal: Signal from generate_signal()
            book: Top-of-book to price against; fetched when omitted

        Returns:
            ExecutionResult ending in TRACKED or REJECTED. Exchange errors are
            reported as REJECTED, never raised.
        """
        require_symbol(symbol)
        result = ExecutionResult(symbol=symbol, signal=signal)

        with self._in_flight_lock:
            if symbol in self._in_flight:
                logger.info(f"Decision already in flight | symbol={symbol}")
                return result.advance(ExecutionState.REJECTED, "decision already in flight")
            self._in_flight.add(symbol)

        try:
            return await self._execute(result, book)
        finally:
            with self._in_flight_lock:
                self._in_flight.discard(symbol)

    async def _execute(self, result: ExecutionResult, book: Optional[TopOfBook]) -> ExecutionResult:
        symbol, signal = result.symbol, result.signal
        result.advance(ExecutionState.SIGNAL_RECEIVED)
        logger.info(
            f"Executing signal | symbol={symbol} side={signal.side.value} "
            f"confidence={signal.confidence:.4f}"
        )

        if book is None:
            try:
                book = await self.adapter.fetch_top_of_book(symbol)
            except ExchangeError as e:
                logger.error(f"Order book fetch failed | symbol={symbol} error={e}")
                return result.advance(ExecutionState.REJECTED, f"order book unavailable: {e}")

        if not book.has_side_for(signal.side):
            logger.warning(f"Empty order book side | symbol={symbol} side={signal.side.value}")
            return result.advance(ExecutionState.REJECTED, "empty order book")

        if signal.side is OrderSide.BUY:
            limit_price, quantity = self.buy_terms(book)
            if quantity <= 0:
                logger.info(
                    f"Buy rejected | symbol={symbol} qty={quantity} limit={limit_price} "
                    f"budget={self.config.budget_per_trade}"
                )
                return result.advance(ExecutionState.REJECTED, "budget too small for one share")
        else:
            position = self.ledger.position(symbol)
            if position <= 0:
                logger.debug(f"Ignoring sell signal | symbol={symbol} position={position}")
                return result.advance(ExecutionState.REJECTED, "no position to sell")
            limit_price, quantity = self.sell_terms(book, position)

        result.limit_price = limit_price
        result.quantity = quantity
        result.advance(ExecutionState.PRICED)
        logger.info(
            f"Placing order | symbol={symbol} side={signal.side.value} qty={quantity} limit={limit_price}"
        )

        result.advance(ExecutionState.SUBMITTED)
        try:
            order = await self.adapter.submit_limit_order(symbol, signal.side, quantity, limit_price)
        except ExchangeError as e:
            logger.error(f"Order submission failed | symbol={symbol} side={signal.side.value} error={e}")
            return result.advance(ExecutionState.REJECTED, f"submission failed: {e}")

        self.order_book.track(order)
        result.order = order
        logger.info(f"Order placed | order_id={order.order_id} symbol={symbol} side={signal.side.value}")
        return result.advance(ExecutionState.TRACKED, "order tracked")
