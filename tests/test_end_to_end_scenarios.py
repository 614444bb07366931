"""End-to-end scenarios: signal → order → fill → position, and budget under load."""
import asyncio
from collections import Counter
from decimal import Decimal

import pytest

from momentum_trader.execution import ExecutionState, InMemoryExchange, OrderExecutor
from momentum_trader.fill_reconciler import FillReconciler
from momentum_trader.models import OrderSide
from momentum_trader.momentum import generate_signal
from momentum_trader.order_state import OrderBook
from momentum_trader.position import PositionLedger
from momentum_trader.price_history import PriceHistory
from momentum_trader.rate_limit_policy import RateLimitedAdapter, RateLimitQuota, RequestBudget


def _engine():
    exchange = InMemoryExchange()
    history = PriceHistory()
    book = OrderBook()
    ledger = PositionLedger()
    executor = OrderExecutor(exchange, ledger, book)
    reconciler = FillReconciler(exchange, book, ledger)
    return exchange, history, book, ledger, executor, reconciler


def _record(history, prices):
    for price in prices:
        history.record("🦄", price)


@pytest.mark.asyncio
async def test_rising_prices_buy_fill_and_position():
    exchange, history, book, ledger, executor, reconciler = _engine()
    _record(history, [100] + [101] * 9 + [103])
    exchange.set_book("🦄", best_bid="19.90", best_ask="20")

    signal = generate_signal("🦄", history.snapshot("🦄"))
    assert signal.side is OrderSide.BUY
    assert signal.confidence == Decimal("0.03")

    result = await executor.execute("🦄", signal)
    assert result.state is ExecutionState.TRACKED
    assert (result.quantity, result.limit_price) == (10, Decimal("19.00"))
    assert len(book) == 1

    exchange.fill_order(result.order.order_id)
    await reconciler.poll_once()

    assert len(book) == 0
    assert ledger.position("🦄") == 10
    assert exchange.positions["🦄"] == 10


@pytest.mark.asyncio
async def test_falling_prices_without_position_submit_nothing():
    exchange, history, book, ledger, executor, _ = _engine()
    _record(history, [100] + [99] * 9 + [97])
    exchange.set_book("🦄", best_bid="19", best_ask="20")

    signal = generate_signal("🦄", history.snapshot("🦄"))
    assert signal.side is OrderSide.SELL

    result = await executor.execute("🦄", signal)

    assert result.state is ExecutionState.REJECTED
    assert exchange.submitted == []
    assert "submit_limit_order" not in exchange.calls
    assert len(book) == 0
    assert ledger.position("🦄") == 0


@pytest.mark.asyncio
async def test_duplicate_fill_delivery_applied_once():
    exchange, _, book, ledger, executor, reconciler = _engine()
    exchange.set_book("🦄", best_bid="19.90", best_ask="20")
    buy = await executor.execute("🦄", generate_signal("🦄", _rising()))
    fill = exchange.fill_order(buy.order.order_id)

    await reconciler.poll_once()
    exchange.replay_fill(fill)
    await reconciler.poll_once()

    assert ledger.position("🦄") == 10
    assert ledger.fills_applied == 1
    assert ledger.duplicate_fills == 1
    assert reconciler.fills_processed == 2


def _rising():
    history = PriceHistory()
    for price in [100] * 10 + [105]:
        history.record("🦄", price)
    return history.snapshot("🦄")


class RecordingExchange(InMemoryExchange):
    def __init__(self, budget):
        super().__init__()
        self.budget = budget
        self.generations = []

    async def fetch_top_of_book(self, symbol):
        self.generations.append(self.budget.refills)
        return await super().fetch_top_of_book(symbol)


@pytest.mark.asyncio
async def test_hundred_concurrent_calls_respect_budget():
    budget = RequestBudget(RateLimitQuota(permits_per_window=40, window_seconds=0.05))
    exchange = RecordingExchange(budget)
    adapter = RateLimitedAdapter(exchange, budget)

    async with budget:
        books = await asyncio.wait_for(
            asyncio.gather(*(adapter.fetch_top_of_book("🦄") for _ in range(100))),
            timeout=5.0,
        )

    assert len(books) == 100
    assert budget.blocked_requests > 0
    per_window = Counter(exchange.generations)
    assert max(per_window.values()) <= 40
    assert per_window[0] == 40
