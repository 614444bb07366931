import asyncio
from decimal import Decimal

import pytest

from momentum_trader.execution import InMemoryExchange
from momentum_trader.fill_reconciler import FillReconciler
from momentum_trader.models import Fill, OrderSide
from momentum_trader.order_state import OrderBook
from momentum_trader.position import PositionLedger


async def _setup(**kwargs):
    exchange = InMemoryExchange()
    book = OrderBook()
    ledger = PositionLedger()
    reconciler = FillReconciler(exchange, book, ledger, **kwargs)
    order = await exchange.submit_limit_order("🦄", OrderSide.BUY, 10, Decimal("19.00"))
    book.track(order)
    return exchange, book, ledger, reconciler, order


@pytest.mark.asyncio
async def test_poll_applies_fill_and_retires_order():
    exchange, book, ledger, reconciler, order = await _setup()
    exchange.fill_order(order.order_id)

    assert await reconciler.poll_once() is True

    assert ledger.position("🦄") == 10
    assert book.get(order.order_id) is None
    assert reconciler.cursor == 1
    assert reconciler.fills_processed == 1


@pytest.mark.asyncio
async def test_cursor_only_moves_forward_on_success():
    exchange, _, ledger, reconciler, order = await _setup()
    exchange.fill_order(order.order_id, quantity=4)
    await reconciler.poll_once()
    assert reconciler.cursor == 1

    exchange.fill_order(order.order_id, quantity=6)
    exchange.fail_next("fetch_fills_since")
    assert await reconciler.poll_once() is False
    assert reconciler.cursor == 1
    assert reconciler.failed_polls == 1
    assert ledger.position("🦄") == 4

    assert await reconciler.poll_once() is True
    assert reconciler.cursor == 2
    assert ledger.position("🦄") == 10


@pytest.mark.asyncio
async def test_empty_poll_keeps_cursor():
    _, _, _, reconciler, _ = await _setup()
    assert await reconciler.poll_once() is True
    assert reconciler.cursor == 0
    assert reconciler.fills_processed == 0


@pytest.mark.asyncio
async def test_redelivered_fill_counted_once():
    exchange, _, ledger, reconciler, order = await _setup()
    fill = exchange.fill_order(order.order_id)
    exchange.replay_fill(fill)

    await reconciler.poll_once()

    assert reconciler.fills_processed == 2
    assert ledger.position("🦄") == 10
    assert ledger.duplicate_fills == 1


@pytest.mark.asyncio
async def test_fill_for_untracked_order_still_updates_position():
    _, book, ledger, reconciler, _ = await _setup()
    fill = Fill("x1", "foreign-order", "🦄", OrderSide.BUY, 3, Decimal("20"))

    reconciler.process_fill(fill)

    assert ledger.position("🦄") == 3
    assert len(book) == 1


@pytest.mark.asyncio
async def test_background_loop_retries_after_failure():
    exchange, _, ledger, reconciler, order = await _setup(poll_interval=0.01, retry_interval=0.02)
    exchange.fail_next("fetch_fills_since", times=2)
    exchange.fill_order(order.order_id)

    reconciler.start()
    reconciler.start()  # second start is ignored
    assert reconciler.running
    for _ in range(100):
        if ledger.position("🦄") == 10:
            break
        await asyncio.sleep(0.01)
    await reconciler.stop()
    await reconciler.stop()

    assert not reconciler.running
    assert reconciler.failed_polls == 2
    assert ledger.position("🦄") == 10
