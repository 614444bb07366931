"""Tests for the position ledger: fill application and exchange reconciliation."""
import threading
from decimal import Decimal

import pytest

from momentum_trader.execution import InMemoryExchange
from momentum_trader.models import Fill, OrderSide
from momentum_trader.position import PositionLedger


def _fill(fill_id, side=OrderSide.BUY, qty=10, symbol="🦄", order_id="o1"):
    return Fill(fill_id, order_id, symbol, side, qty, Decimal("19.00"))


def test_buy_and_sell_fills_move_position():
    ledger = PositionLedger()
    assert ledger.on_fill(_fill("f1", OrderSide.BUY, 10))
    assert ledger.on_fill(_fill("f2", OrderSide.SELL, 3))

    assert ledger.position("🦄") == 7
    assert ledger.fills_applied == 2


def test_duplicate_fill_applied_once():
    ledger = PositionLedger()
    fill = _fill("f1")

    assert ledger.on_fill(fill) is True
    assert ledger.on_fill(fill) is False
    assert ledger.on_fill(_fill("f1", qty=99)) is False

    assert ledger.position("🦄") == 10
    assert ledger.fills_applied == 1
    assert ledger.duplicate_fills == 2


def test_unknown_symbol_is_flat():
    ledger = PositionLedger(initial={"AAA": 5})
    assert ledger.position("AAA") == 5
    assert ledger.position("ZZZ") == 0
    assert ledger.positions() == {"AAA": 5}


def test_reconcile_overwrites_with_exchange_values():
    ledger = PositionLedger(initial={"AAA": 5, "BBB": 3})

    report = ledger.reconcile({"AAA": 8, "CCC": 2})

    assert ledger.positions() == {"AAA": 8, "BBB": 0, "CCC": 2}
    assert report.ok
    assert not report.in_sync
    assert report.checked == ["AAA", "BBB", "CCC"]
    deltas = {d.symbol: d.delta for d in report.discrepancies}
    assert deltas == {"AAA": 3, "BBB": -3, "CCC": 2}


def test_reconcile_in_sync():
    ledger = PositionLedger(initial={"AAA": 5})
    report = ledger.reconcile({"AAA": 5})
    assert report.in_sync
    assert report.discrepancies == []


@pytest.mark.asyncio
async def test_reconcile_with_exchange_uses_portfolio():
    exchange = InMemoryExchange(positions={"🦄": 12})
    ledger = PositionLedger(initial={"🦄": 10})

    report = await ledger.reconcile_with_exchange(exchange)

    assert report.ok
    assert ledger.position("🦄") == 12
    assert exchange.calls == ["fetch_portfolio"]


@pytest.mark.asyncio
async def test_reconcile_failure_keeps_local_positions():
    exchange = InMemoryExchange(positions={"🦄": 12})
    exchange.fail_next("fetch_portfolio")
    ledger = PositionLedger(initial={"🦄": 10})

    report = await ledger.reconcile_with_exchange(exchange)

    assert not report.ok
    assert "simulated" in report.error
    assert ledger.position("🦄") == 10


def test_concurrent_fills_are_not_lost():
    ledger = PositionLedger()

    def apply(worker):
        for i in range(50):
            ledger.on_fill(_fill(f"w{worker}-{i}", qty=1, symbol=f"S{worker % 2}"))
            # every worker also redelivers a shared fill
            ledger.on_fill(_fill("shared", qty=1, symbol="S0"))

    threads = [threading.Thread(target=apply, args=(w,)) for w in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert ledger.position("S0") + ledger.position("S1") == 401
    assert ledger.fills_applied == 401
    assert ledger.duplicate_fills == 399
