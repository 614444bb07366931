import threading
from decimal import Decimal

import pytest

from momentum_trader.models import DataCorruptionError
from momentum_trader.price_history import PriceHistory


def test_snapshot_is_newest_first():
    history = PriceHistory(capacity=5)
    for price in ("100", "101", "102"):
        history.record("🦄", price)

    prices = [p.mid_price for p in history.snapshot("🦄")]
    assert prices == [Decimal("102"), Decimal("101"), Decimal("100")]
    assert history.latest("🦄").mid_price == Decimal("102")


def test_capacity_evicts_oldest():
    history = PriceHistory(capacity=3)
    for price in range(100, 106):
        history.record("ABC", price)

    assert history.size("ABC") == 3
    assert [int(p.mid_price) for p in history.snapshot("ABC")] == [105, 104, 103]


def test_record_rejects_non_positive_price():
    history = PriceHistory()
    with pytest.raises(DataCorruptionError):
        history.record("ABC", 0)
    with pytest.raises(DataCorruptionError):
        history.record("ABC", "-1.5")
    assert history.size("ABC") == 0


def test_record_rejects_blank_symbol():
    history = PriceHistory()
    with pytest.raises(DataCorruptionError):
        history.record("  ", 100)


def test_record_keeps_explicit_timestamp():
    history = PriceHistory()
    point = history.record("ABC", 100, timestamp=1_700_000_000_000)
    assert point.timestamp == 1_700_000_000_000


def test_at_index_semantics():
    history = PriceHistory()
    for price in (10, 11, 12):
        history.record("ABC", price)

    assert history.at("ABC", 0).mid_price == Decimal("12")
    assert history.at("ABC", 2).mid_price == Decimal("10")
    assert history.at("ABC", 3) is None
    assert history.at("XYZ", 0) is None
    with pytest.raises(DataCorruptionError):
        history.at("ABC", -1)


def test_snapshot_is_a_copy():
    history = PriceHistory()
    history.record("ABC", 100)
    snap = history.snapshot("ABC")
    history.record("ABC", 101)

    assert len(snap) == 1
    assert history.size("ABC") == 2


def test_symbols_are_independent():
    history = PriceHistory()
    history.record("AAA", 1)
    history.record("BBB", 2)
    history.record("BBB", 3)

    assert history.size("AAA") == 1
    assert history.size("BBB") == 2
    assert sorted(history.symbols()) == ["AAA", "BBB"]
    assert history.snapshot("CCC") == []


def test_invalid_capacity():
    with pytest.raises(ValueError):
        PriceHistory(capacity=0)


def test_concurrent_writers_respect_capacity():
    history = PriceHistory(capacity=50)
    symbols = ["AAA", "BBB", "CCC", "DDD"]

    def writer(symbol):
        for i in range(1, 201):
            history.record(symbol, i)
            history.record("SHARED", i)

    threads = [threading.Thread(target=writer, args=(s,)) for s in symbols]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    for symbol in symbols:
        assert history.size(symbol) == 50
        assert history.latest(symbol).mid_price == Decimal("200")
    assert history.size("SHARED") == 50
