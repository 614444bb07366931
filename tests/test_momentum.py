from decimal import Decimal

import pytest

from momentum_trader.models import DataCorruptionError, OrderSide, PricePoint
from momentum_trader.momentum import (
    DegradedDataPolicy,
    SignalParams,
    calculate_momentum,
    generate_signal,
)
from momentum_trader.price_history import PriceHistory


def _history(*prices):
    """Build a newest-first snapshot from prices listed oldest first."""
    history = PriceHistory()
    for price in prices:
        history.record("🦄", price)
    return history.snapshot("🦄")


def test_calculate_momentum():
    assert calculate_momentum(Decimal("103"), Decimal("100")) == Decimal("0.03")
    assert calculate_momentum(Decimal("97"), Decimal("100")) == Decimal("-0.03")
    assert calculate_momentum(0, 100) == Decimal("-1")


def test_calculate_momentum_rejects_corrupt_prices():
    with pytest.raises(DataCorruptionError):
        calculate_momentum(100, 0)
    with pytest.raises(DataCorruptionError):
        calculate_momentum(100, -5)
    with pytest.raises(DataCorruptionError):
        calculate_momentum(-1, 100)


def test_buy_signal_on_full_window():
    snapshot = _history(100, *([101] * 9), 103)
    assert len(snapshot) == 11

    signal = generate_signal("🦄", snapshot)
    assert signal.side is OrderSide.BUY
    assert signal.confidence == Decimal("0.03")
    assert signal.reason == "Positive momentum: 0.0300 (3.00%)"


def test_sell_signal_on_full_window():
    snapshot = _history(100, *([99] * 9), 97)
    signal = generate_signal("🦄", snapshot)
    assert signal.side is OrderSide.SELL
    assert signal.confidence == Decimal("0.03")
    assert signal.reason.startswith("Negative momentum")


def test_reference_is_lookback_index_not_oldest():
    # 20 points: oldest 50, index 10 is 100, newest 100.5
    snapshot = _history(*([50] * 9), 100, *([100] * 9), Decimal("100.5"))
    assert snapshot[10].mid_price == Decimal("100")

    assert generate_signal("🦄", snapshot) is None


def test_below_threshold_returns_none():
    snapshot = _history(100, *([100] * 9), Decimal("100.5"))
    assert generate_signal("🦄", snapshot) is None


def test_threshold_is_inclusive():
    snapshot = _history(100, *([100] * 9), 101)
    signal = generate_signal("🦄", snapshot)
    assert signal is not None
    assert signal.confidence == Decimal("0.01")


def test_zero_momentum_never_signals():
    params = SignalParams(threshold=Decimal("0"))
    snapshot = _history(*([100] * 11))
    assert generate_signal("🦄", snapshot, params) is None


def test_degraded_none_policy_waits_for_full_window():
    params = SignalParams(degraded_policy=DegradedDataPolicy.NONE)
    snapshot = _history(100, 110, 120, 130, 140)
    assert generate_signal("🦄", snapshot, params) is None


def test_short_window_uses_oldest_sample_with_reduced_threshold():
    # 0.6% move: below the 1% threshold but above the halved 0.5%
    snapshot = _history(100, 100, 100, 100, Decimal("100.6"))
    signal = generate_signal("🦄", snapshot)

    assert signal.side is OrderSide.BUY
    assert signal.confidence == Decimal("0.0042")
    assert "short-window" in signal.reason


def test_short_window_below_reduced_threshold():
    snapshot = _history(100, Decimal("100.4"))
    assert generate_signal("🦄", snapshot) is None


def test_single_point_never_signals():
    assert generate_signal("🦄", _history(100)) is None
    assert generate_signal("🦄", []) is None


def test_corrupt_reference_in_snapshot_raises():
    # bypass PricePoint validation to simulate a corrupted snapshot
    newest = PricePoint("🦄", Decimal("100"))
    corrupt = object.__new__(PricePoint)
    object.__setattr__(corrupt, "symbol", "🦄")
    object.__setattr__(corrupt, "mid_price", Decimal("0"))
    object.__setattr__(corrupt, "timestamp", 0)

    with pytest.raises(DataCorruptionError):
        generate_signal("🦄", [newest, corrupt])


def test_signal_params_validation():
    with pytest.raises(ValueError):
        SignalParams(threshold=Decimal("-0.01"))
    with pytest.raises(ValueError):
        SignalParams(lookback_index=0)
    with pytest.raises(ValueError):
        SignalParams(degraded_confidence_factor=Decimal("-0.7"))
    with pytest.raises(ValueError):
        SignalParams(degraded_threshold_factor=Decimal("0"))
    assert SignalParams(lookback_index=4).required_points == 5
