"""
Momentum calculation and signal generation.

Momentum is the fractional price change between the newest sample and a
reference sample further back in the history:

    momentum = (current - old) / old

A signal is produced when the absolute momentum reaches the configured
threshold. Positive momentum is a BUY candidate, negative momentum a SELL
candidate, and the absolute momentum becomes the signal's confidence.

With the default 30 second polling cadence, lookback index 10 is the sample
taken five minutes before the newest one. Until the history holds
``lookback_index + 1`` samples, the degraded-data policy decides what to do:

    none          no signal until the full window is available
    short_window  compare newest against oldest available sample with a
                  reduced threshold and reduced confidence (needs >= 2 samples)

Examples:
    >>> from decimal import Decimal
    >>> calculate_momentum(Decimal("103"), Decimal("100"))
    Decimal('0.03')
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from .logging_setup import logger
from .models import DataCorruptionError, Number, OrderSide, PricePoint, TradingSignal, to_decimal


class DegradedDataPolicy(Enum):
    """What to do when the history is shorter than the lookback window."""

    NONE = "none"
    SHORT_WINDOW = "short_window"


@dataclass(frozen=True)
class SignalParams:
    """Tunable signal parameters.

    Attributes:
        threshold: Minimum absolute momentum for a signal (0.01 = 1%)
        lookback_index: History index of the reference sample
        degraded_policy: Behaviour when fewer than lookback_index + 1 samples exist
        degraded_threshold_factor: Threshold multiplier under SHORT_WINDOW
        degraded_confidence_factor: Confidence multiplier under SHORT_WINDOW
    """

    threshold: Decimal = Decimal("0.01")
    lookback_index: int = 10
    degraded_policy: DegradedDataPolicy = DegradedDataPolicy.SHORT_WINDOW
    degraded_threshold_factor: Decimal = Decimal("0.5")
    degraded_confidence_factor: Decimal = Decimal("0.7")

    def __post_init__(self) -> None:
        if self.threshold < 0:
            raise ValueError("threshold must be non-negative")
        if self.lookback_index < 1:
            raise ValueError("lookback_index must be at least 1")
        if not Decimal(0) < self.degraded_threshold_factor <= Decimal(1):
            raise ValueError("degraded_threshold_factor must be in (0, 1]")
        if not Decimal(0) < self.degraded_confidence_factor <= Decimal(1):
            raise ValueError("degraded_confidence_factor must be in (0, 1]")

    @property
    def required_points(self) -> int:
        return self.lookback_index + 1


def calculate_momentum(current: Number, old: Number) -> Decimal:
    """Return the fractional change from ``old`` to ``current``.

    Args:
        current: Newest price (>= 0)
        old: Reference price (> 0)

    Returns:
        Momentum as a decimal fraction (0.1 = 10% increase)

    Raises:
        DataCorruptionError: If current < 0 or old <= 0
    """
    current = to_decimal(current)
    old = to_decimal(old)
    if current < 0:
        raise DataCorruptionError(f"Current price cannot be negative: {current}")
    if old <= 0:
        raise DataCorruptionError(
            f"Old price must be positive (got {old}); zero or negative prices indicate data corruption"
        )
    return (current - old) / old


def generate_signal(
    symbol: str,
    history: Sequence[PricePoint],
    params: Optional[SignalParams] = None,
) -> Optional[TradingSignal]:
    """Derive a trading signal from a newest-first price history snapshot.

    Args:
        symbol: Instrument, used for logging
        history: Snapshot from PriceHistory.snapshot(), newest first
        params: Signal parameters (defaults to SignalParams())

    Returns:
        TradingSignal, or None when momentum is below threshold or data is insufficient

    Raises:
        DataCorruptionError: If the snapshot contains a non-positive reference price
    """
    params = params or SignalParams()

    if len(history) >= params.required_points:
        current = history[0].mid_price
        reference = history[params.lookback_index].mid_price
        threshold = params.threshold
        confidence_factor = Decimal(1)
        label = "momentum"
    elif params.degraded_policy is DegradedDataPolicy.SHORT_WINDOW and len(history) >= 2:
        current = history[0].mid_price
        reference = history[-1].mid_price
        threshold = params.threshold * params.degraded_threshold_factor
        confidence_factor = params.degraded_confidence_factor
        label = f"short-window momentum [{len(history)} points]"
        logger.debug(f"Using short-window momentum | symbol={symbol} points={len(history)}")
    else:
        logger.debug(
            f"Insufficient history | symbol={symbol} points={len(history)} "
            f"required={params.required_points}"
        )
        return None

    momentum = calculate_momentum(current, reference)
    magnitude = abs(momentum)
    if magnitude == 0 or magnitude < threshold:
        logger.debug(f"Momentum below threshold | symbol={symbol} momentum={momentum} threshold={threshold}")
        return None

    side = OrderSide.BUY if momentum > 0 else OrderSide.SELL
    direction = "Positive" if side is OrderSide.BUY else "Negative"
    signal = TradingSignal(
        side=side,
        confidence=magnitude * confidence_factor,
        reason=f"{direction} {label}: {momentum:.4f} ({momentum * 100:.2f}%)",
    )
    logger.info(
        f"Signal generated | symbol={symbol} side={side.value} "
        f"confidence={signal.confidence:.4f} reason={signal.reason}"
    )
    return signal
