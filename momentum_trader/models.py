"""Value types shared across the trading engine.

All prices are ``Decimal`` and all share counts are ``int``. Values that come
from the market are validated on construction: a non-positive price or a
blank identifier means the upstream data is corrupted and is rejected with
``DataCorruptionError`` instead of being coerced.
"""
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Optional, Union

Number = Union[Decimal, int, float, str]


class DataCorruptionError(ValueError):
    """Raised when market or order data violates a basic invariant."""


class OrderSide(Enum):
    """Order side: BUY or SELL."""

    BUY = "BUY"
    SELL = "SELL"


def to_decimal(value: Number) -> Decimal:
    """Convert ``value`` to Decimal without picking up float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def require_symbol(symbol: str) -> str:
    if not symbol or not symbol.strip():
        raise DataCorruptionError("Symbol cannot be blank")
    return symbol


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class PricePoint:
    """A single mid-price observation.

    Attributes:
        symbol: Instrument the price belongs to
        mid_price: Average of best bid and best ask (always > 0)
        timestamp: Milliseconds since epoch when the price was observed
    """

    symbol: str
    mid_price: Decimal
    timestamp: int = field(default_factory=now_ms)

    def __post_init__(self) -> None:
        require_symbol(self.symbol)
        if self.mid_price <= 0:
            raise DataCorruptionError(
                f"Mid price must be positive for {self.symbol} (got {self.mid_price})"
            )


@dataclass(frozen=True)
class TradingSignal:
    """Directional signal produced for one decision cycle.

    Attributes:
        side: BUY for positive momentum, SELL for negative
        confidence: Absolute momentum (possibly scaled down on degraded data)
        reason: Human-readable explanation for logs
    """

    side: OrderSide
    confidence: Decimal
    reason: str


@dataclass(frozen=True)
class TopOfBook:
    """Best bid and best ask for a symbol. Either side may be empty."""

    symbol: str
    best_bid: Optional[Decimal] = None
    best_ask: Optional[Decimal] = None

    @property
    def mid_price(self) -> Optional[Decimal]:
        if self.best_bid is None or self.best_ask is None:
            return None
        return (self.best_bid + self.best_ask) / 2

    def has_side_for(self, side: OrderSide) -> bool:
        """A BUY lifts the ask, a SELL hits the bid."""
        if side is OrderSide.BUY:
            return self.best_ask is not None and self.best_ask > 0
        return self.best_bid is not None and self.best_bid > 0


@dataclass(frozen=True)
class Fill:
    """An execution reported by the exchange.

    Attributes:
        fill_id: Unique, monotonic id assigned by the exchange
        order_id: Exchange id of the order that executed
        symbol: Instrument
        side: BUY adds to the position, SELL removes from it
        quantity: Executed shares
        price: Execution price
        cursor: Pagination token the fill was delivered under
    """

    fill_id: str
    order_id: str
    symbol: str
    side: OrderSide
    quantity: int
    price: Decimal
    cursor: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.fill_id or not self.order_id:
            raise DataCorruptionError("Fill and order ids cannot be blank")
        require_symbol(self.symbol)
        if self.quantity <= 0:
            raise DataCorruptionError(f"Fill quantity must be positive (got {self.quantity})")

    @property
    def signed_quantity(self) -> int:
        return self.quantity if self.side is OrderSide.BUY else -self.quantity


@dataclass
class Portfolio:
    """Cash and holdings as reported by the exchange."""

    cash: Decimal
    positions: Dict[str, int] = field(default_factory=dict)
