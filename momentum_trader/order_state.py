"""
Tracked orders and the order book that owns them.

An order enters the book once the exchange has acknowledged it and leaves
the book when the fill reconciler sees a fill for it. Removal of an order
that is no longer tracked is expected (duplicate fill delivery, fills for
orders placed by another session) and is a no-op rather than an error.

Order Status:
    ACCEPTED → PARTIALLY_FILLED / FILLED → (removed)
    ACCEPTED → CANCELLED

Orders are sharded per symbol, each shard behind its own lock, so that
bookkeeping for one symbol never waits on another.

Examples:
    >>> from decimal import Decimal
    >>> book = OrderBook()
    >>> order = TrackedOrder("o1", "ABC", OrderSide.BUY, 10, Decimal("19.00"))
    >>> book.track(order)
    >>> book.remove("o1").order_id
    'o1'
    >>> book.remove("o1") is None
    True
"""

import threading
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from .logging_setup import logger
from .models import DataCorruptionError, OrderSide, require_symbol


class OrderStatus(Enum):
    """Order lifecycle states as reported by the exchange."""

    ACCEPTED = "ACCEPTED"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"


@dataclass
class TrackedOrder:
    """A resting limit order acknowledged by the exchange.

    Attributes:
        order_id: Exchange-assigned order ID
        symbol: Instrument
        side: BUY or SELL
        quantity: Shares requested (positive)
        limit_price: Limit price
        status: Last known OrderStatus
    """

    order_id: str
    symbol: str
    side: OrderSide
    quantity: int
    limit_price: Decimal
    status: OrderStatus = OrderStatus.ACCEPTED

    def __post_init__(self) -> None:
        if not self.order_id or not self.order_id.strip():
            raise DataCorruptionError("Order ID cannot be blank")
        require_symbol(self.symbol)
        if self.quantity <= 0:
            raise DataCorruptionError(f"Order quantity must be positive (got {self.quantity})")


class _Shard:
    __slots__ = ("lock", "orders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.orders: Dict[str, TrackedOrder] = {}


class OrderBook:
    """Orders placed by this session that have not been filled yet."""

    def __init__(self) -> None:
        self._shards: Dict[str, _Shard] = {}

    def _shard(self, symbol: str) -> _Shard:
        shard = self._shards.get(symbol)
        if shard is None:
            # dict.setdefault is atomic, so racing creators agree on one shard
            shard = self._shards.setdefault(symbol, _Shard())
        return shard

    def track(self, order: TrackedOrder) -> None:
        """Start tracking an acknowledged order.

        Tracking the same order id twice replaces the earlier entry and logs a
        warning.
        """
        shard = self._shard(order.symbol)
        with shard.lock:
            existing = shard.orders.get(order.order_id)
            shard.orders[order.order_id] = order
        if existing is not None:
            logger.warning(f"Duplicate order tracking | order_id={order.order_id}")
        else:
            logger.info(
                f"Tracking order | order_id={order.order_id} symbol={order.symbol} "
                f"side={order.side.value} qty={order.quantity} limit={order.limit_price}"
            )

    def remove(self, order_id: str, symbol: Optional[str] = None) -> Optional[TrackedOrder]:
        """Stop tracking an order and return it, or None if it was not tracked.

        Args:
            order_id: Exchange order ID
            symbol: Symbol hint; when omitted every shard is searched

        Raises:
            DataCorruptionError: If order_id is blank
        """
        if not order_id or not order_id.strip():
            raise DataCorruptionError("Order ID cannot be blank")

        if symbol is not None:
            shards = [self._shards.get(symbol)]
        else:
            shards = list(self._shards.values())

        for shard in shards:
            if shard is None:
                continue
            with shard.lock:
                removed = shard.orders.pop(order_id, None)
            if removed is not None:
                logger.info(f"Removed order | order_id={order_id}")
                return removed
        return None

    def get(self, order_id: str) -> Optional[TrackedOrder]:
        for shard in list(self._shards.values()):
            with shard.lock:
                order = shard.orders.get(order_id)
            if order is not None:
                return order
        return None

    def orders_for(self, symbol: str) -> List[TrackedOrder]:
        shard = self._shards.get(symbol)
        if shard is None:
            return []
        with shard.lock:
            return list(shard.orders.values())

    def snapshot(self) -> Dict[str, TrackedOrder]:
        """Return a copy of every tracked order keyed by order id."""
        result: Dict[str, TrackedOrder] = {}
        for shard in list(self._shards.values()):
            with shard.lock:
                result.update(shard.orders)
        return result

    def __len__(self) -> int:
        return sum(len(shard.orders) for shard in list(self._shards.values()))
