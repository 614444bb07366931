"""Rolling per-symbol mid-price history.

Each symbol keeps its own newest-first ring buffer of ``PricePoint`` capped
at ``capacity`` entries, guarded by its own lock. Recording a price for one
symbol never waits on readers or writers of another symbol.
"""
import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from .logging_setup import logger
from .models import DataCorruptionError, Number, PricePoint, require_symbol, to_decimal

DEFAULT_CAPACITY = 50


class _SymbolHistory:
    __slots__ = ("lock", "points")

    def __init__(self, capacity: int) -> None:
        self.lock = threading.Lock()
        # appendleft on a bounded deque drops the oldest entry from the right
        self.points: Deque[PricePoint] = deque(maxlen=capacity)


class PriceHistory:
    """Thread-safe store of recent mid-prices, latest first.

    Example:
        >>> history = PriceHistory(capacity=3)
        >>> for price in (100, 101, 102, 103):
        ...     _ = history.record("ABC", price)
        >>> [str(p.mid_price) for p in history.snapshot("ABC")]
        ['103', '102', '101']
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._histories: Dict[str, _SymbolHistory] = {}

    def _history(self, symbol: str, create: bool = False) -> Optional[_SymbolHistory]:
        history = self._histories.get(symbol)
        if history is None and create:
            history = self._histories.setdefault(symbol, _SymbolHistory(self.capacity))
        return history

    def record(self, symbol: str, mid_price: Number, timestamp: Optional[int] = None) -> PricePoint:
        """Record a new mid-price for ``symbol``.

        Args:
            symbol: Instrument
            mid_price: Observed mid-price, must be > 0
            timestamp: Milliseconds since epoch (defaults to now)

        Returns:
            The stored PricePoint

        Raises:
            DataCorruptionError: If the symbol is blank or the price is not positive
        """
        require_symbol(symbol)
        price = to_decimal(mid_price)
        if price <= 0:
            raise DataCorruptionError(f"Mid price must be positive for {symbol} (got {price})")

        if timestamp is None:
            point = PricePoint(symbol=symbol, mid_price=price)
        else:
            point = PricePoint(symbol=symbol, mid_price=price, timestamp=timestamp)

        history = self._history(symbol, create=True)
        with history.lock:
            history.points.appendleft(point)
            size = len(history.points)

        logger.debug(f"Price recorded | symbol={symbol} mid={price} size={size}")
        return point

    def snapshot(self, symbol: str) -> List[PricePoint]:
        """Return a point-in-time copy of the history, newest first."""
        require_symbol(symbol)
        history = self._history(symbol)
        if history is None:
            return []
        with history.lock:
            return list(history.points)

    def latest(self, symbol: str) -> Optional[PricePoint]:
        return self.at(symbol, 0)

    def at(self, symbol: str, index: int) -> Optional[PricePoint]:
        """Return the point ``index`` steps back (0 = latest) or None if out of range.

        Raises:
            DataCorruptionError: If index is negative
        """
        require_symbol(symbol)
        if index < 0:
            raise DataCorruptionError(f"Index must be non-negative (got {index})")
        history = self._history(symbol)
        if history is None:
            return None
        with history.lock:
            if index < len(history.points):
                return history.points[index]
        return None

    def size(self, symbol: str) -> int:
        history = self._history(symbol)
        if history is None:
            return 0
        with history.lock:
            return len(history.points)

    def symbols(self) -> List[str]:
        return list(self._histories.keys())
