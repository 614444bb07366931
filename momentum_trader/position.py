"""
Position ledger: net shares per symbol, driven by fills and reconciliation.

The ledger keeps a locally computed signed share count per symbol. It only
changes in two ways:

- ``on_fill()`` applies a fill from the exchange. Fills are deduplicated by
  fill id, so a redelivered fill never moves the position twice.
- ``reconcile()`` compares local values against exchange-reported holdings.
  The exchange is authoritative: every mismatch is overwritten and reported.

If the exchange cannot be reached during reconciliation, local values are
kept and the failure is reported in the returned ReconciliationReport.

Examples:
    >>> from decimal import Decimal
    >>> from momentum_trader.models import Fill, OrderSide
    >>> ledger = PositionLedger()
    >>> fill = Fill("f1", "o1", "ABC", OrderSide.BUY, 10, Decimal("19"))
    >>> ledger.on_fill(fill), ledger.on_fill(fill)
    (True, False)
    >>> ledger.position("ABC")
    10
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .logging_setup import logger
from .models import Fill


@dataclass
class PositionDiscrepancy:
    """A symbol whose local position disagreed with the exchange."""

    symbol: str
    local: int
    exchange: int

    @property
    def delta(self) -> int:
        return self.exchange - self.local


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass.

    Attributes:
        ok: False when exchange holdings could not be fetched
        checked: Symbols compared
        discrepancies: Symbols whose local value was overwritten
        error: Failure description when ok is False
    """

    ok: bool = True
    checked: List[str] = field(default_factory=list)
    discrepancies: List[PositionDiscrepancy] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def in_sync(self) -> bool:
        return self.ok and not self.discrepancies


class _SymbolPosition:
    __slots__ = ("lock", "shares")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.shares = 0


class PositionLedger:
    """Per-symbol signed share counts with per-symbol locking.

    Attributes:
        fills_applied: Number of distinct fills applied
        duplicate_fills: Number of redelivered fills ignored
    """

    def __init__(self, initial: Optional[Dict[str, int]] = None):
        self._positions: Dict[str, _SymbolPosition] = {}
        self._seen_fills: set = set()
        self._seen_lock = threading.Lock()
        self.fills_applied = 0
        self.duplicate_fills = 0
        for symbol, shares in (initial or {}).items():
            self._entry(symbol).shares = int(shares)

    def _entry(self, symbol: str) -> _SymbolPosition:
        entry = self._positions.get(symbol)
        if entry is None:
            entry = self._positions.setdefault(symbol, _SymbolPosition())
        return entry

    def position(self, symbol: str) -> int:
        """Return the current local position for symbol (0 if unknown)."""
        entry = self._positions.get(symbol)
        if entry is None:
            return 0
        with entry.lock:
            return entry.shares

    def positions(self) -> Dict[str, int]:
        """Return a copy of every known position."""
        result = {}
        for symbol, entry in list(self._positions.items()):
            with entry.lock:
                result[symbol] = entry.shares
        return result

    def on_fill(self, fill: Fill) -> bool:
        """Apply a fill to the position.

        Args:
            fill: Fill reported by the exchange

        Returns:
            True if applied, False if this fill id was already applied
        """
        with self._seen_lock:
            if fill.fill_id in self._seen_fills:
                self.duplicate_fills += 1
                duplicate = True
            else:
                self._seen_fills.add(fill.fill_id)
                self.fills_applied += 1
                duplicate = False
        if duplicate:
            logger.debug(f"Duplicate fill ignored | fill_id={fill.fill_id} order_id={fill.order_id}")
            return False

        entry = self._entry(fill.symbol)
        with entry.lock:
            previous = entry.shares
            entry.shares += fill.signed_quantity
            updated = entry.shares

        logger.info(
            f"Fill applied | fill_id={fill.fill_id} symbol={fill.symbol} side={fill.side.value} "
            f"qty={fill.quantity} price={fill.price} position={previous}->{updated}"
        )
        return True

    def reconcile(self, exchange_positions: Dict[str, int]) -> ReconciliationReport:
        """Overwrite local positions with exchange-reported holdings.

        Every symbol known locally or reported by the exchange is compared;
        a symbol missing from the exchange snapshot is treated as 0 shares.

        Args:
            exchange_positions: Holdings reported by the exchange

        Returns:
            ReconciliationReport listing every overwritten symbol
        """
        report = ReconciliationReport()
        symbols = sorted(set(self._positions) | set(exchange_positions))
        for symbol in symbols:
            actual = int(exchange_positions.get(symbol, 0))
            entry = self._entry(symbol)
            with entry.lock:
                local = entry.shares
                entry.shares = actual
            report.checked.append(symbol)
            if local != actual:
                report.discrepancies.append(PositionDiscrepancy(symbol=symbol, local=local, exchange=actual))
                logger.warning(
                    f"Position discrepancy | symbol={symbol} local={local} exchange={actual} "
                    f"-> using exchange value"
                )
            else:
                logger.debug(f"Position in sync | symbol={symbol} shares={actual}")

        if report.in_sync:
            logger.info(f"Position reconciliation ok | symbols={len(symbols)}")
        return report

    async def reconcile_with_exchange(self, adapter) -> ReconciliationReport:
        """Fetch holdings from ``adapter`` and reconcile against them.

        A failed fetch keeps every local value and is reported, not raised.
        """
        try:
            exchange_positions = await adapter.fetch_portfolio_positions()
        except Exception as e:
            logger.error(
                f"Position reconciliation failed | error={e} -> keeping local positions {self.positions()}"
            )
            return ReconciliationReport(ok=False, error=str(e))
        return self.reconcile(exchange_positions)
