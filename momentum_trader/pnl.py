"""Session P&L estimate from exchange-reported cash and holdings."""
from decimal import Decimal
from typing import Dict, Optional

from .models import Portfolio


def mark_to_market(portfolio: Portfolio, mid_prices: Dict[str, Decimal]) -> Optional[Decimal]:
    """Value cash plus holdings at the given mid-prices.

    Returns:
        Portfolio value, or None if a held symbol has no usable price
    """
    value = portfolio.cash
    for symbol, shares in portfolio.positions.items():
        if shares == 0:
            continue
        price = mid_prices.get(symbol)
        if price is None or price <= 0:
            return None
        value += price * shares
    return value


def estimate_pnl(
    portfolio: Portfolio,
    mid_prices: Dict[str, Decimal],
    initial_cash: Decimal,
) -> Optional[Decimal]:
    """Estimate session P&L as current portfolio value minus starting cash.

    Args:
        portfolio: Cash and positions from the exchange
        mid_prices: Latest mid-price per symbol
        initial_cash: Cash the session started with

    Returns:
        Estimated P&L, or None when it cannot be valued
    """
    value = mark_to_market(portfolio, mid_prices)
    if value is None:
        return None
    return value - initial_cash
