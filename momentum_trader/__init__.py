"""
Momentum Trading Engine.

An autonomous trading session for a quoted exchange featuring:
- Mid-price polling into a rolling per-symbol history
- Momentum signals with a configurable threshold, lookback and degraded-data policy
- Discounted limit buys and fractional limit sells, one order per decision
- Fill polling with idempotent position updates
- Periodic position reconciliation against exchange holdings
- A discrete per-second request budget shared by every loop
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    models: Prices, signals, fills and portfolio value types
    rate_limit_policy: Request budget and rate-limited adapter
    price_history: Per-symbol rolling mid-price buffer
    momentum: Momentum calculation and signal generation
    order_state: Tracked orders and the order book
    position: Position ledger and reconciliation
    execution: Exchange adapter boundary and order executor
    fill_reconciler: Fill polling loop
    session: Session orchestrator
    async_exchange_adapter: aiohttp exchange client
    config: Configuration loading and validation
    secrets: Credential management

Example:
    >>> from momentum_trader.async_exchange_adapter import AsyncExchangeClient
    >>> from momentum_trader.config import TradingConfig
    >>> from momentum_trader.secrets import load_credentials
    >>> from momentum_trader.session import SessionOrchestrator
    >>>
    >>> config = TradingConfig.from_yaml("config.yaml")
    >>> async with AsyncExchangeClient(config.exchange.base_url, load_credentials()) as client:
    ...     status = await SessionOrchestrator(client, config).run()
"""

__version__ = "0.1.0"
__all__ = [
    "models",
    "rate_limit_policy",
    "price_history",
    "momentum",
    "order_state",
    "position",
    "execution",
    "fill_reconciler",
    "session",
    "async_exchange_adapter",
    "async_event_loop",
    "config",
    "secrets",
    "pnl",
]
