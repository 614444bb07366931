#!/usr/bin/env python
"""Run a momentum trading session.

Usage:
    python scripts/run_session.py --config config.yaml
    python scripts/run_session.py --simulate --max-orders 3
    python scripts/run_session.py --team-id my-team --status-interval 60
"""
import argparse
import asyncio
import random
import sys
from decimal import Decimal
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from momentum_trader.async_exchange_adapter import AsyncExchangeClient
from momentum_trader.config import TradingConfig
from momentum_trader.execution import InMemoryExchange
from momentum_trader.logging_setup import logger, setup_logging
from momentum_trader.secrets import load_credentials, save_credentials
from momentum_trader.session import SessionOrchestrator, SessionStatus


class SimulatedMarket(InMemoryExchange):
    """In-memory exchange whose quotes random-walk and whose orders fill at once."""

    def __init__(self, symbols, start_price=Decimal("100"), step_pct=Decimal("0.01"), **kwargs):
        super().__init__(**kwargs)
        self.step_pct = step_pct
        self.mids = {symbol: start_price for symbol in symbols}
        for symbol in symbols:
            self._quote(symbol)

    def _quote(self, symbol):
        mid = self.mids[symbol]
        self.set_book(symbol, best_bid=mid * Decimal("0.999"), best_ask=mid * Decimal("1.001"))

    async def fetch_top_of_book(self, symbol):
        if symbol in self.mids:
            move = Decimal(random.choice((-1, 0, 1))) * self.step_pct
            self.mids[symbol] = (self.mids[symbol] * (1 + move)).quantize(Decimal("0.01"))
            self._quote(symbol)
        return await super().fetch_top_of_book(symbol)

    async def submit_limit_order(self, symbol, side, quantity, limit_price):
        order = await super().submit_limit_order(symbol, side, quantity, limit_price)
        self.fill_order(order.order_id)
        return order


def format_status(status: SessionStatus) -> str:
    pnl = f"{status.estimated_pnl:.2f}" if status.estimated_pnl is not None else "n/a"
    minutes = int(status.elapsed_seconds // 60)
    return (
        f"orders={status.orders_placed}/{status.max_orders} elapsed={minutes}m pnl={pnl} "
        f"last_buy={status.last_buy or '-'} last_sell={status.last_sell or '-'} "
        f"running={status.running}"
    )


async def report_status(session: SessionOrchestrator, interval: float):
    while True:
        await asyncio.sleep(interval)
        logger.info(f"Session status | {format_status(session.status())}")


async def run(session: SessionOrchestrator, status_interval: float) -> SessionStatus:
    reporter = asyncio.create_task(report_status(session, status_interval))
    try:
        return await session.run()
    finally:
        reporter.cancel()


async def run_live(config: TradingConfig, args) -> SessionStatus:
    credentials = None
    try:
        credentials = load_credentials(args.credentials)
        logger.info("Credentials loaded")
    except ValueError:
        if not args.team_id:
            raise

    async with AsyncExchangeClient(
        config.exchange.base_url,
        credentials,
        timeout=config.exchange.timeout,
        max_retries=config.exchange.max_retries,
        max_backoff_seconds=config.exchange.max_backoff_seconds,
    ) as client:
        if credentials is None:
            registration = await client.register(args.team_id)
            config.session.initial_cash = registration.initial_cash
            if args.credentials:
                save_credentials(args.credentials, client.credentials)
        session = SessionOrchestrator(client, config)
        return await run(session, args.status_interval)


async def run_simulated(config: TradingConfig, args) -> SessionStatus:
    market = SimulatedMarket(config.session.symbols, cash=config.session.initial_cash)
    session = SessionOrchestrator(market, config)
    return await run(session, args.status_interval)


def main():
    parser = argparse.ArgumentParser(description="Momentum trading session")
    parser.add_argument("--config", help="Path to YAML config (defaults built in)")
    parser.add_argument("--simulate", action="store_true", help="Trade against an in-memory random-walk market")
    parser.add_argument("--team-id", help="Register this team when no credentials are found")
    parser.add_argument("--credentials", help="Credentials JSON file to read (and write after registering)")
    parser.add_argument("--max-orders", type=int, help="Override session.max_orders")
    parser.add_argument("--status-interval", type=float, default=60.0, help="Seconds between status lines")
    args = parser.parse_args()

    config = TradingConfig.from_yaml(args.config) if args.config else TradingConfig.default()
    if args.max_orders is not None:
        config.session.max_orders = args.max_orders
    config.validate()

    setup_logging(log_file=config.logging.log_file, level=config.logging.log_level)

    runner = run_simulated if args.simulate else run_live
    try:
        status = asyncio.run(runner(config, args))
    except KeyboardInterrupt:
        logger.info("Interrupted, session cancelled")
        return
    except ValueError as e:
        logger.error(f"Cannot start session: {e}")
        sys.exit(1)

    print(f"Final status: {format_status(status)}")


if __name__ == "__main__":
    main()
