"""Configuration loader for the trading engine.

Supports YAML format with environment variable interpolation.
"""
import os
from dataclasses import asdict, dataclass, field, fields
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

import yaml


@dataclass
class ExchangeConfig:
    """Exchange API settings."""
    base_url: str = "http://localhost:8080"
    timeout: int = 10
    max_retries: int = 5
    max_backoff_seconds: float = 30.0


@dataclass
class StrategyConfig:
    """Momentum signal parameters."""
    momentum_threshold: Decimal = Decimal('0.01')  # 1% move
    lookback_index: int = 10  # 5 minutes back at 30s polling
    history_size: int = 50
    degraded_policy: str = "short_window"  # or "none"
    degraded_threshold_factor: Decimal = Decimal('0.5')
    degraded_confidence_factor: Decimal = Decimal('0.7')

    def signal_params(self):
        """Build the SignalParams consumed by momentum.generate_signal()."""
        from .momentum import DegradedDataPolicy, SignalParams

        return SignalParams(
            threshold=self.momentum_threshold,
            lookback_index=self.lookback_index,
            degraded_policy=DegradedDataPolicy(self.degraded_policy),
            degraded_threshold_factor=self.degraded_threshold_factor,
            degraded_confidence_factor=self.degraded_confidence_factor,
        )


@dataclass
class ExecutionConfig:
    """Order sizing parameters."""
    budget_per_trade: Decimal = Decimal('200')
    buy_discount_pct: Decimal = Decimal('0.05')  # buy 5% below best ask
    sell_fraction_pct: Decimal = Decimal('0.10')  # sell 10% of the position


@dataclass
class RateLimitConfig:
    """Request budget settings."""
    permits_per_window: int = 40
    window_seconds: float = 1.0


@dataclass
class SessionConfig:
    """Loop cadences and stop condition."""
    symbols: List[str] = field(default_factory=lambda: ["🦄"])
    price_poll_interval: float = 30.0
    decision_interval: float = 30.0
    decision_offset: float = 15.0
    fill_poll_interval: float = 5.0
    fill_retry_interval: float = 10.0
    reconcile_interval: float = 60.0
    max_orders: int = 10
    initial_cash: Decimal = Decimal('100000')


@dataclass
class LoggingConfig:
    """Log destination and level."""
    log_file: Optional[str] = "momentum_trader.log"
    log_level: str = "INFO"


_DECIMAL_FIELDS = {
    "momentum_threshold",
    "degraded_threshold_factor",
    "degraded_confidence_factor",
    "budget_per_trade",
    "buy_discount_pct",
    "sell_fraction_pct",
    "initial_cash",
}


def _section(cls, raw: Optional[dict]):
    values = {
        k: Decimal(str(v)) if k in _DECIMAL_FIELDS else v
        for k, v in (raw or {}).items()
    }
    return cls(**values)


def _plain(section) -> dict:
    return {
        k: str(v) if isinstance(v, Decimal) else v
        for k, v in asdict(section).items()
    }


@dataclass
class TradingConfig:
    """Complete engine configuration."""
    exchange: ExchangeConfig
    strategy: StrategyConfig
    execution: ExecutionConfig
    rate_limit: RateLimitConfig
    session: SessionConfig
    logging: LoggingConfig

    @classmethod
    def default(cls) -> "TradingConfig":
        return cls(
            exchange=ExchangeConfig(),
            strategy=StrategyConfig(),
            execution=ExecutionConfig(),
            rate_limit=RateLimitConfig(),
            session=SessionConfig(),
            logging=LoggingConfig(),
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> "TradingConfig":
        """Load configuration from YAML file with env var interpolation.

        Missing sections and keys fall back to defaults; unknown keys raise
        TypeError.

        Args:
            config_path: Path to YAML config file

        Returns:
            Validated TradingConfig instance

        Example YAML:
            exchange:
              base_url: "${EXCHANGE_URL}"
            strategy:
              momentum_threshold: 0.01
              degraded_policy: none
            session:
              symbols: ["🦄", "🚀"]
              max_orders: 10
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r", encoding="utf-8") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        config = cls(
            exchange=_section(ExchangeConfig, data.get("exchange")),
            strategy=_section(StrategyConfig, data.get("strategy")),
            execution=_section(ExecutionConfig, data.get("execution")),
            rate_limit=_section(RateLimitConfig, data.get("rate_limit")),
            session=_section(SessionConfig, data.get("session")),
            logging=_section(LoggingConfig, data.get("logging")),
        )
        config.validate()
        return config

    def validate(self) -> None:
        """Reject settings the engine cannot run with.

        Raises:
            ValueError: On the first invalid setting found
        """
        s = self.session
        for name in ("price_poll_interval", "decision_interval", "fill_poll_interval",
                     "fill_retry_interval", "reconcile_interval"):
            if getattr(s, name) <= 0:
                raise ValueError(f"session.{name} must be positive")
        if s.decision_offset < 0:
            raise ValueError("session.decision_offset must be non-negative")
        if s.max_orders <= 0:
            raise ValueError("session.max_orders must be positive")
        if not s.symbols or any(not str(sym).strip() for sym in s.symbols):
            raise ValueError("session.symbols must be a non-empty list of symbols")

        if self.strategy.momentum_threshold < 0:
            raise ValueError("strategy.momentum_threshold must be non-negative")
        if self.strategy.lookback_index < 1:
            raise ValueError("strategy.lookback_index must be at least 1")
        if self.strategy.history_size <= self.strategy.lookback_index:
            raise ValueError("strategy.history_size must exceed strategy.lookback_index")
        if self.strategy.degraded_policy not in ("none", "short_window"):
            raise ValueError("strategy.degraded_policy must be 'none' or 'short_window'")
        for name in ("degraded_threshold_factor", "degraded_confidence_factor"):
            if not Decimal(0) < getattr(self.strategy, name) <= Decimal(1):
                raise ValueError(f"strategy.{name} must be in (0, 1]")

        if self.execution.budget_per_trade <= 0:
            raise ValueError("execution.budget_per_trade must be positive")
        if not Decimal(0) <= self.execution.buy_discount_pct < Decimal(1):
            raise ValueError("execution.buy_discount_pct must be in [0, 1)")
        if not Decimal(0) < self.execution.sell_fraction_pct <= Decimal(1):
            raise ValueError("execution.sell_fraction_pct must be in (0, 1]")

        if self.rate_limit.permits_per_window <= 0 or self.rate_limit.window_seconds <= 0:
            raise ValueError("rate_limit settings must be positive")

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {f.name: _plain(getattr(self, f.name)) for f in fields(self)}

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False, allow_unicode=True)
