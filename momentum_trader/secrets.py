"""Secrets management: load exchange credentials from environment or config file.

Priority order:
1. Environment variables: EXCHANGE_TEAM_ID, EXCHANGE_API_KEY
2. Config file: ~/.momentum_trader.json or custom path via ENV EXCHANGE_CONFIG_PATH
"""
import json
import os
from pathlib import Path
from typing import NamedTuple, Optional


class ExchangeCredentials(NamedTuple):
    team_id: str
    api_key: str


def _default_config_path(config_path: Optional[str]) -> str:
    if config_path is None:
        config_path = os.getenv("EXCHANGE_CONFIG_PATH")
    if config_path is None:
        config_path = str(Path.home() / ".momentum_trader.json")
    return config_path


def load_credentials(
    config_path: Optional[str] = None,
) -> ExchangeCredentials:
    """Load exchange credentials from env or config file.

    Args:
        config_path: Optional override path to config file. If not provided,
                     checks EXCHANGE_CONFIG_PATH env var, then ~/.momentum_trader.json

    Returns:
        ExchangeCredentials with team_id, api_key

    Raises:
        ValueError: If credentials are not found or incomplete
    """
    team_id = os.getenv("EXCHANGE_TEAM_ID")
    api_key = os.getenv("EXCHANGE_API_KEY")

    if team_id and api_key:
        return ExchangeCredentials(team_id=team_id, api_key=api_key)

    config_path = _default_config_path(config_path)
    config_file = Path(config_path)
    if config_file.exists():
        try:
            with config_file.open("r", encoding="utf-8") as f:
                cfg = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to load config from {config_path}: {e}")
        team_id = team_id or cfg.get("team_id")
        api_key = api_key or cfg.get("api_key")

    if not team_id or not api_key:
        raise ValueError(
            "Missing exchange credentials. Provide via:\n"
            "  - Environment: EXCHANGE_TEAM_ID, EXCHANGE_API_KEY\n"
            f"  - Config file: {config_path}\n"
            "  - EXCHANGE_CONFIG_PATH env var to override config location"
        )

    return ExchangeCredentials(team_id=team_id, api_key=api_key)


def save_credentials(
    config_path: str,
    credentials: ExchangeCredentials,
) -> None:
    """Save credentials to a config file for later sessions.

    WARNING: Stores the API key in plaintext. The file is restricted to the owner.
    """
    cfg_file = Path(config_path)
    cfg_file.parent.mkdir(parents=True, exist_ok=True)

    with cfg_file.open("w", encoding="utf-8") as f:
        json.dump(credentials._asdict(), f, indent=2)

    try:
        cfg_file.chmod(0o600)
    except OSError:
        pass  # not supported on every platform
