"""
Runtime configuration.

All settings are read from environment variables when ``Settings.from_env``
is called.  Trading limit rules are *not* part of this object: they live in
the database and are re-read on every validation (see
``services/trading_rules.py``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"true", "1", "yes", "on"}


@dataclass
class Settings:
    ledger_url: str = "http://localhost:8080"
    ledger_timeout: float = 10.0
    ledger_retry_count: int = 3
    ledger_retry_delay: float = 1.0
    polling_enabled: bool = True
    poll_interval: float = 300.0
    poll_initial_delay: float = 5.0
    discom_id: str = "BESCOM-KA"
    on_settle_callback_url: Optional[str] = None
    on_settle_timeout: float = 10.0
    beckn_domain: str = "beckn.one:deg:p2p-trading:2.0.0"
    state_store_uri: str = "sqlite+aiosqlite:///tradeguard.db"
    trading_utc_offset_minutes: int = 330
    prometheus_port: int = 9108
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            ledger_url=os.environ.get("LEDGER_URL", cls.ledger_url).rstrip("/"),
            ledger_timeout=float(os.environ.get("LEDGER_TIMEOUT_SECONDS", "10")),
            ledger_retry_count=int(os.environ.get("LEDGER_RETRY_COUNT", "3")),
            ledger_retry_delay=float(os.environ.get("LEDGER_RETRY_DELAY_SECONDS", "1.0")),
            polling_enabled=_env_flag("ENABLE_SETTLEMENT_POLLING", True),
            poll_interval=float(os.environ.get("SETTLEMENT_POLL_INTERVAL_SECONDS", "300")),
            poll_initial_delay=float(os.environ.get("SETTLEMENT_POLL_INITIAL_DELAY_SECONDS", "5")),
            discom_id=os.environ.get("DISCOM_ID", cls.discom_id),
            on_settle_callback_url=os.environ.get("ON_SETTLE_CALLBACK_URL") or None,
            on_settle_timeout=float(os.environ.get("ON_SETTLE_TIMEOUT_SECONDS", "10")),
            beckn_domain=os.environ.get("BECKN_DOMAIN", cls.beckn_domain),
            state_store_uri=os.environ.get("STATE_STORE_URI", cls.state_store_uri),
            trading_utc_offset_minutes=int(os.environ.get("TRADING_UTC_OFFSET_MINUTES", "330")),
            prometheus_port=int(os.environ.get("PROMETHEUS_PORT", "9108")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )
