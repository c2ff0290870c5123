"""Service layer for the trading-integrity layer.

This package exposes the inventory ledger, trading limit validator,
settlement store and settlement poller, plus the stores they read from.
"""

from .inventory import InventoryLedger  # noqa: F401
from .limit_validator import LimitValidator  # noqa: F401
from .notifier import OnSettleNotifier  # noqa: F401
from .party_store import PartyStore  # noqa: F401
from .settlement_poller import PollResult, SettlementPoller  # noqa: F401
from .settlement_store import SettlementStore  # noqa: F401
from .trading_rules import TradingRulesStore  # noqa: F401
