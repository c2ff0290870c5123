"""
Exception types raised by the trading-integrity layer.

Only inventory exhaustion and ledger authentication failures ever reach
callers as exceptions.  Limit rejections are returned as a
``LimitCheckResult`` with ``allowed=False`` and transient ledger failures
are absorbed by the ledger client, which returns ``None`` or an empty
list instead.
"""

from __future__ import annotations

from typing import Optional


class TradeGuardError(Exception):
    """Base class for all errors raised by this package."""


class InsufficientInventory(TradeGuardError):
    """Raised when an item cannot cover the requested quantity."""

    def __init__(self, item_id: str, requested: float) -> None:
        self.item_id = item_id
        self.requested = requested
        super().__init__(f"Insufficient inventory: {item_id} (requested {requested})")


class InvalidProfile(TradeGuardError):
    """A party's capacity profile is missing or unusable."""

    def __init__(self, party_id: str, reason: str) -> None:
        self.party_id = party_id
        self.reason = reason
        super().__init__(reason)


class LedgerUnavailable(TradeGuardError):
    """The ledger could not be reached (connection error or timeout)."""


class LedgerHTTPError(TradeGuardError):
    """The ledger answered with an HTTP error status."""

    def __init__(self, status: int, body: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        super().__init__(f"Ledger API error {status}")

    @property
    def retryable(self) -> bool:
        return 500 <= self.status < 600


class LedgerAuthError(TradeGuardError):
    """The ledger rejected the request signature (HTTP 401/403)."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"Ledger auth failed ({status}): request signature rejected")
