"""
On-settle notifier
==================

Sends the ``on_settle`` callback when a settlement first reaches the
SETTLED state.  The settlement poller calls the notifier once per
settlement and only marks the settlement as notified after the call
returns without raising, which gives at-most-one successful callback per
settlement.

Configuration
-------------

``ON_SETTLE_CALLBACK_URL``
    Endpoint that receives the callback as a JSON ``POST``.  When unset,
    the notifier logs and returns normally, so settlements are still
    marked as notified.

``ON_SETTLE_TIMEOUT_SECONDS``
    Request timeout (default ``10``).

``BECKN_DOMAIN``
    Domain placed in the callback context envelope.

Payload
-------

``{"context": {...}, "message": {"settlement": {...}}}`` where the
settlement object mirrors the ledger-derived fields of
:class:`~tradeguard.models.Settlement`.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from typing import Any, Dict, Optional

import aiohttp

from ..models import Settlement

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2.0.0"


class OnSettleError(RuntimeError):
    """The callback endpoint rejected the notification."""


def build_on_settle_payload(settlement: Settlement, domain: str) -> Dict[str, Any]:
    return {
        "context": {
            "version": PROTOCOL_VERSION,
            "action": "on_settle",
            "timestamp": dt.datetime.now(dt.timezone.utc).isoformat(),
            "message_id": str(uuid.uuid4()),
            "transaction_id": settlement.transaction_id,
            "domain": domain,
        },
        "message": {
            "settlement": {
                "transactionId": settlement.transaction_id,
                "orderItemId": settlement.order_item_id,
                "role": settlement.role.value,
                "settlementStatus": settlement.settlement_status.value,
                "settlementCycleId": settlement.settlement_cycle_id,
                "contractedQuantity": settlement.contracted_quantity,
                "actualDelivered": settlement.actual_delivered,
                "deviationKwh": settlement.deviation_kwh,
                "settledAt": settlement.settled_at.isoformat() if settlement.settled_at else None,
                "buyerDiscomStatus": settlement.buyer_discom_status.value,
                "sellerDiscomStatus": settlement.seller_discom_status.value,
            }
        },
    }


class OnSettleNotifier:
    """POST the on-settle callback to the configured endpoint."""

    def __init__(
        self,
        callback_url: Optional[str],
        *,
        domain: str = "beckn.one:deg:p2p-trading:2.0.0",
        timeout: float = 10.0,
    ) -> None:
        self.callback_url = callback_url
        self.domain = domain
        self.timeout = timeout

    async def __call__(self, settlement: Settlement) -> None:
        """Send the callback; raise on transport or HTTP errors."""
        if not self.callback_url:
            logger.info(
                "No ON_SETTLE_CALLBACK_URL configured; skipping callback for txn=%s",
                settlement.transaction_id,
            )
            return
        payload = build_on_settle_payload(settlement, self.domain)
        logger.info(
            "Triggering on_settle for txn=%s to %s", settlement.transaction_id, self.callback_url
        )
        async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout)) as session:
            async with session.post(self.callback_url, json=payload) as resp:
                if resp.status >= 400:
                    text = await resp.text()
                    raise OnSettleError(
                        f"on_settle callback failed ({resp.status}): {text[:200]}"
                    )
        logger.debug("on_settle delivered for txn=%s", settlement.transaction_id)
