"""
Settlement poller.

Brings local settlement state into agreement with the external ledger.
Each cycle (:meth:`SettlementPoller.poll_once`):

1. returns an empty result immediately if another cycle is still running;
2. loads every settlement that is not yet SETTLED, oldest first;
3. for each one, queries the ledger, applies the snapshot, and when the
   settlement has just become SETTLED sends the on-settle callback and
   then marks it notified;
4. retries the callback for settlements that are SETTLED but were left
   unnotified by an earlier failed callback.

A failure while handling one settlement is logged and recorded in the
cycle's error list; it never stops the remaining settlements.  The
poller owns all of its state, so several pollers (for example in tests)
do not interfere with each other.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

from ..clients.ledger_client import LedgerClient
from ..metrics import ON_SETTLE_FAILURES, POLL_CYCLES, POLL_DURATION, SETTLEMENTS_SETTLED
from ..models import Settlement, SettlementStatus, TradeRole
from .db import utcnow
from .settlement_store import SettlementStore

logger = logging.getLogger(__name__)

OnSettleCallback = Callable[[Settlement], Awaitable[None]]
TransactionHook = Callable[[str], Awaitable[None]]


@dataclass
class PollResult:
    polled_at: dt.datetime
    checked: int = 0
    updated: int = 0
    newly_settled: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["polled_at"] = self.polled_at.isoformat()
        return data


class SettlementPoller:
    """Periodic ledger reconciliation with at-most-once on-settle callbacks."""

    def __init__(
        self,
        store: SettlementStore,
        ledger: LedgerClient,
        on_settle: Optional[OnSettleCallback] = None,
        *,
        discom_id: str = "BESCOM-KA",
        interval: float = 300.0,
        initial_delay: float = 5.0,
        enabled: bool = True,
        on_buyer_delivered: Optional[TransactionHook] = None,
    ) -> None:
        """
        :param store: Settlement persistence.
        :param ledger: Ledger client used for every query.
        :param on_settle: Awaitable callback sent once per newly settled
            record; the record is only marked notified if it returns
            without raising.
        :param discom_id: Discom used when querying the ledger.
        :param interval: Seconds between cycles of the background task.
        :param initial_delay: Seconds before the first background cycle.
        :param enabled: When false, :meth:`start` and :meth:`stop` do nothing.
        :param on_buyer_delivered: Called with the transaction id when a
            BUYER settlement becomes SETTLED (marks the buyer's order
            delivered).
        """
        self.store = store
        self.ledger = ledger
        self.on_settle = on_settle
        self.discom_id = discom_id
        self.interval = interval
        self.initial_delay = initial_delay
        self.enabled = enabled
        self.on_buyer_delivered = on_buyer_delivered
        self.last_poll_result: Optional[PollResult] = None
        self._cycle_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_polling(self) -> bool:
        return self._cycle_lock.locked()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll_once(self) -> PollResult:
        """Run one reconciliation cycle and return its summary."""
        result = PollResult(polled_at=utcnow())
        if self._cycle_lock.locked():
            logger.info("Poll already in progress, skipping")
            POLL_CYCLES.labels(outcome="skipped").inc()
            return result

        async with self._cycle_lock:
            started = time.monotonic()
            try:
                pending = await self.store.get_pending_settlements()
                result.checked = len(pending)
                logger.info("Starting poll cycle: %d pending settlements", len(pending))
                attempted: Set[Tuple[str, TradeRole]] = set()
                for settlement in pending:
                    attempted.add((settlement.transaction_id, settlement.role))
                    try:
                        await self._reconcile(settlement, result)
                    except Exception as exc:
                        message = f"Failed to poll {settlement.transaction_id}: {exc}"
                        logger.error(message)
                        result.errors.append(message)
                await self._retry_notifications(attempted, result)
                POLL_CYCLES.labels(outcome="completed").inc()
                logger.info(
                    "Poll complete: checked=%d updated=%d settled=%d errors=%d",
                    result.checked,
                    result.updated,
                    len(result.newly_settled),
                    len(result.errors),
                )
            except Exception as exc:
                message = f"Poll cycle failed: {exc}"
                logger.exception(message)
                result.errors.append(message)
                POLL_CYCLES.labels(outcome="failed").inc()
            finally:
                POLL_DURATION.set(time.monotonic() - started)
                self.last_poll_result = result
        return result

    async def _reconcile(self, settlement: Settlement, result: PollResult) -> None:
        record = await self.ledger.query_by_transaction(settlement.transaction_id, self.discom_id)
        if record is None:
            return
        updated = await self.store.update_from_ledger(
            settlement.transaction_id, record, role=settlement.role
        )
        if updated is None:
            return
        result.updated += 1
        if not updated.is_settled:
            return
        newly_settled = settlement.settlement_status is not SettlementStatus.SETTLED
        if newly_settled:
            result.newly_settled.append(settlement.transaction_id)
            SETTLEMENTS_SETTLED.inc()
        if not updated.on_settle_notified:
            await self._notify(updated)
        if newly_settled and updated.role is TradeRole.BUYER and self.on_buyer_delivered:
            logger.info("Buyer order delivered per ledger: %s", settlement.transaction_id)
            await self.on_buyer_delivered(settlement.transaction_id)

    async def _notify(self, settlement: Settlement) -> None:
        if self.on_settle is not None:
            try:
                await self.on_settle(settlement)
            except Exception:
                ON_SETTLE_FAILURES.inc()
                raise
        await self.store.mark_on_settle_notified(settlement.transaction_id, settlement.role)

    async def _retry_notifications(
        self, attempted: Set[Tuple[str, TradeRole]], result: PollResult
    ) -> None:
        for settlement in await self.store.get_unnotified_settlements():
            if (settlement.transaction_id, settlement.role) in attempted:
                continue
            try:
                await self._notify(settlement)
            except Exception as exc:
                message = f"Failed to notify {settlement.transaction_id}: {exc}"
                logger.error(message)
                result.errors.append(message)

    async def refresh_settlement(self, transaction_id: str) -> Optional[Settlement]:
        """Reconcile one transaction on demand.

        Returns the updated settlement, or ``None`` when the ledger has no
        record for the transaction.  A failed callback is logged and left
        for the next poll cycle to retry.
        """
        logger.info("Force refreshing settlement: %s", transaction_id)
        record = await self.ledger.query_by_transaction(transaction_id, self.discom_id)
        if record is None:
            logger.info("No ledger record found for: %s", transaction_id)
            return None
        before = {
            s.role: s.settlement_status
            for s in await self.store.get_settlements_by_transaction(transaction_id)
        }
        updated = await self.store.update_from_ledger(transaction_id, record)
        if updated is None:
            return None
        for leg in await self.store.get_settlements_by_transaction(transaction_id):
            if not leg.is_settled:
                continue
            if before.get(leg.role) is not SettlementStatus.SETTLED:
                SETTLEMENTS_SETTLED.inc()
            if not leg.on_settle_notified:
                try:
                    await self._notify(leg)
                except Exception as exc:
                    logger.error("on_settle failed for %s: %s", transaction_id, exc)
                    continue
            if (
                leg.role is TradeRole.BUYER
                and before.get(leg.role) is not SettlementStatus.SETTLED
                and self.on_buyer_delivered
            ):
                await self.on_buyer_delivered(transaction_id)
        return await self.store.get_settlement(transaction_id, updated.role)

    def start(self) -> None:
        """Start the background polling task (idempotent)."""
        if not self.enabled:
            logger.info("Settlement polling disabled")
            return
        if self.running:
            logger.info("Settlement polling already started")
            return
        logger.info("Starting settlement polling (interval: %.0fs)", self.interval)
        self._task = asyncio.get_running_loop().create_task(self._run(), name="settlement-poller")

    def stop(self) -> None:
        """Cancel the background polling task (idempotent)."""
        if not self.enabled or self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Settlement polling stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await self.poll_once()
            except Exception:
                logger.exception("Settlement poll failed")
            await asyncio.sleep(self.interval)

    def get_polling_status(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "running": self.running,
            "is_polling": self.is_polling,
            "interval_seconds": self.interval,
            "last_poll_result": (
                self.last_poll_result.as_dict() if self.last_poll_result else None
            ),
        }
