"""
Settlement store.

One settlement row is kept per (transaction, role): when the platform is
both buyer-side and seller-side of a trade, each leg is tracked on its
own.  Settlement status is never advanced incrementally; it is derived
afresh from the discom completion flags of each ledger snapshot:

=====================  =====================  ====================
buyer discom           seller discom          status
=====================  =====================  ====================
COMPLETED              COMPLETED              SETTLED
COMPLETED              PENDING                BUYER_COMPLETED
PENDING                COMPLETED              SELLER_COMPLETED
PENDING                PENDING                PENDING
=====================  =====================  ====================

:meth:`SettlementStore.update_from_ledger` applies a snapshot with one
``UPDATE ... RETURNING`` statement.  The deviation is computed against
the stored contracted quantity inside that statement, and the settlement
cycle and ``settled_at`` are written through ``COALESCE`` so they are
assigned the first time a row becomes SETTLED and never overwritten.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import DateTime, Float, String, case, func, insert, literal, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..models import (
    DiscomStatus,
    LedgerRecord,
    Settlement,
    SettlementStatus,
    TradeRole,
)
from .db import settlements_table, utcnow

logger = logging.getLogger(__name__)

SETTLEMENT_CYCLES_PER_DAY = 4

_c = settlements_table.c


def derive_settlement_status(record: LedgerRecord) -> SettlementStatus:
    buyer_done = record.status_buyer_discom is DiscomStatus.COMPLETED
    seller_done = record.status_seller_discom is DiscomStatus.COMPLETED
    if buyer_done and seller_done:
        return SettlementStatus.SETTLED
    if buyer_done:
        return SettlementStatus.BUYER_COMPLETED
    if seller_done:
        return SettlementStatus.SELLER_COMPLETED
    return SettlementStatus.PENDING


def extract_actual_delivered(record: LedgerRecord) -> Optional[float]:
    """Delivered energy: buyer-side ACTUAL_PUSHED, else seller-side ACTUAL_DELIVERED."""
    for metric in record.buyer_fulfillment_validation_metrics:
        if metric.validation_metric_type == "ACTUAL_PUSHED":
            return metric.validation_metric_value
    for metric in record.seller_fulfillment_validation_metrics:
        if metric.validation_metric_type == "ACTUAL_DELIVERED":
            return metric.validation_metric_value
    return None


def settlement_cycle_id(now: dt.datetime) -> str:
    """Identify the settlement cycle containing ``now`` (UTC date + bucket)."""
    hours_per_cycle = 24 // SETTLEMENT_CYCLES_PER_DAY
    cycle = now.hour // hours_per_cycle + 1
    return f"settle-{now.date().isoformat()}-{cycle:03d}"


def _to_settlement(row: Mapping[str, Any]) -> Settlement:
    return Settlement.model_validate(dict(row))


class SettlementStore:
    """Persistence and ledger-derived updates for settlement records."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def create_settlement(
        self,
        transaction_id: str,
        order_item_id: str,
        contracted_quantity: float,
        role: TradeRole = TradeRole.SELLER,
        counterparty_platform_id: Optional[str] = None,
        counterparty_discom_id: Optional[str] = None,
    ) -> Settlement:
        """Create the settlement for one leg of a confirmed order.

        Idempotent: if a settlement already exists for
        ``(transaction_id, role)`` it is returned unchanged, keeping its
        original order item and contracted quantity.
        """
        now = utcnow()
        try:
            async with self.engine.begin() as conn:
                await conn.execute(
                    insert(settlements_table).values(
                        transaction_id=transaction_id,
                        order_item_id=order_item_id,
                        role=TradeRole(role).value,
                        counterparty_platform_id=counterparty_platform_id,
                        counterparty_discom_id=counterparty_discom_id,
                        settlement_status=SettlementStatus.PENDING.value,
                        buyer_discom_status=DiscomStatus.PENDING.value,
                        seller_discom_status=DiscomStatus.PENDING.value,
                        contracted_quantity=float(contracted_quantity),
                        on_settle_notified=False,
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError:
            logger.debug("Settlement already exists: txn=%s role=%s", transaction_id, role)
        else:
            logger.info(
                "Created settlement: txn=%s role=%s qty=%s",
                transaction_id,
                TradeRole(role).value,
                contracted_quantity,
            )
        settlement = await self.get_settlement(transaction_id, role)
        if settlement is None:  # pragma: no cover - insert or conflict guarantees a row
            raise RuntimeError(f"Settlement for {transaction_id} vanished after insert")
        return settlement

    async def get_settlement(
        self, transaction_id: str, role: Optional[TradeRole] = None
    ) -> Optional[Settlement]:
        stmt = select(settlements_table).where(_c.transaction_id == transaction_id)
        if role is not None:
            stmt = stmt.where(_c.role == TradeRole(role).value)
        stmt = stmt.order_by(_c.created_at, _c.id).limit(1)
        async with self.engine.connect() as conn:
            row = (await conn.execute(stmt)).mappings().first()
        return _to_settlement(row) if row is not None else None

    async def get_settlements_by_transaction(self, transaction_id: str) -> List[Settlement]:
        """Both legs of a transaction, where present."""
        return await self._fetch(
            select(settlements_table)
            .where(_c.transaction_id == transaction_id)
            .order_by(_c.created_at, _c.id)
        )

    async def get_settlements(
        self, status: Optional[SettlementStatus] = None
    ) -> List[Settlement]:
        """All settlements, most recently updated first."""
        stmt = select(settlements_table)
        if status is not None:
            stmt = stmt.where(_c.settlement_status == SettlementStatus(status).value)
        return await self._fetch(stmt.order_by(_c.updated_at.desc(), _c.id.desc()))

    async def get_pending_settlements(self) -> List[Settlement]:
        """Settlements still waiting on the ledger, oldest first."""
        return await self._fetch(
            select(settlements_table)
            .where(_c.settlement_status != SettlementStatus.SETTLED.value)
            .order_by(_c.created_at, _c.id)
        )

    async def get_unnotified_settlements(self) -> List[Settlement]:
        """Settled records whose on-settle callback has not gone out yet."""
        return await self._fetch(
            select(settlements_table)
            .where(_c.settlement_status == SettlementStatus.SETTLED.value)
            .where(_c.on_settle_notified.is_(False))
            .order_by(_c.created_at, _c.id)
        )

    async def _fetch(self, stmt) -> List[Settlement]:
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        return [_to_settlement(row) for row in rows]

    async def update_from_ledger(
        self,
        transaction_id: str,
        record: LedgerRecord,
        role: Optional[TradeRole] = None,
    ) -> Optional[Settlement]:
        """Apply a ledger snapshot and return the updated settlement.

        With ``role`` omitted every leg of the transaction is updated and
        the oldest one is returned.  Returns ``None`` when no settlement
        matches.
        """
        now = utcnow()
        status = derive_settlement_status(record)
        actual = extract_actual_delivered(record)

        values: Dict[str, Any] = {
            "ledger_synced_at": now,
            "ledger_data": record.wire(),
            "settlement_status": status.value,
            "buyer_discom_status": (record.status_buyer_discom or DiscomStatus.PENDING).value,
            "seller_discom_status": (record.status_seller_discom or DiscomStatus.PENDING).value,
            "actual_delivered": actual,
            "deviation_kwh": (
                literal(actual, Float) - _c.contracted_quantity if actual is not None else None
            ),
            # the counterparty is the opposite side of the trade
            "counterparty_platform_id": func.coalesce(
                _c.counterparty_platform_id,
                case(
                    (_c.role == TradeRole.BUYER.value, literal(record.platform_id_seller, String)),
                    else_=literal(record.platform_id_buyer, String),
                ),
            ),
            "counterparty_discom_id": func.coalesce(
                _c.counterparty_discom_id,
                case(
                    (_c.role == TradeRole.BUYER.value, literal(record.discom_id_seller, String)),
                    else_=literal(record.discom_id_buyer, String),
                ),
            ),
            "updated_at": now,
        }
        if status is SettlementStatus.SETTLED:
            values["settled_at"] = func.coalesce(
                _c.settled_at, literal(now, DateTime(timezone=True))
            )
            values["settlement_cycle_id"] = func.coalesce(
                _c.settlement_cycle_id, literal(settlement_cycle_id(now), String)
            )

        stmt = update(settlements_table).where(_c.transaction_id == transaction_id)
        if role is not None:
            stmt = stmt.where(_c.role == TradeRole(role).value)
        stmt = stmt.values(**values).returning(*settlements_table.c)

        async with self.engine.begin() as conn:
            rows = (await conn.execute(stmt)).mappings().all()
        if not rows:
            logger.warning("No settlement to update for txn=%s", transaction_id)
            return None
        logger.info("Updated from ledger: txn=%s status=%s", transaction_id, status.value)
        first = min(rows, key=lambda r: r["id"])
        return _to_settlement(first)

    async def mark_on_settle_notified(
        self, transaction_id: str, role: Optional[TradeRole] = None
    ) -> None:
        """Record that the on-settle callback went out.  Safe to repeat."""
        stmt = update(settlements_table).where(_c.transaction_id == transaction_id)
        if role is not None:
            stmt = stmt.where(_c.role == TradeRole(role).value)
        async with self.engine.begin() as conn:
            await conn.execute(stmt.values(on_settle_notified=True, updated_at=utcnow()))
        logger.info("Marked on_settle notified: txn=%s", transaction_id)

    async def get_stats(self) -> Dict[str, int]:
        """Count settlements per status."""
        stmt = select(_c.settlement_status, func.count()).group_by(_c.settlement_status)
        async with self.engine.connect() as conn:
            rows = (await conn.execute(stmt)).all()
        stats = {
            "total": 0,
            "pending": 0,
            "buyer_completed": 0,
            "seller_completed": 0,
            "settled": 0,
        }
        for status, count in rows:
            stats["total"] += count
            stats[status.lower()] = count
        return stats
