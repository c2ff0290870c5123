"""
Read access to party capacity profiles, published offers and orders.

Profiles are stored per role (``generation_profiles`` for sellers,
``consumption_profiles`` for buyers) and converted into typed
:class:`~tradeguard.models.PartyProfile` objects as they are loaded, so a
malformed profile is rejected here rather than deep inside the limit
calculation.  Offers and orders are returned as
:class:`~tradeguard.models.DeliveryCommitment` values restricted to a
time window.

The write helpers exist for the order flow and for tests; the limit
validator itself never mutates offers or orders.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from ..errors import InvalidProfile
from ..models import ConsumptionProfile, DeliveryCommitment, GenerationProfile, PartyProfile
from .db import (
    as_utc,
    consumption_profiles_table,
    generation_profiles_table,
    offers_table,
    orders_table,
    utcnow,
)

logger = logging.getLogger(__name__)

# Order states that hold capacity
COMMITTED_ORDER_STATUSES = ("CONFIRMED", "SCHEDULED", "COMPLETED")


class PartyStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    # -- profiles -----------------------------------------------------------

    async def set_generation_profile(self, party_id: str, capacity_kw: float) -> None:
        profile = GenerationProfile(capacity_kw=capacity_kw)
        await self._upsert(
            generation_profiles_table, party_id, capacity_kw=profile.capacity_kw
        )

    async def set_consumption_profile(self, party_id: str, sanctioned_load_kw: float) -> None:
        profile = ConsumptionProfile(sanctioned_load_kw=sanctioned_load_kw)
        await self._upsert(
            consumption_profiles_table,
            party_id,
            sanctioned_load_kw=profile.sanctioned_load_kw,
        )

    async def _upsert(self, table, party_id: str, **values) -> None:
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(table).where(table.c.party_id == party_id).values(**values)
            )
            if result.rowcount == 0:
                await conn.execute(insert(table).values(party_id=party_id, **values))

    async def get_profile(self, party_id: str) -> Optional[PartyProfile]:
        """Load both role profiles of a party.

        Returns ``None`` when the party has no profile of either kind.

        Raises:
            InvalidProfile: a stored profile fails validation.
        """
        async with self.engine.connect() as conn:
            gen = (
                await conn.execute(
                    select(generation_profiles_table.c.capacity_kw).where(
                        generation_profiles_table.c.party_id == party_id
                    )
                )
            ).scalar_one_or_none()
            con = (
                await conn.execute(
                    select(consumption_profiles_table.c.sanctioned_load_kw).where(
                        consumption_profiles_table.c.party_id == party_id
                    )
                )
            ).scalar_one_or_none()
        if gen is None and con is None:
            return None
        try:
            return PartyProfile(
                party_id=party_id,
                generation=GenerationProfile(capacity_kw=gen) if gen is not None else None,
                consumption=(
                    ConsumptionProfile(sanctioned_load_kw=con) if con is not None else None
                ),
            )
        except ValidationError as exc:
            raise InvalidProfile(party_id, f"Invalid capacity profile: {exc}") from exc

    # -- offers and orders --------------------------------------------------

    async def add_offer(
        self,
        offer_id: str,
        party_id: str,
        quantity: float,
        start: dt.datetime,
        end: dt.datetime,
        item_id: Optional[str] = None,
    ) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                insert(offers_table).values(
                    id=offer_id,
                    party_id=party_id,
                    item_id=item_id,
                    quantity=float(quantity),
                    delivery_start=as_utc(start),
                    delivery_end=as_utc(end),
                )
            )

    async def add_order(
        self,
        order_id: str,
        transaction_id: str,
        buyer_id: str,
        seller_id: str,
        quantity: float,
        start: dt.datetime,
        end: dt.datetime,
        status: str = "CONFIRMED",
        item_id: Optional[str] = None,
    ) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(
                insert(orders_table).values(
                    id=order_id,
                    transaction_id=transaction_id,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    item_id=item_id,
                    status=status,
                    quantity=float(quantity),
                    delivery_start=as_utc(start),
                    delivery_end=as_utc(end),
                    updated_at=utcnow(),
                )
            )

    async def set_order_status(self, transaction_id: str, status: str) -> int:
        """Set the status of every order row of a transaction; returns rows changed."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(orders_table)
                .where(orders_table.c.transaction_id == transaction_id)
                .values(status=status, updated_at=utcnow())
            )
        logger.info("Order status for txn=%s set to %s", transaction_id, status)
        return result.rowcount

    async def mark_buyer_order_delivered(self, transaction_id: str) -> None:
        await self.set_order_status(transaction_id, "DELIVERED")

    async def seller_commitments(
        self, party_id: str, window_start: dt.datetime, window_end: dt.datetime
    ) -> List[DeliveryCommitment]:
        """Active offers plus committed sales overlapping the window."""
        start, end = as_utc(window_start), as_utc(window_end)
        offers = (
            select(
                offers_table.c.delivery_start,
                offers_table.c.delivery_end,
                offers_table.c.quantity,
            )
            .where(offers_table.c.party_id == party_id)
            .where(offers_table.c.quantity > 0)
            .where(offers_table.c.delivery_start < end)
            .where(offers_table.c.delivery_end > start)
        )
        sold = self._committed_orders(orders_table.c.seller_id == party_id, start, end)
        async with self.engine.connect() as conn:
            rows = list((await conn.execute(offers)).all())
            rows += list((await conn.execute(sold)).all())
        return [DeliveryCommitment(start=r[0], end=r[1], quantity=r[2]) for r in rows]

    async def buyer_commitments(
        self, party_id: str, window_start: dt.datetime, window_end: dt.datetime
    ) -> List[DeliveryCommitment]:
        """Committed purchases overlapping the window."""
        start, end = as_utc(window_start), as_utc(window_end)
        bought = self._committed_orders(orders_table.c.buyer_id == party_id, start, end)
        async with self.engine.connect() as conn:
            rows = (await conn.execute(bought)).all()
        return [DeliveryCommitment(start=r[0], end=r[1], quantity=r[2]) for r in rows]

    @staticmethod
    def _committed_orders(party_clause, start: dt.datetime, end: dt.datetime):
        return (
            select(
                orders_table.c.delivery_start,
                orders_table.c.delivery_end,
                orders_table.c.quantity,
            )
            .where(party_clause)
            .where(orders_table.c.status.in_(COMMITTED_ORDER_STATUSES))
            .where(orders_table.c.delivery_start < end)
            .where(orders_table.c.delivery_end > start)
        )
