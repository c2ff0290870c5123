"""
Inventory ledger for published energy items.

Each item carries an ``available_quantity`` counter.  Order confirmation
reserves energy by calling :meth:`InventoryLedger.reduce`, which is the
only write path that lowers the counter.  The decrement is a single
conditional statement evaluated by the database::

    UPDATE items
       SET available_quantity = available_quantity - :qty
     WHERE id = :item_id AND available_quantity >= :qty
    RETURNING available_quantity

Concurrent confirmations against the same item therefore serialize in
the storage engine: the sum of successful decrements never exceeds the
quantity that was available, and the counter never goes negative.  No
application-level lock is involved, so the guarantee also holds across
processes sharing the database.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from ..errors import InsufficientInventory
from ..metrics import INVENTORY_REJECTIONS
from .db import items_table, utcnow

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Atomic available-quantity counters backed by the ``items`` table."""

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def add_item(self, item_id: str, quantity: float, party_id: Optional[str] = None) -> None:
        """Register an item with its initial available quantity."""
        if quantity < 0:
            raise ValueError("Initial quantity must not be negative")
        async with self.engine.begin() as conn:
            await conn.execute(
                insert(items_table).values(
                    id=item_id,
                    party_id=party_id,
                    available_quantity=float(quantity),
                    updated_at=utcnow(),
                )
            )

    async def get_available(self, item_id: str) -> Optional[float]:
        """Return the current available quantity, or ``None`` for unknown items."""
        async with self.engine.connect() as conn:
            result = await conn.execute(
                select(items_table.c.available_quantity).where(items_table.c.id == item_id)
            )
            value = result.scalar_one_or_none()
        return None if value is None else float(value)

    async def reduce(self, item_id: str, quantity: float) -> float:
        """Atomically take ``quantity`` from an item and return what is left.

        Raises:
            InsufficientInventory: the item does not exist or holds less
                than ``quantity``.  The stored value is left untouched.
            ValueError: ``quantity`` is not positive.
        """
        if quantity <= 0:
            raise ValueError("Quantity to reduce must be positive")
        stmt = (
            update(items_table)
            .where(items_table.c.id == item_id)
            .where(items_table.c.available_quantity >= quantity)
            .values(
                available_quantity=items_table.c.available_quantity - quantity,
                updated_at=utcnow(),
            )
            .returning(items_table.c.available_quantity)
        )
        async with self.engine.begin() as conn:
            result = await conn.execute(stmt)
            remaining = result.scalar_one_or_none()
        if remaining is None:
            INVENTORY_REJECTIONS.inc()
            logger.warning("Insufficient inventory for item %s (requested %s)", item_id, quantity)
            raise InsufficientInventory(item_id, quantity)
        logger.info("Reduced item %s by %s; %s remaining", item_id, quantity, remaining)
        return float(remaining)
