"""
Trading rules stored in the database.

The limit validator calls :meth:`TradingRulesStore.get_rules` on every
validation, so operators can tighten safety factors or switch limits off
without restarting the service.  Nothing is cached between calls.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import insert, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from ..models import TradingRules
from .db import trading_rules_table, utcnow

logger = logging.getLogger(__name__)

RULES_ID = "trading_rules"


class TradingRulesStore:
    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def get_rules(self) -> TradingRules:
        """Return the configured rules, or defaults when none are stored."""
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(
                    select(trading_rules_table).where(trading_rules_table.c.id == RULES_ID)
                )
                row = result.mappings().first()
        except SQLAlchemyError as exc:
            logger.error("Failed to fetch trading rules, using defaults: %s", exc)
            return TradingRules()
        if row is None:
            return TradingRules()
        return TradingRules(
            buyer_safety_factor=row["buyer_safety_factor"],
            seller_safety_factor=row["seller_safety_factor"],
            enable_buyer_limits=row["enable_buyer_limits"],
            enable_seller_limits=row["enable_seller_limits"],
            updated_at=row["updated_at"],
        )

    async def update_rules(self, **changes: Any) -> TradingRules:
        """Merge ``changes`` into the stored rules and return the result.

        Unknown keys raise ``ValueError`` and out-of-range factors raise
        ``pydantic.ValidationError``, both before anything is written.
        """
        current = await self.get_rules()
        unknown = set(changes) - set(TradingRules.model_fields)
        if unknown:
            raise ValueError(f"Unknown trading rule(s): {', '.join(sorted(unknown))}")
        merged = TradingRules.model_validate(
            {**current.model_dump(), **changes, "updated_at": utcnow()}
        )
        values = merged.model_dump()
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(trading_rules_table)
                .where(trading_rules_table.c.id == RULES_ID)
                .values(**values)
            )
            if result.rowcount == 0:
                await conn.execute(insert(trading_rules_table).values(id=RULES_ID, **values))
        logger.info("Updated trading rules: %s", changes)
        return merged
