"""
Trading limit validator.

Before an offer is published or an order is admitted, the validator
checks that the party's committed energy for every hour of the requested
delivery window stays within a safe limit derived from its registered
capacity:

* sellers: ``min(generation capacity, sanctioned load) * seller_safety_factor``
* buyers: ``sanctioned load * buyer_safety_factor``

Committed energy for an hour is the sum, over every active offer and
committed order whose delivery window overlaps that hour, of the
commitment's hourly rate (``quantity / window hours``).  A 10 kWh offer
spread over two hours therefore counts 5 kWh against each hour it
touches.  The requested quantity is normalised the same way.

This is an admission check, not a reservation: two publishes racing for
the same hour can both pass before either is stored.
"""

from __future__ import annotations

import datetime as dt
import logging
import math
from typing import Awaitable, Callable, List, Union

from ..errors import InvalidProfile
from ..metrics import LIMIT_REJECTIONS
from ..models import DeliveryCommitment, LimitCheckResult, PartyProfile
from .party_store import PartyStore
from .trading_rules import TradingRulesStore

logger = logging.getLogger(__name__)

# Absorbs float noise from summing pro-rated commitments
_EPSILON = 1e-9

CommitmentLoader = Callable[[str, dt.datetime, dt.datetime], Awaitable[List[DeliveryCommitment]]]


def _rejected(error: str, limit: float = 0.0, usage: float = 0.0, remaining: float = 0.0) -> LimitCheckResult:
    return LimitCheckResult(
        allowed=False, limit=limit, current_usage=usage, remaining=remaining, error=error
    )


def hourly_usage(
    commitments: List[DeliveryCommitment], slot_start: dt.datetime, slot_end: dt.datetime
) -> float:
    """Sum the hourly rates of the commitments overlapping ``[slot_start, slot_end)``."""
    total = 0.0
    for commitment in commitments:
        if commitment.duration_hours <= 0:
            continue
        if commitment.overlaps(slot_start, slot_end):
            total += commitment.hourly_rate
    return total


class LimitValidator:
    """Check new offers and orders against capacity-derived hourly limits."""

    def __init__(
        self,
        parties: PartyStore,
        rules: TradingRulesStore,
        utc_offset_minutes: int = 330,
    ) -> None:
        """
        :param parties: Source of capacity profiles and existing commitments.
        :param rules: Trading rules, re-read on every call.
        :param utc_offset_minutes: Offset of the market's local time, in
            which ``date`` and ``start_hour`` are expressed (default IST).
        """
        self.parties = parties
        self.rules = rules
        self.tz = dt.timezone(dt.timedelta(minutes=utc_offset_minutes))

    async def validate_seller_limit(
        self,
        party_id: str,
        quantity: float,
        date: Union[str, dt.date],
        start_hour: int,
        duration: int,
    ) -> LimitCheckResult:
        """Return whether ``party_id`` may sell ``quantity`` kWh in the window."""
        rules = await self.rules.get_rules()
        if not rules.enable_seller_limits:
            return LimitCheckResult(
                allowed=True, limit=math.inf, current_usage=0.0, remaining=math.inf
            )
        return await self._validate(
            "seller",
            party_id,
            quantity,
            date,
            start_hour,
            duration,
            capacity=PartyProfile.seller_capacity,
            factor=rules.seller_safety_factor,
            load_commitments=self.parties.seller_commitments,
        )

    async def validate_buyer_limit(
        self,
        party_id: str,
        quantity: float,
        date: Union[str, dt.date],
        start_hour: int,
        duration: int,
    ) -> LimitCheckResult:
        """Return whether ``party_id`` may buy ``quantity`` kWh in the window."""
        rules = await self.rules.get_rules()
        if not rules.enable_buyer_limits:
            return LimitCheckResult(
                allowed=True, limit=math.inf, current_usage=0.0, remaining=math.inf
            )
        return await self._validate(
            "buyer",
            party_id,
            quantity,
            date,
            start_hour,
            duration,
            capacity=PartyProfile.buyer_capacity,
            factor=rules.buyer_safety_factor,
            load_commitments=self.parties.buyer_commitments,
        )

    async def _validate(
        self,
        side: str,
        party_id: str,
        quantity: float,
        date: Union[str, dt.date],
        start_hour: int,
        duration: int,
        *,
        capacity: Callable[[PartyProfile], float],
        factor: float,
        load_commitments: CommitmentLoader,
    ) -> LimitCheckResult:
        if duration < 1:
            return self._reject(side, party_id, "Duration must be at least one hour")
        if quantity <= 0:
            return self._reject(side, party_id, "Quantity must be positive")
        if not 0 <= start_hour <= 23:
            return self._reject(side, party_id, f"Invalid start hour {start_hour}")
        try:
            day = dt.date.fromisoformat(date) if isinstance(date, str) else date
        except ValueError:
            return self._reject(side, party_id, f"Invalid date {date!r}")

        try:
            profile = await self.parties.get_profile(party_id)
            if profile is None:
                return self._reject(side, party_id, "User not found")
            limit = capacity(profile) * factor
        except InvalidProfile as exc:
            return self._reject(side, party_id, exc.reason)

        hourly_qty = quantity / duration
        day_start = dt.datetime.combine(day, dt.time(), tzinfo=self.tz)
        window_start = day_start + dt.timedelta(hours=start_hour)
        window_end = window_start + dt.timedelta(hours=duration)
        commitments = await load_commitments(party_id, window_start, window_end)

        peak = 0.0
        for offset in range(duration):
            hour = start_hour + offset
            slot_start = window_start + dt.timedelta(hours=offset)
            usage = hourly_usage(commitments, slot_start, slot_start + dt.timedelta(hours=1))
            logger.debug("%s usage for %s @ %s: %.3f kWh/h", side, party_id, slot_start, usage)
            if usage + hourly_qty - limit > _EPSILON:
                label = "Selling" if side == "seller" else "Buying"
                error = (
                    f"{label} limit exceeded for {hour % 24:02d}:00-{(hour + 1) % 24:02d}:00. "
                    f"Limit: {limit:.2f} kWh/h, Allocated: {usage:.2f} kWh/h, "
                    f"Requested: {hourly_qty:.2f} kWh/h."
                )
                return self._reject(
                    side, party_id, error, limit=limit, usage=usage, remaining=max(0.0, limit - usage)
                )
            peak = max(peak, usage)

        return LimitCheckResult(
            allowed=True, limit=limit, current_usage=peak, remaining=max(0.0, limit - peak)
        )

    @staticmethod
    def _reject(side: str, party_id: str, error: str, **values: float) -> LimitCheckResult:
        LIMIT_REJECTIONS.labels(side=side).inc()
        logger.info("Rejected %s request for %s: %s", side, party_id, error)
        return _rejected(error, **values)
