"""Tests for the trading limit validator.

The seller used throughout has an 8 kW generation capacity and a 10 kW
sanctioned load, giving a selling limit of 8 kWh per hour at the default
safety factor.  Dates and hours are market local time (UTC+05:30).
"""

from __future__ import annotations

import datetime as dt
import math

import pytest
import pytest_asyncio

from tradeguard.services.limit_validator import LimitValidator
from tradeguard.services.party_store import PartyStore
from tradeguard.services.trading_rules import TradingRulesStore

IST = dt.timezone(dt.timedelta(hours=5, minutes=30))
DAY = "2026-11-01"


def at(hour: int) -> dt.datetime:
    return dt.datetime(2026, 11, 1, hour, tzinfo=IST)


@pytest.fixture
def parties(engine) -> PartyStore:
    return PartyStore(engine)


@pytest.fixture
def rules(engine) -> TradingRulesStore:
    return TradingRulesStore(engine)


@pytest_asyncio.fixture
async def validator(parties, rules) -> LimitValidator:
    await parties.set_generation_profile("seller-1", 8.0)
    await parties.set_consumption_profile("seller-1", 10.0)
    await parties.set_consumption_profile("buyer-1", 6.0)
    return LimitValidator(parties, rules)


@pytest.mark.asyncio
async def test_seller_within_limit(validator) -> None:
    result = await validator.validate_seller_limit("seller-1", 5.0, DAY, 10, 1)
    assert result.allowed
    assert result.limit == 8.0
    assert result.current_usage == 0.0
    assert result.remaining == 8.0
    assert result.error is None


@pytest.mark.asyncio
async def test_seller_over_limit(validator) -> None:
    result = await validator.validate_seller_limit("seller-1", 9.0, DAY, 10, 1)
    assert not result.allowed
    assert "10:00-11:00" in result.error
    assert "Limit: 8.00 kWh/h" in result.error


@pytest.mark.asyncio
async def test_existing_offer_counts_against_limit(validator, parties) -> None:
    await parties.add_offer("offer-1", "seller-1", 4.0, at(10), at(11))

    result = await validator.validate_seller_limit("seller-1", 5.0, DAY, 10, 1)
    assert not result.allowed
    assert result.current_usage == 4.0
    assert result.remaining == 4.0

    ok = await validator.validate_seller_limit("seller-1", 4.0, DAY, 10, 1)
    assert ok.allowed
    assert ok.current_usage == 4.0


@pytest.mark.asyncio
async def test_multi_hour_offer_is_pro_rated(validator, parties) -> None:
    # 10 kWh over two hours holds 5 kWh/h in each hour
    await parties.add_offer("offer-1", "seller-1", 10.0, at(10), at(12))

    fits = await validator.validate_seller_limit("seller-1", 3.0, DAY, 11, 1)
    assert fits.allowed
    assert fits.current_usage == 5.0

    too_much = await validator.validate_seller_limit("seller-1", 4.0, DAY, 11, 1)
    assert not too_much.allowed
    assert "11:00-12:00" in too_much.error


@pytest.mark.asyncio
async def test_request_spread_over_duration(validator, parties) -> None:
    # 12 kWh over three hours asks for 4 kWh/h, clashing only at 12:00
    await parties.add_offer("offer-1", "seller-1", 5.0, at(12), at(13))

    result = await validator.validate_seller_limit("seller-1", 12.0, DAY, 10, 3)
    assert not result.allowed
    assert "12:00-13:00" in result.error
    assert result.current_usage == 5.0


@pytest.mark.asyncio
async def test_committed_sales_count_but_cancelled_do_not(validator, parties) -> None:
    await parties.add_order("o-1", "txn-1", "buyer-9", "seller-1", 6.0, at(10), at(11))
    await parties.add_order(
        "o-2", "txn-2", "buyer-9", "seller-1", 6.0, at(10), at(11), status="CANCELLED"
    )

    result = await validator.validate_seller_limit("seller-1", 3.0, DAY, 10, 1)
    assert not result.allowed
    assert result.current_usage == 6.0


@pytest.mark.asyncio
async def test_offers_outside_window_ignored(validator, parties) -> None:
    await parties.add_offer("offer-1", "seller-1", 8.0, at(9), at(10))
    await parties.add_offer("offer-2", "seller-1", 8.0, at(11), at(12))

    result = await validator.validate_seller_limit("seller-1", 8.0, DAY, 10, 1)
    assert result.allowed


@pytest.mark.asyncio
async def test_safety_factor_applied(validator, rules) -> None:
    await rules.update_rules(seller_safety_factor=0.5)
    result = await validator.validate_seller_limit("seller-1", 5.0, DAY, 10, 1)
    assert not result.allowed
    assert result.limit == 4.0


@pytest.mark.asyncio
async def test_disabled_limits_allow_everything(validator, rules) -> None:
    await rules.update_rules(enable_seller_limits=False, enable_buyer_limits=False)

    seller = await validator.validate_seller_limit("seller-1", 1000.0, DAY, 10, 1)
    buyer = await validator.validate_buyer_limit("nobody", 1000.0, DAY, 10, 1)
    assert seller.allowed and buyer.allowed
    assert math.isinf(seller.limit)
    assert math.isinf(buyer.remaining)


@pytest.mark.asyncio
async def test_unknown_party_rejected(validator) -> None:
    result = await validator.validate_seller_limit("ghost", 1.0, DAY, 10, 1)
    assert not result.allowed
    assert result.error == "User not found"


@pytest.mark.asyncio
async def test_missing_generation_profile_fails_closed(validator) -> None:
    result = await validator.validate_seller_limit("buyer-1", 1.0, DAY, 10, 1)
    assert not result.allowed
    assert "Generation profile not found" in result.error


@pytest.mark.asyncio
async def test_generation_capacity_used_without_sanctioned_load(parties, rules) -> None:
    await parties.set_generation_profile("solar-only", 3.0)
    validator = LimitValidator(parties, rules)
    result = await validator.validate_seller_limit("solar-only", 3.0, DAY, 10, 1)
    assert result.allowed
    assert result.limit == 3.0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "quantity, start_hour, duration, date",
    [
        (1.0, 10, 0, DAY),
        (0.0, 10, 1, DAY),
        (1.0, 24, 1, DAY),
        (1.0, 10, 1, "not-a-date"),
    ],
)
async def test_invalid_requests_rejected(validator, quantity, start_hour, duration, date) -> None:
    result = await validator.validate_seller_limit("seller-1", quantity, date, start_hour, duration)
    assert not result.allowed
    assert result.error


@pytest.mark.asyncio
async def test_buyer_limit_uses_sanctioned_load(validator, parties) -> None:
    await parties.add_order("o-1", "txn-1", "buyer-1", "seller-1", 4.0, at(18), at(19))

    fits = await validator.validate_buyer_limit("buyer-1", 2.0, dt.date(2026, 11, 1), 18, 1)
    assert fits.allowed
    assert fits.limit == 6.0
    assert fits.current_usage == 4.0

    over = await validator.validate_buyer_limit("buyer-1", 3.0, DAY, 18, 1)
    assert not over.allowed
    assert over.error.startswith("Buying limit exceeded for 18:00-19:00")


@pytest.mark.asyncio
async def test_buyer_without_consumption_profile_rejected(parties, rules) -> None:
    await parties.set_generation_profile("gen-only", 5.0)
    validator = LimitValidator(parties, rules)
    result = await validator.validate_buyer_limit("gen-only", 1.0, DAY, 10, 1)
    assert not result.allowed
    assert "Consumption profile not found" in result.error
