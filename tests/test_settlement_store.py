"""Tests for settlement persistence and ledger-derived updates."""

from __future__ import annotations

import datetime as dt

import pytest

from helpers.fake_ledger import ledger_record
from tradeguard.models import DiscomStatus, SettlementStatus, TradeRole
from tradeguard.services.settlement_store import (
    SettlementStore,
    derive_settlement_status,
    extract_actual_delivered,
    settlement_cycle_id,
)


@pytest.mark.parametrize(
    "buyer, seller, expected",
    [
        ("COMPLETED", "COMPLETED", SettlementStatus.SETTLED),
        ("COMPLETED", "PENDING", SettlementStatus.BUYER_COMPLETED),
        ("PENDING", "COMPLETED", SettlementStatus.SELLER_COMPLETED),
        ("PENDING", "PENDING", SettlementStatus.PENDING),
    ],
)
def test_derive_settlement_status(buyer, seller, expected) -> None:
    assert derive_settlement_status(ledger_record("txn-1", buyer, seller)) is expected


def test_missing_discom_flags_count_as_pending() -> None:
    record = ledger_record("txn-1", buyer=None, seller=None)
    assert derive_settlement_status(record) is SettlementStatus.PENDING


def test_actual_delivered_prefers_buyer_metric() -> None:
    record = ledger_record(
        "txn-1",
        delivered=4.5,
        sellerFulfillmentValidationMetrics=[
            {"validationMetricType": "ACTUAL_DELIVERED", "validationMetricValue": 4.8}
        ],
    )
    assert extract_actual_delivered(record) == 4.5


def test_actual_delivered_falls_back_to_seller_metric() -> None:
    record = ledger_record(
        "txn-1",
        buyerFulfillmentValidationMetrics=None,
        sellerFulfillmentValidationMetrics=[
            {"validationMetricType": "ACTUAL_DELIVERED", "validationMetricValue": 4.8}
        ],
    )
    assert extract_actual_delivered(record) == 4.8
    assert extract_actual_delivered(ledger_record("txn-2")) is None


def test_settlement_cycle_id_buckets() -> None:
    assert settlement_cycle_id(dt.datetime(2026, 10, 18, 0, 5)) == "settle-2026-10-18-001"
    assert settlement_cycle_id(dt.datetime(2026, 10, 18, 13, 0)) == "settle-2026-10-18-003"
    assert settlement_cycle_id(dt.datetime(2026, 10, 18, 23, 59)) == "settle-2026-10-18-004"


@pytest.mark.asyncio
async def test_create_settlement_is_idempotent(engine) -> None:
    store = SettlementStore(engine)
    first = await store.create_settlement("txn-1", "item-1", 5.0)
    again = await store.create_settlement("txn-1", "item-other", 99.0)

    assert first.settlement_status is SettlementStatus.PENDING
    assert first.role is TradeRole.SELLER
    assert again.order_item_id == "item-1"
    assert again.contracted_quantity == 5.0
    assert len(await store.get_settlements_by_transaction("txn-1")) == 1


@pytest.mark.asyncio
async def test_buyer_and_seller_legs_tracked_separately(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement("txn-1", "item-1", 5.0, role=TradeRole.SELLER)
    await store.create_settlement("txn-1", "item-1", 5.0, role=TradeRole.BUYER)

    legs = await store.get_settlements_by_transaction("txn-1")
    assert {leg.role for leg in legs} == {TradeRole.BUYER, TradeRole.SELLER}
    buyer = await store.get_settlement("txn-1", TradeRole.BUYER)
    assert buyer is not None and buyer.role is TradeRole.BUYER


@pytest.mark.asyncio
async def test_update_from_ledger_computes_deviation(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement("txn-1", "item-1", 10.0)

    updated = await store.update_from_ledger(
        "txn-1", ledger_record("txn-1", "COMPLETED", "PENDING", delivered=9.5)
    )

    assert updated.settlement_status is SettlementStatus.BUYER_COMPLETED
    assert updated.buyer_discom_status is DiscomStatus.COMPLETED
    assert updated.seller_discom_status is DiscomStatus.PENDING
    assert updated.actual_delivered == 9.5
    assert updated.deviation_kwh == pytest.approx(-0.5)
    assert updated.ledger_synced_at is not None
    assert updated.ledger_data["transactionId"] == "txn-1"
    assert updated.settled_at is None
    assert updated.settlement_cycle_id is None


@pytest.mark.asyncio
async def test_settled_at_and_cycle_assigned_once(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement("txn-1", "item-1", 5.0)
    record = ledger_record("txn-1", "COMPLETED", "COMPLETED", delivered=5.0)

    first = await store.update_from_ledger("txn-1", record)
    second = await store.update_from_ledger("txn-1", record)

    assert first.is_settled
    assert first.settled_at is not None
    assert first.settlement_cycle_id.startswith("settle-")
    assert second.settled_at == first.settled_at
    assert second.settlement_cycle_id == first.settlement_cycle_id
    assert second.updated_at >= first.updated_at
    assert second.deviation_kwh == 0.0


@pytest.mark.asyncio
async def test_update_unknown_transaction_returns_none(engine) -> None:
    store = SettlementStore(engine)
    assert await store.update_from_ledger("ghost", ledger_record("ghost")) is None


@pytest.mark.asyncio
async def test_counterparty_filled_from_opposite_side(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement("txn-1", "item-1", 5.0, role=TradeRole.SELLER)
    await store.create_settlement("txn-1", "item-1", 5.0, role=TradeRole.BUYER)
    record = ledger_record(
        "txn-1",
        platformIdBuyer="bap.example",
        platformIdSeller="bpp.example",
        discomIdBuyer="BESCOM-KA",
        discomIdSeller="TPDDL-DL",
    )

    await store.update_from_ledger("txn-1", record)

    seller = await store.get_settlement("txn-1", TradeRole.SELLER)
    buyer = await store.get_settlement("txn-1", TradeRole.BUYER)
    assert seller.counterparty_platform_id == "bap.example"
    assert seller.counterparty_discom_id == "BESCOM-KA"
    assert buyer.counterparty_platform_id == "bpp.example"
    assert buyer.counterparty_discom_id == "TPDDL-DL"


@pytest.mark.asyncio
async def test_known_counterparty_not_overwritten(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement(
        "txn-1", "item-1", 5.0, counterparty_platform_id="known.example"
    )
    updated = await store.update_from_ledger(
        "txn-1", ledger_record("txn-1", platformIdBuyer="other.example")
    )
    assert updated.counterparty_platform_id == "known.example"


@pytest.mark.asyncio
async def test_role_scoped_update_leaves_other_leg(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement("txn-1", "item-1", 5.0, role=TradeRole.SELLER)
    await store.create_settlement("txn-1", "item-1", 5.0, role=TradeRole.BUYER)

    await store.update_from_ledger(
        "txn-1", ledger_record("txn-1", "COMPLETED", "COMPLETED"), role=TradeRole.BUYER
    )

    assert (await store.get_settlement("txn-1", TradeRole.BUYER)).is_settled
    assert not (await store.get_settlement("txn-1", TradeRole.SELLER)).is_settled


@pytest.mark.asyncio
async def test_pending_unnotified_and_stats(engine) -> None:
    store = SettlementStore(engine)
    for txn in ("txn-1", "txn-2", "txn-3"):
        await store.create_settlement(txn, f"item-{txn}", 5.0)
    await store.update_from_ledger("txn-1", ledger_record("txn-1", "COMPLETED", "COMPLETED"))
    await store.update_from_ledger("txn-2", ledger_record("txn-2", "PENDING", "COMPLETED"))

    pending = await store.get_pending_settlements()
    assert [s.transaction_id for s in pending] == ["txn-2", "txn-3"]
    assert [s.transaction_id for s in await store.get_unnotified_settlements()] == ["txn-1"]
    settled = await store.get_settlements(SettlementStatus.SETTLED)
    assert [s.transaction_id for s in settled] == ["txn-1"]
    assert len(await store.get_settlements()) == 3

    assert await store.get_stats() == {
        "total": 3,
        "pending": 1,
        "buyer_completed": 0,
        "seller_completed": 1,
        "settled": 1,
    }


@pytest.mark.asyncio
async def test_mark_on_settle_notified_is_idempotent(engine) -> None:
    store = SettlementStore(engine)
    await store.create_settlement("txn-1", "item-1", 5.0)
    await store.update_from_ledger("txn-1", ledger_record("txn-1", "COMPLETED", "COMPLETED"))

    await store.mark_on_settle_notified("txn-1")
    await store.mark_on_settle_notified("txn-1")

    assert (await store.get_settlement("txn-1")).on_settle_notified
    assert await store.get_unnotified_settlements() == []
