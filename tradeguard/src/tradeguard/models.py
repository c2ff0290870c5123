"""
Domain models for the trading-integrity layer using Pydantic.

Ledger payloads arrive with camelCase keys; the models below expose
snake_case attributes and keep the wire names as aliases so records can
be parsed from and dumped back to the ledger format unchanged.  Capacity
profiles are validated once when they are loaded, so the limit
validator works with typed capacities instead of loosely-shaped
documents.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import InvalidProfile


class TradeRole(str, Enum):
    BUYER = "BUYER"
    SELLER = "SELLER"


class SettlementStatus(str, Enum):
    PENDING = "PENDING"
    BUYER_COMPLETED = "BUYER_COMPLETED"
    SELLER_COMPLETED = "SELLER_COMPLETED"
    SETTLED = "SETTLED"


class DiscomStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def wire(self) -> Dict[str, Any]:
        """Dump using the ledger's camelCase field names."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class ValidationMetric(_WireModel):
    validation_metric_type: str = Field(..., alias="validationMetricType")
    validation_metric_value: float = Field(..., alias="validationMetricValue")


class TradeDetail(_WireModel):
    trade_qty: float = Field(..., alias="tradeQty")
    trade_type: str = Field(..., alias="tradeType")
    trade_unit: str = Field(..., alias="tradeUnit")


class LedgerRecord(_WireModel):
    """One trade as recorded by the external ledger."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_id: str = Field(..., alias="transactionId")
    order_item_id: Optional[str] = Field(None, alias="orderItemId")
    platform_id_buyer: Optional[str] = Field(None, alias="platformIdBuyer")
    platform_id_seller: Optional[str] = Field(None, alias="platformIdSeller")
    discom_id_buyer: Optional[str] = Field(None, alias="discomIdBuyer")
    discom_id_seller: Optional[str] = Field(None, alias="discomIdSeller")
    buyer_id: Optional[str] = Field(None, alias="buyerId")
    seller_id: Optional[str] = Field(None, alias="sellerId")
    trade_time: Optional[str] = Field(None, alias="tradeTime")
    delivery_start_time: Optional[str] = Field(None, alias="deliveryStartTime")
    delivery_end_time: Optional[str] = Field(None, alias="deliveryEndTime")
    trade_details: List[TradeDetail] = Field(default_factory=list, alias="tradeDetails")
    status_buyer_discom: Optional[DiscomStatus] = Field(None, alias="statusBuyerDiscom")
    status_seller_discom: Optional[DiscomStatus] = Field(None, alias="statusSellerDiscom")
    buyer_fulfillment_validation_metrics: List[ValidationMetric] = Field(
        default_factory=list, alias="buyerFulfillmentValidationMetrics"
    )
    seller_fulfillment_validation_metrics: List[ValidationMetric] = Field(
        default_factory=list, alias="sellerFulfillmentValidationMetrics"
    )
    note: Optional[str] = None
    client_reference: Optional[str] = Field(None, alias="clientReference")

    @field_validator(
        "buyer_fulfillment_validation_metrics",
        "seller_fulfillment_validation_metrics",
        "trade_details",
        mode="before",
    )
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class LedgerQuery(_WireModel):
    """Filter for ``POST /ledger/get``."""

    transaction_id: Optional[str] = Field(None, alias="transactionId")
    order_item_id: Optional[str] = Field(None, alias="orderItemId")
    discom_id_buyer: Optional[str] = Field(None, alias="discomIdBuyer")
    discom_id_seller: Optional[str] = Field(None, alias="discomIdSeller")
    limit: int = Field(100, gt=0)
    offset: int = Field(0, ge=0)
    sort: str = "tradeTime"
    sort_order: Literal["asc", "desc"] = Field("desc", alias="sortOrder")


class LedgerHealth(BaseModel):
    ok: bool
    latency_ms: float
    error: Optional[str] = None


class Settlement(BaseModel):
    """Reconciliation record for one leg (buyer or seller side) of a trade."""

    transaction_id: str
    order_item_id: str
    role: TradeRole
    counterparty_platform_id: Optional[str] = None
    counterparty_discom_id: Optional[str] = None
    ledger_synced_at: Optional[datetime] = None
    ledger_data: Optional[Dict[str, Any]] = None
    settlement_status: SettlementStatus = SettlementStatus.PENDING
    buyer_discom_status: DiscomStatus = DiscomStatus.PENDING
    seller_discom_status: DiscomStatus = DiscomStatus.PENDING
    actual_delivered: Optional[float] = None
    contracted_quantity: float
    deviation_kwh: Optional[float] = None
    settlement_cycle_id: Optional[str] = None
    settled_at: Optional[datetime] = None
    on_settle_notified: bool = False
    created_at: datetime
    updated_at: datetime

    @field_validator("ledger_synced_at", "settled_at", "created_at", "updated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_settled(self) -> bool:
        return self.settlement_status is SettlementStatus.SETTLED


class TradingRules(BaseModel):
    """Process-wide trading limit configuration."""

    buyer_safety_factor: float = Field(1.0, gt=0, le=1)
    seller_safety_factor: float = Field(1.0, gt=0, le=1)
    enable_buyer_limits: bool = True
    enable_seller_limits: bool = True
    updated_at: Optional[datetime] = None


class GenerationProfile(BaseModel):
    capacity_kw: float = Field(..., gt=0)


class ConsumptionProfile(BaseModel):
    sanctioned_load_kw: float = Field(..., ge=0)


class PartyProfile(BaseModel):
    """Registered capacities of one market participant."""

    party_id: str
    generation: Optional[GenerationProfile] = None
    consumption: Optional[ConsumptionProfile] = None

    def seller_capacity(self) -> float:
        """Production capacity: min(generation capacity, sanctioned load).

        A prosumer without a sanctioned load on record is limited by its
        generation capacity alone.
        """
        if self.generation is None:
            raise InvalidProfile(
                self.party_id,
                "Generation profile not found. Please register as prosumer.",
            )
        capacity = self.generation.capacity_kw
        if self.consumption is not None and self.consumption.sanctioned_load_kw > 0:
            capacity = min(capacity, self.consumption.sanctioned_load_kw)
        return capacity

    def buyer_capacity(self) -> float:
        if self.consumption is None:
            raise InvalidProfile(
                self.party_id,
                "Consumption profile not found. Please register a sanctioned load.",
            )
        return self.consumption.sanctioned_load_kw


class DeliveryCommitment(BaseModel):
    """Quantity promised over a delivery window (an offer or an order item)."""

    start: datetime
    end: datetime
    quantity: float

    @field_validator("start", "end")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        # sqlite hands back naive timestamps; they are stored as UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def duration_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600.0

    @property
    def hourly_rate(self) -> float:
        return self.quantity / self.duration_hours

    def overlaps(self, slot_start: datetime, slot_end: datetime) -> bool:
        return self.start < slot_end and self.end > slot_start


class LimitCheckResult(BaseModel):
    allowed: bool
    limit: float
    current_usage: float
    remaining: float
    error: Optional[str] = None
