from __future__ import annotations

import datetime as dt
import uuid
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from pocket_ledger.modules.assets.models import TrackingType


class AssetIn(BaseModel):
    """Either `cost` in EUR, or `original_cost` with `original_currency` to be converted."""

    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    cost: Decimal | None = Field(default=None, ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    original_cost: Decimal | None = Field(default=None, ge=Decimal("0.01"))
    original_currency: str | None = Field(default=None, min_length=3, max_length=3)
    exchange_rate: Decimal | None = Field(default=None, ge=0)
    tracking_type: TrackingType = TrackingType.USES
    purchased_at: dt.date

    @model_validator(mode="after")
    def check_cost_source(self) -> AssetIn:
        if (self.original_cost is None) != (self.original_currency is None):
            raise ValueError("original_cost and original_currency must be given together")
        if self.cost is None and self.original_cost is None:
            raise ValueError("Either cost or original_cost with original_currency is required")
        return self


class AssetOut(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None
    cost: Decimal
    original_cost: Decimal | None
    original_currency: str | None
    exchange_rate: Decimal | None
    uses: int
    hours: Decimal
    tracking_type: TrackingType
    purchased_at: dt.date
    cost_per_use: Decimal | None
    cost_per_hour: Decimal | None
    created_at: dt.datetime
    updated_at: dt.datetime


class AssetSummary(BaseModel):
    total_cost: Decimal
    count: int
    total_uses: int
    total_hours: Decimal


class AssetListOut(BaseModel):
    assets: list[AssetOut]
    summary: AssetSummary


class AssetUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=1000)
    cost: Decimal | None = Field(default=None, ge=Decimal("0.01"), max_digits=12, decimal_places=2)
    original_cost: Decimal | None = Field(default=None, ge=Decimal("0.01"))
    original_currency: str | None = Field(default=None, min_length=3, max_length=3)
    exchange_rate: Decimal | None = Field(default=None, ge=0)
    tracking_type: TrackingType | None = None
    purchased_at: dt.date | None = None

    @model_validator(mode="after")
    def check_cost_source(self) -> AssetUpdateIn:
        if (self.original_cost is None) != (self.original_currency is None):
            raise ValueError("original_cost and original_currency must be given together")
        return self
