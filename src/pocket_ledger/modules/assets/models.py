from __future__ import annotations

import datetime as dt
import enum
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Date, Enum, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pocket_ledger.core.models import Base, OwnedByUser, Timestamped, UUIDPrimaryKey


class TrackingType(str, enum.Enum):
    USES = "uses"
    HOURS = "hours"


class Asset(UUIDPrimaryKey, OwnedByUser, Timestamped, Base):
    __tablename__ = "assets_asset"

    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    original_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    original_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    exchange_rate: Mapped[Decimal | None] = mapped_column(Numeric(12, 6), nullable=True)
    uses: Mapped[int] = mapped_column(Integer, default=0)
    hours: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=Decimal("0.00"))
    tracking_type: Mapped[TrackingType] = mapped_column(
        Enum(TrackingType, native_enum=False), default=TrackingType.USES
    )
    purchased_at: Mapped[dt.date] = mapped_column(Date)

    user = relationship("User")

    @property
    def cost_per_use(self) -> Decimal | None:
        if not self.uses:
            return None
        return (self.cost / self.uses).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @property
    def cost_per_hour(self) -> Decimal | None:
        if not self.hours:
            return None
        return (self.cost / self.hours).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
