from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pocket_ledger.core.logging import get_logger, log_event
from pocket_ledger.modules.assets.models import Asset
from pocket_ledger.modules.assets.schemas import AssetSummary
from pocket_ledger.modules.fx.service import CurrencyConverter
from pocket_ledger.modules.identity.models import User

logger = get_logger(__name__)

HOURS_STEP = Decimal("0.5")

_REQUIRED_FIELDS = {"name", "cost", "tracking_type", "purchased_at"}


def list_assets(session: Session, *, user: User) -> list[Asset]:
    return list(
        session.scalars(
            select(Asset).where(Asset.user_id == user.id).order_by(Asset.purchased_at.desc())
        )
    )


def asset_summary(session: Session, *, user: User) -> AssetSummary:
    total_cost, count, total_uses, total_hours = session.execute(
        select(
            func.coalesce(func.sum(Asset.cost), 0),
            func.count(Asset.id),
            func.coalesce(func.sum(Asset.uses), 0),
            func.coalesce(func.sum(Asset.hours), 0),
        ).where(Asset.user_id == user.id)
    ).one()
    return AssetSummary(
        total_cost=Decimal(str(total_cost)).quantize(Decimal("0.01")),
        count=int(count),
        total_uses=int(total_uses),
        total_hours=Decimal(str(total_hours)).quantize(Decimal("0.01")),
    )


def get_asset_for_user(session: Session, *, asset_id: uuid.UUID, user: User) -> Asset:
    asset = session.scalar(select(Asset).where(Asset.id == asset_id))
    if not asset:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Asset not found")
    if asset.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return asset


def _apply_conversion(fields: dict[str, Any], converter: CurrencyConverter) -> dict[str, Any]:
    """Replace `cost` with the EUR conversion when an original cost and currency are given."""
    if not fields.get("original_cost") or not fields.get("original_currency"):
        return fields
    try:
        conversion = converter.convert(fields["original_cost"], fields["original_currency"])
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e
    return {
        **fields,
        "cost": conversion.amount_base,
        "original_cost": conversion.original_amount,
        "original_currency": conversion.original_currency,
        "exchange_rate": conversion.exchange_rate,
    }


def create_asset(
    session: Session, *, user: User, fields: dict[str, Any], converter: CurrencyConverter
) -> Asset:
    fields = _apply_conversion(fields, converter)
    asset = Asset(user_id=user.id, uses=0, hours=Decimal("0.00"), **fields)
    session.add(asset)
    session.commit()
    session.refresh(asset)
    log_event(logger, "asset.created", asset_id=str(asset.id), cost=str(asset.cost))
    return asset


def update_asset(
    session: Session, *, asset: Asset, changes: dict[str, Any], converter: CurrencyConverter
) -> Asset:
    changes = _apply_conversion(changes, converter)
    for key, value in changes.items():
        if key in _REQUIRED_FIELDS and value is None:
            continue
        setattr(asset, key, value)
    session.add(asset)
    session.commit()
    session.refresh(asset)
    return asset


def delete_asset(session: Session, *, asset: Asset) -> None:
    session.delete(asset)
    session.commit()


def increment_uses(session: Session, *, asset: Asset) -> Asset:
    asset.uses = (asset.uses or 0) + 1
    return _save(session, asset)


def decrement_uses(session: Session, *, asset: Asset) -> Asset:
    if asset.uses > 0:
        asset.uses -= 1
    return _save(session, asset)


def increment_hours(session: Session, *, asset: Asset) -> Asset:
    asset.hours = Decimal(asset.hours or 0) + HOURS_STEP
    return _save(session, asset)


def decrement_hours(session: Session, *, asset: Asset) -> Asset:
    if Decimal(asset.hours or 0) >= HOURS_STEP:
        asset.hours = Decimal(asset.hours) - HOURS_STEP
    return _save(session, asset)


def _save(session: Session, asset: Asset) -> Asset:
    session.add(asset)
    session.commit()
    session.refresh(asset)
    return asset
