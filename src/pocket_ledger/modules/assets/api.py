from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.orm import Session

from pocket_ledger.api.deps import get_converter, get_current_user
from pocket_ledger.core.db import db_session
from pocket_ledger.modules.assets.schemas import AssetIn, AssetListOut, AssetOut, AssetUpdateIn
from pocket_ledger.modules.assets.service import (
    asset_summary,
    create_asset,
    decrement_hours,
    decrement_uses,
    delete_asset,
    get_asset_for_user,
    increment_hours,
    increment_uses,
    list_assets,
    update_asset,
)
from pocket_ledger.modules.fx.service import CurrencyConverter, RateUnavailable
from pocket_ledger.modules.identity.models import User

router = APIRouter(tags=["assets"])

_COUNTERS = {
    ("uses", "increment"): increment_uses,
    ("uses", "decrement"): decrement_uses,
    ("hours", "increment"): increment_hours,
    ("hours", "decrement"): decrement_hours,
}


@router.get("/assets", response_model=AssetListOut)
def list_assets_endpoint(
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> AssetListOut:
    assets = list_assets(session, user=user)
    return AssetListOut(
        assets=[AssetOut.model_validate(a, from_attributes=True) for a in assets],
        summary=asset_summary(session, user=user),
    )


@router.post("/assets", response_model=AssetOut, status_code=status.HTTP_201_CREATED)
def create_asset_endpoint(
    payload: AssetIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    converter: CurrencyConverter = Depends(get_converter),
) -> AssetOut:
    try:
        asset = create_asset(
            session, user=user, fields=payload.model_dump(exclude_none=True), converter=converter
        )
    except RateUnavailable as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return AssetOut.model_validate(asset, from_attributes=True)


@router.get("/assets/{asset_id}", response_model=AssetOut)
def get_asset_endpoint(
    asset_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> AssetOut:
    asset = get_asset_for_user(session, asset_id=asset_id, user=user)
    return AssetOut.model_validate(asset, from_attributes=True)


@router.patch("/assets/{asset_id}", response_model=AssetOut)
def update_asset_endpoint(
    asset_id: uuid.UUID,
    payload: AssetUpdateIn,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
    converter: CurrencyConverter = Depends(get_converter),
) -> AssetOut:
    asset = get_asset_for_user(session, asset_id=asset_id, user=user)
    try:
        asset = update_asset(
            session,
            asset=asset,
            changes=payload.model_dump(exclude_unset=True),
            converter=converter,
        )
    except RateUnavailable as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return AssetOut.model_validate(asset, from_attributes=True)


@router.delete("/assets/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_asset_endpoint(
    asset_id: uuid.UUID,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> Response:
    asset = get_asset_for_user(session, asset_id=asset_id, user=user)
    delete_asset(session, asset=asset)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/assets/{asset_id}/{counter}/{direction}", response_model=AssetOut)
def adjust_counter_endpoint(
    asset_id: uuid.UUID,
    counter: str,
    direction: str,
    session: Session = Depends(db_session),
    user: User = Depends(get_current_user),
) -> AssetOut:
    adjust = _COUNTERS.get((counter, direction))
    if adjust is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    asset = get_asset_for_user(session, asset_id=asset_id, user=user)
    asset = adjust(session, asset=asset)
    return AssetOut.model_validate(asset, from_attributes=True)
