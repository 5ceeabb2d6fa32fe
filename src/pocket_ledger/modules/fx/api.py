from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, status

from pocket_ledger.api.deps import get_converter, get_current_user
from pocket_ledger.modules.fx.schemas import ConversionOut, CurrenciesOut
from pocket_ledger.modules.fx.service import CurrencyConverter, RateUnavailable
from pocket_ledger.modules.identity.models import User

router = APIRouter(tags=["fx"])


@router.get("/currencies", response_model=CurrenciesOut)
def list_currencies(converter: CurrencyConverter = Depends(get_converter)) -> CurrenciesOut:
    return CurrenciesOut(
        base_currency=converter.base_currency,
        supported=list(converter.supported_currencies()),
    )


@router.get("/fx/convert", response_model=ConversionOut)
def convert(
    amount: Decimal = Query(gt=0),
    currency: str = Query(min_length=3, max_length=3),
    converter: CurrencyConverter = Depends(get_converter),
    _: User = Depends(get_current_user),
) -> ConversionOut:
    if not converter.is_supported(currency):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unsupported currency: {currency}",
        )
    try:
        result = converter.convert(amount, currency)
    except RateUnavailable as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e
    return ConversionOut(**asdict(result), base_currency=converter.base_currency)
