from __future__ import annotations

from fastapi import APIRouter

from pocket_ledger.modules.assets.api import router as assets_router
from pocket_ledger.modules.debts.api import router as debts_router
from pocket_ledger.modules.expenses.api import router as expenses_router
from pocket_ledger.modules.fx.api import router as fx_router
from pocket_ledger.modules.identity.api import router as identity_router
from pocket_ledger.modules.receipts.api import router as receipts_router

router = APIRouter()

router.include_router(identity_router, prefix="/api")
router.include_router(receipts_router, prefix="/api")
router.include_router(expenses_router, prefix="/api")
router.include_router(debts_router, prefix="/api")
router.include_router(assets_router, prefix="/api")
router.include_router(fx_router, prefix="/api")


@router.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}
