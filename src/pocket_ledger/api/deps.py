from __future__ import annotations

import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.orm import Session

from pocket_ledger.core.config import settings
from pocket_ledger.core.db import db_session
from pocket_ledger.core.logging import set_user_context
from pocket_ledger.core.security import decode_access_token
from pocket_ledger.core.storage import ObjectStorage, get_storage
from pocket_ledger.modules.fx.service import CurrencyConverter
from pocket_ledger.modules.identity.models import User
from pocket_ledger.modules.receipts.pipeline import ReceiptPipeline

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(db_session),
) -> User:
    token = credentials.credentials if credentials else None
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    subject = decode_access_token(token)
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    try:
        user_id = uuid.UUID(subject)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from e

    user = session.scalar(select(User).where(User.id == user_id))
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid user")
    set_user_context(str(user.id))
    return user


def get_object_storage() -> ObjectStorage:
    return get_storage()


def get_converter() -> CurrencyConverter:
    return CurrencyConverter.from_settings(settings)


def get_receipt_pipeline(
    storage: ObjectStorage = Depends(get_object_storage),
) -> ReceiptPipeline:
    return ReceiptPipeline.from_settings(settings, storage=storage)
