from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy import select

from pocket_ledger.api.deps import get_object_storage, get_receipt_pipeline
from pocket_ledger.core.db import SessionLocal
from pocket_ledger.core.storage import LocalObjectStorage, StorageFailure
from pocket_ledger.main import app
from pocket_ledger.modules.expenses.models import Expense
from pocket_ledger.modules.expenses.service import create_expense, delete_expense
from pocket_ledger.modules.identity.service import create_user
from receipt_fixtures import build_pipeline, make_jpeg, make_pdf, receipt_json


class RecordingStorage(LocalObjectStorage):
    def __init__(self, root, *, fail_delete: bool = False):
        super().__init__(root)
        self.deleted: list[str] = []
        self._fail_delete = fail_delete

    def delete(self, *, key: str) -> None:
        self.deleted.append(key)
        if self._fail_delete:
            raise StorageFailure("delete refused", key=key)
        super().delete(key=key)


def _form(**overrides) -> dict[str, str]:
    form = {
        "amount": "42.10",
        "description": "Train ticket",
        "category": "Transportation",
        "date": dt.date.today().isoformat(),
    }
    form.update(overrides)
    return form


def test_create_and_list_expenses(client, auth_headers):
    resp = client.post(
        "/api/expenses", data=_form(), headers=auth_headers, follow_redirects=False
    )
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("/api/expenses/")

    client.post("/api/expenses", data=_form(amount="7.90"), headers=auth_headers)
    client.post(
        "/api/expenses",
        data=_form(amount="100.00", date="2020-01-15"),
        headers=auth_headers,
    )

    body = client.get("/api/expenses", headers=auth_headers).json()
    assert [e["amount"] for e in body["expenses"]][-1] == "100.00"
    assert body["summary"] == {"total": "150.00", "count": 3, "this_month": "50.00"}


def test_invalid_form_returns_field_errors(client, auth_headers):
    resp = client.post("/api/expenses", data=_form(amount="-3"), headers=auth_headers)

    assert resp.status_code == 422
    assert resp.json()["detail"][0]["loc"] == ["amount"]


def test_update_rejects_pdf_receipt(client, auth_headers, tmp_path):
    pipeline = build_pipeline(tmp_path, content=receipt_json(1))
    app.dependency_overrides[get_receipt_pipeline] = lambda: pipeline
    app.dependency_overrides[get_object_storage] = lambda: pipeline._storage

    location = client.post(
        "/api/expenses", data=_form(), headers=auth_headers, follow_redirects=False
    ).headers["location"]

    resp = client.put(
        location,
        data=_form(),
        files={"receipt": ("receipt.pdf", make_pdf(1), "application/pdf")},
        headers=auth_headers,
    )

    assert resp.status_code == 422
    error = resp.json()["detail"][0]
    assert error["loc"] == ["body", "receipt"]
    assert error["type"] == "validation_error"


def test_update_replaces_receipt_and_removes_old_object(client, auth_headers, tmp_path):
    pipeline = build_pipeline(tmp_path, content=receipt_json(1))
    storage = pipeline._storage
    app.dependency_overrides[get_receipt_pipeline] = lambda: pipeline
    app.dependency_overrides[get_object_storage] = lambda: storage

    location = client.post(
        "/api/expenses",
        data=_form(),
        files={"receipt": ("first.jpg", make_jpeg(color=(1, 2, 3)), "image/jpeg")},
        headers=auth_headers,
        follow_redirects=False,
    ).headers["location"]
    first_key = client.get(location, headers=auth_headers).json()["receipt_path"]
    assert storage.exists(key=first_key)

    resp = client.put(
        location,
        data=_form(description="Return ticket"),
        files={"receipt": ("second.png", make_jpeg(color=(9, 9, 9)), "image/jpeg")},
        headers=auth_headers,
        follow_redirects=False,
    )
    assert resp.status_code == 303

    updated = client.get(location, headers=auth_headers).json()
    assert updated["description"] == "Return ticket"
    assert updated["receipt_path"] != first_key
    assert storage.exists(key=updated["receipt_path"])
    assert not storage.exists(key=first_key)


def test_delete_without_receipt_does_not_touch_storage(tmp_path, user_and_headers):
    user, _ = user_and_headers
    storage = RecordingStorage(tmp_path / "store")

    with SessionLocal() as session:
        expense = create_expense(
            session,
            user=user,
            fields={"amount": Decimal("5.00"), "date": dt.date.today()},
            storage=storage,
        )
        delete_expense(session, expense=expense, storage=storage)

    assert storage.deleted == []


def test_delete_removes_receipt_object(tmp_path, user_and_headers):
    user, _ = user_and_headers
    storage = RecordingStorage(tmp_path / "store")
    storage.put(key="receipts/r.jpg", body=b"jpeg")

    with SessionLocal() as session:
        expense = create_expense(
            session,
            user=user,
            fields={"amount": Decimal("5.00"), "date": dt.date.today()},
            storage=storage,
            receipt_key="receipts/r.jpg",
        )
        delete_expense(session, expense=expense, storage=storage)

    assert storage.deleted == ["receipts/r.jpg"]
    assert not storage.exists(key="receipts/r.jpg")


def test_delete_survives_storage_failure(tmp_path, user_and_headers):
    user, _ = user_and_headers
    storage = RecordingStorage(tmp_path / "store", fail_delete=True)

    with SessionLocal() as session:
        expense = create_expense(
            session,
            user=user,
            fields={"amount": Decimal("5.00"), "date": dt.date.today()},
            storage=storage,
            receipt_key="receipts/r.jpg",
        )
        expense_id = expense.id
        delete_expense(session, expense=expense, storage=storage)

        assert session.scalar(select(Expense).where(Expense.id == expense_id)) is None
    assert storage.deleted == ["receipts/r.jpg"]


def test_other_users_expense_is_forbidden(client, auth_headers):
    location = client.post(
        "/api/expenses", data=_form(), headers=auth_headers, follow_redirects=False
    ).headers["location"]

    from pocket_ledger.core.security import create_access_token

    with SessionLocal() as session:
        other = create_user(session, email="other@example.com", password="password2")
        other_headers = {"Authorization": f"Bearer {create_access_token(subject=str(other.id))}"}

    assert client.get(location, headers=other_headers).status_code == 403
    assert client.delete(location, headers=other_headers).status_code == 403
    assert client.delete(location, headers=auth_headers).status_code == 204
    assert client.get(location, headers=auth_headers).status_code == 404
