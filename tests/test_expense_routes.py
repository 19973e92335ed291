"""
Expense CRUD scoped by API key.
"""
import pytest

from db import Expense

from conftest import api_headers

VALID = {"title": "Groceries", "amount": 12345, "date": "2025-03-14", "category_id": "supermarket"}


@pytest.fixture
def ana(make_user):
    return make_user(email="ana@example.com")


@pytest.fixture
def bob(make_user):
    return make_user(email="bob@example.com", name="Bob")


def _create(client, user, **overrides):
    return client.post("/api/expenses", json={**VALID, **overrides}, headers=api_headers(user))


class TestCreate:

    def test_amount_is_stored_exactly(self, client, db, ana):
        resp = _create(client, ana)

        assert resp.status_code == 201
        body = resp.json()
        assert body["success"] is True
        assert body["expense"]["amount"] == 12345
        assert body["expense"]["date"] == "2025-03-14"
        assert body["expense"]["user_email"] == "ana@example.com"

        stored = db.query(Expense).one()
        assert stored.amount == 12345
        assert stored.user_email == "ana@example.com"

    def test_accepts_iso_datetime(self, client, ana):
        resp = _create(client, ana, date="2025-03-14T10:30:00.000Z")
        assert resp.status_code == 201
        assert resp.json()["expense"]["date"] == "2025-03-14"

    @pytest.mark.parametrize("field,value", [
        ("title", ""),
        ("title", "   "),
        ("amount", 0),
        ("amount", -5),
        ("amount", 12.5),
        ("amount", "100"),
        ("amount", True),
        ("date", "2025-13-45"),
        ("date", None),
        ("category_id", "rockets"),
    ])
    def test_invalid_field_is_listed(self, client, db, ana, field, value):
        resp = _create(client, ana, **{field: value})

        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert [f["field"] for f in body["fields"]] == [field]
        assert db.query(Expense).count() == 0

    def test_all_offending_fields_are_listed(self, client, ana):
        resp = client.post("/api/expenses", json={}, headers=api_headers(ana))
        assert resp.status_code == 400
        assert {f["field"] for f in resp.json()["fields"]} == {"title", "amount", "date", "category_id"}


class TestAuth:

    def test_missing_api_key(self, client):
        resp = client.get("/api/expenses")
        assert resp.status_code == 401
        assert resp.json()["error"] == "API_KEY header is required"

    def test_unknown_api_key(self, client):
        resp = client.get("/api/expenses", headers={"API_KEY": "api_key_dinherin_nope"})
        assert resp.status_code == 401

    def test_deleted_account_key_is_refused(self, client, db, ana):
        from datetime import datetime
        ana.deleted_at = datetime.utcnow()
        db.commit()

        resp = client.get("/api/expenses", headers=api_headers(ana))
        assert resp.status_code == 401


class TestReadUpdateDelete:

    def test_list_is_scoped_and_sorted(self, client, ana, bob):
        _create(client, ana, title="Old", date="2025-01-01")
        _create(client, ana, title="New", date="2025-02-01")
        _create(client, bob, title="Bob's")

        body = client.get("/api/expenses", headers=api_headers(ana)).json()

        assert body["total"] == 2
        assert [e["title"] for e in body["expenses"]] == ["New", "Old"]

    def test_list_by_category(self, client, ana):
        _create(client, ana, category_id="food")
        _create(client, ana, category_id="health")

        body = client.get("/api/expenses/category/food", headers=api_headers(ana)).json()
        assert body["total"] == 1
        assert body["expenses"][0]["category_id"] == "food"

    def test_list_by_unknown_category(self, client, ana):
        resp = client.get("/api/expenses/category/rockets", headers=api_headers(ana))
        assert resp.status_code == 400

    def test_get_own_expense(self, client, ana):
        expense_id = _create(client, ana).json()["expense"]["id"]
        resp = client.get(f"/api/expenses/{expense_id}", headers=api_headers(ana))
        assert resp.status_code == 200
        assert resp.json()["expense"]["id"] == expense_id

    def test_partial_update(self, client, ana):
        expense_id = _create(client, ana).json()["expense"]["id"]

        resp = client.put(f"/api/expenses/{expense_id}", json={"amount": 999}, headers=api_headers(ana))

        assert resp.status_code == 200
        expense = resp.json()["expense"]
        assert expense["amount"] == 999
        assert expense["title"] == "Groceries"
        assert expense["updated_at"] is not None

    def test_update_validates(self, client, ana):
        expense_id = _create(client, ana).json()["expense"]["id"]
        resp = client.put(f"/api/expenses/{expense_id}", json={"amount": -1}, headers=api_headers(ana))
        assert resp.status_code == 400
        assert resp.json()["fields"][0]["field"] == "amount"

    def test_update_with_nothing(self, client, ana):
        expense_id = _create(client, ana).json()["expense"]["id"]
        resp = client.put(f"/api/expenses/{expense_id}", json={}, headers=api_headers(ana))
        assert resp.status_code == 400

    def test_delete(self, client, db, ana):
        expense_id = _create(client, ana).json()["expense"]["id"]

        resp = client.delete(f"/api/expenses/{expense_id}", headers=api_headers(ana))

        assert resp.status_code == 200
        db.expire_all()
        assert db.query(Expense).count() == 0

    @pytest.mark.parametrize("method", ["get", "put", "delete"])
    def test_missing_expense_is_404(self, client, ana, method):
        kwargs = {"json": {"amount": 1}} if method == "put" else {}
        resp = getattr(client, method)("/api/expenses/does-not-exist", headers=api_headers(ana), **kwargs)
        assert resp.status_code == 404


class TestOwnership:

    @pytest.fixture
    def bobs_expense(self, client, bob):
        return _create(client, bob).json()["expense"]["id"]

    def test_cannot_read_other_accounts_expense(self, client, ana, bobs_expense):
        resp = client.get(f"/api/expenses/{bobs_expense}", headers=api_headers(ana))
        assert resp.status_code == 403

    def test_cannot_update_other_accounts_expense(self, client, db, ana, bobs_expense):
        resp = client.put(f"/api/expenses/{bobs_expense}", json={"amount": 1}, headers=api_headers(ana))
        assert resp.status_code == 403
        assert resp.json()["error"] == "Unauthorized to update this expense"
        db.expire_all()
        assert db.get(Expense, bobs_expense).amount == VALID["amount"]

    def test_cannot_delete_other_accounts_expense(self, client, db, ana, bobs_expense):
        resp = client.delete(f"/api/expenses/{bobs_expense}", headers=api_headers(ana))
        assert resp.status_code == 403
        db.expire_all()
        assert db.get(Expense, bobs_expense) is not None


def test_categories_catalog(client):
    body = client.get("/api/categories").json()
    ids = [c["id"] for c in body["categories"]]
    assert len(ids) == 11
    assert "food" in ids and "health" in ids
