"""
Tests for cash ledger API endpoints.

These test the HTTP layer: status codes, response format and
error mapping. Ledger logic is tested in test_ledger_service.py.
"""

from sqlalchemy import select

from coffee_finance.models.cash_balance import CashBalance

CASHIER = {"X-User-Email": "cashier@greatpearl.ug"}
FINANCE = {"X-User-Email": "Finance@GreatPearl.ug"}


class TestBalance:

    def test_empty_ledger_reports_zero(self, client):
        response = client.get("/cash/balance")
        assert response.status_code == 200
        assert response.json()["current_balance"] == 0

    def test_reading_balance_writes_nothing(self, client, db_session):
        client.get("/cash/balance")
        assert db_session.execute(select(CashBalance)).first() is None


class TestDeposits:

    def _deposit(self, client, amount=250000):
        return client.post("/cash/deposits", headers=CASHIER, json={
            "amount": amount,
            "reference": "Till 3",
        })

    def test_record_deposit_returns_201(self, client):
        response = self._deposit(client)
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "pending"
        assert data["balance_after"] is None
        assert data["created_by"] == "cashier@greatpearl.ug"

    def test_deposit_requires_identity(self, client):
        response = client.post("/cash/deposits", json={"amount": 1000})
        assert response.status_code == 401

    def test_non_positive_amount_returns_422(self, client):
        response = self._deposit(client, amount=0)
        assert response.status_code == 422

    def test_confirm_credits_balance(self, client):
        deposit_id = self._deposit(client).json()["id"]

        response = client.post(
            f"/cash/deposits/{deposit_id}/confirm", headers=FINANCE
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["confirmed_by"] == "finance@greatpearl.ug"
        assert data["balance_after"] == 250000
        assert client.get("/cash/balance").json()["current_balance"] == 250000

    def test_double_confirm_returns_409(self, client):
        deposit_id = self._deposit(client).json()["id"]
        client.post(f"/cash/deposits/{deposit_id}/confirm", headers=FINANCE)

        response = client.post(
            f"/cash/deposits/{deposit_id}/confirm", headers=FINANCE
        )

        assert response.status_code == 409
        assert client.get("/cash/balance").json()["current_balance"] == 250000

    def test_confirm_unknown_returns_404(self, client):
        response = client.post("/cash/deposits/999/confirm", headers=FINANCE)
        assert response.status_code == 404

    def test_transactions_listed_newest_first(self, client):
        first = self._deposit(client, 1000).json()["id"]
        second = self._deposit(client, 2000).json()["id"]

        response = client.get("/cash/transactions")
        ids = [t["id"] for t in response.json()]
        assert ids == [second, first]
