"""
Tests for settlement API endpoints.

Settlement arithmetic and guards are tested in
test_settlement_service.py; these check the HTTP contract.
"""

from sqlalchemy.exc import IntegrityError

from coffee_finance.models.cash_transaction import CashTransaction
from coffee_finance.models.enums import (
    CashTransactionStatus,
    CashTransactionType,
)
from coffee_finance.services.ledger_service import LedgerService
from coffee_finance.services.settlement_service import SettlementService

FINANCE = {"X-User-Email": "finance@greatpearl.ug"}


def fund_cash(client, amount):
    deposit = client.post("/cash/deposits", headers=FINANCE, json={
        "amount": amount,
    }).json()
    client.post(f"/cash/deposits/{deposit['id']}/confirm", headers=FINANCE)


def register_lot(client, batch, final_price=5000, kilograms="100"):
    response = client.post("/settlements/lots", headers=FINANCE, json={
        "batch_number": batch,
        "supplier_id": "S1",
        "supplier_name": "Kasese Growers",
        "kilograms": kilograms,
        "final_price": final_price,
    })
    return response.json()["id"]


class TestLots:

    def test_register_lot_returns_201(self, client):
        response = client.post("/settlements/lots", headers=FINANCE, json={
            "batch_number": "B-1",
            "supplier_id": "S1",
            "supplier_name": "Kasese Growers",
            "kilograms": "100.50",
            "suggested_price": 4800,
        })
        assert response.status_code == 201
        assert response.json()["status"] == "Pending"

    def test_duplicate_batch_returns_400(self, client):
        register_lot(client, "B-1")
        response = client.post("/settlements/lots", headers=FINANCE, json={
            "batch_number": "B-1",
            "supplier_id": "S1",
            "supplier_name": "Kasese Growers",
            "kilograms": "10",
        })
        assert response.status_code == 400

    def test_pending_lots_listed(self, client):
        lot_id = register_lot(client, "B-1")
        response = client.get("/settlements/lots/pending")
        assert [lot["id"] for lot in response.json()] == [lot_id]


class TestQuoteAndExecute:

    def test_quote_warns_of_overdraft(self, client):
        fund_cash(client, 1000000)
        lot_a = register_lot(client, "B-1", final_price=6000)
        lot_b = register_lot(client, "B-2", final_price=5000)

        response = client.post("/settlements/quote", json={
            "lot_ids": [lot_a, lot_b],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["projected_balance"] == -100000
        assert data["will_overdraft"] is True

    def test_execute_pays_lots(self, client):
        fund_cash(client, 1000000)
        lot_id = register_lot(client, "B-1")

        response = client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [lot_id],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"][0]["final_amount"] == 500000
        assert data["new_balance"] == 500000
        assert client.get("/settlements/lots/pending").json() == []

    def test_repeat_execute_reports_skip(self, client):
        fund_cash(client, 1000000)
        lot_id = register_lot(client, "B-1")
        client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [lot_id],
        })

        response = client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [lot_id],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["succeeded"] == []
        assert data["skipped"] == [{"lot_id": lot_id, "reason": "already paid"}]
        assert client.get("/cash/balance").json()["current_balance"] == 500000

    def test_execute_requires_identity(self, client):
        response = client.post("/settlements/execute", json={"lot_ids": [1]})
        assert response.status_code == 401

    def test_empty_selection_returns_422(self, client):
        response = client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [],
        })
        assert response.status_code == 422

    def test_duplicate_ids_return_422(self, client):
        response = client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [1, 1],
        })
        assert response.status_code == 422

    def test_oversized_quote_returns_400(self, client):
        response = client.post("/settlements/quote", json={
            "lot_ids": list(range(1, 12)),
        })
        assert response.status_code == 400


class TestDatabaseFailures:

    def test_failed_ledger_write_returns_500_and_rolls_back(
        self, client, monkeypatch
    ):
        fund_cash(client, 1000000)
        lot_id = register_lot(client, "B-1")

        def broken_write(self, movements, actor):
            # created_by is NOT NULL, so the flush fails
            self.db.add(CashTransaction(
                transaction_type=CashTransactionType.PAYMENT,
                amount=-1,
                created_by=None,
                status=CashTransactionStatus.CONFIRMED,
            ))
            self.db.flush()

        monkeypatch.setattr(LedgerService, "apply_movements", broken_write)

        response = client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [lot_id],
        })

        assert response.status_code == 500
        assert "ledger write failed" in response.json()["detail"]
        pending = client.get("/settlements/lots/pending").json()
        assert [lot["id"] for lot in pending] == [lot_id]

    def test_unclassified_database_error_returns_500(self, client, monkeypatch):
        def broken_register(self, request):
            raise IntegrityError("INSERT INTO payment_records", {}, Exception("boom"))

        monkeypatch.setattr(SettlementService, "register_lot", broken_register)

        response = client.post("/settlements/lots", headers=FINANCE, json={
            "batch_number": "B-1",
            "supplier_id": "S1",
            "supplier_name": "Kasese Growers",
            "kilograms": "10",
        })

        assert response.status_code == 500
        assert response.json()["detail"] == (
            "Database error; the operation was rolled back"
        )


class TestAdvances:

    def test_issue_advance_returns_201(self, client):
        response = client.post("/settlements/advances", headers=FINANCE, json={
            "supplier_id": "S1",
            "amount": 200000,
        })
        assert response.status_code == 201
        assert response.json()["outstanding"] == 200000

    def test_small_advance_returns_400(self, client):
        response = client.post("/settlements/advances", headers=FINANCE, json={
            "supplier_id": "S1",
            "amount": 1000,
        })
        assert response.status_code == 400

    def test_advance_deducted_at_settlement(self, client):
        client.post("/settlements/advances", headers=FINANCE, json={
            "supplier_id": "S1",
            "amount": 200000,
        })
        lot_id = register_lot(client, "B-1")

        response = client.post("/settlements/execute", headers=FINANCE, json={
            "lot_ids": [lot_id],
        })

        settled = response.json()["succeeded"][0]
        assert settled["advance_recovered"] == 200000
        assert settled["final_amount"] == 300000
