"""
Integration tests for the Retail Banking API
Tests end-to-end workflows using FastAPI TestClient
"""

import random
import pytest
from fastapi.testclient import TestClient

from retail_banking.api import app
from retail_banking.api.dependencies import set_banking_system
from retail_banking.clock import ManualClock
from retail_banking.config import BankConfig
from retail_banking.errors import PersistenceFailure
from retail_banking.storage import InMemoryStorage
from retail_banking.system import BankingSystem


ALICE = {"X-Customer-ID": "ALICE"}
BOB = {"X-Customer-ID": "BOB"}


@pytest.fixture
def system():
    test_system = BankingSystem(
        config=BankConfig(), storage=InMemoryStorage(), clock=ManualClock(), rng=random.Random(17)
    )
    set_banking_system(test_system)
    yield test_system
    set_banking_system(None)


@pytest.fixture
def client(system):
    return TestClient(app)


def open_account(client, headers, account_type="savings", initial_deposit="20000"):
    r = client.post("/accounts", json={"account_type": account_type, "initial_deposit": initial_deposit},
                    headers=headers)
    assert r.status_code == 201
    return r.json()["account_number"]


class TestHealthEndpoints:

    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["status"] == "healthy"


class TestAccountEndpoints:

    def test_open_and_get(self, client):
        r = client.post("/accounts", json={"account_type": "savings", "initial_deposit": "5000"}, headers=ALICE)
        assert r.status_code == 201
        data = r.json()
        assert data["message"] == "Account created successfully"
        assert data["balance"] == "5000.00"

        r = client.get(f"/accounts/{data['account_number']}", headers=ALICE)
        assert r.status_code == 200
        assert r.json()["customer_id"] == "ALICE"

        r = client.get("/accounts", headers=ALICE)
        assert len(r.json()["accounts"]) == 1

    def test_caller_identity_required(self, client):
        r = client.get("/accounts")
        assert r.status_code == 422

    def test_error_mapping(self, client):
        r = client.post("/accounts", json={"account_type": "savings", "initial_deposit": "10"}, headers=ALICE)
        assert r.status_code == 400
        assert r.json()["detail"]["error_code"] == "validation_error"

        number = open_account(client, ALICE)
        r = client.get(f"/accounts/{number}", headers=BOB)
        assert r.status_code == 404
        assert r.json()["detail"]["error_code"] == "not_found"

    def test_freeze_blocks_transfers(self, client):
        alice = open_account(client, ALICE)
        bob = open_account(client, BOB)

        r = client.post(f"/accounts/{bob}/freeze", json={"reason": "legal_hold"})
        assert r.status_code == 200
        assert r.json()["status"] == "inactive"

        r = client.post("/transactions/transfer", json={
            "from_account_number": alice, "to_account_number": bob, "amount": "100"
        }, headers=ALICE)
        assert r.status_code == 409
        assert r.json()["detail"]["error_code"] == "state_conflict"

        assert client.post(f"/accounts/{bob}/unfreeze").status_code == 200

    def test_deactivate(self, client):
        number = open_account(client, ALICE, initial_deposit="1000")
        r = client.post(f"/accounts/{number}/deactivate", json={"reason": "Closing"}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["deactivation_reason"] == "Closing"

    def test_persistence_failure_is_500(self, client, system, monkeypatch):
        def broken(*args, **kwargs):
            raise PersistenceFailure("disk I/O error")

        monkeypatch.setattr(system.accounts, "open_account", broken)
        r = client.post("/accounts", json={"account_type": "current"}, headers=ALICE)
        assert r.status_code == 500
        assert r.json()["detail"]["error_code"] == "persistence_failure"


class TestTransactionEndpoints:

    def test_transfer_history_and_reversal(self, client):
        alice = open_account(client, ALICE)
        bob = open_account(client, BOB)

        r = client.post("/transactions/transfer", json={
            "from_account_number": alice, "to_account_number": bob, "amount": "1500.50"
        }, headers=ALICE)
        assert r.status_code == 200
        transfer = r.json()
        assert transfer["from_balance"] == "18499.50"
        assert transfer["to_balance"] == "21500.50"

        r = client.get(f"/transactions/{transfer['transaction_id']}", headers=BOB)
        assert r.json()["status"] == "completed"

        r = client.get(f"/accounts/{alice}/transactions", headers=ALICE)
        assert {t["transaction_type"] for t in r.json()["transactions"]} == {"transfer", "deposit"}

        r = client.post(f"/transactions/{transfer['transaction_id']}/reverse", json={"reason": "Duplicate"},
                        headers=ALICE)
        assert r.status_code == 200
        assert r.json()["to_balance"] == "20000.00"

    def test_transactions_of_other_customers_are_hidden(self, client):
        alice = open_account(client, ALICE)
        open_account(client, BOB)
        carol = {"X-Customer-ID": "CAROL"}

        r = client.post("/transactions/deposit", json={"account_number": alice, "amount": "5000"}, headers=ALICE)
        deposit_id = r.json()["transaction_id"]

        r = client.get(f"/transactions/{deposit_id}", headers=carol)
        assert r.status_code == 404

        r = client.post(f"/transactions/{deposit_id}/reverse", json={"reason": "Not mine"}, headers=BOB)
        assert r.status_code == 404
        assert r.json()["detail"]["error_code"] == "not_found"

        r = client.get(f"/accounts/{alice}", headers=ALICE)
        assert r.json()["balance"] == "25000.00"

        r = client.get(f"/transactions/{deposit_id}", headers=ALICE)
        assert r.json()["status"] == "completed"

    def test_denied_and_invalid_amounts(self, client):
        alice = open_account(client, ALICE)

        r = client.post("/transactions/withdraw", json={"account_number": alice, "amount": "19500"}, headers=ALICE)
        assert r.status_code == 422
        assert r.json()["detail"]["error_code"] == "transaction_denied"

        r = client.post("/transactions/deposit", json={"account_number": alice, "amount": "-5"}, headers=ALICE)
        assert r.status_code == 400
        assert r.json()["detail"]["error_code"] == "invalid_amount"

        r = client.post("/transactions/deposit", json={"account_number": alice, "amount": "abc"}, headers=ALICE)
        assert r.status_code == 400


class TestDepositEndpoints:

    def test_fixed_deposit_flow(self, client, system):
        alice = open_account(client, ALICE, initial_deposit="60000")

        r = client.get("/fixed-deposits/rates")
        assert r.status_code == 200
        assert r.json()["rates"][-1]["rate"] == "8.25"

        r = client.post("/fixed-deposits", json={
            "source_account_number": alice, "principal": "25000", "tenure": 12,
            "nominee": {"name": "Ravi", "relationship": "son", "date_of_birth": "2012-06-01"}
        }, headers=ALICE)
        assert r.status_code == 201
        fd_number = r.json()["fd_number"]
        assert r.json()["interest_rate"] == "7.0"

        r = client.post(f"/fixed-deposits/{fd_number}/close", json={}, headers=ALICE)
        assert r.status_code == 422
        assert r.json()["detail"]["error_code"] == "premature_closure_not_allowed"

        r = client.post(f"/fixed-deposits/{fd_number}/payout", headers=ALICE)
        assert r.status_code == 422

        system.clock.advance(days=366)
        r = client.post(f"/fixed-deposits/{fd_number}/mature", headers=ALICE)
        assert r.status_code == 200
        assert r.json()["status"] == "matured"

        r = client.post(f"/fixed-deposits/{fd_number}/mature", headers=ALICE)
        assert r.status_code == 409

        r = client.post("/fixed-deposits", json={
            "source_account_number": alice, "principal": "5000", "tenure": 3
        }, headers=ALICE)
        assert r.json()["detail"]["error_code"] == "invalid_tenure"

    def test_recurring_deposit_flow(self, client, system):
        alice = open_account(client, ALICE)

        r = client.post("/recurring-deposits", json={
            "source_account_number": alice, "monthly_amount": "2000", "tenure": 12
        }, headers=ALICE)
        assert r.status_code == 201
        rd_number = r.json()["rd_number"]
        assert r.json()["installments_paid"] == 1

        system.clock.advance(days=36)
        r = client.get("/recurring-deposits/overdue", headers=ALICE)
        assert [rd["rd_number"] for rd in r.json()["recurring_deposits"]] == [rd_number]

        r = client.post(f"/recurring-deposits/{rd_number}/installments", json={"method": "online"}, headers=ALICE)
        assert r.status_code == 200
        assert r.json()["installment_number"] == 2
        assert r.json()["penalty_amount"] == "50.00"

        r = client.get(f"/recurring-deposits/{rd_number}/installments", headers=ALICE)
        assert [i["status"] for i in r.json()["installments"][:3]] == ["paid", "paid", "pending"]

        r = client.put(f"/recurring-deposits/{rd_number}/auto-debit", json={"enabled": False}, headers=ALICE)
        assert r.json()["auto_debit"]["enabled"] is False
        assert r.json()["message"] == "Auto-debit disabled successfully"

        r = client.post(f"/recurring-deposits/{rd_number}/close", json={"reason": "Early"}, headers=ALICE)
        assert r.status_code == 422

        r = client.get(f"/recurring-deposits/{rd_number}", headers=BOB)
        assert r.status_code == 404


class TestSweepEndpoints:

    def test_daily_sweep_and_audit(self, client):
        open_account(client, ALICE)

        r = client.post("/sweeps/daily")
        assert r.status_code == 200
        assert r.json()["message"] == "Daily sweeps completed"

        r = client.get("/sweeps/audit/verify")
        assert r.json()["valid"] is True
