import paystack
from db import db

from conftest import make_product, make_user, place_order
from wallet import claim_topup_reference, credit_wallet, debit_wallet, get_balance


def test_ledger_helpers(customer):
    uid = customer["_id"]
    assert credit_wallet(uid, 1000, "seed", "R-1") == 1000
    assert debit_wallet(uid, 1500, "too much") is None
    assert debit_wallet(uid, 400, "spend") == 600
    assert get_balance(uid) == 600
    assert [t["type"] for t in db["transactions"].find().sort("_id", 1)] == ["credit", "debit"]


def test_initialize_minimum(client, customer):
    assert client.post("/api/v1/wallet/initialize", json={"amount": 50}).status_code == 400
    assert client.post("/api/v1/wallet/initialize", json={"amount": "abc"}).status_code == 400


def test_dev_topup_flow_is_idempotent(client, customer):
    r = client.post("/api/v1/wallet/initialize", json={"amount": 2500})
    data = r.get_json()["data"]
    assert data["devMode"] is True
    reference = data["reference"]
    assert reference.startswith("WLT-") and "-2500-" in reference

    r = client.get(f"/api/v1/wallet/verify?reference={reference}")
    assert r.get_json()["data"]["balance"] == 2500
    r = client.get(f"/api/v1/wallet/verify?reference={reference}")
    assert r.get_json()["message"] == "Already processed"
    assert client.get("/api/v1/wallet/balance").get_json()["data"]["balance"] == 2500
    assert db["notifications"].count_documents({"type": "wallet_update"}) == 1


def test_verify_rejects_foreign_or_malformed_reference(client, customer):
    assert client.get("/api/v1/wallet/verify").status_code == 400
    assert client.get("/api/v1/wallet/verify?reference=WLT-1-500-zzzz").status_code == 400
    assert client.get("/api/v1/wallet/verify?reference=WLT-1-50-" + str(customer["_id"])[-4:]).status_code == 400


def _topup_tx(user_id, tx_type="wallet_topup"):
    def verify(ref):
        return {"status": "success", "amount": 150000, "reference": ref,
                "metadata": {"type": tx_type, "userId": user_id}}
    return verify


def test_live_verify_checks_owner(client, customer, monkeypatch):
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    monkeypatch.setattr(paystack, "verify_transaction", _topup_tx("someone-else"))
    assert client.get("/api/v1/wallet/verify?reference=WLT-9-1500-abcd").status_code == 403
    monkeypatch.setattr(paystack, "verify_transaction", _topup_tx(None))
    assert client.get("/api/v1/wallet/verify?reference=WLT-9-1500-abcd").status_code == 403

    monkeypatch.setattr(paystack, "verify_transaction", _topup_tx(str(customer["_id"])))
    r = client.get("/api/v1/wallet/verify?reference=WLT-9-1500-abcd")
    assert r.get_json()["data"]["balance"] == 1500


def test_order_payment_reference_is_not_credited(client, customer, monkeypatch):
    order = place_order(client, make_product(price=3000))
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    monkeypatch.setattr(paystack, "verify_transaction", lambda ref: {
        "status": "success", "amount": 420000, "reference": ref,
        "metadata": {"orderId": order["_id"], "type": "order"},
    })
    r = client.get(f"/api/v1/wallet/verify?reference={order['order_number']}")
    assert r.status_code == 400
    assert get_balance(customer["_id"]) == 0

    monkeypatch.setattr(paystack, "verify_transaction", _topup_tx(str(customer["_id"]), "order"))
    assert client.get("/api/v1/wallet/verify?reference=WLT-9-1500-abcd").status_code == 400
    assert db["transactions"].count_documents({"type": "credit"}) == 0


def test_claimed_reference_is_credited_once(client, customer, monkeypatch):
    monkeypatch.setattr(paystack, "PAYSTACK_SECRET_KEY", "sk_live_real")
    monkeypatch.setattr(paystack, "verify_transaction", _topup_tx(str(customer["_id"])))
    assert claim_topup_reference("WLT-9-1500-abcd", customer["_id"]) is True

    r = client.get("/api/v1/wallet/verify?reference=WLT-9-1500-abcd")
    assert r.get_json()["message"] == "Already processed"
    assert get_balance(customer["_id"]) == 0
    assert claim_topup_reference("WLT-9-1500-abcd", customer["_id"]) is False


def test_transactions_history(client, customer):
    credit_wallet(customer["_id"], 300, "a", "A")
    credit_wallet(customer["_id"], 200, "b", "B")
    body = client.get("/api/v1/wallet/transactions?limit=1").get_json()
    assert body["meta"]["total"] == 2
    assert len(body["data"]) == 1
    assert body["balance"] == 500
    assert "meta" not in body["data"][0]


def test_admin_wallet_reports(client, customer, admin_client, admin):
    other = make_user(email="rich@example.com", phone="08030000007")
    credit_wallet(customer["_id"], 10000, "Wallet Top-up", "T-1")
    credit_wallet(other["_id"], 20000, "Wallet Top-up", "T-2")
    place_order(client, make_product(price=3000), method="wallet")

    stats = admin_client.get("/api/v1/admin/wallet/stats").get_json()["data"]
    assert stats["totalLiability"] == 30000 - 4200
    assert stats["activeHolders"] == 2
    assert stats["monthlyTopups"] == {"total": 30000, "count": 2, "average": 15000}
    assert stats["monthlySpending"]["total"] == 4200
    assert stats["utilizationRate"] == 14.0
    assert stats["netGrowth"] == 25800

    holders = admin_client.get("/api/v1/admin/wallet/top-holders").get_json()["data"]
    assert holders[0]["user"]["email"] == "rich@example.com"

    body = admin_client.get("/api/v1/admin/wallet/payment-comparison").get_json()
    wallet_row = next(r for r in body["data"] if r["method"] == "wallet")
    assert wallet_row["orders"] == 1 and wallet_row["percentage"] == 100
    assert body["totalRevenue"] == 4200

    debits = admin_client.get("/api/v1/admin/wallet/transactions?type=debit").get_json()
    assert debits["meta"]["total"] == 1
