from datetime import datetime, timedelta

import admin_tickets
from db import db

from tickets import auto_close_resolved


def _open(client, **extra):
    body = {"subject": "Cracked screen guard", "description": "Arrived cracked", **extra}
    return client.post("/api/v1/tickets", json=body)


def test_create_ticket_validation(client, customer):
    assert _open(client, subject="").status_code == 400
    assert _open(client, priority="whenever").status_code == 400
    assert _open(client, order="0" * 24).status_code == 404

    r = _open(client, priority="High")
    assert r.status_code == 201
    ticket = r.get_json()["data"]
    assert ticket["status"] == "open" and ticket["priority"] == "high"
    assert db["notifications"].count_documents({"type": "new_ticket"}) == 0  # no admins yet


def test_admins_are_notified(client, customer, admin):
    _open(client)
    assert db["notifications"].count_documents({"recipient": admin["_id"], "type": "new_ticket"}) == 1


def test_admin_reply_internal_note_hidden_from_customer(client, customer, admin_client, admin):
    ticket = _open(client).get_json()["data"]
    tid = ticket["_id"]

    r = admin_client.post(f"/api/v1/admin/tickets/{tid}/reply", json={"message": "Checking", "isInternal": True})
    assert r.get_json()["data"]["status"] == "in-progress"
    admin_client.post(f"/api/v1/admin/tickets/{tid}/reply", json={"message": "Replacement on the way"})

    comments = client.get(f"/api/v1/tickets/{tid}").get_json()["data"]["comments"]
    assert [c["message"] for c in comments] == ["Replacement on the way"]
    assert len(admin_client.get(f"/api/v1/admin/tickets/{tid}").get_json()["data"]["comments"]) == 2
    assert db["notifications"].count_documents({"recipient": customer["_id"], "type": "ticket_reply"}) == 1


def test_reply_email_escapes_admin_message(client, customer, admin_client, admin, monkeypatch):
    sent = []
    monkeypatch.setattr(admin_tickets, "send_email", lambda to, subject, html: sent.append((to, html)))
    tid = _open(client).get_json()["data"]["_id"]
    admin_client.post(f"/api/v1/admin/tickets/{tid}/reply", json={"message": "<b>Fixed</b> & shipped"})

    assert len(sent) == 1
    to, html = sent[0]
    assert to == customer["email"]
    assert "&lt;b&gt;Fixed&lt;/b&gt; &amp; shipped" in html
    assert "<b>" not in html


def test_customer_comment_reopens_resolved_ticket(client, customer, admin_client, admin):
    tid = _open(client).get_json()["data"]["_id"]
    r = admin_client.patch(f"/api/v1/admin/tickets/{tid}", json={"status": "resolved"})
    assert r.get_json()["data"]["status"] == "resolved"
    assert db["admin_activities"].count_documents({"action": "update_ticket"}) == 1

    r = client.post(f"/api/v1/tickets/{tid}/comments", json={"message": "Still broken"})
    assert r.get_json()["data"]["status"] == "open"


def test_resolved_ticket_auto_closes(client, customer, admin_client, admin):
    tid = _open(client).get_json()["data"]["_id"]
    admin_client.patch(f"/api/v1/admin/tickets/{tid}", json={"status": "resolved"})
    assert auto_close_resolved() == 0
    assert auto_close_resolved(datetime.utcnow() + timedelta(minutes=10)) == 1

    ticket = client.get(f"/api/v1/tickets/{tid}").get_json()["data"]
    assert ticket["status"] == "closed"
    r = client.post(f"/api/v1/tickets/{tid}/comments", json={"message": "Hello?"})
    assert r.status_code == 400


def test_admin_update_validation_and_filters(client, customer, admin_client, admin):
    tid = _open(client, priority="urgent").get_json()["data"]["_id"]
    _open(client)
    assert admin_client.patch(f"/api/v1/admin/tickets/{tid}", json={}).status_code == 400
    assert admin_client.patch(f"/api/v1/admin/tickets/{tid}", json={"status": "gone"}).status_code == 400

    body = admin_client.get("/api/v1/admin/tickets?priority=urgent").get_json()
    assert body["meta"]["total"] == 1
    assert body["data"][0]["user"]["email"] == "ada@example.com"
    assert admin_client.get("/api/v1/admin/tickets?status=bogus").status_code == 400


def test_my_tickets_only_own(client, customer):
    _open(client)
    db["tickets"].insert_one({"user_id": db["users"].insert_one({"email": "z@z.com"}).inserted_id,
                              "subject": "x", "status": "open", "created_at": datetime.utcnow(),
                              "updated_at": datetime.utcnow()})
    body = client.get("/api/v1/tickets/my-tickets").get_json()
    assert body["count"] == 1
