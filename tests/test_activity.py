from db import db

from activity import diff_changes, log_activity, render_changes, snapshot


def test_diff_changes_flattens_nested_dicts():
    before = {"delivery": {"tier1_fee": 1200}, "name": "A", "gone": 1}
    after = {"delivery": {"tier1_fee": 900}, "name": "A", "new": [1, 2]}
    rows = diff_changes(before, after)
    assert rows == [
        {"field": "delivery.tier1_fee", "before": 1200, "after": 900, "change": "modified"},
        {"field": "gone", "before": 1, "after": None, "change": "removed"},
        {"field": "new", "before": None, "after": [1, 2], "change": "added"},
    ]


def test_render_changes_modes():
    assert render_changes(None) is None
    assert render_changes({}) is None
    diff = render_changes({"before": {"status": "draft"}, "after": {"status": "active"}})
    assert diff["mode"] == "diff"
    assert diff["fields"][0]["field"] == "status"
    meta = render_changes({"orderIds": ["a"], "status": "shipped"})
    assert meta["mode"] == "metadata"
    assert [f["field"] for f in meta["fields"]] == ["orderIds", "status"]


def test_snapshot_keeps_present_fields_only():
    assert snapshot({"a": 1, "b": None}, ("a", "b", "c")) == {"a": 1, "b": None}
    assert snapshot(None, ("a",)) == {}


def test_unknown_actions_are_rejected():
    assert log_activity("launch_rockets", "order") is None
    assert log_activity("create", "spaceship") is None
    assert db["admin_activities"].count_documents({}) == 0


def test_list_filters_stats_and_detail(admin_client, admin):
    log_activity("create", "product", "p1", "Created product: Case", admin_id=admin["_id"])
    log_activity("update", "product", "p1", "Updated product: Case",
                 {"before": {"name": "Case"}, "after": {"name": "Clear Case"}}, admin_id=admin["_id"])
    log_activity("refund", "order", "o1", "Refunded order", admin_id=admin["_id"])

    body = admin_client.get("/api/v1/admin/activity?resource=product").get_json()
    assert body["meta"]["total"] == 2
    assert body["stats"]["byType"] == {"create": 1, "update": 1}
    assert len(body["stats"]["byDate"]) == 1
    assert body["data"][0]["admin"]["role"] == "admin"

    updated = next(a for a in body["data"] if a["action"] == "update")
    assert updated["diff"]["fields"][0]["after"] == "Clear Case"
    r = admin_client.get(f"/api/v1/admin/activity/{updated['_id']}")
    assert r.get_json()["data"]["details"] == "Updated product: Case"
    assert admin_client.get("/api/v1/admin/activity/nope").status_code == 404

    body = admin_client.get("/api/v1/admin/activity?search=refunded").get_json()
    assert body["meta"]["total"] == 1


def test_export(admin_client, admin):
    log_activity("create", "coupon", "c1", "Created coupon", admin_id=admin["_id"])
    r = admin_client.get("/api/v1/admin/activity/export?format=pdf")
    assert r.status_code == 200 and r.mimetype == "application/pdf"
    r = admin_client.get("/api/v1/admin/activity/export")
    assert r.data[:2] == b"PK"
