"""
Tests: HTTP mapping of the workflow and initiative endpoints.
"""

import pytest

from opexhub.models import db as _db
from opexhub.models.notification import Notification


def _create(client, **overrides):
    payload = {"title": "Compressed air leak audit", "site": "NDS", "discipline": "Operation",
               "initiator_name": "Kavya Nair"}
    payload.update(overrides)
    return client.post("/api/v1/initiatives", json=payload)


def _ledger(client, iid):
    return {r["stage_number"]: r for r in client.get(f"/api/v1/workflow/initiatives/{iid}/ledger").get_json()}


def _act(client, tid, **body):
    body.setdefault("decision", "approve")
    body.setdefault("comment", "ok")
    body.setdefault("actor_name", "Approver")
    return client.post(f"/api/v1/workflow/transactions/{tid}/act", json=body)


@pytest.fixture()
def initiative(client, nds_routing):
    res = _create(client)
    assert res.status_code == 201
    return res.get_json()


# ── Registration ─────────────────────────────────────────────────────────────


def test_create_returns_visible_ledger(initiative):
    assert initiative["status"] == "pending"
    assert initiative["current_stage"] == 2
    assert [r["stage_number"] for r in initiative["ledger"]] == [1, 2]
    assert initiative["initiative_number"].startswith("NDS/")


def test_create_uses_x_user_header_as_initiator(client, nds_routing):
    res = client.post(
        "/api/v1/initiatives",
        json={"title": "Pump trimming", "site": "NDS", "discipline": "Operation"},
        headers={"X-User": "Deepika Singh"},
    )
    assert res.status_code == 201
    assert res.get_json()["initiator_name"] == "Deepika Singh"


def test_create_missing_fields_is_422(client, nds_routing):
    res = _create(client, title="")
    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"


def test_create_without_routing_is_422(client):
    res = _create(client, site="XYZ")
    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_ROUTING_MISCONFIGURED"
    assert res.get_json()["details"]["stage_number"] == 1


def test_create_with_non_json_body_is_400(client, nds_routing):
    res = client.post("/api/v1/initiatives", data="title=x", content_type="text/plain")
    assert res.status_code == 400


def test_get_initiative(client, initiative):
    res = client.get(f"/api/v1/initiatives/{initiative['id']}")
    assert res.status_code == 200
    assert res.get_json()["title"] == "Compressed air leak audit"
    assert client.get("/api/v1/initiatives/99999").status_code == 404


# ── Decisions ────────────────────────────────────────────────────────────────


def test_act_approve_creates_next_stage(client, initiative):
    second = _ledger(client, initiative["id"])[2]

    res = _act(client, second["id"])

    assert res.status_code == 200
    body = res.get_json()
    assert body["transaction"]["status"] == "approved"
    assert body["next_transaction"]["stage_number"] == 3
    assert body["initiative"]["current_stage"] == 3


def test_act_twice_is_409(client, initiative):
    second = _ledger(client, initiative["id"])[2]
    assert _act(client, second["id"]).status_code == 200

    res = _act(client, second["id"], decision="reject")

    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_STATE"


def test_act_blank_comment_is_422(client, initiative):
    second = _ledger(client, initiative["id"])[2]
    assert _act(client, second["id"], comment=" ").status_code == 422


def test_act_missing_decision_is_400(client, initiative):
    second = _ledger(client, initiative["id"])[2]
    res = client.post(f"/api/v1/workflow/transactions/{second['id']}/act", json={"comment": "ok"})
    assert res.status_code == 400


def test_act_wrong_types_are_400(client, initiative):
    second = _ledger(client, initiative["id"])[2]
    assert _act(client, second["id"], assigned_user_id="42").status_code == 400
    assert _act(client, second["id"], requires_moc="yes").status_code == 400


def test_act_unknown_transaction_is_404(client, nds_routing):
    assert _act(client, 424242).status_code == 404


def test_act_by_wrong_addressee_is_403(client, initiative):
    second = _ledger(client, initiative["id"])[2]
    res = client.post(
        f"/api/v1/workflow/transactions/{second['id']}/act",
        json={"decision": "approve", "comment": "ok", "actor_name": "Ananya"},
        headers={"X-User-Email": "ananya.verma@godeepak.com"},
    )
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


def test_stage_three_without_lead_is_422(client, initiative):
    _act(client, _ledger(client, initiative["id"])[2]["id"])
    third = _ledger(client, initiative["id"])[3]

    res = _act(client, third["id"])

    assert res.status_code == 422
    assert res.get_json()["details"] == {"assigned_user_id": "required"}


def test_unresolved_role_is_422(client, initiative, nds_routing):
    iid = initiative["id"]
    for stage in range(2, 7):
        extra = {"assigned_user_id": 42} if stage == 3 else {}
        assert _act(client, _ledger(client, iid)[stage]["id"], **extra).status_code == 200
    nds_routing["ctsd"].is_active = False
    _db.session.commit()

    res = _act(client, _ledger(client, iid)[7]["id"])

    assert res.status_code == 422
    body = res.get_json()
    assert body["code"] == "ERR_ROLE_UNRESOLVED"
    assert body["details"] == {"site": "NDS", "role": "CTSD", "stage_number": 8}
    assert _ledger(client, iid)[7]["status"] == "pending"


# ── Reads ────────────────────────────────────────────────────────────────────


def test_visible_and_current_pending(client, initiative):
    iid = initiative["id"]
    _act(client, _ledger(client, iid)[2]["id"])
    _act(client, _ledger(client, iid)[3]["id"], assigned_user_id=42)

    visible = client.get(f"/api/v1/workflow/initiatives/{iid}/visible").get_json()
    pending = client.get(f"/api/v1/workflow/initiatives/{iid}/current-pending").get_json()

    assert [r["stage_number"] for r in visible] == [1, 2, 3, 4]
    assert pending["stage_number"] == 4
    assert pending["pending_with"] == "kiran.sharma@godeepak.com"


def test_current_pending_is_404_when_none(client, initiative):
    iid = initiative["id"]
    _act(client, _ledger(client, iid)[2]["id"], decision="reject", comment="no")

    res = client.get(f"/api/v1/workflow/initiatives/{iid}/current-pending")

    assert res.status_code == 404


def test_progress_endpoint(client, initiative):
    res = client.get(f"/api/v1/workflow/initiatives/{initiative['id']}/progress")
    assert res.status_code == 200
    body = res.get_json()
    assert body["percent_complete"] == 50
    assert body["plan_percent_complete"] == 9


def test_pending_by_role_lists_only_role_queued_rows(app, client, initiative, nds_routing):
    iid = initiative["id"]
    # Stage 2 is addressed to Ravi by name, not queued on CTSD
    assert client.get("/api/v1/workflow/pending/CTSD").get_json() == []

    for stage in range(2, 7):
        extra = {"assigned_user_id": 42} if stage == 3 else {}
        assert _act(client, _ledger(client, iid)[stage]["id"], **extra).status_code == 200
    nds_routing["ctsd"].is_active = False
    _db.session.commit()
    engine = app.extensions["stage_engine"]
    engine.role_queue_fallback = True
    try:
        assert _act(client, _ledger(client, iid)[7]["id"]).status_code == 200
    finally:
        engine.role_queue_fallback = False

    by_role = client.get("/api/v1/workflow/pending/CTSD").get_json()
    by_site = client.get("/api/v1/workflow/pending/NDS/CTSD").get_json()
    other_site = client.get("/api/v1/workflow/pending/DHJ/CTSD").get_json()

    assert [(r["stage_number"], r["pending_with"]) for r in by_role] == [(8, "CTSD")]
    assert [r["initiative_id"] for r in by_site] == [iid]
    assert other_site == []


def test_access_endpoint_requires_email(client, initiative):
    iid = initiative["id"]
    assert client.get(f"/api/v1/workflow/initiatives/{iid}/access").status_code == 400

    body = client.get(f"/api/v1/workflow/initiatives/{iid}/access?email=kiran.sharma@godeepak.com").get_json()
    assert body["timeline_tracker"] is False
    assert body["savings_monitoring"] is False


def test_approved_stage_endpoint_rejects_other_stages(client, nds_routing):
    res = client.get("/api/v1/workflow/approved-stage/4?email=kiran.sharma@godeepak.com")
    assert res.status_code == 422


def test_ready_for_closure_endpoint(client, initiative):
    assert client.get("/api/v1/workflow/ready-for-closure").get_json() == []


def test_reconcile_endpoint(client, nds_routing):
    body = client.get("/api/v1/workflow/routing/NDS/reconcile").get_json()
    assert body == {"site": "NDS", "consistent": True, "mismatches": []}


# ── E-mail actions & inbox ───────────────────────────────────────────────────


def test_email_action_token_approves_once(app, client, initiative):
    iid = initiative["id"]
    second = _ledger(client, iid)[2]
    token = app.extensions["action_tokens"].issue(second["id"], "approve", second["pending_with"])

    first = client.post(f"/api/v1/workflow/email-actions/{token}", json={})
    again = client.post(f"/api/v1/workflow/email-actions/{token}", json={})

    assert first.status_code == 200
    assert first.get_json()["transaction"]["action_by"] == "ravi.kumar@godeepak.com"
    assert first.get_json()["transaction"]["comment"] == "Actioned from e-mail link"
    assert again.status_code == 404


def test_notification_inbox_endpoints(client, initiative):
    res = client.get("/api/v1/workflow/notifications?recipient=ravi.kumar@godeepak.com&unread=true")
    items = res.get_json()["items"]
    assert len(items) == 1

    read = client.post(f"/api/v1/workflow/notifications/{items[0]['id']}/read")

    assert read.status_code == 200
    assert read.get_json()["is_read"] is True
    assert _db.session.get(Notification, items[0]["id"]) is not None
    assert client.post("/api/v1/workflow/notifications/99999/read").status_code == 404


# ── Health & middleware ──────────────────────────────────────────────────────


def test_health_endpoints(client):
    assert client.get("/api/v1/health/ready").status_code == 200
    live = client.get("/api/v1/health/live")
    assert live.status_code == 200
    assert live.get_json()["checks"]["action_tokens"]["backend"] == "memory"


def test_request_id_is_echoed(client):
    res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"
    assert "X-Request-Duration-Ms" in res.headers


def test_unknown_route_is_json_404(client):
    res = client.get("/api/v1/nope")
    assert res.status_code == 404
    assert res.get_json()["error"] == "Not found"
