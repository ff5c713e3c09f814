from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient
from sqlalchemy import select

from automation_engine.core.database import session_scope
from automation_engine.events_engine.rule_cache import cache_key, get_rule_cache
from automation_engine.models.audit_entry import AuditEntry

RULE = {
    "name": "Abandoned cart reminder",
    "trigger_event_type": "cart.abandoned",
    "filters": [{"path": "cart.value", "op": "gte", "value": 50}],
    "actions": [
        {
            "channel": "WhatsApp",
            "recipient_path": "customer.phone",
            "template_key": "cart_reminder",
            "delay_seconds": 3600,
        }
    ],
    "dedupe_scope": "cart",
    "priority": 5,
}


def _headers(tenant_id, actor_id=None) -> dict[str, str]:
    headers = {"X-Tenant-Id": str(tenant_id)}
    if actor_id:
        headers["X-Actor-Id"] = str(actor_id)
    return headers


def test_rule_crud_lifecycle(client: TestClient, tenant_id) -> None:
    created = client.post("/api/v1/rules", json=RULE, headers=_headers(tenant_id))
    assert created.status_code == 201
    body = created.json()
    assert body["filters"] == [{"path": "cart.value", "operator": "gte", "value": 50}]
    assert body["actions"][0]["channel"] == "whatsapp"
    assert body["dedupe_scope"] == "cart"

    listed = client.get("/api/v1/rules", params={"trigger_event_type": "cart.abandoned"}, headers=_headers(tenant_id))
    assert [item["id"] for item in listed.json()] == [body["id"]]

    updated = client.patch(
        f"/api/v1/rules/{body['id']}",
        json={"is_enabled": False, "priority": 1},
        headers=_headers(tenant_id),
    )
    assert updated.status_code == 200
    assert updated.json()["is_enabled"] is False
    assert updated.json()["priority"] == 1
    assert updated.json()["name"] == RULE["name"]

    deleted = client.delete(f"/api/v1/rules/{body['id']}", headers=_headers(tenant_id))
    assert deleted.status_code == 204
    assert client.get(f"/api/v1/rules/{body['id']}", headers=_headers(tenant_id)).status_code == 404

    with session_scope() as session:
        actions = session.scalars(select(AuditEntry.action).order_by(AuditEntry.created_at)).all()
        assert actions == ["rule.created", "rule.updated", "rule.deleted"]


def test_rule_validation_errors_return_400(client: TestClient, tenant_id) -> None:
    bad_operator = {**RULE, "filters": [{"path": "cart.value", "operator": "around", "value": 1}]}
    assert client.post("/api/v1/rules", json=bad_operator, headers=_headers(tenant_id)).status_code == 400

    no_actions = {**RULE, "actions": []}
    assert client.post("/api/v1/rules", json=no_actions, headers=_headers(tenant_id)).status_code == 400

    created = client.post("/api/v1/rules", json=RULE, headers=_headers(tenant_id)).json()
    null_name = client.patch(f"/api/v1/rules/{created['id']}", json={"name": None}, headers=_headers(tenant_id))
    assert null_name.status_code == 400


def test_rule_writes_invalidate_the_tenant_cache(client: TestClient, tenant_id) -> None:
    cache = get_rule_cache()
    key = cache_key(tenant_id, "cart.abandoned")
    cache.set(key, [])

    client.post("/api/v1/rules", json=RULE, headers=_headers(tenant_id)).raise_for_status()

    assert cache.get(key) is None


def test_rules_are_scoped_to_tenant(client: TestClient, tenant_id) -> None:
    created = client.post("/api/v1/rules", json=RULE, headers=_headers(tenant_id)).json()
    other = _headers(uuid4())
    assert client.get(f"/api/v1/rules/{created['id']}", headers=other).status_code == 404
    assert client.get("/api/v1/rules", headers=other).json() == []
