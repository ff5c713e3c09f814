from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from fastapi.testclient import TestClient

from automation_engine.core.database import session_scope
from automation_engine.models.attempt import Attempt, AttemptResult
from automation_engine.models.notification import NotificationStatus


def _headers(tenant_id) -> dict[str, str]:
    return {"X-Tenant-Id": str(tenant_id), "X-Actor-Id": "7f1c9d3e-2a4b-4c5d-8e6f-123456789abc"}


def test_cancel_then_cancel_again_conflicts(client: TestClient, make_notification, tenant_id) -> None:
    notification_id = make_notification()

    resp = client.post(f"/api/v1/notifications/{notification_id}/cancel", headers=_headers(tenant_id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancelled_at"] is not None

    again = client.post(f"/api/v1/notifications/{notification_id}/cancel", headers=_headers(tenant_id))
    assert again.status_code == 409
    assert again.json()["status"] == "cancelled"


def test_cancel_sent_notification_is_rejected(client: TestClient, make_notification, tenant_id) -> None:
    notification_id = make_notification(status=NotificationStatus.SENT)

    resp = client.post(f"/api/v1/notifications/{notification_id}/cancel", headers=_headers(tenant_id))

    assert resp.status_code == 409
    detail = client.get(f"/api/v1/notifications/{notification_id}", headers=_headers(tenant_id)).json()
    assert detail["status"] == "sent"


def test_reschedule_only_from_scheduled(client: TestClient, make_notification, tenant_id) -> None:
    notification_id = make_notification(attempts_count=1)
    new_time = datetime(2030, 1, 1, 8, 0, tzinfo=timezone.utc)

    resp = client.post(
        f"/api/v1/notifications/{notification_id}/reschedule",
        json={"scheduled_for": new_time.isoformat()},
        headers=_headers(tenant_id),
    )
    assert resp.status_code == 200
    assert resp.json()["scheduled_for"].startswith("2030-01-01T08:00:00")
    assert resp.json()["attempts_count"] == 1

    failed_id = make_notification(status=NotificationStatus.FAILED)
    conflict = client.post(
        f"/api/v1/notifications/{failed_id}/reschedule",
        json={"scheduled_for": new_time.isoformat()},
        headers=_headers(tenant_id),
    )
    assert conflict.status_code == 409


def test_reprocess_failed_notification(client: TestClient, make_notification, tenant_id) -> None:
    notification_id = make_notification(status=NotificationStatus.FAILED, attempts_count=3)

    resp = client.post(f"/api/v1/notifications/{notification_id}/reprocess", headers=_headers(tenant_id))
    assert resp.status_code == 200
    assert resp.json()["status"] == "scheduled"
    assert resp.json()["attempts_count"] == 3

    scheduled = client.post(f"/api/v1/notifications/{notification_id}/reprocess", headers=_headers(tenant_id))
    assert scheduled.status_code == 409


def test_reprocess_can_reset_attempts(client: TestClient, make_notification, tenant_id) -> None:
    notification_id = make_notification(status=NotificationStatus.FAILED, attempts_count=3)

    resp = client.post(
        f"/api/v1/notifications/{notification_id}/reprocess",
        json={"reset_attempts": True},
        headers=_headers(tenant_id),
    )

    assert resp.status_code == 200
    assert resp.json()["attempts_count"] == 0


def test_attempt_history_is_ordered(client: TestClient, make_notification, tenant_id) -> None:
    notification_id = make_notification(status=NotificationStatus.SENT)
    started = datetime(2024, 1, 1, tzinfo=timezone.utc)
    with session_scope() as session:
        for number, result in ((2, AttemptResult.SUCCESS), (1, AttemptResult.FAILURE)):
            session.add(
                Attempt(
                    notification_id=notification_id,
                    tenant_id=tenant_id,
                    attempt_number=number,
                    started_at=started + timedelta(minutes=number),
                    finished_at=started + timedelta(minutes=number),
                    result=result,
                    error_message="timeout" if result is AttemptResult.FAILURE else None,
                    response_metadata={},
                )
            )

    resp = client.get(f"/api/v1/notifications/{notification_id}/attempts", headers=_headers(tenant_id))

    assert resp.status_code == 200
    assert [(item["attempt_number"], item["result"]) for item in resp.json()] == [(1, "failure"), (2, "success")]


def test_list_filters_and_audit_trail(client: TestClient, make_notification, tenant_id) -> None:
    sms_id = make_notification(channel="sms")
    make_notification(channel="email", recipient="a@example.com")
    make_notification(channel="sms", tenant=uuid4())

    listed = client.get("/api/v1/notifications", params={"channel": "sms"}, headers=_headers(tenant_id)).json()
    assert [item["id"] for item in listed] == [str(sms_id)]

    client.post(f"/api/v1/notifications/{sms_id}/cancel", headers=_headers(tenant_id)).raise_for_status()
    audit = client.get(
        "/api/v1/audit",
        params={"notification_id": str(sms_id)},
        headers=_headers(tenant_id),
    ).json()
    assert [entry["action"] for entry in audit] == ["notification.cancelled"]
    assert audit[0]["actor_id"] == "7f1c9d3e-2a4b-4c5d-8e6f-123456789abc"
    assert audit[0]["details"] == {"previous_status": "scheduled"}


def test_unknown_notification_returns_404(client: TestClient, tenant_id) -> None:
    missing = "00000000-0000-0000-0000-000000000001"
    assert client.get(f"/api/v1/notifications/{missing}", headers=_headers(tenant_id)).status_code == 404
    assert client.post(f"/api/v1/notifications/{missing}/cancel", headers=_headers(tenant_id)).status_code == 404
