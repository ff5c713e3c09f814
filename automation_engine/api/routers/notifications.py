"""Notification lifecycle endpoints for operators."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from automation_engine.api.dependencies import get_actor_id, get_notification_service, get_tenant_id
from automation_engine.models.notification import NotificationStatus
from automation_engine.schemas.notification import (
    AttemptResponse,
    NotificationResponse,
    ReprocessRequest,
    RescheduleRequest,
)
from automation_engine.services.notifications import NotificationService

router = APIRouter()


@router.get("", response_model=List[NotificationResponse])
def list_notifications(
    status: Optional[NotificationStatus] = Query(default=None),
    channel: Optional[str] = Query(default=None, max_length=32),
    rule_id: Optional[UUID] = Query(default=None),
    event_id: Optional[UUID] = Query(default=None),
    scheduled_from: Optional[datetime] = Query(default=None),
    scheduled_to: Optional[datetime] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tenant_id: UUID = Depends(get_tenant_id),
    service: NotificationService = Depends(get_notification_service),
) -> List[NotificationResponse]:
    notifications = service.list_notifications(
        tenant_id,
        status=status,
        channel=channel,
        rule_id=rule_id,
        event_id=event_id,
        scheduled_from=scheduled_from,
        scheduled_to=scheduled_to,
        limit=limit,
        offset=offset,
    )
    return [NotificationResponse.model_validate(item, from_attributes=True) for item in notifications]


@router.get("/{notification_id}", response_model=NotificationResponse)
def get_notification(
    notification_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    notification = service.get_notification(tenant_id, notification_id)
    return NotificationResponse.model_validate(notification, from_attributes=True)


@router.get("/{notification_id}/attempts", response_model=List[AttemptResponse])
def list_attempts(
    notification_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    service: NotificationService = Depends(get_notification_service),
) -> List[AttemptResponse]:
    attempts = service.list_attempts(tenant_id, notification_id)
    return [AttemptResponse.model_validate(attempt, from_attributes=True) for attempt in attempts]


@router.post("/{notification_id}/cancel", response_model=NotificationResponse)
def cancel_notification(
    notification_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    notification = service.cancel(tenant_id, notification_id, actor_id=actor_id)
    return NotificationResponse.model_validate(notification, from_attributes=True)


@router.post("/{notification_id}/reschedule", response_model=NotificationResponse)
def reschedule_notification(
    notification_id: UUID,
    payload: RescheduleRequest,
    tenant_id: UUID = Depends(get_tenant_id),
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    notification = service.reschedule(tenant_id, notification_id, payload.scheduled_for, actor_id=actor_id)
    return NotificationResponse.model_validate(notification, from_attributes=True)


@router.post("/{notification_id}/reprocess", response_model=NotificationResponse)
def reprocess_notification(
    notification_id: UUID,
    payload: Optional[ReprocessRequest] = None,
    tenant_id: UUID = Depends(get_tenant_id),
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: NotificationService = Depends(get_notification_service),
) -> NotificationResponse:
    reset_attempts = payload.reset_attempts if payload else False
    notification = service.reprocess(tenant_id, notification_id, reset_attempts=reset_attempts, actor_id=actor_id)
    return NotificationResponse.model_validate(notification, from_attributes=True)
