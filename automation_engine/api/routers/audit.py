"""Audit log query endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from automation_engine.api.dependencies import get_audit_service, get_tenant_id
from automation_engine.schemas.notification import AuditEntryResponse
from automation_engine.services.audit import AuditService

router = APIRouter()


@router.get("", response_model=List[AuditEntryResponse])
def list_audit_entries(
    action: Optional[str] = Query(default=None, max_length=120),
    notification_id: Optional[UUID] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    tenant_id: UUID = Depends(get_tenant_id),
    service: AuditService = Depends(get_audit_service),
) -> List[AuditEntryResponse]:
    entries = service.list_entries(tenant_id=tenant_id, action=action, notification_id=notification_id, limit=limit)
    return [AuditEntryResponse.model_validate(entry, from_attributes=True) for entry in entries]
