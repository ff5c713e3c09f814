"""Event ingestion and query endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from automation_engine.api.dependencies import get_event_service, get_tenant_id
from automation_engine.events_engine.service import EventService
from automation_engine.models.event import EventStatus
from automation_engine.schemas.event import EventAppendRequest, EventAppendResponse, EventResponse

router = APIRouter()


@router.post(
    "",
    response_model=EventAppendResponse,
    status_code=status.HTTP_201_CREATED,
    responses={200: {"description": "Idempotency key already stored; the existing event is returned."}},
)
def append_event(
    payload: EventAppendRequest,
    response: Response,
    tenant_id: UUID = Depends(get_tenant_id),
    service: EventService = Depends(get_event_service),
) -> EventAppendResponse:
    result = service.ingest(tenant_id, payload)
    if not result.is_new:
        response.status_code = status.HTTP_200_OK
    body = EventResponse.model_validate(result.event, from_attributes=True).model_dump()
    return EventAppendResponse(
        **body,
        is_new=result.is_new,
        notifications_created=result.stats.notifications_created,
    )


@router.get(
    "",
    response_model=List[EventResponse],
)
def list_events(
    event_type: Optional[str] = Query(default=None, max_length=128),
    status_filter: Optional[EventStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    tenant_id: UUID = Depends(get_tenant_id),
    service: EventService = Depends(get_event_service),
) -> List[EventResponse]:
    records = service.list_events(tenant_id=tenant_id, event_type=event_type, status=status_filter, limit=limit)
    return [EventResponse.model_validate(record, from_attributes=True) for record in records]


@router.get(
    "/{event_id}",
    response_model=EventResponse,
)
def get_event(
    event_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    service: EventService = Depends(get_event_service),
) -> EventResponse:
    record = service.get_event(tenant_id, event_id)
    return EventResponse.model_validate(record, from_attributes=True)
