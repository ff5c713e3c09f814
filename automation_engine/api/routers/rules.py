"""Rule CRUD endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from automation_engine.api.dependencies import get_actor_id, get_rule_service, get_tenant_id
from automation_engine.schemas.rule import RuleCreate, RuleResponse, RuleUpdate
from automation_engine.services.rules import RuleService

router = APIRouter()


@router.post("", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
def create_rule(
    payload: RuleCreate,
    tenant_id: UUID = Depends(get_tenant_id),
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: RuleService = Depends(get_rule_service),
) -> RuleResponse:
    rule = service.create_rule(tenant_id, payload, actor_id=actor_id)
    return RuleResponse.model_validate(rule, from_attributes=True)


@router.get("", response_model=List[RuleResponse])
def list_rules(
    trigger_event_type: Optional[str] = Query(default=None, max_length=128),
    is_enabled: Optional[bool] = Query(default=None),
    tenant_id: UUID = Depends(get_tenant_id),
    service: RuleService = Depends(get_rule_service),
) -> List[RuleResponse]:
    rules = service.list_rules(tenant_id, trigger_event_type=trigger_event_type, is_enabled=is_enabled)
    return [RuleResponse.model_validate(rule, from_attributes=True) for rule in rules]


@router.get("/{rule_id}", response_model=RuleResponse)
def get_rule(
    rule_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    service: RuleService = Depends(get_rule_service),
) -> RuleResponse:
    return RuleResponse.model_validate(service.get_rule(tenant_id, rule_id), from_attributes=True)


@router.patch("/{rule_id}", response_model=RuleResponse)
def update_rule(
    rule_id: UUID,
    payload: RuleUpdate,
    tenant_id: UUID = Depends(get_tenant_id),
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: RuleService = Depends(get_rule_service),
) -> RuleResponse:
    rule = service.update_rule(tenant_id, rule_id, payload, actor_id=actor_id)
    return RuleResponse.model_validate(rule, from_attributes=True)


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_rule(
    rule_id: UUID,
    tenant_id: UUID = Depends(get_tenant_id),
    actor_id: Optional[UUID] = Depends(get_actor_id),
    service: RuleService = Depends(get_rule_service),
) -> Response:
    service.delete_rule(tenant_id, rule_id, actor_id=actor_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
