"""Audit API router (admin only)."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.core.config import get_settings
from app.modules.audit.schemas import AuditLogRead, OutboxEventRead, OutboxSummaryRead
from app.modules.audit.service import AuditService, get_audit_service
from app.modules.identity.service import get_current_user
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/audit", tags=["audit"])


@router.get("/logs", response_model=Page[AuditLogRead])
async def list_logs(
    entity_type: str | None = None,
    entity_id: str | None = None,
    pagination=Depends(get_pagination_params),
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> Page[AuditLogRead]:
    """List audit logs, newest first; filter by entity to trace one session or transfer."""
    items, total = await service.list_logs(
        current_user,
        entity_type,
        pagination.limit,
        pagination.offset,
        entity_id=entity_id,
    )
    return build_page([AuditLogRead.model_validate(item) for item in items], total, pagination)


@router.get("/outbox/pending", response_model=list[OutboxEventRead])
async def list_pending_outbox(
    limit: int = Query(default=100, ge=1, le=500),
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> list[OutboxEventRead]:
    """List outbox events waiting for the notifications worker."""
    items = await service.list_pending_outbox(current_user, limit=limit)
    return [OutboxEventRead.model_validate(item) for item in items]


@router.get("/outbox/summary", response_model=OutboxSummaryRead)
async def outbox_summary(
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> OutboxSummaryRead:
    """Outbox backlog health; dead letters are events past the worker's retry budget."""
    summary = await service.outbox_summary(current_user, get_settings().outbox_max_retries)
    return OutboxSummaryRead.model_validate(summary)


@router.post("/outbox/{event_id}/replay", response_model=OutboxEventRead)
async def replay_outbox_event(
    event_id: UUID,
    service: AuditService = Depends(get_audit_service),
    current_user=Depends(get_current_user),
) -> OutboxEventRead:
    event = await service.replay_outbox_event(current_user, event_id)
    return OutboxEventRead.model_validate(event)
