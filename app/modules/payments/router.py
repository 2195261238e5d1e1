"""Payments API router."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import RoleEnum, TransferStatusEnum
from app.modules.identity.service import get_current_user, require_roles
from app.modules.payments.gateway import construct_webhook_event
from app.modules.payments.reconciler import build_transfer_reconciler
from app.modules.payments.schemas import (
    PaymentSetupRequest,
    PaymentSetupResult,
    PendingTransferRead,
    ReconciliationSummaryRead,
    WebhookAck,
)
from app.modules.payments.service import PaymentsService, get_payments_service
from app.shared.pagination import Page, build_page, get_pagination_params

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/sessions/{session_id}/intent",
    response_model=PaymentSetupResult,
    status_code=status.HTTP_201_CREATED,
)
async def setup_payment(
    session_id: UUID,
    payload: PaymentSetupRequest,
    service: PaymentsService = Depends(get_payments_service),
    current_user=Depends(get_current_user),
) -> PaymentSetupResult:
    """Create or reuse the payment intent for a pending session."""
    return await service.setup_payment(session_id, payload, current_user)


@router.post("/webhooks/stripe", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    service: PaymentsService = Depends(get_payments_service),
) -> WebhookAck:
    """Apply processor payment outcomes."""
    payload = await request.body()
    event = construct_webhook_event(payload, stripe_signature, get_settings().stripe_webhook_secret)
    handled = await service.handle_processor_event(event.event_type, event.data)
    return WebhookAck(event_type=event.event_type, handled=handled)


@router.get("/transfers", response_model=Page[PendingTransferRead])
async def list_transfers(
    transfer_status: TransferStatusEnum | None = None,
    pagination=Depends(get_pagination_params),
    service: PaymentsService = Depends(get_payments_service),
    current_user=Depends(get_current_user),
) -> Page[PendingTransferRead]:
    """List deferred payouts (admin only)."""
    items, total = await service.list_transfers(current_user, transfer_status, pagination.limit, pagination.offset)
    serialized = [PendingTransferRead.model_validate(item) for item in items]
    return build_page(serialized, total, pagination)


@router.post(
    "/transfers/reconcile",
    response_model=ReconciliationSummaryRead,
    dependencies=[Depends(require_roles(RoleEnum.ADMIN))],
)
async def reconcile_transfers(
    session: AsyncSession = Depends(get_db_session),
) -> ReconciliationSummaryRead:
    """Run one settlement cycle now."""
    summary = await build_transfer_reconciler(session).run_once()
    return ReconciliationSummaryRead.model_validate(summary.as_dict())
