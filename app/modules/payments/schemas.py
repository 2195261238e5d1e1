"""Payments schemas."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.core.enums import PaymentTypeEnum, TransactionStatusEnum, TransferStatusEnum


class PaymentSetupRequest(BaseModel):
    amount: int = Field(
        gt=0,
        description="Charge in minor currency units; must match the prorated hourly rate of priced tutors",
    )
    force_two_stage: bool = False


class PaymentSetupResult(BaseModel):
    transaction_id: UUID
    session_id: UUID
    intent_id: str
    client_secret: str | None = None
    intent_status: str | None = None
    payment_type: PaymentTypeEnum
    amount: int
    platform_fee: int
    currency: str
    pending_transfer_id: UUID | None = None
    reused: bool = False


class PaymentTransactionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    student_id: UUID
    tutor_id: UUID
    amount: int
    platform_fee: int
    currency: str
    payment_type: PaymentTypeEnum
    status: TransactionStatusEnum
    external_intent_id: str
    intent_status: str | None
    paid_at: datetime | None
    created_at: datetime


class PendingTransferRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    session_id: UUID
    payment_transaction_id: UUID
    tutor_id: UUID
    student_id: UUID
    amount: int
    platform_fee: int
    status: TransferStatusEnum
    retry_count: int
    last_retry_at: datetime | None
    last_error: str | None
    external_transfer_id: str | None
    processed_at: datetime | None
    created_at: datetime


class ReconciliationSummaryRead(BaseModel):
    new_transfers_processed: int
    retries_processed: int
    admin_notifications_sent: int
    errors: list[str]


class WebhookAck(BaseModel):
    received: bool = True
    event_type: str
    handled: bool
