"""Payments ORM models."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base, BaseModelMixin, enum_column_type
from app.core.enums import PaymentTypeEnum, TransactionStatusEnum, TransferStatusEnum


class PaymentTransaction(BaseModelMixin, Base):
    """Charge of a student for one session, backed by a processor intent."""

    __tablename__ = "payment_transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="amount_positive"),
        CheckConstraint("platform_fee >= 0 AND platform_fee <= amount", name="platform_fee_range"),
        Index(
            "uq_payment_transactions_active_session",
            "session_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'processing')"),
        ),
    )

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("tutoring_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="usd", nullable=False)
    payment_type: Mapped[PaymentTypeEnum] = mapped_column(
        enum_column_type(PaymentTypeEnum, "payment_type_enum"),
        nullable=False,
    )
    status: Mapped[TransactionStatusEnum] = mapped_column(
        enum_column_type(TransactionStatusEnum, "transaction_status_enum"),
        default=TransactionStatusEnum.PENDING,
        nullable=False,
        index=True,
    )

    external_intent_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    intent_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    client_secret: Mapped[str | None] = mapped_column(String(255), nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class PendingTransfer(BaseModelMixin, Base):
    """Tutor payout owed for a deferred payment, settled by the reconciler."""

    __tablename__ = "pending_transfers"
    __table_args__ = (
        CheckConstraint("amount >= 0", name="amount_non_negative"),
        CheckConstraint("retry_count >= 0", name="retry_count_non_negative"),
        CheckConstraint(
            "status <> 'completed' OR (external_transfer_id IS NOT NULL AND external_transfer_id <> '')",
            name="completed_has_transfer_id",
        ),
    )

    session_id: Mapped[UUID] = mapped_column(
        ForeignKey("tutoring_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    payment_transaction_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_transactions.id", ondelete="RESTRICT"),
        unique=True,
        nullable=False,
    )
    tutor_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id: Mapped[UUID] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    platform_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[TransferStatusEnum] = mapped_column(
        enum_column_type(TransferStatusEnum, "transfer_status_enum"),
        default=TransferStatusEnum.PENDING,
        nullable=False,
        index=True,
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    transfer_group: Mapped[str] = mapped_column(String(128), nullable=False)
    external_transfer_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
