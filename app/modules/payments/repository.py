"""Payments repository layer."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import Select, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

from app.core.database import try_advisory_xact_lock
from app.core.enums import (
    NON_TERMINAL_TRANSACTION_STATUSES,
    PaymentTypeEnum,
    TransactionStatusEnum,
    TransferStatusEnum,
)
from app.modules.booking.models import TutoringSession
from app.modules.payments.models import PaymentTransaction, PendingTransfer
from app.shared.exceptions import ConflictException
from app.shared.pagination import fetch_page

RECONCILER_LOCK_KEY = 7_301_002


class PaymentsRepository:
    """DB operations for payment transactions and deferred payouts."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def create_transaction(
        self,
        *,
        session_id: UUID,
        student_id: UUID,
        tutor_id: UUID,
        amount: int,
        platform_fee: int,
        currency: str,
        payment_type: PaymentTypeEnum,
        external_intent_id: str,
        intent_status: str | None,
        client_secret: str | None,
        idempotency_key: str,
    ) -> PaymentTransaction:
        transaction = PaymentTransaction(
            session_id=session_id,
            student_id=student_id,
            tutor_id=tutor_id,
            amount=amount,
            platform_fee=platform_fee,
            currency=currency,
            payment_type=payment_type,
            status=TransactionStatusEnum.PENDING,
            external_intent_id=external_intent_id,
            intent_status=intent_status,
            client_secret=client_secret,
            idempotency_key=idempotency_key,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(transaction)
                await self.session.flush()
        except IntegrityError as exc:
            raise ConflictException("Session already has an active payment") from exc
        return transaction

    async def get_transaction_by_id(self, transaction_id: UUID) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(PaymentTransaction.id == transaction_id)
        return await self.session.scalar(stmt)

    async def get_transaction_by_intent_id(
        self,
        intent_id: str,
        *,
        for_update: bool = False,
    ) -> PaymentTransaction | None:
        stmt = select(PaymentTransaction).where(PaymentTransaction.external_intent_id == intent_id)
        if for_update:
            stmt = stmt.with_for_update()
        return await self.session.scalar(stmt)

    async def get_active_transaction_for_session(self, session_id: UUID) -> PaymentTransaction | None:
        stmt = (
            select(PaymentTransaction)
            .where(
                PaymentTransaction.session_id == session_id,
                PaymentTransaction.status.in_(NON_TERMINAL_TRANSACTION_STATUSES),
            )
            .order_by(PaymentTransaction.created_at.desc())
            .limit(1)
        )
        return await self.session.scalar(stmt)

    async def count_transactions_for_session(self, session_id: UUID) -> int:
        stmt = select(func.count()).select_from(PaymentTransaction).where(
            PaymentTransaction.session_id == session_id,
        )
        return int((await self.session.scalar(stmt)) or 0)

    async def save_transaction(self, transaction: PaymentTransaction) -> PaymentTransaction:
        await self.session.flush()
        return transaction

    async def create_pending_transfer(
        self,
        *,
        transaction: PaymentTransaction,
        amount: int,
        transfer_group: str,
    ) -> PendingTransfer:
        transfer = PendingTransfer(
            session_id=transaction.session_id,
            payment_transaction_id=transaction.id,
            tutor_id=transaction.tutor_id,
            student_id=transaction.student_id,
            amount=amount,
            platform_fee=transaction.platform_fee,
            status=TransferStatusEnum.PENDING,
            retry_count=0,
            transfer_group=transfer_group,
        )
        self.session.add(transfer)
        await self.session.flush()
        return transfer

    async def get_transfer_by_transaction_id(self, transaction_id: UUID) -> PendingTransfer | None:
        stmt = select(PendingTransfer).where(PendingTransfer.payment_transaction_id == transaction_id)
        return await self.session.scalar(stmt)

    async def cancel_pending_transfer(self, transaction_id: UUID, *, reason: str) -> PendingTransfer | None:
        """Close the still-pending payout of a charge that will never be captured."""
        transfer = await self.get_transfer_by_transaction_id(transaction_id)
        if transfer is None or transfer.status != TransferStatusEnum.PENDING:
            return None
        transfer.status = TransferStatusEnum.CANCELLED
        transfer.last_error = reason[:2000]
        await self.session.flush()
        return transfer

    async def list_transfers(
        self,
        status: TransferStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[PendingTransfer], int]:
        base_stmt: Select[tuple[PendingTransfer]] = select(PendingTransfer)
        if status is not None:
            base_stmt = base_stmt.where(PendingTransfer.status == status)

        return await fetch_page(self.session, base_stmt, PendingTransfer.created_at.desc(), limit=limit, offset=offset)

    async def try_acquire_reconciler_lock(self) -> bool:
        return await try_advisory_xact_lock(self.session, RECONCILER_LOCK_KEY)

    def savepoint(self) -> AsyncSessionTransaction:
        """Nested transaction; leaving it with an exception undoes only its own writes."""
        return self.session.begin_nested()

    async def list_transfers_ready_for_settlement(
        self,
        *,
        completed_before: datetime,
        retry_available_before: datetime,
        max_retries: int,
        limit: int,
    ) -> list[PendingTransfer]:
        """Pending payouts of paid sessions completed long enough ago."""
        stmt = (
            select(PendingTransfer)
            .join(TutoringSession, TutoringSession.id == PendingTransfer.session_id)
            .join(PaymentTransaction, PaymentTransaction.id == PendingTransfer.payment_transaction_id)
            .where(
                PendingTransfer.status == TransferStatusEnum.PENDING,
                PendingTransfer.retry_count < max_retries,
                or_(
                    PendingTransfer.last_retry_at.is_(None),
                    PendingTransfer.last_retry_at <= retry_available_before,
                ),
                PaymentTransaction.status == TransactionStatusEnum.SUCCEEDED,
                TutoringSession.completion_date.is_not(None),
                TutoringSession.completion_date <= completed_before,
            )
            .order_by(PendingTransfer.created_at.asc())
            .limit(limit)
        )
        return (await self.session.scalars(stmt)).all()

    async def list_transfers_due_for_retry(
        self,
        *,
        retried_before: datetime,
        max_retries: int,
        limit: int,
    ) -> list[PendingTransfer]:
        stmt = (
            select(PendingTransfer)
            .where(
                PendingTransfer.status == TransferStatusEnum.PENDING,
                PendingTransfer.retry_count > 0,
                PendingTransfer.retry_count < max_retries,
                PendingTransfer.last_retry_at <= retried_before,
            )
            .order_by(PendingTransfer.last_retry_at.asc())
            .limit(limit)
        )
        return (await self.session.scalars(stmt)).all()

    async def list_exhausted_transfers(self, *, max_retries: int) -> list[PendingTransfer]:
        stmt = (
            select(PendingTransfer)
            .where(
                PendingTransfer.status == TransferStatusEnum.PENDING,
                PendingTransfer.retry_count >= max_retries,
            )
            .order_by(PendingTransfer.created_at.asc())
        )
        return (await self.session.scalars(stmt)).all()

    async def claim_transfer(self, transfer: PendingTransfer) -> bool:
        """Move a pending payout to processing unless someone else already did."""
        result = await self.session.execute(
            update(PendingTransfer)
            .where(
                PendingTransfer.id == transfer.id,
                PendingTransfer.status == TransferStatusEnum.PENDING,
            )
            .values(status=TransferStatusEnum.PROCESSING),
        )
        if result.rowcount != 1:
            return False
        transfer.status = TransferStatusEnum.PROCESSING
        await self.session.flush()
        return True

    async def release_transfer_for_retry(
        self,
        transfer: PendingTransfer,
        *,
        now: datetime,
        max_retries: int,
        error: str,
    ) -> PendingTransfer:
        transfer.status = TransferStatusEnum.PENDING
        transfer.retry_count = min(transfer.retry_count + 1, max_retries)
        transfer.last_retry_at = now
        transfer.last_error = error[:2000]
        await self.session.flush()
        return transfer

    async def mark_transfer_completed(
        self,
        transfer: PendingTransfer,
        *,
        external_transfer_id: str,
        processed_at: datetime,
        processed_by: str,
    ) -> PendingTransfer:
        if not external_transfer_id:
            raise ValueError("Completed transfers require an external transfer id")
        transfer.status = TransferStatusEnum.COMPLETED
        transfer.external_transfer_id = external_transfer_id
        transfer.processed_at = processed_at
        transfer.processed_by = processed_by
        transfer.last_error = None
        await self.session.flush()
        return transfer

    async def mark_transfers_failed_permanent(self, transfers: list[PendingTransfer]) -> None:
        for transfer in transfers:
            transfer.status = TransferStatusEnum.FAILED_PERMANENT
        await self.session.flush()
