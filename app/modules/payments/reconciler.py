"""Batch settlement of deferred tutor payouts."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.metrics import TRANSFER_OUTCOMES_TOTAL
from app.modules.audit.repository import AuditRepository
from app.modules.notifications.service import NotificationDispatcher, build_notification_dispatcher
from app.modules.payments.gateway import PaymentProcessor
from app.modules.payments.models import PendingTransfer
from app.modules.payments.repository import PaymentsRepository
from app.modules.payments.service import build_payment_processor
from app.modules.tutors.repository import TutorsRepository
from app.shared.exceptions import TransferErrorKind, TransferException
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)

PROCESSED_BY = "transfer-reconciler"


@dataclass(slots=True)
class ReconciliationSummary:
    new_transfers_processed: int = 0
    retries_processed: int = 0
    admin_notifications_sent: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


class TransferReconciler:
    """Settles pending payouts in three phases.

    1. New payouts whose session completed at least the settlement delay ago.
    2. Payouts that failed before and have cooled down.
    3. Payouts out of retries are escalated to admins, then marked failed.

    Every run holds a transaction-scoped advisory lock, so overlapping runs
    return immediately instead of double-paying.
    """

    def __init__(
        self,
        payments_repository: PaymentsRepository,
        tutors_repository: TutorsRepository,
        processor: PaymentProcessor,
        notifier: NotificationDispatcher,
        audit_repository: AuditRepository,
        *,
        max_retries: int = 3,
        batch_size: int = 20,
        settlement_delay_hours: int = 24,
        retry_cooldown_hours: int = 24,
        now_provider: Callable[[], datetime] = utc_now,
    ) -> None:
        self.payments_repository = payments_repository
        self.tutors_repository = tutors_repository
        self.processor = processor
        self.notifier = notifier
        self.audit_repository = audit_repository
        self.max_retries = max_retries
        self.batch_size = batch_size
        self.settlement_delay = timedelta(hours=settlement_delay_hours)
        self.retry_cooldown = timedelta(hours=retry_cooldown_hours)
        self.now_provider = now_provider

    async def run_once(self) -> ReconciliationSummary:
        summary = ReconciliationSummary()
        if not await self.payments_repository.try_acquire_reconciler_lock():
            logger.info("Transfer reconciliation already running elsewhere, skipping")
            summary.errors.append("Reconciliation already in progress")
            return summary

        # Each phase runs in its own savepoint so a failure in one keeps the
        # writes of the others in the outer transaction.
        now = self.now_provider()
        try:
            async with self.payments_repository.savepoint():
                ready = await self.payments_repository.list_transfers_ready_for_settlement(
                    completed_before=now - self.settlement_delay,
                    retry_available_before=now - self.retry_cooldown,
                    max_retries=self.max_retries,
                    limit=self.batch_size,
                )
                summary.new_transfers_processed = await self._process_batch(ready, summary, phase="new")
        except Exception as exc:
            logger.exception("New transfer phase failed")
            summary.errors.append(f"new: phase failed: {exc}")

        try:
            async with self.payments_repository.savepoint():
                due = await self.payments_repository.list_transfers_due_for_retry(
                    retried_before=now - self.retry_cooldown,
                    max_retries=self.max_retries,
                    limit=self.batch_size,
                )
                summary.retries_processed = await self._process_batch(due, summary, phase="retry")
        except Exception as exc:
            logger.exception("Transfer retry phase failed")
            summary.errors.append(f"retry: phase failed: {exc}")

        try:
            async with self.payments_repository.savepoint():
                summary.admin_notifications_sent = await self._escalate_exhausted()
        except Exception as exc:
            logger.exception("Transfer escalation failed")
            summary.errors.append(f"escalation: {exc}")

        logger.info(
            "Transfer reconciliation finished: new=%d retries=%d notifications=%d errors=%d",
            summary.new_transfers_processed,
            summary.retries_processed,
            summary.admin_notifications_sent,
            len(summary.errors),
        )
        return summary

    async def _process_batch(
        self,
        transfers: Sequence[PendingTransfer],
        summary: ReconciliationSummary,
        *,
        phase: str,
    ) -> int:
        completed = 0
        for index, transfer in enumerate(transfers):
            transfer_id = transfer.id
            try:
                async with self.payments_repository.savepoint():
                    outcome = await self._process_transfer(transfers, index, summary, phase=phase)
            except Exception as exc:
                # Rolled-back rows are expired, so the rest of the batch waits for the next run.
                logger.exception("Transfer %s could not be recorded, rolled back", transfer_id)
                summary.errors.append(f"{phase}: transfer {transfer_id} rolled back: {exc}")
                break
            if outcome == "completed":
                completed += 1
            elif outcome == "deferred":
                break
        return completed

    async def _process_transfer(
        self,
        transfers: Sequence[PendingTransfer],
        index: int,
        summary: ReconciliationSummary,
        *,
        phase: str,
    ) -> str:
        transfer = transfers[index]
        try:
            balance = await self.processor.retrieve_balance()
        except Exception as exc:
            await self._release(transfer, f"balance check failed: {exc}")
            summary.errors.append(f"{phase}: balance check failed for transfer {transfer.id}: {exc}")
            return "failed"

        if balance < transfer.amount:
            deferred = list(transfers[index:])
            for skipped in deferred:
                await self._release(skipped, "insufficient platform balance")
            TRANSFER_OUTCOMES_TOTAL.labels(outcome=TransferErrorKind.INSUFFICIENT_BALANCE.value).inc(
                len(deferred),
            )
            summary.errors.append(
                f"{phase}: insufficient platform balance ({balance}) for transfer {transfer.id} "
                f"({transfer.amount}); deferred {len(deferred)} transfer(s)",
            )
            logger.warning("Platform balance %d too low, deferring %d transfer(s)", balance, len(deferred))
            return "deferred"

        return "completed" if await self._settle(transfer, summary, phase=phase) else "failed"

    async def _release(self, transfer: PendingTransfer, reason: str) -> None:
        await self.payments_repository.release_transfer_for_retry(
            transfer,
            now=self.now_provider(),
            max_retries=self.max_retries,
            error=reason,
        )

    async def _settle(self, transfer: PendingTransfer, summary: ReconciliationSummary, *, phase: str) -> bool:
        if not await self.payments_repository.claim_transfer(transfer):
            logger.info("Transfer %s already claimed, skipping", transfer.id)
            return False

        try:
            profile = await self.tutors_repository.get_profile_by_user_id(transfer.tutor_id)
            if profile is None or not profile.payout_ready:
                raise TransferException(
                    "Tutor payout account is not ready",
                    kind=TransferErrorKind.PAYEE_NOT_READY,
                )
            result = await self.processor.create_transfer(
                transfer.amount,
                profile.payout_account_id,
                transfer.transfer_group,
                {
                    "pending_transfer_id": str(transfer.id),
                    "session_id": str(transfer.session_id),
                    "tutor_id": str(transfer.tutor_id),
                },
                idempotency_key=f"pending-transfer:{transfer.id}",
            )
            if not result.transfer_id:
                raise TransferException(
                    "Processor returned no transfer id",
                    kind=TransferErrorKind.PROCESSOR_ERROR,
                )
        except Exception as exc:
            kind = exc.kind if isinstance(exc, TransferException) else TransferErrorKind.PROCESSOR_ERROR
            await self._release(transfer, str(exc))
            TRANSFER_OUTCOMES_TOTAL.labels(outcome=kind.value).inc()
            summary.errors.append(f"{phase}: transfer {transfer.id} failed ({kind.value}): {exc}")
            logger.warning("Transfer %s failed (%s): %s", transfer.id, kind.value, exc)
            return False

        await self.payments_repository.mark_transfer_completed(
            transfer,
            external_transfer_id=result.transfer_id,
            processed_at=self.now_provider(),
            processed_by=PROCESSED_BY,
        )
        await self.audit_repository.create_outbox_event(
            aggregate_type="transfer",
            aggregate_id=str(transfer.id),
            event_type="transfer.completed",
            payload={
                "pending_transfer_id": str(transfer.id),
                "session_id": str(transfer.session_id),
                "tutor_id": str(transfer.tutor_id),
                "amount": transfer.amount,
                "external_transfer_id": result.transfer_id,
            },
        )
        TRANSFER_OUTCOMES_TOTAL.labels(outcome="completed").inc()
        logger.info("Transfer %s completed as %s", transfer.id, result.transfer_id)
        return True

    async def _escalate_exhausted(self) -> int:
        exhausted = await self.payments_repository.list_exhausted_transfers(max_retries=self.max_retries)
        if not exhausted:
            return 0
        # Transfers stay pending when the notification cannot be recorded.
        await self.notifier.notify_admin_transfer_failures(exhausted)
        await self.payments_repository.mark_transfers_failed_permanent(exhausted)
        TRANSFER_OUTCOMES_TOTAL.labels(outcome="failed_permanent").inc(len(exhausted))
        return 1


def build_transfer_reconciler(
    session: AsyncSession,
    processor: PaymentProcessor | None = None,
) -> TransferReconciler:
    settings = get_settings()
    return TransferReconciler(
        payments_repository=PaymentsRepository(session),
        tutors_repository=TutorsRepository(session),
        processor=processor or build_payment_processor(),
        notifier=build_notification_dispatcher(session),
        audit_repository=AuditRepository(session),
        max_retries=settings.transfer_max_retries,
        batch_size=settings.transfer_batch_size,
        settlement_delay_hours=settings.transfer_settlement_delay_hours,
        retry_cooldown_hours=settings.transfer_retry_cooldown_hours,
    )
