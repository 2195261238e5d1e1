"""Payments business logic layer."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.core.cache import CacheBackend, get_cache_backend
from app.core.config import get_settings
from app.core.database import get_db_session
from app.core.enums import (
    NON_TERMINAL_TRANSACTION_STATUSES,
    PaymentTypeEnum,
    RoleEnum,
    SessionPaymentStatusEnum,
    SessionStatusEnum,
    TransactionStatusEnum,
    TransferStatusEnum,
)
from app.core.metrics import PAYMENT_SETUPS_TOTAL
from app.core.rate_limit import RateLimiter, get_rate_limiter
from app.modules.audit.repository import AuditRepository
from app.modules.booking.models import TutoringSession
from app.modules.booking.repository import BookingRepository
from app.modules.booking.state_machine import ensure_payment_transition, ensure_transition
from app.modules.identity.models import User
from app.modules.payments.gateway import IntentResult, PaymentProcessor, StripePaymentProcessor
from app.modules.payments.models import PaymentTransaction, PendingTransfer
from app.modules.payments.rate_limit import enforce_payment_setup_limit
from app.modules.payments.repository import PaymentsRepository
from app.modules.payments.schemas import PaymentSetupRequest, PaymentSetupResult
from app.modules.tutors.repository import TutorsRepository
from app.shared.exceptions import (
    BusinessRuleException,
    ConflictException,
    NotFoundException,
    PaymentSetupErrorKind,
    PaymentSetupException,
    RateLimitException,
    UnauthorizedException,
)
from app.shared.utils import percent_of, prorated_amount, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAYMENT_INTENT_CACHE_PREFIX = "payment-intent:session"


def payment_intent_cache_key(session_id: UUID) -> str:
    return f"{PAYMENT_INTENT_CACHE_PREFIX}:{session_id}"


def is_transient_setup_error(exc: BaseException) -> bool:
    """Network failures and processor throttling are worth retrying."""
    if isinstance(exc, RateLimitException):
        return True
    return isinstance(exc, PaymentSetupException) and exc.kind == PaymentSetupErrorKind.NETWORK


def _log_retry(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Payment processor call failed (attempt %d), retrying: %s",
        retry_state.attempt_number,
        exc,
    )


class PaymentsService:
    """Payment setup for booked sessions and processor callbacks."""

    def __init__(
        self,
        repository: PaymentsRepository,
        booking_repository: BookingRepository,
        tutors_repository: TutorsRepository,
        audit_repository: AuditRepository,
        processor: PaymentProcessor,
        cache: CacheBackend,
        rate_limiter: RateLimiter,
        *,
        platform_fee_percent: int = 10,
        currency: str = "usd",
        platform_account: str | None = None,
        max_attempts: int = 3,
        backoff_initial_seconds: float = 1.0,
        backoff_max_seconds: float = 8.0,
        backoff_jitter_seconds: float = 1.0,
        cache_ttl_seconds: int = 900,
    ) -> None:
        self.repository = repository
        self.booking_repository = booking_repository
        self.tutors_repository = tutors_repository
        self.audit_repository = audit_repository
        self.processor = processor
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.platform_fee_percent = platform_fee_percent
        self.currency = currency
        self.platform_account = platform_account
        self.max_attempts = max_attempts
        self.backoff_initial_seconds = backoff_initial_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.backoff_jitter_seconds = backoff_jitter_seconds
        self.cache_ttl_seconds = cache_ttl_seconds

    async def _call_processor(self, operation: Callable[[], Awaitable[T]]) -> T:
        result: T | None = None
        async for attempt in AsyncRetrying(
            retry=retry_if_exception(is_transient_setup_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(
                initial=self.backoff_initial_seconds,
                max=self.backoff_max_seconds,
                jitter=self.backoff_jitter_seconds,
            ),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                result = await operation()
        return result

    async def _read_cached_result(self, session_id: UUID) -> PaymentSetupResult | None:
        try:
            raw = await self.cache.get(payment_intent_cache_key(session_id))
        except Exception:
            logger.warning("Payment intent cache read failed for session %s", session_id, exc_info=True)
            return None
        if raw is None:
            return None
        return PaymentSetupResult.model_validate_json(raw)

    async def _store_cached_result(self, result: PaymentSetupResult) -> None:
        try:
            await self.cache.set(
                payment_intent_cache_key(result.session_id),
                result.model_dump_json(),
                ttl_seconds=self.cache_ttl_seconds,
            )
        except Exception:
            logger.warning("Payment intent cache write failed for session %s", result.session_id, exc_info=True)

    async def _drop_cached_result(self, session_id: UUID) -> None:
        try:
            await self.cache.delete(payment_intent_cache_key(session_id))
        except Exception:
            logger.warning("Payment intent cache delete failed for session %s", session_id, exc_info=True)

    @staticmethod
    def _build_result(
        transaction: PaymentTransaction,
        pending_transfer: PendingTransfer | None,
        *,
        reused: bool,
    ) -> PaymentSetupResult:
        return PaymentSetupResult(
            transaction_id=transaction.id,
            session_id=transaction.session_id,
            intent_id=transaction.external_intent_id,
            client_secret=transaction.client_secret,
            intent_status=transaction.intent_status,
            payment_type=transaction.payment_type,
            amount=transaction.amount,
            platform_fee=transaction.platform_fee,
            currency=transaction.currency,
            pending_transfer_id=pending_transfer.id if pending_transfer is not None else None,
            reused=reused,
        )

    async def _existing_setup(self, session_id: UUID) -> PaymentSetupResult | None:
        cached = await self._read_cached_result(session_id)
        if cached is not None:
            transaction = await self.repository.get_transaction_by_id(cached.transaction_id)
            if transaction is not None and transaction.status in NON_TERMINAL_TRANSACTION_STATUSES:
                return cached.model_copy(update={"reused": True})
            await self._drop_cached_result(session_id)

        transaction = await self.repository.get_active_transaction_for_session(session_id)
        if transaction is None:
            return None
        pending_transfer = await self.repository.get_transfer_by_transaction_id(transaction.id)
        result = self._build_result(transaction, pending_transfer, reused=True)
        await self._store_cached_result(result)
        return result

    async def _load_payable_session(self, session_id: UUID, actor: User) -> TutoringSession:
        tutoring_session = await self.booking_repository.get_session_for_update(session_id)
        if tutoring_session is None:
            raise NotFoundException("Session not found")
        if actor.role.name != RoleEnum.ADMIN and tutoring_session.student_id != actor.id:
            raise UnauthorizedException("Only the booking student can pay for this session")
        if tutoring_session.status in (SessionStatusEnum.CANCELLED, SessionStatusEnum.COMPLETED):
            raise BusinessRuleException(
                f"Session in status {tutoring_session.status.value} cannot be paid",
            )
        if tutoring_session.payment_status != SessionPaymentStatusEnum.UNPAID:
            raise ConflictException("Session is already paid")
        return tutoring_session

    async def setup_payment(
        self,
        session_id: UUID,
        payload: PaymentSetupRequest,
        actor: User,
    ) -> PaymentSetupResult:
        """Create (or reuse) the payment intent for a booked session.

        Direct charges route funds to the tutor at capture time. When the tutor
        cannot receive funds yet, or a two-stage flow is requested, the platform
        collects the charge and records a pending transfer for later payout.
        """
        tutoring_session = await self._load_payable_session(session_id, actor)

        existing = await self._existing_setup(session_id)
        if existing is not None:
            logger.info("Reusing payment intent %s for session %s", existing.intent_id, session_id)
            return existing

        await enforce_payment_setup_limit(session_id, tutoring_session.tutor_id, limiter=self.rate_limiter)

        profile = await self.tutors_repository.get_profile_by_user_id(tutoring_session.tutor_id)
        if profile is None:
            raise NotFoundException("Tutor profile not found")

        amount = payload.amount
        if profile.hourly_rate:
            # Priced tutors: the charge must match the rate for the booked length.
            minutes = int((tutoring_session.end_at - tutoring_session.start_at).total_seconds() // 60)
            expected = prorated_amount(profile.hourly_rate, minutes)
            if amount != expected:
                raise BusinessRuleException(
                    f"Amount must be {expected} for a {minutes}-minute session at the tutor's rate",
                )
        platform_fee = percent_of(amount, self.platform_fee_percent)
        attempt_number = await self.repository.count_transactions_for_session(session_id) + 1
        idempotency_base = f"session:{session_id}:attempt:{attempt_number}"
        transfer_group = f"session_{session_id}"
        metadata = {
            "session_id": str(session_id),
            "student_id": str(tutoring_session.student_id),
            "tutor_id": str(tutoring_session.tutor_id),
        }

        intent: IntentResult | None = None
        payment_type = PaymentTypeEnum.DEFERRED
        if profile.payout_ready and not payload.force_two_stage:
            try:
                intent = await self._call_processor(
                    lambda: self.processor.create_direct_intent(
                        amount,
                        profile.payout_account_id,
                        platform_fee,
                        transfer_group=transfer_group,
                        metadata=metadata,
                        idempotency_key=f"{idempotency_base}:direct",
                    ),
                )
                payment_type = PaymentTypeEnum.DIRECT
            except PaymentSetupException as exc:
                if exc.kind != PaymentSetupErrorKind.ACCOUNT_NOT_READY:
                    raise
                logger.warning(
                    "Tutor %s cannot receive direct payments, falling back to deferred payout",
                    tutoring_session.tutor_id,
                )

        if intent is None:
            intent = await self._call_processor(
                lambda: self.processor.create_deferred_intent(
                    amount,
                    self.platform_account,
                    transfer_group=transfer_group,
                    metadata=metadata,
                    idempotency_key=f"{idempotency_base}:deferred",
                ),
            )

        try:
            transaction = await self.repository.create_transaction(
                session_id=session_id,
                student_id=tutoring_session.student_id,
                tutor_id=tutoring_session.tutor_id,
                amount=amount,
                platform_fee=platform_fee,
                currency=self.currency,
                payment_type=payment_type,
                external_intent_id=intent.intent_id,
                intent_status=intent.status,
                client_secret=intent.client_secret,
                idempotency_key=idempotency_base,
            )
        except ConflictException:
            concurrent = await self._existing_setup(session_id)
            if concurrent is None:
                raise
            return concurrent

        pending_transfer = None
        if payment_type == PaymentTypeEnum.DEFERRED:
            pending_transfer = await self.repository.create_pending_transfer(
                transaction=transaction,
                amount=amount - platform_fee,
                transfer_group=transfer_group,
            )

        await self.audit_repository.create_audit_log(
            actor_id=actor.id,
            action="payments.intent.create",
            entity_type="payment_transaction",
            entity_id=str(transaction.id),
            payload={
                "session_id": str(session_id),
                "payment_type": payment_type.value,
                "amount": amount,
                "platform_fee": platform_fee,
            },
        )
        PAYMENT_SETUPS_TOTAL.labels(payment_type=payment_type.value).inc()
        logger.info(
            "Created %s payment intent %s for session %s",
            payment_type.value,
            intent.intent_id,
            session_id,
        )

        result = self._build_result(transaction, pending_transfer, reused=False)
        await self._store_cached_result(result)
        return result

    async def handle_payment_succeeded(self, intent_id: str) -> PaymentTransaction | None:
        """Mark the transaction paid and move its session to scheduled."""
        transaction = await self.repository.get_transaction_by_intent_id(intent_id, for_update=True)
        if transaction is None:
            logger.warning("Ignoring success for unknown payment intent %s", intent_id)
            return None
        if transaction.status == TransactionStatusEnum.SUCCEEDED:
            return transaction

        transaction.status = TransactionStatusEnum.SUCCEEDED
        transaction.intent_status = "succeeded"
        transaction.paid_at = utc_now()
        await self.repository.save_transaction(transaction)

        tutoring_session = await self.booking_repository.get_session_for_update(transaction.session_id)
        if tutoring_session is not None:
            if tutoring_session.payment_status == SessionPaymentStatusEnum.UNPAID:
                ensure_payment_transition(tutoring_session.payment_status, SessionPaymentStatusEnum.PAID)
                tutoring_session.payment_status = SessionPaymentStatusEnum.PAID
            if tutoring_session.status == SessionStatusEnum.PENDING:
                ensure_transition(tutoring_session.status, SessionStatusEnum.SCHEDULED)
                tutoring_session.status = SessionStatusEnum.SCHEDULED
            elif tutoring_session.status == SessionStatusEnum.CANCELLED:
                logger.warning("Payment %s succeeded for cancelled session %s", intent_id, tutoring_session.id)
            await self.booking_repository.save(tutoring_session)

        await self.audit_repository.create_outbox_event(
            aggregate_type="payment",
            aggregate_id=str(transaction.id),
            event_type="payment.succeeded",
            payload={
                "payment_transaction_id": str(transaction.id),
                "session_id": str(transaction.session_id),
                "student_id": str(transaction.student_id),
                "tutor_id": str(transaction.tutor_id),
                "amount": transaction.amount,
                "currency": transaction.currency,
            },
        )
        await self._drop_cached_result(transaction.session_id)
        logger.info("Payment %s succeeded for session %s", intent_id, transaction.session_id)
        return transaction

    async def handle_payment_failed(self, intent_id: str, reason: str | None = None) -> PaymentTransaction | None:
        """Mark a non-terminal transaction failed so the student can retry; its deferred payout is cancelled."""
        transaction = await self.repository.get_transaction_by_intent_id(intent_id, for_update=True)
        if transaction is None:
            logger.warning("Ignoring failure for unknown payment intent %s", intent_id)
            return None
        if transaction.status not in NON_TERMINAL_TRANSACTION_STATUSES:
            return transaction

        transaction.status = TransactionStatusEnum.FAILED
        transaction.intent_status = "payment_failed"
        transaction.failure_reason = reason
        await self.repository.save_transaction(transaction)
        cancelled = await self.repository.cancel_pending_transfer(
            transaction.id,
            reason=f"payment failed: {reason or 'unknown'}",
        )
        if cancelled is not None:
            logger.info("Cancelled pending transfer %s of failed payment %s", cancelled.id, intent_id)
        await self._drop_cached_result(transaction.session_id)
        logger.info("Payment %s failed for session %s: %s", intent_id, transaction.session_id, reason)
        return transaction

    async def handle_processor_event(self, event_type: str, data: dict) -> bool:
        """Dispatch a verified processor event; returns whether it was handled."""
        intent_id = data.get("id")
        if not intent_id:
            return False
        if event_type == "payment_intent.succeeded":
            return await self.handle_payment_succeeded(str(intent_id)) is not None
        if event_type in ("payment_intent.payment_failed", "payment_intent.canceled"):
            error = data.get("last_payment_error") or {}
            reason = error.get("message") if isinstance(error, dict) else None
            return await self.handle_payment_failed(str(intent_id), reason or event_type) is not None
        logger.debug("Ignoring processor event %s", event_type)
        return False

    async def list_transfers(
        self,
        actor: User,
        status: TransferStatusEnum | None,
        limit: int,
        offset: int,
    ) -> tuple[list[PendingTransfer], int]:
        if actor.role.name != RoleEnum.ADMIN:
            raise UnauthorizedException("Only admin can list transfers")
        return await self.repository.list_transfers(status, limit, offset)


def build_payment_processor() -> StripePaymentProcessor:
    settings = get_settings()
    return StripePaymentProcessor(api_key=settings.stripe_secret_key, currency=settings.payment_currency)


async def get_payments_service(session: AsyncSession = Depends(get_db_session)) -> PaymentsService:
    """Dependency provider for payments service."""
    settings = get_settings()
    return PaymentsService(
        repository=PaymentsRepository(session),
        booking_repository=BookingRepository(session),
        tutors_repository=TutorsRepository(session),
        audit_repository=AuditRepository(session),
        processor=build_payment_processor(),
        cache=get_cache_backend(),
        rate_limiter=get_rate_limiter(),
        platform_fee_percent=settings.platform_fee_percent,
        currency=settings.payment_currency,
        platform_account=settings.stripe_platform_account_id or None,
        max_attempts=settings.payment_setup_max_attempts,
        backoff_initial_seconds=settings.payment_setup_backoff_initial_seconds,
        backoff_max_seconds=settings.payment_setup_backoff_max_seconds,
        backoff_jitter_seconds=settings.payment_setup_backoff_jitter_seconds,
        cache_ttl_seconds=settings.payment_intent_cache_ttl_seconds,
    )
