"""Payment processor contract and its Stripe implementation."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

import stripe

from app.shared.exceptions import (
    AppException,
    PaymentSetupErrorKind,
    PaymentSetupException,
    RateLimitException,
    TransferErrorKind,
    TransferException,
    UnauthorizedException,
)

logger = logging.getLogger(__name__)

PROCESSOR_RETRY_AFTER_SECONDS = 5

_ACCOUNT_NOT_READY_CODES = frozenset(
    {"account_invalid", "account_incomplete", "account_closed", "account_country_invalid_address"},
)
_ACCOUNT_NOT_READY_MARKERS = ("capabilit", "onboarding", "requirements", "payouts_enabled")
_INSUFFICIENT_BALANCE_CODES = frozenset({"balance_insufficient", "insufficient_funds"})


@dataclass(frozen=True, slots=True)
class IntentResult:
    intent_id: str
    status: str
    client_secret: str | None = None


@dataclass(frozen=True, slots=True)
class TransferResult:
    transfer_id: str | None
    status: str | None = None


class PaymentProcessor(Protocol):
    """Operations the booking and settlement flows need from a processor.

    All amounts are integers in minor currency units.
    """

    async def create_direct_intent(
        self,
        amount: int,
        payee_account: str,
        platform_fee_amount: int,
        *,
        transfer_group: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> IntentResult:
        """Charge the student and route funds minus the fee to the payee."""

    async def create_deferred_intent(
        self,
        amount: int,
        platform_account: str | None,
        *,
        transfer_group: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> IntentResult:
        """Charge the student into the platform account."""

    async def create_transfer(
        self,
        amount: int,
        destination_account: str,
        transfer_group: str,
        metadata: dict[str, str],
        *,
        idempotency_key: str,
    ) -> TransferResult:
        """Move funds from the platform balance to a connected account."""

    async def retrieve_balance(self) -> int:
        """Available platform balance in the configured currency."""


def _error_code(exc: stripe.StripeError) -> str:
    return str(getattr(exc, "code", None) or "")


def _is_account_not_ready(exc: stripe.StripeError) -> bool:
    if _error_code(exc) in _ACCOUNT_NOT_READY_CODES:
        return True
    message = str(getattr(exc, "user_message", None) or exc).lower()
    return "destination" in message and any(marker in message for marker in _ACCOUNT_NOT_READY_MARKERS)


def translate_setup_error(exc: stripe.StripeError) -> AppException:
    """Map processor errors on intent creation to the booking error taxonomy."""
    if isinstance(exc, stripe.RateLimitError):
        return RateLimitException(
            "Payment processor is busy, please retry shortly",
            retry_after=PROCESSOR_RETRY_AFTER_SECONDS,
        )
    if isinstance(exc, stripe.CardError):
        return PaymentSetupException("Payment method was declined", kind=PaymentSetupErrorKind.DECLINED)
    if isinstance(exc, stripe.APIConnectionError):
        return PaymentSetupException(
            "Could not reach the payment processor",
            kind=PaymentSetupErrorKind.NETWORK,
        )
    if isinstance(exc, (stripe.InvalidRequestError, stripe.PermissionError)) and _is_account_not_ready(exc):
        return PaymentSetupException(
            "Tutor payout account is not ready for direct payments",
            kind=PaymentSetupErrorKind.ACCOUNT_NOT_READY,
        )
    if isinstance(exc, stripe.APIError):
        return PaymentSetupException(
            "Payment processor is temporarily unavailable",
            kind=PaymentSetupErrorKind.NETWORK,
        )
    return PaymentSetupException(
        f"Payment processor rejected the request: {exc}",
        kind=PaymentSetupErrorKind.PROCESSOR,
    )


def translate_transfer_error(exc: stripe.StripeError) -> TransferException:
    """Map processor errors on transfers to the settlement error taxonomy."""
    if _error_code(exc) in _INSUFFICIENT_BALANCE_CODES:
        return TransferException("Platform balance is insufficient", kind=TransferErrorKind.INSUFFICIENT_BALANCE)
    if isinstance(exc, (stripe.InvalidRequestError, stripe.PermissionError)) and _is_account_not_ready(exc):
        return TransferException("Tutor payout account is not ready", kind=TransferErrorKind.PAYEE_NOT_READY)
    return TransferException(f"Transfer failed: {exc}", kind=TransferErrorKind.PROCESSOR_ERROR)


class StripePaymentProcessor:
    """Stripe Connect implementation of the processor contract."""

    def __init__(self, *, api_key: str, currency: str = "usd") -> None:
        self._api_key = api_key
        self.currency = currency.lower()

    async def _call(self, operation: Callable[..., Any], **params: Any) -> Any:
        # The Stripe SDK is synchronous; keep it off the event loop.
        return await asyncio.to_thread(operation, api_key=self._api_key, **params)

    async def create_direct_intent(
        self,
        amount: int,
        payee_account: str,
        platform_fee_amount: int,
        *,
        transfer_group: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> IntentResult:
        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=self.currency,
                automatic_payment_methods={"enabled": True},
                transfer_data={"destination": payee_account},
                application_fee_amount=platform_fee_amount,
                transfer_group=transfer_group,
                metadata={**metadata, "payment_type": "direct"},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe direct intent failed for %s: %s", transfer_group, exc)
            raise translate_setup_error(exc) from exc
        return IntentResult(intent_id=intent.id, status=intent.status, client_secret=intent.client_secret)

    async def create_deferred_intent(
        self,
        amount: int,
        platform_account: str | None,
        *,
        transfer_group: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> IntentResult:
        payload_metadata = {**metadata, "payment_type": "deferred"}
        if platform_account:
            payload_metadata["platform_account"] = platform_account
        try:
            intent = await self._call(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=self.currency,
                automatic_payment_methods={"enabled": True},
                transfer_group=transfer_group,
                metadata=payload_metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            logger.warning("Stripe deferred intent failed for %s: %s", transfer_group, exc)
            raise translate_setup_error(exc) from exc
        return IntentResult(intent_id=intent.id, status=intent.status, client_secret=intent.client_secret)

    async def create_transfer(
        self,
        amount: int,
        destination_account: str,
        transfer_group: str,
        metadata: dict[str, str],
        *,
        idempotency_key: str,
    ) -> TransferResult:
        try:
            transfer = await self._call(
                stripe.Transfer.create,
                amount=amount,
                currency=self.currency,
                destination=destination_account,
                transfer_group=transfer_group,
                metadata=metadata,
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as exc:
            raise translate_transfer_error(exc) from exc
        return TransferResult(transfer_id=getattr(transfer, "id", None), status=getattr(transfer, "object", None))

    async def retrieve_balance(self) -> int:
        try:
            balance = await self._call(stripe.Balance.retrieve)
        except stripe.StripeError as exc:
            raise TransferException(
                f"Could not read platform balance: {exc}",
                kind=TransferErrorKind.PROCESSOR_ERROR,
            ) from exc
        return sum(
            int(entry["amount"])
            for entry in balance["available"]
            if str(entry["currency"]).lower() == self.currency
        )


@dataclass(frozen=True, slots=True)
class ProcessorEvent:
    event_id: str
    event_type: str
    data: dict[str, Any]


def construct_webhook_event(payload: bytes, signature: str | None, secret: str) -> ProcessorEvent:
    """Verify a Stripe webhook signature and return the event."""
    if not secret:
        raise UnauthorizedException("Webhook secret is not configured")
    if not signature:
        raise UnauthorizedException("Missing webhook signature")
    try:
        event = stripe.Webhook.construct_event(payload, signature, secret)
    except stripe.SignatureVerificationError as exc:
        logger.warning("Invalid Stripe webhook signature")
        raise UnauthorizedException("Invalid webhook signature") from exc
    except ValueError as exc:
        raise UnauthorizedException("Malformed webhook payload") from exc
    # StripeObject is not a Mapping on current SDKs; read the verified body as plain JSON.
    body = json.loads(payload)
    return ProcessorEvent(
        event_id=str(event["id"]),
        event_type=str(event["type"]),
        data=body["data"]["object"],
    )
