"""Allowed session status and payment status transitions."""

from __future__ import annotations

from app.core.enums import SessionPaymentStatusEnum, SessionStatusEnum
from app.shared.exceptions import ConflictException

SESSION_TRANSITIONS: dict[SessionStatusEnum, frozenset[SessionStatusEnum]] = {
    SessionStatusEnum.PENDING: frozenset({SessionStatusEnum.SCHEDULED, SessionStatusEnum.CANCELLED}),
    SessionStatusEnum.SCHEDULED: frozenset(
        {SessionStatusEnum.IN_PROGRESS, SessionStatusEnum.COMPLETED, SessionStatusEnum.CANCELLED},
    ),
    SessionStatusEnum.IN_PROGRESS: frozenset({SessionStatusEnum.COMPLETED, SessionStatusEnum.CANCELLED}),
    SessionStatusEnum.COMPLETED: frozenset(),
    SessionStatusEnum.CANCELLED: frozenset(),
}

PAYMENT_STATUS_TRANSITIONS: dict[SessionPaymentStatusEnum, frozenset[SessionPaymentStatusEnum]] = {
    SessionPaymentStatusEnum.UNPAID: frozenset({SessionPaymentStatusEnum.PAID}),
    SessionPaymentStatusEnum.PAID: frozenset({SessionPaymentStatusEnum.REFUNDED}),
    SessionPaymentStatusEnum.REFUNDED: frozenset(),
}

TERMINAL_SESSION_STATUSES = frozenset(
    status for status, targets in SESSION_TRANSITIONS.items() if not targets
)

CONFIRMABLE_SESSION_STATUSES = frozenset({SessionStatusEnum.SCHEDULED, SessionStatusEnum.IN_PROGRESS})


def can_transition(current: SessionStatusEnum, target: SessionStatusEnum) -> bool:
    return target in SESSION_TRANSITIONS[current]


def ensure_transition(current: SessionStatusEnum, target: SessionStatusEnum) -> None:
    """Raise ConflictException unless `current -> target` is allowed."""
    if not can_transition(current, target):
        raise ConflictException(f"Session cannot move from {current.value} to {target.value}")


def ensure_payment_transition(
    current: SessionPaymentStatusEnum,
    target: SessionPaymentStatusEnum,
) -> None:
    if target not in PAYMENT_STATUS_TRANSITIONS[current]:
        raise ConflictException(f"Session payment cannot move from {current.value} to {target.value}")
