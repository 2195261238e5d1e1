"""Core enums used across modules."""

from enum import StrEnum


class RoleEnum(StrEnum):
    """System roles."""

    STUDENT = "student"
    TUTOR = "tutor"
    ADMIN = "admin"


class SessionStatusEnum(StrEnum):
    """Tutoring session lifecycle status."""

    PENDING = "pending"
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SessionPaymentStatusEnum(StrEnum):
    """Payment state of a tutoring session."""

    UNPAID = "unpaid"
    PAID = "paid"
    REFUNDED = "refunded"


class ConfirmationRoleEnum(StrEnum):
    """Party confirming that a session took place."""

    STUDENT = "student"
    TUTOR = "tutor"


class PaymentTypeEnum(StrEnum):
    """How the tutor receives funds for a session."""

    DIRECT = "direct"
    DEFERRED = "deferred"


class TransactionStatusEnum(StrEnum):
    """Payment transaction processing status."""

    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


NON_TERMINAL_TRANSACTION_STATUSES = (
    TransactionStatusEnum.PENDING,
    TransactionStatusEnum.PROCESSING,
)


class TransferStatusEnum(StrEnum):
    """Deferred payout status."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED_PERMANENT = "failed_permanent"
    CANCELLED = "cancelled"


class NotificationStatusEnum(StrEnum):
    """Notification delivery status."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class OutboxStatusEnum(StrEnum):
    """Outbox event status for integration publishing."""

    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"
