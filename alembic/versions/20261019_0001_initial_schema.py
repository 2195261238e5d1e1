"""Initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


role_enum = sa.Enum("student", "tutor", "admin", name="role_enum", native_enum=False)
session_status_enum = sa.Enum(
    "pending",
    "scheduled",
    "in_progress",
    "completed",
    "cancelled",
    name="session_status_enum",
    native_enum=False,
)
session_payment_status_enum = sa.Enum(
    "unpaid",
    "paid",
    "refunded",
    name="session_payment_status_enum",
    native_enum=False,
)
payment_type_enum = sa.Enum("direct", "deferred", name="payment_type_enum", native_enum=False)
transaction_status_enum = sa.Enum(
    "pending",
    "processing",
    "succeeded",
    "failed",
    "canceled",
    name="transaction_status_enum",
    native_enum=False,
)
transfer_status_enum = sa.Enum(
    "pending",
    "processing",
    "completed",
    "failed_permanent",
    "cancelled",
    name="transfer_status_enum",
    native_enum=False,
)
notification_status_enum = sa.Enum("pending", "sent", "failed", name="notification_status_enum", native_enum=False)
outbox_status_enum = sa.Enum("pending", "processed", "failed", name="outbox_status_enum", native_enum=False)


def _id_col() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_col() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_col() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def _user_fk(table: str, column: str, ondelete: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint([column], ["users.id"], name=f"fk_{table}_{column}_users", ondelete=ondelete)


def upgrade() -> None:
    op.create_table(
        "roles",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("name", role_enum, nullable=False),
        sa.UniqueConstraint("name", name="uq_roles_name"),
    )

    op.create_table(
        "users",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("role_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.ForeignKeyConstraint(["role_id"], ["roles.id"], name="fk_users_role_id_roles", ondelete="RESTRICT"),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=False)

    op.create_table(
        "tutor_profiles",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=False),
        sa.Column("bio", sa.Text(), nullable=False),
        sa.Column("hourly_rate", sa.Integer(), nullable=False),
        sa.Column("max_weekly_sessions", sa.Integer(), nullable=True),
        sa.Column("payout_account_id", sa.String(length=255), nullable=True),
        sa.Column("payout_onboarding_complete", sa.Boolean(), nullable=False),
        sa.Column("is_approved", sa.Boolean(), nullable=False),
        _user_fk("tutor_profiles", "user_id", "CASCADE"),
        sa.UniqueConstraint("user_id", name="uq_tutor_profiles_user_id"),
    )

    op.create_table(
        "availability_templates",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("tutor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("windows", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        _user_fk("availability_templates", "tutor_id", "CASCADE"),
        sa.UniqueConstraint("tutor_id", name="uq_availability_templates_tutor_id"),
    )

    op.create_table(
        "tutoring_sessions",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tutor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("course_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", session_status_enum, nullable=False),
        sa.Column("payment_status", session_payment_status_enum, nullable=False),
        sa.Column("student_confirmed", sa.Boolean(), nullable=False),
        sa.Column("tutor_confirmed", sa.Boolean(), nullable=False),
        sa.Column("completion_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=512), nullable=True),
        _user_fk("tutoring_sessions", "student_id", "CASCADE"),
        _user_fk("tutoring_sessions", "tutor_id", "CASCADE"),
        sa.CheckConstraint("end_at > start_at", name="ck_tutoring_sessions_time_range"),
    )
    op.create_index("ix_tutoring_sessions_student_id", "tutoring_sessions", ["student_id"], unique=False)
    op.create_index("ix_tutoring_sessions_tutor_id", "tutoring_sessions", ["tutor_id"], unique=False)
    op.create_index("ix_tutoring_sessions_start_at", "tutoring_sessions", ["start_at"], unique=False)
    op.create_index("ix_tutoring_sessions_status", "tutoring_sessions", ["status"], unique=False)
    op.create_index("ix_tutoring_sessions_completion_date", "tutoring_sessions", ["completion_date"], unique=False)
    op.create_index(
        "uq_tutoring_sessions_active_slot",
        "tutoring_sessions",
        ["tutor_id", "start_at", "end_at"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )

    op.create_table(
        "payment_transactions",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tutor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("payment_type", payment_type_enum, nullable=False),
        sa.Column("status", transaction_status_enum, nullable=False),
        sa.Column("external_intent_id", sa.String(length=255), nullable=False),
        sa.Column("intent_status", sa.String(length=64), nullable=True),
        sa.Column("client_secret", sa.String(length=255), nullable=True),
        sa.Column("idempotency_key", sa.String(length=128), nullable=False),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["tutoring_sessions.id"],
            name="fk_payment_transactions_session_id_tutoring_sessions",
            ondelete="RESTRICT",
        ),
        _user_fk("payment_transactions", "student_id", "RESTRICT"),
        _user_fk("payment_transactions", "tutor_id", "RESTRICT"),
        sa.UniqueConstraint("external_intent_id", name="uq_payment_transactions_external_intent_id"),
        sa.UniqueConstraint("idempotency_key", name="uq_payment_transactions_idempotency_key"),
        sa.CheckConstraint("amount > 0", name="ck_payment_transactions_amount_positive"),
        sa.CheckConstraint(
            "platform_fee >= 0 AND platform_fee <= amount",
            name="ck_payment_transactions_platform_fee_range",
        ),
    )
    op.create_index("ix_payment_transactions_session_id", "payment_transactions", ["session_id"], unique=False)
    op.create_index("ix_payment_transactions_status", "payment_transactions", ["status"], unique=False)
    op.create_index(
        "uq_payment_transactions_active_session",
        "payment_transactions",
        ["session_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'processing')"),
    )

    op.create_table(
        "pending_transfers",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("session_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("payment_transaction_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("tutor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("student_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("platform_fee", sa.Integer(), nullable=False),
        sa.Column("status", transfer_status_enum, nullable=False),
        sa.Column("retry_count", sa.Integer(), nullable=False),
        sa.Column("last_retry_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("transfer_group", sa.String(length=128), nullable=False),
        sa.Column("external_transfer_id", sa.String(length=255), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_by", sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(
            ["session_id"],
            ["tutoring_sessions.id"],
            name="fk_pending_transfers_session_id_tutoring_sessions",
            ondelete="RESTRICT",
        ),
        sa.ForeignKeyConstraint(
            ["payment_transaction_id"],
            ["payment_transactions.id"],
            name="fk_pending_transfers_payment_transaction_id_payment_transactions",
            ondelete="RESTRICT",
        ),
        _user_fk("pending_transfers", "tutor_id", "RESTRICT"),
        _user_fk("pending_transfers", "student_id", "RESTRICT"),
        sa.UniqueConstraint("payment_transaction_id", name="uq_pending_transfers_payment_transaction_id"),
        sa.CheckConstraint("amount >= 0", name="ck_pending_transfers_amount_non_negative"),
        sa.CheckConstraint("retry_count >= 0", name="ck_pending_transfers_retry_count_non_negative"),
        sa.CheckConstraint(
            "status <> 'completed' OR (external_transfer_id IS NOT NULL AND external_transfer_id <> '')",
            name="ck_pending_transfers_completed_has_transfer_id",
        ),
    )
    op.create_index("ix_pending_transfers_session_id", "pending_transfers", ["session_id"], unique=False)
    op.create_index("ix_pending_transfers_tutor_id", "pending_transfers", ["tutor_id"], unique=False)
    op.create_index("ix_pending_transfers_status", "pending_transfers", ["status"], unique=False)

    op.create_table(
        "notifications",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("source_event_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("channel", sa.String(length=32), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("status", notification_status_enum, nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        _user_fk("notifications", "user_id", "CASCADE"),
    )
    op.create_index("ix_notifications_user_id", "notifications", ["user_id"], unique=False)
    op.create_index("ix_notifications_status", "notifications", ["status"], unique=False)
    op.create_index(
        "uq_notifications_source_event_user",
        "notifications",
        ["source_event_id", "user_id"],
        unique=True,
        postgresql_where=sa.text("source_event_id IS NOT NULL"),
    )

    op.create_table(
        "audit_logs",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        _user_fk("audit_logs", "actor_id", "SET NULL"),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity", "audit_logs", ["entity_type", "entity_id"], unique=False)

    op.create_table(
        "outbox_events",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("aggregate_type", sa.String(length=128), nullable=False),
        sa.Column("aggregate_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", outbox_status_enum, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_outbox_events_aggregate_type", "outbox_events", ["aggregate_type"], unique=False)
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"], unique=False)
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"], unique=False)
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_type", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("ix_audit_logs_entity", table_name="audit_logs")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("uq_notifications_source_event_user", table_name="notifications")
    op.drop_index("ix_notifications_status", table_name="notifications")
    op.drop_index("ix_notifications_user_id", table_name="notifications")
    op.drop_table("notifications")

    op.drop_index("ix_pending_transfers_status", table_name="pending_transfers")
    op.drop_index("ix_pending_transfers_tutor_id", table_name="pending_transfers")
    op.drop_index("ix_pending_transfers_session_id", table_name="pending_transfers")
    op.drop_table("pending_transfers")

    op.drop_index("uq_payment_transactions_active_session", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_status", table_name="payment_transactions")
    op.drop_index("ix_payment_transactions_session_id", table_name="payment_transactions")
    op.drop_table("payment_transactions")

    op.drop_index("uq_tutoring_sessions_active_slot", table_name="tutoring_sessions")
    op.drop_index("ix_tutoring_sessions_completion_date", table_name="tutoring_sessions")
    op.drop_index("ix_tutoring_sessions_status", table_name="tutoring_sessions")
    op.drop_index("ix_tutoring_sessions_start_at", table_name="tutoring_sessions")
    op.drop_index("ix_tutoring_sessions_tutor_id", table_name="tutoring_sessions")
    op.drop_index("ix_tutoring_sessions_student_id", table_name="tutoring_sessions")
    op.drop_table("tutoring_sessions")

    op.drop_table("availability_templates")
    op.drop_table("tutor_profiles")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")
    op.drop_table("roles")
