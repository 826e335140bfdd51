"""initial schema

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-17 09:00:00.000000

This migration creates:
1. Accounts: users (parents) and staff (teachers, admins)
2. School data: classes, children, homework, homework_submissions
3. Messaging: messages (with a GIN full-text index), reactions, presence,
   typing indicators, notification preferences, conversation settings
4. Push subscriptions
5. Billing: subscriptions, subscription_transactions, payment_logs

Enum types are created with checkfirst so the migration can run against a
database where they already exist.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUMS = {
    "staff_role": ("teacher", "admin"),
    "message_type": ("text", "image", "file", "voice"),
    "message_priority": ("low", "normal", "high", "urgent"),
    "message_status": ("sent", "delivered", "read"),
    "presence_status": ("online", "away", "busy", "offline"),
    "notification_type": ("message", "homework", "announcement", "urgent"),
    "subscription_status": ("pending", "trial", "active", "cancelled", "expired", "suspended"),
    "billing_cycle": ("monthly", "annual"),
    "payment_gateway": ("payfast", "stripe", "manual"),
    "transaction_status": ("pending", "completed", "failed", "expired", "refunded"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _uuid(name: str, nullable: bool = False, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=False), nullable=nullable, **kwargs)


def _fk(name: str, target: str, ondelete: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=False),
        sa.ForeignKey(target, ondelete=ondelete),
        nullable=nullable,
    )


def _base_columns() -> list[sa.Column]:
    """Primary key and timestamps shared by every table."""
    return [
        _uuid("id", primary_key=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _participant(prefix: str) -> list[sa.Column]:
    return [_uuid(f"{prefix}_id"), sa.Column(f"{prefix}_type", sa.String(20), nullable=False)]


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    # ============================================
    # Accounts
    # ============================================
    op.create_table(
        "users",
        *_base_columns(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "staff",
        *_base_columns(),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.Text(), nullable=False),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("phone", sa.String(20), nullable=True),
        sa.Column("role", _enum("staff_role"), nullable=False, server_default="teacher"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_staff_email", "staff", ["email"], unique=True)

    # ============================================
    # Classes, children, homework
    # ============================================
    op.create_table(
        "classes",
        *_base_columns(),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("age_group", sa.String(50), nullable=True),
        sa.Column("room", sa.String(50), nullable=True),
        sa.Column("schedule", sa.Text(), nullable=True),
        sa.Column("max_students", sa.Integer(), nullable=False, server_default="20"),
        _fk("teacher_id", "staff.id", "SET NULL", nullable=True),
    )
    op.create_index("ix_classes_teacher_id", "classes", ["teacher_id"])

    op.create_table(
        "children",
        *_base_columns(),
        sa.Column("first_name", sa.String(100), nullable=False),
        sa.Column("last_name", sa.String(100), nullable=False),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("age", sa.Integer(), nullable=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("grade", sa.String(50), nullable=True),
        sa.Column("allergies", sa.Text(), nullable=True),
        sa.Column("medical_notes", sa.Text(), nullable=True),
        sa.Column("emergency_contact", sa.String(255), nullable=True),
        _fk("parent_id", "users.id", "CASCADE"),
        _fk("class_id", "classes.id", "SET NULL", nullable=True),
    )
    op.create_index("ix_children_parent_id", "children", ["parent_id"])
    op.create_index("ix_children_class_id", "children", ["class_id"])

    op.create_table(
        "homework",
        *_base_columns(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("instructions", sa.Text(), nullable=True),
        sa.Column("content_type", sa.String(50), nullable=True),
        sa.Column("attachment_url", sa.Text(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=False),
        _fk("class_id", "classes.id", "CASCADE"),
        _fk("teacher_id", "staff.id", "SET NULL", nullable=True),
    )
    op.create_index("ix_homework_due_date", "homework", ["due_date"])
    op.create_index("ix_homework_class_id", "homework", ["class_id"])
    op.create_index("ix_homework_teacher_id", "homework", ["teacher_id"])

    op.create_table(
        "homework_submissions",
        *_base_columns(),
        _fk("homework_id", "homework.id", "CASCADE"),
        _fk("child_id", "children.id", "CASCADE"),
        _fk("parent_id", "users.id", "CASCADE"),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("file_url", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("grade", sa.String(20), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("graded_at", sa.DateTime(timezone=True), nullable=True),
        _fk("graded_by", "staff.id", "SET NULL", nullable=True),
        sa.UniqueConstraint("homework_id", "child_id", name="uq_homework_submission_child"),
    )
    op.create_index("ix_homework_submissions_homework_id", "homework_submissions", ["homework_id"])
    op.create_index("ix_homework_submissions_child_id", "homework_submissions", ["child_id"])

    # ============================================
    # Messaging
    # ============================================
    op.create_table(
        "messages",
        *_base_columns(),
        *_participant("sender"),
        *_participant("recipient"),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("message_type", _enum("message_type"), nullable=False, server_default="text"),
        sa.Column("priority", _enum("message_priority"), nullable=False, server_default="normal"),
        _fk("reply_to_message_id", "messages.id", "SET NULL", nullable=True),
        sa.Column("attachment_url", sa.Text(), nullable=True),
        sa.Column("attachment_type", sa.String(100), nullable=True),
        sa.Column("attachment_size", sa.Integer(), nullable=True),
        sa.Column("voice_duration", sa.Integer(), nullable=True),
        sa.Column("status", _enum("message_status"), nullable=False, server_default="sent"),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_messages_sender", "messages", ["sender_id", "sender_type"])
    op.create_index(
        "ix_messages_recipient_status", "messages", ["recipient_id", "recipient_type", "status"]
    )
    # Must match the expression used by search_messages
    op.execute(
        "CREATE INDEX ix_messages_search ON messages USING gin "
        "(to_tsvector('english', coalesce(subject, '') || ' ' || body))"
    )

    op.create_table(
        "message_reactions",
        *_base_columns(),
        _fk("message_id", "messages.id", "CASCADE"),
        *_participant("user"),
        sa.Column("emoji", sa.String(16), nullable=False),
        sa.UniqueConstraint(
            "message_id", "user_id", "user_type", "emoji", name="uq_message_reaction"
        ),
    )
    op.create_index("ix_message_reactions_message_id", "message_reactions", ["message_id"])

    op.create_table(
        "user_presence",
        *_base_columns(),
        *_participant("user"),
        sa.Column("status", _enum("presence_status"), nullable=False, server_default="offline"),
        sa.Column(
            "last_seen",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.UniqueConstraint("user_id", "user_type", name="uq_user_presence"),
    )

    op.create_table(
        "typing_indicators",
        *_base_columns(),
        sa.Column("conversation_key", sa.String(120), nullable=False),
        *_participant("user"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "conversation_key", "user_id", "user_type", name="uq_typing_indicator"
        ),
    )
    op.create_index(
        "ix_typing_indicators_conversation_key", "typing_indicators", ["conversation_key"]
    )

    op.create_table(
        "notification_preferences",
        *_base_columns(),
        *_participant("user"),
        sa.Column("notification_type", _enum("notification_type"), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sound_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("vibration_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("show_preview", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("quiet_hours_start", sa.Time(), nullable=True),
        sa.Column("quiet_hours_end", sa.Time(), nullable=True),
        sa.UniqueConstraint(
            "user_id", "user_type", "notification_type", name="uq_notification_preference"
        ),
    )

    op.create_table(
        "conversation_settings",
        *_base_columns(),
        *_participant("user"),
        *_participant("other"),
        sa.Column("is_muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_archived", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_pinned", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.UniqueConstraint(
            "user_id", "user_type", "other_id", "other_type", name="uq_conversation_settings"
        ),
    )

    # ============================================
    # Push
    # ============================================
    op.create_table(
        "push_subscriptions",
        *_base_columns(),
        *_participant("user"),
        sa.Column("endpoint", sa.Text(), nullable=False, unique=True),
        sa.Column("p256dh", sa.String(255), nullable=False),
        sa.Column("auth", sa.String(255), nullable=False),
        sa.Column("user_agent", sa.String(500), nullable=True),
    )
    op.create_index("ix_push_subscriptions_user_id", "push_subscriptions", ["user_id"])

    # ============================================
    # Billing
    # ============================================
    op.create_table(
        "subscriptions",
        *_base_columns(),
        _fk("user_id", "users.id", "CASCADE"),
        sa.Column("plan_id", sa.String(50), nullable=False),
        sa.Column("plan_name", sa.String(100), nullable=False),
        sa.Column("price_monthly", sa.Numeric(10, 2), nullable=False),
        sa.Column("price_annual", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ZAR"),
        sa.Column("billing_cycle", _enum("billing_cycle"), nullable=False, server_default="monthly"),
        sa.Column("status", _enum("subscription_status"), nullable=False, server_default="pending"),
        sa.Column("gateway", _enum("payment_gateway"), nullable=False),
        sa.Column("gateway_subscription_id", sa.String(255), nullable=True),
        sa.Column("stripe_customer_id", sa.String(255), nullable=True),
        sa.Column("stripe_payment_method_id", sa.String(255), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_billing_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        _uuid("cancelled_by", nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        _uuid("created_by", nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_subscriptions_user_status", "subscriptions", ["user_id", "status"])
    op.create_index(
        "ix_subscriptions_renewal", "subscriptions", ["status", "auto_renew", "next_billing_date"]
    )

    op.create_table(
        "subscription_transactions",
        *_base_columns(),
        _fk("subscription_id", "subscriptions.id", "CASCADE"),
        _fk("user_id", "users.id", "CASCADE"),
        sa.Column("gateway", _enum("payment_gateway"), nullable=False),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("gateway_payment_id", sa.String(255), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("fee", sa.Numeric(10, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="ZAR"),
        sa.Column("status", _enum("transaction_status"), nullable=False, server_default="pending"),
        sa.Column("is_renewal", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("billing_period_start", sa.Date(), nullable=True),
        sa.Column("idempotency_key", sa.String(255), nullable=True, unique=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column(
            "gateway_response",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_subscription_transactions_subscription_id",
        "subscription_transactions",
        ["subscription_id"],
    )
    op.create_index(
        "ix_subscription_transactions_user_id", "subscription_transactions", ["user_id"]
    )
    op.create_index(
        "ix_subscription_transactions_status_created",
        "subscription_transactions",
        ["status", "created_at"],
    )
    op.create_index(
        "ix_subscription_transactions_reference",
        "subscription_transactions",
        ["gateway", "reference"],
    )

    op.create_table(
        "payment_logs",
        *_base_columns(),
        sa.Column("gateway", _enum("payment_gateway"), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=True),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("source_ip", sa.String(64), nullable=True),
        sa.Column("signature_valid", sa.Boolean(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_payment_logs_gateway", "payment_logs", ["gateway"])
    op.create_index("ix_payment_logs_reference", "payment_logs", ["reference"])


def downgrade() -> None:
    for table in (
        "payment_logs",
        "subscription_transactions",
        "subscriptions",
        "push_subscriptions",
        "conversation_settings",
        "notification_preferences",
        "typing_indicators",
        "user_presence",
        "message_reactions",
        "messages",
        "homework_submissions",
        "homework",
        "children",
        "classes",
        "staff",
        "users",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(ENUMS):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
