"""notifications and password resets

Revision ID: b1c2d3e4f5a6
Revises: a0b1c2d3e4f5
Create Date: 2026-10-17 15:00:00.000000

This migration creates:
1. notifications: in-app inbox rows with a notification_category enum
2. password_reset_tokens: single-use reset tokens stored as SHA-256 digests
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "b1c2d3e4f5a6"
down_revision: str | Sequence[str] | None = "a0b1c2d3e4f5"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

NOTIFICATION_CATEGORIES = ("message", "event", "system", "alert")


def _base_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
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


def upgrade() -> None:
    bind = op.get_bind()
    postgresql.ENUM(*NOTIFICATION_CATEGORIES, name="notification_category").create(
        bind, checkfirst=True
    )

    op.create_table(
        "notifications",
        *_base_columns(),
        sa.Column("recipient_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("recipient_type", sa.String(20), nullable=False),
        sa.Column(
            "category",
            postgresql.ENUM(
                *NOTIFICATION_CATEGORIES, name="notification_category", create_type=False
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_notifications_recipient",
        "notifications",
        ["recipient_id", "recipient_type", "created_at"],
    )

    op.create_table(
        "password_reset_tokens",
        *_base_columns(),
        sa.Column("account_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("account_role", sa.String(20), nullable=False),
        sa.Column("token_hash", sa.String(64), nullable=False, unique=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "ix_password_reset_tokens_account_id", "password_reset_tokens", ["account_id"]
    )


def downgrade() -> None:
    op.drop_table("password_reset_tokens")
    op.drop_table("notifications")
    postgresql.ENUM(name="notification_category").drop(op.get_bind(), checkfirst=True)
