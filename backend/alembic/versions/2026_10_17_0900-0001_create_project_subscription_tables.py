"""create projects, notifications and chat_messages tables

Revision ID: 0001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── 1. projects ─────────────────────────────────────────
    op.create_table(
        "projects",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("client_id", sa.String(64), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expiry_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_tokens_used", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("monthly_token_limit", sa.BigInteger(), nullable=False),
        sa.Column("ai_model", sa.String(100), nullable=True),
        sa.Column("knowledge_text", sa.Text(), nullable=False, server_default=""),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_reminder_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("project_id", name="uq_projects_project_id"),
        sa.CheckConstraint("monthly_token_limit > 0", name="ck_monthly_token_limit_pos"),
        sa.CheckConstraint("total_tokens_used >= 0", name="ck_total_tokens_used_non_neg"),
        sa.CheckConstraint(
            "status IN ('active', 'suspended', 'expired', 'deleted')",
            name="ck_project_status_valid",
        ),
    )
    op.create_index("ix_projects_status_expiry", "projects", ["status", "expiry_date"])

    # ── 2. notifications ────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.Uuid(), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_notifications_dedup",
        "notifications",
        ["project_id", "type", "sent_at"],
    )

    # ── 3. chat_messages ────────────────────────────────────
    op.create_table(
        "chat_messages",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("project_id", sa.String(64), nullable=False),
        sa.Column("session_id", sa.String(128), nullable=False, server_default=""),
        sa.Column("user_id", sa.String(255), nullable=True),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("response", sa.Text(), nullable=False),
        sa.Column("tokens_used", sa.Integer(), nullable=False),
        sa.Column("model", sa.String(100), nullable=False),
        sa.Column("processing_time_ms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rating", sa.String(10), nullable=True),
        sa.Column("feedback", sa.Text(), nullable=True),
        sa.Column("rated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("tokens_used >= 0", name="ck_chat_tokens_used_non_neg"),
        sa.CheckConstraint(
            "rating IS NULL OR rating IN ('positive', 'negative')",
            name="ck_chat_rating_valid",
        ),
    )
    op.create_index(
        "ix_chat_messages_project_session",
        "chat_messages",
        ["project_id", "session_id"],
    )
    op.create_index("ix_chat_messages_created_at", "chat_messages", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_chat_messages_created_at", table_name="chat_messages")
    op.drop_index("ix_chat_messages_project_session", table_name="chat_messages")
    op.drop_table("chat_messages")
    op.drop_index("ix_notifications_dedup", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_projects_status_expiry", table_name="projects")
    op.drop_table("projects")
