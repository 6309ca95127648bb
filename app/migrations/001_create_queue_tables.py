"""Create tenants, attendants, conversations, messages and global settings."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_queue_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        _UUID,
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _tenant_column() -> sa.Column:
    return sa.Column(
        "tenant_id",
        _UUID,
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("now()"),
    )


def upgrade() -> None:
    """Create the queue schema with the indexes the queue view and claims rely on."""

    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')

    op.create_table(
        "tenants",
        _id_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("slug", sa.String(length=255), nullable=False),
        sa.Column(
            "provider",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'evolution'"),
        ),
        sa.Column("provider_instance", sa.String(length=255), nullable=True),
        sa.Column("provider_api_url", sa.Text(), nullable=True),
        sa.Column("provider_api_key", sa.Text(), nullable=True),
        sa.Column(
            "timezone",
            sa.String(length=64),
            nullable=False,
            server_default=sa.text("'UTC'"),
        ),
        _created_at(),
    )
    op.create_index("ix_tenants_slug_unique", "tenants", ["slug"], unique=True)
    op.create_index(
        "ix_tenants_provider_instance_unique",
        "tenants",
        ["provider_instance"],
        unique=True,
    )

    op.create_table(
        "global_settings",
        sa.Column("key", sa.String(length=128), primary_key=True, nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    )

    op.create_table(
        "attendants",
        _id_column(),
        _tenant_column(),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("sector", sa.String(length=32), nullable=True),
        sa.Column(
            "presence",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'offline'"),
        ),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("max_load", sa.Integer(), nullable=False, server_default=sa.text("5")),
        sa.Column("current_load", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("work_start", sa.Time(), nullable=True),
        sa.Column("work_end", sa.Time(), nullable=True),
        sa.Column("work_days", sa.Integer(), nullable=True),
        _created_at(),
        sa.CheckConstraint("max_load >= 0", name="ck_attendants_max_load"),
        sa.CheckConstraint("current_load >= 0", name="ck_attendants_current_load"),
    )
    op.create_index(
        "ix_attendants_tenant_sector", "attendants", ["tenant_id", "sector"]
    )

    op.create_table(
        "conversations",
        _id_column(),
        _tenant_column(),
        sa.Column("phone", sa.String(length=32), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column(
            "sector",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'reception'"),
        ),
        sa.Column(
            "status",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column(
            "assigned_attendant_id",
            _UUID,
            sa.ForeignKey("attendants.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_release_reason", sa.String(length=32), nullable=True),
        sa.Column("last_message", sa.Text(), nullable=True),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("unread_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("blocked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("blocked_reason", sa.Text(), nullable=True),
        sa.Column("blocked_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.UniqueConstraint("tenant_id", "phone", name="uq_conversations_tenant_phone"),
    )
    op.create_index(
        "ix_conversations_queue",
        "conversations",
        ["tenant_id", "sector", "assigned_attendant_id", "last_message_at"],
    )
    op.create_index(
        "ix_conversations_assigned", "conversations", ["assigned_attendant_id"]
    )

    op.create_table(
        "messages",
        _id_column(),
        _tenant_column(),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("sender_role", sa.String(length=16), nullable=False),
        sa.Column(
            "kind",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'text'"),
        ),
        sa.Column("provider_message_id", sa.String(length=255), nullable=True),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        _created_at(),
        sa.UniqueConstraint(
            "tenant_id",
            "provider_message_id",
            name="uq_messages_tenant_provider_message_id",
        ),
    )
    op.create_index(
        "ix_messages_conversation_timestamp",
        "messages",
        ["conversation_id", "timestamp"],
    )


def downgrade() -> None:
    """Drop the queue schema."""

    op.drop_index("ix_messages_conversation_timestamp", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_assigned", table_name="conversations")
    op.drop_index("ix_conversations_queue", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("ix_attendants_tenant_sector", table_name="attendants")
    op.drop_table("attendants")
    op.drop_table("global_settings")
    op.drop_index("ix_tenants_provider_instance_unique", table_name="tenants")
    op.drop_index("ix_tenants_slug_unique", table_name="tenants")
    op.drop_table("tenants")
