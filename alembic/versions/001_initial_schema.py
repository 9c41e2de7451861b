"""Initial schema - identity bindings, shop links and the audit log.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Identity bindings
    op.create_table(
        "identity_bindings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("identity_token", sa.String(64), nullable=False),
        sa.Column("credential_encrypted", sa.Text),
        sa.Column("label", sa.String(255)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_identity_bindings_identity_token", "identity_bindings", ["identity_token"], unique=True,
    )

    # Shop links (no FK: orphaned links must stay representable)
    op.create_table(
        "shop_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("shop_domain", sa.String(255), nullable=False, unique=True),
        sa.Column("identity_token", sa.String(64)),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_shop_links_identity_token", "shop_links", ["identity_token"])

    # Audit records
    op.create_table(
        "audit_records",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("identity_token", sa.String(64), nullable=False),
        sa.Column("event_name", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("error_category", sa.String(40)),
        sa.Column("event_id", sa.String(128)),
        sa.Column("channel", sa.String(20)),
        sa.Column("shop_domain", sa.String(255)),
        sa.Column("raw_payload", postgresql.JSONB, nullable=False),
        sa.Column("detail", postgresql.JSONB),
        sa.Column("duration_ms", sa.Integer),
        sa.Column("correlation_id", sa.String(64)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
    )
    op.create_index("ix_audit_records_identity_token", "audit_records", ["identity_token"])
    op.create_index("ix_audit_records_status", "audit_records", ["status"])
    op.create_index("ix_audit_records_created_at", "audit_records", ["created_at"])
    op.create_index("ix_audit_records_correlation_id", "audit_records", ["correlation_id"])


def downgrade() -> None:
    op.drop_table("audit_records")
    op.drop_table("shop_links")
    op.drop_table("identity_bindings")
