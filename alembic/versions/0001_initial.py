"""Initial schema — encrypted documents, access tokens, audit logs, notice registry

Revision ID: 0001_initial
Revises: None
Create Date: 2026-10-19

The notice registry tables (notice_components, served_notices,
process_servers) usually exist already in deployed databases. They are
created only when missing; an existing served_notices table gets the
recovery bookkeeping columns added instead.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_RECOVERY_COLUMNS = (
    ("documents_recovered", sa.Boolean, {"server_default": sa.false()}),
    ("recovery_date", sa.DateTime(timezone=True), {}),
    ("recovery_status", sa.Text, {}),
)


def upgrade() -> None:
    inspector = sa.inspect(op.get_bind())
    existing = set(inspector.get_table_names())

    # -- encrypted_documents --
    op.create_table(
        "encrypted_documents",
        sa.Column("document_id", sa.String(255), primary_key=True),
        sa.Column("notice_id", sa.String(255), nullable=True),
        sa.Column("case_number", sa.String(255), nullable=True),
        sa.Column("server_address", sa.String(255), nullable=True),
        sa.Column("recipient_address", sa.String(255), nullable=True),
        sa.Column("document_type", sa.String(50), nullable=False, server_default="document"),
        sa.Column("file_path", sa.Text, nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False),
        sa.Column("ciphertext_sha256", sa.String(64), nullable=True),
        sa.Column("mime_type", sa.String(100), nullable=False, server_default="application/pdf"),
        sa.Column("original_name", sa.String(255), nullable=True),
        sa.Column("encryption_key", sa.Text, nullable=False),
        sa.Column("encryption_iv", sa.String(255), nullable=False),
        sa.Column("auth_tag", sa.String(255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("last_accessed", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("idx_encdoc_notice", "encrypted_documents", ["notice_id"])
    op.create_index("idx_encdoc_case", "encrypted_documents", ["case_number"])
    op.create_index("idx_encdoc_server", "encrypted_documents", ["server_address"])
    op.create_index("idx_encdoc_recipient", "encrypted_documents", ["recipient_address"])

    # -- document_access_tokens --
    op.create_table(
        "document_access_tokens",
        sa.Column("token_hash", sa.String(64), primary_key=True),
        sa.Column("wallet_address", sa.String(255), nullable=False),
        sa.Column("alert_token_id", sa.String(255), nullable=False),
        sa.Column("document_token_id", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("revoked", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("wallet_address", "alert_token_id", name="uq_access_token_wallet_alert"),
    )

    # -- access_attempts --
    op.create_table(
        "access_attempts",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("wallet_address", sa.String(255), nullable=True),
        sa.Column("alert_token_id", sa.String(255), nullable=True),
        sa.Column("document_token_id", sa.String(255), nullable=True),
        sa.Column("is_recipient", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_server", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("granted", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("denial_reason", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("attempted_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_attempt_wallet", "access_attempts", ["wallet_address"])

    # -- document_access_log --
    op.create_table(
        "document_access_log",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("document_id", sa.String(255), nullable=True),
        sa.Column("document_token_id", sa.String(255), nullable=True),
        sa.Column("accessed_by", sa.String(255), nullable=False),
        sa.Column("access_token_hash", sa.String(64), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("user_agent", sa.Text, nullable=True),
        sa.Column("accessed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_access_log_document", "document_access_log", ["document_id"])
    op.create_index("idx_access_log_accessor", "document_access_log", ["accessed_by"])

    # -- notice registry --
    if "notice_components" not in existing:
        op.create_table(
            "notice_components",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("notice_id", sa.String(255), nullable=False),
            sa.Column("alert_token_id", sa.String(255), nullable=True),
            sa.Column("document_token_id", sa.String(255), nullable=True),
            sa.Column("recipient_address", sa.String(255), nullable=True),
            sa.Column("server_address", sa.String(255), nullable=True),
            sa.Column("case_number", sa.String(255), nullable=True),
            sa.Column("notice_type", sa.String(255), nullable=True),
            sa.Column("issuing_agency", sa.String(255), nullable=True),
            sa.Column("status", sa.String(50), nullable=True),
            sa.Column("public_text", sa.Text, nullable=True),
            sa.Column("alert_thumbnail_data", sa.Text, nullable=True),
            sa.Column("alert_thumbnail_mime_type", sa.String(100), nullable=True),
            sa.Column("document_id", sa.String(255), nullable=True),
            sa.Column("document_encryption_key", sa.Text, nullable=True),
            sa.Column("ipfs_hash", sa.String(255), nullable=True),
            sa.Column("document_hash", sa.String(255), nullable=True),
            sa.Column("page_count", sa.Integer, nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        )
        op.create_index("ix_notice_components_notice_id", "notice_components", ["notice_id"])
        op.create_index("ix_notice_components_alert_token_id", "notice_components", ["alert_token_id"])
        op.create_index("ix_notice_components_document_token_id", "notice_components", ["document_token_id"])

    if "served_notices" not in existing:
        op.create_table(
            "served_notices",
            sa.Column("notice_id", sa.String(255), primary_key=True),
            sa.Column("ipfs_hash", sa.String(255), nullable=True),
            sa.Column("case_number", sa.String(255), nullable=True),
            sa.Column("server_address", sa.String(255), nullable=True),
            sa.Column("recipient_address", sa.String(255), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
            *(sa.Column(name, type_, nullable=True, **kw) for name, type_, kw in _RECOVERY_COLUMNS),
        )
    else:
        present = {c["name"] for c in inspector.get_columns("served_notices")}
        for name, type_, kw in _RECOVERY_COLUMNS:
            if name not in present:
                op.add_column("served_notices", sa.Column(name, type_, nullable=True, **kw))

    if "process_servers" not in existing:
        op.create_table(
            "process_servers",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("wallet_address", sa.String(255), nullable=False, unique=True),
            sa.Column("name", sa.String(255), nullable=True),
            sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        )


def downgrade() -> None:
    # Registry tables belong to the wider notice service and are left in place.
    op.drop_index("idx_access_log_accessor", table_name="document_access_log")
    op.drop_index("idx_access_log_document", table_name="document_access_log")
    op.drop_table("document_access_log")
    op.drop_index("idx_attempt_wallet", table_name="access_attempts")
    op.drop_table("access_attempts")
    op.drop_table("document_access_tokens")
    op.drop_index("idx_encdoc_recipient", table_name="encrypted_documents")
    op.drop_index("idx_encdoc_server", table_name="encrypted_documents")
    op.drop_index("idx_encdoc_case", table_name="encrypted_documents")
    op.drop_index("idx_encdoc_notice", table_name="encrypted_documents")
    op.drop_table("encrypted_documents")
