"""Notice registry tables owned by the wider notice service.

This package only reads them, except for the recovery columns on
``served_notices`` which the IPFS recovery pipeline writes.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notice_vault.core.clock import utcnow
from notice_vault.core.database import Base


class NoticeComponent(Base):
    __tablename__ = "notice_components"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    notice_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    alert_token_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    document_token_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    recipient_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    server_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    case_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notice_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    issuing_agency: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(50), nullable=True)
    public_text: Mapped[str | None] = mapped_column(Text, nullable=True)

    alert_thumbnail_data: Mapped[str | None] = mapped_column(Text, nullable=True)  # base64
    alert_thumbnail_mime_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    # Gated document content
    document_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_encryption_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    ipfs_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    page_count: Mapped[int | None] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ServedNotice(Base):
    __tablename__ = "served_notices"

    notice_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    ipfs_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    case_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    server_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Recovery bookkeeping
    documents_recovered: Mapped[bool | None] = mapped_column(Boolean, nullable=True, default=False)
    recovery_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    recovery_status: Mapped[str | None] = mapped_column(Text, nullable=True)


class ProcessServer(Base):
    __tablename__ = "process_servers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # pending | approved | rejected | suspended
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
