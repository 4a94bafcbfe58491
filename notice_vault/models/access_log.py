"""Append-only audit tables: verification attempts and document reads."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notice_vault.core.clock import utcnow
from notice_vault.core.database import Base


class AccessAttempt(Base):
    __tablename__ = "access_attempts"
    __table_args__ = (Index("idx_attempt_wallet", "wallet_address"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    alert_token_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_token_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_recipient: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_server: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    granted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # not_recipient | process_server_access | NULL (granted as recipient)
    denial_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class DocumentAccessLog(Base):
    __tablename__ = "document_access_log"
    __table_args__ = (
        Index("idx_access_log_document", "document_id"),
        Index("idx_access_log_accessor", "accessed_by"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_token_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    accessed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    access_token_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    accessed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
