"""
AccessToken model
==================
Time-boxed document-read capability issued after wallet verification.

  - Tokens are cryptographically random (32 bytes / 64 hex chars).
  - Only the SHA-256 hash of the token is persisted.
  - One row per (wallet_address, alert_token_id); re-verification
    overwrites it with a fresh token and a fresh one-hour expiry.
  - Revocation is soft (revoked flag + expires_at pulled to now).
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from notice_vault.core.clock import ensure_aware, utcnow
from notice_vault.core.database import Base

TOKEN_TTL = timedelta(hours=1)


class AccessToken(Base):
    __tablename__ = "document_access_tokens"
    __table_args__ = (
        UniqueConstraint("wallet_address", "alert_token_id", name="uq_access_token_wallet_alert"),
    )

    token_hash: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(String(255), nullable=False)
    alert_token_id: Mapped[str] = mapped_column(String(255), nullable=False)
    document_token_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @staticmethod
    def generate_token() -> str:
        """Return a cryptographically random 64-hex-char token."""
        return secrets.token_hex(32)

    @staticmethod
    def hash_token(raw_token: str) -> str:
        """SHA-256 hash of a raw token string."""
        return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()

    def is_valid(self, at: Optional[datetime] = None) -> bool:
        """True iff not revoked and *at* (default now) is before expiry."""
        if self.revoked:
            return False
        return (at or utcnow()) < ensure_aware(self.expires_at)

    def record_use(self, at: Optional[datetime] = None) -> None:
        self.usage_count = (self.usage_count or 0) + 1
        self.last_used_at = at or utcnow()

    def __repr__(self):
        status = "active" if self.is_valid() else "inactive"
        return (
            f"<AccessToken wallet={self.wallet_address} alert={self.alert_token_id} [{status}]>"
        )
