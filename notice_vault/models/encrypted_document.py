"""EncryptedDocument model — metadata + key material for one encrypted blob."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from notice_vault.core.clock import utcnow
from notice_vault.core.database import Base


class EncryptedDocument(Base):
    __tablename__ = "encrypted_documents"
    __table_args__ = (
        Index("idx_encdoc_notice", "notice_id"),
        Index("idx_encdoc_case", "case_number"),
        Index("idx_encdoc_server", "server_address"),
        Index("idx_encdoc_recipient", "recipient_address"),
    )

    # doc_<millis>_<16 hex>; the primary key is what guarantees uniqueness
    document_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    notice_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    case_number: Mapped[str | None] = mapped_column(String(255), nullable=True)
    server_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recipient_address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False, default="document")

    file_path: Mapped[str] = mapped_column(Text, nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    ciphertext_sha256: Mapped[str | None] = mapped_column(String(64), nullable=True)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="application/pdf")
    original_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Plaintext hex unless DOCUMENT_MASTER_KEY is set, then "wrapped:v1:..."
    encryption_key: Mapped[str] = mapped_column(Text, nullable=False)
    encryption_iv: Mapped[str] = mapped_column(String(255), nullable=False)
    auth_tag: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_accessed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def public_metadata(self) -> dict:
        """Metadata safe to expose without authorization (no key material)."""
        return {
            "document_id": self.document_id,
            "notice_id": self.notice_id,
            "case_number": self.case_number,
            "document_type": self.document_type,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "original_name": self.original_name,
            "created_at": self.created_at,
            "last_accessed": self.last_accessed,
        }

    def __repr__(self):
        return f"<EncryptedDocument {self.document_id} notice={self.notice_id}>"
