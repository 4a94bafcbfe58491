"""
Encrypted Disk Storage
=======================
Stores notice documents AES-256-GCM encrypted on disk, one blob per
document under ``<base>/encrypted-documents/<document_id>.enc``, with a
metadata row in ``encrypted_documents``.

Key material lives in the metadata row. Without a configured master key
it is stored in plaintext, exactly like rows written by the legacy
service: whoever can read the table can decrypt every blob. Setting
DOCUMENT_MASTER_KEY wraps each new key before it is persisted; existing
plaintext rows stay readable.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy import case, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from notice_vault.core.clock import utcnow
from notice_vault.models.encrypted_document import EncryptedDocument
from notice_vault.services import crypto
from notice_vault.services.audit import record_document_access
from notice_vault.services.blob_store import LocalBlobStore
from notice_vault.services.errors import NotFoundError, StorageWriteError, UnauthorizedError
from notice_vault.services.notice_registry import same_address

logger = logging.getLogger(__name__)

STORAGE_SUBDIR = "encrypted-documents"
MAX_ID_ATTEMPTS = 3


@dataclass(frozen=True)
class DocumentMetadata:
    notice_id: Optional[str] = None
    case_number: Optional[str] = None
    server_address: Optional[str] = None
    recipient_address: Optional[str] = None
    original_name: Optional[str] = None
    mime_type: str = "application/pdf"
    document_type: str = "document"


@dataclass(frozen=True)
class StoreResult:
    document_id: str
    file_path: str
    size: int
    url: str
    encrypted: bool = True


@dataclass(frozen=True)
class RetrievedDocument:
    data: bytes
    mime_type: str
    filename: Optional[str]
    metadata: dict


def generate_document_id() -> str:
    """``doc_<epoch millis>_<8 random bytes hex>``."""
    return f"doc_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


class EncryptedStorage:
    """Encrypted per-document disk storage with queryable metadata."""

    def __init__(
        self,
        db: Session,
        base_path: str,
        *,
        is_admin: Optional[Callable[[str], bool]] = None,
        master_key: Optional[str] = None,
    ):
        self.db = db
        self.blobs = LocalBlobStore(str(Path(base_path) / STORAGE_SUBDIR))
        self.is_admin = is_admin or (lambda address: False)
        self.master_key = master_key or None

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store(self, data: bytes, metadata: DocumentMetadata) -> StoreResult:
        """
        Encrypt *data*, write the blob, and persist its metadata row.

        Raises
        ------
        StorageWriteError
            The blob could not be written, or no unique id was found
            within MAX_ID_ATTEMPTS.
        """
        sealed = crypto.encrypt(data)
        stored_key = sealed.key
        if self.master_key:
            stored_key = crypto.wrap_key(sealed.key, self.master_key)

        for attempt in range(1, MAX_ID_ATTEMPTS + 1):
            document_id = generate_document_id()
            blob_key = f"{document_id}.enc"

            put = self.blobs.put(blob_key, sealed.encrypted_data)
            if not put.success:
                if put.conflict:
                    logger.warning("Document id collision on disk (%s), attempt %d", document_id, attempt)
                    continue
                raise StorageWriteError(f"Failed to write encrypted document: {put.error}")

            row = EncryptedDocument(
                document_id=document_id,
                notice_id=metadata.notice_id,
                case_number=metadata.case_number,
                server_address=metadata.server_address,
                recipient_address=metadata.recipient_address,
                document_type=metadata.document_type,
                file_path=put.path,
                file_size=put.size_bytes,
                ciphertext_sha256=put.sha256,
                mime_type=metadata.mime_type or "application/pdf",
                original_name=metadata.original_name,
                encryption_key=stored_key,
                encryption_iv=sealed.iv,
                auth_tag=sealed.auth_tag,
                created_at=utcnow(),
            )
            self.db.add(row)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                self.blobs.delete(blob_key)
                logger.warning("Document id collision in DB (%s), attempt %d", document_id, attempt)
                continue
            except SQLAlchemyError:
                self.db.rollback()
                self.blobs.delete(blob_key)
                raise

            logger.info(
                "Stored encrypted document id=%s notice=%s case=%s size=%d wrapped=%s",
                document_id,
                metadata.notice_id,
                metadata.case_number,
                put.size_bytes,
                bool(self.master_key),
            )
            return StoreResult(
                document_id=document_id,
                file_path=put.path,
                size=put.size_bytes,
                url=f"/api/documents/encrypted/{document_id}",
            )

        raise StorageWriteError(
            f"Could not allocate a unique document id after {MAX_ID_ATTEMPTS} attempts"
        )

    # ------------------------------------------------------------------
    # Retrieve
    # ------------------------------------------------------------------

    def retrieve(
        self,
        document_id: str,
        principal: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        access_token_hash: Optional[str] = None,
        document_token_id: Optional[str] = None,
    ) -> RetrievedDocument:
        """
        Decrypt a document for an authorized principal.

        The server, the recipient and approved process servers may read.
        A tag failure from the codec (``AuthenticationError``) propagates
        unchanged so a damaged blob is never mistaken for a denial.
        """
        doc = self.db.get(EncryptedDocument, document_id)
        if doc is None:
            raise NotFoundError("Document not found")

        authorized = (
            same_address(principal, doc.server_address)
            or same_address(principal, doc.recipient_address)
            or (bool(principal) and self.is_admin(principal))
        )
        if not authorized:
            logger.warning("Unauthorized read of %s by %s", document_id, principal)
            raise UnauthorizedError("Unauthorized access")

        got = self.blobs.get(Path(doc.file_path).name)
        if not got.success:
            logger.error("Encrypted payload missing for %s: %s", document_id, got.error)
            raise NotFoundError("Document not found")

        key_hex = crypto.unwrap_key(doc.encryption_key, self.master_key)
        plaintext = crypto.decrypt(got.data, key_hex)

        result = RetrievedDocument(
            data=plaintext,
            mime_type=doc.mime_type,
            filename=doc.original_name,
            metadata={
                "case_number": doc.case_number,
                "notice_id": doc.notice_id,
                "document_type": doc.document_type,
                "created_at": doc.created_at,
            },
        )

        doc.last_accessed = utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("Could not update last_accessed for %s: %s", document_id, exc)

        # Best-effort: a failed log write must not fail the read
        _ = record_document_access(
            self.db,
            accessed_by=principal,
            document_id=document_id,
            document_token_id=document_token_id,
            access_token_hash=access_token_hash,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        return result

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    def find_for_notice(self, notice_id: Optional[str]) -> Optional[str]:
        """Newest stored document for *notice_id*, preferring the full document over thumbnails."""
        if not notice_id:
            return None
        stmt = (
            select(EncryptedDocument.document_id)
            .where(EncryptedDocument.notice_id == notice_id)
            .order_by(
                case((EncryptedDocument.document_type == "document", 0), else_=1),
                EncryptedDocument.created_at.desc(),
                EncryptedDocument.document_id.desc(),
            )
            .limit(1)
        )
        return self.db.scalar(stmt)

    def get_metadata(self, document_id: str) -> Optional[dict]:
        """Metadata-only lookup: no decryption, no authorization."""
        doc = self.db.get(EncryptedDocument, document_id)
        return doc.public_metadata() if doc is not None else None
