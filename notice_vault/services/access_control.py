"""
Document Access Control
========================
Two-tier disclosure for served notices:

  - Public tier: anyone may read the alert-level facts of a notice
    (case number, notice type, agency, status, alert thumbnail).
  - Gated tier: the document itself is only released against a
    short-lived access token, and tokens are only ever minted for the
    notice's recipient or its process server.

Token lifecycle per (wallet, alert token):

    UNVERIFIED --verify--> GRANTED (1h) --expiry / revoke--> EXPIRED / REVOKED

Re-verification always mints a fresh token and resets the clock.
Every verification attempt is audit-logged, granted or denied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from notice_vault.core.clock import Clock, ensure_aware, utcnow
from notice_vault.models.access_token import TOKEN_TTL, AccessToken
from notice_vault.models.notice import NoticeComponent
from notice_vault.services.audit import record_access_attempt
from notice_vault.services.encrypted_storage import EncryptedStorage
from notice_vault.services.errors import NotFoundError, TokenInvalidError, TokenRequiredError
from notice_vault.services.notice_registry import NoticeRegistry, same_address

logger = logging.getLogger(__name__)

DENIAL_NOT_RECIPIENT = "not_recipient"
DENIAL_PROCESS_SERVER = "process_server_access"


@dataclass(frozen=True)
class VerificationResult:
    is_recipient: bool
    is_server: bool
    access_granted: bool
    access_token: Optional[str]
    expires_at: Optional[datetime]
    public_info: dict = field(default_factory=dict)
    message: str = ""


@dataclass(frozen=True)
class DocumentPayload:
    data: bytes
    mime_type: str
    filename: Optional[str]
    ipfs_hash: Optional[str]
    document_hash: Optional[str]
    page_count: Optional[int]
    wallet_address: str
    expires_at: datetime


def _public_fields(notice: NoticeComponent) -> dict:
    thumbnail = None
    if notice.alert_thumbnail_data:
        mime = notice.alert_thumbnail_mime_type or "image/png"
        thumbnail = f"data:{mime};base64,{notice.alert_thumbnail_data}"
    return {
        "notice_id": notice.notice_id,
        "alert_token_id": notice.alert_token_id,
        "document_token_id": notice.document_token_id,
        "case_number": notice.case_number,
        "notice_type": notice.notice_type,
        "issuing_agency": notice.issuing_agency,
        "server_address": notice.server_address,
        "status": notice.status,
        "public_text": notice.public_text,
        "created_at": notice.created_at,
        "alert_thumbnail": thumbnail,
    }


class AccessControlGate:
    """Issues, checks and revokes document access tokens."""

    def __init__(
        self,
        db: Session,
        storage: EncryptedStorage,
        registry: Optional[NoticeRegistry] = None,
        *,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.storage = storage
        self.registry = registry or NoticeRegistry(db)
        self.clock = clock

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_recipient(
        self,
        wallet_address: str,
        alert_token_id: str,
        document_token_id: Optional[str] = None,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> VerificationResult:
        """
        Check *wallet_address* against the notice's recipient and server.

        Raises
        ------
        NotFoundError
            Neither token id belongs to a known notice.
        """
        notice = self.registry.lookup_notice(alert_token_id, document_token_id)
        if notice is None:
            raise NotFoundError("Notice not found")
        pair = {notice.alert_token_id, notice.document_token_id}
        if any(t and t not in pair for t in (alert_token_id, document_token_id)):
            logger.warning(
                "Token ids alert=%s document=%s span more than one notice",
                alert_token_id,
                document_token_id,
            )
            raise NotFoundError("Notice not found")

        is_recipient = same_address(wallet_address, notice.recipient_address)
        is_server = same_address(wallet_address, notice.server_address)
        granted = is_recipient or is_server

        raw_token = None
        expires_at = None
        if granted:
            raw_token, expires_at = self._issue_token(
                wallet_address, alert_token_id, notice.document_token_id
            )

        if is_server:
            denial_reason = DENIAL_PROCESS_SERVER
        elif is_recipient:
            denial_reason = None
        else:
            denial_reason = DENIAL_NOT_RECIPIENT

        _ = record_access_attempt(
            self.db,
            wallet_address=wallet_address,
            alert_token_id=alert_token_id,
            document_token_id=document_token_id,
            is_recipient=is_recipient,
            is_server=is_server,
            granted=granted,
            denial_reason=denial_reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info(
            "Access check wallet=%s alert=%s recipient=%s server=%s granted=%s",
            wallet_address,
            alert_token_id,
            is_recipient,
            is_server,
            granted,
        )

        if is_recipient:
            message = "Access granted - you are the recipient"
        elif is_server:
            message = "Access granted - you are the process server"
        else:
            message = (
                "Access denied - you are not the recipient or server. "
                "You can only view public notice information."
            )

        return VerificationResult(
            is_recipient=is_recipient,
            is_server=is_server,
            access_granted=granted,
            access_token=raw_token,
            expires_at=expires_at,
            public_info=_public_fields(notice),
            message=message,
        )

    def _issue_token(
        self, wallet_address: str, alert_token_id: str, document_token_id: Optional[str]
    ) -> tuple[str, datetime]:
        """Mint a token and upsert it over any prior row for (wallet, alert)."""
        raw_token = AccessToken.generate_token()
        now = self.clock()
        expires_at = now + TOKEN_TTL
        values = {
            "token_hash": AccessToken.hash_token(raw_token),
            "wallet_address": wallet_address,
            "alert_token_id": alert_token_id,
            "document_token_id": document_token_id,
            "created_at": now,
            "expires_at": expires_at,
            "revoked": False,
            "usage_count": 0,
            "last_used_at": None,
        }

        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            insert = None

        if insert is not None:
            stmt = insert(AccessToken).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["wallet_address", "alert_token_id"],
                set_={
                    name: getattr(stmt.excluded, name)
                    for name in values
                    if name not in ("wallet_address", "alert_token_id")
                },
            )
            self.db.execute(stmt)
        else:
            existing = self.db.scalars(
                select(AccessToken).where(
                    AccessToken.wallet_address == wallet_address,
                    AccessToken.alert_token_id == alert_token_id,
                )
            ).first()
            if existing is not None:
                self.db.delete(existing)
                self.db.flush()
            self.db.add(AccessToken(**values))

        self.db.commit()
        # The upsert bypassed the identity map; drop any stale token objects
        self.db.expire_all()
        return raw_token, expires_at

    # ------------------------------------------------------------------
    # Public tier
    # ------------------------------------------------------------------

    def get_public_info(self, token_id: str) -> dict:
        """Non-confidential notice facts, identical for every caller."""
        notice = self.registry.lookup_notice(token_id)
        if notice is None:
            raise NotFoundError("Notice not found")
        return _public_fields(notice)

    # ------------------------------------------------------------------
    # Gated tier
    # ------------------------------------------------------------------

    def resolve_token(self, raw_token: Optional[str]) -> AccessToken:
        """
        Look up a token and check it is active.

        Raises
        ------
        TokenRequiredError
            No token presented.
        TokenInvalidError
            Unknown, expired or revoked.
        """
        if not raw_token:
            raise TokenRequiredError("Access token required. Please verify your wallet first.")

        row = self.db.get(AccessToken, AccessToken.hash_token(raw_token))
        if row is None or not row.is_valid(self.clock()):
            raise TokenInvalidError(
                "Invalid or expired access token. Please verify your wallet again."
            )
        return row

    def fetch_document(
        self,
        document_token_id: str,
        raw_token: Optional[str],
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> DocumentPayload:
        """Release the decrypted document bound to *document_token_id*."""
        row = self.resolve_token(raw_token)
        if row.document_token_id != document_token_id:
            raise TokenInvalidError(
                "Invalid or expired access token. Please verify your wallet again."
            )

        notice = self.registry.find_by_document_token(document_token_id)
        if notice is None:
            raise NotFoundError("Document not found")

        # An explicit link on the notice wins over the newest upload for it
        if notice.document_id and self.storage.get_metadata(notice.document_id) is not None:
            document_id = notice.document_id
        else:
            document_id = self.storage.find_for_notice(notice.notice_id)
        if document_id is None:
            raise NotFoundError("Document not found")

        document = self.storage.retrieve(
            document_id,
            row.wallet_address,
            ip_address=ip_address,
            user_agent=user_agent,
            access_token_hash=row.token_hash,
            document_token_id=document_token_id,
        )

        row.record_use(self.clock())
        self.db.commit()

        logger.info(
            "Document released token=%s wallet=%s usage_count=%d",
            document_token_id,
            row.wallet_address,
            row.usage_count,
        )

        return DocumentPayload(
            data=document.data,
            mime_type=document.mime_type,
            filename=document.filename,
            ipfs_hash=notice.ipfs_hash,
            document_hash=notice.document_hash,
            page_count=notice.page_count,
            wallet_address=row.wallet_address,
            expires_at=ensure_aware(row.expires_at),
        )

    def record_token_use(self, row: AccessToken) -> None:
        row.record_use(self.clock())
        self.db.commit()

    # ------------------------------------------------------------------
    # Revoke
    # ------------------------------------------------------------------

    def revoke(self, raw_token: str) -> bool:
        """
        Revoke a token immediately. Idempotent.

        Returns True if the token exists (revoked now or earlier).
        """
        if not raw_token:
            return False
        row = self.db.get(AccessToken, AccessToken.hash_token(raw_token))
        if row is None:
            return False
        if not row.revoked:
            row.revoked = True
            row.expires_at = self.clock()
            self.db.commit()
            logger.info("Access token revoked wallet=%s alert=%s", row.wallet_address, row.alert_token_id)
        return True
