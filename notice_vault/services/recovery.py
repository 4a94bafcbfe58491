"""
IPFS Recovery Pipeline
=======================
Re-materializes documents of legacy notices whose only copy lives on IPFS
as a CryptoJS ``Salted__`` blob, storing each recovered asset through the
encrypted disk storage and recording the outcome on ``served_notices``.

Per notice:

  1. Download the blob through the gateway client.
  2. Require the CryptoJS prefix, decrypt with the notice's passphrase.
  3. Parse the JSON payload, extract assets (thumbnail, documents).
  4. Store each asset encrypted on disk.
  5. Write ``recovery_status`` / ``documents_recovered`` / ``recovery_date``.

Batches are serialized with a fixed delay between notices. A failing
notice is recorded and skipped; the batch carries on. Two batches must
not run concurrently against the same database: nothing locks the
selected rows.
"""

from __future__ import annotations

import json
import logging
import mimetypes
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notice_vault.core.clock import Clock, utcnow
from notice_vault.core.config import settings
from notice_vault.models.notice import NoticeComponent, ServedNotice
from notice_vault.services import crypto
from notice_vault.services.encrypted_storage import DocumentMetadata, EncryptedStorage
from notice_vault.services.errors import FormatError, NoticeVaultError
from notice_vault.services.ipfs import IpfsGatewayClient
from notice_vault.services.legacy_payload import RecoveredAsset, parse_legacy_payload

logger = logging.getLogger(__name__)

FALLBACK_SERVER_ADDRESS = "recovery"


@dataclass(frozen=True)
class PendingNotice:
    notice_id: str
    ipfs_hash: str
    encryption_key: str
    case_number: Optional[str] = None
    server_address: Optional[str] = None
    recipient_address: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RecoveryOutcome:
    success: bool
    notice_id: str
    thumbnail_recovered: bool = False
    document_recovered: bool = False
    document_ids: tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def status_text(self) -> str:
        if not self.success:
            return f"Failed: {self.error}"
        parts = []
        if self.thumbnail_recovered:
            parts.append("thumbnail")
        if self.document_recovered:
            parts.append("document")
        return "Recovered: " + ", ".join(parts)


@dataclass
class BatchReport:
    total: int = 0
    successful: int = 0
    failed: int = 0
    results: list[RecoveryOutcome] = field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1

    @property
    def success_rate(self) -> float:
        return (self.successful / self.total * 100.0) if self.total else 0.0

    def add(self, outcome: RecoveryOutcome) -> None:
        self.results.append(outcome)
        self.total += 1
        if outcome.success:
            self.successful += 1
        else:
            self.failed += 1

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "exit_code": self.exit_code,
            "results": [asdict(r) for r in self.results],
        }


def _filename_for(asset: RecoveredAsset, notice_id: str) -> str:
    if asset.name:
        return asset.name
    ext = mimetypes.guess_extension(asset.content.mime_type) or ".bin"
    return f"{asset.kind}-{notice_id}{ext}"


class IpfsRecoveryPipeline:
    """Select, recover and record legacy IPFS notices."""

    def __init__(
        self,
        db: Session,
        storage: EncryptedStorage,
        ipfs_client: Optional[IpfsGatewayClient] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.storage = storage
        self.ipfs = ipfs_client or IpfsGatewayClient()
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select_pending(self, limit: int = 10) -> list[PendingNotice]:
        """Unrecovered notices that have both an IPFS hash and a legacy key, newest first."""
        key_subq = (
            select(NoticeComponent.document_encryption_key)
            .where(
                NoticeComponent.notice_id == ServedNotice.notice_id,
                NoticeComponent.document_encryption_key.is_not(None),
            )
            .order_by(NoticeComponent.id)
            .limit(1)
            .correlate(ServedNotice)
            .scalar_subquery()
        )
        stmt = (
            select(ServedNotice, key_subq.label("encryption_key"))
            .where(
                ServedNotice.ipfs_hash.is_not(None),
                ServedNotice.ipfs_hash != "",
                key_subq.is_not(None),
                or_(
                    ServedNotice.documents_recovered.is_(None),
                    ServedNotice.documents_recovered.is_(False),
                ),
            )
            .order_by(ServedNotice.created_at.desc())
            .limit(limit)
        )
        return [
            PendingNotice(
                notice_id=notice.notice_id,
                ipfs_hash=notice.ipfs_hash,
                encryption_key=key,
                case_number=notice.case_number,
                server_address=notice.server_address,
                recipient_address=notice.recipient_address,
                created_at=notice.created_at,
            )
            for notice, key in self.db.execute(stmt).all()
        ]

    # ------------------------------------------------------------------
    # Single notice
    # ------------------------------------------------------------------

    def recover_document(self, notice: PendingNotice) -> RecoveryOutcome:
        """Recover one notice and record the outcome. Never raises for per-notice failures."""
        logger.info("Recovering notice %s (case %s) from %s", notice.notice_id, notice.case_number, notice.ipfs_hash)
        try:
            outcome = self._recover(notice)
        except (NoticeVaultError, SQLAlchemyError, OSError, ValueError) as exc:
            # json.JSONDecodeError is a ValueError
            self.db.rollback()
            logger.warning("Recovery failed for %s: %s", notice.notice_id, exc)
            outcome = RecoveryOutcome(success=False, notice_id=notice.notice_id, error=str(exc))

        self._record(notice.notice_id, outcome)
        return outcome

    def _recover(self, notice: PendingNotice) -> RecoveryOutcome:
        raw = self.ipfs.download(notice.ipfs_hash)
        text = raw.decode("ascii", errors="replace").strip()
        if not text.startswith(crypto.LEGACY_BASE64_PREFIX):
            raise FormatError("IPFS data is not in CryptoJS format")

        payload = parse_legacy_payload(json.loads(crypto.decrypt_legacy(text, notice.encryption_key)))
        if not payload.assets:
            raise FormatError("Decrypted payload contains no recoverable documents")
        logger.info("Payload for %s is %s with %d asset(s)", notice.notice_id, payload.shape.value, len(payload.assets))

        stored_ids = []
        thumbnail = document = False
        for asset in payload.assets:
            result = self.storage.store(
                asset.content.data,
                DocumentMetadata(
                    notice_id=notice.notice_id,
                    case_number=notice.case_number,
                    server_address=notice.server_address or FALLBACK_SERVER_ADDRESS,
                    recipient_address=notice.recipient_address,
                    original_name=_filename_for(asset, notice.notice_id),
                    mime_type=asset.content.mime_type,
                    document_type=asset.kind,
                ),
            )
            stored_ids.append(result.document_id)
            if asset.kind == "thumbnail":
                thumbnail = True
            else:
                document = True
            logger.info("Stored %s for %s as %s (%d bytes)", asset.kind, notice.notice_id, result.document_id, len(asset.content.data))

        return RecoveryOutcome(
            success=True,
            notice_id=notice.notice_id,
            thumbnail_recovered=thumbnail,
            document_recovered=document,
            document_ids=tuple(stored_ids),
        )

    def _record(self, notice_id: str, outcome: RecoveryOutcome) -> None:
        row = self.db.get(ServedNotice, notice_id)
        if row is None:
            logger.error("Served notice %s vanished before its outcome was recorded", notice_id)
            return
        row.documents_recovered = outcome.success
        row.recovery_date = self.clock()
        row.recovery_status = outcome.status_text
        self.db.commit()

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def run_batch(self, limit: Optional[int] = None, delay: Optional[float] = None) -> BatchReport:
        limit = limit if limit is not None else settings.recovery_batch_size
        delay = delay if delay is not None else settings.recovery_delay_seconds

        pending = self.select_pending(limit)
        logger.info("Found %d notice(s) to recover", len(pending))

        report = BatchReport()
        for notice in pending:
            report.add(self.recover_document(notice))
            # Spread gateway load
            self.sleep(delay)

        logger.info(
            "Recovery batch complete total=%d successful=%d failed=%d",
            report.total,
            report.successful,
            report.failed,
        )
        return report
