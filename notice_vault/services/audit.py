"""
Access audit trail — append-only dual-write to DB + JSONL file.

Audit writes are best-effort by contract: every call returns an
``AuditResult`` and never raises for storage failures. Callers that do
not care about the outcome discard it explicitly (``_ = record_...``).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from notice_vault.core.clock import utcnow
from notice_vault.core.config import settings
from notice_vault.models.access_log import AccessAttempt, DocumentAccessLog

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditResult:
    ok: bool
    error: Optional[str] = None


def _append_jsonl(event_type: str, payload: dict, path: Optional[str] = None) -> None:
    """Append one JSON line (never truncate). Failures are logged, not raised."""
    target = Path(path or settings.audit_log_path)
    line = {"event_type": event_type, "payload": payload, "created_at": utcnow().isoformat()}
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        with open(target, "a", encoding="utf-8") as f:
            f.write(json.dumps(line, separators=(",", ":"), sort_keys=True, default=str) + "\n")
    except OSError as exc:
        # DB is authoritative
        logger.warning("Could not append to %s: %s", target, exc)


def _commit_row(db: Session, row, event_type: str, payload: dict) -> AuditResult:
    try:
        db.add(row)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Could not record %s: %s", event_type, exc)
        return AuditResult(ok=False, error=str(exc))

    _append_jsonl(event_type, payload)
    return AuditResult(ok=True)


def record_access_attempt(
    db: Session,
    *,
    wallet_address: Optional[str],
    alert_token_id: Optional[str],
    document_token_id: Optional[str],
    is_recipient: bool,
    is_server: bool,
    granted: bool,
    denial_reason: Optional[str],
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditResult:
    """Record one recipient/server verification attempt, granted or not."""
    row = AccessAttempt(
        wallet_address=wallet_address,
        alert_token_id=alert_token_id,
        document_token_id=document_token_id,
        is_recipient=is_recipient,
        is_server=is_server,
        granted=granted,
        denial_reason=denial_reason,
        ip_address=ip_address,
        user_agent=user_agent,
        attempted_at=utcnow(),
    )
    return _commit_row(
        db,
        row,
        "access.verify",
        {
            "wallet_address": wallet_address,
            "alert_token_id": alert_token_id,
            "document_token_id": document_token_id,
            "granted": granted,
            "denial_reason": denial_reason,
        },
    )


def record_document_access(
    db: Session,
    *,
    accessed_by: str,
    document_id: Optional[str] = None,
    document_token_id: Optional[str] = None,
    access_token_hash: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditResult:
    """
    Record one document read.

    Callers commit their own changes first: anything still pending on
    *db* is rolled back with the log row on failure.
    """
    row = DocumentAccessLog(
        document_id=document_id,
        document_token_id=document_token_id,
        accessed_by=accessed_by,
        access_token_hash=access_token_hash,
        ip_address=ip_address,
        user_agent=user_agent,
        accessed_at=utcnow(),
    )
    return _commit_row(
        db,
        row,
        "document.read",
        {
            "document_id": document_id,
            "document_token_id": document_token_id,
            "accessed_by": accessed_by,
        },
    )
