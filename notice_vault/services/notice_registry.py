"""Read-only view of the notice registry and the approved process-server table."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from notice_vault.models.notice import NoticeComponent, ProcessServer

logger = logging.getLogger(__name__)


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Wallet addresses compare case-insensitively; missing never matches."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


class NoticeRegistry:
    """Lookups against ``notice_components`` and ``process_servers``."""

    def __init__(self, db: Session):
        self.db = db

    def lookup_notice(self, *token_ids: Optional[str]) -> Optional[NoticeComponent]:
        """
        Find the notice whose alert or document token id is any of *token_ids*.

        Mirrors the original lookup which accepted either NFT of the pair.
        """
        ids = [t for t in token_ids if t]
        if not ids:
            return None
        stmt = (
            select(NoticeComponent)
            .where(
                or_(
                    NoticeComponent.alert_token_id.in_(ids),
                    NoticeComponent.document_token_id.in_(ids),
                )
            )
            .order_by(NoticeComponent.id)
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def find_by_document_token(self, document_token_id: str) -> Optional[NoticeComponent]:
        stmt = select(NoticeComponent).where(
            NoticeComponent.document_token_id == document_token_id
        )
        return self.db.scalars(stmt).first()

    def is_admin(self, address: Optional[str]) -> bool:
        """True if *address* belongs to an approved process server."""
        if not address:
            return False
        stmt = select(func.count()).select_from(ProcessServer).where(
            func.lower(ProcessServer.wallet_address) == address.strip().lower(),
            ProcessServer.status == "approved",
        )
        return (self.db.scalar(stmt) or 0) > 0
