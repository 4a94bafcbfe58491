"""FastAPI dependencies that assemble the per-request service graph."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Header, Query, Request
from sqlalchemy.orm import Session

from notice_vault.core.config import settings
from notice_vault.core.database import get_db
from notice_vault.services.access_control import AccessControlGate
from notice_vault.services.encrypted_storage import EncryptedStorage
from notice_vault.services.notice_registry import NoticeRegistry


def get_registry(db: Session = Depends(get_db)) -> NoticeRegistry:
    return NoticeRegistry(db)


def get_storage(
    db: Session = Depends(get_db),
    registry: NoticeRegistry = Depends(get_registry),
) -> EncryptedStorage:
    return EncryptedStorage(
        db,
        settings.disk_mount_path,
        is_admin=registry.is_admin,
        master_key=settings.document_master_key,
    )


def get_gate(
    db: Session = Depends(get_db),
    storage: EncryptedStorage = Depends(get_storage),
    registry: NoticeRegistry = Depends(get_registry),
) -> AccessControlGate:
    return AccessControlGate(db, storage, registry)


def access_token(
    x_access_token: Optional[str] = Header(default=None),
    token: Optional[str] = Query(default=None),
) -> Optional[str]:
    """Bearer token from the ``X-Access-Token`` header, else the ``token`` query."""
    return x_access_token or token


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")
