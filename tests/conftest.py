"""Pytest configuration — in-memory SQLite test database & FastAPI TestClient."""

from __future__ import annotations

import os
import tempfile
from typing import Generator

import pytest

_TMP_ROOT = tempfile.mkdtemp(prefix="notice-vault-tests-")

# Override env BEFORE importing app modules so Settings picks up test values.
os.environ.update(
    {
        "DATABASE_URL": "sqlite://",
        "REDIS_URL": "redis://localhost:6379/0",
        "RUN_MIGRATIONS_ON_STARTUP": "false",
        "DISK_MOUNT_PATH": os.path.join(_TMP_ROOT, "data"),
        "AUDIT_LOG_PATH": os.path.join(_TMP_ROOT, "audit", "audit.jsonl"),
        "DOCUMENT_MASTER_KEY": "",
        "APP_ENV": "test",
    }
)

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from notice_vault.api.deps import get_storage  # noqa: E402
from notice_vault.core.database import Base, get_db  # noqa: E402
from notice_vault.main import app  # noqa: E402

# ── Force all models to register on Base.metadata ──────────────────
import notice_vault.models  # noqa: E402, F401
from notice_vault.models.notice import NoticeComponent, ProcessServer  # noqa: E402
from notice_vault.services.encrypted_storage import EncryptedStorage  # noqa: E402
from notice_vault.services.notice_registry import NoticeRegistry  # noqa: E402

from wallets import ADMIN, ALERT_TOKEN, DOCUMENT_TOKEN, RECIPIENT, SERVER  # noqa: E402

# ── In-memory SQLite engine (one shared connection) ────────────────

_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    echo=False,
)

_TestSession = sessionmaker(bind=_engine, class_=Session, expire_on_commit=False)


@pytest.fixture(autouse=True)
def _create_tables():
    """Create all tables before each test and drop after."""
    Base.metadata.create_all(bind=_engine)
    yield
    Base.metadata.drop_all(bind=_engine)


@pytest.fixture()
def db() -> Generator[Session, None, None]:
    """Yield a test DB session."""
    session = _TestSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def registry(db: Session) -> NoticeRegistry:
    return NoticeRegistry(db)


@pytest.fixture()
def storage(db: Session, registry: NoticeRegistry, tmp_path) -> EncryptedStorage:
    """Encrypted storage rooted in a per-test directory."""
    return EncryptedStorage(db, str(tmp_path), is_admin=registry.is_admin)


@pytest.fixture()
def admin(db: Session) -> str:
    db.add(ProcessServer(wallet_address=ADMIN, name="Approved Server", status="approved"))
    db.commit()
    return ADMIN


@pytest.fixture()
def sample_pdf() -> bytes:
    """A 1 KiB PDF-shaped payload."""
    head = b"%PDF-1.4\n% notice of service\n"
    tail = b"\n%%EOF\n"
    return head + b"0" * (1024 - len(head) - len(tail)) + tail


@pytest.fixture()
def stored_document(storage: EncryptedStorage, sample_pdf: bytes):
    """Document stored for SERVER -> RECIPIENT."""
    from notice_vault.services.encrypted_storage import DocumentMetadata

    return storage.store(
        sample_pdf,
        DocumentMetadata(
            notice_id="notice-1",
            case_number="24-CV-001",
            server_address=SERVER,
            recipient_address=RECIPIENT,
            original_name="summons.pdf",
        ),
    )


@pytest.fixture()
def sample_notice(db: Session, stored_document) -> NoticeComponent:
    """Alert/document NFT pair whose document lives in encrypted storage."""
    notice = NoticeComponent(
        notice_id="notice-1",
        alert_token_id=ALERT_TOKEN,
        document_token_id=DOCUMENT_TOKEN,
        recipient_address=RECIPIENT,
        server_address=SERVER,
        case_number="24-CV-001",
        notice_type="Summons",
        issuing_agency="Superior Court",
        status="served",
        public_text="You have been served.",
        alert_thumbnail_data="iVBORw0KGgo=",
        alert_thumbnail_mime_type="image/png",
        ipfs_hash="QmDocumentHash",
        document_hash="0xabc123",
        page_count=3,
    )
    db.add(notice)
    db.commit()
    return notice


@pytest.fixture()
def client(db: Session, storage: EncryptedStorage) -> Generator[TestClient, None, None]:
    """FastAPI TestClient wired to the in-memory DB and per-test storage."""

    def _override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_storage] = lambda: storage

    with TestClient(app, raise_server_exceptions=False) as tc:
        yield tc

    app.dependency_overrides.clear()
