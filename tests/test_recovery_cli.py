"""Recovery drivers — the cron CLI script and the Celery task."""

from __future__ import annotations

import importlib.util
from pathlib import Path
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from notice_vault.core.config import settings
from notice_vault.core.database import Base
from notice_vault.models.notice import NoticeComponent, ServedNotice
from notice_vault.services.errors import AllGatewaysExhaustedError

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "recover_from_ipfs.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("recover_from_ipfs", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


class _DeadGateways:
    def download(self, ipfs_hash):
        raise AllGatewaysExhaustedError("Failed to download from all IPFS gateways: test")


@pytest.fixture()
def file_db(tmp_path, monkeypatch) -> str:
    """A throwaway SQLite file database with the schema applied."""
    url = f"sqlite:///{tmp_path / 'recovery.db'}"
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    engine.dispose()
    monkeypatch.setattr(settings, "disk_mount_path", str(tmp_path / "data"))
    return url


def _add_pending(url: str) -> None:
    engine = create_engine(url)
    with Session(engine) as session:
        session.add(ServedNotice(notice_id="n-1", ipfs_hash="QmHash", server_address="TServer"))
        session.add(NoticeComponent(notice_id="n-1", document_encryption_key="pass"))
        session.commit()
    engine.dispose()


class TestCli:
    def test_nothing_to_recover(self, file_db, capsys):
        assert _load_script().run_recovery(file_db, limit=10, delay=0.0) == 0
        assert "No notices need recovery" in capsys.readouterr().out

    def test_failed_notice_sets_exit_code(self, file_db, capsys):
        _add_pending(file_db)
        with patch("notice_vault.services.recovery.IpfsGatewayClient", _DeadGateways):
            code = _load_script().run_recovery(file_db, limit=10, delay=0.0)
        out = capsys.readouterr().out
        assert code == 1
        assert "Failed:       1" in out
        assert "n-1" in out


class TestCeleryTask:
    def test_task_returns_report(self, file_db, monkeypatch):
        from notice_vault.workers.celery_app import recover_ipfs_batch

        _add_pending(file_db)
        monkeypatch.setattr(settings, "database_url", file_db)
        monkeypatch.setattr(settings, "recovery_delay_seconds", 0.0)
        with patch("notice_vault.services.recovery.IpfsGatewayClient", _DeadGateways):
            report = recover_ipfs_batch(limit=5)
        assert report["total"] == 1
        assert report["failed"] == 1
        assert report["exit_code"] == 1
