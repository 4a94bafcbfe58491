"""Celery worker for the IPFS recovery batch.

Run with a single-concurrency worker so that two batches never overlap:

    celery -A notice_vault.workers.celery_app worker --concurrency=1 -Q recovery
"""

import logging

from celery import Celery

from notice_vault.core.config import settings

celery_app = Celery(
    "notice_vault",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={"notice_vault.recover_ipfs_batch": {"queue": "recovery"}},
)

logger = logging.getLogger(__name__)


@celery_app.task(name="notice_vault.recover_ipfs_batch", bind=True, max_retries=0)
def recover_ipfs_batch(self, limit: int | None = None):
    """Run one recovery batch against its own engine and return the report."""
    from notice_vault.core.database import create_db_engine, make_session_factory
    from notice_vault.services.encrypted_storage import EncryptedStorage
    from notice_vault.services.notice_registry import NoticeRegistry
    from notice_vault.services.recovery import IpfsRecoveryPipeline

    engine = create_db_engine(settings.database_url)
    db = make_session_factory(engine)()
    try:
        registry = NoticeRegistry(db)
        storage = EncryptedStorage(
            db,
            settings.disk_mount_path,
            is_admin=registry.is_admin,
            master_key=settings.document_master_key,
        )
        report = IpfsRecoveryPipeline(db, storage).run_batch(limit=limit)
        logger.info("Task %s recovered %d/%d notices", self.request.id, report.successful, report.total)
        return report.to_dict()
    finally:
        db.close()
        engine.dispose()
