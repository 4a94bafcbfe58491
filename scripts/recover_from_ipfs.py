"""
IPFS Recovery CLI
==================
Recover legacy notice documents from IPFS into encrypted disk storage.

Usage:
  python scripts/recover_from_ipfs.py [--limit N] [--delay SECONDS] [--database-url URL]

Examples:
  # One batch with the configured defaults (10 notices, 1 s apart)
  python scripts/recover_from_ipfs.py

  # Against a specific database, larger batch
  python scripts/recover_from_ipfs.py --database-url postgresql+psycopg://... --limit 25

Exit code is 0 only when every selected notice was recovered. Schedule a
single cron entry; concurrent runs against one database are not safe.
"""

import argparse
import os
import sys
import time

# Ensure project root is on sys.path
PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, PROJECT_ROOT)

EXIT_FATAL = 2


def run_recovery(database_url: str, limit: int, delay: float) -> int:
    """Run one recovery batch and print a summary. Returns exit code."""
    from sqlalchemy.engine import make_url
    from sqlalchemy.exc import SQLAlchemyError

    from notice_vault.core.config import settings
    from notice_vault.core.database import create_db_engine, make_session_factory
    from notice_vault.core.logging import configure_logging
    from notice_vault.services.encrypted_storage import EncryptedStorage
    from notice_vault.services.notice_registry import NoticeRegistry
    from notice_vault.services.recovery import IpfsRecoveryPipeline

    configure_logging()
    print("Starting IPFS document recovery")
    print(f"  Database: {make_url(database_url).render_as_string(hide_password=True)}")
    print("=" * 60)

    engine = create_db_engine(database_url)
    db = make_session_factory(engine)()
    start = time.time()
    try:
        registry = NoticeRegistry(db)
        storage = EncryptedStorage(
            db,
            settings.disk_mount_path,
            is_admin=registry.is_admin,
            master_key=settings.document_master_key,
        )
        report = IpfsRecoveryPipeline(db, storage).run_batch(limit=limit, delay=delay)
    except SQLAlchemyError as exc:
        print(f"\n  Status: FATAL")
        print(f"  Error:  {exc}")
        return EXIT_FATAL
    finally:
        db.close()
        engine.dispose()
    elapsed = time.time() - start

    if report.total == 0:
        print("No notices need recovery")
        return 0

    print("\n" + "=" * 60)
    print("RECOVERY COMPLETE")
    print("=" * 60)
    print(f"  Total:        {report.total}")
    print(f"  Recovered:    {report.successful}")
    print(f"  Failed:       {report.failed}")
    print(f"  Success rate: {report.success_rate:.1f}%")
    print(f"  Time:         {elapsed:.1f}s")

    if report.failed:
        print("\nFailed notices:")
        for outcome in report.results:
            if not outcome.success:
                print(f"  - {outcome.notice_id}: {outcome.error}")

    return report.exit_code


def main():
    from notice_vault.core.config import settings

    parser = argparse.ArgumentParser(
        description="Recover legacy notice documents from IPFS",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.recovery_batch_size,
        help=f"Notices per batch (default: {settings.recovery_batch_size})",
    )
    parser.add_argument(
        "--delay",
        type=float,
        default=settings.recovery_delay_seconds,
        help=f"Seconds between notices (default: {settings.recovery_delay_seconds})",
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default=settings.database_url,
        help="Database URL (default: DATABASE_URL)",
    )
    args = parser.parse_args()

    if args.limit < 1:
        parser.error("--limit must be at least 1")

    sys.exit(run_recovery(args.database_url, args.limit, args.delay))


if __name__ == "__main__":
    main()
