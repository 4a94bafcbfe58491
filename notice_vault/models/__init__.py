"""ORM models package — re-exports all models for Alembic auto-detection."""

from notice_vault.models.encrypted_document import EncryptedDocument  # noqa: F401
from notice_vault.models.access_token import AccessToken  # noqa: F401
from notice_vault.models.access_log import AccessAttempt, DocumentAccessLog  # noqa: F401
from notice_vault.models.notice import NoticeComponent, ProcessServer, ServedNotice  # noqa: F401
