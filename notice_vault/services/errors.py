"""Domain error taxonomy.

Each error carries the HTTP status the API layer answers with, so route
handlers never have to translate error kinds by message text.
"""

from __future__ import annotations


class NoticeVaultError(Exception):
    """Base class for all domain errors."""

    status_code = 500


class FormatError(NoticeVaultError):
    """Payload is not in the expected wire format (e.g. missing ``Salted__``)."""

    status_code = 400


class AuthenticationError(NoticeVaultError):
    """AES-GCM tag did not verify: wrong key or tampered ciphertext."""

    status_code = 500


class DecryptionError(NoticeVaultError):
    """Decryption failed for a reason other than tag verification."""

    status_code = 500


class NotFoundError(NoticeVaultError):
    status_code = 404


class UnauthorizedError(NoticeVaultError):
    """The requesting principal is not entitled to the resource."""

    status_code = 403


class TokenRequiredError(NoticeVaultError):
    status_code = 401


class TokenInvalidError(NoticeVaultError):
    """Access token unknown, expired, revoked or bound to another document."""

    status_code = 403


class AllGatewaysExhaustedError(NoticeVaultError):
    status_code = 502


class StorageWriteError(NoticeVaultError):
    """The encrypted blob could not be written to disk."""

    status_code = 500
