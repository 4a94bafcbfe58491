"""Pydantic request / response schemas for the API layer.

Field names follow the camelCase wire format existing clients send.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


# ── Encrypted documents ──────────────────────────────────────────────


class UploadEncryptedResponse(BaseModel):
    success: bool = True
    documentId: str
    url: str
    size: int
    encrypted: bool = True
    message: str = "Document encrypted and stored securely"


class DocumentMetadataOut(BaseModel):
    document_id: str
    notice_id: str | None = None
    case_number: str | None = None
    document_type: str
    mime_type: str
    original_name: str | None = None
    file_size: int
    created_at: datetime | None = None
    last_accessed: datetime | None = None


class DocumentMetadataResponse(BaseModel):
    success: bool = True
    metadata: DocumentMetadataOut


# ── Access control ───────────────────────────────────────────────────


class VerifyRecipientRequest(BaseModel):
    walletAddress: str = Field(..., min_length=1, max_length=255)
    alertTokenId: str = Field(..., min_length=1, max_length=255)
    documentTokenId: str | None = Field(default=None, max_length=255)


class VerifyRecipientResponse(BaseModel):
    success: bool = True
    isRecipient: bool
    isServer: bool
    accessGranted: bool
    accessToken: str | None = None
    expiresAt: datetime | None = None
    publicInfo: dict[str, Any]
    message: str


class PublicInfoResponse(BaseModel):
    success: bool = True
    publicInfo: dict[str, Any]


class DocumentAccessInfo(BaseModel):
    walletAddress: str
    expiresAt: datetime


class DocumentResponse(BaseModel):
    success: bool = True
    document: dict[str, Any]
    accessInfo: DocumentAccessInfo


class RevokeRequest(BaseModel):
    accessToken: str = Field(..., min_length=1)


class RevokeResponse(BaseModel):
    success: bool
    message: str
