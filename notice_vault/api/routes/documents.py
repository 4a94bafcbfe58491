"""Encrypted document endpoints — upload, gated download, metadata."""

from __future__ import annotations

from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import Response

from notice_vault.api.deps import access_token, client_ip, get_gate, get_storage, user_agent
from notice_vault.api.schemas import DocumentMetadataResponse, UploadEncryptedResponse
from notice_vault.core.config import settings
from notice_vault.services.access_control import AccessControlGate
from notice_vault.services.encrypted_storage import DocumentMetadata, EncryptedStorage
from notice_vault.services.errors import NotFoundError

router = APIRouter(prefix="/api/documents", tags=["documents"])

UPLOAD_CHUNK_BYTES = 1024 * 1024


@router.post("/upload-encrypted", response_model=UploadEncryptedResponse)
async def upload_encrypted(
    document: Optional[UploadFile] = File(default=None),
    noticeId: Optional[str] = Form(default=None),
    caseNumber: Optional[str] = Form(default=None),
    serverAddress: Optional[str] = Form(default=None),
    recipientAddress: Optional[str] = Form(default=None),
    x_server_address: Optional[str] = Header(default=None),
    storage: EncryptedStorage = Depends(get_storage),
):
    if document is None:
        raise HTTPException(status_code=400, detail="No document provided")

    limit = settings.max_upload_bytes
    too_large = HTTPException(status_code=413, detail=f"Document exceeds {limit} bytes")
    if document.size is not None and document.size > limit:
        raise too_large

    buf = bytearray()
    while True:
        chunk = await document.read(UPLOAD_CHUNK_BYTES)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > limit:
            raise too_large
    if not buf:
        raise HTTPException(status_code=400, detail="No document provided")
    data = bytes(buf)

    result = storage.store(
        data,
        DocumentMetadata(
            notice_id=noticeId,
            case_number=caseNumber,
            server_address=serverAddress or x_server_address,
            recipient_address=recipientAddress,
            original_name=document.filename,
            mime_type=document.content_type or "application/pdf",
        ),
    )
    return UploadEncryptedResponse(documentId=result.document_id, url=result.url, size=result.size)


@router.get("/encrypted/{document_id}")
def download_encrypted(
    document_id: str,
    request: Request,
    token: Optional[str] = Depends(access_token),
    gate: AccessControlGate = Depends(get_gate),
):
    """Decrypted bytes for the wallet the access token was issued to."""
    row = gate.resolve_token(token)
    document = gate.storage.retrieve(
        document_id,
        row.wallet_address,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
        access_token_hash=row.token_hash,
    )
    gate.record_token_use(row)

    filename = quote(document.filename or f"{document_id}")
    return Response(
        content=document.data,
        media_type=document.mime_type,
        headers={"Content-Disposition": f"inline; filename*=UTF-8''{filename}"},
    )


@router.get("/encrypted/{document_id}/metadata", response_model=DocumentMetadataResponse)
def document_metadata(document_id: str, storage: EncryptedStorage = Depends(get_storage)):
    metadata = storage.get_metadata(document_id)
    if metadata is None:
        raise NotFoundError("Document not found")
    return DocumentMetadataResponse(metadata=metadata)
