"""Access control endpoints — recipient verification, public info, gated document, revoke."""

from __future__ import annotations

import base64
from typing import Optional

from fastapi import APIRouter, Depends, Request

from notice_vault.api.deps import access_token, client_ip, get_gate, user_agent
from notice_vault.api.schemas import (
    DocumentAccessInfo,
    DocumentResponse,
    PublicInfoResponse,
    RevokeRequest,
    RevokeResponse,
    VerifyRecipientRequest,
    VerifyRecipientResponse,
)
from notice_vault.services.access_control import AccessControlGate

router = APIRouter(prefix="/api/access", tags=["access"])


@router.post("/verify-recipient", response_model=VerifyRecipientResponse)
def verify_recipient(
    body: VerifyRecipientRequest,
    request: Request,
    gate: AccessControlGate = Depends(get_gate),
):
    result = gate.verify_recipient(
        body.walletAddress,
        body.alertTokenId,
        body.documentTokenId,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    return VerifyRecipientResponse(
        isRecipient=result.is_recipient,
        isServer=result.is_server,
        accessGranted=result.access_granted,
        accessToken=result.access_token,
        expiresAt=result.expires_at,
        publicInfo=result.public_info,
        message=result.message,
    )


@router.get("/public/{token_id}", response_model=PublicInfoResponse)
def public_info(token_id: str, gate: AccessControlGate = Depends(get_gate)):
    return PublicInfoResponse(publicInfo=gate.get_public_info(token_id))


@router.get("/document/{document_token_id}", response_model=DocumentResponse)
def gated_document(
    document_token_id: str,
    request: Request,
    token: Optional[str] = Depends(access_token),
    gate: AccessControlGate = Depends(get_gate),
):
    payload = gate.fetch_document(
        document_token_id,
        token,
        ip_address=client_ip(request),
        user_agent=user_agent(request),
    )
    encoded = base64.b64encode(payload.data).decode("ascii")
    return DocumentResponse(
        document={
            "documentUrl": f"data:{payload.mime_type};base64,{encoded}",
            "mimeType": payload.mime_type,
            "filename": payload.filename,
            "ipfsHash": payload.ipfs_hash,
            "documentHash": payload.document_hash,
            "pageCount": payload.page_count,
        },
        accessInfo=DocumentAccessInfo(
            walletAddress=payload.wallet_address,
            expiresAt=payload.expires_at,
        ),
    )


@router.post("/revoke", response_model=RevokeResponse)
def revoke(body: RevokeRequest, gate: AccessControlGate = Depends(get_gate)):
    if gate.revoke(body.accessToken):
        return RevokeResponse(success=True, message="Access token revoked")
    return RevokeResponse(success=False, message="Access token not found")
