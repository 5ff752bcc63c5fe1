from __future__ import annotations

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, status

from app.schemas.access_code import AccessCodeRequest, AccessCodeResponse, AccessCodeRevokeResponse
from app.services.access_code_service import AccessCodeService
from app.services.ttlock_service import GrantFault, TTLockService, get_ttlock_service
from app.stores.transaction_store import TransactionStore, get_transaction_store

logger = logging.getLogger(__name__)

router = APIRouter(tags=["ttlock"])

FAULT_STATUS: Dict[GrantFault, int] = {
    GrantFault.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    GrantFault.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    GrantFault.CONFLICT: status.HTTP_409_CONFLICT,
    GrantFault.CONFIGURATION: 422,
    GrantFault.AUTHENTICATION: status.HTTP_502_BAD_GATEWAY,
    GrantFault.VENDOR: status.HTTP_502_BAD_GATEWAY,
    GrantFault.PERSISTENCE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_requester_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity as forwarded by the upstream auth middleware."""

    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return x_user_id


def get_access_code_service(
    store: TransactionStore = Depends(get_transaction_store),
    ttlock_service: TTLockService = Depends(get_ttlock_service),
) -> AccessCodeService:
    return AccessCodeService(store, ttlock_service)


def _require_transaction_id(payload: AccessCodeRequest) -> str:
    transaction_id = (payload.transaction_id or "").strip()
    if not transaction_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing transactionId")
    return transaction_id


def _require_configured(access_codes: AccessCodeService) -> None:
    if not access_codes.ttlock_service.is_configured():
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="TTLock is not configured")


@router.post("/ttlock-create-pin", response_model=AccessCodeResponse)
async def create_pin(
    payload: AccessCodeRequest,
    requester_id: str = Depends(get_requester_id),
    access_codes: AccessCodeService = Depends(get_access_code_service),
) -> AccessCodeResponse:
    """Issue a keypad code for an accepted booking. The code is only ever returned here."""

    transaction_id = _require_transaction_id(payload)
    _require_configured(access_codes)

    try:
        outcome = await access_codes.grant_for_booking(transaction_id, requester_id=requester_id)
    except Exception as exc:
        logger.exception("TTLock PIN creation failed", extra={"transaction_id": transaction_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create access code",
        ) from exc

    if not outcome.success:
        raise HTTPException(
            status_code=FAULT_STATUS.get(outcome.fault, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=outcome.error or "Failed to create access code",
        )

    return AccessCodeResponse(
        pin=outcome.pin,
        lock_id=outcome.lock_id,
        start_date=outcome.start_date,
        end_date=outcome.end_date,
    )


@router.post("/ttlock-revoke-pin", response_model=AccessCodeRevokeResponse)
async def revoke_pin(
    payload: AccessCodeRequest,
    requester_id: str = Depends(get_requester_id),
    access_codes: AccessCodeService = Depends(get_access_code_service),
) -> AccessCodeRevokeResponse:
    transaction_id = _require_transaction_id(payload)
    _require_configured(access_codes)

    try:
        outcome = await access_codes.revoke_for_booking(transaction_id, requester_id=requester_id)
    except Exception as exc:
        logger.exception("TTLock PIN revocation failed", extra={"transaction_id": transaction_id})
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to revoke access code",
        ) from exc

    if not outcome.success:
        raise HTTPException(
            status_code=FAULT_STATUS.get(outcome.fault, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=outcome.error or "Failed to revoke access code",
        )

    return AccessCodeRevokeResponse(revoked=outcome.revoked)
