from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple, Union

from app.services.ttlock_service import (
    DEFAULT_REGISTER_ERROR,
    GrantFault,
    RegisterResult,
    TTLockService,
    ensure_utc,
)
from app.stores.grant_leases import GrantLeaseRegistry, LeaseUnavailableError, grant_leases
from app.stores.transaction_store import TransactionContext, TransactionNotFoundError, TransactionStore
from app.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

METADATA_KEY = "ttlock"
DEFAULT_GUEST_NAME = "Guest"


@dataclass
class GrantOutcome:
    success: bool
    pin: Optional[str] = field(default=None, repr=False)
    lock_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    error: Optional[str] = None
    fault: Optional[GrantFault] = None

    @classmethod
    def failure(cls, fault: GrantFault, error: str) -> "GrantOutcome":
        return cls(success=False, error=error, fault=fault)


@dataclass
class RevokeOutcome:
    success: bool
    revoked: bool = False
    error: Optional[str] = None
    fault: Optional[GrantFault] = None

    @classmethod
    def failure(cls, fault: GrantFault, error: str) -> "RevokeOutcome":
        return cls(success=False, error=error, fault=fault)


def isoformat_utc(value: datetime) -> str:
    return ensure_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_grant_record(result: RegisterResult, created_at: datetime) -> Dict[str, Any]:
    """The durable form of a grant. The passcode itself is deliberately absent."""

    return {
        "lockId": result.lock_id,
        "keyboardPwdId": result.keyboard_pwd_id,
        "startDate": isoformat_utc(result.start_date),
        "endDate": isoformat_utc(result.end_date),
        "createdAt": isoformat_utc(created_at),
    }


class AccessCodeService:
    """Issues a lock passcode for a booking and records the grant on its transaction."""

    def __init__(
        self,
        store: TransactionStore,
        ttlock_service: TTLockService,
        leases: GrantLeaseRegistry | None = None,
        settings: Settings | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.ttlock_service = ttlock_service
        self.leases = leases or grant_leases
        self.settings = settings or get_settings()
        self._now = now

    async def grant_for_booking(self, transaction_id: str, requester_id: Optional[str] = None) -> GrantOutcome:
        # The lease covers the read too, so the recorded grant seen here is the latest one.
        try:
            async with self.leases.hold(transaction_id):
                return await self._grant_locked(transaction_id, requester_id)
        except LeaseUnavailableError:
            return GrantOutcome.failure(GrantFault.CONFLICT, "Access code generation already in progress")

    async def revoke_for_booking(self, transaction_id: str, requester_id: Optional[str] = None) -> RevokeOutcome:
        try:
            async with self.leases.hold(transaction_id):
                return await self._revoke_locked(transaction_id, requester_id)
        except LeaseUnavailableError:
            return RevokeOutcome.failure(GrantFault.CONFLICT, "Access code generation already in progress")

    async def _grant_locked(self, transaction_id: str, requester_id: Optional[str]) -> GrantOutcome:
        try:
            context = await self.store.fetch_transaction(transaction_id)
        except TransactionNotFoundError:
            return GrantOutcome.failure(GrantFault.NOT_FOUND, "Transaction not found")

        if requester_id is not None:
            transaction = context.transaction
            if transaction.customer_id != requester_id:
                return GrantOutcome.failure(GrantFault.FORBIDDEN, "Only the guest can generate an access code")
            if not transaction.is_accepted:
                return GrantOutcome.failure(GrantFault.CONFLICT, "Booking has not been accepted")

        resolved = self._resolve_booking(context)
        if isinstance(resolved, str):
            logger.warning(
                "Cannot issue access code",
                extra={"transaction_id": transaction_id, "reason": resolved},
            )
            return GrantOutcome.failure(GrantFault.CONFIGURATION, resolved)
        lock_id, start_date, end_date = resolved

        return await self._register_and_record(context, lock_id, start_date, end_date)

    async def _revoke_locked(self, transaction_id: str, requester_id: Optional[str]) -> RevokeOutcome:
        try:
            context = await self.store.fetch_transaction(transaction_id)
        except TransactionNotFoundError:
            return RevokeOutcome.failure(GrantFault.NOT_FOUND, "Transaction not found")

        transaction = context.transaction
        if requester_id is not None and requester_id not in (transaction.customer_id, transaction.provider_id):
            return RevokeOutcome.failure(GrantFault.FORBIDDEN, "Not a party to this transaction")

        grant = context.metadata.get(METADATA_KEY) or {}
        if not grant.get("lockId") or grant.get("keyboardPwdId") in (None, ""):
            return RevokeOutcome(success=True, revoked=False)

        if not await self.ttlock_service.revoke(grant["lockId"], grant["keyboardPwdId"]):
            return RevokeOutcome.failure(GrantFault.VENDOR, "Failed to revoke access code")
        try:
            await self.store.update_transaction_metadata(transaction_id, {METADATA_KEY: None})
        except Exception:
            logger.exception(
                "Vendor passcode deleted but grant record could not be cleared",
                extra={
                    "transaction_id": transaction_id,
                    "lock_id": grant["lockId"],
                    "keyboard_pwd_id": grant["keyboardPwdId"],
                },
            )
            return RevokeOutcome.failure(GrantFault.PERSISTENCE, "Failed to clear access code record")

        logger.info("Access code revoked", extra={"transaction_id": transaction_id, "lock_id": grant["lockId"]})
        return RevokeOutcome(success=True, revoked=True)

    def _resolve_booking(self, context: TransactionContext) -> Union[str, Tuple[str, datetime, datetime]]:
        if context.listing is None:
            return "Listing not found in transaction"
        if context.booking is None:
            return "Booking not found in transaction"
        lock_id = context.listing.lock_id
        if not lock_id:
            return "Lock ID not configured for this listing"
        start, end = context.booking.start, context.booking.end
        if start is None or end is None:
            return "Booking dates not found"
        start, end = ensure_utc(start), ensure_utc(end)
        if start >= end:
            return "Booking dates are invalid"
        return lock_id, start, end

    @staticmethod
    def _guest_label(context: TransactionContext) -> str:
        name = context.customer.display_name if context.customer is not None else None
        return f"Booking - {name or DEFAULT_GUEST_NAME}"

    async def _register_and_record(
        self,
        context: TransactionContext,
        lock_id: str,
        start_date: datetime,
        end_date: datetime,
    ) -> GrantOutcome:
        transaction_id = context.transaction.id
        previous = context.metadata.get(METADATA_KEY) or {}

        result = await self.ttlock_service.register(lock_id, start_date, end_date, self._guest_label(context))
        if not result.success:
            return GrantOutcome.failure(result.fault or GrantFault.VENDOR, result.error or DEFAULT_REGISTER_ERROR)

        record = build_grant_record(result, self._now())
        try:
            await self.store.update_transaction_metadata(transaction_id, {METADATA_KEY: record})
        except Exception:
            logger.exception(
                "Vendor passcode created but grant could not be recorded; reconcile manually",
                extra={
                    "transaction_id": transaction_id,
                    "lock_id": result.lock_id,
                    "keyboard_pwd_id": result.keyboard_pwd_id,
                },
            )
            if self.settings.ttlock_revoke_on_persist_failure:
                revoked = await self.ttlock_service.revoke(result.lock_id, result.keyboard_pwd_id)
                logger.warning(
                    "Rolled back unrecorded vendor passcode" if revoked else "Rollback of unrecorded vendor passcode failed",
                    extra={"transaction_id": transaction_id, "keyboard_pwd_id": result.keyboard_pwd_id},
                )
            return GrantOutcome.failure(GrantFault.PERSISTENCE, "Failed to record access code")

        await self._revoke_replaced(transaction_id, previous, record)

        logger.info(
            "Access code issued",
            extra={"transaction_id": transaction_id, "lock_id": lock_id, "keyboard_pwd_id": result.keyboard_pwd_id},
        )
        return GrantOutcome(
            success=True,
            pin=result.pin,
            lock_id=result.lock_id,
            start_date=start_date,
            end_date=end_date,
        )

    async def _revoke_replaced(self, transaction_id: str, previous: Dict[str, Any], current: Dict[str, Any]) -> None:
        old_id = previous.get("keyboardPwdId")
        if old_id in (None, "") or not previous.get("lockId") or old_id == current["keyboardPwdId"]:
            return
        if not await self.ttlock_service.revoke(previous["lockId"], old_id):
            logger.warning(
                "Replaced passcode could not be deleted on the lock",
                extra={"transaction_id": transaction_id, "lock_id": previous["lockId"], "keyboard_pwd_id": old_id},
            )
