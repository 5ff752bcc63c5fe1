from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

import httpx

from app.services.pin_generator import PinGenerator
from app.services.ttlock_auth import TTLockAuthError, TTLockTokenProvider
from app.utils.config import Settings, get_settings

logger = logging.getLogger(__name__)

DEFAULT_REGISTER_ERROR = "Failed to create PIN"


class GrantFault(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    VENDOR = "vendor"
    PERSISTENCE = "persistence"


class RevokeStatus(str, Enum):
    OK = "ok"
    VENDOR_ERROR = "vendor_error"
    TRANSPORT_ERROR = "transport_error"
    AUTH_ERROR = "auth_error"
    INVALID_REQUEST = "invalid_request"


@dataclass
class RegisterResult:
    success: bool
    pin: Optional[str] = field(default=None, repr=False)
    lock_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    keyboard_pwd_id: Optional[Any] = None
    error: Optional[str] = None
    fault: Optional[GrantFault] = None


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    value = ensure_utc(value)
    delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta.days * 86400 + delta.seconds) * 1000 + delta.microseconds // 1000


def _vendor_succeeded(body: Any) -> bool:
    return isinstance(body, dict) and (body.get("errcode") == 0 or body.get("keyboardPwdId") is not None)


def _vendor_message(response: Optional[httpx.Response]) -> Optional[str]:
    if response is None:
        return None
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and body.get("errmsg"):
        return str(body["errmsg"])
    return None


class TTLockService:
    """Registers and deletes keypad passcodes on TTLock locks."""

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        token_provider: Optional[TTLockTokenProvider] = None,
        pin_generator: Optional[PinGenerator] = None,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self._client = client
        self.token_provider = token_provider or TTLockTokenProvider(settings, client)
        self.pin_generator = pin_generator or PinGenerator()
        self._wall_clock = wall_clock

    def is_configured(self) -> bool:
        return self.settings.ttlock_configured

    async def aclose(self) -> None:
        await self._client.aclose()

    async def register(
        self,
        lock_id: str,
        start_date: datetime,
        end_date: datetime,
        label: str,
    ) -> RegisterResult:
        """Register a new keypad code valid between ``start_date`` and ``end_date``.

        Vendor and transport failures come back as ``success=False``; only broken
        preconditions raise.
        """

        if not lock_id:
            raise ValueError("lock_id is required")
        if ensure_utc(start_date) >= ensure_utc(end_date):
            raise ValueError("start_date must be before end_date")

        try:
            credential = await self.token_provider.acquire()
        except TTLockAuthError as exc:
            return RegisterResult(success=False, error=str(exc), fault=GrantFault.AUTHENTICATION)

        pin = self.pin_generator.generate()
        form = {
            "clientId": self.settings.ttlock_client_id,
            "accessToken": credential.value,
            "lockId": str(lock_id),
            "keyboardPwd": pin,
            "keyboardPwdName": label,
            "startDate": str(to_epoch_ms(start_date)),
            "endDate": str(to_epoch_ms(end_date)),
            "date": str(self._now_ms()),
        }

        try:
            response = await self._client.post(self._url("v3/keyboardPwd/add"), data=form)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as error:
            # The vendor may still have stored the code; nothing reconciles it automatically.
            logger.warning(
                "TTLock PIN registration timed out; a vendor-side passcode may be orphaned",
                extra={"lock_id": lock_id, "error": str(error)},
            )
            return RegisterResult(success=False, error=str(error) or DEFAULT_REGISTER_ERROR, fault=GrantFault.VENDOR)
        except httpx.HTTPStatusError as error:
            message = _vendor_message(error.response)
            logger.error(
                "TTLock create PIN error",
                extra={"lock_id": lock_id, "status": error.response.status_code, "body": error.response.text},
            )
            return RegisterResult(success=False, error=message or str(error), fault=GrantFault.VENDOR)
        except (httpx.HTTPError, ValueError) as error:
            logger.error("TTLock create PIN error", extra={"lock_id": lock_id, "error": str(error)})
            return RegisterResult(success=False, error=str(error) or DEFAULT_REGISTER_ERROR, fault=GrantFault.VENDOR)

        if not _vendor_succeeded(body):
            logger.error("TTLock PIN creation failed", extra={"lock_id": lock_id, "body": body})
            message = body.get("errmsg") if isinstance(body, dict) else None
            return RegisterResult(success=False, error=message or DEFAULT_REGISTER_ERROR, fault=GrantFault.VENDOR)

        logger.info(
            "TTLock PIN registered",
            extra={"lock_id": lock_id, "keyboard_pwd_id": body.get("keyboardPwdId")},
        )
        return RegisterResult(
            success=True,
            pin=pin,
            lock_id=str(lock_id),
            start_date=start_date,
            end_date=end_date,
            keyboard_pwd_id=body.get("keyboardPwdId"),
        )

    async def revoke(self, lock_id: str, keyboard_pwd_id: Any) -> bool:
        """Delete a registered passcode. Never raises; ``True`` only on errcode 0."""

        status = await self.revoke_status(lock_id, keyboard_pwd_id)
        return status is RevokeStatus.OK

    async def revoke_status(self, lock_id: str, keyboard_pwd_id: Any) -> RevokeStatus:
        if not lock_id or keyboard_pwd_id in (None, ""):
            logger.error("TTLock delete PIN called without lock or passcode id")
            return RevokeStatus.INVALID_REQUEST

        try:
            credential = await self.token_provider.acquire()
        except TTLockAuthError:
            logger.error("TTLock delete PIN error: authentication failed", extra={"lock_id": lock_id})
            return RevokeStatus.AUTH_ERROR

        form = {
            "clientId": self.settings.ttlock_client_id,
            "accessToken": credential.value,
            "lockId": str(lock_id),
            "keyboardPwdId": str(keyboard_pwd_id),
            "date": str(self._now_ms()),
        }
        try:
            response = await self._client.post(self._url("v3/keyboardPwd/delete"), data=form)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as error:
            logger.error(
                "TTLock delete PIN error",
                extra={"lock_id": lock_id, "keyboard_pwd_id": keyboard_pwd_id, "error": str(error)},
            )
            return RevokeStatus.TRANSPORT_ERROR

        if isinstance(body, dict) and body.get("errcode") == 0:
            logger.info("TTLock PIN deleted", extra={"lock_id": lock_id, "keyboard_pwd_id": keyboard_pwd_id})
            return RevokeStatus.OK

        logger.error(
            "TTLock delete PIN rejected",
            extra={"lock_id": lock_id, "keyboard_pwd_id": keyboard_pwd_id, "body": body},
        )
        return RevokeStatus.VENDOR_ERROR

    def _url(self, path: str) -> str:
        return f"{self.settings.ttlock_api_base.rstrip('/')}/{path}"

    def _now_ms(self) -> int:
        return int(self._wall_clock() * 1000)


_ttlock_service: TTLockService | None = None


def get_ttlock_service() -> TTLockService:
    global _ttlock_service
    if not _ttlock_service:
        settings = get_settings()
        client = httpx.AsyncClient(timeout=settings.ttlock_request_timeout)
        _ttlock_service = TTLockService(settings, client)
    return _ttlock_service


async def close_ttlock_service() -> None:
    global _ttlock_service
    if _ttlock_service is not None:
        await _ttlock_service.aclose()
        _ttlock_service = None
