from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from app.utils.config import Settings

logger = logging.getLogger(__name__)


class TTLockAuthError(RuntimeError):
    """Raised when the vendor token exchange does not yield a usable token."""

    def __init__(self, message: str = "TTLock authentication failed") -> None:
        super().__init__(message)


@dataclass(frozen=True)
class Credential:
    value: str
    acquired_at: float
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class TTLockTokenProvider:
    """Holds the vendor access token and refreshes it when the cache window lapses.

    Concurrent callers that find no valid token share a single exchange. A failed
    exchange leaves the cache untouched and is reported to every waiter; retrying
    is up to the caller.
    """

    def __init__(
        self,
        settings: Settings,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self._client = client
        self._clock = clock
        self._credential: Optional[Credential] = None
        self._inflight: Optional[asyncio.Future[Credential]] = None

    @property
    def cached(self) -> Optional[Credential]:
        return self._credential

    def invalidate(self) -> None:
        self._credential = None

    async def acquire(self) -> Credential:
        credential = self._credential
        if credential is not None and credential.is_valid(self._clock()):
            return credential

        if self._inflight is not None:
            return await asyncio.shield(self._inflight)

        future: asyncio.Future[Credential] = asyncio.get_running_loop().create_future()
        self._inflight = future
        try:
            credential = await self._exchange()
        except asyncio.CancelledError:
            # waiters get a retryable auth failure, not the leader's cancellation
            future.set_exception(TTLockAuthError())
            future.exception()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # mark retrieved so an unawaited failure is not reported at GC time
            future.exception()
            raise
        else:
            self._credential = credential
            future.set_result(credential)
            return credential
        finally:
            self._inflight = None

    async def _exchange(self) -> Credential:
        form = {
            "client_id": self.settings.ttlock_client_id,
            "client_secret": self.settings.ttlock_client_secret,
            "grant_type": "password",
            "username": self.settings.ttlock_username,
            "password": self.settings.ttlock_password,
        }
        url = f"{self.settings.ttlock_api_base.rstrip('/')}/oauth2/token"
        try:
            response = await self._client.post(url, data=form)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as error:
            logger.error(
                "TTLock authentication error",
                extra={"status": error.response.status_code, "body": error.response.text},
            )
            raise TTLockAuthError() from error
        except (httpx.HTTPError, ValueError) as error:
            logger.error("TTLock authentication error", extra={"error": str(error)})
            raise TTLockAuthError() from error

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            logger.error("TTLock token response missing access_token", extra={"body": body})
            raise TTLockAuthError()

        now = self._clock()
        logger.info("TTLock access token refreshed")
        return Credential(
            value=token,
            acquired_at=now,
            expires_at=now + self.settings.ttlock_token_cache_ttl_seconds,
        )
