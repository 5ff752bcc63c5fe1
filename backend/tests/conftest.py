from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import parse_qsl

import httpx
import pytest

from app.models import Booking, Listing, Transaction, User
from app.services.pin_generator import PinGenerator
from app.services.ttlock_auth import TTLockTokenProvider
from app.services.ttlock_service import TTLockService
from app.stores.transaction_store import TransactionContext, TransactionNotFoundError, merge_metadata
from app.utils.config import Settings

TTLOCK_BASE = "https://ttlock.test"
TOKEN_PATH = "/oauth2/token"
ADD_PATH = "/v3/keyboardPwd/add"
DELETE_PATH = "/v3/keyboardPwd/delete"

CHECK_IN = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
CHECK_OUT = datetime(2024, 6, 5, 11, 0, tzinfo=timezone.utc)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "TTLOCK_API_BASE": TTLOCK_BASE,
        "TTLOCK_CLIENT_ID": "client-id",
        "TTLOCK_CLIENT_SECRET": "client-secret",
        "TTLOCK_USERNAME": "ops@example.com",
        "TTLOCK_PASSWORD": "hashed-password",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeVendor:
    """Scripted TTLock endpoints behind an ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Dict[str, str]]] = []
        self.responses: Dict[str, Tuple[int, Any]] = {
            TOKEN_PATH: (200, {"access_token": "token-1", "expires_in": 7776000}),
            ADD_PATH: (200, {"errcode": 0, "keyboardPwdId": 999}),
            DELETE_PATH: (200, {"errcode": 0}),
        }
        self.errors: Dict[str, Callable[[httpx.Request], Exception]] = {}

    async def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        self.calls.append((path, dict(parse_qsl(request.content.decode()))))
        if path in self.errors:
            raise self.errors[path](request)
        status_code, body = self.responses[path]
        return httpx.Response(status_code, json=body)

    def calls_to(self, path: str) -> List[Dict[str, str]]:
        return [form for called, form in self.calls if called == path]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def make_service(
    vendor: FakeVendor,
    settings: Optional[Settings] = None,
    clock: Optional[FakeClock] = None,
    pin: Optional[int] = None,
) -> TTLockService:
    settings = settings or make_settings()
    client = vendor.client()
    provider = TTLockTokenProvider(settings, client, clock=clock or FakeClock())
    generator = PinGenerator(randbelow=lambda n: pin) if pin is not None else PinGenerator()
    return TTLockService(settings, client, token_provider=provider, pin_generator=generator, wall_clock=lambda: 1_700_000_000.0)


def make_context(
    lock_id: Optional[str] = "12345",
    start: Optional[datetime] = CHECK_IN,
    end: Optional[datetime] = CHECK_OUT,
    display_name: Optional[str] = "Ann",
    last_transition: str = "transition/accept",
    metadata: Optional[Dict[str, Any]] = None,
    with_listing: bool = True,
    with_booking: bool = True,
    transaction_id: str = "tx-1",
) -> TransactionContext:
    customer = User(id="guest-1", display_name=display_name)
    listing = Listing(
        id="listing-1",
        author_id="host-1",
        title="Harbour view loft",
        public_data={"lockId": lock_id} if lock_id else {},
    )
    transaction = Transaction(
        id=transaction_id,
        listing_id=listing.id,
        customer_id=customer.id,
        provider_id="host-1",
        last_transition=last_transition,
        metadata_=dict(metadata or {}),
    )
    booking = Booking(id="booking-1", transaction_id=transaction_id, start=start, end=end)
    return TransactionContext(
        transaction=transaction,
        listing=listing if with_listing else None,
        booking=booking if with_booking else None,
        customer=customer,
    )


class FakeTransactionStore:
    def __init__(self, *contexts: TransactionContext, fail_updates: bool = False) -> None:
        self.contexts = {context.transaction.id: context for context in contexts}
        self.updates: List[Tuple[str, Dict[str, Any]]] = []
        self.fail_updates = fail_updates

    async def fetch_transaction(self, transaction_id: str) -> TransactionContext:
        if transaction_id not in self.contexts:
            raise TransactionNotFoundError(transaction_id)
        return self.contexts[transaction_id]

    async def update_transaction_metadata(self, transaction_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        self.updates.append((transaction_id, metadata))
        if self.fail_updates:
            raise RuntimeError("metadata store unavailable")
        transaction = self.contexts[transaction_id].transaction
        transaction.metadata_ = merge_metadata(transaction.metadata_, metadata)
        return dict(transaction.metadata_)


@pytest.fixture
def vendor() -> FakeVendor:
    return FakeVendor()


class SnapshotTransactionStore:
    """Hands out a fresh copy on every fetch, as a per-request database session does."""

    def __init__(self, metadata: Optional[Dict[str, Any]] = None, **context_kwargs: Any) -> None:
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.context_kwargs = context_kwargs
        self.fetches = 0
        self.updates: List[Tuple[str, Dict[str, Any]]] = []

    async def fetch_transaction(self, transaction_id: str) -> TransactionContext:
        self.fetches += 1
        return make_context(
            metadata=copy.deepcopy(self.metadata),
            transaction_id=transaction_id,
            **self.context_kwargs,
        )

    async def update_transaction_metadata(self, transaction_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        self.updates.append((transaction_id, metadata))
        self.metadata = merge_metadata(self.metadata, metadata)
        return dict(self.metadata)
