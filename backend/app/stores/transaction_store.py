from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.database import get_session
from app.models import Booking, Listing, Transaction, User

logger = logging.getLogger(__name__)


class TransactionNotFoundError(LookupError):
    def __init__(self, transaction_id: str) -> None:
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


@dataclass
class TransactionContext:
    """A transaction together with the relations the access-code flow reads."""

    transaction: Transaction
    listing: Optional[Listing]
    booking: Optional[Booking]
    customer: Optional[User]

    @property
    def metadata(self) -> Dict[str, Any]:
        return dict(self.transaction.metadata_ or {})


class TransactionStore(Protocol):
    async def fetch_transaction(self, transaction_id: str) -> TransactionContext:
        ...

    async def update_transaction_metadata(self, transaction_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        ...


def merge_metadata(current: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow-merge top-level keys; a ``None`` value removes the key."""

    merged = dict(current or {})
    for key, value in update.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class SqlTransactionStore:
    """Transaction store backed by the marketplace database."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def fetch_transaction(self, transaction_id: str) -> TransactionContext:
        # listing, booking and customer are selectin-loaded with the row
        transaction = await self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return TransactionContext(
            transaction=transaction,
            listing=transaction.listing,
            booking=transaction.booking,
            customer=transaction.customer,
        )

    async def update_transaction_metadata(self, transaction_id: str, metadata: Dict[str, Any]) -> Dict[str, Any]:
        transaction = await self.session.get(Transaction, transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        transaction.metadata_ = merge_metadata(transaction.metadata_, metadata)
        try:
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        logger.info(
            "Transaction metadata updated",
            extra={"transaction_id": transaction_id, "keys": sorted(metadata)},
        )
        return dict(transaction.metadata_)


def get_transaction_store(session: AsyncSession = Depends(get_session)) -> TransactionStore:
    return SqlTransactionStore(session)
