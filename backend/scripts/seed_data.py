from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta, timezone

from app.db.database import async_session_factory
from app.models import Booking, Listing, Transaction, User

DEMO_HOST_ID = "5f1c0a9e-0000-4000-8000-000000000001"
DEMO_GUEST_ID = "5f1c0a9e-0000-4000-8000-000000000002"
DEMO_LISTING_ID = "5f1c0a9e-0000-4000-8000-000000000010"
DEMO_TRANSACTION_ID = "5f1c0a9e-0000-4000-8000-000000000100"


async def seed() -> None:
    lock_id = os.environ.get("DEMO_LOCK_ID", "12345")

    async with async_session_factory() as session:
        users_seed = [
            {"id": DEMO_HOST_ID, "display_name": "Marta H", "email": "host@example.com"},
            {"id": DEMO_GUEST_ID, "display_name": "Ann", "email": "guest@example.com"},
        ]
        for record in users_seed:
            if await session.get(User, record["id"]):
                continue
            session.add(User(**record))

        if not await session.get(Listing, DEMO_LISTING_ID):
            session.add(
                Listing(
                    id=DEMO_LISTING_ID,
                    author_id=DEMO_HOST_ID,
                    title="Harbour view loft",
                    public_data={"lockId": lock_id},
                )
            )

        await session.flush()

        if not await session.get(Transaction, DEMO_TRANSACTION_ID):
            check_in = (datetime.now(timezone.utc) + timedelta(days=7)).replace(
                hour=15, minute=0, second=0, microsecond=0
            )
            transaction = Transaction(
                id=DEMO_TRANSACTION_ID,
                listing_id=DEMO_LISTING_ID,
                customer_id=DEMO_GUEST_ID,
                provider_id=DEMO_HOST_ID,
                last_transition="transition/accept",
                metadata_={},
            )
            transaction.booking = Booking(
                id=f"{DEMO_TRANSACTION_ID[:-3]}200",
                start=check_in,
                end=check_in + timedelta(days=3, hours=-4),
            )
            session.add(transaction)

        await session.commit()


if __name__ == "__main__":
    asyncio.run(seed())
