"""
shared/utils/sequences.py
Human-readable identifiers for bookings and orders.

Booking numbers come from a per-day counter row that is incremented
atomically in the database (INSERT ... ON CONFLICT DO UPDATE ... RETURNING),
so concurrent requests never read the same value.
"""

import random
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import SequenceCounter

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _day_stamp(day: datetime) -> str:
    if day.tzinfo is not None:
        day = day.astimezone(timezone.utc)
    return day.strftime("%Y%m%d")


async def next_daily_sequence(db: AsyncSession, prefix: str, day: datetime) -> int:
    """Atomically increment and return the counter for (prefix, day). First value is 1."""
    key = f"{prefix}:{_day_stamp(day)}"
    insert_fn = _UPSERT_INSERTS.get(db.get_bind().dialect.name)

    if insert_fn is None:
        # Dialects without upsert: lock the row and bump it
        result = await db.execute(
            select(SequenceCounter).where(SequenceCounter.key == key).with_for_update()
        )
        counter = result.scalar_one_or_none()
        if counter is None:
            counter = SequenceCounter(key=key, value=0)
            db.add(counter)
        counter.value += 1
        await db.flush()
        return counter.value

    stmt = (
        insert_fn(SequenceCounter)
        .values(key=key, value=1)
        .on_conflict_do_update(
            index_elements=[SequenceCounter.key],
            set_={"value": SequenceCounter.value + 1},
        )
        .returning(SequenceCounter.value)
    )
    result = await db.execute(stmt)
    return result.scalar_one()


async def generate_booking_number(db: AsyncSession, now: Optional[datetime] = None) -> str:
    """BK + YYYYMMDD + 4-digit daily sequence, e.g. BK202405010001."""
    now = now or datetime.now(timezone.utc)
    seq = await next_daily_sequence(db, "booking", now)
    return f"BK{_day_stamp(now)}{seq:04d}"


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-<last 8 digits of epoch millis>-<0..999>. Collisions are retried by the caller."""
    now = now or datetime.now(timezone.utc)
    millis = str(int(now.timestamp() * 1000))
    return f"ORD-{millis[-8:]}-{random.randint(0, 999)}"
