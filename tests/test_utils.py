"""
tests/test_utils.py
Shared helpers: daily booking numbers, order numbers, seat capacity
and saga compensation.
"""

import re
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from shared.utils.capacity import ensure_capacity
from shared.utils.errors import InvalidInputError, InvalidStateError
from shared.utils.saga import Saga
from shared.utils.sequences import generate_booking_number, generate_order_number, next_daily_sequence


# ── Sequences ─────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_booking_numbers_are_sequential_per_day(db: AsyncSession):
    day = datetime(2024, 5, 1, 9, 30, tzinfo=timezone.utc)

    numbers = [await generate_booking_number(db, day) for _ in range(3)]
    assert numbers == ["BK202405010001", "BK202405010002", "BK202405010003"]

    assert await generate_booking_number(db, day + timedelta(days=1)) == "BK202405020001"
    assert await generate_booking_number(db, day) == "BK202405010004"


@pytest.mark.asyncio
async def test_booking_number_day_is_utc(db: AsyncSession):
    # 00:30 in Casablanca summer time (UTC+1) is still the previous UTC day
    local = datetime(2024, 5, 2, 0, 30, tzinfo=timezone(timedelta(hours=1)))
    assert await generate_booking_number(db, local) == "BK202405010001"


@pytest.mark.asyncio
async def test_sequences_are_independent_per_prefix(db: AsyncSession):
    day = datetime(2024, 5, 1, tzinfo=timezone.utc)
    assert await next_daily_sequence(db, "booking", day) == 1
    assert await next_daily_sequence(db, "invoice", day) == 1
    assert await next_daily_sequence(db, "booking", day) == 2


def test_order_number_format():
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    number = generate_order_number(now)

    millis = str(int(now.timestamp() * 1000))
    assert re.fullmatch(r"ORD-\d{8}-\d{1,3}", number)
    assert number.startswith(f"ORD-{millis[-8:]}-")


# ── Capacity ──────────────────────────────────────────────────────────────────

def test_capacity_returns_remaining_seats():
    assert ensure_capacity(claimed=2, requested=1, capacity=5) == 2
    assert ensure_capacity(claimed=4, requested=1, capacity=5) == 0


def test_capacity_full():
    with pytest.raises(InvalidStateError, match="This session is full"):
        ensure_capacity(claimed=5, requested=1, capacity=5)


def test_capacity_partial():
    with pytest.raises(InvalidStateError, match="Only 1 spot"):
        ensure_capacity(claimed=2, requested=2, capacity=3, label="event")


def test_capacity_requires_a_seat():
    with pytest.raises(InvalidInputError):
        ensure_capacity(claimed=0, requested=0, capacity=3)


# ── Saga ──────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_saga_compensates_in_reverse_order():
    calls = []

    async def step_a():
        calls.append("a")
        return "A"

    async def undo_a(result):
        calls.append(f"undo {result}")

    async def step_b():
        calls.append("b")
        return "B"

    async def undo_b(result):
        calls.append(f"undo {result}")

    async def step_c():
        raise InvalidStateError("out of stock")

    saga = Saga("test")
    await saga.step(step_a, compensation=undo_a)
    await saga.step(step_b, compensation=undo_b)
    with pytest.raises(InvalidStateError):
        await saga.step(step_c)

    assert calls == ["a", "b", "undo B", "undo A"]


@pytest.mark.asyncio
async def test_saga_compensation_failure_does_not_mask_original_error():
    undone = []

    async def first():
        return 1

    async def undo_first(result):
        undone.append(result)

    async def second():
        return 2

    async def undo_second(result):
        raise RuntimeError("compensation broke")

    async def third():
        raise ValueError("boom")

    saga = Saga("test")
    await saga.step(first, compensation=undo_first)
    await saga.step(second, compensation=undo_second)
    with pytest.raises(ValueError, match="boom"):
        await saga.step(third)

    assert undone == [1]


@pytest.mark.asyncio
async def test_saga_success_runs_no_compensation():
    undone = []

    async def only():
        return "done"

    async def undo(result):
        undone.append(result)

    saga = Saga("test")
    assert await saga.step(only, compensation=undo) == "done"
    assert undone == []
