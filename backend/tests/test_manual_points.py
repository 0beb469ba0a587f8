"""
Tests for staff point operations: add, redemption with balance guard,
and cancellation of a redemption.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from db.models import PointLedgerEntry
from points import manual
from points.errors import (
    CustomerNotFoundError,
    InsufficientPointsError,
    LedgerEntryNotFoundError,
    PointValidationError,
)

pytestmark = pytest.mark.asyncio


@pytest.fixture
async def member(seeder):
    await seeder.customer("C001")
    return "C001"


async def test_add_points_writes_unlinked_entry(member, session_factory, ledger):
    async with session_factory() as db:
        result = await manual.add_points(db, member, "10", actor="cashier01")

    assert result.points == Decimal("10.00")
    assert result.balance.point_balance == Decimal("10")
    [entry] = await ledger.entries(member)
    assert entry.doc_no == result.doc_no
    assert entry.doc_no_sale is None and entry.doc_no_return is None
    assert entry.points_earned == Decimal("10")
    assert entry.points_used == 0
    assert "cashier01" in entry.remark
    assert await ledger.balances(member) == (Decimal("10"), Decimal("10"))


async def test_use_points_reduces_balance_but_not_reward(member, session_factory, ledger):
    async with session_factory() as db:
        await manual.add_points(db, member, 10)
        result = await manual.use_points(db, member, Decimal("4"), remark="Redeemed voucher")

    assert result.as_dict()["customer"]["point_balance"] == 6.0
    assert await ledger.balances(member) == (Decimal("10"), Decimal("6"))
    entries = await ledger.entries(member)
    used = [e for e in entries if e.points_used > 0]
    assert len(used) == 1
    assert used[0].remark == "Redeemed voucher"


async def test_use_more_than_balance_is_rejected_without_writing(member, session_factory, ledger):
    async with session_factory() as db:
        await manual.add_points(db, member, 5)

    async with session_factory() as db:
        with pytest.raises(InsufficientPointsError) as exc_info:
            await manual.use_points(db, member, 7)

    assert exc_info.value.balance == Decimal("5")
    assert exc_info.value.requested == Decimal("7")
    assert len(await ledger.entries(member)) == 1
    assert await ledger.balances(member) == (Decimal("5"), Decimal("5"))


async def test_use_exact_balance_is_allowed(member, session_factory, ledger):
    async with session_factory() as db:
        await manual.add_points(db, member, 5)
        await manual.use_points(db, member, 5)

    assert await ledger.balances(member) == (Decimal("5"), Decimal("0"))


async def test_cancel_use_refunds_once(member, session_factory, ledger):
    async with session_factory() as db:
        await manual.add_points(db, member, 10)
        used = await manual.use_points(db, member, 4)
        cancelled = await manual.cancel_use(db, used.doc_no, actor="supervisor")

    assert cancelled.points == Decimal("4")
    assert await ledger.balances(member) == (Decimal("10"), Decimal("10"))

    async with session_factory() as db:
        reversal = (
            await db.execute(select(PointLedgerEntry).where(PointLedgerEntry.doc_no == cancelled.doc_no))
        ).scalar_one()
    assert reversal.points_used == Decimal("-4")
    assert reversal.doc_no_ref == used.doc_no
    assert used.doc_no in reversal.remark

    async with session_factory() as db:
        with pytest.raises(PointValidationError, match="already cancelled"):
            await manual.cancel_use(db, used.doc_no)
    assert await ledger.balances(member) == (Decimal("10"), Decimal("10"))


async def test_cancel_use_requires_a_redemption_entry(member, session_factory):
    async with session_factory() as db:
        added = await manual.add_points(db, member, 10)

    async with session_factory() as db:
        with pytest.raises(LedgerEntryNotFoundError):
            await manual.cancel_use(db, added.doc_no)
        with pytest.raises(LedgerEntryNotFoundError):
            await manual.cancel_use(db, "PT-00000000-999999")
        with pytest.raises(PointValidationError):
            await manual.cancel_use(db, "")


@pytest.mark.parametrize("points", [0, -5, "abc", None])
async def test_non_positive_or_invalid_points_are_rejected(member, session_factory, points):
    async with session_factory() as db:
        with pytest.raises(PointValidationError):
            await manual.add_points(db, member, points)
        with pytest.raises(PointValidationError):
            await manual.use_points(db, member, points)


async def test_unknown_customer_is_rejected(session_factory):
    async with session_factory() as db:
        with pytest.raises(CustomerNotFoundError):
            await manual.add_points(db, "GHOST", 10)
        with pytest.raises(PointValidationError):
            await manual.add_points(db, "", 10)


async def test_manual_doc_numbers_are_unique_and_formatted(member, session_factory):
    async with session_factory() as db:
        first = await manual.add_points(db, member, 1)
        second = await manual.add_points(db, member, 1)

    assert first.doc_no != second.doc_no
    prefix, day, seq = second.doc_no.split("-")
    assert prefix == "PT"
    assert len(day) == 8 and day.isdigit()
    assert len(seq) == 6 and seq.isdigit()
