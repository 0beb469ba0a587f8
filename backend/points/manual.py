"""
Manual point operations — staff add, redemption (use) and cancellation of a use.

Each operation is its own short transaction: validate, lock the customer,
insert one ledger entry with no source-document link, reconcile the balance,
commit. Any storage failure rolls the whole operation back.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import PointLedgerEntry
from points.balance import CustomerBalance, aggregate_ledger, lock_customer, reconcile_customer_balance
from points.candidates import ZERO, round_points, to_decimal
from points.errors import (
    CustomerNotFoundError,
    InsufficientPointsError,
    LedgerEntryNotFoundError,
    PointValidationError,
)
from points.ledger import next_doc_no

logger = structlog.get_logger()


@dataclass(frozen=True)
class ManualPointResult:
    doc_no: str
    points: Decimal
    balance: CustomerBalance

    def as_dict(self) -> dict:
        return {
            "success": True,
            "doc_no": self.doc_no,
            "points": float(self.points),
            "customer": self.balance.as_dict(),
        }


def _validate_points(points) -> Decimal:
    try:
        value = to_decimal(points)
    except (InvalidOperation, ValueError) as exc:
        raise PointValidationError(f"Invalid point amount: {points!r}") from exc
    if not value.is_finite() or value <= 0:
        raise PointValidationError("points must be greater than zero")
    return round_points(value)


def _validate_cust_code(cust_code: str | None) -> str:
    code = (cust_code or "").strip()
    if not code:
        raise PointValidationError("cust_code is required")
    return code


def _manual_entry(doc_no: str, cust_code: str, remark: str, now: datetime, **points) -> PointLedgerEntry:
    return PointLedgerEntry(
        doc_no=doc_no,
        doc_date=now.date(),
        doc_time=now.strftime("%H:%M"),
        cust_code=cust_code,
        sum_sale_amount=ZERO,
        sum_return_amount=ZERO,
        sum_total_amount=ZERO,
        points_earned=points.get("points_earned", ZERO),
        points_used=points.get("points_used", ZERO),
        doc_no_ref=points.get("doc_no_ref"),
        remark=remark,
        lastedit_datetime=now,
    )


async def add_points(
    db: AsyncSession,
    cust_code: str,
    points,
    remark: str | None = None,
    actor: str | None = None,
) -> ManualPointResult:
    code = _validate_cust_code(cust_code)
    amount = _validate_points(points)

    try:
        if await lock_customer(db, code) is None:
            raise CustomerNotFoundError(code)

        now = datetime.now()
        doc_no = await next_doc_no(db, now.date())
        db.add(_manual_entry(doc_no, code, remark or f"Points added by staff {actor or '-'}", now, points_earned=amount))
        await db.flush()
        balance = await reconcile_customer_balance(db, code)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("points.manual.added", cust_code=code, doc_no=doc_no, points=str(amount), actor=actor)
    return ManualPointResult(doc_no=doc_no, points=amount, balance=balance)


async def use_points(
    db: AsyncSession,
    cust_code: str,
    points,
    remark: str | None = None,
    actor: str | None = None,
) -> ManualPointResult:
    """Redeem points. Rejected with InsufficientPointsError when points exceed the current balance."""
    code = _validate_cust_code(cust_code)
    amount = _validate_points(points)

    try:
        if await lock_customer(db, code) is None:
            raise CustomerNotFoundError(code)

        # Checked against the ledger aggregate under the customer lock, not a cached column
        _, balance_before = await aggregate_ledger(db, code)
        if amount > balance_before:
            raise InsufficientPointsError(requested=amount, balance=balance_before)

        now = datetime.now()
        doc_no = await next_doc_no(db, now.date())
        db.add(_manual_entry(doc_no, code, remark or f"Points used by staff {actor or '-'}", now, points_used=amount))
        await db.flush()
        balance = await reconcile_customer_balance(db, code)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("points.manual.used", cust_code=code, doc_no=doc_no, points=str(amount), actor=actor)
    return ManualPointResult(doc_no=doc_no, points=amount, balance=balance)


async def cancel_use(
    db: AsyncSession,
    doc_no: str,
    remark: str | None = None,
    actor: str | None = None,
) -> ManualPointResult:
    """Refund a redemption by writing a reversing entry (negative points_used)."""
    ref = (doc_no or "").strip()
    if not ref:
        raise PointValidationError("doc_no is required")

    try:
        result = await db.execute(
            select(PointLedgerEntry).where(PointLedgerEntry.doc_no == ref, PointLedgerEntry.points_used > 0)
        )
        original = result.scalar_one_or_none()
        if original is None:
            raise LedgerEntryNotFoundError(ref)

        code = original.cust_code
        refunded = to_decimal(original.points_used)
        if await lock_customer(db, code) is None:
            raise CustomerNotFoundError(code)

        already = await db.execute(select(PointLedgerEntry.doc_no).where(PointLedgerEntry.doc_no_ref == ref).limit(1))
        if already.scalar_one_or_none() is not None:
            raise PointValidationError(f"Point use {ref} is already cancelled")

        now = datetime.now()
        new_doc_no = await next_doc_no(db, now.date())
        db.add(
            _manual_entry(
                new_doc_no,
                code,
                remark or f"Cancel point use ref {ref} by staff {actor or '-'}",
                now,
                points_used=-refunded,
                doc_no_ref=ref,
            )
        )
        await db.flush()
        balance = await reconcile_customer_balance(db, code)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info("points.manual.use_cancelled", cust_code=code, doc_no=new_doc_no, ref=ref, points=str(refunded), actor=actor)
    return ManualPointResult(doc_no=new_doc_no, points=refunded, balance=balance)
