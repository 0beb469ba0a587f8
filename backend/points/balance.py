"""
Balance Reconciler — the sole writer of a customer's point balances.

Balances are always re-derived from the full ledger, never incremented:

    reward_point  = sum(points_earned > 0) - sum(|points_earned| where < 0)
    point_balance = reward_point - sum(points_used)

The customer row is locked (SELECT ... FOR UPDATE) before the aggregate is
read so two concurrent reconciliations for the same customer serialize
instead of overwriting each other with a stale aggregate.
"""

from dataclasses import dataclass
from decimal import Decimal

import structlog
from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import Customer, PointLedgerEntry
from points.candidates import ZERO, round_points, to_decimal

logger = structlog.get_logger()


@dataclass(frozen=True)
class CustomerBalance:
    cust_code: str
    point_balance: Decimal
    reward_point: Decimal
    name: str | None = None

    def as_dict(self) -> dict:
        return {
            "code": self.cust_code,
            "name": self.name,
            "point_balance": float(self.point_balance),
            "reward_point": float(self.reward_point),
        }


async def lock_customer(db: AsyncSession, cust_code: str) -> Customer | None:
    """Take the per-customer write lock. A no-op lock on SQLite, row-level on PostgreSQL."""
    result = await db.execute(select(Customer).where(Customer.code == cust_code).with_for_update())
    return result.scalar_one_or_none()


async def aggregate_ledger(db: AsyncSession, cust_code: str) -> tuple[Decimal, Decimal]:
    """Return (reward_point, point_balance) computed from every ledger entry of the customer."""
    earned = PointLedgerEntry.points_earned
    result = await db.execute(
        select(
            func.coalesce(func.sum(case((earned > 0, earned), else_=0)), 0).label("total_earned"),
            func.coalesce(func.sum(case((earned < 0, -earned), else_=0)), 0).label("total_deducted"),
            func.coalesce(func.sum(PointLedgerEntry.points_used), 0).label("total_used"),
        ).where(PointLedgerEntry.cust_code == cust_code)
    )
    row = result.one()
    reward_point = round_points(to_decimal(row.total_earned) - to_decimal(row.total_deducted))
    point_balance = round_points(reward_point - to_decimal(row.total_used))
    return reward_point, point_balance


async def reconcile_customer_balance(db: AsyncSession, cust_code: str) -> CustomerBalance:
    """
    Recompute and store a customer's balances from the ledger. Caller owns the transaction.

    Idempotent: running it twice without ledger changes writes the same values.
    """
    customer = await lock_customer(db, cust_code)
    reward_point, point_balance = await aggregate_ledger(db, cust_code)

    if customer is None:
        logger.warning("points.balance.customer_missing", cust_code=cust_code)
        return CustomerBalance(cust_code=cust_code, point_balance=point_balance, reward_point=reward_point)

    customer.reward_point = reward_point
    customer.point_balance = point_balance
    await db.flush()

    logger.debug(
        "points.balance.reconciled",
        cust_code=cust_code,
        reward_point=str(reward_point),
        point_balance=str(point_balance),
    )
    return CustomerBalance(
        cust_code=cust_code,
        point_balance=point_balance,
        reward_point=reward_point,
        name=customer.name,
    )


def empty_balance(cust_code: str) -> CustomerBalance:
    return CustomerBalance(cust_code=cust_code, point_balance=ZERO, reward_point=ZERO)
