"""
Point conditions — threshold rules and the item -> condition mapping.

Conditions are read as they stand at calculation time; there is no
historical snapshot, so reprocessing an old document uses today's rules.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import ItemPointCondition, PointCondition
from points.candidates import ZERO, to_decimal

ACTIVE_CONDITION_STATUS = 0


@dataclass(frozen=True)
class ConditionRule:
    code: str
    amount_per_point: Decimal
    point_earned: Decimal
    name: str | None = None

    def earned_for(self, group_total: Decimal) -> Decimal:
        """floor(group_total / amount_per_point) * point_earned. Partial thresholds earn nothing."""
        if self.amount_per_point <= 0 or group_total <= 0:
            return ZERO
        steps = (group_total / self.amount_per_point).to_integral_value(rounding=ROUND_FLOOR)
        return steps * self.point_earned


def build_rule(row: PointCondition, default_amount_per_point: Decimal) -> ConditionRule:
    amount_per_point = to_decimal(row.amount_per_point)
    if amount_per_point <= 0:
        amount_per_point = default_amount_per_point
    return ConditionRule(
        code=row.code,
        name=row.name,
        amount_per_point=amount_per_point,
        point_earned=to_decimal(row.point_earned),
    )


async def load_point_conditions(db: AsyncSession) -> dict[str, ConditionRule]:
    default_amount = Decimal(get_settings().default_amount_per_point)
    result = await db.execute(
        select(PointCondition)
        .where(PointCondition.status == ACTIVE_CONDITION_STATUS)
        .order_by(PointCondition.code)
    )
    return {row.code: build_rule(row, default_amount) for row in result.scalars().all()}


async def load_item_conditions(db: AsyncSession, item_codes: Iterable[str]) -> dict[str, str]:
    """Map item_code -> condition code. When an item has several mappings the lowest code wins."""
    codes = sorted(set(item_codes))
    if not codes:
        return {}
    result = await db.execute(
        select(ItemPointCondition.item_code, ItemPointCondition.condition_code)
        .where(ItemPointCondition.item_code.in_(codes))
        .order_by(ItemPointCondition.item_code, ItemPointCondition.condition_code)
    )
    mapping: dict[str, str] = {}
    for item_code, condition_code in result.all():
        mapping.setdefault(item_code, condition_code)
    return mapping
