"""Eligibility periods — date ranges during which accrual is active system-wide."""

from dataclasses import dataclass
from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import PointPeriod, SourceDocument


@dataclass(frozen=True)
class ActivePeriod:
    start_date: date
    end_date: date

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


async def load_active_periods(db: AsyncSession) -> list[ActivePeriod]:
    result = await db.execute(
        select(PointPeriod.start_date, PointPeriod.end_date)
        .where(PointPeriod.is_active.is_(True))
        .order_by(PointPeriod.start_date)
    )
    return [ActivePeriod(start_date=start, end_date=end) for start, end in result.all()]


def period_clause(periods: list[ActivePeriod]):
    """doc_date inside at least one period (inclusive bounds)."""
    return or_(
        *[
            and_(SourceDocument.doc_date >= period.start_date, SourceDocument.doc_date <= period.end_date)
            for period in periods
        ]
    )
