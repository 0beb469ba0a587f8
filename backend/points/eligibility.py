"""
Eligibility Filter — which line items of a document count toward points.

An item participates only when its code carries the have_point flag.
Input ordering is preserved so downstream remainder reconciliation always
lands on the same line.
"""

from collections.abc import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import ItemPointFlag, SourceLineItem


def select_eligible_lines(lines: Sequence[SourceLineItem], eligible_codes: set[str]) -> list[SourceLineItem]:
    return [line for line in lines if line.item_code in eligible_codes]


async def load_eligible_item_codes(db: AsyncSession, item_codes: Iterable[str]) -> set[str]:
    """Return the subset of ``item_codes`` flagged for point accrual."""
    codes = sorted(set(item_codes))
    if not codes:
        return set()
    result = await db.execute(
        select(ItemPointFlag.item_code).where(
            ItemPointFlag.item_code.in_(codes),
            ItemPointFlag.have_point.is_(True),
        )
    )
    return set(result.scalars().all())


async def load_document_lines(db: AsyncSession, doc_no: str, trans_flag: int) -> list[SourceLineItem]:
    result = await db.execute(
        select(SourceLineItem)
        .where(SourceLineItem.doc_no == doc_no, SourceLineItem.trans_flag == trans_flag)
        .order_by(SourceLineItem.line_number, SourceLineItem.id)
    )
    return list(result.scalars().all())


async def filter_eligible_lines(db: AsyncSession, lines: Sequence[SourceLineItem]) -> list[SourceLineItem]:
    eligible_codes = await load_eligible_item_codes(db, (line.item_code for line in lines))
    return select_eligible_lines(lines, eligible_codes)
