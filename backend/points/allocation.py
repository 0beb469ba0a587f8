"""
Allocation Engine — earned points for a sale document.

Algorithm:
1. Map each eligible line to its point condition (unmapped lines earn 0 but are still itemized)
2. Group lines by condition and sum their amounts
3. Group points = floor(group_total / amount_per_point) * point_earned
4. Spread each group's points over its lines by amount share (2 dp)
5. Push the rounding discrepancy onto the group's first line so the
   detail points sum to the entry total exactly
"""

from collections.abc import Sequence
from decimal import Decimal

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import TRANS_FLAG_SALE, SourceDocument, SourceLineItem
from points.candidates import (
    ZERO,
    CandidateEntry,
    CandidateLine,
    distribute_proportionally,
    to_decimal,
)
from points.conditions import ConditionRule, load_item_conditions, load_point_conditions
from points.eligibility import filter_eligible_lines, load_document_lines

logger = structlog.get_logger()

SALE_REMARK = "Calculated from sale document"


def candidate_line(item: SourceLineItem, is_return: bool = False) -> CandidateLine:
    return CandidateLine(
        item_code=item.item_code,
        amount=to_decimal(item.sum_amount),
        barcode=item.barcode,
        item_name=item.item_name,
        unit_code=item.unit_code,
        qty=to_decimal(item.qty),
        price=to_decimal(item.price),
        is_return=is_return,
    )


def group_by_condition(
    lines: Sequence[CandidateLine],
    conditions: dict[str, ConditionRule],
    item_conditions: dict[str, str],
) -> dict[str, list[CandidateLine]]:
    """Group lines by their active condition code, in first-seen order. Tags each line's condition_code."""
    groups: dict[str, list[CandidateLine]] = {}
    for line in lines:
        code = item_conditions.get(line.item_code)
        if code is None or code not in conditions:
            line.condition_code = None
            continue
        line.condition_code = code
        groups.setdefault(code, []).append(line)
    return groups


def total_group_points(
    lines: Sequence[CandidateLine],
    conditions: dict[str, ConditionRule],
    item_conditions: dict[str, str],
) -> Decimal:
    """Sum of floor-threshold points across condition groups, without per-line distribution."""
    groups = group_by_condition(lines, conditions, item_conditions)
    total = ZERO
    for code, group in groups.items():
        group_total = sum((line.amount for line in group), ZERO)
        total += conditions[code].earned_for(group_total)
    return total


def allocate_sale(
    doc: SourceDocument,
    eligible_items: Sequence[SourceLineItem],
    conditions: dict[str, ConditionRule],
    item_conditions: dict[str, str],
) -> CandidateEntry | None:
    """Compute the candidate ledger entry for a sale. Returns None when no line is eligible."""
    if not eligible_items:
        return None

    lines = [candidate_line(item) for item in eligible_items]
    groups = group_by_condition(lines, conditions, item_conditions)

    total_points = ZERO
    for code, group in groups.items():
        group_total = sum((line.amount for line in group), ZERO)
        earned = conditions[code].earned_for(group_total)
        distribute_proportionally(group, earned)
        total_points += earned

    return CandidateEntry(
        doc_date=doc.doc_date,
        doc_time=doc.doc_time,
        cust_code=doc.cust_code,
        doc_no_sale=doc.doc_no,
        sum_sale_amount=sum((line.amount for line in lines), ZERO),
        points_earned=total_points,
        remark=SALE_REMARK,
        lines=lines,
    )


async def calc_sale_document(db: AsyncSession, doc: SourceDocument) -> CandidateEntry | None:
    items = await load_document_lines(db, doc.doc_no, TRANS_FLAG_SALE)
    if not items:
        return None

    eligible = await filter_eligible_lines(db, items)
    if not eligible:
        logger.debug("points.allocation.no_eligible_lines", doc_no=doc.doc_no, line_count=len(items))
        return None

    conditions = await load_point_conditions(db)
    item_conditions = await load_item_conditions(db, (item.item_code for item in eligible))
    return allocate_sale(doc, eligible, conditions, item_conditions)
