"""
Reversal Engine — point deduction for a return document.

The deduction is anchored to the original sale's ledger entry when one
exists, so a full return takes back exactly what was earned even if the
point conditions changed in between:

    deduction = floor(return_total / original_sale_amount * original_points)

Without an original entry the deduction is recomputed from the current
conditions (group thresholds only). Either way -deduction is spread over
the eligible return lines by amount share, remainder on the first line.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import TRANS_FLAG_RETURN, PointLedgerEntry, SourceDocument, SourceLineItem
from points.allocation import candidate_line, total_group_points
from points.candidates import ZERO, CandidateEntry, distribute_proportionally, to_decimal
from points.conditions import ConditionRule, load_item_conditions, load_point_conditions
from points.eligibility import filter_eligible_lines, load_document_lines

logger = structlog.get_logger()


@dataclass(frozen=True)
class OriginalSale:
    """Recorded result of the sale a return refers to."""

    doc_no: str
    sum_sale_amount: Decimal
    points_earned: Decimal


def deduction_from_original(return_total: Decimal, original: OriginalSale) -> Decimal:
    if original.sum_sale_amount <= 0 or original.points_earned <= 0 or return_total <= 0:
        return ZERO
    raw = return_total * original.points_earned / original.sum_sale_amount
    return raw.to_integral_value(rounding=ROUND_FLOOR)


def return_remark(doc: SourceDocument) -> str:
    return f"Return, ref {doc.doc_ref or '-'}"


def reverse_return(
    doc: SourceDocument,
    eligible_items: Sequence[SourceLineItem],
    original: OriginalSale | None,
    conditions: dict[str, ConditionRule] | None = None,
    item_conditions: dict[str, str] | None = None,
) -> CandidateEntry | None:
    """Compute the candidate ledger entry for a return. Returns None when no line is eligible."""
    if not eligible_items:
        return None

    lines = [candidate_line(item, is_return=True) for item in eligible_items]
    return_total = sum((line.amount for line in lines), ZERO)

    if original is not None:
        deduction = deduction_from_original(return_total, original)
    else:
        deduction = total_group_points(lines, conditions or {}, item_conditions or {})

    points = -deduction if deduction else ZERO
    distribute_proportionally(lines, points)

    return CandidateEntry(
        doc_date=doc.doc_date,
        doc_time=doc.doc_time,
        cust_code=doc.cust_code,
        doc_no_return=doc.doc_no,
        sum_return_amount=return_total,
        points_earned=points,
        remark=return_remark(doc),
        lines=lines,
    )


async def find_original_sale(db: AsyncSession, sale_doc_no: str | None) -> OriginalSale | None:
    if not sale_doc_no:
        return None
    result = await db.execute(
        select(PointLedgerEntry)
        .where(PointLedgerEntry.doc_no_sale == sale_doc_no)
        .order_by(PointLedgerEntry.doc_no)
        .limit(1)
    )
    entry = result.scalar_one_or_none()
    if entry is None:
        return None
    return OriginalSale(
        doc_no=entry.doc_no,
        sum_sale_amount=to_decimal(entry.sum_sale_amount),
        points_earned=to_decimal(entry.points_earned),
    )


async def calc_return_document(db: AsyncSession, doc: SourceDocument) -> CandidateEntry | None:
    items = await load_document_lines(db, doc.doc_no, TRANS_FLAG_RETURN)
    if not items:
        return None

    eligible = await filter_eligible_lines(db, items)
    if not eligible:
        logger.debug("points.reversal.no_eligible_lines", doc_no=doc.doc_no, line_count=len(items))
        return None

    original = await find_original_sale(db, doc.doc_ref)
    if original is not None:
        return reverse_return(doc, eligible, original)

    logger.info("points.reversal.no_original_sale", doc_no=doc.doc_no, doc_ref=doc.doc_ref)
    conditions = await load_point_conditions(db)
    item_conditions = await load_item_conditions(db, (item.item_code for item in eligible))
    return reverse_return(doc, eligible, None, conditions, item_conditions)
