"""
Ledger Writer — persists ledger entries and their line details.

Replace, don't patch: the header is upserted by document number and the
whole detail set is deleted and reinserted, so stored details always mirror
the latest computation.
"""

from datetime import date, datetime

import structlog
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import PointDocSequence, PointLedgerDetail, PointLedgerEntry
from points.candidates import CandidateEntry

logger = structlog.get_logger()


def format_doc_no(prefix: str, issued_on: date, seq: int) -> str:
    """PT-YYYYMMDD-NNNNNN"""
    return f"{prefix}-{issued_on.strftime('%Y%m%d')}-{seq:06d}"


async def next_doc_no(db: AsyncSession, issued_on: date | None = None) -> str:
    """Draw the next ledger document number from the portable sequence table."""
    row = PointDocSequence(issued_at=datetime.utcnow())
    db.add(row)
    await db.flush()
    return format_doc_no(get_settings().point_doc_prefix, issued_on or date.today(), row.id)


async def find_entries_for_source(db: AsyncSession, source_doc_no: str, is_sale: bool) -> list[tuple[str, str]]:
    """
    (doc_no, cust_code) of ledger entries linked to a source document via the sale or return field.

    The customer is the one the entry was posted to, which differs from the
    document's current customer when the document was reassigned.
    """
    link = PointLedgerEntry.doc_no_sale if is_sale else PointLedgerEntry.doc_no_return
    result = await db.execute(
        select(PointLedgerEntry.doc_no, PointLedgerEntry.cust_code)
        .where(link == source_doc_no)
        .order_by(PointLedgerEntry.doc_no)
    )
    return [(doc_no, cust_code) for doc_no, cust_code in result.all()]


async def delete_ledger_entries(db: AsyncSession, doc_nos: list[str]) -> int:
    if not doc_nos:
        return 0
    await db.execute(delete(PointLedgerDetail).where(PointLedgerDetail.doc_no.in_(doc_nos)))
    result = await db.execute(delete(PointLedgerEntry).where(PointLedgerEntry.doc_no.in_(doc_nos)))
    return result.rowcount or 0


async def delete_source_entries_for_customer(db: AsyncSession, cust_code: str) -> int:
    """Remove every document-derived entry of a customer. Manual add/use/cancel entries are kept."""
    result = await db.execute(
        select(PointLedgerEntry.doc_no).where(
            PointLedgerEntry.cust_code == cust_code,
            PointLedgerEntry.points_used == 0,
            or_(PointLedgerEntry.doc_no_sale.is_not(None), PointLedgerEntry.doc_no_return.is_not(None)),
        )
    )
    return await delete_ledger_entries(db, list(result.scalars().all()))


async def write_ledger_entry(db: AsyncSession, doc_no: str, candidate: CandidateEntry) -> PointLedgerEntry:
    """
    Upsert the header for ``doc_no`` and replace its details with the candidate's lines.

    Caller owns the transaction.
    """
    now = datetime.utcnow()
    result = await db.execute(select(PointLedgerEntry).where(PointLedgerEntry.doc_no == doc_no))
    entry = result.scalar_one_or_none()
    if entry is None:
        entry = PointLedgerEntry(
            doc_no=doc_no,
            doc_date=candidate.doc_date,
            doc_time=candidate.doc_time,
            doc_no_sale=candidate.doc_no_sale,
            doc_no_return=candidate.doc_no_return,
            cust_code=candidate.cust_code,
        )
        db.add(entry)

    entry.sum_sale_amount = candidate.sum_sale_amount
    entry.sum_return_amount = candidate.sum_return_amount
    entry.sum_total_amount = candidate.sum_total_amount
    entry.points_earned = candidate.points_earned
    entry.points_used = candidate.points_used
    entry.remark = candidate.remark
    entry.lastedit_datetime = now
    await db.flush()

    await db.execute(delete(PointLedgerDetail).where(PointLedgerDetail.doc_no == doc_no))
    db.add_all(
        [
            PointLedgerDetail(
                doc_no=doc_no,
                line_number=index,
                doc_date=candidate.doc_date,
                cust_code=candidate.cust_code,
                barcode=line.barcode,
                item_code=line.item_code,
                item_name=line.item_name,
                unit_code=line.unit_code,
                qty=line.qty,
                price=line.price,
                sale_amount=line.sale_amount,
                return_amount=line.return_amount,
                total_amount=line.total_amount,
                points=line.points,
                condition_code=line.condition_code,
                lastedit_datetime=now,
            )
            for index, line in enumerate(candidate.lines)
        ]
    )
    await db.flush()

    logger.debug(
        "points.ledger.written",
        doc_no=doc_no,
        cust_code=candidate.cust_code,
        points_earned=str(candidate.points_earned),
        line_count=len(candidate.lines),
    )
    return entry
