"""
Watermark Tracker — last processed lastedit_datetime per source document.

A document is due when it has no watermark or its current lastedit_datetime
is strictly newer than the stored one. Watermarks are written after every
successful unit of work, including ones that produced no points.
"""

from datetime import datetime

from sqlalchemy import and_, delete, or_, select, tuple_
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import PointWatermark, SourceDocument


def is_due(stored: datetime | None, current_last_modified: datetime) -> bool:
    return stored is None or stored < current_last_modified


async def get_watermark(db: AsyncSession, doc_no: str, trans_flag: int) -> PointWatermark | None:
    return await db.get(PointWatermark, (doc_no, trans_flag))


async def is_document_due(db: AsyncSession, doc_no: str, trans_flag: int, current_last_modified: datetime) -> bool:
    mark = await get_watermark(db, doc_no, trans_flag)
    return is_due(mark.lastedit_datetime if mark else None, current_last_modified)


async def record_watermark(db: AsyncSession, doc_no: str, trans_flag: int, last_modified: datetime) -> PointWatermark:
    """Upsert the watermark with a fresh calc_datetime. Caller owns the transaction."""
    mark = await get_watermark(db, doc_no, trans_flag)
    now = datetime.utcnow()
    if mark is None:
        mark = PointWatermark(doc_no=doc_no, trans_flag=trans_flag)
        db.add(mark)
    mark.lastedit_datetime = last_modified
    mark.calc_datetime = now
    await db.flush()
    return mark


def due_clause():
    """SQL predicate over an outer join of SourceDocument -> PointWatermark."""
    return or_(
        PointWatermark.doc_no.is_(None),
        SourceDocument.lastedit_datetime > PointWatermark.lastedit_datetime,
    )


def watermark_join():
    return and_(
        PointWatermark.doc_no == SourceDocument.doc_no,
        PointWatermark.trans_flag == SourceDocument.trans_flag,
    )


async def delete_customer_watermarks(db: AsyncSession, cust_code: str) -> int:
    """Forget watermarks of every live document belonging to a customer."""
    customer_docs = select(SourceDocument.doc_no, SourceDocument.trans_flag).where(
        SourceDocument.cust_code == cust_code,
        SourceDocument.last_status == 0,
    )
    result = await db.execute(
        delete(PointWatermark)
        .where(tuple_(PointWatermark.doc_no, PointWatermark.trans_flag).in_(customer_docs))
    )
    return result.rowcount or 0
