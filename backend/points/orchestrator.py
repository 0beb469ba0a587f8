"""
Batch Orchestrator — incremental point reconciliation over source documents.

Run lifecycle: IDLE -> SCANNING -> PROCESSING -> IDLE

  SCANNING:   load active periods (none -> successful no-op), then select
              live sale and return documents dated inside a period that are
              due per their watermark, plus previously processed documents
              that were edited out of eligibility (cancelled, customer
              removed, moved outside every period).
  PROCESSING: retractions first, then sales, then returns. Each due
              document is a DocumentTask run in its own unit of
              work (session + transaction). A failing task rolls back alone,
              is logged and counted; its watermark stays unset so the next
              run retries it. Committed tasks survive later failures.

Full rebuild (per customer) deletes that customer's document-derived ledger
entries and watermarks and reprocesses every eligible document in a single
transaction, followed by one balance reconciliation.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum

import structlog
from sqlalchemy import not_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from db.models import TRANS_FLAG_RETURN, TRANS_FLAG_SALE, PointWatermark, SourceDocument
from points.allocation import calc_sale_document
from points.balance import CustomerBalance, empty_balance, lock_customer, reconcile_customer_balance
from points.errors import CustomerNotFoundError, PointValidationError
from points.ledger import (
    delete_ledger_entries,
    delete_source_entries_for_customer,
    find_entries_for_source,
    next_doc_no,
    write_ledger_entry,
)
from points.periods import ActivePeriod, load_active_periods, period_clause
from points.reversal import calc_return_document
from points.watermark import delete_customer_watermarks, due_clause, record_watermark, watermark_join

logger = structlog.get_logger()

NO_ACTIVE_PERIOD = "no_active_period"
LIVE_STATUS = 0


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"


class TaskOutcome(str, Enum):
    PROCESSED = "processed"  # ledger entry written
    SKIPPED = "skipped"  # nothing eligible, watermark recorded
    RETRACTED = "retracted"  # no longer eligible, stale entries removed
    FAILED = "failed"  # rolled back, retried next run


@dataclass(frozen=True)
class DocumentTask:
    """One due source document, processed as an isolated unit of work."""

    doc_no: str
    trans_flag: int
    cust_code: str | None
    retract: bool = False

    @property
    def is_sale(self) -> bool:
        return self.trans_flag == TRANS_FLAG_SALE


@dataclass
class ProcessResult:
    processed_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    sale_count: int = 0
    return_count: int = 0
    retracted_count: int = 0
    message: str | None = None
    failed_documents: list[str] = field(default_factory=list)

    def record(self, task: DocumentTask, outcome: TaskOutcome) -> None:
        if outcome is TaskOutcome.PROCESSED:
            self.processed_count += 1
        elif outcome is TaskOutcome.SKIPPED:
            self.skipped_count += 1
        elif outcome is TaskOutcome.RETRACTED:
            self.retracted_count += 1
        else:
            self.failed_count += 1
            self.failed_documents.append(task.doc_no)

    def as_dict(self) -> dict:
        return {"success": True, **asdict(self)}


@dataclass
class RebuildResult:
    balance: CustomerBalance
    document_count: int = 0
    entry_count: int = 0
    message: str | None = None

    def as_dict(self) -> dict:
        return {
            "success": True,
            "cust_code": self.balance.cust_code,
            "point_balance": float(self.balance.point_balance),
            "reward_point": float(self.balance.reward_point),
            "document_count": self.document_count,
            "entry_count": self.entry_count,
            "message": self.message,
        }


def eligible_documents_query(periods: list[ActivePeriod], trans_flag: int):
    return (
        select(SourceDocument)
        .where(
            SourceDocument.trans_flag == trans_flag,
            SourceDocument.last_status == LIVE_STATUS,
            SourceDocument.cust_code.is_not(None),
            SourceDocument.cust_code != "",
            period_clause(periods),
        )
        .order_by(SourceDocument.doc_date, SourceDocument.doc_time, SourceDocument.doc_no)
    )


async def scan_due_documents(db: AsyncSession, periods: list[ActivePeriod], trans_flag: int) -> list[DocumentTask]:
    query = eligible_documents_query(periods, trans_flag).outerjoin(PointWatermark, watermark_join()).where(due_clause())
    result = await db.execute(query)
    return [
        DocumentTask(doc_no=doc.doc_no, trans_flag=doc.trans_flag, cust_code=doc.cust_code)
        for doc in result.scalars().all()
    ]


def ineligible_clause(periods: list[ActivePeriod]):
    """Negation of the eligibility filter in eligible_documents_query."""
    return or_(
        SourceDocument.last_status != LIVE_STATUS,
        SourceDocument.cust_code.is_(None),
        SourceDocument.cust_code == "",
        not_(period_clause(periods)),
    )


async def scan_retracted_documents(db: AsyncSession, periods: list[ActivePeriod]) -> list[DocumentTask]:
    """Previously processed documents edited since, that no longer qualify for points."""
    result = await db.execute(
        select(SourceDocument)
        .join(PointWatermark, watermark_join())
        .where(
            SourceDocument.lastedit_datetime > PointWatermark.lastedit_datetime,
            ineligible_clause(periods),
        )
        .order_by(SourceDocument.doc_date, SourceDocument.doc_time, SourceDocument.doc_no, SourceDocument.trans_flag)
    )
    return [
        DocumentTask(doc_no=doc.doc_no, trans_flag=doc.trans_flag, cust_code=doc.cust_code, retract=True)
        for doc in result.scalars().all()
    ]


async def remove_source_entries(db: AsyncSession, doc: SourceDocument) -> tuple[list[str], set[str]]:
    """Delete entries linked to ``doc``. Returns their doc_nos and the customers they were posted to."""
    prior = await find_entries_for_source(db, doc.doc_no, doc.is_sale)
    doc_nos = [doc_no for doc_no, _ in prior]
    if doc_nos:
        await delete_ledger_entries(db, doc_nos)
    return doc_nos, {cust_code for _, cust_code in prior}


async def apply_document(db: AsyncSession, doc: SourceDocument, reconcile: bool = True) -> bool:
    """
    Recompute one document's ledger entry inside the caller's transaction.

    Stale entries linked to the document are removed first; the first one's
    document number is reused for the recomputed entry. The watermark is
    recorded whether or not points resulted. Returns True when an entry was written.

    Customers that held a removed entry are always reconciled, including one the
    document has since been moved away from. With ``reconcile=False`` the
    document's own customer is left to the caller.
    """
    prior_doc_nos, prior_customers = await remove_source_entries(db, doc)

    if doc.is_sale:
        candidate = await calc_sale_document(db, doc)
    else:
        candidate = await calc_return_document(db, doc)

    if candidate is not None:
        ledger_doc_no = prior_doc_nos[0] if prior_doc_nos else await next_doc_no(db)
        await write_ledger_entry(db, ledger_doc_no, candidate)

    affected = set(prior_customers)
    if candidate is not None:
        affected.add(doc.cust_code)
    if not reconcile:
        affected.discard(doc.cust_code)
    for cust_code in sorted(affected):
        await reconcile_customer_balance(db, cust_code)

    await record_watermark(db, doc.doc_no, doc.trans_flag, doc.lastedit_datetime)
    return candidate is not None


async def retract_document(db: AsyncSession, doc: SourceDocument) -> int:
    """
    Withdraw a document that no longer qualifies: drop its linked entries,
    reconcile the customers they were posted to and record the watermark.
    Returns the number of entries removed.
    """
    prior_doc_nos, prior_customers = await remove_source_entries(db, doc)
    for cust_code in sorted(prior_customers):
        await reconcile_customer_balance(db, cust_code)
    await record_watermark(db, doc.doc_no, doc.trans_flag, doc.lastedit_datetime)
    return len(prior_doc_nos)


class BatchOrchestrator:
    """Drives one periodic pass, or a per-customer rebuild, over a session factory."""

    def __init__(self, session_factory: async_sessionmaker | None = None):
        if session_factory is None:
            from db.session import AsyncSessionLocal

            session_factory = AsyncSessionLocal
        self.session_factory = session_factory
        self.state = RunState.IDLE

    def _transition(self, state: RunState) -> None:
        logger.debug("points.orchestrator.state", from_state=self.state.value, to_state=state.value)
        self.state = state

    async def run_task(self, task: DocumentTask) -> TaskOutcome:
        """Run a single document in its own session and transaction."""
        async with self.session_factory() as db:
            try:
                doc = await db.get(SourceDocument, (task.doc_no, task.trans_flag))
                if doc is None:
                    logger.warning("points.orchestrator.document_vanished", doc_no=task.doc_no, trans_flag=task.trans_flag)
                    return TaskOutcome.SKIPPED
                if task.retract:
                    removed = await retract_document(db, doc)
                    await db.commit()
                    logger.info(
                        "points.orchestrator.document_retracted",
                        doc_no=task.doc_no,
                        trans_flag=task.trans_flag,
                        removed_entries=removed,
                    )
                    return TaskOutcome.RETRACTED
                produced = await apply_document(db, doc)
                await db.commit()
            except Exception as exc:  # noqa: BLE001
                await db.rollback()
                logger.error(
                    "points.orchestrator.document_failed",
                    doc_no=task.doc_no,
                    trans_flag=task.trans_flag,
                    cust_code=task.cust_code,
                    error=str(exc),
                    exc_info=True,
                )
                return TaskOutcome.FAILED
        return TaskOutcome.PROCESSED if produced else TaskOutcome.SKIPPED

    async def process_all(self) -> ProcessResult:
        """One incremental pass over every due document."""
        result = ProcessResult()
        self._transition(RunState.SCANNING)
        try:
            async with self.session_factory() as db:
                periods = await load_active_periods(db)
                if not periods:
                    logger.info("points.orchestrator.no_active_period")
                    result.message = NO_ACTIVE_PERIOD
                    return result
                sale_tasks = await scan_due_documents(db, periods, TRANS_FLAG_SALE)
                return_tasks = await scan_due_documents(db, periods, TRANS_FLAG_RETURN)
                retract_tasks = await scan_retracted_documents(db, periods)

            result.sale_count = len(sale_tasks)
            result.return_count = len(return_tasks)
            logger.info(
                "points.orchestrator.scan_complete",
                sale_count=len(sale_tasks),
                return_count=len(return_tasks),
                retract_count=len(retract_tasks),
            )

            self._transition(RunState.PROCESSING)
            # Sales before returns so a return can anchor on a sale ledgered in the same run
            for task in [*retract_tasks, *sale_tasks, *return_tasks]:
                result.record(task, await self.run_task(task))

            logger.info(
                "points.orchestrator.run_complete",
                processed_count=result.processed_count,
                skipped_count=result.skipped_count,
                retracted_count=result.retracted_count,
                failed_count=result.failed_count,
            )
            return result
        finally:
            self._transition(RunState.IDLE)

    async def recalc_customer(self, cust_code: str) -> RebuildResult:
        """Full rebuild of one customer's document-derived ledger, in one transaction."""
        cust_code = (cust_code or "").strip()
        if not cust_code:
            raise PointValidationError("cust_code is required")

        async with self.session_factory() as db:
            try:
                customer = await lock_customer(db, cust_code)
                if customer is None:
                    raise CustomerNotFoundError(cust_code)

                periods = await load_active_periods(db)
                if not periods:
                    logger.info("points.rebuild.no_active_period", cust_code=cust_code)
                    await db.rollback()
                    return RebuildResult(balance=empty_balance(cust_code), message=NO_ACTIVE_PERIOD)

                removed = await delete_source_entries_for_customer(db, cust_code)
                await delete_customer_watermarks(db, cust_code)

                document_count = 0
                entry_count = 0
                for trans_flag in (TRANS_FLAG_SALE, TRANS_FLAG_RETURN):
                    docs = await db.execute(
                        eligible_documents_query(periods, trans_flag).where(SourceDocument.cust_code == cust_code)
                    )
                    for doc in docs.scalars().all():
                        document_count += 1
                        if await apply_document(db, doc, reconcile=False):
                            entry_count += 1

                balance = await reconcile_customer_balance(db, cust_code)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        logger.info(
            "points.rebuild.complete",
            cust_code=cust_code,
            removed_entries=removed,
            document_count=document_count,
            entry_count=entry_count,
            point_balance=str(balance.point_balance),
        )
        return RebuildResult(balance=balance, document_count=document_count, entry_count=entry_count)


async def process_all(session_factory: async_sessionmaker | None = None) -> ProcessResult:
    return await BatchOrchestrator(session_factory).process_all()


async def recalc_customer(cust_code: str, session_factory: async_sessionmaker | None = None) -> RebuildResult:
    return await BatchOrchestrator(session_factory).recalc_customer(cust_code)
