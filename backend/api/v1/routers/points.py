"""
Points Router — ledger processing, manual point operations and movement views.
"""

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, get_session_factory, require_staff, resolve_cust_code
from core.security import is_staff
from db.models import PointLedgerDetail, PointLedgerEntry
from points import manual
from points.errors import InsufficientPointsError, PointNotFoundError, PointValidationError
from points.orchestrator import recalc_customer
from workers.point_calc import local_run_lock, run_guarded

router = APIRouter(prefix="/api/v1/points", tags=["points"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PointsRequest(BaseModel):
    cust_code: str
    points: Decimal
    remark: str | None = None


class CancelUseRequest(BaseModel):
    doc_no: str
    remark: str | None = None


class RecalcRequest(BaseModel):
    cust_code: str


class LedgerEntryResponse(BaseModel):
    doc_no: str
    doc_date: date
    doc_time: str
    doc_no_sale: str | None
    doc_no_return: str | None
    doc_no_ref: str | None
    cust_code: str
    sum_sale_amount: float
    sum_return_amount: float
    sum_total_amount: float
    points_earned: float
    points_used: float
    remark: str | None
    lastedit_datetime: datetime

    model_config = {"from_attributes": True}


class LedgerDetailResponse(BaseModel):
    line_number: int
    barcode: str | None
    item_code: str
    item_name: str | None
    unit_code: str | None
    qty: float
    price: float
    sale_amount: float
    return_amount: float
    total_amount: float
    points: float
    condition_code: str | None

    model_config = {"from_attributes": True}


class MovementPage(BaseModel):
    data: list[LedgerEntryResponse]
    total: int
    page: int
    limit: int
    total_pages: int


class MovementDetail(BaseModel):
    header: LedgerEntryResponse
    details: list[LedgerDetailResponse]


def _to_http(exc: Exception) -> HTTPException:
    if isinstance(exc, InsufficientPointsError):
        return HTTPException(
            status_code=400,
            detail={"error": "insufficient_points", "balance": float(exc.balance), "requested": float(exc.requested)},
        )
    if isinstance(exc, PointNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _actor(user: dict) -> str:
    return user.get("username") or user.get("sub") or "-"


# ─── Processing ─────────────────────────────────────────────────────────────


@router.post("/process-all")
async def process_all_documents(
    user: dict = Depends(require_staff),
    session_factory=Depends(get_session_factory),
):
    """Run one incremental pass now. Skipped if a pass is already running in this process."""
    return await run_guarded(local_run_lock, session_factory)


@router.post("/recalc")
async def recalc_customer_points(
    body: RecalcRequest,
    user: dict = Depends(require_staff),
    session_factory=Depends(get_session_factory),
):
    """Rebuild one customer's document-derived ledger from scratch."""
    try:
        result = await recalc_customer(body.cust_code, session_factory)
    except (PointValidationError, PointNotFoundError) as exc:
        raise _to_http(exc) from exc
    return result.as_dict()


# ─── Manual operations ──────────────────────────────────────────────────────


@router.post("/add")
async def add_points(
    body: PointsRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    try:
        result = await manual.add_points(db, body.cust_code, body.points, body.remark, actor=_actor(user))
    except (PointValidationError, PointNotFoundError) as exc:
        raise _to_http(exc) from exc
    return result.as_dict()


@router.post("/use")
async def use_points(
    body: PointsRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    try:
        result = await manual.use_points(db, body.cust_code, body.points, body.remark, actor=_actor(user))
    except (PointValidationError, PointNotFoundError) as exc:
        raise _to_http(exc) from exc
    return result.as_dict()


@router.post("/cancel-use")
async def cancel_use(
    body: CancelUseRequest,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    try:
        result = await manual.cancel_use(db, body.doc_no, body.remark, actor=_actor(user))
    except (PointValidationError, PointNotFoundError) as exc:
        raise _to_http(exc) from exc
    return result.as_dict()


# ─── Movement views ─────────────────────────────────────────────────────────


@router.get("/movement", response_model=MovementPage)
async def list_movement(
    cust_code: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    """Point movement history, newest first."""
    code = resolve_cust_code(user, cust_code)
    total = (
        await db.execute(select(func.count()).select_from(PointLedgerEntry).where(PointLedgerEntry.cust_code == code))
    ).scalar_one()
    result = await db.execute(
        select(PointLedgerEntry)
        .where(PointLedgerEntry.cust_code == code)
        .order_by(PointLedgerEntry.doc_date.desc(), PointLedgerEntry.doc_time.desc(), PointLedgerEntry.doc_no.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "data": result.scalars().all(),
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


@router.get("/movement/{doc_no}/detail", response_model=MovementDetail)
async def get_movement_detail(
    doc_no: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    entry = (await db.execute(select(PointLedgerEntry).where(PointLedgerEntry.doc_no == doc_no))).scalar_one_or_none()
    if entry is None:
        raise HTTPException(status_code=404, detail="Ledger entry not found")
    if not is_staff(user) and entry.cust_code != user.get("cust_code"):
        raise HTTPException(status_code=403, detail="Not allowed")

    details = await db.execute(
        select(PointLedgerDetail)
        .where(PointLedgerDetail.doc_no == doc_no)
        .order_by(PointLedgerDetail.line_number, PointLedgerDetail.item_code)
    )
    return {"header": entry, "details": details.scalars().all()}
