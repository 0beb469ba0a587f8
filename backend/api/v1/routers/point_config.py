"""
Point Config Router — CRUD for eligibility periods.

Only documents dated inside an active period earn or lose points.
"""

from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, model_validator
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_db, require_staff
from db.models import PointPeriod

router = APIRouter(prefix="/api/v1/point-config", tags=["point-config"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class PeriodCreate(BaseModel):
    start_date: date
    end_date: date
    is_active: bool = True
    remark: str | None = None

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class PeriodUpdate(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool | None = None
    remark: str | None = None


class PeriodResponse(BaseModel):
    id: int
    start_date: date
    end_date: date
    is_active: bool
    remark: str | None
    created_by: str | None
    lastedit_datetime: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/periods", response_model=list[PeriodResponse])
async def list_periods(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    result = await db.execute(select(PointPeriod).order_by(PointPeriod.start_date.desc()))
    return result.scalars().all()


@router.post("/periods", response_model=PeriodResponse, status_code=201)
async def create_period(
    period: PeriodCreate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    db_period = PointPeriod(
        **period.model_dump(),
        created_by=user.get("username") or user.get("sub"),
        lastedit_datetime=datetime.utcnow(),
    )
    db.add(db_period)
    await db.commit()
    await db.refresh(db_period)
    return db_period


@router.put("/periods/{period_id}", response_model=PeriodResponse)
async def update_period(
    period_id: int,
    update: PeriodUpdate,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    period = await db.get(PointPeriod, period_id)
    if not period:
        raise HTTPException(status_code=404, detail="Period not found")

    changes = update.model_dump(exclude_unset=True, exclude_none=True)
    start = changes.get("start_date", period.start_date)
    end = changes.get("end_date", period.end_date)
    if start > end:
        raise HTTPException(status_code=400, detail="start_date must not be after end_date")

    for field, value in changes.items():
        setattr(period, field, value)
    period.lastedit_datetime = datetime.utcnow()

    await db.commit()
    await db.refresh(period)
    return period


@router.delete("/periods/{period_id}", status_code=204)
async def delete_period(
    period_id: int,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    period = await db.get(PointPeriod, period_id)
    if not period:
        raise HTTPException(status_code=404, detail="Period not found")
    await db.delete(period)
    await db.commit()
