"""
Customers Router — member balance lookups.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user, get_db, require_staff
from db.models import Customer

router = APIRouter(prefix="/api/v1/customers", tags=["customers"])


class CustomerResponse(BaseModel):
    code: str
    name: str
    point_balance: float
    reward_point: float

    model_config = {"from_attributes": True}


@router.get("/me", response_model=CustomerResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
):
    cust_code = user.get("cust_code")
    if not cust_code:
        raise HTTPException(status_code=400, detail="No member profile on this account")
    customer = await db.get(Customer, cust_code)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer


@router.get("/search", response_model=list[CustomerResponse])
async def search_customers(
    q: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    pattern = f"%{q}%"
    result = await db.execute(
        select(Customer)
        .where(or_(Customer.code.ilike(pattern), Customer.name.ilike(pattern)))
        .order_by(Customer.code)
        .limit(50)
    )
    return result.scalars().all()


@router.get("/{code}", response_model=CustomerResponse)
async def get_customer(
    code: str,
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(require_staff),
):
    customer = await db.get(Customer, code)
    if not customer:
        raise HTTPException(status_code=404, detail="Customer not found")
    return customer
