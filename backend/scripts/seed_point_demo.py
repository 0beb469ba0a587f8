"""
Seed Point Demo — creates customers, source documents and point rules for development.

Run: python scripts/seed_point_demo.py
"""

import asyncio
import os
import random
import sys
from datetime import date, datetime, timedelta
from decimal import Decimal

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from core.config import get_settings
from db.models import (
    TRANS_FLAG_RETURN,
    TRANS_FLAG_SALE,
    Customer,
    ItemPointCondition,
    ItemPointFlag,
    PointCondition,
    PointPeriod,
    SourceDocument,
    SourceLineItem,
)
from db.session import Base

settings = get_settings()

CUSTOMERS = [("C0001", "Somchai Jaidee"), ("C0002", "Suda Rakthai"), ("C0003", "Anan Srisuk")]
ITEMS = [
    # item_code, name, price, have_point, condition
    ("ITM-001", "Jasmine Rice 5kg", Decimal("245.00"), True, "COND-A"),
    ("ITM-002", "Fish Sauce 700ml", Decimal("38.00"), True, "COND-A"),
    ("ITM-003", "Coconut Milk 1L", Decimal("65.00"), True, "COND-B"),
    ("ITM-004", "Cigarettes", Decimal("150.00"), False, None),
    ("ITM-005", "Dish Soap", Decimal("49.00"), True, None),
]
CONDITIONS = [
    ("COND-A", "Grocery 1 point / 100", Decimal("100"), Decimal("1")),
    ("COND-B", "Promo 2 points / 50", Decimal("50"), Decimal("2")),
]


async def _upsert(db: AsyncSession, model, key: dict, values: dict):
    existing = (await db.execute(select(model).filter_by(**key))).scalar_one_or_none()
    if existing is None:
        db.add(model(**key, **values))
        return
    for field, value in values.items():
        setattr(existing, field, value)


async def seed_data(days: int = 14):
    """Create demo data for development."""
    engine = create_async_engine(settings.database_url)
    SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    rng = random.Random(42)
    today = date.today()

    async with SessionLocal() as db:
        # ── Customers ────────────────────────────────────────
        for code, name in CUSTOMERS:
            await _upsert(db, Customer, {"code": code}, {"name": name})

        # ── Rules ────────────────────────────────────────────
        for code, name, amount_per_point, point_earned in CONDITIONS:
            await _upsert(
                db,
                PointCondition,
                {"code": code},
                {"name": name, "amount_per_point": amount_per_point, "point_earned": point_earned, "status": 0},
            )
        for item_code, _, _, have_point, condition in ITEMS:
            await _upsert(db, ItemPointFlag, {"item_code": item_code}, {"have_point": have_point})
            if condition:
                await _upsert(db, ItemPointCondition, {"item_code": item_code, "condition_code": condition}, {})

        # ── Active period ────────────────────────────────────
        period = (await db.execute(select(PointPeriod).where(PointPeriod.remark == "demo"))).scalar_one_or_none()
        if period is None:
            db.add(
                PointPeriod(
                    start_date=today - timedelta(days=days),
                    end_date=today + timedelta(days=30),
                    is_active=True,
                    remark="demo",
                    created_by="seed",
                )
            )

        # ── Sale documents (and a few returns) ───────────────
        doc_count = 0
        for offset in range(days):
            day = today - timedelta(days=offset)
            for cust_code, _ in CUSTOMERS:
                doc_no = f"SO{day.strftime('%Y%m%d')}-{cust_code}"
                if await db.get(SourceDocument, (doc_no, TRANS_FLAG_SALE)):
                    continue
                db.add(
                    SourceDocument(
                        doc_no=doc_no,
                        trans_flag=TRANS_FLAG_SALE,
                        doc_date=day,
                        doc_time=f"{rng.randint(8, 20):02d}:{rng.randint(0, 59):02d}",
                        cust_code=cust_code,
                        last_status=0,
                        lastedit_datetime=datetime.utcnow(),
                    )
                )
                chosen = rng.sample(ITEMS, k=rng.randint(1, len(ITEMS)))
                for line_number, (item_code, item_name, price, _, _) in enumerate(chosen):
                    qty = Decimal(rng.randint(1, 6))
                    db.add(
                        SourceLineItem(
                            doc_no=doc_no,
                            trans_flag=TRANS_FLAG_SALE,
                            line_number=line_number,
                            barcode=f"885{item_code[-3:]}0000",
                            item_code=item_code,
                            item_name=item_name,
                            unit_code="PCS",
                            qty=qty,
                            price=price,
                            sum_amount=qty * price,
                        )
                    )
                doc_count += 1

                if rng.random() < 0.15:
                    item_code, item_name, price, _, _ = chosen[0]
                    return_no = f"RT{day.strftime('%Y%m%d')}-{cust_code}"
                    db.add(
                        SourceDocument(
                            doc_no=return_no,
                            trans_flag=TRANS_FLAG_RETURN,
                            doc_date=day,
                            doc_time="21:00",
                            cust_code=cust_code,
                            doc_ref=doc_no,
                            doc_ref_date=day,
                            last_status=0,
                            lastedit_datetime=datetime.utcnow(),
                        )
                    )
                    db.add(
                        SourceLineItem(
                            doc_no=return_no,
                            trans_flag=TRANS_FLAG_RETURN,
                            line_number=0,
                            item_code=item_code,
                            item_name=item_name,
                            unit_code="PCS",
                            qty=Decimal("1"),
                            price=price,
                            sum_amount=price,
                        )
                    )

        await db.commit()
        print(f"✅ Seeded {len(CUSTOMERS)} customers, {doc_count} sale documents")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
