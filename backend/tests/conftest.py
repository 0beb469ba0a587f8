"""
Test Configuration — Fixtures for async DB, test client, and point data.

Each test gets its own SQLite file so code that opens its own sessions
(orchestrator, manual operations) sees the same data as the test.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from api.deps import get_current_user, get_db, get_session_factory
from api.main import app
from core.security import ROLE_MEMBER, ROLE_STAFF
from db.models import (
    TRANS_FLAG_RETURN,
    TRANS_FLAG_SALE,
    Customer,
    ItemPointCondition,
    ItemPointFlag,
    PointCondition,
    PointLedgerEntry,
    PointPeriod,
    SourceDocument,
    SourceLineItem,
)
from db.session import Base

DOC_DAY = date(2026, 3, 15)
EDITED_AT = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine and build all tables."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'points.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def test_db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def staff_user():
    return {"sub": "staff-1", "username": "cashier01", "role": ROLE_STAFF}


@pytest.fixture
def member_user():
    return {"sub": "member-1", "username": "somchai", "role": ROLE_MEMBER, "cust_code": "C001"}


@pytest.fixture
def mock_user(staff_user):
    """Authenticated user for API tests. Override in a test module to change role."""
    return staff_user


@pytest.fixture
async def client(session_factory, mock_user):
    """Create an async test client with dependency overrides."""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    def override_get_current_user():
        return mock_user

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_current_user] = override_get_current_user

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


class PointSeeder:
    """Writes source-side rows (customers, rules, documents) and commits them."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def _add(self, *rows):
        async with self.session_factory() as db:
            db.add_all(rows)
            await db.commit()

    async def customer(self, code: str = "C001", name: str = "Somchai Jaidee"):
        await self._add(Customer(code=code, name=name, point_balance=Decimal("0"), reward_point=Decimal("0")))

    async def period(self, start: date | None = None, end: date | None = None, is_active: bool = True):
        await self._add(
            PointPeriod(
                start_date=start or DOC_DAY - timedelta(days=30),
                end_date=end or DOC_DAY + timedelta(days=30),
                is_active=is_active,
                created_by="test",
            )
        )

    async def condition(
        self,
        code: str = "COND-A",
        amount_per_point: str | None = "100",
        point_earned: str = "1",
        items: tuple[str, ...] = (),
        status: int = 0,
    ):
        rows = [
            PointCondition(
                code=code,
                name=f"Condition {code}",
                amount_per_point=Decimal(amount_per_point) if amount_per_point is not None else None,
                point_earned=Decimal(point_earned),
                status=status,
            )
        ]
        rows.extend(ItemPointCondition(item_code=item, condition_code=code) for item in items)
        await self._add(*rows)

    async def flags(self, eligible: tuple[str, ...] = (), ineligible: tuple[str, ...] = ()):
        await self._add(
            *[ItemPointFlag(item_code=code, have_point=True) for code in eligible],
            *[ItemPointFlag(item_code=code, have_point=False) for code in ineligible],
        )

    async def document(
        self,
        doc_no: str,
        lines: list[tuple[str, str]],
        trans_flag: int = TRANS_FLAG_SALE,
        cust_code: str | None = "C001",
        doc_date: date = DOC_DAY,
        doc_time: str = "10:00",
        doc_ref: str | None = None,
        last_status: int = 0,
        lastedit_datetime: datetime = EDITED_AT,
    ):
        """``lines`` are (item_code, amount) pairs in line order."""
        rows = [
            SourceDocument(
                doc_no=doc_no,
                trans_flag=trans_flag,
                doc_date=doc_date,
                doc_time=doc_time,
                cust_code=cust_code,
                doc_ref=doc_ref,
                doc_ref_date=doc_date if doc_ref else None,
                last_status=last_status,
                lastedit_datetime=lastedit_datetime,
            )
        ]
        for line_number, (item_code, amount) in enumerate(lines):
            rows.append(
                SourceLineItem(
                    doc_no=doc_no,
                    trans_flag=trans_flag,
                    line_number=line_number,
                    barcode=f"885{line_number:04d}",
                    item_code=item_code,
                    item_name=f"Item {item_code}",
                    unit_code="PCS",
                    qty=Decimal("1"),
                    price=Decimal(amount),
                    sum_amount=Decimal(amount),
                )
            )
        await self._add(*rows)

    async def sale(self, doc_no: str, lines: list[tuple[str, str]], **kwargs):
        await self.document(doc_no, lines, trans_flag=TRANS_FLAG_SALE, **kwargs)

    async def return_(self, doc_no: str, lines: list[tuple[str, str]], doc_ref: str | None = None, **kwargs):
        kwargs.setdefault("doc_time", "18:00")
        await self.document(doc_no, lines, trans_flag=TRANS_FLAG_RETURN, doc_ref=doc_ref, **kwargs)


@pytest.fixture
def seeder(session_factory):
    return PointSeeder(session_factory)


@pytest.fixture
async def point_setup(seeder):
    """One member, one active period, COND-A (1 point per 100) on items A1 and A2; X1 not eligible."""
    await seeder.customer("C001")
    await seeder.period()
    await seeder.flags(eligible=("A1", "A2"), ineligible=("X1",))
    await seeder.condition("COND-A", amount_per_point="100", point_earned="1", items=("A1", "A2"))
    return seeder


class LedgerReader:
    """Reads engine-side state through fresh sessions so assertions never see stale identity maps."""

    def __init__(self, session_factory):
        self.session_factory = session_factory

    async def entries(self, cust_code: str) -> list[PointLedgerEntry]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(PointLedgerEntry).where(PointLedgerEntry.cust_code == cust_code).order_by(PointLedgerEntry.doc_no)
            )
            return list(result.scalars().all())

    async def balances(self, cust_code: str) -> tuple[Decimal, Decimal]:
        """(reward_point, point_balance) as stored on the customer row."""
        async with self.session_factory() as db:
            customer = await db.get(Customer, cust_code)
            return customer.reward_point, customer.point_balance

    async def bump(self, doc_no: str, trans_flag: int, minutes: int = 60):
        """Mark a source document as edited after its last calculation."""
        async with self.session_factory() as db:
            doc = await db.get(SourceDocument, (doc_no, trans_flag))
            doc.lastedit_datetime = doc.lastedit_datetime + timedelta(minutes=minutes)
            await db.commit()


@pytest.fixture
def ledger(session_factory):
    return LedgerReader(session_factory)
