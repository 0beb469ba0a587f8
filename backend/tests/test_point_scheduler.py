"""
Tests for the scheduled point job: beat wiring, single-flight run locks
and the Celery task entry points.
"""

import asyncio
from datetime import date, datetime
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from db.session import Base
from workers.celery_app import celery_app
from workers.point_calc import process_point_documents, recalc_customer_points, run_guarded
from workers.run_lock import RedisRunLock, RunLock, _SingleSlot


def test_beat_runs_every_half_hour_during_opening_hours():
    entry = celery_app.conf.beat_schedule["process-point-documents"]
    assert entry["task"] == "workers.point_calc.process_point_documents"
    assert entry["schedule"].minute == {0, 30}
    assert entry["schedule"].hour == set(range(5, 21))
    assert celery_app.conf.timezone == "Asia/Bangkok"


def test_run_lock_is_single_flight():
    lock = RunLock("test")
    assert lock.acquire() is True
    assert lock.acquire() is False
    lock.release()
    with lock.hold() as acquired:
        assert acquired is True
        with lock.hold() as second:
            assert second is False
    assert lock.locked is False


def test_redis_run_lock_uses_non_blocking_expiring_lock():
    client = MagicMock()
    client.lock.return_value.acquire.return_value = True
    lock = RedisRunLock("point_calc", timeout=1800, client=client)

    assert lock.acquire() is True
    client.lock.assert_called_once_with("pointledger:run-lock:point_calc", timeout=1800, blocking=False)

    client.lock.return_value.release.side_effect = LockError("expired")
    lock.release()


def test_redis_run_lock_requires_connection_details():
    with pytest.raises(ValueError):
        RedisRunLock("point_calc")


def test_run_lock_slot_requires_acquire_and_release():
    class AcquireOnly(_SingleSlot):
        def acquire(self) -> bool:
            return True

    with pytest.raises(TypeError):
        _SingleSlot()
    with pytest.raises(TypeError):
        AcquireOnly()
    assert issubclass(RunLock, _SingleSlot)
    assert issubclass(RedisRunLock, _SingleSlot)


@pytest.mark.asyncio
class TestRunGuarded:
    async def test_overlapping_run_is_skipped(self, session_factory):
        lock = RunLock("test")
        lock.acquire()
        result = await run_guarded(lock, session_factory)
        assert result == {"status": "skipped", "reason": "already_running"}
        lock.release()

    async def test_lock_is_released_after_success(self, point_setup, session_factory):
        await point_setup.sale("S1", [("A1", "300")])
        lock = RunLock("test")

        result = await run_guarded(lock, session_factory)

        assert result["status"] == "success"
        assert result["processed_count"] == 1
        assert lock.locked is False

    async def test_lock_is_released_after_failure(self, session_factory, monkeypatch):
        async def boom(session_factory=None):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr("points.orchestrator.process_all", boom)
        lock = RunLock("test")

        with pytest.raises(RuntimeError):
            await run_guarded(lock, session_factory)
        assert lock.locked is False


def _seed_sqlite(db_url: str) -> None:
    from db.models import (
        Customer,
        ItemPointCondition,
        ItemPointFlag,
        PointCondition,
        PointPeriod,
        SourceDocument,
        SourceLineItem,
    )

    engine = create_async_engine(db_url, echo=False)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def _seed() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with session_factory() as db:
            db.add_all(
                [
                    Customer(code="C001", name="Somchai Jaidee"),
                    PointPeriod(start_date=date(2026, 1, 1), end_date=date(2026, 12, 31), is_active=True),
                    ItemPointFlag(item_code="A1", have_point=True),
                    PointCondition(code="COND-A", amount_per_point=Decimal("100"), point_earned=Decimal("1"), status=0),
                    ItemPointCondition(item_code="A1", condition_code="COND-A"),
                    SourceDocument(
                        doc_no="S1",
                        trans_flag=44,
                        doc_date=date(2026, 3, 15),
                        doc_time="10:00",
                        cust_code="C001",
                        last_status=0,
                        lastedit_datetime=datetime(2026, 3, 15, 12, 0),
                    ),
                    SourceLineItem(doc_no="S1", trans_flag=44, line_number=0, item_code="A1", sum_amount=Decimal("450")),
                ]
            )
            await db.commit()
        await engine.dispose()

    asyncio.run(_seed())


def test_process_point_documents_task(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'task.db'}"
    _seed_sqlite(db_url)

    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))
    monkeypatch.setattr("workers.point_calc.get_worker_run_lock", lambda: RunLock("task-test"))

    result = process_point_documents.run()

    assert result["status"] == "success"
    assert result["sale_count"] == 1
    assert result["processed_count"] == 1

    again = process_point_documents.run()
    assert again["sale_count"] == 0


def test_recalc_task_reports_rejected_customer(tmp_path, monkeypatch):
    db_url = f"sqlite+aiosqlite:///{tmp_path / 'task.db'}"
    _seed_sqlite(db_url)
    monkeypatch.setattr("core.config.get_settings", lambda: SimpleNamespace(database_url=db_url))

    result = recalc_customer_points.run("GHOST")
    assert result["status"] == "failed"
    assert result["cust_code"] == "GHOST"

    rebuilt = recalc_customer_points.run("C001")
    assert rebuilt["success"] is True
    assert rebuilt["point_balance"] == 4.0
