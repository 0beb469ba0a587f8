#!/usr/bin/env python3
"""
Point Calculation CLI — run the ledger reconciliation outside Celery.

Usage:
  python scripts/run_point_calc.py                   # one incremental pass
  python scripts/run_point_calc.py --customer C0001  # full rebuild of one customer
  python scripts/run_point_calc.py --help
"""

import argparse
import asyncio
import json
import os
import sys

# Add backend to path so imports work
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def _run(customer: str | None) -> dict:
    from core.config import get_settings
    from db.session import create_session_factory
    from points.orchestrator import recalc_customer
    from workers.point_calc import local_run_lock, run_guarded

    settings = get_settings()
    engine, session_factory = create_session_factory(settings.database_url)
    try:
        if customer:
            result = await recalc_customer(customer, session_factory)
            return result.as_dict()
        return await run_guarded(local_run_lock, session_factory)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(
        description="PointLedger point calculation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Ledger every new or edited document in the active periods
  python scripts/run_point_calc.py

  # Rebuild one customer's document-derived entries and balances
  python scripts/run_point_calc.py --customer C0001
        """,
    )
    parser.add_argument(
        "--customer",
        type=str,
        default=None,
        help="Customer code to rebuild from scratch (default: incremental pass over all customers)",
    )
    args = parser.parse_args()

    from points.errors import PointError

    try:
        summary = asyncio.run(_run(args.customer))
    except PointError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(summary, indent=2, default=str))


if __name__ == "__main__":
    main()
