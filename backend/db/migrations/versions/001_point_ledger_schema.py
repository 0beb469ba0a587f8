"""
Point ledger schema - engine-owned tables

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _money(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(name, sa.Numeric(18, 2), nullable=nullable, server_default="0")


def upgrade() -> None:
    # 1. Ledger entries
    op.create_table(
        "point_ledger_entries",
        sa.Column("doc_no", sa.String(50), primary_key=True),
        sa.Column("doc_date", sa.Date, nullable=False),
        sa.Column("doc_time", sa.String(8), nullable=False),
        sa.Column("doc_no_sale", sa.String(50)),
        sa.Column("doc_no_return", sa.String(50)),
        sa.Column("doc_no_ref", sa.String(50)),
        sa.Column("cust_code", sa.String(50), nullable=False),
        _money("sum_sale_amount"),
        _money("sum_return_amount"),
        _money("sum_total_amount"),
        _money("points_earned"),
        _money("points_used"),
        sa.Column("remark", sa.Text),
        sa.Column("lastedit_datetime", sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("doc_no_sale IS NULL OR doc_no_return IS NULL", name="ck_point_ledger_single_source"),
    )
    op.create_index("ix_point_ledger_entries_cust", "point_ledger_entries", ["cust_code"])
    op.create_index("ix_point_ledger_entries_sale", "point_ledger_entries", ["doc_no_sale"])
    op.create_index("ix_point_ledger_entries_return", "point_ledger_entries", ["doc_no_return"])
    op.create_index("ix_point_ledger_entries_ref", "point_ledger_entries", ["doc_no_ref"])

    # 2. Ledger details
    op.create_table(
        "point_ledger_details",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "doc_no",
            sa.String(50),
            sa.ForeignKey("point_ledger_entries.doc_no", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("line_number", sa.Integer, nullable=False, server_default="0"),
        sa.Column("doc_date", sa.Date, nullable=False),
        sa.Column("cust_code", sa.String(50), nullable=False),
        sa.Column("barcode", sa.String(50)),
        sa.Column("item_code", sa.String(50), nullable=False),
        sa.Column("item_name", sa.String(255)),
        sa.Column("unit_code", sa.String(20)),
        _money("qty"),
        _money("price"),
        _money("sale_amount"),
        _money("return_amount"),
        _money("total_amount"),
        _money("points"),
        sa.Column("condition_code", sa.String(50)),
        sa.Column("lastedit_datetime", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_point_ledger_details_doc", "point_ledger_details", ["doc_no"])
    op.create_index("ix_point_ledger_details_cust", "point_ledger_details", ["cust_code"])

    # 3. Watermarks
    op.create_table(
        "point_watermarks",
        sa.Column("doc_no", sa.String(50), primary_key=True),
        sa.Column("trans_flag", sa.Integer, primary_key=True),
        sa.Column("lastedit_datetime", sa.DateTime, nullable=False),
        sa.Column("calc_datetime", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )

    # 4. Ledger document sequence
    op.create_table(
        "point_doc_sequence",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("issued_at", sa.DateTime, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("point_doc_sequence")
    op.drop_table("point_watermarks")
    op.drop_index("ix_point_ledger_details_cust", table_name="point_ledger_details")
    op.drop_index("ix_point_ledger_details_doc", table_name="point_ledger_details")
    op.drop_table("point_ledger_details")
    op.drop_index("ix_point_ledger_entries_ref", table_name="point_ledger_entries")
    op.drop_index("ix_point_ledger_entries_return", table_name="point_ledger_entries")
    op.drop_index("ix_point_ledger_entries_sale", table_name="point_ledger_entries")
    op.drop_index("ix_point_ledger_entries_cust", table_name="point_ledger_entries")
    op.drop_table("point_ledger_entries")
