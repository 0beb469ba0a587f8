"""
PointLedger Database Models

Source tables are owned by the store's transactional system and are only
read by the point engine. Ledger tables are owned and fully managed here.

Tables:
  Source (read-only):
  1. customers              - Members (balance columns written only by the reconciler)
  2. source_documents       - Sale (44) and return (48) document headers
  3. source_line_items      - Document detail rows
  4. item_point_flags       - Per-item eligibility flag (have_point)
  5. point_conditions       - Threshold rules (amount_per_point -> point_earned)
  6. item_point_conditions  - Item -> condition mapping
  7. point_periods          - Date ranges during which accrual is active

  Ledger (engine-owned):
  8. point_ledger_entries   - One posted point transaction per row
  9. point_ledger_details   - Per-item breakdown of a ledger entry
  10. point_watermarks      - Last processed lastedit_datetime per source document
  11. point_doc_sequence    - Portable sequence behind ledger document numbers
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)

from db.session import Base

TRANS_FLAG_SALE = 44
TRANS_FLAG_RETURN = 48

ZERO = Decimal("0")


def Money():
    return Numeric(18, 2)


# ─── 1. Customers ──────────────────────────────────────────────────────────


class Customer(Base):
    __tablename__ = "customers"

    code = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    point_balance = Column(Money(), nullable=False, default=ZERO)
    reward_point = Column(Money(), nullable=False, default=ZERO)


# ─── 2. Source Documents ───────────────────────────────────────────────────


class SourceDocument(Base):
    __tablename__ = "source_documents"

    doc_no = Column(String(50), primary_key=True)
    trans_flag = Column(Integer, primary_key=True)
    doc_date = Column(Date, nullable=False)
    doc_time = Column(String(8), nullable=False, default="00:00")
    cust_code = Column(String(50))
    doc_ref = Column(String(50))
    doc_ref_date = Column(Date)
    last_status = Column(Integer, nullable=False, default=0)
    lastedit_datetime = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("trans_flag IN (44, 48)", name="ck_source_document_trans_flag"),
        Index("ix_source_documents_cust", "cust_code"),
        Index("ix_source_documents_date", "doc_date", "doc_time"),
    )

    @property
    def is_sale(self) -> bool:
        return self.trans_flag == TRANS_FLAG_SALE


# ─── 3. Source Line Items ──────────────────────────────────────────────────


class SourceLineItem(Base):
    __tablename__ = "source_line_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    doc_no = Column(String(50), nullable=False)
    trans_flag = Column(Integer, nullable=False)
    line_number = Column(Integer, nullable=False, default=0)
    barcode = Column(String(50))
    item_code = Column(String(50), nullable=False)
    item_name = Column(String(255))
    unit_code = Column(String(20))
    qty = Column(Money(), nullable=False, default=ZERO)
    price = Column(Money(), nullable=False, default=ZERO)
    sum_amount = Column(Money(), nullable=False, default=ZERO)

    __table_args__ = (Index("ix_source_line_items_doc", "doc_no", "trans_flag"),)


# ─── 4. Item Eligibility Flags ─────────────────────────────────────────────


class ItemPointFlag(Base):
    __tablename__ = "item_point_flags"

    item_code = Column(String(50), primary_key=True)
    have_point = Column(Boolean, nullable=False, default=False)


# ─── 5. Point Conditions ───────────────────────────────────────────────────


class PointCondition(Base):
    __tablename__ = "point_conditions"

    code = Column(String(50), primary_key=True)
    name = Column(String(255))
    amount_per_point = Column(Money())
    point_earned = Column(Money())
    status = Column(Integer, nullable=False, default=0)


# ─── 6. Item -> Condition Mapping ──────────────────────────────────────────


class ItemPointCondition(Base):
    __tablename__ = "item_point_conditions"

    item_code = Column(String(50), primary_key=True)
    condition_code = Column(String(50), primary_key=True)


# ─── 7. Eligibility Periods ────────────────────────────────────────────────


class PointPeriod(Base):
    __tablename__ = "point_periods"

    id = Column(Integer, primary_key=True, autoincrement=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    remark = Column(Text)
    created_by = Column(String(100))
    lastedit_datetime = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (CheckConstraint("start_date <= end_date", name="ck_point_period_range"),)


# ─── 8. Ledger Entries ─────────────────────────────────────────────────────


class PointLedgerEntry(Base):
    __tablename__ = "point_ledger_entries"

    doc_no = Column(String(50), primary_key=True)
    doc_date = Column(Date, nullable=False)
    doc_time = Column(String(8), nullable=False)
    doc_no_sale = Column(String(50))
    doc_no_return = Column(String(50))
    # Manual cancellation entries point at the redemption they reverse
    doc_no_ref = Column(String(50))
    cust_code = Column(String(50), nullable=False)
    sum_sale_amount = Column(Money(), nullable=False, default=ZERO)
    sum_return_amount = Column(Money(), nullable=False, default=ZERO)
    sum_total_amount = Column(Money(), nullable=False, default=ZERO)
    points_earned = Column(Money(), nullable=False, default=ZERO)
    points_used = Column(Money(), nullable=False, default=ZERO)
    remark = Column(Text)
    lastedit_datetime = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint(
            "doc_no_sale IS NULL OR doc_no_return IS NULL",
            name="ck_point_ledger_single_source",
        ),
        Index("ix_point_ledger_entries_cust", "cust_code"),
        Index("ix_point_ledger_entries_sale", "doc_no_sale"),
        Index("ix_point_ledger_entries_return", "doc_no_return"),
        Index("ix_point_ledger_entries_ref", "doc_no_ref"),
    )


# ─── 9. Ledger Details ─────────────────────────────────────────────────────


class PointLedgerDetail(Base):
    __tablename__ = "point_ledger_details"

    id = Column(Integer, primary_key=True, autoincrement=True)
    doc_no = Column(String(50), ForeignKey("point_ledger_entries.doc_no", ondelete="CASCADE"), nullable=False)
    line_number = Column(Integer, nullable=False, default=0)
    doc_date = Column(Date, nullable=False)
    cust_code = Column(String(50), nullable=False)
    barcode = Column(String(50))
    item_code = Column(String(50), nullable=False)
    item_name = Column(String(255))
    unit_code = Column(String(20))
    qty = Column(Money(), nullable=False, default=ZERO)
    price = Column(Money(), nullable=False, default=ZERO)
    sale_amount = Column(Money(), nullable=False, default=ZERO)
    return_amount = Column(Money(), nullable=False, default=ZERO)
    total_amount = Column(Money(), nullable=False, default=ZERO)
    points = Column(Money(), nullable=False, default=ZERO)
    condition_code = Column(String(50))
    lastedit_datetime = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("ix_point_ledger_details_doc", "doc_no"),
        Index("ix_point_ledger_details_cust", "cust_code"),
    )


# ─── 10. Processing Watermarks ─────────────────────────────────────────────


class PointWatermark(Base):
    __tablename__ = "point_watermarks"

    doc_no = Column(String(50), primary_key=True)
    trans_flag = Column(Integer, primary_key=True)
    lastedit_datetime = Column(DateTime, nullable=False)
    calc_datetime = Column(DateTime, nullable=False, default=datetime.utcnow)


# ─── 11. Ledger Document Sequence ──────────────────────────────────────────


class PointDocSequence(Base):
    __tablename__ = "point_doc_sequence"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issued_at = Column(DateTime, nullable=False, default=datetime.utcnow)
