"""
Candidate ledger entries — unsaved results of the allocation and reversal engines.

Amounts and points are Decimal so a candidate's detail points sum to its
header total exactly.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Coerce a DB/JSON numeric value to Decimal (None -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_points(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class CandidateLine:
    """One itemized row of a candidate entry."""

    item_code: str
    amount: Decimal
    barcode: str | None = None
    item_name: str | None = None
    unit_code: str | None = None
    qty: Decimal = ZERO
    price: Decimal = ZERO
    is_return: bool = False
    points: Decimal = ZERO
    condition_code: str | None = None

    @property
    def sale_amount(self) -> Decimal:
        return ZERO if self.is_return else self.amount

    @property
    def return_amount(self) -> Decimal:
        return self.amount if self.is_return else ZERO

    @property
    def total_amount(self) -> Decimal:
        return -self.amount if self.is_return else self.amount


@dataclass
class CandidateEntry:
    """A ledger entry computed from one source document, not yet persisted."""

    doc_date: date
    doc_time: str
    cust_code: str
    points_earned: Decimal
    doc_no_sale: str | None = None
    doc_no_return: str | None = None
    sum_sale_amount: Decimal = ZERO
    sum_return_amount: Decimal = ZERO
    points_used: Decimal = ZERO
    remark: str | None = None
    lines: list[CandidateLine] = field(default_factory=list)

    @property
    def sum_total_amount(self) -> Decimal:
        return self.sum_sale_amount - self.sum_return_amount

    @property
    def detail_points(self) -> Decimal:
        return sum((line.points for line in self.lines), ZERO)


def distribute_proportionally(lines: list[CandidateLine], total_points: Decimal) -> None:
    """
    Spread ``total_points`` across ``lines`` by each line's share of their amount.

    Shares are rounded to 0.01; the signed rounding discrepancy is added to the
    first line so the lines sum to ``total_points`` exactly.
    """
    if not lines:
        return
    group_total = sum((line.amount for line in lines), ZERO)
    for line in lines:
        if group_total > 0:
            line.points = round_points(line.amount / group_total * total_points)
        else:
            line.points = ZERO
    reconcile_first_line(lines, total_points)


def reconcile_first_line(lines: list[CandidateLine], total_points: Decimal) -> None:
    if not lines:
        return
    discrepancy = total_points - sum((line.points for line in lines), ZERO)
    if discrepancy != 0:
        lines[0].points += discrepancy
