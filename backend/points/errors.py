"""Exceptions raised by the point engine and its manual operations."""

from decimal import Decimal


class PointError(Exception):
    """Base class for point engine errors."""


class PointValidationError(PointError):
    """Input rejected before any write (missing customer code, non-positive points, ...)."""


class InsufficientPointsError(PointValidationError):
    def __init__(self, requested: Decimal, balance: Decimal):
        self.requested = requested
        self.balance = balance
        super().__init__(f"Insufficient points: requested {requested}, balance {balance}")


class PointNotFoundError(PointError):
    """A referenced customer or document does not exist."""


class CustomerNotFoundError(PointNotFoundError):
    def __init__(self, cust_code: str):
        self.cust_code = cust_code
        super().__init__(f"Customer not found: {cust_code}")


class LedgerEntryNotFoundError(PointNotFoundError):
    def __init__(self, doc_no: str):
        self.doc_no = doc_no
        super().__init__(f"Ledger entry not found: {doc_no}")
