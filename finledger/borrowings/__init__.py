"""Loan tracking package."""

from finledger.borrowings.tracker import BorrowingTracker, BorrowingView

__all__ = ["BorrowingTracker", "BorrowingView"]
