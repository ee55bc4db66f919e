from __future__ import annotations

"""
Storage capability consumed by the pipeline and the listing.

The SQLAlchemy-backed `persistence.repository.ExpenseRepository` is the
production implementation; tests may pass any object with the same methods.
"""

from typing import Optional, Protocol, runtime_checkable

from expense_model import Expense, ListParams, Page


@runtime_checkable
class ExpenseStore(Protocol):
    """
    Durable storage for Expense records.

    `create` writes and commits exactly one record and raises on failure.
    `list` receives already-validated parameters and returns one page plus the
    total row count. Implementations must be safe to share across requests.
    """

    def create(self, expense: Expense) -> None:
        ...

    def list(self, params: ListParams) -> Page:
        ...

    def get(self, expense_id: str) -> Optional[Expense]:
        ...
