from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable
from uuid import uuid4

# Unit stored when the speaker did not name one ("dos panes" -> 2 u).
DEFAULT_UNIT = "u"

DEFAULT_PAGE = 1
DEFAULT_PER_PAGE = 10
MAX_PER_PAGE = 100

Clock = Callable[[], datetime]
IdFactory = Callable[[], str]


class OrderField(str, Enum):
    """Columns an expense listing may be sorted by."""

    PURCHASED_AT = "purchased_at"
    CREATED_AT = "created_at"


class OrderDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


DEFAULT_ORDER_FIELD = OrderField.CREATED_AT
DEFAULT_ORDER_DIRECTION = OrderDirection.DESC


@dataclass(frozen=True)
class RawExpense:
    """
    One purchase candidate as returned by an extractor.

    Not persisted as-is; the pipeline normalizes it and promotes it to an Expense.
    """

    unit_price: Decimal
    quantity: Decimal
    unit: str
    description: str


@dataclass(frozen=True)
class Expense:
    """Persisted, identity-bearing expense record. Immutable once created."""

    id: str
    unit_price: Decimal
    quantity: Decimal
    unit: str
    description: str
    purchased_at: datetime
    created_at: datetime

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready view; decimals become numbers and timestamps ISO 8601 strings."""
        return {
            "id": self.id,
            "unit_price": float(self.unit_price),
            "quantity": float(self.quantity),
            "unit": self.unit,
            "description": self.description,
            "purchased_at": self.purchased_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class ListParams:
    """Already-validated pagination and ordering for an expense listing."""

    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE
    order_by: OrderField = DEFAULT_ORDER_FIELD
    order_dir: OrderDirection = DEFAULT_ORDER_DIRECTION

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page


@dataclass
class Page:
    data: list[Expense] = field(default_factory=list)
    page: int = DEFAULT_PAGE
    per_page: int = DEFAULT_PER_PAGE
    total: int = 0
    total_pages: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "data": [expense.to_dict() for expense in self.data],
            "page": self.page,
            "per_page": self.per_page,
            "total": self.total,
            "total_pages": self.total_pages,
        }


def normalize_unit(unit: str | None) -> str:
    """Return the stored unit: the extracted one untouched, or DEFAULT_UNIT when blank or whitespace-only."""

    if unit is None or not unit.strip():
        return DEFAULT_UNIT
    return unit


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_expense_id() -> str:
    return str(uuid4())
