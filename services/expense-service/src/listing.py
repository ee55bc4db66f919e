"""
Paginated, ordered views over stored expenses.

Query-string input is coerced, never rejected: anything outside the allow-lists
below falls back to its default before the store sees it. The store only ever
receives `OrderField`/`OrderDirection` members, so free text cannot reach a query.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Sequence

from expense_model import (
    DEFAULT_ORDER_DIRECTION,
    DEFAULT_ORDER_FIELD,
    DEFAULT_PAGE,
    DEFAULT_PER_PAGE,
    MAX_PER_PAGE,
    Expense,
    ListParams,
    OrderDirection,
    OrderField,
    Page,
)
from expense_store import ExpenseStore

logger = logging.getLogger(__name__)

_ORDER_FIELDS = {field.value: field for field in OrderField}
_ORDER_DIRECTIONS = {direction.value: direction for direction in OrderDirection}


def normalize_list_params(
    page: Any = None,
    per_page: Any = None,
    order_by: Any = None,
    order_dir: Any = None,
) -> ListParams:
    """Coerce raw pagination/ordering input into a valid ListParams."""

    parsed_page = _parse_int(page)
    if parsed_page is None or parsed_page < 1:
        parsed_page = DEFAULT_PAGE

    parsed_per_page = _parse_int(per_page)
    if parsed_per_page is None or not 1 <= parsed_per_page <= MAX_PER_PAGE:
        parsed_per_page = DEFAULT_PER_PAGE

    return ListParams(
        page=parsed_page,
        per_page=parsed_per_page,
        order_by=_lookup(_ORDER_FIELDS, order_by, DEFAULT_ORDER_FIELD),
        order_dir=_lookup(_ORDER_DIRECTIONS, order_dir, DEFAULT_ORDER_DIRECTION),
    )


def compute_total_pages(total: int, per_page: int) -> int:
    if total <= 0:
        return 0
    return math.ceil(total / per_page)


def build_page(data: Sequence[Expense], params: ListParams, total: int) -> Page:
    return Page(
        data=list(data),
        page=params.page,
        per_page=params.per_page,
        total=total,
        total_pages=compute_total_pages(total, params.per_page),
    )


def list_expenses(
    store: ExpenseStore,
    page: Any = None,
    per_page: Any = None,
    order_by: Any = None,
    order_dir: Any = None,
) -> Page:
    """
    Return one page of expenses.

    Never raises for bad pagination or ordering input. Errors from the store
    (connectivity, query failures) propagate unmodified.
    """

    params = normalize_list_params(page, per_page, order_by, order_dir)
    logger.info(
        {
            "event": "list_expenses",
            "page": params.page,
            "per_page": params.per_page,
            "order_by": params.order_by.value,
            "order_dir": params.order_dir.value,
        }
    )
    result = store.list(params)
    logger.info(
        {
            "event": "list_expenses_result",
            "returned": len(result.data),
            "total": result.total,
            "total_pages": result.total_pages,
        }
    )
    return result


def _parse_int(raw: Any) -> int | None:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() else None
    if isinstance(raw, str):
        try:
            return int(raw.strip())
        except ValueError:
            return None
    return None


def _lookup(table: dict, raw: Any, default):
    if isinstance(raw, (OrderField, OrderDirection)):
        raw = raw.value
    if not isinstance(raw, str):
        return default
    return table.get(raw, default)
