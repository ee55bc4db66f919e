"""Expense data access helpers."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import asc, desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from expense_model import Expense, ListParams, OrderDirection, OrderField, Page
from listing import build_page
from persistence.models import ExpenseRecord

logger = logging.getLogger(__name__)

# Fixed sort strategies. Only these enum members can reach ORDER BY.
ORDER_COLUMNS = {
    OrderField.PURCHASED_AT: ExpenseRecord.purchased_at,
    OrderField.CREATED_AT: ExpenseRecord.created_at,
}
ORDER_DIRECTIONS = {
    OrderDirection.ASC: asc,
    OrderDirection.DESC: desc,
}


class ExpenseRepository:
    """
    Thin repository that encapsulates expense persistence.

    Every call opens its own short-lived session from the factory, so one
    instance can be shared by concurrent requests; the engine pool is the only
    shared state.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def create(self, expense: Expense) -> None:
        """Insert and commit a single expense."""
        record = ExpenseRecord(
            id=expense.id,
            unit_price=expense.unit_price,
            quantity=expense.quantity,
            unit=expense.unit,
            description=expense.description,
            purchased_at=_to_utc(expense.purchased_at),
            created_at=_to_utc(expense.created_at),
        )
        with self._session_factory() as session:
            try:
                session.add(record)
                session.commit()
            except SQLAlchemyError:
                session.rollback()
                raise

    def get(self, expense_id: str) -> Optional[Expense]:
        with self._session_factory() as session:
            record = session.get(ExpenseRecord, expense_id)
            return _to_expense(record) if record is not None else None

    def count(self) -> int:
        with self._session_factory() as session:
            return self._count(session)

    def list(self, params: ListParams) -> Page:
        """
        Return one page ordered by the validated (order_by, order_dir) pair.

        Count and fetch run as two statements without a shared transaction, so
        `total` is best-effort under concurrent inserts.
        """
        column = ORDER_COLUMNS[params.order_by]
        direction = ORDER_DIRECTIONS[params.order_dir]

        with self._session_factory() as session:
            total = self._count(session)
            statement = (
                select(ExpenseRecord)
                .order_by(direction(column), ExpenseRecord.id.asc())
                .limit(params.per_page)
                .offset(params.offset)
            )
            records = session.scalars(statement).all()

        return build_page([_to_expense(record) for record in records], params, total)

    @staticmethod
    def _count(session: Session) -> int:
        return session.scalar(select(func.count()).select_from(ExpenseRecord)) or 0


def _to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_expense(record: ExpenseRecord) -> Expense:
    return Expense(
        id=record.id,
        unit_price=record.unit_price,
        quantity=record.quantity,
        unit=record.unit,
        description=record.description,
        purchased_at=_to_utc(record.purchased_at),
        created_at=_to_utc(record.created_at),
    )
