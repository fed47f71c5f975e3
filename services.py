from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.orm import Session

from errors import NotFoundError
from models import Expense, OrderBy, SortDirection
from money import from_cents
from schemas import CategoryTotal, ExpenseIn

logger = logging.getLogger(__name__)

# Aggregates are summed as integer cents so repeated additions never drift.
_amount_cents = cast(func.round(Expense.amount * 100), Integer)

_ORDER_COLUMNS = {
    OrderBy.date: Expense.date,
    OrderBy.amount: Expense.amount,
    OrderBy.category: Expense.category,
    OrderBy.id: Expense.id,
}


@dataclass
class ExpenseFilters:
    category: Optional[str] = None
    query: Optional[str] = None


class ExpenseService:
    def __init__(self, session: Session, tz: Optional[ZoneInfo] = None) -> None:
        self.session = session
        self.tz = tz or ZoneInfo("UTC")

    def _now(self) -> datetime:
        return datetime.now(self.tz).replace(tzinfo=None, microsecond=0)

    def _local(self, value: Optional[datetime]) -> datetime:
        """Naive wall-clock time in the store timezone; defaults to now."""
        if value is None:
            return self._now()
        if value.tzinfo is not None:
            return value.astimezone(self.tz).replace(tzinfo=None)
        return value

    def has_any(self) -> bool:
        return self.count() > 0

    def count(self) -> int:
        return int(self.session.execute(select(func.count(Expense.id))).scalar_one())

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            amount=data.amount,
            category=data.category,
            note=data.note,
            date=self._local(data.date),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} category={expense.category!r} amount={expense.amount}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if expense is None:
            raise NotFoundError(expense_id)
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        expense.amount = data.amount
        expense.category = data.category
        expense.note = data.note
        expense.date = self._local(data.date)
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_updated: id={expense.id} category={expense.category!r} amount={expense.amount}"
        )
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()
        logger.info(f"expense_deleted: id={expense_id}")

    def list(
        self,
        order_by: OrderBy = OrderBy.date,
        direction: SortDirection = SortDirection.desc,
        filters: Optional[ExpenseFilters] = None,
    ) -> Sequence[Expense]:
        filters = filters or ExpenseFilters()
        column = _ORDER_COLUMNS[order_by]
        primary = column.desc() if direction == SortDirection.desc else column.asc()
        stmt = select(Expense).order_by(primary)
        if order_by != OrderBy.id:
            stmt = stmt.order_by(Expense.id.desc())
        if filters.category is not None:
            stmt = stmt.where(Expense.category == filters.category)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(func.lower(func.coalesce(Expense.note, "")).like(like))
        return self.session.scalars(stmt).all()

    def total(self) -> Decimal:
        cents = self.session.execute(
            select(func.coalesce(func.sum(_amount_cents), 0))
        ).scalar_one()
        return from_cents(int(cents or 0))

    def totals_by_category(self) -> list[CategoryTotal]:
        rows = self.session.execute(
            select(Expense.category, func.sum(_amount_cents).label("cents"))
            .group_by(Expense.category)
            .order_by(Expense.category)
        ).all()
        return [
            CategoryTotal(category=row.category, total=from_cents(int(row.cents)))
            for row in rows
        ]
