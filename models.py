from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Float, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from database import Base
from errors import StorageError
from money import CENT


class OrderBy(str, Enum):
    date = "date"
    amount = "amount"
    category = "category"
    id = "id"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


class Money(TypeDecorator):
    """Two-decimal amounts stored in a REAL column, read back as exact Decimals."""

    impl = Float
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return float(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, float):
            return Decimal(repr(value)).quantize(CENT)
        try:
            return Decimal(str(value)).quantize(CENT)
        except ArithmeticError as exc:
            raise StorageError(exc) from exc


class IsoDateTime(TypeDecorator):
    """
    ISO-8601 text column.

    Values are written without a UTC offset (see ExpenseService._local) so the
    text sorts chronologically.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime):
            return value.isoformat()
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return datetime.fromisoformat(value)
        except (TypeError, ValueError) as exc:
            raise StorageError(exc) from exc


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    date: Mapped[datetime] = mapped_column(IsoDateTime, nullable=False)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),
        Index("ix_expenses_date", "date"),
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        return f"<Expense id={self.id} amount={self.amount} category={self.category!r}>"
