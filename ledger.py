"""
Caller-facing ledger store.

``LedgerStore`` owns the ``expenses`` table. Every operation takes plain
values, validates them before touching the database, runs in its own
transaction and returns frozen ``ExpenseOut``/``CategoryTotal`` models, so
callers never see ORM rows. Nothing is cached between calls: totals are
derived from the table on every query.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, inspect, or_, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from config import Settings, get_settings
from database import Base, create_engine, make_session_factory, session_scope
from errors import SchemaError, StorageError, ValidationError
from models import Expense, OrderBy, SortDirection
from schemas import CategoryTotal, ExpenseIn, ExpenseOut
from services import ExpenseFilters, ExpenseService

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("id", "amount", "category", "note", "date")


def _sqlite_table_sql(engine: Engine, name: str) -> str:
    with engine.connect() as conn:
        sql = conn.execute(
            text("SELECT sql FROM sqlite_master WHERE type = 'table' AND name = :name"),
            {"name": name},
        ).scalar_one_or_none()
    return sql or ""


def _count_malformed_rows(engine: Engine) -> int:
    table = Expense.__table__
    conditions = [
        table.c.amount.is_(None),
        table.c.amount <= 0,
        table.c.category.is_(None),
        func.trim(table.c.category) == "",
        table.c.date.is_(None),
    ]
    if engine.dialect.name == "sqlite":
        # REAL affinity keeps unparseable input such as '12,50' as TEXT.
        conditions.append(func.typeof(table.c.amount).not_in(["integer", "real"]))
    with engine.connect() as conn:
        return int(
            conn.execute(
                select(func.count()).select_from(table).where(or_(*conditions))
            ).scalar_one()
        )


def ensure_schema(engine: Engine) -> None:
    """
    Create the ``expenses`` table when it is missing, otherwise check its shape.

    Safe to call on every startup. Raises SchemaError when an existing table
    lacks a required column, is not keyed on ``id``, would hand out deleted
    ids again (SQLite without AUTOINCREMENT), or already holds rows with a
    non-numeric or non-positive amount, a blank category or no date.
    """
    table = Expense.__table__
    try:
        inspector = inspect(engine)
        if not inspector.has_table(table.name):
            Base.metadata.create_all(engine, tables=[table])
            logger.info(f"schema_created: table={table.name}")
            return
        present = {col["name"] for col in inspector.get_columns(table.name)}
        pk = inspector.get_pk_constraint(table.name).get("constrained_columns") or []
        ddl = _sqlite_table_sql(engine, table.name) if engine.dialect.name == "sqlite" else None
    except SQLAlchemyError as exc:
        raise StorageError(exc) from exc

    missing = [name for name in REQUIRED_COLUMNS if name not in present]
    if missing:
        raise SchemaError(
            f"Table '{table.name}' missing columns: {', '.join(missing)}"
        )
    if list(pk) != ["id"]:
        raise SchemaError(f"Table '{table.name}' must use 'id' as its primary key")
    if ddl is not None and "AUTOINCREMENT" not in ddl.upper():
        raise SchemaError(
            f"Table '{table.name}' must declare 'id' AUTOINCREMENT so ids are never reused"
        )

    try:
        malformed = _count_malformed_rows(engine)
    except SQLAlchemyError as exc:
        raise StorageError(exc) from exc
    if malformed:
        raise SchemaError(
            f"Table '{table.name}' has {malformed} row(s) with an invalid amount, "
            "category or date"
        )

    try:
        for index in table.indexes:
            index.create(engine, checkfirst=True)
    except SQLAlchemyError as exc:
        raise StorageError(exc) from exc


def _expense_in(**fields: object) -> ExpenseIn:
    try:
        return ExpenseIn(**fields)
    except PydanticValidationError as exc:
        err = exc.errors()[0]
        field = str(err["loc"][0]) if err["loc"] else "expense"
        cause = (err.get("ctx") or {}).get("error")
        reason = str(cause) if cause is not None else err["msg"]
        raise ValidationError(field, reason) from exc


def _expense_out(row: Expense) -> ExpenseOut:
    # Rows written by other tools may hold values the store would never accept.
    try:
        return ExpenseOut.model_validate(row)
    except PydanticValidationError as exc:
        raise StorageError(exc) from exc


class LedgerStore:
    def __init__(
        self, bind: Union[Engine, str], *, timezone: str = "UTC"
    ) -> None:
        if isinstance(bind, str):
            self.engine = create_engine(bind)
            self._owns_engine = True
        else:
            self.engine = bind
            self._owns_engine = False
        try:
            self.tz = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {timezone!r}") from exc
        self._sessions = make_session_factory(self.engine)
        ensure_schema(self.engine)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> LedgerStore:
        settings = settings or get_settings()
        return cls(settings.database_url, timezone=settings.timezone)

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()

    def __enter__(self) -> LedgerStore:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @contextmanager
    def _expenses(self) -> Iterator[ExpenseService]:
        try:
            with session_scope(self._sessions) as session:
                yield ExpenseService(session, self.tz)
        except SQLAlchemyError as exc:
            raise StorageError(exc) from exc

    def create(
        self,
        amount: object,
        category: object,
        note: object = None,
        date: object = None,
    ) -> ExpenseOut:
        data = _expense_in(amount=amount, category=category, note=note, date=date)
        with self._expenses() as expenses:
            return _expense_out(expenses.create(data))

    def update(
        self,
        expense_id: int,
        amount: object,
        category: object,
        note: object = None,
        date: object = None,
    ) -> ExpenseOut:
        data = _expense_in(amount=amount, category=category, note=note, date=date)
        with self._expenses() as expenses:
            return _expense_out(expenses.update(expense_id, data))

    def delete(self, expense_id: int) -> None:
        with self._expenses() as expenses:
            expenses.delete(expense_id)

    def get(self, expense_id: int) -> ExpenseOut:
        with self._expenses() as expenses:
            return _expense_out(expenses.get(expense_id))

    def list(
        self,
        order_by: Union[OrderBy, str] = OrderBy.date,
        direction: Union[SortDirection, str] = SortDirection.desc,
        *,
        category: Optional[str] = None,
        query: Optional[str] = None,
    ) -> list[ExpenseOut]:
        try:
            key = OrderBy(order_by)
        except ValueError as exc:
            raise ValidationError("order_by", f"Unsupported sort key: {order_by}") from exc
        try:
            dir_ = SortDirection(direction)
        except ValueError as exc:
            raise ValidationError(
                "direction", f"Unsupported sort direction: {direction}"
            ) from exc

        filters = ExpenseFilters(category=category, query=query)
        with self._expenses() as expenses:
            return [
                _expense_out(row)
                for row in expenses.list(key, dir_, filters)
            ]

    def count(self) -> int:
        with self._expenses() as expenses:
            return expenses.count()

    def has_any(self) -> bool:
        with self._expenses() as expenses:
            return expenses.has_any()

    def total(self) -> Decimal:
        with self._expenses() as expenses:
            return expenses.total()

    def totals_by_category(self) -> list[CategoryTotal]:
        with self._expenses() as expenses:
            return expenses.totals_by_category()
