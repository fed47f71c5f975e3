import datetime as dt
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from money import parse_amount


class ExpenseIn(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=100)
    note: Optional[str] = Field(default=None, max_length=200)
    date: Optional[dt.datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _parse_amount(cls, value: object) -> Decimal:
        return parse_amount(value)

    @field_validator("note", mode="before")
    @classmethod
    def _blank_note_is_absent(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _coerce_date(cls, value: object) -> object:
        # A bare calendar day is stored as midnight of that day.
        if value is None or isinstance(value, dt.datetime):
            return value
        if isinstance(value, dt.date):
            return dt.datetime.combine(value, dt.time())
        if isinstance(value, str):
            text = value.strip()
            if not text:
                return None
            try:
                return dt.datetime.fromisoformat(text)
            except ValueError as exc:
                raise ValueError("Invalid date") from exc
        raise ValueError("Invalid date")


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: int
    amount: Decimal
    category: str
    note: Optional[str] = None
    date: dt.datetime


class CategoryTotal(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: str
    total: Decimal
