import logging
import random
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import create_engine, text

from errors import NotFoundError, StorageError, ValidationError
from ledger import LedgerStore
from schemas import CategoryTotal


def _store() -> LedgerStore:
    return LedgerStore(create_engine("sqlite:///:memory:"))


def _assert_consistent(store: LedgerStore) -> None:
    entries = store.list()
    assert store.total() == sum((e.amount for e in entries), Decimal("0"))

    expected: dict[str, Decimal] = {}
    for entry in entries:
        expected[entry.category] = expected.get(entry.category, Decimal("0")) + entry.amount
    by_category = store.totals_by_category()
    assert len(by_category) == len({row.category for row in by_category})
    assert {row.category: row.total for row in by_category} == expected


def test_create_update_delete_scenario() -> None:
    store = _store()

    first = store.create(amount="12.50", category="Food")
    assert store.total() == Decimal("12.50")

    store.create(amount="7.25", category="Food")
    assert store.total() == Decimal("19.75")
    assert set(store.totals_by_category()) == {
        CategoryTotal(category="Food", total=Decimal("19.75"))
    }

    store.delete(first.id)
    assert store.total() == Decimal("7.25")


def test_repeated_small_amounts_sum_exactly() -> None:
    store = _store()
    for _ in range(3):
        store.create(amount="0.10", category="Coffee")

    total = store.total()
    assert total == Decimal("0.30")
    assert str(total) == "0.30"

    store.create(amount="12.10", category="Books")
    for _ in range(100):
        store.create(amount=0.01, category="Books")
    assert store.total() == Decimal("13.40")
    assert {row.category: row.total for row in store.totals_by_category()} == {
        "Books": Decimal("13.10"),
        "Coffee": Decimal("0.30"),
    }


def test_empty_ledger_totals_are_zero() -> None:
    store = _store()
    assert store.total() == Decimal("0")
    assert store.totals_by_category() == []
    assert store.list() == []
    assert store.count() == 0
    assert not store.has_any()


def test_invalid_input_never_changes_state() -> None:
    store = _store()
    kept = store.create(amount="5", category="Rent")

    bad_inputs = [
        ({"amount": "abc", "category": "Food"}, "amount"),
        ({"amount": "0", "category": "Food"}, "amount"),
        ({"amount": -3, "category": "Food"}, "amount"),
        ({"amount": "1.005", "category": "Food"}, "amount"),
        ({"amount": "", "category": "Food"}, "amount"),
        ({"amount": "4", "category": "   "}, "category"),
        ({"amount": "4", "category": "Food", "date": "not-a-date"}, "date"),
    ]
    for kwargs, field in bad_inputs:
        with pytest.raises(ValidationError) as excinfo:
            store.create(**kwargs)
        assert excinfo.value.field == field

    assert [e.id for e in store.list()] == [kept.id]
    assert store.total() == Decimal("5.00")


def test_deleting_twice_reports_not_found() -> None:
    store = _store()
    keep = store.create(amount="10.00", category="Food")
    gone = store.create(amount="2.50", category="Food")
    before = store.total()

    store.delete(gone.id)
    with pytest.raises(NotFoundError) as excinfo:
        store.delete(gone.id)

    assert excinfo.value.entry_id == gone.id
    assert store.total() == before - Decimal("2.50")
    assert [e.id for e in store.list()] == [keep.id]


def test_ids_are_never_reused() -> None:
    store = _store()
    store.create(amount="1", category="A")
    last = store.create(amount="2", category="A")
    store.delete(last.id)

    fresh = store.create(amount="3", category="A")
    assert fresh.id > last.id


def test_update_replaces_every_field() -> None:
    store = _store()
    original = store.create(
        amount="12.50", category="Food", note="Lunch", date=date(2020, 1, 1)
    )

    updated = store.update(original.id, amount="3", category="Books")

    assert updated.id == original.id
    assert updated.amount == Decimal("3.00")
    assert updated.category == "Books"
    assert updated.note is None
    assert updated.date > datetime(2020, 1, 1)
    assert store.list() == [updated]
    assert store.totals_by_category() == [
        CategoryTotal(category="Books", total=Decimal("3.00"))
    ]


def test_update_keeps_explicit_date() -> None:
    store = _store()
    original = store.create(amount="1", category="Food")

    updated = store.update(
        original.id, amount="1", category="Food", note="same", date="2024-05-01"
    )
    assert updated.date == datetime(2024, 5, 1)
    assert store.get(original.id).note == "same"


def test_update_unknown_id_raises_not_found() -> None:
    store = _store()
    store.create(amount="1", category="Food")

    with pytest.raises(NotFoundError):
        store.update(999, amount="2", category="Food")
    assert store.total() == Decimal("1.00")


def test_update_validates_before_lookup() -> None:
    store = _store()
    with pytest.raises(ValidationError) as excinfo:
        store.update(999, amount="abc", category="Food")
    assert excinfo.value.field == "amount"


def test_get_unknown_id_raises_not_found() -> None:
    store = _store()
    with pytest.raises(NotFoundError):
        store.get(1)


def test_list_orders_by_date_with_newest_id_first_on_ties() -> None:
    store = _store()
    e1 = store.create(amount="1", category="A", date=date(2024, 1, 1))
    e2 = store.create(amount="2", category="A", date=date(2024, 1, 2))
    assert [e.id for e in store.list()] == [e2.id, e1.id]

    e3 = store.create(amount="3", category="A", date=date(2024, 1, 2))
    assert [e.id for e in store.list()] == [e3.id, e2.id, e1.id]
    assert [e.id for e in store.list(direction="asc")] == [e1.id, e3.id, e2.id]


def test_list_supports_other_sort_keys() -> None:
    store = _store()
    small = store.create(amount="1.50", category="books")
    big = store.create(amount="20", category="Rent")
    mid = store.create(amount="7", category="Food")

    assert [e.id for e in store.list("amount", "asc")] == [small.id, mid.id, big.id]
    assert [e.id for e in store.list("id")] == [mid.id, big.id, small.id]
    # Binary collation: upper-case letters sort before lower-case ones.
    assert [e.category for e in store.list("category", "asc")] == [
        "Food",
        "Rent",
        "books",
    ]


def test_list_rejects_unknown_sort_key() -> None:
    store = _store()
    with pytest.raises(ValidationError) as excinfo:
        store.list("colour")
    assert excinfo.value.field == "order_by"
    with pytest.raises(ValidationError) as excinfo:
        store.list("date", "sideways")
    assert excinfo.value.field == "direction"


def test_list_filters_by_category_and_note() -> None:
    store = _store()
    lunch = store.create(amount="9", category="Food", note="Lunch with Sam")
    store.create(amount="4", category="Food", note="Groceries")
    store.create(amount="30", category="Books", note="lunch recipes")

    assert [e.id for e in store.list(category="Food", query="LUNCH")] == [lunch.id]
    assert len(store.list(query="lunch")) == 2
    assert store.list(category="food") == []


def test_categories_are_grouped_case_sensitively() -> None:
    store = _store()
    store.create(amount="1", category="Food")
    store.create(amount="2", category="food")
    store.create(amount="3", category=" Food ")

    assert {row.category: row.total for row in store.totals_by_category()} == {
        "Food": Decimal("4.00"),
        "food": Decimal("2.00"),
    }


def test_note_is_trimmed_and_blank_note_is_absent() -> None:
    store = _store()
    blank = store.create(amount="1", category="Food", note="   ")
    padded = store.create(amount="1", category="Food", note="  Bus ticket ")

    assert blank.note is None
    assert padded.note == "Bus ticket"
    assert store.get(blank.id).note is None


def test_dates_with_utc_offsets_sort_by_moment() -> None:
    store = _store()
    five_utc = store.create(amount="1", category="A", date="2024-01-01T10:00:00+05:00")
    eight_utc = store.create(amount="1", category="A", date="2024-01-01T08:00:00+00:00")
    six_local = store.create(amount="1", category="A", date="2024-01-01T06:00:00")

    assert five_utc.date == datetime(2024, 1, 1, 5, 0)
    assert eight_utc.date.tzinfo is None
    assert [e.id for e in store.list()] == [eight_utc.id, six_local.id, five_utc.id]

    moved = store.update(
        five_utc.id,
        amount="1",
        category="A",
        date=datetime(2024, 1, 1, 9, 30, tzinfo=timezone.utc),
    )
    assert moved.date == datetime(2024, 1, 1, 9, 30)
    assert store.list()[0].id == five_utc.id


def test_default_date_is_current_time() -> None:
    store = _store()
    before = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)
    entry = store.create(amount="1", category="Food")
    after = datetime.now(timezone.utc).replace(tzinfo=None)

    assert before <= entry.date <= after
    assert entry.date.microsecond == 0


def test_aggregates_stay_consistent_across_mutations() -> None:
    store = _store()
    rng = random.Random(7)
    categories = ["Food", "Rent", "Books", "food"]
    live: list[int] = []

    for _ in range(120):
        action = rng.choice(["create", "create", "update", "delete"])
        amount = f"{rng.randint(1, 5000) / 100:.2f}"
        category = rng.choice(categories)
        if action == "create" or not live:
            live.append(store.create(amount=amount, category=category).id)
        elif action == "update":
            store.update(rng.choice(live), amount=amount, category=category)
        else:
            victim = live.pop(rng.randrange(len(live)))
            store.delete(victim)
        _assert_consistent(store)

    assert store.count() == len(live)


def test_returned_entries_are_immutable_snapshots() -> None:
    store = _store()
    entry = store.create(amount="1", category="Food")
    with pytest.raises(PydanticValidationError):
        entry.amount = Decimal("2")
    assert store.get(entry.id) == entry


def test_storage_failures_surface_as_storage_error() -> None:
    engine = create_engine("sqlite:///:memory:")
    store = LedgerStore(engine)
    store.create(amount="1", category="Food")

    with engine.begin() as conn:
        conn.execute(text("DROP TABLE expenses"))

    with pytest.raises(StorageError) as excinfo:
        store.total()
    assert excinfo.value.cause is excinfo.value.__cause__
    with pytest.raises(StorageError):
        store.create(amount="1", category="Food")


def test_mutations_are_logged(caplog: pytest.LogCaptureFixture) -> None:
    store = _store()
    with caplog.at_level(logging.INFO, logger="services"):
        entry = store.create(amount="1", category="Food")
        store.delete(entry.id)

    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith(f"expense_created: id={entry.id}") for m in messages)
    assert f"expense_deleted: id={entry.id}" in messages
