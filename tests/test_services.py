from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session

from database import Base
from invalidation import InvalidationBus
from models import Transaction
from periods import Period
from schemas import LookupIn, TransactionIn
from services import (
    CategoryService,
    EstablishmentService,
    PaymentMethodService,
    RecordNotFound,
    TransactionService,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def counting_bus():
    bus = InvalidationBus()
    calls = []
    bus.subscribe(lambda: calls.append(1))
    return bus, calls


def lunch(**overrides) -> TransactionIn:
    data = {
        "amount": Decimal("12.50"),
        "description": "  Lunch  ",
        "occurred_at": datetime(2026, 1, 7, 12, 0),
    }
    data.update(overrides)
    return TransactionIn(**data)


def test_create_commits_then_publishes_once() -> None:
    bus, calls = counting_bus()
    with make_session() as session:
        category = CategoryService(session, bus).create(LookupIn(name="Food"))
        assert len(calls) == 1

        txn = TransactionService(session, bus).create(lunch(category_id=category.id))

        assert len(calls) == 2
        assert txn.amount_cents == 1250
        assert txn.description == "Lunch"
        assert txn.date == date(2026, 1, 7)
        assert txn.user_id == 1


def test_failed_write_publishes_nothing() -> None:
    bus, calls = counting_bus()
    with make_session() as session:
        foreign = CategoryService(session, bus, user_id=2).create(
            LookupIn(name="Theirs")
        )
        calls.clear()

        with pytest.raises(ValueError):
            TransactionService(session, bus).create(lunch(category_id=foreign.id))

        assert calls == []
        assert session.scalar(select(func.count(Transaction.id))) == 0


def test_update_and_delete_publish_once_each() -> None:
    bus, calls = counting_bus()
    with make_session() as session:
        service = TransactionService(session, bus)
        txn = service.create(lunch())
        calls.clear()

        updated = service.update(txn.id, lunch(amount=Decimal("20.00")))
        assert updated.amount_cents == 2000
        assert len(calls) == 1

        service.delete(txn.id)
        assert len(calls) == 2
        with pytest.raises(RecordNotFound):
            service.get(txn.id)


def test_missing_rows_raise_not_found_without_publishing() -> None:
    bus, calls = counting_bus()
    with make_session() as session:
        with pytest.raises(RecordNotFound):
            TransactionService(session, bus).delete(404)
        with pytest.raises(RecordNotFound):
            PaymentMethodService(session, bus).update(404, LookupIn(name="Card"))
        assert calls == []


def test_transactions_are_scoped_to_their_owner() -> None:
    bus, _ = counting_bus()
    with make_session() as session:
        txn = TransactionService(session, bus, user_id=2).create(lunch())

        with pytest.raises(RecordNotFound):
            TransactionService(session, bus).get(txn.id)
        assert not TransactionService(session, bus).has_any()
        assert TransactionService(session, bus, user_id=2).has_any()


def test_lookup_names_are_unique_per_owner_ignoring_case() -> None:
    bus, calls = counting_bus()
    with make_session() as session:
        EstablishmentService(session, bus).create(LookupIn(name="Bakery", icon="B"))

        with pytest.raises(ValueError):
            EstablishmentService(session, bus).create(LookupIn(name=" bakery "))
        with pytest.raises(ValueError):
            EstablishmentService(session, bus).create(LookupIn(name="   "))

        EstablishmentService(session, bus, user_id=2).create(LookupIn(name="Bakery"))
        assert len(calls) == 2
        assert [e.name for e in EstablishmentService(session, bus).list_all()] == [
            "Bakery"
        ]


def test_deleting_a_lookup_clears_the_reference() -> None:
    bus, calls = counting_bus()
    with make_session() as session:
        category = CategoryService(session, bus).create(LookupIn(name="Food"))
        method = PaymentMethodService(session, bus).create(LookupIn(name="Card"))
        txn = TransactionService(session, bus).create(
            lunch(category_id=category.id, payment_method_id=method.id)
        )
        calls.clear()

        CategoryService(session, bus).delete(category.id)

        assert len(calls) == 1
        session.expire_all()
        txn_after = TransactionService(session, bus).get(txn.id)
        assert txn_after.category_id is None
        assert txn_after.payment_method_id == method.id


def test_aware_timestamps_are_stored_as_local_time() -> None:
    bus, _ = counting_bus()
    with make_session() as session:
        txn = TransactionService(session, bus).create(
            lunch(occurred_at=datetime(2026, 1, 6, 23, 30, tzinfo=timezone.utc))
        )

        assert txn.occurred_at == datetime(2026, 1, 7, 0, 30)
        assert txn.date == date(2026, 1, 7)


def test_list_filters_by_period_newest_first() -> None:
    bus, _ = counting_bus()
    with make_session() as session:
        service = TransactionService(session, bus)
        for day in (3, 5, 9):
            service.create(lunch(occurred_at=datetime(2026, 1, day, 12)))

        items = service.list(Period("custom", date(2026, 1, 1), date(2026, 1, 6)))

        assert [txn.date.day for txn in items] == [5, 3]
        assert len(service.list(Period("custom", date(2026, 1, 1), date(2026, 1, 31)), limit=1)) == 1
