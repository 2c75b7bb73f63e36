from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional, Type, Union
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, joinedload

from config import get_settings
from invalidation import InvalidationBus
from models import Category, Establishment, PaymentMethod, Transaction
from money import amount_to_cents
from periods import Period
from schemas import LookupIn, TransactionIn

logger = logging.getLogger(__name__)

LookupModel = Union[Category, PaymentMethod, Establishment]


class RecordNotFound(ValueError):
    pass


def get_current_user_id() -> int:
    return 1


@contextmanager
def committing(session: Session, bus: InvalidationBus, what: str) -> Iterator[None]:
    """Commit the enclosed write, then signal the change.

    On any failure the session is rolled back and nothing is published.
    """
    try:
        yield
        session.commit()
    except Exception:
        session.rollback()
        logger.info(f"write_failed: {what}")
        raise
    logger.info(f"write_committed: {what}")
    bus.publish()


def to_local_naive(value: datetime, tz: Optional[str] = None) -> datetime:
    if value.tzinfo is None:
        return value
    zone = ZoneInfo(tz or get_settings().timezone)
    return value.astimezone(zone).replace(tzinfo=None)


class LookupService:
    model: Type[LookupModel]
    foreign_key: str
    label: str

    def __init__(
        self, session: Session, bus: InvalidationBus, user_id: Optional[int] = None
    ) -> None:
        self.session = session
        self.bus = bus
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[LookupModel]:
        stmt = (
            select(self.model)
            .where(self.model.user_id == self.user_id)
            .order_by(self.model.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, item_id: int) -> LookupModel:
        item = self.session.get(self.model, item_id)
        if not item or item.user_id != self.user_id:
            raise RecordNotFound(f"{self.label.capitalize()} not found")
        return item

    def _ensure_unique(self, name: str, exclude_id: Optional[int] = None) -> None:
        stmt = select(self.model.id).where(
            self.model.user_id == self.user_id,
            func.lower(self.model.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(self.model.id != exclude_id)
        if self.session.scalar(stmt) is not None:
            raise ValueError(f"{self.label.capitalize()} already exists")

    def create(self, data: LookupIn) -> LookupModel:
        name = data.name.strip()
        if not name:
            raise ValueError("Name must not be blank")
        with committing(self.session, self.bus, f"{self.label} create"):
            self._ensure_unique(name)
            item = self.model(user_id=self.user_id, name=name, icon=data.icon)
            self.session.add(item)
        self.session.refresh(item)
        return item

    def update(self, item_id: int, data: LookupIn) -> LookupModel:
        name = data.name.strip()
        if not name:
            raise ValueError("Name must not be blank")
        with committing(self.session, self.bus, f"{self.label} update id={item_id}"):
            item = self.get(item_id)
            self._ensure_unique(name, exclude_id=item.id)
            item.name = name
            item.icon = data.icon
        return item

    def delete(self, item_id: int) -> None:
        with committing(self.session, self.bus, f"{self.label} delete id={item_id}"):
            item = self.get(item_id)
            column = getattr(Transaction, self.foreign_key)
            self.session.execute(
                update(Transaction)
                .where(Transaction.user_id == self.user_id, column == item.id)
                .values({self.foreign_key: None})
            )
            self.session.delete(item)


class CategoryService(LookupService):
    model = Category
    foreign_key = "category_id"
    label = "category"


class PaymentMethodService(LookupService):
    model = PaymentMethod
    foreign_key = "payment_method_id"
    label = "payment method"


class EstablishmentService(LookupService):
    model = Establishment
    foreign_key = "establishment_id"
    label = "establishment"


class TransactionService:
    def __init__(
        self, session: Session, bus: InvalidationBus, user_id: Optional[int] = None
    ) -> None:
        self.session = session
        self.bus = bus
        self.user_id = user_id or get_current_user_id()

    def _check_reference(self, model: Type[LookupModel], ref_id: Optional[int]) -> None:
        if ref_id is None:
            return
        item = self.session.get(model, ref_id)
        if not item or item.user_id != self.user_id:
            raise ValueError(f"{model.__name__} not found")

    def _apply(self, txn: Transaction, data: TransactionIn) -> None:
        self._check_reference(Category, data.category_id)
        self._check_reference(PaymentMethod, data.payment_method_id)
        self._check_reference(Establishment, data.establishment_id)
        occurred_at = to_local_naive(data.occurred_at)
        txn.occurred_at = occurred_at
        txn.date = occurred_at.date()
        txn.amount_cents = amount_to_cents(data.amount)
        txn.description = data.description.strip()
        txn.category_id = data.category_id
        txn.payment_method_id = data.payment_method_id
        txn.establishment_id = data.establishment_id

    def has_any(self) -> bool:
        stmt = select(func.count(Transaction.id)).where(
            Transaction.user_id == self.user_id
        )
        return (self.session.execute(stmt).scalar_one() or 0) > 0

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(user_id=self.user_id)
        with committing(self.session, self.bus, "transaction create"):
            self._apply(txn, data)
            self.session.add(txn)
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category),
                joinedload(Transaction.payment_method),
                joinedload(Transaction.establishment),
            )
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise RecordNotFound("Transaction not found")
        return txn

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        with committing(
            self.session, self.bus, f"transaction update id={transaction_id}"
        ):
            txn = self.get(transaction_id)
            self._apply(txn, data)
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        with committing(
            self.session, self.bus, f"transaction delete id={transaction_id}"
        ):
            txn = self.get(transaction_id)
            self.session.delete(txn)

    def list(self, period: Period, limit: int = 50, offset: int = 0) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .options(
                joinedload(Transaction.category),
                joinedload(Transaction.payment_method),
                joinedload(Transaction.establishment),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.date.between(period.start, period.end),
            )
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()
