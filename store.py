from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import session_scope
from models import Category, Establishment, PaymentMethod, Transaction
from money import cents_to_amount
from records import Known, LookupTable, TransactionRecord

logger = logging.getLogger(__name__)


class StoreUnavailable(RuntimeError):
    pass


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError("Start date must be before end date")


class TransactionStore(Protocol):
    async def query(
        self, owner_id: int, date_range: DateRange
    ) -> list[TransactionRecord]: ...

    async def lookups(self, owner_id: int) -> LookupTable: ...


def to_record(txn: Transaction) -> TransactionRecord:
    return TransactionRecord(
        id=txn.id,
        amount=cents_to_amount(txn.amount_cents),
        occurred_at=txn.occurred_at,
        owner_id=txn.user_id,
        description=txn.description or "",
        category_id=txn.category_id,
        payment_method_id=txn.payment_method_id,
        establishment_id=txn.establishment_id,
    )


class SqlTransactionStore:
    """TransactionStore backed by the SQLAlchemy models.

    Blocking session work runs in a worker thread so the caller's event loop
    stays responsive.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def _query_sync(self, owner_id: int, date_range: DateRange) -> list[TransactionRecord]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == owner_id,
                Transaction.date.between(date_range.start, date_range.end),
            )
            .order_by(Transaction.occurred_at.asc(), Transaction.id.asc())
            .distinct()
        )
        with session_scope(self.session_factory) as session:
            return [to_record(txn) for txn in session.scalars(stmt).all()]

    def _lookups_sync(self, owner_id: int) -> LookupTable:
        with session_scope(self.session_factory) as session:
            tables = []
            for model in (Category, PaymentMethod, Establishment):
                rows = session.scalars(
                    select(model).where(model.user_id == owner_id)
                ).all()
                tables.append({row.id: Known(row.id, row.name, row.icon) for row in rows})
        return LookupTable(*tables)

    async def query(self, owner_id: int, date_range: DateRange) -> list[TransactionRecord]:
        try:
            records = await asyncio.to_thread(self._query_sync, owner_id, date_range)
        except SQLAlchemyError as exc:
            logger.error(
                f"store_query_failed: owner_id={owner_id} "
                f"range={date_range.start}..{date_range.end} error={exc!r}"
            )
            raise StoreUnavailable("Transactions could not be loaded") from exc
        logger.debug(f"store_query: owner_id={owner_id} rows={len(records)}")
        return records

    async def lookups(self, owner_id: int) -> LookupTable:
        try:
            return await asyncio.to_thread(self._lookups_sync, owner_id)
        except SQLAlchemyError as exc:
            logger.error(f"store_lookups_failed: owner_id={owner_id} error={exc!r}")
            raise StoreUnavailable("Lookups could not be loaded") from exc
