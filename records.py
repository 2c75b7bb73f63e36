from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union


class Dimension(str, Enum):
    category = "category"
    payment_method = "payment_method"
    establishment = "establishment"

    @property
    def attribute(self) -> str:
        return f"{self.value}_id"


ALL_DIMENSIONS = (Dimension.category, Dimension.payment_method, Dimension.establishment)


@dataclass(frozen=True)
class TransactionRecord:
    """A committed transaction as handed over by the store.

    ``amount`` is meant to be an exact ``Decimal``; the aggregation layer
    tolerates anything else and treats it as a data-quality problem.
    """

    id: int
    amount: Optional[Decimal]
    occurred_at: Union[datetime, date, None]
    owner_id: int
    description: str = ""
    category_id: Optional[int] = None
    payment_method_id: Optional[int] = None
    establishment_id: Optional[int] = None


@dataclass(frozen=True)
class Known:
    id: int
    name: str
    icon: Optional[str] = None

    @property
    def label(self) -> str:
        return self.name


@dataclass(frozen=True)
class Unknown:
    """A missing or dangling reference; every one of them groups together."""

    @property
    def label(self) -> str:
        return "Unknown"


UNKNOWN = Unknown()

LookupRef = Union[Known, Unknown]


@dataclass(frozen=True)
class LookupTable:
    categories: dict[int, Known] = field(default_factory=dict)
    payment_methods: dict[int, Known] = field(default_factory=dict)
    establishments: dict[int, Known] = field(default_factory=dict)

    def table_for(self, dimension: Dimension) -> dict[int, Known]:
        if dimension == Dimension.category:
            return self.categories
        if dimension == Dimension.payment_method:
            return self.payment_methods
        return self.establishments

    def resolve(self, dimension: Dimension, ref_id: Optional[int]) -> LookupRef:
        if ref_id is None:
            return UNKNOWN
        return self.table_for(dimension).get(ref_id, UNKNOWN)
