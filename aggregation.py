"""Single-pass aggregation of transaction records into calendar buckets.

Every record is normalised to its local calendar day, located in at most one
bucket with a binary search over the bucket starts, and folded into that
bucket's running totals and per-dimension subtotals in the same step. Money is
summed as ``Decimal``; averages are only derived when read.
"""

from __future__ import annotations

import logging
from bisect import bisect_right
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Iterable, Iterator, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from money import ZERO, quantize_amount
from periods import Bucket, local_day
from records import (
    ALL_DIMENSIONS,
    Dimension,
    Known,
    LookupRef,
    LookupTable,
    TransactionRecord,
)

logger = logging.getLogger(__name__)


class DataQualityWarning(ValueError):
    def __init__(self, record_id: object, reason: str) -> None:
        super().__init__(f"record {record_id}: {reason}")
        self.record_id = record_id
        self.reason = reason


def group_sort_key(ref: LookupRef, total: Decimal) -> tuple:
    # total desc, then known names ascending, unknown last
    if isinstance(ref, Known):
        return (-total, 0, ref.name.casefold(), ref.id)
    return (-total, 1, "", 0)


@dataclass(frozen=True)
class DimensionGroup:
    ref: LookupRef
    total: Decimal
    count: int

    @property
    def name(self) -> str:
        return self.ref.label

    @property
    def is_known(self) -> bool:
        return isinstance(self.ref, Known)

    @property
    def average(self) -> Decimal:
        if not self.count:
            return ZERO
        return quantize_amount(self.total / self.count)


@dataclass(frozen=True)
class AggregateResult:
    bucket: Bucket
    total: Decimal
    count: int
    by_category: tuple[DimensionGroup, ...] = ()
    by_payment_method: tuple[DimensionGroup, ...] = ()
    by_establishment: tuple[DimensionGroup, ...] = ()
    largest: Optional[TransactionRecord] = None
    largest_amount: Optional[Decimal] = None
    latest_day: Optional[date] = None

    @property
    def average(self) -> Decimal:
        if not self.count:
            return ZERO
        return quantize_amount(self.total / self.count)

    @property
    def top_establishments(self) -> tuple[DimensionGroup, ...]:
        return tuple(group for group in self.by_establishment if group.is_known)

    def groups(self, dimension: Dimension) -> tuple[DimensionGroup, ...]:
        if dimension == Dimension.category:
            return self.by_category
        if dimension == Dimension.payment_method:
            return self.by_payment_method
        return self.by_establishment


class _Accumulator:
    __slots__ = ("total", "count", "groups", "largest", "largest_amount", "latest_day")

    def __init__(self, dimensions: Sequence[Dimension]) -> None:
        self.total = Decimal(0)
        self.count = 0
        self.groups: dict[Dimension, dict[LookupRef, list]] = {
            dimension: {} for dimension in dimensions
        }
        self.largest: Optional[TransactionRecord] = None
        self.largest_amount: Optional[Decimal] = None
        self.latest_day: Optional[date] = None

    def add_group(
        self, dimension: Dimension, ref: LookupRef, total: Decimal, count: int
    ) -> None:
        slot = self.groups[dimension].get(ref)
        if slot is None:
            self.groups[dimension][ref] = [total, count]
        else:
            slot[0] += total
            slot[1] += count

    def add(
        self,
        record: TransactionRecord,
        amount: Decimal,
        day: date,
        lookups: LookupTable,
    ) -> None:
        self.total += amount
        self.count += 1
        for dimension in self.groups:
            ref = lookups.resolve(dimension, getattr(record, dimension.attribute, None))
            self.add_group(dimension, ref, amount, 1)
        self.offer_largest(record, amount)
        if self.latest_day is None or day > self.latest_day:
            self.latest_day = day

    def offer_largest(
        self, record: Optional[TransactionRecord], amount: Optional[Decimal]
    ) -> None:
        if record is None or amount is None:
            return
        if self.largest_amount is None or amount > self.largest_amount:
            self.largest = record
            self.largest_amount = amount

    def freeze_groups(self, dimension: Dimension) -> tuple[DimensionGroup, ...]:
        if dimension not in self.groups:
            return ()
        groups = [
            DimensionGroup(ref, total, count)
            for ref, (total, count) in self.groups[dimension].items()
        ]
        groups.sort(key=lambda g: group_sort_key(g.ref, g.total))
        return tuple(groups)

    def freeze(self, bucket: Bucket) -> AggregateResult:
        return AggregateResult(
            bucket=bucket,
            total=self.total,
            count=self.count,
            by_category=self.freeze_groups(Dimension.category),
            by_payment_method=self.freeze_groups(Dimension.payment_method),
            by_establishment=self.freeze_groups(Dimension.establishment),
            largest=self.largest,
            largest_amount=self.largest_amount,
            latest_day=self.latest_day,
        )


class _BucketIndex:
    def __init__(self, buckets: Sequence[Bucket]) -> None:
        order = sorted(range(len(buckets)), key=lambda i: buckets[i].start)
        for prev, cur in zip(order, order[1:]):
            if buckets[cur].start <= buckets[prev].end:
                raise ValueError(
                    f"Buckets {buckets[prev].label!r} and {buckets[cur].label!r} overlap"
                )
        self._positions = order
        self._starts = [buckets[i].start for i in order]
        self._ends = [buckets[i].end for i in order]

    def find(self, day: date) -> Optional[int]:
        slot = bisect_right(self._starts, day) - 1
        if slot < 0 or day > self._ends[slot]:
            return None
        return self._positions[slot]


def coerce_amount(record: TransactionRecord) -> Decimal:
    """Return the record's amount as a finite ``Decimal``.

    Raises DataQualityWarning when the amount is missing or unusable.
    """
    value = record.amount
    if value is None:
        raise DataQualityWarning(record.id, "missing amount")
    if isinstance(value, bool):
        raise DataQualityWarning(record.id, f"invalid amount {value!r}")
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            amount = Decimal(str(value).strip())
        except InvalidOperation:
            raise DataQualityWarning(record.id, f"invalid amount {value!r}") from None
        if isinstance(value, float):
            logger.warning(
                f"data_quality: record_id={record.id} reason=binary float amount {value!r}"
            )
    else:
        raise DataQualityWarning(record.id, f"invalid amount {value!r}")
    if not amount.is_finite():
        raise DataQualityWarning(record.id, f"invalid amount {value!r}")
    return amount


def _log_data_quality(issue: DataQualityWarning) -> None:
    logger.warning(
        f"data_quality: record_id={issue.record_id} reason={issue.reason}"
    )


def dedupe_records(
    records: Iterable[TransactionRecord], *, owner_id: Optional[int] = None
) -> Iterator[TransactionRecord]:
    """Yield each record id once, keeping the first occurrence.

    With ``owner_id`` set, records belonging to anyone else are dropped.
    """
    seen: set[object] = set()
    for record in records:
        if owner_id is not None and record.owner_id != owner_id:
            logger.warning(
                f"data_quality: record_id={record.id} reason=owner {record.owner_id} "
                f"is not {owner_id}"
            )
            continue
        if record.id in seen:
            logger.debug(f"aggregate_dedupe: record_id={record.id}")
            continue
        seen.add(record.id)
        yield record


def aggregate(
    records: Iterable[TransactionRecord],
    buckets: Sequence[Bucket],
    dimensions: Sequence[Dimension] = ALL_DIMENSIONS,
    lookups: Optional[LookupTable] = None,
    *,
    owner_id: Optional[int] = None,
    tz: Union[str, ZoneInfo, None] = None,
) -> tuple[AggregateResult, ...]:
    """Fold ``records`` into one AggregateResult per bucket, in bucket order.

    Buckets must not overlap. Records outside every bucket are skipped, records
    with an unreadable date are skipped and logged, records with an unreadable
    amount count as zero and are logged.
    """
    buckets = list(buckets)
    index = _BucketIndex(buckets)
    lookups = lookups or LookupTable()
    zone = ZoneInfo(tz) if isinstance(tz, str) else tz
    accumulators = [_Accumulator(dimensions) for _ in buckets]

    for record in dedupe_records(records, owner_id=owner_id):
        try:
            day = local_day(record.occurred_at, zone)
        except ValueError as exc:
            _log_data_quality(DataQualityWarning(record.id, f"invalid date ({exc})"))
            continue
        slot = index.find(day)
        if slot is None:
            continue
        try:
            amount = coerce_amount(record)
        except DataQualityWarning as issue:
            _log_data_quality(issue)
            amount = Decimal(0)
        accumulators[slot].add(record, amount, day, lookups)

    return tuple(acc.freeze(bucket) for acc, bucket in zip(accumulators, buckets))


def combine(results: Iterable[AggregateResult], bucket: Bucket) -> AggregateResult:
    """Merge already aggregated results into a single result for ``bucket``."""
    acc = _Accumulator(ALL_DIMENSIONS)
    for result in results:
        acc.total += result.total
        acc.count += result.count
        for dimension in ALL_DIMENSIONS:
            for group in result.groups(dimension):
                acc.add_group(dimension, group.ref, group.total, group.count)
        acc.offer_largest(result.largest, result.largest_amount)
        if result.latest_day is not None and (
            acc.latest_day is None or result.latest_day > acc.latest_day
        ):
            acc.latest_day = result.latest_day
    return acc.freeze(bucket)
