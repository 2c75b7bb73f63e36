from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Sequence, Union
from zoneinfo import ZoneInfo

from aggregation import AggregateResult, coerce_amount, dedupe_records
from money import quantize_amount
from periods import Granularity, local_day
from ranking import DeltaKind, PeriodDelta, RankedGroup, RankedGroups
from records import TransactionRecord

DOMINANT_SHARE = Decimal(40)
PROJECTION_MARGIN = Decimal("1.2")
ANOMALY_FACTOR = Decimal("1.5")


class InsightKind(str, Enum):
    period_comparison = "period_comparison"
    projection = "projection"
    dominant_category = "dominant_category"
    days_without_expenses = "days_without_expenses"
    top_establishment = "top_establishment"
    busiest_bucket = "busiest_bucket"
    anomaly = "anomaly"


@dataclass(frozen=True)
class Insight:
    kind: InsightKind
    priority: int
    subject: Optional[str] = None
    amount: Optional[Decimal] = None
    percent: Optional[Decimal] = None
    count: Optional[int] = None
    record: Optional[TransactionRecord] = None


def projection(period: AggregateResult, today: date) -> Optional[Decimal]:
    """Month-end spending if the pace so far continues; None outside the current month."""
    bucket = period.bucket
    if bucket.granularity != Granularity.month or not bucket.contains(today):
        return None
    elapsed = (today - bucket.start).days + 1
    return quantize_amount(period.total / elapsed * bucket.days)


def detect_anomalies(
    records: Iterable[TransactionRecord],
    series: Sequence[AggregateResult],
    *,
    owner_id: Optional[int] = None,
    tz: Union[str, ZoneInfo, None] = None,
    factor: Decimal = ANOMALY_FACTOR,
    limit: int = 3,
) -> tuple[TransactionRecord, ...]:
    """Records well above the average spending of the days that had any.

    Only day buckets are considered; the threshold is ``factor`` times the
    mean daily total over active days.
    """
    days = [result for result in series if result.bucket.granularity == Granularity.day]
    active = [result.total for result in days if result.count]
    if not active:
        return ()
    threshold = sum(active, Decimal(0)) / len(active) * factor
    start = min(result.bucket.start for result in days)
    end = max(result.bucket.end for result in days)
    zone = ZoneInfo(tz) if isinstance(tz, str) else tz

    found: list[tuple[Decimal, TransactionRecord]] = []
    for record in dedupe_records(records, owner_id=owner_id):
        try:
            day = local_day(record.occurred_at, zone)
            amount = coerce_amount(record)
        except ValueError:
            # the aggregation pass has already reported it
            continue
        if start <= day <= end and amount > threshold:
            found.append((amount, record))
    found.sort(key=lambda item: (-item[0], str(item[1].id)))
    return tuple(record for _, record in found[:limit])


def build_insights(
    period: AggregateResult,
    series: Sequence[AggregateResult],
    categories: RankedGroups,
    delta: PeriodDelta,
    today: date,
    *,
    most_visited: Sequence[RankedGroup] = (),
    anomalies: Sequence[TransactionRecord] = (),
) -> tuple[Insight, ...]:
    insights: list[Insight] = []

    if delta.kind == DeltaKind.change:
        insights.append(
            Insight(
                InsightKind.period_comparison,
                1,
                amount=delta.difference,
                percent=delta.percent,
            )
        )

    projected = projection(period, today)
    if projected is not None and projected > period.total * PROJECTION_MARGIN:
        insights.append(Insight(InsightKind.projection, 2, amount=projected))

    if categories.items and categories.items[0].percentage > DOMINANT_SHARE:
        top = categories.items[0]
        insights.append(
            Insight(
                InsightKind.dominant_category,
                3,
                subject=top.name,
                amount=top.total,
                percent=top.percentage,
            )
        )

    if period.latest_day is not None and period.bucket.contains(today):
        idle_days = (today - period.latest_day).days
        if idle_days > 0:
            insights.append(
                Insight(InsightKind.days_without_expenses, 4, count=idle_days)
            )

    if most_visited:
        place = most_visited[0]
        insights.append(
            Insight(
                InsightKind.top_establishment,
                5,
                subject=place.name,
                amount=place.total,
                count=place.count,
            )
        )

    busiest: Optional[AggregateResult] = None
    for result in series:
        if result.total > 0 and (busiest is None or result.total > busiest.total):
            busiest = result
    if busiest is not None:
        insights.append(
            Insight(
                InsightKind.busiest_bucket,
                6,
                subject=busiest.bucket.label,
                amount=busiest.total,
                count=busiest.count,
            )
        )

    for record in anomalies:
        insights.append(
            Insight(
                InsightKind.anomaly,
                7,
                subject=record.description or None,
                amount=coerce_amount(record),
                record=record,
            )
        )

    insights.sort(key=lambda insight: insight.priority)
    return tuple(insights)
