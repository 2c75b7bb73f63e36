from __future__ import annotations

from dataclasses import dataclass
from datetime import MAXYEAR, MINYEAR, date
from enum import Enum
from typing import Optional, Sequence, Union
from zoneinfo import ZoneInfo

from aggregation import AggregateResult, aggregate, combine
from insights import Insight, build_insights, detect_anomalies
from periods import (
    Bucket,
    generate_daily_window,
    generate_month_buckets,
    generate_month_days,
    month_bucket,
    previous_bucket,
    range_bucket,
    year_bucket,
)
from ranking import PeriodDelta, RankedGroups, period_delta, rank_by_visits, top_n
from records import LookupTable, TransactionRecord
from store import DateRange


class SummaryKind(str, Enum):
    daily = "daily"
    monthly = "monthly"
    annual = "annual"


@dataclass(frozen=True)
class SummaryQuery:
    kind: SummaryKind
    year: Optional[int] = None
    month: Optional[int] = None
    days: int = 7

    def __post_init__(self) -> None:
        if self.kind == SummaryKind.daily and self.days < 1:
            raise ValueError("Daily summaries need at least one day")
        if self.kind in (SummaryKind.monthly, SummaryKind.annual) and self.year is None:
            raise ValueError(f"{self.kind.value} summaries need a year")
        # the previous period has to exist too
        if self.year is not None and not MINYEAR < self.year <= MAXYEAR:
            raise ValueError("Year out of range")
        if self.kind == SummaryKind.monthly and not (
            self.month is not None and 1 <= self.month <= 12
        ):
            raise ValueError("Monthly summaries need a month between 1 and 12")

    @classmethod
    def daily(cls, days: int = 7) -> "SummaryQuery":
        return cls(SummaryKind.daily, days=days)

    @classmethod
    def monthly(cls, year: int, month: int) -> "SummaryQuery":
        return cls(SummaryKind.monthly, year=year, month=month)

    @classmethod
    def annual(cls, year: int) -> "SummaryQuery":
        return cls(SummaryKind.annual, year=year)


@dataclass(frozen=True)
class SummaryPlan:
    series: tuple[Bucket, ...]
    period: Bucket
    previous: Bucket

    @property
    def fetch_range(self) -> DateRange:
        return DateRange(self.previous.start, self.period.end)


def plan_summary(query: SummaryQuery, today: date) -> SummaryPlan:
    if query.kind == SummaryKind.daily:
        series = generate_daily_window(query.days, today)
        period = range_bucket(
            series[0].start, series[-1].end, f"last {query.days} days"
        )
    elif query.kind == SummaryKind.monthly:
        series = generate_month_days(query.year, query.month)
        period = month_bucket(query.year, query.month, today)
    else:
        series = generate_month_buckets(query.year, today)
        period = year_bucket(query.year, today)
    return SummaryPlan(tuple(series), period, previous_bucket(period))


def query_range(query: SummaryQuery, today: date) -> DateRange:
    return plan_summary(query, today).fetch_range


@dataclass(frozen=True)
class SummaryReport:
    query: SummaryQuery
    today: date
    period: AggregateResult
    previous: AggregateResult
    series: tuple[AggregateResult, ...]
    categories: RankedGroups
    payment_methods: RankedGroups
    establishments: RankedGroups
    delta: PeriodDelta
    insights: tuple[Insight, ...] = ()

    @property
    def largest(self) -> Optional[TransactionRecord]:
        return self.period.largest


def compute_summary(
    query: SummaryQuery,
    records: Sequence[TransactionRecord],
    lookups: Optional[LookupTable] = None,
    *,
    today: date,
    owner_id: Optional[int] = None,
    category_limit: Optional[int] = 5,
    establishment_limit: int = 10,
    tz: Union[str, ZoneInfo, None] = None,
) -> SummaryReport:
    """Run the whole pipeline over already fetched records.

    The series buckets and the previous period are aggregated together in one
    pass; the period aggregate is the combination of the series.
    """
    plan = plan_summary(query, today)
    results = aggregate(
        records,
        list(plan.series) + [plan.previous],
        lookups=lookups,
        owner_id=owner_id,
        tz=tz,
    )
    series, previous = results[:-1], results[-1]
    period = combine(series, plan.period)

    categories = top_n(period.by_category, category_limit)
    payment_methods = top_n(period.by_payment_method, None)
    establishments = top_n(
        period.top_establishments, establishment_limit, grand_total=period.total
    )
    delta = period_delta(period.total, previous.total)
    anomalies = (
        detect_anomalies(records, series, owner_id=owner_id, tz=tz)
        if query.kind == SummaryKind.daily
        else ()
    )
    insights = build_insights(
        period,
        series,
        categories,
        delta,
        today,
        most_visited=rank_by_visits(period.top_establishments, 1),
        anomalies=anomalies,
    )
    return SummaryReport(
        query=query,
        today=today,
        period=period,
        previous=previous,
        series=series,
        categories=categories,
        payment_methods=payment_methods,
        establishments=establishments,
        delta=delta,
        insights=insights,
    )
