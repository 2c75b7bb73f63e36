from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional, Sequence

from aggregation import DimensionGroup, group_sort_key
from records import LookupRef

HUNDRED = Decimal(100)


@dataclass(frozen=True)
class RankedGroup:
    rank: int
    ref: LookupRef
    total: Decimal
    count: int
    percentage: Decimal

    @property
    def name(self) -> str:
        return self.ref.label


@dataclass(frozen=True)
class RankedGroups:
    items: tuple[RankedGroup, ...]
    grand_total: Decimal
    others_total: Decimal = Decimal(0)
    others_count: int = 0
    others_percentage: Decimal = Decimal(0)

    def __iter__(self):
        return iter(self.items)

    def __len__(self) -> int:
        return len(self.items)

    def __getitem__(self, index: int) -> RankedGroup:
        return self.items[index]


def percentage(part: Decimal, whole: Decimal) -> Decimal:
    if not whole:
        return Decimal(0)
    return part / whole * HUNDRED


def top_n(
    groups: Iterable[DimensionGroup],
    n: Optional[int],
    grand_total: Optional[Decimal] = None,
) -> RankedGroups:
    """Rank groups by total, highest first, ties by name.

    Percentages are taken against ``grand_total`` (the sum of every group when
    omitted), so ``items`` plus the ``others`` remainder add up to 100 for a
    non-zero total and everything is 0 when the total is zero.
    """
    ordered = sorted(groups, key=lambda g: group_sort_key(g.ref, g.total))
    if grand_total is None:
        grand_total = sum((g.total for g in ordered), Decimal(0))
    head = ordered if n is None else ordered[: max(n, 0)]
    tail = [] if n is None else ordered[max(n, 0) :]
    items = tuple(
        RankedGroup(
            rank=position,
            ref=group.ref,
            total=group.total,
            count=group.count,
            percentage=percentage(group.total, grand_total),
        )
        for position, group in enumerate(head, start=1)
    )
    others_total = sum((g.total for g in tail), Decimal(0))
    return RankedGroups(
        items=items,
        grand_total=grand_total,
        others_total=others_total,
        others_count=sum(g.count for g in tail),
        others_percentage=percentage(others_total, grand_total),
    )


def rank_by_visits(groups: Iterable[DimensionGroup], n: int) -> tuple[RankedGroup, ...]:
    """Most frequent groups first: count desc, total desc, then name."""
    ordered = sorted(
        groups, key=lambda g: (-g.count,) + group_sort_key(g.ref, g.total)
    )
    grand_total = sum((g.total for g in ordered), Decimal(0))
    return tuple(
        RankedGroup(
            rank=position,
            ref=group.ref,
            total=group.total,
            count=group.count,
            percentage=percentage(group.total, grand_total),
        )
        for position, group in enumerate(ordered[:n], start=1)
    )


def percentages(totals: Sequence[Decimal]) -> tuple[Decimal, ...]:
    grand_total = sum(totals, Decimal(0))
    return tuple(percentage(total, grand_total) for total in totals)


class DeltaKind(str, Enum):
    change = "change"
    new = "new"
    unchanged = "unchanged"


@dataclass(frozen=True)
class PeriodDelta:
    kind: DeltaKind
    current: Decimal
    previous: Decimal
    percent: Optional[Decimal]

    @property
    def difference(self) -> Decimal:
        return self.current - self.previous

    @property
    def is_new(self) -> bool:
        return self.kind == DeltaKind.new


def period_delta(current: Decimal, previous: Decimal) -> PeriodDelta:
    if previous > 0:
        change = (current - previous) / previous * HUNDRED
        return PeriodDelta(DeltaKind.change, current, previous, change)
    if current > 0:
        return PeriodDelta(DeltaKind.new, current, previous, None)
    return PeriodDelta(DeltaKind.unchanged, current, previous, Decimal(0))
