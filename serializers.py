"""Plain-dict renderings of reports, view states and transactions.

Money and percentages leave as strings so no precision is lost in JSON;
rounding is up to whoever displays them.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Optional

from aggregation import AggregateResult
from insights import Insight
from models import Transaction
from money import cents_to_amount
from periods import Bucket
from ranking import PeriodDelta, RankedGroup, RankedGroups, percentages
from records import Known, LookupRef, TransactionRecord
from reports import SummaryReport
from viewmodels import ViewState


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


def _ref(ref: LookupRef) -> dict[str, Any]:
    if isinstance(ref, Known):
        return {"id": ref.id, "name": ref.name, "icon": ref.icon, "known": True}
    return {"id": None, "name": ref.label, "icon": None, "known": False}


def bucket_to_dict(bucket: Bucket) -> dict[str, Any]:
    return {
        "label": bucket.label,
        "start": bucket.start.isoformat(),
        "end": bucket.end.isoformat(),
        "granularity": bucket.granularity.value,
        "selectable": bucket.selectable,
    }


def record_to_dict(record: Optional[TransactionRecord]) -> Optional[dict[str, Any]]:
    if record is None:
        return None
    occurred_at = record.occurred_at
    return {
        "id": record.id,
        "amount": _money(record.amount) if isinstance(record.amount, Decimal) else None,
        "occurred_at": occurred_at.isoformat() if occurred_at is not None else None,
        "description": record.description,
        "category_id": record.category_id,
        "payment_method_id": record.payment_method_id,
        "establishment_id": record.establishment_id,
    }


def _ranked(group: RankedGroup) -> dict[str, Any]:
    return {
        "rank": group.rank,
        **_ref(group.ref),
        "total": _money(group.total),
        "count": group.count,
        "percentage": str(group.percentage),
    }


def ranked_to_dict(groups: RankedGroups) -> dict[str, Any]:
    return {
        "items": [_ranked(group) for group in groups],
        "grand_total": _money(groups.grand_total),
        "others": {
            "total": _money(groups.others_total),
            "count": groups.others_count,
            "percentage": str(groups.others_percentage),
        },
    }


def aggregate_to_dict(result: AggregateResult) -> dict[str, Any]:
    return {
        "bucket": bucket_to_dict(result.bucket),
        "total": _money(result.total),
        "count": result.count,
        "average": _money(result.average),
    }


def delta_to_dict(delta: PeriodDelta) -> dict[str, Any]:
    return {
        "kind": delta.kind.value,
        "current": _money(delta.current),
        "previous": _money(delta.previous),
        "difference": _money(delta.difference),
        "percent": None if delta.percent is None else str(delta.percent),
    }


def insight_to_dict(insight: Insight) -> dict[str, Any]:
    return {
        "kind": insight.kind.value,
        "priority": insight.priority,
        "subject": insight.subject,
        "amount": _money(insight.amount),
        "percent": None if insight.percent is None else str(insight.percent),
        "count": insight.count,
        "transaction_id": insight.record.id if insight.record is not None else None,
    }


def report_to_dict(report: SummaryReport) -> dict[str, Any]:
    shares = percentages([result.total for result in report.series])
    series = []
    for result, share in zip(report.series, shares):
        item = aggregate_to_dict(result)
        item["share"] = str(share)
        series.append(item)
    return {
        "kind": report.query.kind.value,
        "today": report.today.isoformat(),
        "period": aggregate_to_dict(report.period),
        "previous": aggregate_to_dict(report.previous),
        "series": series,
        "categories": ranked_to_dict(report.categories),
        "payment_methods": ranked_to_dict(report.payment_methods),
        "establishments": ranked_to_dict(report.establishments),
        "delta": delta_to_dict(report.delta),
        "largest": record_to_dict(report.largest),
        "insights": [insight_to_dict(insight) for insight in report.insights],
    }


def state_to_dict(state: ViewState) -> dict[str, Any]:
    return {
        "status": state.status.value,
        "refreshing": state.refreshing,
        "error": state.error,
        "generation": state.generation,
        "report": report_to_dict(state.report) if state.report is not None else None,
    }


def lookup_to_dict(item) -> Optional[dict[str, Any]]:
    if item is None:
        return None
    return {"id": item.id, "name": item.name, "icon": item.icon}


def transaction_to_dict(txn: Transaction) -> dict[str, Any]:
    return {
        "id": txn.id,
        "date": txn.date.isoformat(),
        "occurred_at": txn.occurred_at.isoformat(),
        "amount": str(cents_to_amount(txn.amount_cents)),
        "description": txn.description,
        "category": lookup_to_dict(txn.category),
        "payment_method": lookup_to_dict(txn.payment_method),
        "establishment": lookup_to_dict(txn.establishment),
    }
