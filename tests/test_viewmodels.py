import asyncio
from datetime import date, datetime
from decimal import Decimal

import pytest

from database import Base, create_db_engine, make_session_factory
from invalidation import InvalidationBus
from records import LookupTable, TransactionRecord
from reports import SummaryQuery
from schemas import TransactionIn
from services import TransactionService
from store import SqlTransactionStore, StoreUnavailable
from viewmodels import GENERIC_ERROR, SummaryRegistry, SummaryViewModel, ViewStatus

WEDNESDAY = date(2026, 1, 7)


class GatedStore:
    """In-memory store whose queries block until ``gate`` is set."""

    def __init__(self, records=()):
        self.records = list(records)
        self.calls = 0
        self.gate = asyncio.Event()
        self.gate.set()
        self.error = None

    async def query(self, owner_id, date_range):
        self.calls += 1
        await self.gate.wait()
        if self.error is not None:
            raise self.error
        return [r for r in self.records if r.owner_id == owner_id]

    async def lookups(self, owner_id):
        return LookupTable()


def today_record(id=1, amount="12.50") -> TransactionRecord:
    return TransactionRecord(
        id=id,
        amount=Decimal(amount),
        occurred_at=datetime(2026, 1, 7, 9, 30),
        owner_id=1,
    )


def make_view(bus, store, query=None) -> SummaryViewModel:
    return SummaryViewModel(
        bus, store, 1, query or SummaryQuery.daily(7), today=lambda: WEDNESDAY
    )


async def drain() -> None:
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_mount_loads_then_becomes_ready() -> None:
    bus = InvalidationBus()
    view = make_view(bus, GatedStore([today_record()]))
    seen = []
    view.add_listener(lambda state: seen.append(state.status))

    assert view.state.status == ViewStatus.idle
    view.mount()
    state = await view.wait_settled()

    assert seen == [ViewStatus.loading, ViewStatus.ready]
    assert state.report.period.total == Decimal("12.50")
    assert state.report.series[-1].count == 1
    assert len(bus) == 1


@pytest.mark.asyncio
async def test_invalidation_keeps_last_report_while_loading() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    view = make_view(bus, store)
    view.mount()
    first = (await view.wait_settled()).report

    store.gate.clear()
    store.records.append(today_record(2, "7.50"))
    bus.publish()

    assert view.state.status == ViewStatus.loading
    assert view.state.soft_loading
    assert view.state.report is first
    assert not view.state.refreshing

    store.gate.set()
    state = await view.wait_settled()
    assert state.status == ViewStatus.ready
    assert state.report.period.total == Decimal("20.00")


@pytest.mark.asyncio
async def test_rapid_invalidations_coalesce_into_one_trailing_recompute() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    view = make_view(bus, store)
    store.gate.clear()

    view.mount()
    await asyncio.sleep(0)
    assert store.calls == 1

    for _ in range(5):
        bus.publish()
    store.gate.set()
    state = await view.wait_settled()

    assert store.calls == 2
    assert state.status == ViewStatus.ready


@pytest.mark.asyncio
async def test_only_the_latest_generation_is_applied() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    view = make_view(bus, store)
    generations = []
    view.add_listener(lambda state: generations.append((state.status, state.generation)))

    view.mount()
    await view.wait_settled()
    bus.publish()
    bus.publish()
    await view.wait_settled()

    ready = [gen for status, gen in generations if status == ViewStatus.ready]
    assert ready == sorted(ready)
    assert view.state.generation == max(gen for _, gen in generations)


@pytest.mark.asyncio
async def test_teardown_discards_result_in_flight() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    view = make_view(bus, store)
    seen = []
    view.add_listener(lambda state: seen.append(state.status))
    store.gate.clear()

    view.mount()
    await asyncio.sleep(0)
    view.teardown()
    assert len(bus) == 0

    store.gate.set()
    await drain()

    assert seen == [ViewStatus.loading]
    assert view.state.report is None
    await view.wait_settled()

    bus.publish()
    await drain()
    assert store.calls == 1


@pytest.mark.asyncio
async def test_manual_refresh_sets_refreshing_flag() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    view = make_view(bus, store)
    view.mount()
    await view.wait_settled()

    store.gate.clear()
    view.refresh()
    assert view.state.status == ViewStatus.loading
    assert view.state.refreshing
    assert view.state.report is not None

    store.gate.set()
    state = await view.wait_settled()
    assert state.status == ViewStatus.ready
    assert not state.refreshing


@pytest.mark.asyncio
async def test_store_unavailable_becomes_error_and_retry_recovers() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    store.error = StoreUnavailable("Transactions could not be loaded")
    view = make_view(bus, store)
    seen = []
    view.add_listener(lambda state: seen.append(state.status))

    view.mount()
    state = await view.wait_settled()
    assert state.status == ViewStatus.error
    assert state.error == "Transactions could not be loaded"

    store.error = None
    view.retry()
    state = await view.wait_settled()

    assert state.status == ViewStatus.ready
    assert seen == [
        ViewStatus.loading,
        ViewStatus.error,
        ViewStatus.idle,
        ViewStatus.loading,
        ViewStatus.ready,
    ]
    assert len(bus) == 1


@pytest.mark.asyncio
async def test_unexpected_failure_becomes_generic_error() -> None:
    bus = InvalidationBus()
    store = GatedStore()
    store.error = KeyError("surprise")
    view = make_view(bus, store)

    view.mount()
    state = await view.wait_settled()

    assert state.status == ViewStatus.error
    assert state.error == GENERIC_ERROR


@pytest.mark.asyncio
async def test_retry_is_ignored_unless_errored() -> None:
    bus = InvalidationBus()
    store = GatedStore()
    view = make_view(bus, store)
    view.mount()
    await view.wait_settled()

    view.retry()
    await view.wait_settled()

    assert store.calls == 1


@pytest.mark.asyncio
async def test_invalidation_from_another_thread_is_marshalled() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    view = make_view(bus, store)
    view.mount()
    await view.wait_settled()

    store.records.append(today_record(2, "1.00"))
    await asyncio.to_thread(bus.publish)
    state = await view.wait_settled()

    assert store.calls == 2
    assert state.report.period.total == Decimal("13.50")


@pytest.mark.asyncio
async def test_deleting_a_transaction_updates_every_mounted_view(tmp_path) -> None:
    engine = create_db_engine(f"sqlite:///{tmp_path / 'views.db'}")
    Base.metadata.create_all(engine)
    factory = make_session_factory(engine)
    bus = InvalidationBus()
    store = SqlTransactionStore(factory)

    with factory() as session:
        service = TransactionService(session, bus)
        keep = service.create(
            TransactionIn(amount=Decimal("12.50"), occurred_at=datetime(2026, 1, 7, 9))
        )
        doomed = service.create(
            TransactionIn(amount=Decimal("30.00"), occurred_at=datetime(2026, 1, 6, 9))
        )

    daily = make_view(bus, store)
    monthly = make_view(bus, store, SummaryQuery.monthly(2026, 1))
    gone = make_view(bus, store, SummaryQuery.annual(2026))
    for view in (daily, monthly, gone):
        view.mount()
    for view in (daily, monthly, gone):
        await view.wait_settled()
    gone.teardown()

    publishes = []
    bus.subscribe(lambda: publishes.append(1))
    transitions = {daily: [], monthly: [], gone: []}
    for view, seen in transitions.items():
        view.add_listener(lambda state, seen=seen: seen.append(state.status))

    with factory() as session:
        TransactionService(session, bus).delete(doomed.id)

    assert publishes == [1]
    for view in (daily, monthly):
        state = await view.wait_settled()
        assert transitions[view] == [ViewStatus.loading, ViewStatus.ready]
        assert state.report.period.total == Decimal("12.50")
        assert state.report.period.count == 1
        assert state.report.largest.id == keep.id
    await drain()
    assert transitions[gone] == []
    assert gone.state.report.period.total == Decimal("42.50")


@pytest.mark.asyncio
async def test_registry_shares_and_evicts_views() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    registry = SummaryRegistry(bus, store, max_views=2, today=lambda: WEDNESDAY)

    first = await registry.snapshot(1, SummaryQuery.daily(7))
    again = registry.view(1, SummaryQuery.daily(7))
    assert first.status == ViewStatus.ready
    assert again.state is first
    assert len(registry) == 1

    await registry.snapshot(1, SummaryQuery.monthly(2026, 1))
    await registry.snapshot(1, SummaryQuery.annual(2026))

    assert len(registry) == 2
    assert not again.mounted
    assert len(bus) == 2

    registry.close()
    assert len(registry) == 0
    assert len(bus) == 0


@pytest.mark.asyncio
async def test_registry_retries_errored_views() -> None:
    bus = InvalidationBus()
    store = GatedStore([today_record()])
    store.error = StoreUnavailable("Transactions could not be loaded")
    registry = SummaryRegistry(bus, store, today=lambda: WEDNESDAY)

    failed = await registry.snapshot(1, SummaryQuery.daily(7))
    store.error = None
    recovered = await registry.snapshot(1, SummaryQuery.daily(7))

    assert failed.status == ViewStatus.error
    assert recovered.status == ViewStatus.ready
    registry.close()
