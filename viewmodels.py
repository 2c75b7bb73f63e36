"""Mounted summaries that stay current as the underlying data changes.

A ``SummaryViewModel`` moves through Idle -> Loading -> Ready | Error. While
mounted it listens on the invalidation bus and recomputes from the store on
every signal. Only one recompute runs at a time: signals that arrive while one
is in flight collapse into a single trailing recompute, and each run carries a
generation token so results that arrive after teardown are dropped.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from invalidation import InvalidationBus, Subscription
from periods import local_today
from reports import SummaryQuery, SummaryReport, compute_summary, query_range
from store import StoreUnavailable, TransactionStore

logger = logging.getLogger(__name__)

GENERIC_ERROR = "Summary could not be computed"


class ViewStatus(str, Enum):
    idle = "idle"
    loading = "loading"
    ready = "ready"
    error = "error"


@dataclass(frozen=True)
class ViewState:
    status: ViewStatus = ViewStatus.idle
    report: Optional[SummaryReport] = None
    error: Optional[str] = None
    refreshing: bool = False
    generation: int = 0

    @property
    def soft_loading(self) -> bool:
        return self.status == ViewStatus.loading and self.report is not None


Listener = Callable[[ViewState], None]


class SummaryViewModel:
    def __init__(
        self,
        bus: InvalidationBus,
        store: TransactionStore,
        owner_id: int,
        query: SummaryQuery,
        *,
        today: Callable[[], date] = local_today,
        tz: Union[str, ZoneInfo, None] = None,
        category_limit: Optional[int] = 5,
        establishment_limit: int = 10,
    ) -> None:
        self.bus = bus
        self.store = store
        self.owner_id = owner_id
        self.query = query
        self.today = today
        self.tz = tz
        self.category_limit = category_limit
        self.establishment_limit = establishment_limit

        self._state = ViewState()
        self._listeners: list[Listener] = []
        self._subscription: Optional[Subscription] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._task: Optional[asyncio.Task] = None
        self._settled: Optional[asyncio.Event] = None
        self._generation = 0
        self._pending = False
        self._pending_refresh = False
        self._mounted = False

    @property
    def state(self) -> ViewState:
        return self._state

    @property
    def mounted(self) -> bool:
        return self._mounted

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    def add_listener(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _set_state(self, state: ViewState) -> None:
        self._state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(f"summary_listener_failed: query={self.query}")

    def mount(self) -> None:
        """Subscribe and start the first load. Must run on the event loop."""
        if self._mounted:
            return
        self._loop = asyncio.get_running_loop()
        self._settled = asyncio.Event()
        self._settled.set()
        self._mounted = True
        self._subscription = self.bus.subscribe(self._on_invalidated)
        logger.info(f"summary_mount: owner_id={self.owner_id} query={self.query}")
        self._request(refreshing=False)

    def teardown(self) -> None:
        if not self._mounted:
            return
        self._mounted = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        # results of anything still in flight no longer match
        self._generation += 1
        self._task = None
        self._pending = False
        self._pending_refresh = False
        if self._settled is not None:
            self._settled.set()
        logger.info(f"summary_teardown: owner_id={self.owner_id} query={self.query}")

    def refresh(self) -> None:
        self._request(refreshing=True)

    def retry(self) -> None:
        """Start over from Idle after an error."""
        if self._state.status != ViewStatus.error:
            return
        self.teardown()
        self._set_state(ViewState(generation=self._generation))
        self.mount()

    async def wait_settled(self) -> ViewState:
        if self._settled is not None:
            await self._settled.wait()
        return self._state

    def _on_invalidated(self) -> None:
        loop = self._loop
        if loop is None or not self._mounted:
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._request(refreshing=False)
        else:
            loop.call_soon_threadsafe(self._request, False)

    def _request(self, refreshing: bool) -> None:
        if not self._mounted:
            return
        if self._task is not None and not self._task.done():
            self._pending = True
            self._pending_refresh = self._pending_refresh or refreshing
            logger.debug(f"summary_coalesced: query={self.query}")
            return
        self._start(refreshing)

    def _start(self, refreshing: bool) -> None:
        self._generation += 1
        token = self._generation
        self._settled.clear()
        self._set_state(
            ViewState(
                status=ViewStatus.loading,
                report=self._state.report,
                refreshing=refreshing,
                generation=token,
            )
        )
        self._task = self._loop.create_task(self._run(token))

    async def _compute(self) -> SummaryReport:
        today = self.today()
        records = await self.store.query(self.owner_id, query_range(self.query, today))
        lookups = await self.store.lookups(self.owner_id)
        return compute_summary(
            self.query,
            records,
            lookups,
            today=today,
            owner_id=self.owner_id,
            category_limit=self.category_limit,
            establishment_limit=self.establishment_limit,
            tz=self.tz,
        )

    async def _run(self, token: int) -> None:
        try:
            report = await self._compute()
        except StoreUnavailable as exc:
            outcome = ViewState(
                status=ViewStatus.error,
                report=self._state.report,
                error=str(exc),
                generation=token,
            )
        except Exception:
            logger.exception(f"summary_compute_failed: query={self.query}")
            outcome = ViewState(
                status=ViewStatus.error,
                report=self._state.report,
                error=GENERIC_ERROR,
                generation=token,
            )
        else:
            outcome = ViewState(
                status=ViewStatus.ready, report=report, generation=token
            )

        if token != self._generation or not self._mounted:
            logger.debug(f"summary_stale_result: token={token} query={self.query}")
            return
        self._set_state(outcome)

        if self._pending:
            refreshing = self._pending_refresh
            self._pending = False
            self._pending_refresh = False
            self._start(refreshing)
        else:
            self._settled.set()


class SummaryRegistry:
    """Mounted views shared by (owner, query), least recently used evicted first."""

    def __init__(
        self,
        bus: InvalidationBus,
        store: TransactionStore,
        *,
        max_views: int = 32,
        **view_options,
    ) -> None:
        self.bus = bus
        self.store = store
        self.max_views = max_views
        self.view_options = view_options
        self._views: OrderedDict[tuple[int, SummaryQuery], SummaryViewModel] = (
            OrderedDict()
        )

    def __len__(self) -> int:
        return len(self._views)

    def view(self, owner_id: int, query: SummaryQuery) -> SummaryViewModel:
        key = (owner_id, query)
        loop = asyncio.get_running_loop()
        view = self._views.get(key)
        if view is not None and view.loop is not loop:
            view.teardown()
            del self._views[key]
            view = None
        if view is None:
            view = SummaryViewModel(
                self.bus, self.store, owner_id, query, **self.view_options
            )
            view.mount()
            self._views[key] = view
            while len(self._views) > self.max_views:
                _, evicted = self._views.popitem(last=False)
                evicted.teardown()
        else:
            self._views.move_to_end(key)
        return view

    async def snapshot(
        self, owner_id: int, query: SummaryQuery, *, refresh: bool = False
    ) -> ViewState:
        view = self.view(owner_id, query)
        if view.state.status == ViewStatus.error:
            view.retry()
        elif refresh:
            view.refresh()
        return await view.wait_settled()

    def close(self) -> None:
        for view in self._views.values():
            view.teardown()
        self._views.clear()
