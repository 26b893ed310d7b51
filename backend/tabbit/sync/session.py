# backend/tabbit/sync/session.py
"""
Local-first editing session for one tab.

    LOADING -> READY(clean) <-> READY(dirty) -> FLUSHING -> READY(clean|dirty)
                                  any state -> CLOSED

Every mutation lands in the in-memory snapshot immediately and is recorded
in a PendingLedger. A debounce timer (reset on each mutation) or an
explicit save() sends the ledger to the store. While a flush is out,
new mutations go to a fresh ledger; the one in flight is never touched
again.

A failed flush is logged and its ledger parked in a retry queue; it is
re-sent ahead of newer changes the next time a flush runs (after another
mutation or a manual save). There is no retry timer.

A write that outlives flush_timeout counts as failed, but its thread keeps
running; no further write is started until it has settled. If it landed
after all, its ledger leaves the retry queue instead of being replayed.

All mutations are synchronous and must be called from the event loop the
session was opened on.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Iterable, List, Mapping, Optional, Protocol, Tuple

from tabbit.domain.models import (
    RABBIT_COLORS,
    TAB_UPDATABLE_FIELDS,
    Assignment,
    Item,
    Profile,
    Rabbit,
    SharedTabData,
    Tab,
    TabSnapshot,
)
from tabbit.domain.split_logic import SplitSummary, calculate_split
from tabbit.sync.ledger import PendingLedger

logger = logging.getLogger(__name__)

AUTO_SAVE_DELAY_SECONDS = 120.0
FLUSH_TIMEOUT_SECONDS = 15.0


class SessionError(RuntimeError):
    """Raised when a session is used in a state that does not allow it."""


class SessionClosedError(SessionError):
    pass


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FLUSHING = "flushing"
    CLOSED = "closed"


class TabStore(Protocol):
    """The relational store as the session sees it. Calls may block."""

    def load_tab(self, *, tab_id: str) -> TabSnapshot:
        ...

    def apply_ledger(self, *, tab_id: str, ledger: PendingLedger) -> None:
        ...


def next_color(rabbits: Iterable[Rabbit]) -> str:
    """First palette color not used yet in the tab, cycling once all are taken."""
    rabbits = list(rabbits)
    used = {r.color for r in rabbits}
    for color in RABBIT_COLORS:
        if color not in used:
            return color
    return RABBIT_COLORS[len(rabbits) % len(RABBIT_COLORS)]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TabSession:
    def __init__(
        self,
        store: TabStore,
        tab_id: str,
        *,
        auto_save_delay: float = AUTO_SAVE_DELAY_SECONDS,
        flush_timeout: Optional[float] = FLUSH_TIMEOUT_SECONDS,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ):
        self.tab_id = tab_id
        self.auto_save_delay = auto_save_delay
        self.flush_timeout = flush_timeout
        self._store = store
        self._new_id = id_factory

        self._state = SessionState.LOADING
        self._dirty = False
        self._tab: Optional[Tab] = None
        self._items: List[Item] = []
        self._rabbits: List[Rabbit] = []
        self._assignments: List[Assignment] = []

        self._ledger = PendingLedger()
        self._retry: Deque[PendingLedger] = deque()
        self._flush_lock = asyncio.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        self._autosave_task: Optional[asyncio.Task] = None
        # The last store write and its ledger, kept while the write may still be running.
        self._inflight: Optional[Tuple[PendingLedger, "asyncio.Future[None]"]] = None

    @classmethod
    async def open(cls, store: TabStore, tab_id: str, **kwargs: Any) -> "TabSession":
        session = cls(store, tab_id, **kwargs)
        await session.load()
        return session

    @classmethod
    async def from_config(cls, store: TabStore, tab_id: str, config: Mapping[str, Any], **kwargs: Any) -> "TabSession":
        """Open with timings taken from an app config mapping (e.g. Flask's app.config)."""
        kwargs.setdefault("auto_save_delay", config.get("AUTO_SAVE_DELAY_SECONDS", AUTO_SAVE_DELAY_SECONDS))
        kwargs.setdefault("flush_timeout", config.get("FLUSH_TIMEOUT_SECONDS", FLUSH_TIMEOUT_SECONDS))
        return await cls.open(store, tab_id, **kwargs)

    async def load(self) -> None:
        """
        Fetch the tab from the store. This is the only read from the store;
        everything afterwards is served from memory.
        """
        self._loop = asyncio.get_running_loop()
        self._state = SessionState.LOADING
        snapshot = await asyncio.to_thread(self._store.load_tab, tab_id=self.tab_id)
        if self._state is SessionState.CLOSED:
            return

        self._tab = snapshot.tab
        self._items = list(snapshot.items)
        self._rabbits = list(snapshot.rabbits)
        self._assignments = list(snapshot.assignments)
        self._ledger = PendingLedger()
        self._dirty = False
        self._state = SessionState.READY
        logger.debug("Loaded tab %s (%d items, %d rabbits)", self.tab_id, len(self._items), len(self._rabbits))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_dirty(self) -> bool:
        return self._dirty

    @property
    def tab(self) -> Tab:
        self._require_loaded()
        return self._tab  # type: ignore[return-value]

    @property
    def items(self) -> Tuple[Item, ...]:
        return tuple(self._items)

    @property
    def rabbits(self) -> Tuple[Rabbit, ...]:
        return tuple(self._rabbits)

    @property
    def assignments(self) -> Tuple[Assignment, ...]:
        return tuple(self._assignments)

    @property
    def pending(self) -> PendingLedger:
        """A copy of the changes not yet handed to a flush."""
        return self._ledger.copy()

    @property
    def retry_queue_size(self) -> int:
        return len(self._retry)

    def snapshot(self) -> TabSnapshot:
        return TabSnapshot(
            tab=self.tab,
            items=self.items,
            rabbits=self.rabbits,
            assignments=self.assignments,
        )

    def calculate(self) -> SplitSummary:
        tab = self.tab
        return calculate_split(self._items, self._rabbits, self._assignments, tab.tax_percent, tab.tip_percent)

    @property
    def unassigned_item_count(self) -> int:
        assigned = {a.item_id for a in self._assignments}
        return sum(1 for item in self._items if item.id not in assigned)

    def shared_data(self, owner_profile: Optional[Profile] = None) -> SharedTabData:
        return SharedTabData.from_snapshot(self.snapshot(), owner_profile)

    def is_assigned(self, item_id: str, rabbit_id: str) -> bool:
        return Assignment(item_id=item_id, rabbit_id=rabbit_id) in self._assignments

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_tab(self, **updates: Any) -> Tab:
        self._require_ready()
        unknown = set(updates) - TAB_UPDATABLE_FIELDS
        if unknown:
            raise SessionError(f"tab fields cannot be updated: {', '.join(sorted(unknown))}")
        if not updates:
            return self.tab

        self._tab = dataclasses.replace(self.tab, updated_at=_utcnow(), **updates)
        self._ledger.update_tab(updates)
        self._mark_dirty()
        return self._tab

    def add_item(self, description: str, price_cents: int) -> Item:
        self._require_ready()
        item = Item(
            id=self._new_id(),
            description=description,
            price_cents=price_cents,
            tab_id=self.tab_id,
            created_at=_utcnow(),
        )
        self._items.append(item)
        self._ledger.add_item(item)
        self._mark_dirty()
        return item

    def add_items(self, entries: Iterable[Tuple[str, int]]) -> List[Item]:
        """Add many items at once, e.g. everything a receipt scan found."""
        self._require_ready()
        now = _utcnow()
        created = [
            Item(id=self._new_id(), description=description, price_cents=price_cents, tab_id=self.tab_id, created_at=now)
            for description, price_cents in entries
        ]
        if not created:
            return []

        for item in created:
            self._items.append(item)
            self._ledger.add_item(item)
        self._mark_dirty()
        return created

    def delete_item(self, item_id: str) -> bool:
        self._require_ready()
        if not any(i.id == item_id for i in self._items):
            return False

        self._items = [i for i in self._items if i.id != item_id]
        self._assignments = [a for a in self._assignments if a.item_id != item_id]
        self._ledger.delete_item(item_id)
        self._mark_dirty()
        return True

    def add_rabbit(self, name: str, color: Optional[str] = None, *, profile_id: Optional[str] = None) -> Rabbit:
        self._require_ready()
        rabbit = Rabbit(
            id=self._new_id(),
            name=name,
            color=color or next_color(self._rabbits),
            tab_id=self.tab_id,
            profile_id=profile_id,
            created_at=_utcnow(),
        )
        self._rabbits.append(rabbit)
        self._ledger.add_rabbit(rabbit)
        self._mark_dirty()
        return rabbit

    def remove_rabbit(self, rabbit_id: str) -> bool:
        self._require_ready()
        if not any(r.id == rabbit_id for r in self._rabbits):
            return False

        self._rabbits = [r for r in self._rabbits if r.id != rabbit_id]
        self._assignments = [a for a in self._assignments if a.rabbit_id != rabbit_id]
        self._ledger.delete_rabbit(rabbit_id)
        self._mark_dirty()
        return True

    def toggle_assignment(self, item_id: str, rabbit_id: str) -> bool:
        """
        Flip whether the rabbit shares the item. Returns True when the
        assignment exists afterwards.
        """
        self._require_ready()
        if not any(i.id == item_id for i in self._items):
            raise SessionError(f"unknown item id: {item_id}")
        if not any(r.id == rabbit_id for r in self._rabbits):
            raise SessionError(f"unknown rabbit id: {rabbit_id}")

        edge = Assignment(item_id=item_id, rabbit_id=rabbit_id)
        if edge in self._assignments:
            self._assignments.remove(edge)
            self._ledger.remove_assignment(edge)
            assigned = False
        else:
            self._assignments.append(edge)
            self._ledger.add_assignment(edge)
            assigned = True

        self._mark_dirty()
        return assigned

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    async def save(self) -> bool:
        """Flush now, cancelling the pending auto-save."""
        self._cancel_timer()
        return await self.flush()

    async def flush(self) -> bool:
        """
        Send pending changes to the store. Only one flush runs at a time;
        callers arriving mid-flush wait their turn and then send whatever
        accumulated meanwhile. Returns False if any part failed.
        """
        async with self._flush_lock:
            return await self._flush_pending()

    async def _flush_pending(self) -> bool:
        if self._state is SessionState.CLOSED:
            return False
        if not await self._settle_inflight():
            return False
        if self._ledger.is_empty and not self._retry:
            # Edits that cancelled out leave nothing to send.
            self._dirty = False
            return True

        batch: List[PendingLedger] = list(self._retry)
        self._retry.clear()
        if not self._ledger.is_empty:
            batch.append(self._ledger)
            self._ledger = PendingLedger()

        self._state = SessionState.FLUSHING
        failed_at: Optional[int] = None
        for idx, ledger in enumerate(batch):
            # wait_for cannot stop the worker thread; the future is kept until it settles.
            write = asyncio.ensure_future(
                asyncio.to_thread(self._store.apply_ledger, tab_id=self.tab_id, ledger=ledger)
            )
            self._inflight = (ledger, write)
            try:
                await asyncio.wait_for(asyncio.shield(write), timeout=self.flush_timeout)
            except Exception as e:
                logger.warning("Flush of tab %s failed (%s): %r", self.tab_id, ledger.summary(), e)
                failed_at = idx
                break
            finally:
                if write.done():
                    self._inflight = None

        if self._state is SessionState.CLOSED:
            # Closed while the write was out: nothing left to update.
            return failed_at is None

        self._state = SessionState.READY
        if failed_at is not None:
            self._retry.extend(batch[failed_at:])
            return False

        if self._ledger.is_empty:
            self._dirty = False
        return True

    async def _settle_inflight(self) -> bool:
        """
        Wait for a write that outlived its flush timeout. Returns False if
        it is still running, in which case nothing new may be sent.
        """
        if self._inflight is None:
            return True
        ledger, write = self._inflight
        if not write.done():
            self._state = SessionState.FLUSHING
            await asyncio.wait({write}, timeout=self.flush_timeout)
            if self._state is SessionState.CLOSED:
                return False
            self._state = SessionState.READY
            if not write.done():
                logger.warning("Earlier write to tab %s is still running (%s)", self.tab_id, ledger.summary())
                return False

        self._inflight = None
        if write.cancelled() or write.exception() is not None:
            # Still parked in the retry queue.
            return True
        if self._retry and self._retry[0] is ledger:
            logger.info("Late write to tab %s landed (%s)", self.tab_id, ledger.summary())
            self._retry.popleft()
        return True

    def _mark_dirty(self) -> None:
        self._require_loaded()
        self._dirty = True
        self._cancel_timer()
        self._timer = self._loop.call_later(self.auto_save_delay, self._on_autosave)  # type: ignore[union-attr]

    def _on_autosave(self) -> None:
        self._timer = None
        if self._state is SessionState.CLOSED:
            return
        self._autosave_task = self._loop.create_task(self.flush())  # type: ignore[union-attr]

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def close(self) -> None:
        """
        End the session. Unflushed changes are dropped; a flush already in
        flight finishes but its outcome is ignored.
        """
        self._cancel_timer()
        if self._state is not SessionState.CLOSED and (self._dirty or self._retry):
            logger.info("Closing tab %s with unsaved changes", self.tab_id)
        self._state = SessionState.CLOSED

    # ------------------------------------------------------------------

    def _require_loaded(self) -> None:
        if self._tab is None or self._loop is None:
            raise SessionError("session has not finished loading")

    def _require_ready(self) -> None:
        if self._state is SessionState.CLOSED:
            raise SessionClosedError(f"session for tab {self.tab_id} is closed")
        self._require_loaded()
