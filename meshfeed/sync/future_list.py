from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Hashable, Sequence
from concurrent.futures import Future
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Generic, Literal, TypeVar

from ..errors import (
    MeshfeedError,
    ObserverFault,
    ProtocolError,
    SourceError,
    StaleTokenError,
)
from .dispatch import LoopContext
from .observers import Added, ChangeEvent, ObserverRegistry, Removed, Reset, Updated
from .source import Page, PaginatedSource
from .token_store import TokenStore
from .workers import WorkerPool

logger = logging.getLogger(__name__)

T = TypeVar("T")

FetchMode = Literal["past", "future"]


@dataclass
class ListState(Generic[T]):
    items: list[T] = field(default_factory=list)
    index: dict[Hashable, int] = field(default_factory=dict)
    last: str | None = None
    has_more: bool = True
    fetching: bool = False
    disposed: bool = False
    loaded: bool = False
    generation: int = 0
    last_error: MeshfeedError | None = None


@dataclass(frozen=True)
class FetchResult:
    mode: FetchMode
    added: int = 0
    updated: int = 0
    removed: int = 0
    token: str | None = None
    has_more: bool = False
    discarded: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.added or self.updated or self.removed)


class FutureList(Generic[T]):
    """Keeps a local ordered copy of a remote list in step with its source.

    History is read with past fetches until the source reports no more, then
    the list follows new items with future fetches from the last token. Only
    one fetch runs at a time; `start()` and `refresh()` return the in-flight
    future instead of issuing a second query. Every change is published on
    `observers` as a ChangeEvent; failures go to `error_observers` and to the
    returned future, and leave the list untouched.
    """

    def __init__(
        self,
        source: PaginatedSource[T],
        *,
        key: Callable[[T], Hashable],
        pool: WorkerPool,
        name: str = "list",
        context: LoopContext | None = None,
        token_store: TokenStore | None = None,
        collection_id: str | None = None,
    ) -> None:
        self.source = source
        self.key = key
        self.pool = pool
        self.name = name
        self.token_store = token_store
        self.collection_id = collection_id or name
        self.observers: ObserverRegistry[ChangeEvent[T]] = ObserverRegistry(
            f"{name}.changes", context=context, on_fault=self._on_observer_fault
        )
        self.error_observers: ObserverRegistry[MeshfeedError] = ObserverRegistry(
            f"{name}.errors", context=context
        )
        self.metadata_observers: ObserverRegistry[dict[str, Any]] = ObserverRegistry(
            f"{name}.metadata", context=context, on_fault=self._on_observer_fault
        )
        self._lock = threading.Lock()
        # Held from merge to the end of emission so a Reset never overtakes
        # the events of a page merged before it.
        self._emit_lock = threading.RLock()
        self._state: ListState[T] = ListState()
        self._inflight: Future[FetchResult] | None = None
        self._latest: Future[FetchResult] | None = None
        self._restore_token()

    # -- read side

    @property
    def last(self) -> str | None:
        return self._state.last

    @property
    def has_more(self) -> bool:
        return self._state.has_more

    @property
    def fetching(self) -> bool:
        return self._state.fetching

    @property
    def loaded(self) -> bool:
        return self._state.loaded

    @property
    def disposed(self) -> bool:
        return self._state.disposed

    @property
    def last_error(self) -> MeshfeedError | None:
        return self._state.last_error

    def items(self) -> list[T]:
        with self._lock:
            return list(self._state.items)

    def get(self, key: Hashable) -> T | None:
        with self._lock:
            pos = self._state.index.get(key)
            return None if pos is None else self._state.items[pos]

    def __len__(self) -> int:
        with self._lock:
            return len(self._state.items)

    # -- triggers

    def start(self) -> Future[FetchResult] | None:
        """Fetch the next page: more history while there is some, new items after."""
        return self._begin()

    def refresh(self) -> Future[FetchResult] | None:
        """Poll for new items since the last token.

        While history is incomplete this keeps paging the past instead, so a
        future fetch never runs before the first past fetch.
        """
        return self._begin()

    def wait(self, timeout: float | None = None) -> FetchResult | None:
        """Block on the running fetch, or return the outcome of the last one."""
        with self._lock:
            future = self._inflight or self._latest
        if future is None:
            return None
        return future.result(timeout)

    def invalidate(self) -> None:
        """Forget everything fetched so far and tell observers to re-read."""
        with self._emit_lock:
            with self._lock:
                if self._state.disposed:
                    return
                self._state.items.clear()
                self._state.index.clear()
                self._state.last = None
                self._state.has_more = True
                self._state.loaded = False
                self._state.generation += 1
            self._clear_token()
            self.observers.notify(Reset())

    def dispose(self) -> None:
        with self._lock:
            self._state.disposed = True
            self._state.generation += 1

    # -- fetch machinery

    def _begin(self) -> Future[FetchResult] | None:
        future: Future[FetchResult] = Future()
        with self._lock:
            state = self._state
            if state.disposed:
                return None
            if state.fetching:
                return self._inflight
            mode: FetchMode = "past" if state.has_more else "future"
            since = state.last
            generation = state.generation
            state.fetching = True
            self._inflight = future
            self._latest = future
        future.set_running_or_notify_cancel()
        try:
            work = self.pool.submit(self._fetch, mode, since, generation, future)
        except MeshfeedError as exc:
            self._fail(future, exc)
        except RuntimeError as exc:
            self._fail(future, MeshfeedError(f"{self.name}: cannot schedule fetch: {exc}"))
        else:
            work.add_done_callback(partial(self._on_work_done, future, mode))
        return future

    def _on_work_done(
        self,
        future: Future[FetchResult],
        mode: FetchMode,
        work: Future[None],
    ) -> None:
        # A fetch that never ran (pool shut down) or escaped `_fetch` still
        # has to release the guard and resolve the caller's future.
        if future.done():
            return
        if work.cancelled():
            logger.debug("%s: queued %s fetch cancelled", self.name, mode)
            self._finish(future, FetchResult(mode, discarded=True))
            return
        exc = work.exception()
        if exc is None:
            return
        error = SourceError(f"{self.name}: {mode} fetch aborted: {exc!r}")
        error.__cause__ = exc
        self._fail(future, error)

    def _fetch(
        self,
        mode: FetchMode,
        since: str | None,
        generation: int,
        future: Future[FetchResult],
    ) -> None:
        try:
            page = self._query(mode, since)
            keyed = self._keyed(page)
        except StaleTokenError as exc:
            logger.warning("%s: continuation token %r is stale; resetting", self.name, since)
            self._fail(future, exc, invalidate=True)
            return
        except MeshfeedError as exc:
            self._fail(future, exc)
            return
        except Exception as exc:
            logger.exception("%s: source raised during %s fetch", self.name, mode, exc_info=exc)
            error = SourceError(f"{self.name}: unexpected error in {mode} fetch: {exc!r}")
            error.__cause__ = exc
            self._fail(future, error)
            return
        try:
            self._complete(future, mode, page, keyed, generation)
        except Exception as exc:
            logger.exception("%s: applying %s page failed", self.name, mode, exc_info=exc)
            error = SourceError(f"{self.name}: applying {mode} page failed: {exc!r}")
            error.__cause__ = exc
            self._fail(future, error)

    def _query(self, mode: FetchMode, since: str | None) -> Page[T]:
        if mode == "past":
            page = self.source.fetch_past(since) if since else self.source.fetch_past()
        else:
            page = self.source.fetch_future(since or "")
        if not isinstance(page, Page):
            raise ProtocolError(f"{self.name}: source returned {type(page).__name__}, not a Page")
        return page

    def _keyed(self, page: Page[T]) -> list[tuple[Hashable, T]]:
        """Key every item up front so a bad row fails the fetch before any merge."""
        keyed: list[tuple[Hashable, T]] = []
        for pos, item in enumerate(page.items):
            try:
                key = self.key(item)
                hash(key)
            except Exception as exc:
                raise ProtocolError(
                    f"{self.name}: page item {pos} has no usable key: {exc!r}"
                ) from exc
            keyed.append((key, item))
        for key in page.removed:
            try:
                hash(key)
            except TypeError as exc:
                raise ProtocolError(f"{self.name}: unhashable removed key {key!r}") from exc
        return keyed

    def _complete(
        self,
        future: Future[FetchResult],
        mode: FetchMode,
        page: Page[T],
        keyed: list[tuple[Hashable, T]],
        generation: int,
    ) -> None:
        with self._emit_lock:
            with self._lock:
                state = self._state
                stale = state.disposed or state.generation != generation
                if not stale:
                    events = self._merge(page.removed, keyed)
                    if page.token:
                        state.last = page.token
                    state.has_more = bool(page.has_more)
                    state.loaded = True
                    state.last_error = None
                    result = FetchResult(
                        mode,
                        added=sum(1 for event in events if isinstance(event, Added)),
                        updated=sum(1 for event in events if isinstance(event, Updated)),
                        removed=sum(1 for event in events if isinstance(event, Removed)),
                        token=state.last,
                        has_more=state.has_more,
                    )
            if stale:
                logger.debug("%s: dropping %s page fetched before reset", self.name, mode)
                self._finish(future, FetchResult(mode, discarded=True))
                return
            try:
                if page.token:
                    self._save_token(page.token)
                self.observers.notify_all(events)
                if page.metadata:
                    self._apply_metadata(page.metadata)
            finally:
                self._finish(future, result)

    def _finish(self, future: Future[FetchResult], result: FetchResult) -> None:
        with self._lock:
            self._state.fetching = False
            if self._inflight is future:
                self._inflight = None
        if not future.done():
            future.set_result(result)

    def _merge(
        self,
        removed: Sequence[Hashable],
        keyed: list[tuple[Hashable, T]],
    ) -> list[ChangeEvent[T]]:
        state = self._state
        events: list[ChangeEvent[T]] = []
        for key in removed:
            pos = state.index.pop(key, None)
            if pos is None:
                continue
            item = state.items.pop(pos)
            for idx in range(pos, len(state.items)):
                state.index[self.key(state.items[idx])] = idx
            events.append(Removed(item))
        for key, item in keyed:
            pos = state.index.get(key)
            if pos is None:
                pos = len(state.items)
                state.index[key] = pos
                state.items.append(item)
                events.append(Added(pos, item))
            elif state.items[pos] != item:
                state.items[pos] = item
                events.append(Updated(item))
        return events

    def _fail(
        self,
        future: Future[FetchResult],
        error: MeshfeedError,
        *,
        invalidate: bool = False,
    ) -> None:
        with self._lock:
            self._state.fetching = False
            self._state.last_error = error
            if self._inflight is future:
                self._inflight = None
            disposed = self._state.disposed
        if not disposed:
            logger.warning("%s: fetch failed: %s", self.name, error)
            if invalidate:
                self.invalidate()
            self.error_observers.notify(error)
        if not future.done():
            future.set_exception(error)

    def _apply_metadata(self, metadata: dict[str, Any]) -> None:
        try:
            self.on_metadata(metadata)
        except Exception as exc:
            logger.exception("%s: metadata hook failed", self.name, exc_info=exc)
        self.metadata_observers.notify(metadata)

    def on_metadata(self, metadata: dict[str, Any]) -> None:
        """Hook for side metadata carried by a page; subclasses override."""

    def _on_observer_fault(self, fault: ObserverFault) -> None:
        self.error_observers.notify(fault)

    # -- token cache

    def _restore_token(self) -> None:
        if self.token_store is None:
            return
        token = self.token_store.get(self.collection_id)
        if not token:
            return
        self._state.last = token
        self._state.has_more = False
        logger.debug("%s: resuming from cached token %r", self.name, token)

    def _save_token(self, token: str) -> None:
        if self.token_store is None:
            return
        try:
            self.token_store.set(self.collection_id, token)
        except Exception as exc:
            logger.exception("%s: saving continuation token failed", self.name, exc_info=exc)

    def _clear_token(self) -> None:
        if self.token_store is None:
            return
        try:
            self.token_store.clear(self.collection_id)
        except Exception as exc:
            logger.exception("%s: clearing continuation token failed", self.name, exc_info=exc)
