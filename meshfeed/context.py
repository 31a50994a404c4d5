from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, TypeVar

from .config import MeshfeedConfig, load_config
from .feeds import MESHMB_SERVICE, BundleList, FeedList, MessageFeed, Peer
from .servald import ServaldClient
from .sync.dispatch import LoopContext
from .sync.future_list import FutureList
from .sync.token_store import TokenStore
from .sync.workers import WorkerPool

logger = logging.getLogger(__name__)

R = TypeVar("R")
T = TypeVar("T")


class Poller:
    """Calls `refresh()` on a list every `interval_s` from the background loop."""

    def __init__(self, target: FutureList[Any], loop: LoopContext, interval_s: float) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.target = target
        self.loop = loop
        self.interval_s = interval_s
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def start(self) -> Poller:
        self.loop.post(self._tick, None)
        return self

    def cancel(self) -> None:
        self._cancelled.set()

    def _tick(self, _payload: None) -> None:
        if self.cancelled or self.target.disposed:
            return
        self.target.refresh()
        self.loop.post_delayed(self._tick, None, self.interval_s)


class MeshContext:
    """Owns everything the synchronization engine shares.

    Build one at process start, call `start()` (or use it as a context
    manager) and hand it to whatever needs lists, loops or the worker pool.
    `close()` stops polling, disposes every list and shuts the threads down.
    """

    def __init__(
        self,
        config: MeshfeedConfig | None = None,
        *,
        client: ServaldClient | None = None,
        token_store: TokenStore | None = None,
    ) -> None:
        self.config = config or load_config()
        self.ui = LoopContext("ui")
        self.background = LoopContext("background")
        self.pool: WorkerPool | None = None
        self.token_store = token_store
        self._owns_token_store = False
        self._client = client
        self._lock = threading.Lock()
        self._lists: dict[str, FutureList[Any]] = {}
        self._peers: dict[str, Peer] = {}
        self._pollers: list[Poller] = []
        self._started = False
        self._closed = False

    def __enter__(self) -> MeshContext:
        return self.start()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> MeshContext:
        with self._lock:
            if self._closed:
                raise RuntimeError("context is closed")
            if self._started:
                return self
            cfg = self.config
            self.pool = WorkerPool(
                cfg.worker_threads,
                queue_size=cfg.work_queue_size,
                policy="block" if cfg.work_queue_policy == "block" else "reject",
            )
            if self.token_store is None and cfg.token_db_path:
                self.token_store = TokenStore(cfg.token_db_path)
                self._owns_token_store = True
            if self._client is None:
                self._client = ServaldClient(
                    cfg.api_host,
                    cfg.api_port,
                    username=cfg.api_username,
                    password=cfg.api_password,
                    timeout_s=cfg.request_timeout_s,
                )
            self.ui.start()
            self.background.start()
            self._started = True
        logger.info("meshfeed context started (daemon %s)", self._client.base_url)
        return self

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pollers = list(self._pollers)
            lists = list(self._lists.values())
            self._pollers.clear()
            self._lists.clear()
        for poller in pollers:
            poller.cancel()
        for future_list in lists:
            future_list.dispose()
        self.background.close()
        if self.pool is not None:
            self.pool.close(wait=False)
        self.ui.close()
        if self._owns_token_store and self.token_store is not None:
            self.token_store.close()
        logger.info("meshfeed context closed")

    @property
    def client(self) -> ServaldClient:
        if not self._started or self._client is None:
            raise RuntimeError("context not started")
        return self._client

    def _require_pool(self) -> WorkerPool:
        if not self._started or self.pool is None:
            raise RuntimeError("context not started")
        return self.pool

    def run_on_thread_pool(self, fn: Callable[..., R], *args: Any) -> Future[R]:
        return self._require_pool().submit(fn, *args)

    def run_on_background(self, fn: Callable[[T], None], payload: T) -> bool:
        return self.background.post(fn, payload)

    def run_on_ui(self, fn: Callable[[T], None], payload: T) -> bool:
        return self.ui.post(fn, payload)

    def run_delayed(self, fn: Callable[[T], None], payload: T, delay_s: float) -> bool:
        return self.background.post_delayed(fn, payload, delay_s)

    def peer(self, sid: str, signing_key: str | None = None) -> Peer:
        with self._lock:
            peer = self._peers.get(sid)
            if peer is None:
                peer = Peer(sid, signing_key, context=self.ui)
                self._peers[sid] = peer
            elif signing_key and peer.signing_key is None:
                peer.signing_key = signing_key
            return peer

    def message_feed(self, signing_key: str, peer: Peer | None = None) -> MessageFeed:
        pool = self._require_pool()
        with self._lock:
            key = f"meshmb:{signing_key}"
            existing = self._lists.get(key)
            if isinstance(existing, MessageFeed):
                if peer is not None and existing.peer is None:
                    existing.peer = peer
                return existing
            feed = MessageFeed(
                self.client,
                signing_key,
                pool=pool,
                peer=peer,
                context=self.ui,
                token_store=self.token_store,
            )
            self._lists[key] = feed
            return feed

    def bundle_list(self, service: str | None = None) -> BundleList:
        if service == MESHMB_SERVICE:
            return self.feed_list()
        pool = self._require_pool()
        with self._lock:
            key = f"rhizome:{service}" if service else "rhizome"
            existing = self._lists.get(key)
            if isinstance(existing, BundleList):
                return existing
            bundles = BundleList(
                self.client,
                pool=pool,
                service=service,
                context=self.ui,
                token_store=self.token_store,
            )
            self._lists[key] = bundles
            return bundles

    def feed_list(self) -> FeedList:
        pool = self._require_pool()
        with self._lock:
            existing = self._lists.get(f"rhizome:{MESHMB_SERVICE}")
            if isinstance(existing, FeedList):
                return existing
            feeds = FeedList(
                self.client, pool=pool, context=self.ui, token_store=self.token_store
            )
            self._lists[f"rhizome:{MESHMB_SERVICE}"] = feeds
            return feeds

    def poll(self, target: FutureList[Any], interval_s: float | None = None) -> Poller:
        poller = Poller(target, self.background, interval_s or self.config.poll_interval_s)
        with self._lock:
            if self._closed:
                raise RuntimeError("context is closed")
            self._pollers.append(poller)
        return poller.start()

    def forget(self, target: FutureList[Any]) -> None:
        """Dispose a list and drop it from the cache."""
        with self._lock:
            for key, value in list(self._lists.items()):
                if value is target:
                    del self._lists[key]
            for poller in [p for p in self._pollers if p.target is target]:
                poller.cancel()
                self._pollers.remove(poller)
        target.dispose()
