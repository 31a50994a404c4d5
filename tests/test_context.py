from __future__ import annotations

import threading

import pytest
from fakes import FakeServald, Recorder

from meshfeed.config import MeshfeedConfig
from meshfeed.context import MeshContext, Poller
from meshfeed.feeds import MESHMB_SERVICE, FeedList, MessageFeed
from meshfeed.servald import MessagePlyList, PlyMessage, RhizomeBundleList
from meshfeed.sync.dispatch import LoopContext
from meshfeed.sync.observers import Added, Delivery
from meshfeed.sync.token_store import TokenStore


def _config(**overrides) -> MeshfeedConfig:
    cfg = MeshfeedConfig(token_db_path=None, worker_threads=2, work_queue_size=4)
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


def test_client_and_lists_require_start() -> None:
    ctx = MeshContext(_config(), client=FakeServald())
    with pytest.raises(RuntimeError, match="not started"):
        ctx.client
    with pytest.raises(RuntimeError, match="not started"):
        ctx.message_feed("KEY1")


def test_lists_are_cached_per_collection() -> None:
    with MeshContext(_config(), client=FakeServald()) as ctx:
        feed = ctx.message_feed("KEY1")
        assert ctx.message_feed("KEY1") is feed
        assert ctx.message_feed("KEY2") is not feed

        everything = ctx.bundle_list()
        assert ctx.bundle_list() is everything
        assert ctx.bundle_list("file") is not everything

        feeds = ctx.feed_list()
        assert isinstance(feeds, FeedList)
        assert ctx.bundle_list(MESHMB_SERVICE) is feeds


def test_message_feed_attaches_peer_later() -> None:
    with MeshContext(_config(), client=FakeServald()) as ctx:
        feed = ctx.message_feed("KEY1")
        peer = ctx.peer("SID1", "KEY1")

        assert ctx.message_feed("KEY1", peer=peer) is feed
        assert feed.peer is peer
        assert ctx.peer("SID1") is peer


def test_feed_events_arrive_on_the_ui_loop() -> None:
    client = FakeServald()
    message = PlyMessage(offset=1, token="t1", text="hi", timestamp=None)
    client.plies = [MessagePlyList(name=None, messages=[message], token="t1")]
    with MeshContext(_config(), client=client) as ctx:
        feed = ctx.message_feed("KEY1")
        events = Recorder()
        feed.observers.subscribe(events, Delivery.BACKGROUND)

        feed.start().result(5)
        assert ctx.ui.drain()

        assert events.events == [Added(0, message)]
        assert events.threads == ["meshfeed-ui"]


def test_close_disposes_lists_and_stops_loops() -> None:
    ctx = MeshContext(_config(), client=FakeServald()).start()
    feed = ctx.message_feed("KEY1")

    ctx.close()

    assert feed.disposed is True
    assert ctx.ui.closed and ctx.background.closed
    assert ctx.run_on_ui(lambda _payload: None, None) is False
    ctx.close()
    with pytest.raises(RuntimeError, match="closed"):
        ctx.start()


def test_context_owns_the_token_store_it_opens(tmp_path) -> None:
    cfg = _config(token_db_path=str(tmp_path / "tokens.sqlite"))
    with MeshContext(cfg, client=FakeServald()) as ctx:
        assert isinstance(ctx.token_store, TokenStore)
        assert ctx.message_feed("KEY1").token_store is ctx.token_store


def test_run_helpers_use_their_threads() -> None:
    seen: dict[str, str] = {}
    done = threading.Event()

    def _record(label: str) -> None:
        seen[label] = threading.current_thread().name
        if len(seen) == 3:
            done.set()

    with MeshContext(_config(), client=FakeServald()) as ctx:
        ctx.run_on_thread_pool(_record, "pool").result(5)
        ctx.run_on_ui(_record, "ui")
        ctx.run_delayed(_record, "delayed", 0.01)
        assert done.wait(5)

    assert seen["ui"] == "meshfeed-ui"
    assert seen["delayed"] == "meshfeed-background"
    assert seen["pool"] != seen["ui"]


def test_poll_refreshes_until_cancelled() -> None:
    client = FakeServald()
    client.listings = [RhizomeBundleList(bundles=[], token=None) for _ in range(50)]
    with MeshContext(_config(), client=client) as ctx:
        bundles = ctx.bundle_list()
        poller = ctx.poll(bundles, 0.01)
        deadline = threading.Event()
        for _ in range(100):
            if len(client.calls) >= 3:
                break
            deadline.wait(0.02)
        poller.cancel()

        assert len(client.calls) >= 3
        assert client.calls[0] == ("bundles", None)


def test_poller_rejects_non_positive_interval() -> None:
    loop = LoopContext("poll-test")
    with pytest.raises(ValueError, match="positive"):
        Poller(object(), loop, 0)  # type: ignore[arg-type]


def test_forget_disposes_and_uncaches() -> None:
    with MeshContext(_config(), client=FakeServald()) as ctx:
        feed = ctx.message_feed("KEY1")
        ctx.forget(feed)

        assert feed.disposed is True
        replacement = ctx.message_feed("KEY1")
        assert replacement is not feed
        assert isinstance(replacement, MessageFeed)


class GatedServald(FakeServald):
    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.entered = threading.Event()

    def rhizome_list_bundles(self) -> RhizomeBundleList:
        self.entered.set()
        self.gate.wait(5)
        return RhizomeBundleList(bundles=[], token=None)


def test_close_resolves_fetches_still_queued() -> None:
    client = GatedServald()
    ctx = MeshContext(_config(worker_threads=1), client=client).start()
    try:
        running = ctx.bundle_list().start()
        assert client.entered.wait(5)
        queued = ctx.message_feed("KEY1")
        pending = queued.start()

        ctx.close()

        assert pending.result(5).discarded is True
        assert queued.fetching is False
        assert queued.wait() is pending.result()
    finally:
        client.gate.set()
    assert running.result(5).discarded is True
