from __future__ import annotations

import threading
from operator import attrgetter
from typing import Any

from .servald import MessagePlyList, PlyMessage, RhizomeBundle, RhizomeBundleList, ServaldClient
from .sync.dispatch import LoopContext
from .sync.future_list import FutureList
from .sync.observers import ObserverRegistry
from .sync.source import Page
from .sync.token_store import TokenStore
from .sync.workers import WorkerPool

MESHMB_SERVICE = "MeshMB1"


class Peer:
    """A known identity and the display name taken from its feed."""

    def __init__(
        self,
        sid: str,
        signing_key: str | None = None,
        *,
        context: LoopContext | None = None,
    ) -> None:
        self.sid = sid
        self.signing_key = signing_key
        self.feed_name: str | None = None
        self.observers: ObserverRegistry[Peer] = ObserverRegistry(
            f"peer:{sid[:12]}", context=context
        )
        self._lock = threading.Lock()

    def update_feed_name(self, name: str | None) -> bool:
        if not name:
            return False
        with self._lock:
            if name == self.feed_name:
                return False
            self.feed_name = name
        self.observers.notify(self)
        return True

    def display_name(self) -> str:
        return self.feed_name or f"{self.sid[:12]}*"

    def __repr__(self) -> str:
        return f"Peer({self.sid[:12]!r}, name={self.feed_name!r})"


class MessageFeedSource:
    # servald hands back the whole ply in a single page, so there is never a
    # past cursor to continue from.
    def __init__(self, client: ServaldClient, signing_key: str) -> None:
        self.client = client
        self.signing_key = signing_key

    def fetch_past(self, cursor: str | None = None) -> Page[PlyMessage]:
        return self._page(self.client.meshmb_list_messages(self.signing_key))

    def fetch_future(self, since_token: str | None) -> Page[PlyMessage]:
        listing = self.client.meshmb_list_messages_since(self.signing_key, since_token or "")
        return self._page(listing)

    @staticmethod
    def _page(listing: MessagePlyList) -> Page[PlyMessage]:
        metadata: dict[str, Any] = {"name": listing.name} if listing.name else {}
        return Page(items=listing.messages, token=listing.token, metadata=metadata)


class MessageFeed(FutureList[PlyMessage]):
    """The MeshMB messages published under one signing key."""

    def __init__(
        self,
        client: ServaldClient,
        signing_key: str,
        *,
        pool: WorkerPool,
        peer: Peer | None = None,
        context: LoopContext | None = None,
        token_store: TokenStore | None = None,
    ) -> None:
        if not signing_key:
            raise ValueError("a bundle signing key is required")
        self.signing_key = signing_key
        self.peer = peer
        self.feed_name: str | None = None
        super().__init__(
            MessageFeedSource(client, signing_key),
            key=attrgetter("offset"),
            pool=pool,
            name=f"feed:{signing_key[:16]}",
            context=context,
            token_store=token_store,
            collection_id=f"meshmb:{signing_key}",
        )

    def on_metadata(self, metadata: dict[str, Any]) -> None:
        name = metadata.get("name")
        if not name:
            return
        self.feed_name = str(name)
        if self.peer is not None:
            self.peer.update_feed_name(self.feed_name)


class BundleListSource:
    def __init__(self, client: ServaldClient, service: str | None = None) -> None:
        self.client = client
        self.service = service

    def fetch_past(self, cursor: str | None = None) -> Page[RhizomeBundle]:
        return self._page(self.client.rhizome_list_bundles())

    def fetch_future(self, since_token: str | None) -> Page[RhizomeBundle]:
        return self._page(self.client.rhizome_list_bundles_since(since_token or ""))

    def _page(self, listing: RhizomeBundleList) -> Page[RhizomeBundle]:
        # The token covers every row, including the ones filtered out here.
        bundles = listing.bundles
        if self.service is not None:
            bundles = [bundle for bundle in bundles if bundle.service == self.service]
        return Page(items=bundles, token=listing.token)


class BundleList(FutureList[RhizomeBundle]):
    """Rhizome bundles, one entry per manifest id.

    A newer version of a bundle replaces the older entry in place.
    """

    def __init__(
        self,
        client: ServaldClient,
        *,
        pool: WorkerPool,
        service: str | None = None,
        context: LoopContext | None = None,
        token_store: TokenStore | None = None,
    ) -> None:
        self.service = service
        suffix = f":{service}" if service else ""
        super().__init__(
            BundleListSource(client, service),
            key=attrgetter("manifest_id"),
            pool=pool,
            name=f"bundles{suffix}",
            context=context,
            token_store=token_store,
            collection_id=f"rhizome{suffix}",
        )


class FeedList(BundleList):
    """Every MeshMB feed bundle the daemon knows about."""

    def __init__(
        self,
        client: ServaldClient,
        *,
        pool: WorkerPool,
        context: LoopContext | None = None,
        token_store: TokenStore | None = None,
    ) -> None:
        super().__init__(
            client,
            pool=pool,
            service=MESHMB_SERVICE,
            context=context,
            token_store=token_store,
        )
