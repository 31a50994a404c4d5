from __future__ import annotations

from .dispatch import LoopContext, post, post_delayed
from .future_list import FetchResult, FutureList, ListState
from .observers import (
    Added,
    ChangeEvent,
    Delivery,
    ObserverRegistry,
    Removed,
    Reset,
    Subscription,
    Updated,
)
from .source import Page, PaginatedSource
from .token_store import TokenStore
from .workers import WorkerPool

__all__ = [
    "Added",
    "ChangeEvent",
    "Delivery",
    "FetchResult",
    "FutureList",
    "ListState",
    "LoopContext",
    "ObserverRegistry",
    "Page",
    "PaginatedSource",
    "Removed",
    "Reset",
    "Subscription",
    "TokenStore",
    "Updated",
    "WorkerPool",
    "post",
    "post_delayed",
]
