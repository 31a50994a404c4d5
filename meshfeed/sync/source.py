from __future__ import annotations

from collections.abc import Hashable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, Protocol, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class Page(Generic[T]):
    """One answer from a paginated source.

    `token` is the continuation marker to resume from, or None when the page
    did not carry one. `removed` lists keys the source reports as gone.
    """

    items: Sequence[T] = ()
    token: str | None = None
    has_more: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    removed: Sequence[Hashable] = ()


class PaginatedSource(Protocol[T]):
    def fetch_past(self, cursor: str | None = None) -> Page[T]: ...

    def fetch_future(self, since_token: str | None) -> Page[T]: ...
