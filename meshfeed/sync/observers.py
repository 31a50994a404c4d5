from __future__ import annotations

import enum
import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar, Union

from ..errors import ObserverFault
from .dispatch import LoopContext

logger = logging.getLogger(__name__)

T = TypeVar("T")
E = TypeVar("E")


class Delivery(enum.Enum):
    INLINE = "inline"
    BACKGROUND = "background"


@dataclass(frozen=True)
class Added(Generic[T]):
    index: int
    item: T


@dataclass(frozen=True)
class Removed(Generic[T]):
    item: T


@dataclass(frozen=True)
class Updated(Generic[T]):
    item: T


@dataclass(frozen=True)
class Reset:
    pass


ChangeEvent = Union[Added[T], Removed[T], Updated[T], Reset]

FaultHandler = Callable[[ObserverFault], None]


class Subscription(Generic[E]):
    def __init__(
        self,
        registry: ObserverRegistry[E],
        observer: Callable[[E], None],
        delivery: Delivery,
        context: LoopContext | None,
    ) -> None:
        self.registry = registry
        self.observer = observer
        self.delivery = delivery
        self.context = context

    @property
    def active(self) -> bool:
        return self.registry.is_subscribed(self)

    def cancel(self) -> bool:
        return self.registry.unsubscribe(self)

    def __repr__(self) -> str:
        return f"Subscription({self.observer!r}, {self.delivery.value})"


class ObserverRegistry(Generic[E]):
    """Broadcasts events of one kind to subscribed callbacks.

    Inline observers run on the notifying thread. Background observers are
    posted to a `LoopContext`, so a slow observer never blocks the producer.
    Each observer sees events in the order they were notified. An observer
    that raises is reported through `on_fault` and the remaining observers
    still get the event.
    """

    def __init__(
        self,
        name: str = "observers",
        *,
        context: LoopContext | None = None,
        on_fault: FaultHandler | None = None,
    ) -> None:
        self.name = name
        self.context = context
        self.on_fault = on_fault
        self._lock = threading.Lock()
        self._subscriptions: list[Subscription[E]] = []

    def subscribe(
        self,
        observer: Callable[[E], None],
        delivery: Delivery = Delivery.INLINE,
        *,
        context: LoopContext | None = None,
    ) -> Subscription[E]:
        target = None
        if delivery is Delivery.BACKGROUND:
            target = context or self.context
            if target is None:
                raise ValueError(f"{self.name}: background delivery needs a loop context")
        subscription = Subscription(self, observer, delivery, target)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription[E]) -> bool:
        with self._lock:
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                return False
        return True

    def is_subscribed(self, subscription: Subscription[E]) -> bool:
        with self._lock:
            return subscription in self._subscriptions

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def notify(self, event: E) -> None:
        self.notify_all((event,))

    def notify_all(self, events: Iterable[E]) -> None:
        batch = tuple(events)
        if not batch:
            return
        with self._lock:
            snapshot = list(self._subscriptions)
        for subscription in snapshot:
            if subscription.context is None:
                self._deliver((subscription, batch))
            else:
                subscription.context.post(self._deliver, (subscription, batch))

    def _deliver(self, job: tuple[Subscription[E], tuple[E, ...]]) -> None:
        subscription, batch = job
        for event in batch:
            try:
                subscription.observer(event)
            except Exception as exc:
                self._report(ObserverFault(subscription.observer, exc))

    def _report(self, fault: ObserverFault) -> None:
        logger.exception(
            "%s: observer %r failed", self.name, fault.observer, exc_info=fault.error
        )
        handler = self.on_fault
        if handler is None:
            return
        try:
            handler(fault)
        except Exception as exc:
            logger.exception("%s: fault handler failed", self.name, exc_info=exc)
