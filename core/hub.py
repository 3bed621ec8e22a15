"""Per-kind publication topics for typed feed events.

The ``StreamHub`` owns one :class:`Topic` per event kind. Topics are
created once at hub construction and never removed. Matchers publish
into topics; any number of independent subscribers read from them.

Delivery contract:
    ``Topic.publish()`` calls every subscriber synchronously, in
    subscription order, on the publisher's thread. Events therefore
    reach each subscriber in publish order. The hub does not buffer:
    subscribers must be fast and non-blocking, and a subscriber that
    needs buffering attaches a :class:`core.buffer.EventBuffer`.

Subscriber isolation:
    A subscriber that raises is logged and counted. Remaining
    subscribers still receive the event and the exception never
    reaches the publisher (the router's dispatch path).

Thread ownership:
    - ``subscribe()`` / ``Subscription.dispose()``: any thread
      (lock-protected).
    - ``publish()``: the dispatching thread. Iterates an immutable
      snapshot of subscribers, so (un)subscribing during a publish
      takes effect from the next event.

Example:
    >>> from core.hub import StreamHub
    >>> hub = StreamHub()
    >>> received = []
    >>> sub = hub.trades.subscribe(received.append)
    >>> hub.trades.subscriber_count
    1
    >>> sub.dispose()
    >>> hub.trades.subscriber_count
    0
"""

import logging
import threading
from typing import Callable, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from core.events import (
    AuthenticationAck,
    BookLevel,
    ErrorInfo,
    Execution,
    Funding,
    InfoMessage,
    Instrument,
    Liquidation,
    Margin,
    Order,
    Pong,
    Position,
    Quote,
    SubscribeAck,
    Trade,
    TradeBin,
    Wallet,
)

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")

Subscriber = Callable[[T], None]
"""Subscriber signature: ``(event) -> None``. Must be non-blocking."""


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


class TopicStats(BaseModel):
    """Immutable snapshot of one topic's counters.

    Attributes:
        name: Topic name.
        published: Events published on the topic.
        subscribers: Current subscriber count.
        subscriber_errors: Subscriber calls that raised.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    published: int = Field(ge=0)
    subscribers: int = Field(ge=0)
    subscriber_errors: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Subscription handle
# ---------------------------------------------------------------------------


class Subscription:
    """Handle returned by :meth:`Topic.subscribe`.

    ``dispose()`` detaches the subscriber. Idempotent. Also usable as a
    context manager.
    """

    def __init__(self, dispose: Callable[[], None]) -> None:
        self._dispose: Callable[[], None] | None = dispose
        self._lock: threading.Lock = threading.Lock()

    @property
    def disposed(self) -> bool:
        """Whether ``dispose()`` has run."""
        return self._dispose is None

    def dispose(self) -> None:
        with self._lock:
            dispose, self._dispose = self._dispose, None
        if dispose is not None:
            dispose()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.dispose()


# ---------------------------------------------------------------------------
# Topic
# ---------------------------------------------------------------------------


class Topic(Generic[T]):
    """Named single-kind publication channel with many subscribers.

    Args:
        name: Topic name used in logs and stats.
    """

    def __init__(self, name: str) -> None:
        self._name: str = name
        self._subscribers: tuple[Subscriber[T], ...] = ()
        self._lock: threading.Lock = threading.Lock()

        self._published: int = 0
        self._subscriber_errors: int = 0

    def __repr__(self) -> str:
        return f"Topic(name={self._name!r}, subscribers={self.subscriber_count})"

    @property
    def name(self) -> str:
        return self._name

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: Subscriber[T]) -> Subscription:
        """Register a subscriber and return its disposable handle.

        The same callable may be registered more than once; each
        registration receives every event and is removed by its own
        handle.

        Args:
            callback: Called with each published event. Must be
                non-blocking, runs on the publisher's thread.

        Returns:
            :class:`Subscription` that detaches this registration.
        """
        # A unique wrapper per registration so duplicate callables are
        # removed one at a time.
        entry: Subscriber[T] = lambda event: callback(event)  # noqa: E731

        with self._lock:
            self._subscribers = self._subscribers + (entry,)

        def _remove() -> None:
            with self._lock:
                self._subscribers = tuple(
                    s for s in self._subscribers if s is not entry
                )

        logger.debug("Subscriber added to topic %s", self._name)
        return Subscription(dispose=_remove)

    def publish(self, event: T) -> None:
        """Deliver ``event`` to every current subscriber, in order.

        Never raises because of a subscriber: failures are logged with
        traceback and counted.
        """
        self._published += 1
        for subscriber in self._subscribers:
            try:
                subscriber(event)
            except Exception:
                self._subscriber_errors += 1
                logger.exception(
                    "Subscriber error on topic %s (%d total)",
                    self._name,
                    self._subscriber_errors,
                )

    def stats(self) -> TopicStats:
        return TopicStats(
            name=self._name,
            published=self._published,
            subscribers=self.subscriber_count,
            subscriber_errors=self._subscriber_errors,
        )


# ---------------------------------------------------------------------------
# Hub
# ---------------------------------------------------------------------------


class StreamHub:
    """Fixed registry of one topic per event kind.

    Attribute names are the public stream names. ``errors`` carries
    error answers from the exchange. The set of topics is fixed at
    construction; there is no API to add or remove topics.

    Example:
        >>> hub = StreamHub()
        >>> sorted(hub.topics())[:3]
        ['authentication', 'book', 'errors']
    """

    def __init__(self) -> None:
        self.trades: Topic[Trade] = Topic("trades")
        self.trade_bins: Topic[TradeBin] = Topic("trade_bins")
        self.book: Topic[BookLevel] = Topic("book")
        self.quotes: Topic[Quote] = Topic("quotes")
        self.liquidations: Topic[Liquidation] = Topic("liquidations")
        self.positions: Topic[Position] = Topic("positions")
        self.margins: Topic[Margin] = Topic("margins")
        self.orders: Topic[Order] = Topic("orders")
        self.wallets: Topic[Wallet] = Topic("wallets")
        self.instruments: Topic[Instrument] = Topic("instruments")
        self.executions: Topic[Execution] = Topic("executions")
        self.fundings: Topic[Funding] = Topic("fundings")

        self.errors: Topic[ErrorInfo] = Topic("errors")
        self.subscriptions: Topic[SubscribeAck] = Topic("subscriptions")
        self.info: Topic[InfoMessage] = Topic("info")
        self.authentication: Topic[AuthenticationAck] = Topic("authentication")
        self.pong: Topic[Pong] = Topic("pong")

        self._topics: dict[str, Topic] = {
            topic.name: topic
            for topic in vars(self).values()
            if isinstance(topic, Topic)
        }

    def topics(self) -> dict[str, Topic]:
        """Return a copy of the name → topic mapping."""
        return dict(self._topics)

    def stats(self) -> dict[str, TopicStats]:
        """Return per-topic stats keyed by topic name."""
        return {name: topic.stats() for name, topic in self._topics.items()}
