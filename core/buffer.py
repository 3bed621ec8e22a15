"""Subscriber-side bounded buffer for consumers on another thread.

The stream hub delivers synchronously on the dispatching thread and
never buffers. A consumer that processes events on its own thread
(a strategy loop, a writer) attaches an ``EventBuffer`` to a topic and
polls it.

SPSC contract:
    One producer (the dispatching thread, via ``push``) and one
    consumer (via ``poll``). ``deque.append`` / ``deque.popleft`` are
    atomic under CPython's GIL, so no lock is taken on either path.

Backpressure policy:
    Drop-oldest. A full ``deque(maxlen)`` evicts its oldest item on
    append; drops are counted with a pre-append length check. The first
    drop after a drop-free period logs one warning.

Example:
    >>> from core.hub import Topic
    >>> topic = Topic("trades")
    >>> buffer = EventBuffer(BufferConfig(maxlen=2))
    >>> _ = buffer.attach(topic)
    >>> for i in range(3):
    ...     topic.publish(i)
    >>> buffer.poll(max_events=10)
    [1, 2]
    >>> buffer.stats().total_dropped
    1
"""

import collections
import logging
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from core.hub import Subscription, Topic

logger: logging.Logger = logging.getLogger(__name__)

T = TypeVar("T")


class BufferConfig(BaseModel):
    """Configuration for :class:`EventBuffer`.

    Attributes:
        maxlen: Capacity. Oldest events are dropped beyond it.
    """

    maxlen: int = Field(
        default=100_000,
        gt=0,
        description="Buffer capacity. Oldest events are dropped when exceeded.",
    )


class BufferStats(BaseModel):
    """Immutable snapshot of buffer counters.

    Under quiescent conditions
    ``total_pushed - total_dropped - total_polled == queue_len``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    total_pushed: int = Field(ge=0)
    total_polled: int = Field(ge=0)
    total_dropped: int = Field(ge=0)
    queue_len: int = Field(ge=0)
    maxlen: int = Field(gt=0)


class EventBuffer(Generic[T]):
    """Drop-oldest bounded queue between a topic and a polling consumer.

    Args:
        config: Buffer configuration. Defaults to ``BufferConfig()``.
    """

    def __init__(self, config: BufferConfig | None = None) -> None:
        self._maxlen: int = (config or BufferConfig()).maxlen
        self._queue: collections.deque[T] = collections.deque(maxlen=self._maxlen)

        # push thread writes _total_pushed/_total_dropped, poll thread _total_polled
        self._total_pushed: int = 0
        self._total_polled: int = 0
        self._total_dropped: int = 0
        self._dropping: bool = False

    def attach(self, topic: Topic[T]) -> Subscription:
        """Subscribe ``push`` to ``topic``."""
        return topic.subscribe(self.push)

    def push(self, event: T) -> None:
        if len(self._queue) == self._maxlen:
            self._total_dropped += 1
            if not self._dropping:
                self._dropping = True
                logger.warning(
                    "EventBuffer full (maxlen=%d), dropping oldest events",
                    self._maxlen,
                )
        elif self._dropping:
            self._dropping = False
        self._queue.append(event)
        self._total_pushed += 1

    def poll(self, max_events: int = 100) -> list[T]:
        """Consume up to ``max_events`` in FIFO order. Non-blocking.

        Raises:
            ValueError: If ``max_events`` is not greater than zero.
        """
        if max_events <= 0:
            raise ValueError(f"max_events must be > 0, got {max_events}")

        events: list[T] = []
        for _ in range(max_events):
            if not self._queue:
                break
            events.append(self._queue.popleft())
        self._total_polled += len(events)
        return events

    def clear(self) -> None:
        """Discard queued events and reset counters. Not concurrent-safe."""
        self._queue.clear()
        self._total_pushed = 0
        self._total_polled = 0
        self._total_dropped = 0
        self._dropping = False

    def __len__(self) -> int:
        return len(self._queue)

    def stats(self) -> BufferStats:
        return BufferStats(
            total_pushed=self._total_pushed,
            total_polled=self._total_polled,
            total_dropped=self._total_dropped,
            queue_len=len(self._queue),
            maxlen=self._maxlen,
        )
