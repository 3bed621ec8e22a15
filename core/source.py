"""Frame source capability shared by the live and replay sources.

A frame source produces inbound :class:`core.frames.Frame` objects and
pushes them to registered handlers (the router, typically). The router
and client depend only on this interface, so the same dispatch code
runs against a live connection (:class:`infra.mqtt_source.MQTTFrameSource`)
or a captured session (:class:`infra.replay_source.ReplayFrameSource`).

Delivery contract:
    - Push-style: the source calls handlers, nobody polls it.
    - One frame at a time, in arrival order, from a single delivery
      context per source instance.
    - Handler failures are isolated: logged, counted, and the next
      handler still runs.

Lifecycle:
    ``start()`` begins delivery, ``stop()`` ends it and is idempotent
    (safe before ``start()``), ``send(text)`` writes outbound text where
    the source has a writable counterpart.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable

from core.frames import ControlSignal, Frame
from core.hub import Subscription

logger: logging.Logger = logging.getLogger(__name__)

FrameHandler = Callable[[Frame], None]
"""Handler signature: ``(frame) -> None``. Runs in the delivery context."""


class FrameSource(ABC):
    """Abstract frame source with handler registry and frame numbering.

    Subclasses call :meth:`_emit_text` / :meth:`_emit_control` from their
    single delivery context.

    Args:
        name: Source name stamped on every frame.
    """

    def __init__(self, name: str) -> None:
        self._name: str = name
        self._handlers: tuple[FrameHandler, ...] = ()
        self._handler_lock: threading.Lock = threading.Lock()
        self._sequence: int = 0
        self._frames_emitted: int = 0
        self._handler_errors: int = 0

    @property
    def name(self) -> str:
        return self._name

    # ------------------------------------------------------------------
    # Capability
    # ------------------------------------------------------------------

    @property
    @abstractmethod
    def is_started(self) -> bool:
        """Whether ``start()`` has been called and ``stop()`` has not."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether the source is currently delivering frames."""

    @abstractmethod
    def start(self) -> None:
        """Begin delivering frames to handlers."""

    @abstractmethod
    def stop(self) -> bool:
        """Stop delivery. Idempotent; safe before ``start()``."""

    @abstractmethod
    def send(self, text: str) -> None:
        """Write outbound text to the counterpart, if any."""

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_frame(self, handler: FrameHandler) -> Subscription:
        """Register a frame handler.

        Args:
            handler: Called with each frame, in arrival order.

        Returns:
            :class:`core.hub.Subscription` that removes the handler.
        """
        entry: FrameHandler = lambda frame: handler(frame)  # noqa: E731
        with self._handler_lock:
            self._handlers = self._handlers + (entry,)

        def _remove() -> None:
            with self._handler_lock:
                self._handlers = tuple(h for h in self._handlers if h is not entry)

        return Subscription(dispose=_remove)

    def _emit(self, frame: Frame) -> None:
        self._frames_emitted += 1
        for handler in self._handlers:
            try:
                handler(frame)
            except Exception:
                self._handler_errors += 1
                logger.exception(
                    "Frame handler error on source %s (seq=%d)",
                    self._name,
                    frame.sequence,
                )

    def _emit_text(self, text: str) -> None:
        self._sequence += 1
        self._emit(Frame.data(text, sequence=self._sequence, source=self._name))

    def _emit_control(self, signal: ControlSignal) -> None:
        self._sequence += 1
        self._emit(Frame.control(signal, sequence=self._sequence, source=self._name))

    def stats(self) -> dict[str, object]:
        return {
            "name": self._name,
            "started": self.is_started,
            "running": self.is_running,
            "frames_emitted": self._frames_emitted,
            "handler_errors": self._handler_errors,
            "handlers": len(self._handlers),
        }
