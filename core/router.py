"""Typed message router: classify each frame and hand it to one matcher.

The router is the single inbound entry point of the feed. For each
``DATA`` frame it:

1. Trims the text. Empty frames are dropped silently.
2. If the text opens a JSON object (``{``), decodes it and probes the
   object matchers in registration order.
3. Otherwise probes the raw-text matchers with the trimmed text.
4. Stops at the first matcher that claims the frame.
5. Logs one WARNING carrying the raw text when nobody claims it.

Fail-open contract:
    ``handle()`` never raises. A malformed recognised frame
    (:class:`core.matchers.MalformedFrameError` or undecodable JSON)
    is logged at ERROR with the raw text; any other exception is logged
    with traceback. Either way the frame is dropped and the feed keeps
    flowing.

Observability events:
    Every dropped frame produces exactly one log record whose message
    starts with the configured source tag and whose ``extra`` carries
    ``source_tag`` and ``raw_text``. Only the traceback of malformed
    frames is rate limited: the first ``traceback_first_n`` carry it,
    later ones are logged as a single ERROR line.

Thread safety:
    The router keeps no per-frame state. Counters are updated under a
    lock, so several sources may fan into one router. Frames from one
    source are handled one at a time in arrival order because each
    source delivers from a single context.

Example:
    >>> from core.frames import Frame
    >>> from core.hub import StreamHub
    >>> hub = StreamHub()
    >>> router = MessageRouter.default(hub)
    >>> pongs = []
    >>> _ = hub.pong.subscribe(pongs.append)
    >>> router.handle(Frame.data("pong"))
    >>> len(pongs)
    1
    >>> router.stats().claimed
    1
"""

import json
import logging
import threading
from typing import Any, Sequence

from pydantic import BaseModel, ConfigDict, Field

from core.frames import Frame
from core.hub import StreamHub
from core.matchers import (
    MalformedFrameError,
    ResponseMatcher,
    default_object_matchers,
    default_raw_matchers,
)

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RouterConfig(BaseModel):
    """Configuration for :class:`MessageRouter`.

    Attributes:
        source_tag: Fixed tag prefixed to every router log message and
            attached as ``extra["source_tag"]``.
        traceback_first_n: Malformed frames logged with full traceback.
            Later malformed frames are logged without one.
    """

    source_tag: str = Field(
        default="FEED ROUTER",
        min_length=1,
        description="Tag attached to every router log event",
    )
    traceback_first_n: int = Field(
        default=10,
        ge=0,
        description="Malformed frames logged with traceback",
    )


class RouterStats(BaseModel):
    """Immutable snapshot of router counters.

    Every ``DATA`` frame increments ``frames_received`` and exactly one
    of ``claimed``, ``unhandled``, ``malformed``, ``errors`` or
    ``empty_frames``.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    frames_received: int = Field(ge=0)
    claimed: int = Field(ge=0)
    unhandled: int = Field(ge=0)
    malformed: int = Field(ge=0)
    errors: int = Field(ge=0)
    empty_frames: int = Field(ge=0)
    control_frames: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class MessageRouter:
    """Chain-of-responsibility dispatcher over ordered matchers.

    Args:
        object_matchers: Matchers probed, in order, with decoded JSON
            objects.
        raw_matchers: Matchers probed, in order, with trimmed non-JSON
            text.
        config: Router configuration.
    """

    def __init__(
        self,
        object_matchers: Sequence[ResponseMatcher],
        raw_matchers: Sequence[ResponseMatcher] = (),
        config: RouterConfig | None = None,
    ) -> None:
        self._config: RouterConfig = config or RouterConfig()
        self._tag: str = self._config.source_tag
        self._object_matchers: tuple[ResponseMatcher, ...] = tuple(object_matchers)
        self._raw_matchers: tuple[ResponseMatcher, ...] = tuple(raw_matchers)

        self._frames_received: int = 0
        self._claimed: int = 0
        self._unhandled: int = 0
        self._malformed: int = 0
        self._errors: int = 0
        self._empty_frames: int = 0
        self._control_frames: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

        logger.info(
            "Router created with %d object and %d raw matchers",
            len(self._object_matchers),
            len(self._raw_matchers),
        )

    @classmethod
    def default(
        cls,
        hub: StreamHub,
        config: RouterConfig | None = None,
    ) -> "MessageRouter":
        """Build a router with the canonical matcher order bound to ``hub``."""
        return cls(
            object_matchers=default_object_matchers(hub),
            raw_matchers=default_raw_matchers(hub),
            config=config,
        )

    @property
    def object_matchers(self) -> tuple[ResponseMatcher, ...]:
        return self._object_matchers

    @property
    def raw_matchers(self) -> tuple[ResponseMatcher, ...]:
        return self._raw_matchers

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def handle(self, frame: Frame) -> None:
        """Route one frame to the first matcher that claims it.

        Never raises. See the module docstring for the drop policy.

        Args:
            frame: Inbound frame. ``CONTROL`` frames are ignored.
        """
        if not frame.is_data:
            self._count("_control_frames")
            logger.debug("[%s] Control frame: %s", self._tag, frame.text)
            return

        self._count("_frames_received")
        text: str = (frame.text or "").strip()
        if not text:
            self._count("_empty_frames")
            return

        try:
            if text.startswith("{") and self._handle_object(text):
                self._count("_claimed")
                return
            if self._handle_raw(text):
                self._count("_claimed")
                return

            self._count("_unhandled")
            logger.warning(
                "[%s] Unhandled response: '%s'",
                self._tag,
                text,
                extra={"source_tag": self._tag, "raw_text": text},
            )
        except (MalformedFrameError, json.JSONDecodeError):
            malformed: int = self._count("_malformed")
            self._log_malformed(text=text, count=malformed)
        except Exception:
            self._count("_errors")
            logger.exception(
                "[%s] Exception while receiving message: '%s'",
                self._tag,
                text,
                extra={"source_tag": self._tag, "raw_text": text},
            )

    __call__ = handle

    def _handle_object(self, text: str) -> bool:
        envelope: Any = json.loads(text)
        if not isinstance(envelope, dict):
            return False
        for matcher in self._object_matchers:
            if matcher.try_handle(envelope):
                return True
        return False

    def _handle_raw(self, text: str) -> bool:
        for matcher in self._raw_matchers:
            if matcher.try_handle(text):
                return True
        return False

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def _count(self, counter: str) -> int:
        with self._counter_lock:
            value: int = getattr(self, counter) + 1
            setattr(self, counter, value)
        return value

    def _log_malformed(self, text: str, count: int) -> None:
        extra: dict[str, str] = {"source_tag": self._tag, "raw_text": text}
        if count <= self._config.traceback_first_n:
            logger.exception(
                "[%s] Malformed response (%d): '%s'",
                self._tag,
                count,
                text,
                extra=extra,
            )
        else:
            logger.error(
                "[%s] Malformed response (%d): '%s'",
                self._tag,
                count,
                text,
                extra=extra,
            )

    def stats(self) -> RouterStats:
        with self._counter_lock:
            return RouterStats(
                frames_received=self._frames_received,
                claimed=self._claimed,
                unhandled=self._unhandled,
                malformed=self._malformed,
                errors=self._errors,
                empty_frames=self._empty_frames,
                control_frames=self._control_frames,
            )
