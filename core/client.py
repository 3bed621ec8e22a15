"""Feed client: wires a frame source to the router and stream hub.

``FeedClient`` is the object application code holds. It subscribes the
router to a :class:`core.source.FrameSource`, exposes the typed
streams, and sends outbound requests through the same source. Because
it only depends on the ``FrameSource`` interface, the same client runs
against a live source or a replay.

Send path:
    ``send()`` is the one path that reports failure to its caller:
    serialization or transport errors are logged and re-raised.

Example:
    >>> from infra.replay_source import ReplayConfig, ReplayFrameSource
    >>> source = ReplayFrameSource(ReplayConfig(file_names=["s.txt"], delimiter="\\n"))
    >>> with FeedClient(source) as client:
    ...     _ = client.streams.trades.subscribe(print)
    ...     source.start()
"""

import logging

from core.hub import StreamHub, Subscription
from core.requests import (
    AuthenticationRequest,
    PingRequest,
    RequestBase,
    serialize_request,
)
from core.router import MessageRouter
from core.source import FrameSource

logger: logging.Logger = logging.getLogger(__name__)

_TAG: str = "FEED CLIENT"


class FeedClient:
    """Typed feed client over any frame source.

    Args:
        source: Live or replay frame source.
        hub: Stream hub to publish into. A new one by default.
        router: Router bound to ``hub``. The canonical router by
            default.
    """

    def __init__(
        self,
        source: FrameSource,
        hub: StreamHub | None = None,
        router: MessageRouter | None = None,
    ) -> None:
        if source is None:
            raise ValueError("source is required")
        self._source: FrameSource = source
        self._streams: StreamHub = hub or StreamHub()
        self._router: MessageRouter = router or MessageRouter.default(self._streams)
        self._frame_subscription: Subscription = source.on_frame(self._router.handle)
        logger.info("[%s] Attached to source %s", _TAG, source.name)

    @property
    def streams(self) -> StreamHub:
        """Typed output streams, one per message kind."""
        return self._streams

    @property
    def router(self) -> MessageRouter:
        return self._router

    @property
    def source(self) -> FrameSource:
        return self._source

    def send(self, request: RequestBase) -> None:
        """Serialize ``request`` and send it through the source.

        Raw requests are sent verbatim; others are JSON encoded.

        Raises:
            ValueError: If ``request`` is ``None``.
            Exception: Whatever serialization or the source raised,
                after logging it.
        """
        try:
            if request is None:
                raise ValueError("request is required")
            serialized: str = serialize_request(request)
            self._source.send(serialized)
        except Exception as exc:
            logger.exception(
                "[%s] Exception while sending message '%r'. Error: %s",
                _TAG,
                request,
                exc,
            )
            raise

    def authenticate(self, api_key: str, api_secret: str) -> None:
        """Send a signed authentication request."""
        self.send(AuthenticationRequest.create(api_key=api_key, api_secret=api_secret))

    def ping(self) -> None:
        """Send the raw ``ping`` keep-alive."""
        self.send(PingRequest())

    def close(self) -> None:
        """Detach the router from the source. Idempotent.

        The source itself is owned by the caller and is not stopped.
        """
        if not self._frame_subscription.disposed:
            self._frame_subscription.dispose()
            logger.info("[%s] Detached from source %s", _TAG, self._source.name)

    def __enter__(self) -> "FeedClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
