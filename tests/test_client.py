"""Unit tests for core.client module.

Uses an in-memory FrameSource that records outbound text and lets the
test push inbound frames directly.
"""

import json
import logging

import pytest

from core.client import FeedClient
from core.frames import ControlSignal
from core.hub import StreamHub
from core.requests import PingRequest, RawRequest, SubscribeRequest
from core.router import MessageRouter
from core.source import FrameSource


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class FakeSource(FrameSource):
    """In-memory source: ``feed()`` pushes inbound text, ``sent`` records outbound."""

    def __init__(self, fail_send: bool = False) -> None:
        super().__init__(name="fake")
        self.sent: list[str] = []
        self._fail_send: bool = fail_send
        self._started: bool = False

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def is_running(self) -> bool:
        return self._started

    def start(self) -> None:
        self._started = True
        self._emit_control(ControlSignal.CONNECTED)

    def stop(self) -> bool:
        self._started = False
        return True

    def send(self, text: str) -> None:
        if self._fail_send:
            raise RuntimeError("transport closed")
        self.sent.append(text)

    def feed(self, text: str) -> None:
        self._emit_text(text)


@pytest.fixture()
def source() -> FakeSource:
    return FakeSource()


@pytest.fixture()
def client(source: FakeSource) -> FeedClient:
    return FeedClient(source)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


class TestConstruction:
    def test_source_required(self) -> None:
        with pytest.raises(ValueError):
            FeedClient(None)  # type: ignore[arg-type]

    def test_defaults(self, client: FeedClient, source: FakeSource) -> None:
        assert isinstance(client.streams, StreamHub)
        assert isinstance(client.router, MessageRouter)
        assert client.source is source
        assert source.stats()["handlers"] == 1

    def test_custom_hub_and_router(self, source: FakeSource) -> None:
        hub: StreamHub = StreamHub()
        router: MessageRouter = MessageRouter.default(hub)
        client: FeedClient = FeedClient(source, hub=hub, router=router)
        assert client.streams is hub
        assert client.router is router


# ---------------------------------------------------------------------------
# Inbound
# ---------------------------------------------------------------------------


class TestInbound:
    def test_frames_reach_typed_streams(
        self, client: FeedClient, source: FakeSource
    ) -> None:
        errors: list = []
        client.streams.errors.subscribe(errors.append)
        source.start()
        source.feed(json.dumps({"status": 429, "error": "Rate limit exceeded"}))
        assert errors[0].status == 429

    def test_close_detaches(self, client: FeedClient, source: FakeSource) -> None:
        pongs: list = []
        client.streams.pong.subscribe(pongs.append)
        source.feed("pong")
        client.close()
        client.close()
        source.feed("pong")
        assert len(pongs) == 1
        assert source.stats()["handlers"] == 0

    def test_close_does_not_stop_source(self, source: FakeSource) -> None:
        source.start()
        with FeedClient(source):
            pass
        assert source.is_started

    def test_two_clients_on_one_source(self, source: FakeSource) -> None:
        first: FeedClient = FeedClient(source)
        second: FeedClient = FeedClient(source)
        seen: list[str] = []
        first.streams.pong.subscribe(lambda e: seen.append("first"))
        second.streams.pong.subscribe(lambda e: seen.append("second"))
        source.feed("pong")
        assert seen == ["first", "second"]


# ---------------------------------------------------------------------------
# Outbound
# ---------------------------------------------------------------------------


class TestSend:
    def test_raw_sent_verbatim(self, client: FeedClient, source: FakeSource) -> None:
        client.send(RawRequest(text="PING"))
        assert source.sent == ["PING"]

    def test_ping(self, client: FeedClient, source: FakeSource) -> None:
        client.ping()
        assert source.sent == ["ping"]

    def test_structured_sent_as_json(
        self, client: FeedClient, source: FakeSource
    ) -> None:
        client.send(SubscribeRequest.for_topics("trade:XBTUSD"))
        assert json.loads(source.sent[0]) == {
            "op": "subscribe",
            "args": ["trade:XBTUSD"],
        }

    def test_authenticate(self, client: FeedClient, source: FakeSource) -> None:
        client.authenticate("key", "secret")
        payload: dict = json.loads(source.sent[0])
        assert payload["op"] == "authKeyExpires"
        assert payload["args"][0] == "key"

    def test_none_request_rejected(self, client: FeedClient) -> None:
        with pytest.raises(ValueError):
            client.send(None)  # type: ignore[arg-type]

    def test_transport_failure_logged_and_raised(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        client: FeedClient = FeedClient(FakeSource(fail_send=True))
        with caplog.at_level(logging.ERROR, logger="core.client"):
            with pytest.raises(RuntimeError, match="transport closed"):
                client.send(PingRequest())
        assert "Exception while sending message" in caplog.text
        assert "[FEED CLIENT]" in caplog.text
