"""Live frame source over an MQTT broker (WebSocket+TLS or TCP).

``MQTTFrameSource`` connects to a broker that bridges the exchange feed,
subscribes to the configured inbound topics, and delivers every message
payload as one UTF-8 text ``DATA`` frame. Outbound requests are
published to a single outbound topic.

Bridge requirement:
    The exchange itself speaks a plain websocket, not MQTT. This source
    does not connect to the exchange directly: a bridge process must
    relay every exchange websocket message onto ``inbound_topics`` and
    forward messages published on ``outbound_topic`` to the exchange
    websocket, payloads unchanged.

Architecture note:
    Uses synchronous paho-mqtt with threading. Frames are delivered
    inline on the paho IO thread, one at a time, in arrival order, so
    the router sees exactly the broker's ordering. Handlers must be
    non-blocking.

Connection semantics:
    ``clean_session=True``: at-most-once delivery, no replay of missed
    messages on reconnect. Freshness over completeness, correct for
    market data.

Lifecycle signals:
    ``CONNECTED`` is emitted on the first successful connect,
    ``RECONNECTED`` on later ones, ``DISCONNECTED`` whenever the
    connection drops. The router ignores them; they exist for
    consumers that must reset state (e.g. a book rebuilt from deltas).

Reconnection:
    Unexpected disconnects and failed connects schedule a reconnect
    loop on a daemon thread with exponential backoff and jitter.
    A guard flag prevents duplicate loops. Each new paho client gets a
    generation number so callbacks from stale clients are ignored.
"""

import logging
import random
import threading
import time
from enum import Enum
from typing import Literal

import paho.mqtt.client as mqtt
from pydantic import BaseModel, Field, model_validator

from core.frames import ControlSignal
from core.source import FrameSource

logger: logging.Logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SourceState(str, Enum):
    """Connection state machine for :class:`MQTTFrameSource`.

    States:
        INIT: Created, ``start()`` not yet called.
        CONNECTING: ``start()`` called, awaiting broker ``on_connect``.
        CONNECTED: Connected and subscribed.
        RECONNECTING: Disconnected, background reconnect loop running.
        STOPPED: ``stop()`` called. Terminal.
    """

    INIT = "INIT"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    STOPPED = "STOPPED"


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class MQTTSourceConfig(BaseModel):
    """Configuration for :class:`MQTTFrameSource`.

    Attributes:
        host: Broker host name.
        port: Broker port. Default 443 (WSS).
        transport: ``"websockets"`` or ``"tcp"``.
        use_tls: Enable TLS with the system CA bundle.
        ws_path: WebSocket path (``websockets`` transport only).
        username: Optional broker username.
        password: Optional broker password. Requires ``username``.
        client_id: MQTT client id. Empty lets the broker assign one.
        inbound_topics: Topics carrying feed messages. At least one.
        outbound_topic: Topic requests are published to. ``None``
            makes ``send()`` fail.
        qos: QoS for subscriptions and publishes.
        keepalive: MQTT keepalive interval in seconds.
        reconnect_min_delay: Minimum reconnect backoff in seconds.
        reconnect_max_delay: Maximum reconnect backoff in seconds.
        name: Source name stamped on every frame.
    """

    host: str = Field(min_length=1, description="Broker host name")
    port: int = Field(default=443, gt=0, le=65535, description="Broker port")
    transport: Literal["websockets", "tcp"] = Field(
        default="websockets",
        description="MQTT transport",
    )
    use_tls: bool = Field(default=True, description="Enable TLS")
    ws_path: str = Field(default="/mqtt", description="WebSocket path")
    username: str | None = Field(default=None, description="Broker username")
    password: str | None = Field(default=None, description="Broker password")
    client_id: str = Field(default="", description="MQTT client id")
    inbound_topics: list[str] = Field(
        min_length=1,
        description="Topics carrying feed messages",
    )
    outbound_topic: str | None = Field(
        default=None,
        description="Topic outbound requests are published to",
    )
    qos: int = Field(default=0, ge=0, le=2, description="MQTT QoS level")
    keepalive: int = Field(
        default=30,
        ge=5,
        le=300,
        description="MQTT keepalive interval in seconds",
    )
    reconnect_min_delay: float = Field(
        default=1.0,
        ge=0.1,
        description="Minimum reconnect backoff delay in seconds",
    )
    reconnect_max_delay: float = Field(
        default=30.0,
        ge=1.0,
        description="Maximum reconnect backoff delay in seconds",
    )
    name: str = Field(default="mqtt", min_length=1, description="Source name")

    @model_validator(mode="after")
    def _check_credentials(self) -> "MQTTSourceConfig":
        if self.password is not None and self.username is None:
            raise ValueError("password requires username")
        if self.reconnect_max_delay < self.reconnect_min_delay:
            raise ValueError("reconnect_max_delay must be >= reconnect_min_delay")
        return self


# ---------------------------------------------------------------------------
# Source
# ---------------------------------------------------------------------------


class MQTTFrameSource(FrameSource):
    """Live frame source backed by a paho-mqtt client.

    Thread ownership:
        - ``start()`` / ``stop()``: any thread, state guarded by lock.
        - ``_on_message()``: paho IO thread only. Delivers frames.
        - ``send()``: any thread (paho ``publish`` is thread-safe).

    Args:
        config: Source configuration.

    Example::

        source = MQTTFrameSource(
            config=MQTTSourceConfig(
                host="feed-bridge.example.com",
                inbound_topics=["feed/realtime"],
                outbound_topic="feed/requests",
            ),
        )
        source.on_frame(router.handle)
        source.start()
        # ... frames arrive on the paho IO thread ...
        source.stop()
    """

    def __init__(self, config: MQTTSourceConfig) -> None:
        super().__init__(name=config.name)
        self._config: MQTTSourceConfig = config

        self._client: mqtt.Client | None = None
        self._client_generation: int = 0
        self._connection_epoch: int = 0

        self._state: SourceState = SourceState.INIT
        self._state_lock: threading.Lock = threading.Lock()

        self._reconnecting: bool = False
        self._reconnect_lock: threading.Lock = threading.Lock()
        self._stop_event: threading.Event = threading.Event()

        self._messages_received: int = 0
        self._decode_errors: int = 0
        self._reconnect_count: int = 0
        self._counter_lock: threading.Lock = threading.Lock()

        self._last_connect_ts: float = 0.0
        self._last_disconnect_ts: float = 0.0

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SourceState:
        with self._state_lock:
            return self._state

    @property
    def connected(self) -> bool:
        return self.state == SourceState.CONNECTED

    @property
    def is_started(self) -> bool:
        return self.state not in (SourceState.INIT, SourceState.STOPPED)

    @property
    def is_running(self) -> bool:
        return self.connected

    def start(self) -> None:
        """Create the paho client, connect, and start its IO loop.

        Raises:
            RuntimeError: If the source is not in INIT state.
            Exception: If the initial connect fails.
        """
        with self._state_lock:
            if self._state != SourceState.INIT:
                raise RuntimeError(f"Cannot start: source is in {self._state} state")
            self._state = SourceState.CONNECTING

        self._client = self._create_mqtt_client()
        self._client.connect(
            host=self._config.host,
            port=self._config.port,
            keepalive=self._config.keepalive,
        )
        self._client.loop_start()
        logger.info(
            "MQTT source %s started, connecting to %s:%d",
            self.name,
            self._config.host,
            self._config.port,
        )

    def stop(self) -> bool:
        """Stop the IO loop and disconnect. Idempotent.

        Returns:
            ``True`` if this call stopped the source, ``False`` if it
            was already stopped.
        """
        with self._state_lock:
            if self._state == SourceState.STOPPED:
                return False
            self._state = SourceState.STOPPED

        self._stop_event.set()
        if self._client is not None:
            try:
                self._client.loop_stop()
            except Exception:
                logger.debug("Exception during loop_stop", exc_info=True)
            try:
                self._client.disconnect()
            except Exception:
                logger.debug("Exception during disconnect", exc_info=True)

        with self._counter_lock:
            msgs: int = self._messages_received
            reconns: int = self._reconnect_count
        logger.info(
            "MQTT source %s stopped (messages=%d, reconnects=%d)",
            self.name,
            msgs,
            reconns,
        )
        return True

    def send(self, text: str) -> None:
        """Publish ``text`` to the outbound topic.

        Raises:
            RuntimeError: If no outbound topic is configured, the
                source is not connected, or the publish is rejected.
        """
        if self._config.outbound_topic is None:
            raise RuntimeError("No outbound_topic configured, cannot send")
        client: mqtt.Client | None = self._client
        if client is None or not self.connected:
            raise RuntimeError(f"Cannot send: source is in {self.state} state")

        info = client.publish(
            topic=self._config.outbound_topic,
            payload=text,
            qos=self._config.qos,
        )
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise RuntimeError(f"Publish failed: {mqtt.error_string(info.rc)}")

    def stats(self) -> dict[str, object]:
        with self._counter_lock:
            counters: dict[str, object] = {
                "messages_received": self._messages_received,
                "decode_errors": self._decode_errors,
                "reconnect_count": self._reconnect_count,
            }
        return {
            **super().stats(),
            **counters,
            "state": self.state.value,
            "connection_epoch": self._connection_epoch,
            "last_connect_ts": self._last_connect_ts,
            "last_disconnect_ts": self._last_disconnect_ts,
        }

    # ------------------------------------------------------------------
    # MQTT Client Factory
    # ------------------------------------------------------------------

    def _create_mqtt_client(self) -> mqtt.Client:
        """Create a paho client; bumps the generation so stale callbacks drop."""
        if self._client is not None:
            try:
                self._client.loop_stop()
            except Exception:
                logger.debug("Exception stopping previous client", exc_info=True)

        self._client_generation += 1
        generation: int = self._client_generation

        client: mqtt.Client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=self._config.client_id,
            clean_session=True,
            transport=self._config.transport,
        )
        if self._config.use_tls:
            client.tls_set()
        if self._config.transport == "websockets":
            client.ws_set_options(path=self._config.ws_path)
        if self._config.username is not None:
            client.username_pw_set(self._config.username, self._config.password)

        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = lambda c, u, m: self._on_message(
            client=c,
            userdata=u,
            msg=m,
            generation=generation,
        )
        return client

    # ------------------------------------------------------------------
    # MQTT Callbacks
    # ------------------------------------------------------------------

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: object,
        reason_code: object,
        properties: object = None,
    ) -> None:
        """Subscribe inbound topics and emit CONNECTED / RECONNECTED."""
        if reason_code == 0:
            with self._state_lock:
                if self._state == SourceState.STOPPED:
                    return
                self._state = SourceState.CONNECTED
            self._last_connect_ts = time.time()
            self._connection_epoch += 1
            for topic in self._config.inbound_topics:
                client.subscribe(topic, qos=self._config.qos)
                logger.info("Subscribed to topic: %s", topic)
            self._emit_control(
                ControlSignal.CONNECTED
                if self._connection_epoch == 1
                else ControlSignal.RECONNECTED
            )
        else:
            logger.error("MQTT connection failed (rc=%s)", reason_code)
            self._schedule_reconnect()

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: object,
        flags: object,
        reason_code: object,
        properties: object = None,
    ) -> None:
        """Emit DISCONNECTED; reconnect unless the drop was requested."""
        self._last_disconnect_ts = time.time()
        with self._state_lock:
            stopped: bool = self._state == SourceState.STOPPED
        self._emit_control(ControlSignal.DISCONNECTED)

        if reason_code == 0 or stopped:
            logger.info("Disconnected from MQTT broker (clean)")
            return
        logger.warning("Unexpected MQTT disconnect (rc=%s)", reason_code)
        self._schedule_reconnect()

    def _on_message(
        self,
        client: mqtt.Client,
        userdata: object,
        msg: mqtt.MQTTMessage,
        generation: int,
    ) -> None:
        """Decode the payload and deliver it as one DATA frame.

        **HOT PATH**: runs inline in the paho IO thread.
        """
        if generation != self._client_generation:
            return

        with self._counter_lock:
            self._messages_received += 1

        try:
            text: str = msg.payload.decode("utf-8")
        except UnicodeDecodeError:
            with self._counter_lock:
                self._decode_errors += 1
            logger.error(
                "Dropping non UTF-8 payload on %s (%d bytes)",
                msg.topic,
                len(msg.payload),
            )
            return

        self._emit_text(text)

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _schedule_reconnect(self) -> None:
        """Start the reconnect loop unless one is running or we stopped."""
        with self._reconnect_lock:
            if self._reconnecting:
                return
            with self._state_lock:
                if self._state == SourceState.STOPPED:
                    return
                self._state = SourceState.RECONNECTING
            self._reconnecting = True

        thread: threading.Thread = threading.Thread(
            target=self._reconnect_loop,
            daemon=True,
            name=f"{self.name}-reconnect",
        )
        thread.start()

    def _reconnect_loop(self) -> None:
        """Reconnect with exponential backoff + jitter until success or stop.

        State moves to CONNECTED only in ``_on_connect``: a TCP connect
        is not a broker-level acceptance.
        """
        delay: float = self._config.reconnect_min_delay

        try:
            while not self._stop_event.is_set():
                try:
                    logger.info("Reconnect attempt (delay=%.1fs)", delay)
                    new_client: mqtt.Client = self._create_mqtt_client()
                    new_client.connect(
                        host=self._config.host,
                        port=self._config.port,
                        keepalive=self._config.keepalive,
                    )
                    new_client.loop_start()
                    self._client = new_client
                    with self._counter_lock:
                        self._reconnect_count += 1
                    logger.info(
                        "Reconnect TCP success (total=%d, gen=%d), "
                        "awaiting on_connect",
                        self._reconnect_count,
                        self._client_generation,
                    )
                    return
                except Exception:
                    logger.exception("Reconnect attempt failed")
                    jittered_delay: float = delay * random.uniform(0.8, 1.2)
                    self._stop_event.wait(timeout=jittered_delay)
                    delay = min(delay * 2, self._config.reconnect_max_delay)
        finally:
            with self._reconnect_lock:
                self._reconnecting = False
