"""Example: Live feed over an MQTT bridge with a buffered consumer.

This script demonstrates the live pipeline:

    MQTTFrameSource → MessageRouter → StreamHub → EventBuffer → poll loop

The router publishes on the paho IO thread; the main thread polls an
``EventBuffer`` attached to the trades topic, so slow processing never
blocks dispatch.

Prerequisites:
    1. Create a ``.env`` file (or export variables):
       - ``FEED_MQTT_HOST``
       - ``FEED_MQTT_INBOUND_TOPIC`` (default ``feed/realtime``)
       - ``FEED_MQTT_OUTBOUND_TOPIC`` (default ``feed/requests``)
       - ``FEED_MQTT_USERNAME`` / ``FEED_MQTT_PASSWORD`` (optional)
       - ``FEED_API_KEY`` / ``FEED_API_SECRET`` (optional, account streams)
    2. Install dependencies: ``pip install -e ".[examples]"``

Usage:
    python -m examples.example_live
    python -m examples.example_live --symbol ETHUSD --max-events 500

Press Ctrl+C to stop.
"""

import argparse
import logging
import os
import time

from dotenv import load_dotenv

from core.buffer import BufferConfig, EventBuffer
from core.client import FeedClient
from core.events import ErrorInfo, Trade
from core.requests import SubscribeRequest, SubscriptionTopic
from infra.mqtt_source import MQTTFrameSource, MQTTSourceConfig

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)

# Seconds to wait for the broker connection before subscribing.
_CONNECT_TIMEOUT: float = 10.0


def main() -> None:
    """Run the live trade feed example."""
    load_dotenv()

    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Live exchange feed over an MQTT bridge",
    )
    parser.add_argument(
        "--symbol",
        type=str,
        default="XBTUSD",
        help="Symbol to subscribe to (default: XBTUSD)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=0.05,
        help="Poll interval in seconds (default: 0.05)",
    )
    parser.add_argument(
        "--max-events",
        type=int,
        default=100,
        help="Max events per poll batch (default: 100)",
    )
    parser.add_argument(
        "--buffer-maxlen",
        type=int,
        default=100_000,
        help="Trade buffer max length (default: 100000)",
    )
    args: argparse.Namespace = parser.parse_args()

    host: str = os.environ.get("FEED_MQTT_HOST", "")
    if not host:
        logger.error("Missing FEED_MQTT_HOST environment variable.")
        return

    source: MQTTFrameSource = MQTTFrameSource(
        config=MQTTSourceConfig(
            host=host,
            inbound_topics=[os.environ.get("FEED_MQTT_INBOUND_TOPIC", "feed/realtime")],
            outbound_topic=os.environ.get("FEED_MQTT_OUTBOUND_TOPIC", "feed/requests"),
            username=os.environ.get("FEED_MQTT_USERNAME") or None,
            password=os.environ.get("FEED_MQTT_PASSWORD") or None,
        ),
    )
    client: FeedClient = FeedClient(source)

    trades: EventBuffer[Trade] = EventBuffer(
        config=BufferConfig(maxlen=args.buffer_maxlen),
    )
    trades.attach(client.streams.trades)

    def on_error(error: ErrorInfo) -> None:
        logger.error("Exchange error (status=%s): %s", error.status, error.error)

    client.streams.errors.subscribe(on_error)

    logger.info("Connecting to MQTT broker %s...", host)
    try:
        source.start()
    except Exception as exc:
        logger.exception("Failed to connect to MQTT broker: %s", exc)
        return

    deadline: float = time.monotonic() + _CONNECT_TIMEOUT
    while not source.connected and time.monotonic() < deadline:
        time.sleep(0.1)
    if not source.connected:
        logger.error("Broker did not accept the connection in time")
        source.stop()
        return

    api_key: str = os.environ.get("FEED_API_KEY", "")
    api_secret: str = os.environ.get("FEED_API_SECRET", "")
    if api_key and api_secret:
        client.authenticate(api_key=api_key, api_secret=api_secret)

    client.send(SubscribeRequest.for_topics(SubscriptionTopic.TRADE.of(args.symbol)))
    logger.info("Subscribed to trades of %s, waiting for events...", args.symbol)

    total_events: int = 0
    try:
        while True:
            events: list[Trade] = trades.poll(max_events=args.max_events)
            for trade in events:
                total_events += 1
                logger.info(
                    "[%s] %s %d @ %.2f (#%d)",
                    trade.symbol,
                    trade.side.value,
                    trade.size,
                    trade.price,
                    total_events,
                )
            if not events:
                time.sleep(args.poll_interval)
    except KeyboardInterrupt:
        logger.info("Shutting down (received KeyboardInterrupt)...")
    finally:
        client.close()
        source.stop()

        router_stats = client.router.stats()
        buffer_stats = trades.stats()
        logger.info("=" * 50)
        logger.info("Final Statistics")
        logger.info("-" * 50)
        logger.info("Trades processed: %d", total_events)
        logger.info(
            "Router: claimed=%d, unhandled=%d, malformed=%d",
            router_stats.claimed,
            router_stats.unhandled,
            router_stats.malformed,
        )
        logger.info(
            "Buffer: pushed=%d, polled=%d, dropped=%d",
            buffer_stats.total_pushed,
            buffer_stats.total_polled,
            buffer_stats.total_dropped,
        )
        logger.info("=" * 50)


if __name__ == "__main__":
    main()
