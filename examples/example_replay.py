"""Example: Replay a captured feed session through the router.

This script demonstrates the deterministic replay pipeline:

    ReplayFrameSource → MessageRouter → StreamHub topics

Every record of the capture files is routed exactly as if it had
arrived on a live connection. At the end, per-topic publish counts and
router counters are printed.

Usage:
    python -m examples.example_replay capture.txt
    python -m examples.example_replay day1.txt day2.txt --delimiter '\\n'
    python -m examples.example_replay capture.log --delimiter ';;' --encoding latin-1
"""

import argparse
import logging

from core.client import FeedClient
from core.events import Trade
from infra.replay_source import (
    ReplayConfig,
    ReplayConfigurationError,
    ReplayFrameSource,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger: logging.Logger = logging.getLogger(__name__)


def main() -> None:
    """Replay capture files and print routing statistics."""
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="Replay captured feed sessions through the router",
    )
    parser.add_argument(
        "files",
        nargs="+",
        help="Capture files, replayed in the order given",
    )
    parser.add_argument(
        "--delimiter",
        type=str,
        default="\\n",
        help="Record delimiter; backslash escapes are decoded (default: \\n)",
    )
    parser.add_argument(
        "--encoding",
        type=str,
        default="utf-8",
        help="Capture file encoding (default: utf-8)",
    )
    parser.add_argument(
        "--log-every",
        type=int,
        default=0,
        help="Log every Nth trade (default: 0 = none)",
    )
    args: argparse.Namespace = parser.parse_args()

    delimiter: str = args.delimiter.encode("utf-8").decode("unicode_escape")
    source: ReplayFrameSource = ReplayFrameSource(
        config=ReplayConfig(
            file_names=args.files,
            delimiter=delimiter,
            encoding=args.encoding,
        ),
    )

    trade_count: int = 0

    def on_trade(trade: Trade) -> None:
        nonlocal trade_count
        trade_count += 1
        if args.log_every and trade_count % args.log_every == 0:
            logger.info(
                "[%s] %s %d @ %.2f (#%d)",
                trade.symbol,
                trade.side.value,
                trade.size,
                trade.price,
                trade_count,
            )

    with FeedClient(source) as client:
        client.streams.trades.subscribe(on_trade)
        try:
            source.start()
        except ReplayConfigurationError as exc:
            logger.error("Cannot replay: %s", exc)
            return

        router_stats = client.router.stats()
        logger.info("=" * 50)
        logger.info("Replay Statistics")
        logger.info("-" * 50)
        logger.info("Records replayed: %d", source.records_replayed)
        logger.info(
            "Router: claimed=%d, unhandled=%d, malformed=%d, errors=%d",
            router_stats.claimed,
            router_stats.unhandled,
            router_stats.malformed,
            router_stats.errors,
        )
        for name, stats in sorted(client.streams.stats().items()):
            if stats.published:
                logger.info("  %-15s %d", name, stats.published)
        logger.info("=" * 50)


if __name__ == "__main__":
    main()
