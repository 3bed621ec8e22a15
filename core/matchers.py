"""Response matchers: one shape predicate + converter per message kind.

The feed has no common discriminator field. Table messages are keyed
by ``table``, control answers by top-level keys such as ``error`` or
``subscribe``, and keep-alives are bare text. Each matcher therefore
owns the structural test for its own kind and the conversion into its
typed event, and the router simply probes matchers in order.

Matcher contract:
    ``try_handle(payload) -> bool``

    - Predicate does not match: return ``False`` with no side effects.
    - Predicate matches: convert, publish every resulting event on the
      bound topic (synchronously, in order), return ``True``.
    - Predicate matches but the payload is mis-shaped: raise
      :class:`MalformedFrameError`. Nothing is published, because all
      records are converted before the first publish.

    A table frame with an empty ``data`` list is a valid, empty batch:
    it is claimed and publishes nothing.

Canonical order:
    :func:`default_object_matchers` returns the registration order used
    by the router. Table kinds come first, then ``error`` ahead of the
    other control answers: an error answering a subscribe or auth
    request echoes that request and must never reach their topics.

Example:
    >>> from core.hub import StreamHub
    >>> hub = StreamHub()
    >>> matchers = default_object_matchers(hub)
    >>> matchers[0].kind
    'trade'
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterable

from pydantic import BaseModel, ValidationError

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
    TableAction,
    Trade,
    TradeBin,
    Wallet,
)
from core.hub import StreamHub, Topic

logger: logging.Logger = logging.getLogger(__name__)

Envelope = dict[str, Any]
"""Frame text decoded into a generic JSON object."""

Predicate = Callable[[Envelope], bool]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class MalformedFrameError(ValueError):
    """A frame matched a kind's predicate but not its payload shape.

    Attributes:
        kind: Matcher kind that recognised the frame.
        payload: The offending decoded payload (or raw text).
    """

    def __init__(self, kind: str, message: str, payload: object = None) -> None:
        super().__init__(f"Malformed '{kind}' frame: {message}")
        self.kind: str = kind
        self.payload: object = payload


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------


class ResponseMatcher(ABC):
    """Recognise one message kind and publish its typed events.

    Args:
        kind: Short kind name used in logs and errors.
        topic: Topic the converted events are published on.
    """

    def __init__(self, kind: str, topic: Topic) -> None:
        self._kind: str = kind
        self._topic: Topic = topic

    @property
    def kind(self) -> str:
        return self._kind

    @property
    def topic(self) -> Topic:
        return self._topic

    @abstractmethod
    def matches(self, payload: Any) -> bool:
        """Structural test. Must not raise and must not publish."""

    @abstractmethod
    def convert(self, payload: Any) -> list[BaseModel]:
        """Convert a matched payload into zero or more typed events.

        Raises:
            MalformedFrameError: If the payload shape is invalid.
        """

    def try_handle(self, payload: Any) -> bool:
        if not self.matches(payload):
            return False
        events: list[BaseModel] = self.convert(payload)
        for event in events:
            self._topic.publish(event)
        return True

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self._kind!r}, topic={self._topic.name!r})"


# ---------------------------------------------------------------------------
# Table matcher
# ---------------------------------------------------------------------------


class TableMatcher(ResponseMatcher):
    """Matcher for ``{"table": ..., "action": ..., "data": [...]}`` frames.

    Each record of ``data`` becomes one event of ``model`` carrying the
    frame's ``table`` and ``action``.

    Args:
        kind: Kind name (e.g. ``"book"``).
        tables: Table names this matcher claims.
        model: Event model for one record.
        topic: Destination topic.
    """

    def __init__(
        self,
        kind: str,
        tables: Iterable[str],
        model: type[BaseModel],
        topic: Topic,
    ) -> None:
        super().__init__(kind=kind, topic=topic)
        self._tables: frozenset[str] = frozenset(tables)
        self._model: type[BaseModel] = model

    @property
    def tables(self) -> frozenset[str]:
        return self._tables

    def matches(self, payload: Any) -> bool:
        # error answers may echo a table name; they belong to the error topic
        return (
            isinstance(payload, dict)
            and payload.get("table") in self._tables
            and not is_error(payload)
        )

    def convert(self, payload: Envelope) -> list[BaseModel]:
        table: str = payload["table"]
        data: object = payload.get("data")
        if not isinstance(data, list):
            raise MalformedFrameError(
                self._kind, f"'data' must be a list, got {type(data).__name__}", payload
            )
        try:
            action: TableAction = TableAction(payload.get("action"))
        except ValueError as exc:
            raise MalformedFrameError(
                self._kind, f"unknown action {payload.get('action')!r}", payload
            ) from exc

        if not data:
            logger.debug("Empty %s batch (table=%s, action=%s)", self._kind, table, action.value)
            return []

        events: list[BaseModel] = []
        for index, record in enumerate(data):
            if not isinstance(record, dict):
                raise MalformedFrameError(
                    self._kind, f"record {index} is not an object", payload
                )
            try:
                events.append(
                    self._model.model_validate(
                        {**record, "table": table, "action": action}
                    )
                )
            except ValidationError as exc:
                raise MalformedFrameError(
                    self._kind, f"record {index} invalid: {exc}", payload
                ) from exc
        return events


# ---------------------------------------------------------------------------
# Object matcher
# ---------------------------------------------------------------------------


class ObjectMatcher(ResponseMatcher):
    """Matcher converting a whole envelope into a single event.

    Args:
        kind: Kind name (e.g. ``"error"``).
        predicate: Structural test on the envelope.
        model: Event model built from the whole envelope.
        topic: Destination topic.
    """

    def __init__(
        self,
        kind: str,
        predicate: Predicate,
        model: type[BaseModel],
        topic: Topic,
    ) -> None:
        super().__init__(kind=kind, topic=topic)
        self._predicate: Predicate = predicate
        self._model: type[BaseModel] = model

    def matches(self, payload: Any) -> bool:
        return isinstance(payload, dict) and self._predicate(payload)

    def convert(self, payload: Envelope) -> list[BaseModel]:
        try:
            return [self._model.model_validate(payload)]
        except ValidationError as exc:
            raise MalformedFrameError(self._kind, str(exc), payload) from exc


# ---------------------------------------------------------------------------
# Raw text matcher
# ---------------------------------------------------------------------------


class RawMatcher(ResponseMatcher):
    """Matcher for non-JSON frames, by exact text equality.

    Args:
        kind: Kind name (e.g. ``"pong"``).
        text: Exact (trimmed) frame text to claim.
        factory: Builds the event for a claimed frame.
        topic: Destination topic.
    """

    def __init__(
        self,
        kind: str,
        text: str,
        factory: Callable[[], BaseModel],
        topic: Topic,
    ) -> None:
        super().__init__(kind=kind, topic=topic)
        self._text: str = text
        self._factory: Callable[[], BaseModel] = factory

    def matches(self, payload: Any) -> bool:
        return payload == self._text

    def convert(self, payload: str) -> list[BaseModel]:
        return [self._factory()]


# ---------------------------------------------------------------------------
# Control-answer predicates
# ---------------------------------------------------------------------------


def is_error(envelope: Envelope) -> bool:
    """``{"status": 400, "error": "...", "request": {...}}``."""
    return isinstance(envelope.get("error"), str)


def is_subscribe_ack(envelope: Envelope) -> bool:
    """``{"success": true, "subscribe": "trade:XBTUSD", ...}``."""
    return "subscribe" in envelope and "success" in envelope


def is_info(envelope: Envelope) -> bool:
    """``{"info": "Welcome ...", "version": "...", ...}``."""
    return "info" in envelope and "version" in envelope


def is_authentication_ack(envelope: Envelope) -> bool:
    """``{"success": true, "request": {"op": "authKeyExpires", ...}}``."""
    request: object = envelope.get("request")
    return (
        "success" in envelope
        and isinstance(request, dict)
        and request.get("op") == "authKeyExpires"
    )


# ---------------------------------------------------------------------------
# Canonical registrations
# ---------------------------------------------------------------------------

TRADE_BIN_TABLES: tuple[str, ...] = ("tradeBin1m", "tradeBin5m", "tradeBin1h", "tradeBin1d")
BOOK_TABLES: tuple[str, ...] = ("orderBookL2", "orderBookL2_25")


def default_object_matchers(hub: StreamHub) -> list[ResponseMatcher]:
    """Return the canonical, ordered JSON-object matchers bound to ``hub``."""
    return [
        TableMatcher("trade", ("trade",), Trade, hub.trades),
        TableMatcher("trade_bin", TRADE_BIN_TABLES, TradeBin, hub.trade_bins),
        TableMatcher("book", BOOK_TABLES, BookLevel, hub.book),
        TableMatcher("quote", ("quote",), Quote, hub.quotes),
        TableMatcher("liquidation", ("liquidation",), Liquidation, hub.liquidations),
        TableMatcher("position", ("position",), Position, hub.positions),
        TableMatcher("margin", ("margin",), Margin, hub.margins),
        TableMatcher("order", ("order",), Order, hub.orders),
        TableMatcher("wallet", ("wallet",), Wallet, hub.wallets),
        TableMatcher("instrument", ("instrument",), Instrument, hub.instruments),
        TableMatcher("execution", ("execution",), Execution, hub.executions),
        TableMatcher("funding", ("funding",), Funding, hub.fundings),
        ObjectMatcher("error", is_error, ErrorInfo, hub.errors),
        ObjectMatcher("subscribe", is_subscribe_ack, SubscribeAck, hub.subscriptions),
        ObjectMatcher("info", is_info, InfoMessage, hub.info),
        ObjectMatcher(
            "authentication", is_authentication_ack, AuthenticationAck, hub.authentication
        ),
    ]


def default_raw_matchers(hub: StreamHub) -> list[ResponseMatcher]:
    """Return the canonical, ordered raw-text matchers bound to ``hub``."""
    return [
        RawMatcher("pong", "pong", Pong, hub.pong),
    ]
