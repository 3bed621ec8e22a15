"""Typed event models produced by the response matchers.

Every message kind the exchange multiplexes over the feed connection
has exactly one event model here. Matchers validate decoded envelopes
into these models and publish them on the matching
:class:`core.hub.StreamHub` topic.

Table messages:
    Table-shaped messages (``{"table": ..., "action": ..., "data":
    [...]}``) are split per record: each record in ``data`` becomes one
    event carrying the ``table`` and ``action`` of its frame, so a
    consumer rebuilding state (e.g. an order book) still sees whether
    the record is a ``partial`` snapshot or an incremental
    ``insert``/``update``/``delete``.

Wire names:
    The exchange uses camelCase keys with irregular ID suffixes
    (``orderID``, ``trdMatchID``). Models use snake_case attributes,
    an alias generator for the camelCase form, and explicit aliases for
    the irregular ones. ``populate_by_name=True`` lets tests build
    events with attribute names.

Immutability:
    All models are ``frozen=True``. Subscribers may hold references to
    the same event instance without sharing mutable state.

Unknown fields:
    ``extra="ignore"`` so that additive upstream schema changes do not
    turn into malformed-frame errors.

Example:
    >>> from core.events import Trade, TableAction
    >>> trade = Trade.model_validate({
    ...     "table": "trade",
    ...     "action": "insert",
    ...     "symbol": "XBTUSD",
    ...     "side": "Buy",
    ...     "size": 100,
    ...     "price": 6500.5,
    ...     "timestamp": "2018-06-01T12:00:00.000Z",
    ... })
    >>> trade.action == TableAction.INSERT
    True
    >>> trade.price
    6500.5
"""

import time
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class TableAction(str, Enum):
    """Table message action.

    Attributes:
        PARTIAL: Full snapshot of the table, sent after subscribe.
        INSERT: New rows.
        UPDATE: Changed fields of existing rows (sparse).
        DELETE: Removed rows (keys only).
    """

    PARTIAL = "partial"
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class Side(str, Enum):
    """Order / trade side."""

    BUY = "Buy"
    SELL = "Sell"


# ---------------------------------------------------------------------------
# Base models
# ---------------------------------------------------------------------------

_EVENT_CONFIG: ConfigDict = ConfigDict(
    frozen=True,
    extra="ignore",
    populate_by_name=True,
    alias_generator=to_camel,
)


class FeedEvent(BaseModel):
    """Base class for every typed event published by the router."""

    model_config = _EVENT_CONFIG


class TableEvent(FeedEvent):
    """One record of a table message.

    Attributes:
        table: Table name the record came from (e.g. ``"orderBookL2"``).
        action: Action of the enclosing frame.
    """

    table: str = Field(min_length=1, description="Source table name")
    action: TableAction = Field(description="Action of the enclosing frame")


# ---------------------------------------------------------------------------
# Market data
# ---------------------------------------------------------------------------


class Trade(TableEvent):
    """Executed public trade (table ``trade``)."""

    timestamp: datetime
    symbol: str = Field(min_length=1)
    side: Side
    size: int = Field(ge=0)
    price: float
    tick_direction: str | None = None
    trd_match_id: str | None = Field(default=None, alias="trdMatchID")
    gross_value: int | None = None
    home_notional: float | None = None
    foreign_notional: float | None = None


class TradeBin(TableEvent):
    """OHLCV bucket (tables ``tradeBin1m``/``5m``/``1h``/``1d``)."""

    timestamp: datetime
    symbol: str = Field(min_length=1)
    open: float | None = None
    high: float | None = None
    low: float | None = None
    close: float | None = None
    trades: int | None = None
    volume: int | None = None
    vwap: float | None = None
    last_size: int | None = None
    turnover: int | None = None
    home_notional: float | None = None
    foreign_notional: float | None = None


class BookLevel(TableEvent):
    """One level-2 order book row (tables ``orderBookL2``/``_25``).

    ``size`` is absent on ``delete`` and ``price`` is absent on
    ``update``/``delete`` (rows are keyed by ``symbol``+``id``+``side``).
    """

    symbol: str = Field(min_length=1)
    id: int
    side: Side
    size: int | None = Field(default=None, ge=0)
    price: float | None = None


class Quote(TableEvent):
    """Top-of-book quote (table ``quote``)."""

    timestamp: datetime
    symbol: str = Field(min_length=1)
    bid_size: int | None = None
    bid_price: float | None = None
    ask_price: float | None = None
    ask_size: int | None = None


class Liquidation(TableEvent):
    """Liquidation order in the book (table ``liquidation``)."""

    order_id: str = Field(alias="orderID")
    symbol: str | None = None
    side: Side | None = None
    price: float | None = None
    leaves_qty: int | None = None


class Instrument(TableEvent):
    """Instrument state update (table ``instrument``). Sparse on update."""

    symbol: str = Field(min_length=1)
    state: str | None = None
    typ: str | None = None
    last_price: float | None = None
    mark_price: float | None = None
    indicative_settle_price: float | None = None
    funding_rate: float | None = None
    open_interest: int | None = None
    volume24h: int | None = None
    timestamp: datetime | None = None


class Funding(TableEvent):
    """Funding rate settlement (table ``funding``)."""

    timestamp: datetime
    symbol: str = Field(min_length=1)
    funding_interval: str | None = None
    funding_rate: float | None = None
    funding_rate_daily: float | None = None


# ---------------------------------------------------------------------------
# Account data (authenticated streams)
# ---------------------------------------------------------------------------


class Position(TableEvent):
    """Account position (table ``position``). Sparse on update."""

    account: int
    symbol: str = Field(min_length=1)
    currency: str | None = None
    current_qty: int | None = None
    avg_entry_price: float | None = None
    mark_price: float | None = None
    liquidation_price: float | None = None
    unrealised_pnl: int | None = None
    realised_pnl: int | None = None
    is_open: bool | None = None
    timestamp: datetime | None = None


class Margin(TableEvent):
    """Account margin (table ``margin``)."""

    account: int
    currency: str | None = None
    amount: int | None = None
    wallet_balance: int | None = None
    margin_balance: int | None = None
    available_margin: int | None = None
    unrealised_pnl: int | None = None
    realised_pnl: int | None = None
    timestamp: datetime | None = None


class Order(TableEvent):
    """Account order (table ``order``). Sparse on update."""

    order_id: str = Field(alias="orderID")
    cl_ord_id: str | None = Field(default=None, alias="clOrdID")
    account: int | None = None
    symbol: str | None = None
    side: Side | None = None
    order_qty: int | None = None
    price: float | None = None
    stop_px: float | None = None
    ord_type: str | None = None
    ord_status: str | None = None
    leaves_qty: int | None = None
    cum_qty: int | None = None
    avg_px: float | None = None
    text: str | None = None
    timestamp: datetime | None = None


class Wallet(TableEvent):
    """Account wallet balance (table ``wallet``)."""

    account: int
    currency: str
    amount: int | None = None
    deposited: int | None = None
    withdrawn: int | None = None
    timestamp: datetime | None = None


class Execution(TableEvent):
    """Account execution report (table ``execution``)."""

    exec_id: str = Field(alias="execID")
    order_id: str | None = Field(default=None, alias="orderID")
    cl_ord_id: str | None = Field(default=None, alias="clOrdID")
    account: int | None = None
    symbol: str | None = None
    side: Side | None = None
    last_qty: int | None = None
    last_px: float | None = None
    exec_type: str | None = None
    ord_status: str | None = None
    commission: float | None = None
    exec_comm: int | None = None
    timestamp: datetime | None = None


# ---------------------------------------------------------------------------
# Control responses
# ---------------------------------------------------------------------------


class ErrorInfo(FeedEvent):
    """Error answer from the exchange.

    Attributes:
        status: HTTP-like status code, when provided.
        error: Human readable error message.
        request: The request the error answers, when echoed back.
        meta: Additional metadata (often empty).
    """

    status: int | None = None
    error: str
    request: dict[str, Any] | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class SubscribeAck(FeedEvent):
    """Acknowledgement of a ``subscribe`` request."""

    success: bool
    subscribe: str
    request: dict[str, Any] | None = None


class InfoMessage(FeedEvent):
    """Welcome / informational message sent after connect."""

    info: str
    version: str | None = None
    timestamp: datetime | None = None
    docs: str | None = None
    limit: dict[str, Any] = Field(default_factory=dict)


class AuthenticationAck(FeedEvent):
    """Acknowledgement of an ``authKeyExpires`` request."""

    success: bool
    request: dict[str, Any]


class Pong(FeedEvent):
    """Keep-alive answer (raw ``pong`` text frame)."""

    recv_ts: int = Field(default_factory=time.time_ns, ge=0)
