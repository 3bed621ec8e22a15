"""Outbound request models and their wire serialization.

Requests come in two flavours:

- **Raw** requests (``is_raw`` is ``True``) carry their literal wire
  text in ``operation_string``. They are sent verbatim, never JSON
  encoded (e.g. the ``ping`` keep-alive).
- **Structured** requests are serialized through pydantic's JSON
  encoder: ``{"op": ..., "args": [...]}``.

:func:`serialize_request` checks the raw flag first.

Example:
    >>> serialize_request(PingRequest())
    'ping'
    >>> serialize_request(SubscribeRequest.for_topics("trade:XBTUSD"))
    '{"op":"subscribe","args":["trade:XBTUSD"]}'
"""

import hashlib
import hmac
import time
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_AUTH_VERB_PATH: str = "GET/realtime"
"""Signed prefix of the websocket authentication message."""


class SubscriptionTopic(str, Enum):
    """Subscribable tables. ``topic.of("XBTUSD")`` scopes to a symbol."""

    TRADE = "trade"
    TRADE_BIN_1M = "tradeBin1m"
    TRADE_BIN_5M = "tradeBin5m"
    TRADE_BIN_1H = "tradeBin1h"
    TRADE_BIN_1D = "tradeBin1d"
    ORDER_BOOK_L2 = "orderBookL2"
    ORDER_BOOK_L2_25 = "orderBookL2_25"
    QUOTE = "quote"
    LIQUIDATION = "liquidation"
    INSTRUMENT = "instrument"
    FUNDING = "funding"
    POSITION = "position"
    MARGIN = "margin"
    ORDER = "order"
    WALLET = "wallet"
    EXECUTION = "execution"

    def of(self, symbol: str | None = None) -> str:
        return self.value if symbol is None else f"{self.value}:{symbol}"


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class RequestBase(BaseModel):
    """Base class of every outbound request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    @property
    def is_raw(self) -> bool:
        """Whether ``operation_string`` is the literal wire text."""
        return False

    @property
    def operation_string(self) -> str:
        return ""


class RawRequest(RequestBase):
    """Pre-serialized request sent verbatim."""

    text: str = Field(min_length=1, description="Literal wire text")

    @property
    def is_raw(self) -> bool:
        return True

    @property
    def operation_string(self) -> str:
        return self.text


class PingRequest(RawRequest):
    """Keep-alive. The exchange answers with a raw ``pong`` frame."""

    text: str = "ping"


class OperationRequest(RequestBase):
    """``{"op": ..., "args": [...]}`` request."""

    op: str = Field(min_length=1)
    args: list[Any] = Field(default_factory=list)

    @property
    def operation_string(self) -> str:
        return self.op


class SubscribeRequest(OperationRequest):
    op: str = "subscribe"

    @classmethod
    def for_topics(cls, *topics: str | SubscriptionTopic) -> "SubscribeRequest":
        return cls(args=[_topic_arg(t) for t in topics])


class UnsubscribeRequest(OperationRequest):
    op: str = "unsubscribe"

    @classmethod
    def for_topics(cls, *topics: str | SubscriptionTopic) -> "UnsubscribeRequest":
        return cls(args=[_topic_arg(t) for t in topics])


class AuthenticationRequest(OperationRequest):
    """``authKeyExpires`` request with an HMAC-SHA256 signature.

    The signature is ``hex(HMAC_SHA256(api_secret, "GET/realtime" +
    str(expires)))`` and ``args`` is ``[api_key, expires, signature]``.
    """

    op: str = "authKeyExpires"

    @classmethod
    def create(
        cls,
        api_key: str,
        api_secret: str,
        expires: int | None = None,
        lifetime_seconds: int = 60,
    ) -> "AuthenticationRequest":
        """Build a signed request.

        Args:
            api_key: API key id.
            api_secret: API secret used for signing.
            expires: Unix expiry timestamp. Defaults to now +
                ``lifetime_seconds``.
            lifetime_seconds: Used when ``expires`` is ``None``.
        """
        if not api_key or not api_secret:
            raise ValueError("api_key and api_secret must be non-empty")
        if expires is None:
            expires = int(time.time()) + lifetime_seconds
        return cls(args=[api_key, expires, sign(api_secret, expires)])


def sign(api_secret: str, expires: int) -> str:
    """Return the hex HMAC-SHA256 authentication signature."""
    message: bytes = f"{_AUTH_VERB_PATH}{expires}".encode("utf-8")
    return hmac.new(api_secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _topic_arg(topic: str | SubscriptionTopic) -> str:
    return topic.value if isinstance(topic, SubscriptionTopic) else topic


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_request(request: RequestBase) -> str:
    """Return the wire text for ``request``.

    Raw requests return ``operation_string`` unchanged; everything else
    is JSON encoded (``None`` fields omitted).
    """
    if request.is_raw:
        return request.operation_string
    return request.model_dump_json(exclude_none=True)
