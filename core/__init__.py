"""Core domain layer for the exchange feed router.

This package provides the inbound frame model, typed event models,
response matchers, the per-kind stream hub, the message router, the
frame source interface, outbound requests, and the feed client that
wires them together. All models are Pydantic-based; event models are
frozen for immutability.
"""

from core.buffer import BufferConfig, BufferStats, EventBuffer
from core.client import FeedClient
from core.frames import ControlSignal, Frame, FrameKind
from core.hub import StreamHub, Subscription, Topic, TopicStats
from core.matchers import (
    MalformedFrameError,
    ObjectMatcher,
    RawMatcher,
    ResponseMatcher,
    TableMatcher,
    default_object_matchers,
    default_raw_matchers,
)
from core.requests import (
    AuthenticationRequest,
    PingRequest,
    RawRequest,
    RequestBase,
    SubscribeRequest,
    SubscriptionTopic,
    UnsubscribeRequest,
    serialize_request,
)
from core.router import MessageRouter, RouterConfig, RouterStats
from core.source import FrameHandler, FrameSource

__all__: list[str] = [
    "AuthenticationRequest",
    "BufferConfig",
    "BufferStats",
    "ControlSignal",
    "EventBuffer",
    "FeedClient",
    "Frame",
    "FrameHandler",
    "FrameKind",
    "FrameSource",
    "MalformedFrameError",
    "MessageRouter",
    "ObjectMatcher",
    "PingRequest",
    "RawMatcher",
    "RawRequest",
    "RequestBase",
    "ResponseMatcher",
    "RouterConfig",
    "RouterStats",
    "StreamHub",
    "SubscribeRequest",
    "Subscription",
    "SubscriptionTopic",
    "TableMatcher",
    "Topic",
    "TopicStats",
    "UnsubscribeRequest",
    "default_object_matchers",
    "default_raw_matchers",
    "serialize_request",
]
