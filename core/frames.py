"""Inbound frame model shared by every frame source and the router.

A ``Frame`` is one discrete unit of inbound text handed over by a
:class:`core.source.FrameSource`. Frames are immutable and carry a
``kind`` tag: ``DATA`` frames hold feed payloads, ``CONTROL`` frames
carry connection lifecycle signals (connected, disconnected,
reconnected). The router only dispatches ``DATA`` frames.

Sequence numbers are assigned by the source, starting at 1 per
source instance, and reflect arrival order.

Example:
    >>> from core.frames import Frame, FrameKind
    >>> frame = Frame.data('{"table": "trade"}', sequence=1, source="replay")
    >>> frame.kind == FrameKind.DATA
    True
    >>> frame.sequence
    1
"""

import time
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class FrameKind(str, Enum):
    """Tag distinguishing feed payloads from lifecycle signals."""

    DATA = "DATA"
    CONTROL = "CONTROL"


class ControlSignal(str, Enum):
    """Connection lifecycle signals carried by ``CONTROL`` frames."""

    CONNECTED = "CONNECTED"
    DISCONNECTED = "DISCONNECTED"
    RECONNECTED = "RECONNECTED"


class Frame(BaseModel):
    """One immutable unit of inbound text plus arrival metadata.

    Attributes:
        text: Raw payload text (``DATA``) or the signal name
            (``CONTROL``).
        kind: Frame kind. Defaults to ``DATA``.
        sequence: Source-assigned arrival order. 0 when unknown.
        recv_ts: Wall-clock creation timestamp (``time.time_ns()``).
        source: Name of the source that produced the frame.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    text: str = Field(description="Raw frame text")
    kind: FrameKind = Field(default=FrameKind.DATA, description="Frame kind")
    sequence: int = Field(
        default=0,
        ge=0,
        description="Source-assigned arrival order (0 = unknown)",
    )
    recv_ts: int = Field(
        default_factory=time.time_ns,
        ge=0,
        description="Wall-clock receive timestamp (time.time_ns())",
    )
    source: str = Field(default="", description="Producing source name")

    @classmethod
    def data(cls, text: str, sequence: int = 0, source: str = "") -> "Frame":
        """Build a ``DATA`` frame.

        Uses ``model_construct()``: sources call this once per inbound
        message, inputs are already typed.
        """
        return cls.model_construct(
            text=text,
            kind=FrameKind.DATA,
            sequence=sequence,
            recv_ts=time.time_ns(),
            source=source,
        )

    @classmethod
    def control(
        cls,
        signal: ControlSignal,
        sequence: int = 0,
        source: str = "",
    ) -> "Frame":
        """Build a ``CONTROL`` frame for a lifecycle signal."""
        return cls.model_construct(
            text=signal.value,
            kind=FrameKind.CONTROL,
            sequence=sequence,
            recv_ts=time.time_ns(),
            source=source,
        )

    @property
    def is_data(self) -> bool:
        """Whether this frame carries a feed payload."""
        return self.kind == FrameKind.DATA
