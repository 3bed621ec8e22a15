"""Infrastructure layer for the exchange feed router.

This package provides the concrete frame sources: a live source over an
MQTT broker and a replay source reading captured sessions from files.
"""

from infra.mqtt_source import MQTTFrameSource, MQTTSourceConfig, SourceState
from infra.replay_source import (
    ReplayConfig,
    ReplayConfigurationError,
    ReplayFrameSource,
    iter_records,
)

__all__: list[str] = [
    "MQTTFrameSource",
    "MQTTSourceConfig",
    "ReplayConfig",
    "ReplayConfigurationError",
    "ReplayFrameSource",
    "SourceState",
    "iter_records",
]
