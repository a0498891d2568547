"""Low-latency transport with datagram mode and websocket fallback."""

from .channel import TransportChannel, TransportSnapshot
from .connectors import (
    Capability,
    Connection,
    Connector,
    DatagramConnector,
    StreamConnector,
)

__all__ = [
    "TransportChannel",
    "TransportSnapshot",
    "Capability",
    "Connection",
    "Connector",
    "DatagramConnector",
    "StreamConnector",
]
