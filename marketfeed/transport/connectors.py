"""Transport connectors: datagram (preferred) and websocket stream (fallback)."""

import asyncio
import logging
import socket
from abc import ABC, abstractmethod
from dataclasses import dataclass
from urllib.parse import urlsplit

import websockets
from websockets.exceptions import ConnectionClosedOK

logger = logging.getLogger(__name__)

DATAGRAM = "datagram"
STREAM = "stream"


@dataclass(frozen=True)
class Capability:
    """Result of probing whether a transport kind can serve a URL."""

    kind: str
    available: bool
    reason: str = ""


class Connection(ABC):
    """One connection attempt's underlying channel."""

    @abstractmethod
    async def wait_ready(self) -> None:
        """Resolve once the channel can carry messages."""
        ...

    @abstractmethod
    async def receive(self) -> bytes | None:
        """Next inbound message, or None once the remote closed."""
        ...

    @abstractmethod
    async def send(self, data: bytes) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the channel; safe to call more than once."""
        ...


class Connector(ABC):
    """Factory for connections of one transport kind."""

    kind: str = "base"

    @abstractmethod
    def probe(self, url: str) -> Capability:
        ...

    @abstractmethod
    def open(self, url: str) -> Connection:
        """Construct a connection; readiness is awaited separately."""
        ...


# ============================================================
# Datagram mode
# ============================================================

class _DatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, inbox: asyncio.Queue, ready: asyncio.Future) -> None:
        self._inbox = inbox
        self._ready = ready

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        if not self._ready.done():
            self._ready.set_result(None)

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._inbox.put_nowait(data)

    def error_received(self, exc: Exception) -> None:
        self._inbox.put_nowait(exc)

    def connection_lost(self, exc: Exception | None) -> None:
        if not self._ready.done():
            self._ready.set_exception(exc or ConnectionError("Datagram endpoint closed"))
        self._inbox.put_nowait(exc if exc is not None else None)


class DatagramConnection(Connection):
    """UDP endpoint connected to a single remote address."""

    def __init__(self, host: str, port: int) -> None:
        self.host = host
        self.port = port
        loop = asyncio.get_running_loop()
        self._inbox: asyncio.Queue[bytes | Exception | None] = asyncio.Queue()
        self._ready: asyncio.Future[None] = loop.create_future()
        self._transport: asyncio.DatagramTransport | None = None
        self._opening = asyncio.ensure_future(self._open(loop))

    async def _open(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _DatagramProtocol(self._inbox, self._ready),
                remote_addr=(self.host, self.port),
            )
        except Exception as e:
            if not self._ready.done():
                self._ready.set_exception(e)
            return
        self._transport = transport

    async def wait_ready(self) -> None:
        await asyncio.shield(self._ready)
        # connection_made fires before the endpoint is handed back
        await asyncio.shield(self._opening)

    async def receive(self) -> bytes | None:
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data: bytes) -> None:
        if self._transport is not None:
            self._transport.sendto(data)

    async def close(self) -> None:
        self._opening.cancel()
        if self._transport is not None:
            self._transport.close()
            self._transport = None
        if not self._ready.done():
            self._ready.cancel()


def datagram_supported(loop: asyncio.AbstractEventLoop | None = None) -> bool:
    """Whether the running event loop implements UDP endpoints."""
    if not hasattr(socket, "SOCK_DGRAM"):
        return False
    if loop is None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return False
    implementation = getattr(type(loop), "create_datagram_endpoint", None)
    return implementation is not None and implementation is not asyncio.AbstractEventLoop.create_datagram_endpoint


class DatagramConnector(Connector):
    """Low-latency datagram mode for ``udp://host:port`` endpoints."""

    kind = DATAGRAM
    schemes = ("udp",)

    def probe(self, url: str) -> Capability:
        if not url:
            return Capability(self.kind, False, "no datagram endpoint configured")
        parts = urlsplit(url)
        if parts.scheme not in self.schemes:
            return Capability(self.kind, False, f"scheme {parts.scheme!r} has no datagram mode")
        if not parts.hostname or not parts.port:
            return Capability(self.kind, False, "datagram endpoint needs host and port")
        if not datagram_supported():
            return Capability(self.kind, False, "event loop has no datagram support")
        return Capability(self.kind, True)

    def open(self, url: str) -> Connection:
        parts = urlsplit(url)
        return DatagramConnection(parts.hostname, parts.port)


# ============================================================
# Stream (websocket) mode
# ============================================================

class StreamConnection(Connection):
    """Websocket connection carrying one message per frame."""

    def __init__(self, url: str, open_timeout: float | None = None) -> None:
        self.url = url
        self._ws = None
        self._opening = asyncio.ensure_future(
            websockets.connect(url, open_timeout=open_timeout, ping_interval=20, ping_timeout=10)
        )

    async def wait_ready(self) -> None:
        self._ws = await asyncio.shield(self._opening)

    async def receive(self) -> bytes | None:
        try:
            message = await self._ws.recv()
        except ConnectionClosedOK:
            return None
        return message.encode() if isinstance(message, str) else message

    async def send(self, data: bytes) -> None:
        if self._ws is not None:
            await self._ws.send(data)

    async def close(self) -> None:
        if not self._opening.done():
            self._opening.cancel()
            return
        ws = self._ws
        if ws is None and not self._opening.cancelled() and self._opening.exception() is None:
            ws = self._opening.result()
        self._ws = None
        if ws is not None:
            await ws.close()


class StreamConnector(Connector):
    """Bidirectional websocket fallback for ``ws://`` and ``wss://``."""

    kind = STREAM
    schemes = ("ws", "wss")

    def __init__(self, open_timeout: float | None = None) -> None:
        self.open_timeout = open_timeout

    def probe(self, url: str) -> Capability:
        if not url:
            return Capability(self.kind, False, "no stream endpoint configured")
        scheme = urlsplit(url).scheme
        if scheme not in self.schemes:
            return Capability(self.kind, False, f"scheme {scheme!r} has no stream mode")
        return Capability(self.kind, True)

    def open(self, url: str) -> Connection:
        return StreamConnection(url, open_timeout=self.open_timeout)
