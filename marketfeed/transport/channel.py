"""Dual-mode transport channel with an explicit connection state machine.

The channel prefers a datagram connector and falls back to a websocket
stream. Every connection attempt runs under its own cancellation token;
once ``disconnect()`` invalidates it, late continuations of that attempt
(readiness, reads, errors) are discarded instead of touching state.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from marketfeed.config.constants import TransportStatus
from marketfeed.config.settings import settings
from marketfeed.storage.store import SliceWriter
from marketfeed.tasks.cancellation import CancellationToken
from marketfeed.transport.connectors import (
    Capability,
    Connection,
    Connector,
    DatagramConnector,
    StreamConnector,
)

logger = logging.getLogger(__name__)

MessageSink = Callable[[bytes], None]
ErrorSink = Callable[[str], None]


@dataclass(frozen=True)
class TransportSnapshot:
    """Published view of a channel's state."""

    status: TransportStatus
    mode: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "mode": self.mode, "error": self.error}


class TransportChannel:
    """Connection abstraction with capability probe, readiness timeout and read pump.

    States: ``idle -> connecting -> connected -> closed``; ``connecting ->
    error`` on construction failure or readiness timeout; ``unsupported``
    when no connector can serve the configured endpoints; ``connected ->
    error`` when a read raises. Any terminal state may ``connect()`` again.
    """

    def __init__(
        self,
        url: str,
        on_message: MessageSink,
        on_connected: Callable[[], None] | None = None,
        on_error: ErrorSink | None = None,
        on_status: Callable[[TransportStatus], None] | None = None,
        fallback_url: str | None = None,
        ready_timeout: float = settings.transport_ready_timeout,
        connectors: Sequence[Connector] | None = None,
        writer: SliceWriter | None = None,
    ) -> None:
        self.url = url
        self.fallback_url = fallback_url
        self.ready_timeout = ready_timeout
        self._on_message = on_message
        self._on_connected = on_connected
        self._on_error = on_error
        self._on_status = on_status
        self._writer = writer

        if connectors is None:
            connectors = (DatagramConnector(), StreamConnector())
        self._connectors = tuple(connectors)

        self._status = TransportStatus.IDLE
        self._mode: str | None = None
        self._last_error: str | None = None
        self._token: CancellationToken | None = None
        self._connection: Connection | None = None
        self._reader: asyncio.Task[None] | None = None

    @property
    def status(self) -> TransportStatus:
        return self._status

    @property
    def mode(self) -> str | None:
        """Transport kind of the current or last attempt."""
        return self._mode

    @property
    def is_supported(self) -> bool:
        return self._select()[0] is not None

    def probe(self) -> list[Capability]:
        """Capabilities of every connector for its endpoint."""
        return [connector.probe(url) for connector, url in self._candidates()]

    def _candidates(self) -> list[tuple[Connector, str]]:
        # First connector serves the primary URL, the rest the fallback.
        candidates = []
        for index, connector in enumerate(self._connectors):
            url = self.url if index == 0 else (self.fallback_url or self.url)
            candidates.append((connector, url))
        return candidates

    def _select(self) -> tuple[Connector | None, str]:
        for connector, url in self._candidates():
            capability = connector.probe(url)
            if capability.available:
                return connector, url
            logger.debug(f"{capability.kind} transport unavailable: {capability.reason}")
        return None, ""

    def _set_status(self, status: TransportStatus, error: str | None = None) -> None:
        self._status = status
        self._last_error = error
        if self._writer is not None:
            self._writer.publish(TransportSnapshot(status=status, mode=self._mode, error=error))
        if self._on_status is not None:
            try:
                self._on_status(status)
            except Exception:
                logger.exception("Status listener failed")

    def bind(self, writer: SliceWriter | None) -> None:
        """Publish status changes through ``writer`` (None to unbind)."""
        self._writer = writer
        if writer is not None:
            writer.publish(self.snapshot)

    def _fail(self, token: CancellationToken, status: TransportStatus, message: str) -> None:
        if not token.alive:
            return
        logger.warning(message)
        self._set_status(status, message)
        if self._on_error is not None:
            self._on_error(message)

    async def connect(self) -> None:
        """Start a connection attempt unless one is in flight or live."""
        if self._status in (TransportStatus.CONNECTING, TransportStatus.CONNECTED):
            return

        # A connection left over from a failed or remotely closed attempt
        stale, self._connection = self._connection, None

        token = CancellationToken()
        self._token = token

        connector, url = self._select()
        if connector is None:
            self._mode = None
            self._fail(token, TransportStatus.UNSUPPORTED, "No supported transport for the configured endpoints")
        else:
            self._mode = connector.kind
            self._set_status(TransportStatus.CONNECTING)

        if stale is not None:
            await self._close_quietly(stale)
        if connector is None or not token.alive:
            return

        try:
            connection = connector.open(url)
        except Exception as e:
            self._fail(token, TransportStatus.ERROR, f"{connector.kind} transport connect failed: {e}")
            return
        self._connection = connection

        try:
            await asyncio.wait_for(connection.wait_ready(), timeout=self.ready_timeout)
        except asyncio.TimeoutError:
            await self._release(connection)
            self._fail(token, TransportStatus.ERROR, f"{connector.kind} transport ready timeout ({self.ready_timeout:g}s)")
            return
        except asyncio.CancelledError:
            await self._release(connection)
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Readiness was abandoned by the connection itself (e.g. closed
            # by disconnect); only a live attempt reports it.
            self._fail(token, TransportStatus.ERROR, f"{connector.kind} transport connect aborted")
            return
        except Exception as e:
            await self._release(connection)
            self._fail(token, TransportStatus.ERROR, f"{connector.kind} transport connect failed: {e}")
            return

        if not token.alive:
            await self._release(connection)
            return

        self._set_status(TransportStatus.CONNECTED)
        logger.info(f"Transport connected ({connector.kind}) to {url}")
        if self._on_connected is not None:
            self._on_connected()

        self._reader = asyncio.create_task(self._pump(connection, token))

    async def _pump(self, connection: Connection, token: CancellationToken) -> None:
        """Deliver inbound messages one at a time until done, stopped or broken."""
        try:
            while token.alive:
                data = await connection.receive()
                if data is None or not token.alive:
                    break
                try:
                    self._on_message(data)
                except Exception:
                    logger.exception("Message sink failed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if not token.alive:
                return
            self._fail(token, TransportStatus.ERROR, f"{self._mode} transport read error: {e}")
        else:
            if not token.alive:
                return
            logger.info("Transport closed by remote")
            self._set_status(TransportStatus.CLOSED)
        await self._release(connection)

    async def _release(self, connection: Connection) -> None:
        """Close a finished connection and forget it if it is still current."""
        if self._connection is connection:
            self._connection = None
        await self._close_quietly(connection)

    async def send(self, data: bytes) -> None:
        """Best-effort send; discarded unless connected."""
        connection = self._connection
        if self._status != TransportStatus.CONNECTED or connection is None:
            return
        try:
            await connection.send(data)
        except Exception as e:
            logger.debug(f"Send discarded: {e}")

    async def disconnect(self) -> None:
        """Cancel reads, release the connection and force ``closed``."""
        if self._token is not None:
            self._token.cancel()

        reader, self._reader = self._reader, None
        if reader is not None and not reader.done():
            reader.cancel()
            await asyncio.wait({reader})

        connection, self._connection = self._connection, None
        if connection is not None:
            await self._close_quietly(connection)

        self._set_status(TransportStatus.CLOSED)

    @staticmethod
    async def _close_quietly(connection: Connection) -> None:
        try:
            await connection.close()
        except Exception as e:
            logger.debug(f"Ignoring close error: {e}")

    @property
    def snapshot(self) -> TransportSnapshot:
        return TransportSnapshot(status=self._status, mode=self._mode, error=self._last_error)
