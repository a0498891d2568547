"""Tests for the transport channel state machine and connectors."""

import asyncio
import pytest

from marketfeed.config.constants import TransportStatus
from marketfeed.transport.channel import TransportChannel, TransportSnapshot
from marketfeed.transport.connectors import Connector, DatagramConnector, StreamConnector

from fakes import FakeConnector, settle


class Recorder:
    def __init__(self) -> None:
        self.messages: list[bytes] = []
        self.errors: list[str] = []
        self.connected = 0
        self.statuses: list[TransportStatus] = []

    def channel(self, *connectors: Connector, **kwargs) -> TransportChannel:
        return TransportChannel(
            url=kwargs.pop("url", "udp://127.0.0.1:9000"),
            on_message=self.messages.append,
            on_connected=self._connected,
            on_error=self.errors.append,
            on_status=self.statuses.append,
            fallback_url=kwargs.pop("fallback_url", "wss://stream.example/ws"),
            connectors=connectors,
            **kwargs,
        )

    def _connected(self) -> None:
        self.connected += 1


class TestTransportChannel:
    """Tests for TransportChannel."""

    @pytest.mark.asyncio
    async def test_connect_and_receive_in_order(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)

        await channel.connect()
        assert channel.status == TransportStatus.CONNECTED
        assert channel.mode == "datagram"
        assert rec.connected == 1
        assert rec.statuses == [TransportStatus.CONNECTING, TransportStatus.CONNECTED]

        for data in (b"a", b"b", b"c"):
            connector.last.inbox.put_nowait(data)
        await settle()

        assert rec.messages == [b"a", b"b", b"c"]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_connect_while_connected_is_noop(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)

        await channel.connect()
        await channel.connect()

        assert len(connector.opened) == 1
        assert rec.connected == 1
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_falls_back_to_stream(self):
        rec = Recorder()
        datagram = FakeConnector("datagram", available=False)
        stream = FakeConnector("stream")
        channel = rec.channel(datagram, stream)

        await channel.connect()

        assert channel.mode == "stream"
        assert datagram.opened == []
        assert stream.opened[0][0] == "wss://stream.example/ws"
        assert [c.available for c in channel.probe()] == [False, True]
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_unsupported(self):
        rec = Recorder()
        channel = rec.channel(FakeConnector("datagram", available=False), FakeConnector("stream", available=False))

        assert not channel.is_supported
        await channel.connect()

        assert channel.status == TransportStatus.UNSUPPORTED
        assert len(rec.errors) == 1
        assert rec.connected == 0

    @pytest.mark.asyncio
    async def test_construction_failure(self):
        rec = Recorder()
        channel = rec.channel(FakeConnector(fail_open=True))

        await channel.connect()

        assert channel.status == TransportStatus.ERROR
        assert "refused" in rec.errors[0]
        assert channel.snapshot.error == rec.errors[0]

    @pytest.mark.asyncio
    async def test_ready_timeout_at_bound(self):
        """Test that readiness times out at the bound, not before."""
        rec = Recorder()
        connector = FakeConnector(ready=False)
        channel = rec.channel(connector, ready_timeout=0.1)
        loop = asyncio.get_running_loop()

        started = loop.time()
        await channel.connect()
        elapsed = loop.time() - started

        assert elapsed >= 0.099
        assert elapsed < 1.0
        assert channel.status == TransportStatus.ERROR
        assert "ready timeout" in rec.errors[0]
        assert connector.last.closed >= 1
        assert rec.connected == 0

    @pytest.mark.asyncio
    async def test_disconnect_while_connecting(self):
        """Test that a late readiness after disconnect changes nothing."""
        rec = Recorder()
        connector = FakeConnector(ready=False)
        channel = rec.channel(connector)

        attempt = asyncio.create_task(channel.connect())
        await settle()
        assert channel.status == TransportStatus.CONNECTING

        await channel.disconnect()
        await attempt

        assert channel.status == TransportStatus.CLOSED
        assert rec.connected == 0
        assert rec.errors == []
        assert connector.last.closed >= 1

    @pytest.mark.asyncio
    async def test_read_error(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)
        await channel.connect()

        connector.last.inbox.put_nowait(ConnectionResetError("reset by peer"))
        await settle()

        assert channel.status == TransportStatus.ERROR
        assert "read error" in rec.errors[0]
        assert connector.last.closed == 1
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_remote_close(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)
        await channel.connect()

        connector.last.inbox.put_nowait(b"last")
        connector.last.inbox.put_nowait(None)
        await settle()

        assert rec.messages == [b"last"]
        assert channel.status == TransportStatus.CLOSED
        assert rec.errors == []
        assert connector.last.closed == 1

    @pytest.mark.asyncio
    async def test_sink_failure_keeps_pumping(self):
        connector = FakeConnector()
        received = []

        def sink(data: bytes) -> None:
            if data == b"bad":
                raise ValueError("cannot render")
            received.append(data)

        channel = TransportChannel("udp://127.0.0.1:9000", on_message=sink, connectors=[connector])
        await channel.connect()

        for data in (b"bad", b"good"):
            connector.last.inbox.put_nowait(data)
        await settle()

        assert received == [b"good"]
        assert channel.status == TransportStatus.CONNECTED
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_no_messages_after_disconnect(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)
        await channel.connect()
        connection = connector.last

        await channel.disconnect()
        connection.inbox.put_nowait(b"late")
        await settle()

        assert rec.messages == []
        assert channel.status == TransportStatus.CLOSED
        assert connection.closed >= 1

    @pytest.mark.asyncio
    async def test_send_only_when_connected(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)

        await channel.send(b"dropped")
        await channel.connect()
        await channel.send(b"ping")

        connector.last.fail_send = True
        await channel.send(b"lost")

        assert connector.last.sent == [b"ping"]
        await channel.disconnect()
        await channel.send(b"after")
        assert connector.last.sent == [b"ping"]

    @pytest.mark.asyncio
    async def test_reconnect_after_close(self):
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)

        await channel.connect()
        await channel.disconnect()
        await channel.connect()

        assert channel.status == TransportStatus.CONNECTED
        assert len(connector.opened) == 2
        assert rec.connected == 2
        await channel.disconnect()

    @pytest.mark.asyncio
    async def test_reconnect_after_read_error_releases_old_connection(self):
        """Test that each reconnect leaves exactly one open connection."""
        rec = Recorder()
        connector = FakeConnector()
        channel = rec.channel(connector)

        for _ in range(3):
            await channel.connect()
            connector.last.inbox.put_nowait(OSError("port unreachable"))
            await settle()
            assert channel.status == TransportStatus.ERROR

        await channel.connect()
        await channel.send(b"ping")

        old = [conn for _, conn in connector.opened[:-1]]
        assert [conn.closed for conn in old] == [1, 1, 1]
        assert connector.last.closed == 0
        assert connector.last.sent == [b"ping"]
        await channel.disconnect()
        assert connector.last.closed == 1

    @pytest.mark.asyncio
    async def test_disconnect_is_idempotent(self):
        rec = Recorder()
        channel = rec.channel(FakeConnector())

        await channel.disconnect()
        await channel.disconnect()

        assert channel.status == TransportStatus.CLOSED

    @pytest.mark.asyncio
    async def test_status_published_to_store(self, store):
        rec = Recorder()
        channel = rec.channel(FakeConnector())
        channel.bind(store.claim("transport", owner="test"))

        assert store.get("transport") == TransportSnapshot(TransportStatus.IDLE)
        await channel.connect()
        assert store.get("transport").status == TransportStatus.CONNECTED
        assert store.get("transport").to_dict()["mode"] == "datagram"

        await channel.disconnect()
        assert store.get("transport").status == TransportStatus.CLOSED


class EchoProtocol(asyncio.DatagramProtocol):
    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data, addr):
        self.transport.sendto(data.upper(), addr)


class TestConnectors:
    """Tests for the concrete connectors."""

    @pytest.mark.asyncio
    async def test_datagram_probe(self):
        connector = DatagramConnector()

        assert connector.probe("udp://127.0.0.1:9000").available
        assert not connector.probe("").available
        assert not connector.probe("wss://stream.example/ws").available
        assert not connector.probe("udp://127.0.0.1").available

    def test_stream_probe(self):
        connector = StreamConnector()

        assert connector.probe("wss://stream.binance.com:9443/stream").available
        assert connector.probe("ws://localhost:8765").available
        assert not connector.probe("udp://127.0.0.1:9000").available
        assert not connector.probe("").available

    @pytest.mark.asyncio
    async def test_datagram_round_trip(self):
        """Test the datagram mode against a local UDP echo endpoint."""
        loop = asyncio.get_running_loop()
        server, _ = await loop.create_datagram_endpoint(EchoProtocol, local_addr=("127.0.0.1", 0))
        port = server.get_extra_info("sockname")[1]

        received = asyncio.Queue()
        channel = TransportChannel(
            f"udp://127.0.0.1:{port}",
            on_message=received.put_nowait,
            connectors=[DatagramConnector()],
            ready_timeout=2,
        )
        try:
            await channel.connect()
            assert channel.status == TransportStatus.CONNECTED

            await channel.send(b"hello")
            assert await asyncio.wait_for(received.get(), 2) == b"HELLO"
        finally:
            await channel.disconnect()
            server.close()
