"""Fakes shared by the transport and price feed tests."""

import asyncio

from marketfeed.transport.connectors import Capability, Connection, Connector


async def settle(times: int = 5) -> None:
    for _ in range(times):
        await asyncio.sleep(0)


class FakeConnection(Connection):
    def __init__(self, ready: bool = True) -> None:
        loop = asyncio.get_running_loop()
        self.ready: asyncio.Future = loop.create_future()
        if ready:
            self.ready.set_result(None)
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[bytes] = []
        self.closed = 0
        self.fail_send = False

    async def wait_ready(self) -> None:
        await self.ready

    async def receive(self) -> bytes | None:
        item = await self.inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def send(self, data: bytes) -> None:
        if self.fail_send:
            raise OSError("socket gone")
        self.sent.append(data)

    async def close(self) -> None:
        self.closed += 1
        if not self.ready.done():
            self.ready.cancel()


class FakeConnector(Connector):
    def __init__(self, kind: str = "datagram", available: bool = True, ready: bool = True, fail_open: bool = False):
        self.kind = kind
        self.available = available
        self.ready = ready
        self.fail_open = fail_open
        self.opened: list[tuple[str, FakeConnection]] = []
        self.open_calls = 0

    def probe(self, url: str) -> Capability:
        return Capability(self.kind, self.available, "" if self.available else "disabled")

    def open(self, url: str) -> Connection:
        self.open_calls += 1
        if self.fail_open:
            raise OSError("refused")
        connection = FakeConnection(ready=self.ready)
        self.opened.append((url, connection))
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.opened[-1][1]
