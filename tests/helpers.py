from __future__ import annotations

import asyncio

from ndt.callbacks import Callbacks
from ndt.errors import TransportError
from ndt.packet import Frame, MessageType
from ndt.subtest import EngineContext

HOST = "ndt.example.net"
PATH = "/ndt_protocol"


def frame(kind: MessageType, msg: str = "") -> bytes:
    return Frame.make(kind, msg).to_bytes()


async def settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeChannel:
    """Scripted stand-in for :class:`ndt.net.Channel`."""

    def __init__(
        self,
        incoming=(),
        *,
        gap: int = 0,
        hold: bool = False,
        buffered_amount: int = 0,
        send_error: BaseException | None = None,
    ):
        self.incoming = list(incoming)
        self.gap = gap
        self.hold = hold
        self.buffered_amount = buffered_amount
        self.send_error = send_error
        self.sent: list[bytes] = []
        self.delivered = 0
        self.closed = False
        self._released = asyncio.Event()

    async def send(self, data: bytes) -> None:
        if self.closed:
            raise TransportError("send on closed channel")
        if self.send_error is not None:
            raise self.send_error
        self.sent.append(bytes(data))

    async def messages(self):
        for item in self.incoming:
            for _ in range(self.gap):
                await asyncio.sleep(0)
            if self.closed:
                return
            if isinstance(item, BaseException):
                raise item
            self.delivered += 1
            yield item
        if self.hold:
            await self._released.wait()

    async def close(self) -> None:
        self.closed = True
        self._released.set()

    def sent_frames(self) -> list[Frame]:
        return [Frame.from_bytes(raw) for raw in self.sent]


class FakeConnector:
    def __init__(self, control: FakeChannel | None = None, data: dict[int, FakeChannel] | None = None):
        self.control = control or FakeChannel()
        self.data = data or {}
        self.calls: list[tuple[str, int, str, str]] = []

    async def __call__(self, host: str, port: int, path: str, subprotocol: str) -> FakeChannel:
        self.calls.append((host, port, path, subprotocol))
        if subprotocol == "ndt":
            return self.control
        if port not in self.data:
            raise TransportError(f"connection refused on port {port}")
        return self.data[port]


class StepClock:
    """Advances by ``step`` seconds every time it is read."""

    def __init__(self, step: float = 1.0):
        self.step = step
        self.now = 0.0

    def __call__(self) -> float:
        self.now += self.step
        return self.now


class Harness:
    """An engine context wired to fakes, recording what the engine does."""

    def __init__(self, data: dict[int, FakeChannel] | None = None, clock: StepClock | None = None):
        self.connector = FakeConnector(data=data)
        self.control = self.connector.control
        self.tokens: list[str] = []
        self.failures: list[BaseException] = []
        self.clock = clock or StepClock()
        self.ctx = EngineContext(
            host=HOST,
            path=PATH,
            send=self.send,
            callbacks=Callbacks(on_change=self.tokens.append),
            fail=self.failures.append,
            connector=self.connector,
            clock=self.clock,
        )

    async def send(self, f: Frame) -> None:
        await self.control.send(f.to_bytes())
