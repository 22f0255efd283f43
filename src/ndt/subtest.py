"""The capability every sub-test engine offers the coordinator.

An engine receives each control-channel message addressed to it through
:meth:`SubTest.handle` and answers whether it wants more.  Engines own their
data connection and any background tasks; :meth:`SubTest.close` releases both
and is always called by the coordinator, on success or failure.
"""

from __future__ import annotations

import abc
import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine

from .callbacks import Callbacks
from .errors import ProtocolViolation
from .net import Channel, Connector
from .packet import Frame, MessageType


class Verdict(enum.Enum):
    CONTINUE = "continue"
    DONE = "done"


@dataclass(slots=True)
class SubTestResult:
    s2c_rate: float | None = None
    c2s_rate: float | None = None
    variables: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class EngineContext:
    host: str
    path: str
    send: Callable[[Frame], Awaitable[None]]
    callbacks: Callbacks
    fail: Callable[[BaseException], None]
    connector: Connector = Channel.open
    clock: Callable[[], float] = time.monotonic


def parse_port(msg: str) -> int:
    try:
        port = int(msg.strip())
    except ValueError:
        raise ProtocolViolation(f"TEST_PREPARE carries no port: {msg!r}") from None
    if not 0 < port <= 0xFFFF:
        raise ProtocolViolation(f"TEST_PREPARE port out of range: {port}")
    return port


class SubTest(abc.ABC):
    name = ""

    def __init__(self, ctx: EngineContext) -> None:
        self.ctx = ctx
        self.channel: Channel | None = None
        self._tasks: set[asyncio.Task] = set()

    @abc.abstractmethod
    async def handle(self, kind: MessageType, msg: str) -> Verdict:
        ...

    @abc.abstractmethod
    def result(self) -> SubTestResult:
        ...

    async def open_channel(self, msg: str) -> Channel:
        port = parse_port(msg)
        self.channel = await self.ctx.connector(self.ctx.host, port, self.ctx.path, self.name)
        return self.channel

    def spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.ctx.fail(exc)

    async def close(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        try:
            if tasks:
                await asyncio.gather(*tasks, return_exceptions=True)
        finally:
            # Also reached when cancelled while tasks wind down.
            self._tasks.clear()
            if self.channel is not None:
                channel, self.channel = self.channel, None
                await channel.close()

    def unexpected(self, kind: MessageType, state: enum.Enum) -> ProtocolViolation:
        return ProtocolViolation(f"{self.name}: unexpected {kind.name} in state {state.name}")
