"""Server-to-client throughput test (S2C).

The server floods the data connection for a fixed period; the client counts
what arrives and, when the server asks for it, reports the rate it measured.
The server then replies with a series of ``Name: value`` lines describing the
connection, from which the tracked variables are picked.
"""

from __future__ import annotations

import enum
import logging
import re
from typing import Iterable

from .callbacks import StateToken
from .constants import S2C_SUBPROTOCOL, TRACKED_VARIABLES
from .errors import ProtocolViolation
from .metrics import Metrics
from .net import Channel
from .packet import Frame, MessageType
from .subtest import EngineContext, SubTest, SubTestResult, Verdict

logger = logging.getLogger(__name__)


class DownloadState(enum.Enum):
    WAIT_PREPARE = enum.auto()
    WAIT_START = enum.auto()
    WAIT_FIRST_MSG = enum.auto()
    WAIT_MSG_OR_FINISH = enum.auto()
    DONE = enum.auto()


def framing_overhead(length: int) -> int:
    """Websocket header bytes the server spent on a message of ``length`` bytes."""
    if length < 126:
        return 2
    if length < 65536:
        return 4
    return 10


class DownloadTest(SubTest):
    name = S2C_SUBPROTOCOL

    def __init__(self, ctx: EngineContext, tracked_variables: Iterable[str] = TRACKED_VARIABLES) -> None:
        super().__init__(ctx)
        self.state = DownloadState.WAIT_PREPARE
        self.metrics = Metrics()
        self.rate: float | None = None
        self.variables: dict[str, str] = {}
        self._patterns = {
            name: re.compile(r"^" + re.escape(name) + r":[^\S\n]+(.*)$", re.MULTILINE)
            for name in tracked_variables
        }

    async def handle(self, kind: MessageType, msg: str) -> Verdict:
        if self.state is DownloadState.WAIT_PREPARE and kind is MessageType.TEST_PREPARE:
            self.ctx.callbacks.changed(StateToken.PREPARING_S2C)
            channel = await self.open_channel(msg)
            self.metrics.start_ts = self.ctx.clock()
            self.spawn(self._receive(channel))
            self.state = DownloadState.WAIT_START
            return Verdict.CONTINUE

        if self.state is DownloadState.WAIT_START and kind is MessageType.TEST_START:
            self.ctx.callbacks.changed(StateToken.RUNNING_S2C)
            self.state = DownloadState.WAIT_FIRST_MSG
            return Verdict.CONTINUE

        if self.state is DownloadState.WAIT_FIRST_MSG and kind is MessageType.TEST_MSG:
            await self._report_rate()
            self.state = DownloadState.WAIT_MSG_OR_FINISH
            return Verdict.CONTINUE

        if self.state is DownloadState.WAIT_MSG_OR_FINISH and kind is MessageType.TEST_MSG:
            logger.debug("s2c results: %r", msg)
            self._collect_variables(msg)
            return Verdict.CONTINUE

        if self.state is DownloadState.WAIT_MSG_OR_FINISH and kind is MessageType.TEST_FINALIZE:
            self.ctx.callbacks.changed(StateToken.FINISHED_S2C)
            self.state = DownloadState.DONE
            return Verdict.DONE

        raise self.unexpected(kind, self.state)

    def result(self) -> SubTestResult:
        return SubTestResult(s2c_rate=self.rate, variables=dict(self.variables))

    async def _receive(self, channel: Channel) -> None:
        async for message in channel.messages():
            self.metrics.bytes_transferred += framing_overhead(len(message)) + len(message)
        if self.metrics.end_ts is None:
            self.metrics.end_ts = self.ctx.clock()
        logger.debug("s2c connection closed after %d bytes", self.metrics.bytes_transferred)

    async def _report_rate(self) -> None:
        if self.metrics.start_ts is None:
            raise ProtocolViolation("s2c: TEST_MSG before the data connection opened")
        if self.metrics.end_ts is None:
            self.metrics.end_ts = self.ctx.clock()
        if self.metrics.duration_s <= 0:
            raise ProtocolViolation("s2c: no time elapsed between connection open and TEST_MSG")

        self.rate = self.metrics.throughput_kbps
        logger.info(
            "s2c rate: %.2f kbps (%d bytes in %.3fs)",
            self.rate,
            self.metrics.bytes_transferred,
            self.metrics.duration_s,
        )
        await self.ctx.send(Frame.make(MessageType.TEST_MSG, str(self.rate)))

    def _collect_variables(self, msg: str) -> None:
        for name, pattern in self._patterns.items():
            matches = pattern.findall(msg)
            if matches:
                self.variables[name] = matches[-1].strip()
                logger.info("s2c: %s = %s", name, self.variables[name])
