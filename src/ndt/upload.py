"""Client-to-server throughput test (C2S)."""

from __future__ import annotations

import asyncio
import enum
import logging

from .callbacks import StateToken
from .constants import C2S_BUFFER_SIZE, C2S_DURATION_S, C2S_SUBPROTOCOL
from .errors import ProtocolViolation
from .metrics import Metrics
from .packet import MessageType
from .subtest import EngineContext, SubTest, SubTestResult, Verdict

logger = logging.getLogger(__name__)


class UploadState(enum.Enum):
    WAIT_PREPARE = enum.auto()
    WAIT_START = enum.auto()
    WAIT_MSG = enum.auto()
    WAIT_FINALIZE = enum.auto()
    DONE = enum.auto()


def make_payload(size: int = C2S_BUFFER_SIZE) -> bytes:
    # Printable ASCII only (32..125); 101 is prime so the cycle is long.
    return bytes(32 + (i * 101) % 94 for i in range(size))


class UploadTest(SubTest):
    name = C2S_SUBPROTOCOL

    def __init__(self, ctx: EngineContext, duration_s: float = C2S_DURATION_S) -> None:
        super().__init__(ctx)
        self.state = UploadState.WAIT_PREPARE
        self.duration_s = duration_s
        self.metrics = Metrics()
        self.payload = b""
        self.sends = 0
        self.rate: float | None = None
        self._pump: asyncio.Task | None = None

    async def handle(self, kind: MessageType, msg: str) -> Verdict:
        if self.state is UploadState.WAIT_PREPARE and kind is MessageType.TEST_PREPARE:
            self.ctx.callbacks.changed(StateToken.PREPARING_C2S)
            await self.open_channel(msg)
            self.payload = make_payload()
            self.state = UploadState.WAIT_START
            return Verdict.CONTINUE

        if self.state is UploadState.WAIT_START and kind is MessageType.TEST_START:
            self.ctx.callbacks.changed(StateToken.RUNNING_C2S)
            self.metrics.start_ts = self.ctx.clock()
            self._pump = self.spawn(self._keep_sending())
            self.state = UploadState.WAIT_MSG
            return Verdict.CONTINUE

        if self.state is UploadState.WAIT_MSG and kind is MessageType.TEST_MSG:
            logger.info("c2s rate measured by server: %s kbps", msg)
            self.state = UploadState.WAIT_FINALIZE
            return Verdict.CONTINUE

        if self.state is UploadState.WAIT_FINALIZE and kind is MessageType.TEST_FINALIZE:
            await self._stop_sending()
            if self.metrics.duration_s <= 0:
                raise ProtocolViolation("c2s: no time elapsed between TEST_START and TEST_FINALIZE")
            self.rate = self.metrics.throughput_kbps
            logger.info(
                "c2s rate: %.2f kbps (%d sends, %d bytes in %.3fs)",
                self.rate,
                self.sends,
                self.metrics.bytes_transferred,
                self.metrics.duration_s,
            )
            self.ctx.callbacks.changed(StateToken.FINISHED_C2S)
            self.state = UploadState.DONE
            return Verdict.DONE

        raise self.unexpected(kind, self.state)

    def result(self) -> SubTestResult:
        return SubTestResult(c2s_rate=self.rate)

    async def _keep_sending(self) -> None:
        assert self.channel is not None and self.metrics.start_ts is not None
        while True:
            # Only refill once the previous buffer has drained.
            if self.channel.buffered_amount == 0:
                await self.channel.send(self.payload)
                self.sends += 1
                self.metrics.bytes_transferred += len(self.payload)
            now = self.ctx.clock()
            if now - self.metrics.start_ts >= self.duration_s:
                self.metrics.end_ts = now
                return
            await asyncio.sleep(0)

    async def _stop_sending(self) -> None:
        if self._pump is not None and not self._pump.done():
            logger.debug("c2s finalized before the send window closed")
            self._pump.cancel()
            await asyncio.gather(self._pump, return_exceptions=True)
        if self.metrics.end_ts is None:
            self.metrics.end_ts = self.ctx.clock()
