from __future__ import annotations

import enum
import logging
import platform

from .callbacks import StateToken
from .constants import META_CLIENT_OS
from .packet import Frame, MessageType
from .subtest import EngineContext, SubTest, SubTestResult, Verdict

logger = logging.getLogger(__name__)


class MetaState(enum.Enum):
    WAIT_PREPARE = enum.auto()
    WAIT_START = enum.auto()
    WAIT_FINALIZE = enum.auto()
    DONE = enum.auto()


class MetaTest(SubTest):
    """Sends client metadata over the control connection; no data connection."""

    name = "meta"

    def __init__(self, ctx: EngineContext, os_name: str | None = None) -> None:
        super().__init__(ctx)
        self.state = MetaState.WAIT_PREPARE
        self.os_name = os_name or platform.system() or "unknown"

    async def handle(self, kind: MessageType, msg: str) -> Verdict:
        if self.state is MetaState.WAIT_PREPARE and kind is MessageType.TEST_PREPARE:
            self.ctx.callbacks.changed(StateToken.PREPARING_META)
            self.state = MetaState.WAIT_START
            return Verdict.CONTINUE

        if self.state is MetaState.WAIT_START and kind is MessageType.TEST_START:
            self.ctx.callbacks.changed(StateToken.RUNNING_META)
            await self.ctx.send(Frame.make(MessageType.TEST_MSG, f"{META_CLIENT_OS}:{self.os_name}"))
            # An empty TEST_MSG ends the metadata.
            await self.ctx.send(Frame.make(MessageType.TEST_MSG, ""))
            self.state = MetaState.WAIT_FINALIZE
            return Verdict.CONTINUE

        if self.state is MetaState.WAIT_FINALIZE and kind is MessageType.TEST_FINALIZE:
            self.ctx.callbacks.changed(StateToken.FINISHED_META)
            logger.info("meta test done")
            self.state = MetaState.DONE
            return Verdict.DONE

        raise self.unexpected(kind, self.state)

    def result(self) -> SubTestResult:
        return SubTestResult()
