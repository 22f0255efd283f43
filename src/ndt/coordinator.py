"""Control-channel state machine.

The coordinator owns the control connection.  It logs in, waits for the
server to admit the client and announce which tests to run, then hands every
control message to the active sub-test engine until none remain, and finally
collects results until the server logs out.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from . import constants as c
from .callbacks import Callbacks, StateToken
from .download import DownloadTest
from .errors import ProtocolViolation, ServerRejected, TransportError
from .login import make_login_frame
from .meta import MetaTest
from .net import Channel, Connector
from .packet import Frame, MessageType
from .subtest import EngineContext, SubTest, SubTestResult, Verdict
from .upload import UploadTest

logger = logging.getLogger(__name__)


class CoordinatorState(enum.Enum):
    CONNECTING = enum.auto()
    LOGIN_SENT = enum.auto()
    WAIT_FOR_TEST_IDS = enum.auto()
    WAIT_FOR_MSG_RESULTS = enum.auto()
    TERMINATED = enum.auto()
    ERROR = enum.auto()


@dataclass(slots=True)
class Measurement:
    s2c_rate: float | None = None
    c2s_rate: float | None = None
    variables: dict[str, str] = field(default_factory=dict)
    results: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ClientSession:
    host: str
    port: int
    path: str
    tests: int
    measured: Measurement = field(default_factory=Measurement)


class Coordinator:
    def __init__(
        self,
        host: str,
        port: int = c.DEFAULT_PORT,
        path: str = c.DEFAULT_PATH,
        tests: int = c.DEFAULT_TESTS,
        callbacks: Callbacks | None = None,
        *,
        connector: Connector = Channel.open,
        clock: Callable[[], float] = time.monotonic,
        tracked_variables: Iterable[str] = c.TRACKED_VARIABLES,
        upload_duration_s: float = c.C2S_DURATION_S,
    ) -> None:
        self.session = ClientSession(host=host, port=port, path=path, tests=tests)
        self.callbacks = callbacks or Callbacks()
        self.state = CoordinatorState.CONNECTING
        self.control: Channel | None = None
        self.active: SubTest | None = None
        self.tracked_variables = tuple(tracked_variables)
        self.upload_duration_s = upload_duration_s

        self._connector = connector
        self._ctx = EngineContext(
            host=host,
            path=path,
            send=self._send,
            callbacks=self.callbacks,
            fail=self.fail,
            connector=connector,
            clock=clock,
        )
        # Last-in first-out: the next test to run is at the end.
        self._stack: list[SubTest] = []
        self._error: BaseException | None = None
        self._serving: asyncio.Task | None = None

    @property
    def pending(self) -> list[SubTest]:
        """Queued engines in the order they will run."""
        return list(reversed(self._stack))

    async def run(self) -> Measurement:
        """Run the whole session; raises the first fatal error after reporting it."""
        self.callbacks.start(self.session.host)
        self._serving = asyncio.ensure_future(self._serve())
        try:
            await self._serving
        except asyncio.CancelledError:
            if self._error is None:
                raise
        except Exception as e:
            self._record(e)
        finally:
            await self._release()

        if self._error is not None:
            logger.warning("session with %s failed: %s", self.session.host, self._error)
            self.callbacks.errored(str(self._error))
            raise self._error
        return self.session.measured

    async def open(self) -> None:
        self.control = await self._connector(
            self.session.host, self.session.port, self.session.path, c.CONTROL_SUBPROTOCOL
        )
        await self._send(make_login_frame(self.session.tests))
        self.state = CoordinatorState.LOGIN_SENT

    async def handle(self, raw: bytes) -> None:
        """Process one control-channel message."""
        if self.state in (CoordinatorState.ERROR, CoordinatorState.TERMINATED):
            logger.debug("dropping control message in state %s", self.state.name)
            return

        try:
            try:
                frame = Frame.from_bytes(raw)
                msg = frame.msg
            except ValueError as e:
                raise ProtocolViolation(str(e)) from e
            if frame.length != len(frame.payload):
                logger.debug(
                    "%s declares %s body bytes, carries %d", frame.kind.name, frame.length, len(frame.payload)
                )
            await self._dispatch(frame.kind, msg)
        except Exception:
            self.state = CoordinatorState.ERROR
            raise

    def fail(self, exc: BaseException) -> None:
        """Abort the session from outside the control loop (engine background tasks)."""
        self._record(exc)
        if self._serving is not None and not self._serving.done():
            self._serving.cancel()

    async def _serve(self) -> None:
        await self.open()
        assert self.control is not None
        async for raw in self.control.messages():
            await self.handle(raw)
            if self.state is CoordinatorState.TERMINATED:
                return
        raise TransportError("control connection closed before logout")

    async def _dispatch(self, kind: MessageType, msg: str) -> None:
        if self.active is not None:
            logger.debug("%s test <- %s %r", self.active.name, kind.name, msg)
            if await self.active.handle(kind, msg) is Verdict.DONE:
                await self._complete_active()
            return

        logger.debug("control <- %s %r in state %s", kind.name, msg, self.state.name)
        if kind is MessageType.MSG_ERROR:
            raise ServerRejected(f"server reported an error: {msg}")

        if self.state is CoordinatorState.LOGIN_SENT:
            if kind is MessageType.SRV_QUEUE:
                if msg == c.SRV_QUEUE_HEARTBEAT:
                    await self._send(Frame.make(MessageType.MSG_WAITING))
                elif msg == c.SRV_QUEUE_SERVER_FAULT:
                    raise ServerRejected(f"server terminated the session (SRV_QUEUE {msg})")
                else:
                    logger.debug("queued by server (%s); waiting for MSG_LOGIN", msg)
                return
            if kind is MessageType.MSG_LOGIN:
                if not msg.startswith("v"):
                    raise ProtocolViolation(f"bad server version string: {msg!r}")
                logger.info("server version %s", msg)
                self.state = CoordinatorState.WAIT_FOR_TEST_IDS
                return

        elif self.state is CoordinatorState.WAIT_FOR_TEST_IDS and kind is MessageType.MSG_LOGIN:
            self._queue_tests(msg)
            self.state = CoordinatorState.WAIT_FOR_MSG_RESULTS
            self._activate_next()
            return

        elif self.state is CoordinatorState.WAIT_FOR_MSG_RESULTS:
            if kind is MessageType.MSG_RESULTS:
                logger.info("results: %s", msg)
                self.session.measured.results.append(msg)
                return
            if kind is MessageType.MSG_LOGOUT:
                await self._logout()
                return

        raise ProtocolViolation(f"unexpected {kind.name} in state {self.state.name}")

    def _queue_tests(self, msg: str) -> None:
        factories: dict[str, Callable[[], SubTest]] = {
            str(c.TEST_C2S): lambda: UploadTest(self._ctx, duration_s=self.upload_duration_s),
            str(c.TEST_S2C): lambda: DownloadTest(self._ctx, tracked_variables=self.tracked_variables),
            str(c.TEST_META): lambda: MetaTest(self._ctx),
        }
        ids = msg.split(" ")
        for test_id in reversed(ids):
            if test_id == "":
                continue
            factory = factories.get(test_id)
            if factory is None:
                raise ProtocolViolation(f"unknown test id {test_id!r} in {msg!r}")
            self._stack.append(factory())
        logger.info("server scheduled tests: %s", " ".join(t.name for t in self.pending) or "none")

    def _activate_next(self) -> None:
        if self.active is None and self._stack:
            self.active = self._stack.pop()
            logger.debug("%s test is now active", self.active.name)

    async def _complete_active(self) -> None:
        assert self.active is not None
        engine = self.active
        # Cleared only after close(); _release() must still see it on abort.
        await engine.close()
        self.active = None
        self._absorb(engine.result())
        logger.debug("%s test complete", engine.name)
        self._activate_next()

    def _absorb(self, result: SubTestResult) -> None:
        measured = self.session.measured
        if result.s2c_rate is not None:
            measured.s2c_rate = result.s2c_rate
        if result.c2s_rate is not None:
            measured.c2s_rate = result.c2s_rate
        measured.variables.update(result.variables)

    async def _logout(self) -> None:
        assert self.control is not None
        await self.control.close()
        self.state = CoordinatorState.TERMINATED
        self.callbacks.changed(StateToken.FINISHED_ALL)
        self.callbacks.completed()
        logger.info("tests with %s finished successfully", self.session.host)

    async def _send(self, frame: Frame) -> None:
        if self.control is None:
            raise TransportError("control connection is not open")
        await self.control.send(frame.to_bytes())

    def _record(self, exc: BaseException) -> None:
        if self._error is None:
            self._error = exc
            self.state = CoordinatorState.ERROR
        else:
            logger.debug("ignoring error after the first: %s", exc)

    async def _release(self) -> None:
        engines = ([self.active] if self.active is not None else []) + self._stack
        self.active = None
        self._stack = []
        for engine in engines:
            await engine.close()
        if self.control is not None:
            await self.control.close()


async def connect(
    host: str,
    port: int = c.DEFAULT_PORT,
    path: str = c.DEFAULT_PATH,
    tests: int = c.DEFAULT_TESTS,
    callbacks: Callbacks | None = None,
    **options,
) -> Measurement:
    """Run one NDT session against ``host`` and return what it measured."""
    return await Coordinator(host, port, path, tests, callbacks, **options).run()
