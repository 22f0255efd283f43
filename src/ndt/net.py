from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, InvalidHandshake, InvalidURI
from websockets.typing import Subprotocol

from .errors import TransportError

logger = logging.getLogger(__name__)


def build_url(host: str, port: int, path: str) -> str:
    if not path.startswith("/"):
        path = "/" + path
    return f"ws://{host}:{port}{path}"


@dataclass(slots=True)
class Channel:
    """One websocket connection, tagged with the sub-protocol it speaks."""

    ws: ClientConnection
    subprotocol: str

    @classmethod
    async def open(cls, host: str, port: int, path: str, subprotocol: str) -> "Channel":
        url = build_url(host, port, path)
        try:
            # Compression off: byte accounting must match what crosses the wire.
            ws = await connect(
                url,
                subprotocols=[Subprotocol(subprotocol)],
                compression=None,
                max_size=None,
            )
        except (OSError, asyncio.TimeoutError, InvalidHandshake, InvalidURI) as e:
            raise TransportError(f"cannot open {subprotocol} connection to {url}: {e}") from e
        logger.info("opened %s connection to %s", subprotocol, url)
        return cls(ws, subprotocol)

    @property
    def buffered_amount(self) -> int:
        transport = self.ws.transport
        if transport is None or transport.is_closing():
            return 0
        return transport.get_write_buffer_size()

    async def send(self, data: bytes) -> None:
        try:
            await self.ws.send(data)
        except ConnectionClosed as e:
            raise TransportError(f"{self.subprotocol} connection closed while sending: {e}") from e

    async def messages(self) -> AsyncIterator[bytes]:
        try:
            async for message in self.ws:
                yield message.encode("utf-8") if isinstance(message, str) else message
        except ConnectionClosedError as e:
            raise TransportError(f"{self.subprotocol} connection failed: {e}") from e

    async def close(self) -> None:
        await self.ws.close()


Connector = Callable[[str, int, str, str], Awaitable[Channel]]
