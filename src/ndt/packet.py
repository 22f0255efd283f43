from __future__ import annotations

import enum
import json
import struct
from dataclasses import dataclass

from . import constants as c


class MessageType(enum.IntEnum):
    COMM_FAILURE = c.COMM_FAILURE
    SRV_QUEUE = c.SRV_QUEUE
    MSG_LOGIN = c.MSG_LOGIN
    TEST_PREPARE = c.TEST_PREPARE
    TEST_START = c.TEST_START
    TEST_MSG = c.TEST_MSG
    TEST_FINALIZE = c.TEST_FINALIZE
    MSG_ERROR = c.MSG_ERROR
    MSG_RESULTS = c.MSG_RESULTS
    MSG_LOGOUT = c.MSG_LOGOUT
    MSG_WAITING = c.MSG_WAITING
    MSG_EXTENDED_LOGIN = c.MSG_EXTENDED_LOGIN


@dataclass(frozen=True, slots=True)
class Frame:
    kind: MessageType
    payload: bytes = b""
    # Declared length as read off the wire; None for locally built frames.
    length: int | None = None

    @property
    def text(self) -> str:
        return self.payload.decode("utf-8")

    @property
    def msg(self) -> str:
        """Parse the JSON body and return its ``msg`` field."""
        try:
            body = json.loads(self.text)
        except ValueError as e:
            raise ValueError(f"{self.kind.name} body is not JSON: {self.payload[:64]!r}") from e
        if not isinstance(body, dict) or "msg" not in body:
            raise ValueError(f"{self.kind.name} body has no msg field: {self.payload[:64]!r}")
        return str(body["msg"])

    def to_bytes(self) -> bytes:
        if len(self.payload) > c.MAX_BODY_LEN:
            raise ValueError(f"body too large for a 16-bit length: {len(self.payload)}")
        return struct.pack(c.HEADER_FORMAT, int(self.kind), len(self.payload)) + self.payload

    @staticmethod
    def from_bytes(raw: bytes) -> "Frame":
        header_len = struct.calcsize(c.HEADER_FORMAT)
        if len(raw) < header_len:
            raise ValueError("message too small to be a valid frame")

        kind, length = struct.unpack(c.HEADER_FORMAT, raw[:header_len])
        try:
            kind = MessageType(kind)
        except ValueError:
            raise ValueError(f"unknown message type: {kind}") from None

        return Frame(kind=kind, payload=bytes(raw[header_len:]), length=length)

    @staticmethod
    def make(kind: MessageType, msg: str = "") -> "Frame":
        body = '{ "msg": ' + json.dumps(msg) + " } "
        return Frame(kind=kind, payload=body.encode("utf-8"))
