"""Extended login frame.

The login body is a legacy fixed layout rather than a JSON-encoded message:
a single placeholder byte inside the template carries the requested test
bitmask, so the frame is assembled byte by byte.
"""

from __future__ import annotations

from .constants import CLIENT_VERSION, LOGIN_PLACEHOLDER, TEST_STATUS
from .packet import Frame, MessageType

LOGIN_TEMPLATE = ' { "msg": "' + LOGIN_PLACEHOLDER + CLIENT_VERSION + '" }'


def login_tests_byte(tests: int) -> int:
    # Status updates are mandatory for 3.5.5+ clients.
    value = tests | TEST_STATUS
    if not 0 <= value <= 0xFF:
        raise ValueError(f"test selection does not fit in one byte: {tests}")
    return value


def make_login_frame(tests: int) -> Frame:
    tests_byte = login_tests_byte(tests)
    body = bytearray()
    for ch in LOGIN_TEMPLATE:
        body.append(tests_byte if ch == LOGIN_PLACEHOLDER else ord(ch))
    return Frame(kind=MessageType.MSG_EXTENDED_LOGIN, payload=bytes(body))
