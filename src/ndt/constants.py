from __future__ import annotations

HEADER_FORMAT = "!BH"  # type, body length
MAX_BODY_LEN = 0xFFFF

# Message type codes, in wire order.
COMM_FAILURE = 0
SRV_QUEUE = 1
MSG_LOGIN = 2
TEST_PREPARE = 3
TEST_START = 4
TEST_MSG = 5
TEST_FINALIZE = 6
MSG_ERROR = 7
MSG_RESULTS = 8
MSG_LOGOUT = 9
MSG_WAITING = 10
MSG_EXTENDED_LOGIN = 11

# Test selection bits.
TEST_C2S = 1 << 1
TEST_S2C = 1 << 2
TEST_STATUS = 1 << 4
TEST_META = 1 << 5

# Tests requiring the server to connect back to the client (MID, SFW) are never requested.
DEFAULT_TESTS = TEST_C2S | TEST_S2C | TEST_META

CLIENT_VERSION = "v3.5.5"
LOGIN_PLACEHOLDER = "X"

SRV_QUEUE_HEARTBEAT = "9990"
SRV_QUEUE_SERVER_FAULT = "9977"

CONTROL_SUBPROTOCOL = "ndt"
S2C_SUBPROTOCOL = "s2c"
C2S_SUBPROTOCOL = "c2s"

DEFAULT_PORT = 3001
DEFAULT_PATH = "/ndt_protocol"

C2S_BUFFER_SIZE = 8192 - 4
C2S_DURATION_S = 10.0

META_CLIENT_OS = "client.os.name"
TRACKED_VARIABLES = ("MinRTT",)
