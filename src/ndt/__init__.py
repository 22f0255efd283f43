"""NDT websocket client.

The package mirrors how the protocol is layered:
- message framing and the legacy login frame
- one state machine for the control connection
- one state machine per sub-test (download, upload, metadata), each owning
  its own data connection

Progress is reported only through :class:`ndt.callbacks.Callbacks`; nothing
here renders or persists results.
"""

from .callbacks import Callbacks, StateToken
from .coordinator import ClientSession, Coordinator, CoordinatorState, Measurement, connect
from .errors import NDTError, ProtocolViolation, ServerRejected, TransportError
from .metrics import rate_kbps

__all__ = [
    "Callbacks",
    "ClientSession",
    "Coordinator",
    "CoordinatorState",
    "Measurement",
    "NDTError",
    "ProtocolViolation",
    "ServerRejected",
    "StateToken",
    "TransportError",
    "connect",
    "rate_kbps",
]
