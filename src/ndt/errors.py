from __future__ import annotations


class NDTError(Exception):
    """A fatal condition; the session cannot continue."""


class ProtocolViolation(NDTError):
    """A frame that is undecodable or not legal in the current state."""


class ServerRejected(NDTError):
    """The server ended the session: ``SRV_QUEUE "9977"``, or a ``MSG_ERROR`` outside any sub-test."""


class TransportError(NDTError):
    """The control or a data connection failed or closed early."""
