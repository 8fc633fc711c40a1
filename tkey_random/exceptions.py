"""Exception types for the TKey random generator client."""

from typing import Optional


class TKeyRandomError(Exception):
    """Base exception for all tkey_random errors."""
    pass


class UsageError(TKeyRandomError):
    """Invalid arguments. Raised before any device is contacted."""
    pass


class ConnectionError(TKeyRandomError):
    """Could not open or detect the serial transport to the TKey."""
    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(message)


class ProtocolError(TKeyRandomError):
    """Malformed or unexpected response from the device.

    When ``replug`` is set the device is in a state the client cannot
    recover from and the user has to unplug and plug the TKey in again.
    """
    def __init__(self, message: str, replug: bool = False):
        self.replug = replug
        if replug:
            message = f"{message}. Please unplug and plug it in again"
        super().__init__(message)


class StatusNotOKError(ProtocolError):
    """Device answered a frame with the NOK status bit or a bad status byte."""
    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Response status not OK for {command}")


class FileError(TKeyRandomError):
    """A file could not be read or written."""
    def __init__(self, path: str, cause: Optional[Exception] = None):
        self.path = path
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Could not access {path}{detail}")


class FormatError(TKeyRandomError):
    """Hex decoding failed or decoded data has the wrong length."""
    pass


class HashMismatchError(TKeyRandomError):
    """Locally computed BLAKE2s digest differs from the reported one.

    Points at a transport or byte accounting bug, or at tampering.
    Independent of signature validity.
    """
    def __init__(self, expected: bytes, actual: bytes):
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Hash not equal: device {expected.hex()}, local {actual.hex()}"
        )


class SignatureInvalidError(TKeyRandomError):
    """Ed25519 signature did not verify."""
    def __init__(self, message: str = "Signature not valid"):
        super().__init__(message)


class Interrupted(TKeyRandomError):
    """Shutdown was requested by a signal."""
    def __init__(self, signum: Optional[int] = None):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}" if signum else "Interrupted")
