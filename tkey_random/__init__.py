"""TKey random generator.

Fetches true-random bytes from the TRNG on a Tillitis TKey, together with
a BLAKE2s hash of everything generated in the session signed with Ed25519
on the device, and verifies such signatures offline.

Usage:
    from tkey_random import RandomSession, SerialSession, HexConsoleSink
    from tkey_random.config import load_app_binary

    session = RandomSession(lambda: SerialSession.connect(), load_app_binary)
    result = session.run(32, HexConsoleSink(), want_signature=True)
    assert result.verification.verified

    # Offline
    from tkey_random import verify_files
    verify_files("random.bin", "sig.hex", "pubkey.hex", is_binary=True).raise_for_failure()

Logging:
    from tkey_random import setup_logging
    setup_logging(level="DEBUG")
"""

import logging as _logging
import sys as _sys

from .exceptions import (
    TKeyRandomError,
    UsageError,
    ConnectionError,
    ProtocolError,
    StatusNotOKError,
    FileError,
    FormatError,
    HashMismatchError,
    SignatureInvalidError,
    Interrupted,
)
from .types import (
    MAX_PAYLOAD,
    NameVersion,
    RandomRequest,
    ProvenancePackage,
    VerificationResult,
    SessionState,
    GenerateResult,
)
from .transport import DeviceSession, SerialSession, detect_serial_port
from .client import RandomGen
from .mock import MockTKey
from .fetch import RandomSink, HexConsoleSink, BinaryFileSink, fetch_random
from .provenance import fetch_provenance, fetch_pubkey
from .verify import blake2s_256, verify_online, verify_files
from .lifecycle import RandomSession, ShutdownToken


def setup_logging(level: str = "INFO", logger_name: str = "tkey_random") -> _logging.Logger:
    """Send tkey_random diagnostics to stderr as bare messages.

    Args:
        level: Minimum log level: "ERROR", "WARNING", "INFO", "DEBUG".
        logger_name: Logger to configure.

    Returns:
        The configured logger. Calling this again only updates the level.
    """
    logger = _logging.getLogger(logger_name)
    logger.setLevel(getattr(_logging, level.upper(), _logging.INFO))
    if not logger.handlers:
        handler = _logging.StreamHandler(_sys.stderr)
        handler.setFormatter(_logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    return logger


__version__ = "0.1.0"
__all__ = [
    "setup_logging",
    "MAX_PAYLOAD",
    "NameVersion",
    "RandomRequest",
    "ProvenancePackage",
    "VerificationResult",
    "SessionState",
    "GenerateResult",
    "DeviceSession",
    "SerialSession",
    "detect_serial_port",
    "RandomGen",
    "MockTKey",
    "RandomSink",
    "HexConsoleSink",
    "BinaryFileSink",
    "fetch_random",
    "fetch_provenance",
    "fetch_pubkey",
    "blake2s_256",
    "verify_online",
    "verify_files",
    "RandomSession",
    "ShutdownToken",
    "TKeyRandomError",
    "UsageError",
    "ConnectionError",
    "ProtocolError",
    "StatusNotOKError",
    "FileError",
    "FormatError",
    "HashMismatchError",
    "SignatureInvalidError",
    "Interrupted",
]
