"""Client for the random generator app running on the TKey.

This module wraps a :class:`~tkey_random.transport.DeviceSession` with the
app's command set: name/version, random bytes, public key and the running
hash + signature. Responses are decoded into the types from
:mod:`tkey_random.types`.
"""

import logging

from . import proto
from .exceptions import ProtocolError
from .transport import DeviceSession, unpack_name_version
from .types import (
    HASH_SIZE,
    MAX_PAYLOAD,
    PUBKEY_SIZE,
    SIGNATURE_SIZE,
    NameVersion,
    ProvenancePackage,
)

logger = logging.getLogger(__name__)


class RandomGen:
    """High-level client for the TKey random generator app.

    Usage:
        session = SerialSession.connect("/dev/ttyACM0")
        gen = RandomGen(session)
        data = gen.get_random_sync(32)
        provenance = gen.get_signature_sync()
        gen.close()

    Thread Safety:
        None. The device answers one frame at a time and every method
        blocks until its response has been read, so there is never more
        than one request outstanding on the link. Do not share an
        instance between threads.
    """

    def __init__(self, session: DeviceSession):
        """Initialize the client.

        Args:
            session: Open device session with the random app running.
        """
        self._session = session

    @property
    def session(self) -> DeviceSession:
        return self._session

    def get_app_name_version_sync(self) -> NameVersion:
        """Identity of the running app."""
        data = self._session.exchange(
            proto.APP_CMD_GET_NAME_VERSION, b"", proto.APP_RSP_GET_NAME_VERSION
        )
        return unpack_name_version(data)

    def get_random_sync(self, count: int) -> bytes:
        """Fetch ``count`` random bytes in a single exchange.

        Args:
            count: Number of bytes, 1 to MAX_PAYLOAD.

        Returns:
            The random bytes. The device also feeds them into its running hash.

        Raises:
            ValueError: If count is out of range.
            ProtocolError: If the device reports a bad status.
        """
        if not 1 <= count <= MAX_PAYLOAD:
            raise ValueError(f"count must be between 1 and {MAX_PAYLOAD}, got {count}")

        data = self._session.exchange(
            proto.APP_CMD_GET_RANDOM, bytes([count]), proto.APP_RSP_GET_RANDOM
        )
        if data[0] != proto.STATUS_OK:
            raise ProtocolError(f"{proto.APP_RSP_GET_RANDOM} status not OK")
        return data[1:1 + count]

    def get_signature_sync(self) -> ProvenancePackage:
        """Fetch the hash of all random data generated so far and its signature.

        The device finalizes and then re-initializes its hash, so the next
        random byte starts a new stream.

        Raises:
            ProtocolError: If no random data was generated since the last call.
        """
        data = self._session.exchange(proto.APP_CMD_GET_SIG, b"", proto.APP_RSP_GET_SIG)
        if data[0] != proto.STATUS_OK:
            raise ProtocolError(f"{proto.APP_RSP_GET_SIG} status not OK")
        sig_end = 1 + SIGNATURE_SIZE
        return ProvenancePackage(
            signature=data[1:sig_end],
            hash=data[sig_end:sig_end + HASH_SIZE],
        )

    def get_pubkey_sync(self) -> bytes:
        """Fetch the app's Ed25519 public key (32 bytes)."""
        data = self._session.exchange(proto.APP_CMD_GET_PUBKEY, b"", proto.APP_RSP_GET_PUBKEY)
        return data[:PUBKEY_SIZE]

    def close(self) -> None:
        """Close the underlying session. Must be called exactly once."""
        self._session.close()
