"""In-memory TKey for running the generator without hardware.

``MockTKey`` implements the DeviceSession interface and behaves like the
firmware plus the random generator app: it answers firmware frames until an
app is loaded, keeps a running BLAKE2s over the random bytes it hands out,
signs that digest with an Ed25519 key derived from its CDI and USS, and
resets the digest after every signature request.
"""

import hashlib
import os
import struct
from typing import Callable, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from . import proto
from .exceptions import ConnectionError, ProtocolError, StatusNotOKError
from .lifecycle import APP_NAME, FIRMWARE_NAME
from .transport import APP_MAX_SIZE, Checkpoint, hash_uss
from .types import MAX_PAYLOAD, NameVersion


class MockTKey:
    """Simulated TKey.

    Usage:
        device = MockTKey()
        device.load_app(b"app", secret=b"phrase")
        gen = RandomGen(device)
        data = gen.get_random_sync(16)
    """

    def __init__(
        self,
        firmware_mode: bool = True,
        app_name: tuple[bytes, bytes] = APP_NAME,
        cdi: Optional[bytes] = None,
        corrupt_hash: bool = False,
        fail_on: Optional[str] = None,
        fail_after: int = 0,
        close_error: bool = False,
        on_random: Optional[Callable[[int], None]] = None,
        on_load_chunk: Optional[Callable[[int], None]] = None,
    ):
        """Initialize the simulated device.

        Args:
            firmware_mode: Start in firmware mode (no app loaded).
            app_name: Name pair the running app reports.
            cdi: Compound device identifier; random if not given.
            corrupt_hash: Hash and sign one byte more than was handed out.
            fail_on: Command name that fails with ConnectionError.
            fail_after: Number of successful ``fail_on`` exchanges before failing.
            close_error: Raise from close().
            on_random: Called with the requested size on every random request.
            on_load_chunk: Called with the offset of every app data chunk loaded.
        """
        self.app_name = app_name
        self.cdi = cdi or os.urandom(32)
        self.corrupt_hash = corrupt_hash
        self.fail_on = fail_on
        self.fail_after = fail_after
        self.close_error = close_error
        self.on_random = on_random
        self.on_load_chunk = on_load_chunk

        self.app_loaded = not firmware_mode
        self.app_binary: Optional[bytes] = None
        self.uss: Optional[bytes] = None
        self.close_count = 0
        self.random_requests: list[int] = []
        self.signature_requests = 0
        self.load_chunks = 0
        self.exchanges: list[str] = []

        self._calls: dict[str, int] = {}
        self._hash = hashlib.blake2s(digest_size=32)
        self._generated = False
        self._key: Optional[Ed25519PrivateKey] = None if firmware_mode else self._derive_key()

    def _derive_key(self) -> Ed25519PrivateKey:
        seed = hashlib.blake2s(self.cdi + (self.uss or b""), digest_size=32).digest()
        return Ed25519PrivateKey.from_private_bytes(seed)

    @property
    def closed(self) -> bool:
        return self.close_count > 0

    @property
    def public_key(self) -> bytes:
        if self._key is None:
            raise ProtocolError("No app loaded")
        return self._key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )

    def _check_usable(self, name: str) -> None:
        if self.closed:
            raise ConnectionError("Session already closed")
        self.exchanges.append(name)
        if name == self.fail_on:
            count = self._calls.get(name, 0)
            self._calls[name] = count + 1
            if count >= self.fail_after:
                raise ConnectionError(f"Simulated transport failure on {name}")

    def get_name_version(self) -> NameVersion:
        self._check_usable(proto.FW_CMD_GET_NAME_VERSION.name)
        if self.app_loaded:
            # A running app NOKs frames meant for the firmware
            raise StatusNotOKError(str(proto.FW_RSP_GET_NAME_VERSION))
        return NameVersion(name0=FIRMWARE_NAME[0], name1=FIRMWARE_NAME[1], version=2)

    def load_app(
        self,
        binary: bytes,
        secret: Optional[bytes] = None,
        shutdown: Optional[Checkpoint] = None,
    ) -> None:
        self._check_usable(proto.FW_CMD_LOAD_APP.name)
        if self.app_loaded:
            raise StatusNotOKError(str(proto.FW_RSP_LOAD_APP))
        if not binary:
            raise ValueError("App binary is empty")
        if len(binary) > APP_MAX_SIZE:
            raise ValueError(f"App too big: {len(binary)} > {APP_MAX_SIZE} bytes")

        chunk_size = proto.FW_CMD_LOAD_APP_DATA.max_payload
        for offset in range(0, len(binary), chunk_size):
            if shutdown is not None:
                shutdown.check()
            self.load_chunks += 1
            if self.on_load_chunk:
                self.on_load_chunk(offset)

        self.app_binary = binary
        self.uss = hash_uss(secret) if secret else None
        self.app_loaded = True
        self._key = self._derive_key()

    def exchange(self, cmd: proto.Command, payload: bytes, rsp: proto.Command) -> bytes:
        self._check_usable(cmd.name)
        if cmd.endpoint != proto.Endpoint.APP or not self.app_loaded:
            raise StatusNotOKError(str(rsp))

        if cmd == proto.APP_CMD_GET_NAME_VERSION:
            data = self.app_name[0] + self.app_name[1] + struct.pack("<I", 1)
        elif cmd == proto.APP_CMD_GET_RANDOM:
            data = self._random(payload[0] if payload else 0)
        elif cmd == proto.APP_CMD_GET_PUBKEY:
            data = self.public_key
        elif cmd == proto.APP_CMD_GET_SIG:
            data = self._signature()
        else:
            raise ProtocolError(f"Unknown command {cmd}")
        return data.ljust(rsp.max_payload, b"\x00")

    def _random(self, count: int) -> bytes:
        self.random_requests.append(count)
        if self.on_random:
            self.on_random(count)
        if not 1 <= count <= MAX_PAYLOAD:
            return bytes([proto.STATUS_BAD])
        random = os.urandom(count)
        self._hash.update(random)
        self._generated = True
        return bytes([proto.STATUS_OK]) + random

    def _signature(self) -> bytes:
        self.signature_requests += 1
        if not self._generated:
            return bytes([proto.STATUS_BAD])
        if self.corrupt_hash:
            # Hash covers a byte the host never saw; the signature over it is still valid
            self._hash.update(b"\x00")
        digest = self._hash.digest()
        signature = self._key.sign(digest)
        # Re-init hash for the next random stream
        self._hash = hashlib.blake2s(digest_size=32)
        self._generated = False
        return bytes([proto.STATUS_OK]) + signature + digest

    def close(self) -> None:
        self.close_count += 1
        if self.close_error:
            raise ConnectionError("Simulated close failure")
