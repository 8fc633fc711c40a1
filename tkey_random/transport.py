"""Serial transport to the TKey.

``SerialSession`` owns the pyserial handle and speaks the framing protocol
from :mod:`tkey_random.proto`. It also implements the two firmware
operations the generator needs: reading the firmware identity and loading
an app. Everything above this module talks to a :class:`DeviceSession`.
"""

import hashlib
import logging
import struct
from typing import Optional, Protocol

import serial
from serial.tools import list_ports

from . import proto
from .exceptions import ConnectionError, ProtocolError
from .types import NameVersion

logger = logging.getLogger(__name__)

SERIAL_SPEED = 62500
TKEY_USB_VID = 0x1207
TKEY_USB_PID = 0x8887
APP_MAX_SIZE = 100 * 1024
USS_SIZE = 32


class Checkpoint(Protocol):
    """Raises to stop a multi-frame operation between frames."""

    def check(self) -> None:
        ...


class DeviceSession(Protocol):
    """A live conversation with one TKey."""

    def exchange(self, cmd: proto.Command, payload: bytes, rsp: proto.Command) -> bytes:
        """Send ``cmd`` and return the payload of the ``rsp`` frame after its code byte."""
        ...

    def get_name_version(self) -> NameVersion:
        """Firmware identity. Raises ProtocolError when an app is running instead."""
        ...

    def load_app(
        self,
        binary: bytes,
        secret: Optional[bytes] = None,
        shutdown: Optional[Checkpoint] = None,
    ) -> None:
        ...

    def close(self) -> None:
        ...


def detect_serial_port() -> str:
    """Find the serial device of the single connected TKey."""
    ports = [
        p.device for p in list_ports.comports()
        if p.vid == TKEY_USB_VID and p.pid == TKEY_USB_PID
    ]
    if not ports:
        raise ConnectionError("Could not detect any TKey serial ports")
    if len(ports) > 1:
        raise ConnectionError(
            f"Detected {len(ports)} TKey serial ports ({', '.join(ports)}), pass one with --port"
        )
    logger.info("Auto-detected serial port %s", ports[0])
    return ports[0]


def hash_uss(secret: bytes) -> bytes:
    """Hash a user supplied secret down to the 32 bytes the firmware takes."""
    return hashlib.blake2s(secret, digest_size=USS_SIZE).digest()


class SerialSession:
    """DeviceSession over a USB CDC serial port."""

    def __init__(self, port: str, speed: int = SERIAL_SPEED, timeout: float = 2.0):
        """Open the serial port.

        Args:
            port: Serial device path, e.g. /dev/ttyACM0.
            speed: Line speed in bits per second.
            timeout: Read timeout in seconds for each frame.

        Raises:
            ConnectionError: If the port cannot be opened.
        """
        self.port = port
        self._closed = False
        try:
            self._conn = serial.Serial(port, baudrate=speed, timeout=timeout)
        except (serial.SerialException, OSError, ValueError) as e:
            raise ConnectionError(f"Could not open {port}: {e}", e)

    @classmethod
    def connect(cls, port: Optional[str] = None, speed: int = SERIAL_SPEED) -> "SerialSession":
        """Open ``port``, auto-detecting the TKey when it is not given."""
        if not port:
            port = detect_serial_port()
        logger.info("Connecting to device on serial port %s...", port)
        return cls(port, speed=speed)

    def _write(self, data: bytes) -> None:
        try:
            self._conn.write(data)
            self._conn.flush()
        except (serial.SerialException, OSError) as e:
            raise ConnectionError(f"Write to {self.port} failed: {e}", e)

    def _read(self, size: int) -> bytes:
        try:
            data = self._conn.read(size)
        except (serial.SerialException, OSError) as e:
            raise ConnectionError(f"Read from {self.port} failed: {e}", e)
        return data

    def exchange(self, cmd: proto.Command, payload: bytes, rsp: proto.Command) -> bytes:
        if self._closed:
            raise ConnectionError("Session already closed")
        frame = proto.build_frame(cmd, payload)
        logger.debug("tx %s: %s", cmd, frame.hex())
        self._write(frame)

        raw_hdr = self._read(1)
        if not raw_hdr:
            raise ProtocolError(f"Timed out waiting for {rsp}")
        hdr = proto.FrameHeader.unpack(raw_hdr[0])
        body = self._read(hdr.cmdlen.bytelen)
        logger.debug("rx %s: %s", rsp, (raw_hdr + body).hex())
        return proto.check_response(hdr, body, rsp)

    def get_name_version(self) -> NameVersion:
        data = self.exchange(proto.FW_CMD_GET_NAME_VERSION, b"", proto.FW_RSP_GET_NAME_VERSION)
        return unpack_name_version(data)

    def load_app(
        self,
        binary: bytes,
        secret: Optional[bytes] = None,
        shutdown: Optional[Checkpoint] = None,
    ) -> None:
        """Load and start an app on a TKey in firmware mode.

        The firmware replies to the last data chunk with the BLAKE2s digest
        of what it received, which must match the local digest of the image.
        ``shutdown`` is checked before every data chunk.

        Raises:
            ValueError: If the image is empty or larger than APP_MAX_SIZE.
            ProtocolError: On a bad status or a digest mismatch.
        """
        if not binary:
            raise ValueError("App binary is empty")
        if len(binary) > APP_MAX_SIZE:
            raise ValueError(f"App too big: {len(binary)} > {APP_MAX_SIZE} bytes")

        header = struct.pack("<I", len(binary))
        if secret:
            header += b"\x01" + hash_uss(secret)
        else:
            header += b"\x00"
        data = self.exchange(proto.FW_CMD_LOAD_APP, header, proto.FW_RSP_LOAD_APP)
        _check_status(data, proto.FW_RSP_LOAD_APP)

        chunk_size = proto.FW_CMD_LOAD_APP_DATA.max_payload
        digest = b""
        for offset in range(0, len(binary), chunk_size):
            if shutdown is not None:
                shutdown.check()
            last = offset + chunk_size >= len(binary)
            rsp = proto.FW_RSP_LOAD_APP_DATA_READY if last else proto.FW_RSP_LOAD_APP_DATA
            data = self.exchange(
                proto.FW_CMD_LOAD_APP_DATA, binary[offset:offset + chunk_size], rsp
            )
            _check_status(data, rsp)
            if last:
                digest = data[1:33]

        expected = hashlib.blake2s(binary, digest_size=32).digest()
        if digest != expected:
            raise ProtocolError(
                f"Digest of loaded app differs: device {digest.hex()}, local {expected.hex()}"
            )
        logger.debug("App loaded, digest %s", digest.hex())

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._conn.close()
        except (serial.SerialException, OSError) as e:
            raise ConnectionError(f"Could not close {self.port}: {e}", e)


def _check_status(data: bytes, rsp: proto.Command) -> None:
    if not data or data[0] != proto.STATUS_OK:
        raise ProtocolError(f"{rsp} status not OK")


def unpack_name_version(data: bytes) -> NameVersion:
    """Decode the 12 byte name0 | name1 | version (LE) block."""
    if len(data) < 12:
        raise ProtocolError(f"Name/version response too short: {len(data)} bytes")
    (version,) = struct.unpack_from("<I", data, 8)
    return NameVersion(name0=data[0:4], name1=data[4:8], version=version)
