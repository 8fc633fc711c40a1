"""TKey framing protocol.

Every exchange is a single frame: one header byte followed by a command
payload of 1, 4, 32 or 128 bytes. The header packs a frame ID, the
destination endpoint, a response-not-OK bit and the payload length code.
The first payload byte is the command or response code.
"""

from dataclasses import dataclass
from enum import IntEnum

from .exceptions import ProtocolError, StatusNotOKError

FRAME_ID = 2
STATUS_OK = 0
STATUS_BAD = 1

_NOK_BIT = 0x04
_RESERVED_BIT = 0x80


class Endpoint(IntEnum):
    HW_IFPGA = 0
    HW_AFPGA = 1
    FIRMWARE = 2
    APP = 3


class CmdLen(IntEnum):
    LEN1 = 0
    LEN4 = 1
    LEN32 = 2
    LEN128 = 3

    @property
    def bytelen(self) -> int:
        return (1, 4, 32, 128)[self.value]


@dataclass(frozen=True)
class Command:
    code: int
    name: str
    cmdlen: CmdLen
    endpoint: Endpoint

    @property
    def max_payload(self) -> int:
        """Bytes available after the code byte."""
        return self.cmdlen.bytelen - 1

    def __str__(self) -> str:
        return self.name


def _fw(code: int, name: str, cmdlen: CmdLen) -> Command:
    return Command(code, name, cmdlen, Endpoint.FIRMWARE)


def _app(code: int, name: str, cmdlen: CmdLen) -> Command:
    return Command(code, name, cmdlen, Endpoint.APP)


# Firmware
FW_CMD_GET_NAME_VERSION = _fw(0x01, "cmdGetNameVersion", CmdLen.LEN1)
FW_RSP_GET_NAME_VERSION = _fw(0x02, "rspGetNameVersion", CmdLen.LEN32)
FW_CMD_LOAD_APP = _fw(0x03, "cmdLoadApp", CmdLen.LEN128)
FW_RSP_LOAD_APP = _fw(0x04, "rspLoadApp", CmdLen.LEN4)
FW_CMD_LOAD_APP_DATA = _fw(0x05, "cmdLoadAppData", CmdLen.LEN128)
FW_RSP_LOAD_APP_DATA = _fw(0x06, "rspLoadAppData", CmdLen.LEN4)
FW_RSP_LOAD_APP_DATA_READY = _fw(0x07, "rspLoadAppDataReady", CmdLen.LEN128)

# Random generator app
APP_CMD_GET_NAME_VERSION = _app(0x01, "cmdGetNameVersion", CmdLen.LEN1)
APP_RSP_GET_NAME_VERSION = _app(0x02, "rspGetNameVersion", CmdLen.LEN32)
APP_CMD_GET_RANDOM = _app(0x03, "cmdGetRandom", CmdLen.LEN4)
APP_RSP_GET_RANDOM = _app(0x04, "rspGetRandom", CmdLen.LEN128)
APP_CMD_GET_PUBKEY = _app(0x05, "cmdGetPubkey", CmdLen.LEN1)
APP_RSP_GET_PUBKEY = _app(0x06, "rspGetPubkey", CmdLen.LEN128)
APP_CMD_GET_SIG = _app(0x07, "cmdGetSig", CmdLen.LEN1)
APP_RSP_GET_SIG = _app(0x08, "rspGetSig", CmdLen.LEN128)
APP_RSP_UNKNOWN_CMD = _app(0xFF, "rspUnknownCmd", CmdLen.LEN1)


@dataclass(frozen=True)
class FrameHeader:
    frame_id: int
    endpoint: Endpoint
    cmdlen: CmdLen
    response_not_ok: bool = False

    def pack(self) -> int:
        b = (self.frame_id << 5) | (int(self.endpoint) << 3) | int(self.cmdlen)
        if self.response_not_ok:
            b |= _NOK_BIT
        return b

    @classmethod
    def unpack(cls, b: int) -> "FrameHeader":
        if b & _RESERVED_BIT:
            raise ProtocolError(f"Reserved bit set in frame header 0x{b:02x}")
        return cls(
            frame_id=(b >> 5) & 0x03,
            endpoint=Endpoint((b >> 3) & 0x03),
            cmdlen=CmdLen(b & 0x03),
            response_not_ok=bool(b & _NOK_BIT),
        )


def build_frame(cmd: Command, payload: bytes = b"", frame_id: int = FRAME_ID) -> bytes:
    """Build a complete frame: header, code, payload zero-padded to the length code."""
    if len(payload) > cmd.max_payload:
        raise ValueError(
            f"{cmd} payload too long: {len(payload)} > {cmd.max_payload}"
        )
    hdr = FrameHeader(frame_id, cmd.endpoint, cmd.cmdlen)
    body = bytes([cmd.code]) + payload
    return bytes([hdr.pack()]) + body.ljust(cmd.cmdlen.bytelen, b"\x00")


def check_response(hdr: FrameHeader, body: bytes, expected: Command, frame_id: int = FRAME_ID) -> bytes:
    """Validate a received frame against the expected response.

    Returns the payload following the response code.
    """
    if hdr.response_not_ok:
        raise StatusNotOKError(str(expected))
    if hdr.cmdlen != expected.cmdlen:
        raise ProtocolError(
            f"Expected cmdlen {expected.cmdlen.bytelen} for {expected}, got {hdr.cmdlen.bytelen}"
        )
    if hdr.endpoint != expected.endpoint:
        raise ProtocolError(f"Message not meant for us: endpoint {hdr.endpoint.name}")
    if hdr.frame_id != frame_id:
        raise ProtocolError(f"Expected frame ID {frame_id}, got {hdr.frame_id}")
    if len(body) != expected.cmdlen.bytelen:
        raise ProtocolError(f"Short frame for {expected}: {len(body)} bytes")
    if body[0] != expected.code:
        raise ProtocolError(f"Expected {expected} (0x{expected.code:02x}), got 0x{body[0]:02x}")
    return body[1:]
