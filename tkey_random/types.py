"""Type definitions for the TKey random generator client.

Device reports and verification outcomes are Pydantic models so malformed
data is rejected at construction.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from .exceptions import HashMismatchError, SignatureInvalidError

# Largest random payload in one GET_RANDOM exchange: 128 byte response frame
# minus response code and status byte.
MAX_PAYLOAD = 128 - (1 + 1)

SIGNATURE_SIZE = 64
HASH_SIZE = 32
PUBKEY_SIZE = 32


class NameVersion(BaseModel):
    """Identity reported by the firmware or by a running app."""
    name0: bytes = Field(..., min_length=4, max_length=4)
    name1: bytes = Field(..., min_length=4, max_length=4)
    version: int = Field(default=0, ge=0)

    class Config:
        frozen = True

    def matches(self, name0: bytes, name1: bytes) -> bool:
        """Compare names only; the version is not part of the identity."""
        return self.name0 == name0 and self.name1 == name1

    def __str__(self) -> str:
        names = (self.name0 + self.name1).decode("ascii", errors="replace")
        return f"{names} v{self.version}"


class RandomRequest(BaseModel):
    """How many bytes to fetch and how many fit in one exchange."""
    total_bytes: int = Field(..., ge=1, description="Total random bytes requested")
    max_payload: int = Field(default=MAX_PAYLOAD, ge=1, le=MAX_PAYLOAD, description="Bytes per round-trip")

    class Config:
        frozen = True

    def chunk_sizes(self) -> list[int]:
        """Request sizes issued when the device always returns full chunks."""
        full, rest = divmod(self.total_bytes, self.max_payload)
        return [self.max_payload] * full + ([rest] if rest else [])


class ProvenancePackage(BaseModel):
    """Hash and Ed25519 signature the device reports for a session's random stream."""
    signature: bytes = Field(..., min_length=SIGNATURE_SIZE, max_length=SIGNATURE_SIZE)
    hash: bytes = Field(..., min_length=HASH_SIZE, max_length=HASH_SIZE)

    class Config:
        frozen = True


class VerificationResult(BaseModel):
    """Outcome of the hash equality and signature checks.

    The two checks are independent. ``hash_ok`` is None when there is no
    device-reported hash to compare against (offline verification).
    """
    signature_ok: bool
    hash_ok: Optional[bool] = None
    digest: bytes = Field(..., description="BLAKE2s-256 digest computed locally")
    reported_hash: Optional[bytes] = Field(default=None, description="Digest reported by the device")

    class Config:
        frozen = True

    @property
    def verified(self) -> bool:
        return self.signature_ok and self.hash_ok is not False

    def raise_for_failure(self) -> None:
        """Raise the primary failure, if any.

        A hash mismatch wins over a bad signature since it means the
        signature does not cover the bytes we hold.
        """
        if self.hash_ok is False:
            raise HashMismatchError(self.reported_hash or b"", self.digest)
        if not self.signature_ok:
            raise SignatureInvalidError("Signature FAILED verification")


class SessionState(str, Enum):
    """States of one device session."""
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    APP_READY = "app_ready"
    FETCHING = "fetching"
    PROVENANCE_FETCHED = "provenance_fetched"
    CLOSED = "closed"
    ABORTED = "aborted"

    def is_terminal(self) -> bool:
        return self in (SessionState.CLOSED, SessionState.ABORTED)


class GenerateResult(BaseModel):
    """Everything one generate session produced."""
    random_data: bytes
    provenance: ProvenancePackage
    pubkey: Optional[bytes] = None
    verification: Optional[VerificationResult] = None

    class Config:
        frozen = True
