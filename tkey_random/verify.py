"""Hash and signature verification of random data.

The device signs the BLAKE2s-256 digest of the random stream, not the
stream itself. Both verifiers recompute that digest locally.
"""

import binascii
import hashlib
import hmac
import logging
from typing import Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from .exceptions import FileError, FormatError
from .types import PUBKEY_SIZE, SIGNATURE_SIZE, ProvenancePackage, VerificationResult

logger = logging.getLogger(__name__)


def blake2s_256(data: bytes) -> bytes:
    return hashlib.blake2s(data, digest_size=32).digest()


def verify_ed25519(pubkey: bytes, message: bytes, signature: bytes) -> bool:
    """Check an Ed25519 signature. Never raises on bad input."""
    try:
        Ed25519PublicKey.from_public_bytes(pubkey).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def verify_online(
    random_data: bytes,
    provenance: ProvenancePackage,
    pubkey: bytes,
    logger: logging.Logger = logger,
) -> VerificationResult:
    """Verify device-reported provenance against the bytes we received.

    Both checks always run. A hash mismatch is the primary failure; the
    signature result over the reported hash is still recorded for
    diagnostics.
    """
    digest = blake2s_256(random_data)
    hash_ok = hmac.compare_digest(digest, provenance.hash)
    if not hash_ok:
        logger.error("Hash FAILED verification: local %s", digest.hex())
    signature_ok = verify_ed25519(pubkey, provenance.hash, provenance.signature)
    if signature_ok:
        logger.info("Signature verified.")
    else:
        logger.error("Signature FAILED verification")

    return VerificationResult(
        signature_ok=signature_ok,
        hash_ok=hash_ok,
        digest=digest,
        reported_hash=provenance.hash,
    )


def _read(path: str) -> bytes:
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise FileError(path, e)


def read_hex_file(path: str, size: Optional[int] = None, what: str = "data") -> bytes:
    """Read a hex text file with surrounding newlines stripped.

    Raises:
        FileError: If the file cannot be read.
        FormatError: If the content is not hex, or does not decode to ``size`` bytes.
    """
    text = _read(path).strip(b"\r\n")
    try:
        data = binascii.unhexlify(text)
    except (binascii.Error, ValueError) as e:
        raise FormatError(f"Could not decode {what} in {path}: {e}")
    if size is not None and len(data) != size:
        raise FormatError(
            f"Invalid length of {what}. Expected {size} bytes, got {len(data)} bytes"
        )
    return data


def verify_files(
    message_path: str,
    signature_path: str,
    pubkey_path: str,
    is_binary: bool = False,
    logger: logging.Logger = logger,
) -> VerificationResult:
    """Verify previously generated random data offline.

    Args:
        message_path: Random data, raw when ``is_binary`` else hex text.
        signature_path: 64 byte Ed25519 signature as hex text.
        pubkey_path: 32 byte Ed25519 public key as hex text.
        is_binary: Message file format.
        logger: Diagnostics sink.

    Returns:
        VerificationResult with ``hash_ok`` None, since there is no reported
        hash to compare against.

    Raises:
        FileError: If a file cannot be read.
        FormatError: On bad hex or a wrong signature/public key length.
    """
    signature = read_hex_file(signature_path, SIGNATURE_SIZE, "signature")
    pubkey = read_hex_file(pubkey_path, PUBKEY_SIZE, "public key")
    logger.info("Public key: %s", pubkey.hex())
    logger.info("Signature: %s", signature.hex())

    if is_binary:
        message = _read(message_path)
    else:
        message = read_hex_file(message_path, what="message")

    digest = blake2s_256(message)
    logger.info("BLAKE2s hash: %s", digest.hex())

    return VerificationResult(
        signature_ok=verify_ed25519(pubkey, digest, signature),
        digest=digest,
    )
