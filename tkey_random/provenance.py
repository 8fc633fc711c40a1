"""Provenance retrieval after a random fetch.

The random app keeps a running BLAKE2s over every byte it hands out. Asking
for the signature finalizes that hash and re-initializes it on the device.
Skipping the call would make the next session's hash cover this session's
bytes too, so it is made once per session whether or not the caller wants
the signature.
"""

import logging
from typing import Protocol

from .exceptions import ProtocolError
from .types import PUBKEY_SIZE, ProvenancePackage

logger = logging.getLogger(__name__)


class ProvenanceSource(Protocol):
    def get_signature_sync(self) -> ProvenancePackage:
        ...

    def get_pubkey_sync(self) -> bytes:
        ...


def fetch_provenance(source: ProvenanceSource, logger: logging.Logger = logger) -> ProvenancePackage:
    """Fetch hash and signature; resets the device hash as a side effect."""
    provenance = source.get_signature_sync()
    logger.debug("Device hash %s", provenance.hash.hex())
    return provenance


def fetch_pubkey(source: ProvenanceSource, logger: logging.Logger = logger) -> bytes:
    pubkey = source.get_pubkey_sync()
    if len(pubkey) != PUBKEY_SIZE:
        raise ProtocolError(f"Public key has {len(pubkey)} bytes, expected {PUBKEY_SIZE}")
    logger.debug("Device public key %s", pubkey.hex())
    return pubkey
