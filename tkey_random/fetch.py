"""Chunked retrieval of random bytes.

The device returns at most MAX_PAYLOAD bytes per exchange, so a request is
split into rounds. Every chunk is forwarded to a sink as soon as it arrives.
"""

import logging
import os
import sys
from typing import IO, Optional, Protocol

from pydantic import ValidationError

from .exceptions import FileError, ProtocolError, UsageError
from .transport import Checkpoint
from .types import MAX_PAYLOAD, RandomRequest

logger = logging.getLogger(__name__)


class RandomSource(Protocol):
    def get_random_sync(self, count: int) -> bytes:
        ...


class RandomSink:
    """Destination for random chunks.

    Used as a context manager: a clean exit finishes the output, an
    exception aborts it.
    """

    def open(self) -> None:
        pass

    def write(self, chunk: bytes) -> None:
        raise NotImplementedError

    def finish(self) -> None:
        pass

    def abort(self) -> None:
        pass

    def __enter__(self) -> "RandomSink":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self.finish()
        else:
            self.abort()
        return False


class HexConsoleSink(RandomSink):
    """Lowercase hex without delimiters on a text stream."""

    def __init__(self, stream: Optional[IO[str]] = None):
        self._stream = stream

    @property
    def stream(self) -> IO[str]:
        return self._stream or sys.stdout

    def write(self, chunk: bytes) -> None:
        self.stream.write(chunk.hex())
        self.stream.flush()

    def finish(self) -> None:
        self.stream.write("\n")
        self.stream.flush()


class BinaryFileSink(RandomSink):
    """Raw bytes to a file.

    Data goes to ``<path>.partial`` and is only moved to ``path`` once the
    whole request has been written. An aborted run leaves the ``.partial``
    file behind.
    """

    def __init__(self, path: str):
        self.path = path
        self.partial_path = f"{path}.partial"
        self._file: Optional[IO[bytes]] = None

    def open(self) -> None:
        try:
            self._file = open(self.partial_path, "wb")
        except OSError as e:
            raise FileError(self.partial_path, e)

    def write(self, chunk: bytes) -> None:
        try:
            self._file.write(chunk)
        except OSError as e:
            raise FileError(self.partial_path, e)

    def finish(self) -> None:
        try:
            self._file.close()
            os.replace(self.partial_path, self.path)
        except OSError as e:
            raise FileError(self.path, e)

    def abort(self) -> None:
        if self._file is not None and not self._file.closed:
            self._file.close()
        logger.warning("Incomplete random data left in %s", self.partial_path)


def fetch_random(
    source: RandomSource,
    total_bytes: int,
    sink: RandomSink,
    *,
    max_payload: int = MAX_PAYLOAD,
    shutdown: Optional[Checkpoint] = None,
    logger: logging.Logger = logger,
) -> bytes:
    """Fetch exactly ``total_bytes`` random bytes.

    Args:
        source: Anything answering get_random_sync, normally a RandomGen.
        total_bytes: Bytes to fetch, at least 1.
        sink: Receives each chunk as it arrives.
        max_payload: Upper bound for a single request.
        shutdown: Checked before every exchange; raises to stop the loop.
        logger: Diagnostics sink.

    Returns:
        The concatenated stream, exactly ``total_bytes`` long. This is the
        preimage the device hashes.

    Raises:
        UsageError: If total_bytes < 1 or max_payload is outside 1..MAX_PAYLOAD.
        ProtocolError: On an oversized chunk or two empty chunks in a row.
    """
    try:
        request = RandomRequest(total_bytes=total_bytes, max_payload=max_payload)
    except ValidationError as e:
        details = "; ".join(f"{err['loc'][0]}: {err['msg']}" for err in e.errors())
        raise UsageError(f"Invalid random request: {details}")
    logger.debug(
        "Fetching %d bytes in at least %d requests",
        request.total_bytes, len(request.chunk_sizes()),
    )

    stream = bytearray()
    remaining = request.total_bytes
    empty_rounds = 0
    with sink:
        while remaining > 0:
            if shutdown is not None:
                shutdown.check()
            want = min(remaining, request.max_payload)
            chunk = source.get_random_sync(want)
            if len(chunk) > want:
                raise ProtocolError(f"Asked for {want} random bytes, got {len(chunk)}")
            if not chunk:
                empty_rounds += 1
                if empty_rounds >= 2:
                    raise ProtocolError("Device returned no random data twice in a row")
                continue
            empty_rounds = 0
            if len(chunk) < want:
                logger.debug("Short read: %d of %d bytes", len(chunk), want)

            stream += chunk
            sink.write(chunk)
            remaining -= len(chunk)

    logger.debug("Fetched %d random bytes", len(stream))
    return bytes(stream)
