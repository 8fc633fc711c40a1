"""Session lifecycle for one generate run.

``RandomSession`` drives a device through

    DISCONNECTED -> CONNECTED -> APP_READY -> FETCHING -> PROVENANCE_FETCHED -> CLOSED

with ABORTED reachable from every non-terminal state. The session is
closed exactly once on every path. SIGINT and SIGTERM only set a
``ShutdownToken``; the main flow checks it between device exchanges.
"""

import logging
import signal
import sys
import threading
from contextlib import contextmanager
from typing import IO, Callable, Iterator, Optional

from .client import RandomGen
from .exceptions import Interrupted, ProtocolError, StatusNotOKError, UsageError
from .fetch import RandomSink, fetch_random
from .provenance import fetch_pubkey, fetch_provenance
from .transport import DeviceSession
from .types import GenerateResult, SessionState
from .verify import verify_online

logger = logging.getLogger(__name__)

FIRMWARE_NAME = (b"tk1 ", b"mkdf")
APP_NAME = (b"tk1 ", b"rand")

_TRANSITIONS = {
    SessionState.DISCONNECTED: {SessionState.CONNECTED},
    SessionState.CONNECTED: {SessionState.APP_READY},
    SessionState.APP_READY: {SessionState.FETCHING},
    SessionState.FETCHING: {SessionState.PROVENANCE_FETCHED},
    SessionState.PROVENANCE_FETCHED: {SessionState.CLOSED},
}


class ShutdownToken:
    """One-shot shutdown request.

    Triggering is idempotent: only the first signal is recorded, later ones
    are no-ops. Inside :meth:`prompting` a signal also raises Interrupted
    from the handler, so blocking reads of user input end at once.
    """

    def __init__(self):
        self._event = threading.Event()
        self._prompting = False
        self.signum: Optional[int] = None

    @property
    def requested(self) -> bool:
        return self._event.is_set()

    def trigger(self, signum: Optional[int] = None) -> None:
        if not self._event.is_set():
            self.signum = signum
            self._event.set()

    def check(self) -> None:
        """Raise Interrupted if shutdown was requested."""
        if self._event.is_set():
            raise Interrupted(self.signum)

    def _handle(self, signum, frame) -> None:
        self.trigger(signum)
        if self._prompting:
            raise Interrupted(signum)

    @contextmanager
    def prompting(self) -> Iterator["ShutdownToken"]:
        """Let a signal interrupt the block immediately."""
        self.check()
        self._prompting = True
        try:
            yield self
        finally:
            self._prompting = False

    @contextmanager
    def installed(self, signals=(signal.SIGINT, signal.SIGTERM)) -> Iterator["ShutdownToken"]:
        """Route ``signals`` to this token while the block runs."""
        previous = {}
        if threading.current_thread() is threading.main_thread():
            for sig in signals:
                previous[sig] = signal.signal(sig, self._handle)
        else:
            logger.debug("Not in main thread, signal handlers not installed")
        try:
            yield self
        finally:
            for sig, handler in previous.items():
                signal.signal(sig, handler)


class RandomSession:
    """One connect, fetch, provenance, close run against a TKey.

    Usage:
        session = RandomSession(lambda: SerialSession.connect(port), load_app_binary)
        result = session.run(32, HexConsoleSink(), want_signature=True)

    A RandomSession is single use.
    """

    def __init__(
        self,
        opener: Callable[[], DeviceSession],
        app_binary: Callable[[], bytes],
        secret: Optional[Callable[[], bytes]] = None,
        shutdown: Optional[ShutdownToken] = None,
        logger: logging.Logger = logger,
        output: Optional[IO[str]] = None,
    ):
        """Initialize the lifecycle.

        Args:
            opener: Opens the device session. Called once.
            app_binary: Returns the app image; only called in firmware mode.
            secret: Returns the user supplied secret; only called when loading.
            shutdown: Token observed between exchanges. A new one if None.
            logger: Diagnostics sink.
            output: Stream for the public key / signature / hash report.
        """
        self._opener = opener
        self._app_binary = app_binary
        self._secret = secret
        self._shutdown = shutdown or ShutdownToken()
        self._log = logger
        self._output = output
        self._state = SessionState.DISCONNECTED
        self._session: Optional[DeviceSession] = None
        self._client: Optional[RandomGen] = None
        self._closed = False

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def shutdown(self) -> ShutdownToken:
        return self._shutdown

    def _transition(self, new: SessionState) -> None:
        if new == SessionState.ABORTED:
            if self._state.is_terminal():
                return
        elif new not in _TRANSITIONS.get(self._state, set()):
            raise RuntimeError(f"Invalid session transition {self._state.value} -> {new.value}")
        self._log.debug("Session %s -> %s", self._state.value, new.value)
        self._state = new

    def run(self, total_bytes: int, sink: RandomSink, want_signature: bool = False) -> GenerateResult:
        """Fetch ``total_bytes`` random bytes and the session's provenance.

        Args:
            total_bytes: Bytes to fetch, at least 1.
            sink: Receives the random data as it arrives.
            want_signature: Also fetch the public key, report and verify.

        Returns:
            GenerateResult with the random data, provenance and, when asked
            for, the public key and verification result.

        Raises:
            UsageError: If total_bytes < 1. No device is contacted.
            ConnectionError: If the device cannot be opened.
            ProtocolError: On protocol failures or an unexpected app.
            Interrupted: If SIGINT/SIGTERM arrived.
            HashMismatchError: If the reported hash does not match the data.
            SignatureInvalidError: If the signature does not verify.
        """
        if total_bytes < 1:
            raise UsageError(f"Bytes to generate must be at least 1, got {total_bytes}")
        if self._state != SessionState.DISCONNECTED:
            raise RuntimeError("RandomSession is single use")

        pubkey = verification = None
        with self._shutdown.installed():
            try:
                self._connect()
                self._shutdown.check()
                self._ensure_app()

                self._transition(SessionState.FETCHING)
                random_data = fetch_random(
                    self._client, total_bytes, sink, shutdown=self._shutdown, logger=self._log
                )
                # Always fetch the signature and hash to re-init the hash on the TKey
                provenance = fetch_provenance(self._client, logger=self._log)
                self._transition(SessionState.PROVENANCE_FETCHED)

                if want_signature:
                    self._shutdown.check()
                    pubkey = fetch_pubkey(self._client, logger=self._log)
                    self._report(pubkey, provenance.signature, provenance.hash)
                    verification = verify_online(random_data, provenance, pubkey, logger=self._log)
            except BaseException:
                self._transition(SessionState.ABORTED)
                raise
            finally:
                self._close()

        if verification is not None:
            verification.raise_for_failure()
        return GenerateResult(
            random_data=random_data,
            provenance=provenance,
            pubkey=pubkey,
            verification=verification,
        )

    def _connect(self) -> None:
        self._session = self._opener()
        self._client = RandomGen(self._session)
        self._transition(SessionState.CONNECTED)

    def _is_firmware_mode(self) -> bool:
        try:
            name = self._session.get_name_version()
        except StatusNotOKError:
            return False
        except ProtocolError as e:
            self._log.warning("GetNameVersion failed: %s", e)
            return False
        return name.matches(*FIRMWARE_NAME)

    def _ensure_app(self) -> None:
        if self._is_firmware_mode():
            secret = None
            if self._secret is not None:
                with self._shutdown.prompting():
                    secret = self._secret()
            self._shutdown.check()
            self._session.load_app(self._app_binary(), secret, shutdown=self._shutdown)
        elif self._secret is not None:
            self._log.warning(
                "Warning: App already loaded. Use of USS not possible. "
                "Continuing with already loaded app..."
            )

        try:
            name = self._client.get_app_name_version_sync()
        except ProtocolError as e:
            self._log.warning("GetAppNameVersion failed: %s", e)
            name = None
        if name is None or not name.matches(*APP_NAME):
            raise ProtocolError(
                "The TKey may already be running an app, but not the expected random-app",
                replug=True,
            )
        self._log.debug("Running app %s", name)
        self._transition(SessionState.APP_READY)

    def _report(self, pubkey: bytes, signature: bytes, digest: bytes) -> None:
        out = self._output or sys.stdout
        out.write(f"Public key: {pubkey.hex()}\n")
        out.write(f"Signature: {signature.hex()}\n")
        out.write(f"Hash: {digest.hex()}\n")
        out.flush()

    def _close(self) -> None:
        """Close the session exactly once. Failures are logged, not raised."""
        if self._closed or self._session is None:
            return
        self._closed = True
        try:
            self._client.close()
        except Exception as e:
            self._log.error("Closing the session failed: %s", e)
        if not self._state.is_terminal():
            self._transition(SessionState.CLOSED)
