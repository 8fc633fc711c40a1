"""Tests for the generate session lifecycle."""

import hashlib
import io
import os
import signal
from unittest.mock import Mock

import pytest

from tkey_random import proto
from tkey_random.exceptions import (
    ConnectionError,
    HashMismatchError,
    Interrupted,
    ProtocolError,
    UsageError,
)
from tkey_random.fetch import BinaryFileSink, HexConsoleSink
from tkey_random.lifecycle import RandomSession, ShutdownToken
from tkey_random.mock import MockTKey
from tkey_random.transport import hash_uss
from tkey_random.types import SessionState

APP = b"\x6f" * 1000


def _session(device, **kw):
    kw.setdefault("output", io.StringIO())
    return RandomSession(lambda: device, lambda: APP, **kw)


class TestShutdownToken:

    def test_first_signal_wins(self):
        token = ShutdownToken()
        assert not token.requested
        token.trigger(signal.SIGTERM)
        token.trigger(signal.SIGINT)
        assert token.requested
        with pytest.raises(Interrupted) as exc:
            token.check()
        assert exc.value.signum == signal.SIGTERM

    def test_handlers_restored(self):
        before = signal.getsignal(signal.SIGTERM)
        token = ShutdownToken()
        with token.installed():
            assert signal.getsignal(signal.SIGTERM) == token._handle
        assert signal.getsignal(signal.SIGTERM) == before

    def test_prompting_raises_from_handler(self):
        token = ShutdownToken()
        with token.installed():
            with pytest.raises(Interrupted):
                with token.prompting():
                    os.kill(os.getpid(), signal.SIGINT)
                    pytest.fail("prompt kept running after SIGINT")
        assert token.requested

    def test_prompting_after_request_raises_at_once(self):
        token = ShutdownToken()
        token.trigger(signal.SIGTERM)
        entered = False
        with pytest.raises(Interrupted):
            with token.prompting():
                entered = True
        assert not entered


class TestRandomSession:

    def test_generate_from_firmware_mode(self):
        device = MockTKey()
        out = io.StringIO()
        session = _session(device)
        result = session.run(300, HexConsoleSink(out))

        assert device.app_binary == APP
        assert device.uss is None
        assert len(result.random_data) == 300
        assert out.getvalue() == result.random_data.hex() + "\n"
        assert result.provenance.hash == hashlib.blake2s(result.random_data, digest_size=32).digest()
        assert result.pubkey is None and result.verification is None
        assert session.state == SessionState.CLOSED
        assert device.close_count == 1

    def test_signature_always_fetched(self):
        device = MockTKey(firmware_mode=False)
        _session(device).run(10, HexConsoleSink(io.StringIO()))
        assert device.signature_requests == 1
        assert proto.APP_CMD_GET_PUBKEY.name not in device.exchanges

    def test_with_signature_reports_and_verifies(self):
        device = MockTKey(firmware_mode=False)
        report = io.StringIO()
        result = _session(device, output=report).run(
            32, HexConsoleSink(io.StringIO()), want_signature=True
        )
        assert result.verification.verified
        assert result.pubkey == device.public_key
        lines = report.getvalue().splitlines()
        assert lines == [
            f"Public key: {device.public_key.hex()}",
            f"Signature: {result.provenance.signature.hex()}",
            f"Hash: {result.provenance.hash.hex()}",
        ]

    def test_uss_used_when_loading(self):
        device = MockTKey()
        _session(device, secret=lambda: b"my phrase").run(4, HexConsoleSink(io.StringIO()))
        assert device.uss == hash_uss(b"my phrase")

    def test_uss_ignored_when_app_running(self, caplog):
        device = MockTKey(firmware_mode=False)
        secret = Mock(return_value=b"phrase")
        _session(device, secret=secret).run(4, HexConsoleSink(io.StringIO()))
        secret.assert_not_called()
        assert "App already loaded" in caplog.text

    def test_wrong_app_running(self):
        device = MockTKey(firmware_mode=False, app_name=(b"tk1 ", b"sign"))
        session = _session(device)
        with pytest.raises(ProtocolError, match="unplug and plug") as exc:
            session.run(4, HexConsoleSink(io.StringIO()))
        assert exc.value.replug
        assert session.state == SessionState.ABORTED
        assert device.close_count == 1
        assert device.random_requests == []

    def test_open_failure(self):
        def opener():
            raise ConnectionError("Could not detect any TKey serial ports")

        session = RandomSession(opener, lambda: APP)
        with pytest.raises(ConnectionError):
            session.run(4, HexConsoleSink(io.StringIO()))
        assert session.state == SessionState.ABORTED

    def test_zero_bytes_never_connects(self):
        opener = Mock()
        session = RandomSession(opener, lambda: APP)
        with pytest.raises(UsageError):
            session.run(0, HexConsoleSink(io.StringIO()))
        opener.assert_not_called()
        assert session.state == SessionState.DISCONNECTED

    def test_failure_mid_fetch_leaves_partial_file(self, tmp_path):
        device = MockTKey(firmware_mode=False, fail_on=proto.APP_CMD_GET_RANDOM.name, fail_after=1)
        path = tmp_path / "random.bin"
        session = _session(device)
        with pytest.raises(ConnectionError):
            session.run(500, BinaryFileSink(str(path)))
        assert not path.exists()
        assert len((tmp_path / "random.bin.partial").read_bytes()) == 126
        assert session.state == SessionState.ABORTED
        assert device.close_count == 1

    def test_hash_mismatch_raised_after_close(self):
        device = MockTKey(firmware_mode=False, corrupt_hash=True)
        session = _session(device)
        with pytest.raises(HashMismatchError):
            session.run(32, HexConsoleSink(io.StringIO()), want_signature=True)
        assert device.close_count == 1
        assert session.state == SessionState.CLOSED

    def test_close_failure_is_logged(self, caplog):
        device = MockTKey(firmware_mode=False, close_error=True)
        session = _session(device)
        result = session.run(8, HexConsoleSink(io.StringIO()))
        assert len(result.random_data) == 8
        assert "Closing the session failed" in caplog.text
        assert session.state == SessionState.CLOSED

    def test_close_failure_does_not_mask_error(self):
        device = MockTKey(firmware_mode=False, close_error=True,
                          fail_on=proto.APP_CMD_GET_RANDOM.name)
        with pytest.raises(ConnectionError, match="Simulated transport failure"):
            _session(device).run(8, HexConsoleSink(io.StringIO()))
        assert device.close_count == 1

    def test_single_use(self):
        session = _session(MockTKey(firmware_mode=False))
        session.run(4, HexConsoleSink(io.StringIO()))
        with pytest.raises(RuntimeError):
            session.run(4, HexConsoleSink(io.StringIO()))

    def test_sigint_stops_between_chunks(self, tmp_path):
        device = MockTKey(
            firmware_mode=False,
            on_random=lambda count: os.kill(os.getpid(), signal.SIGINT),
        )
        before = signal.getsignal(signal.SIGINT)
        path = tmp_path / "random.bin"
        session = _session(device)
        with pytest.raises(Interrupted) as exc:
            session.run(1000, BinaryFileSink(str(path)))

        assert exc.value.signum == signal.SIGINT
        assert device.random_requests == [126]
        assert device.signature_requests == 0
        assert device.close_count == 1
        assert session.state == SessionState.ABORTED
        assert (tmp_path / "random.bin.partial").exists()
        assert signal.getsignal(signal.SIGINT) == before

    def test_sigint_during_secret_prompt(self):
        device = MockTKey()

        def secret():
            os.kill(os.getpid(), signal.SIGINT)
            return b"phrase"

        session = _session(device, secret=secret)
        with pytest.raises(Interrupted):
            session.run(32, HexConsoleSink(io.StringIO()))
        assert not device.app_loaded
        assert device.exchanges == [proto.FW_CMD_GET_NAME_VERSION.name]
        assert session.state == SessionState.ABORTED
        assert device.close_count == 1

    def test_sigint_during_app_load(self):
        device = MockTKey(
            on_load_chunk=lambda offset: os.kill(os.getpid(), signal.SIGINT) if offset == 0 else None,
        )
        session = _session(device)
        with pytest.raises(Interrupted):
            session.run(32, HexConsoleSink(io.StringIO()))
        assert device.load_chunks == 1
        assert not device.app_loaded
        assert device.exchanges == [proto.FW_CMD_GET_NAME_VERSION.name, proto.FW_CMD_LOAD_APP.name]
        assert device.random_requests == []
        assert device.close_count == 1
