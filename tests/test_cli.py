"""End-to-end tests of the command line against a mock device."""

from unittest.mock import patch

import pytest

from tkey_random import cli
from tkey_random.config import ENV_APP_BIN, ENV_PORT, ENV_SPEED
from tkey_random.exceptions import ConnectionError
from tkey_random.mock import MockTKey


@pytest.fixture
def device(monkeypatch, tmp_path):
    app = tmp_path / "app.bin"
    app.write_bytes(b"\x13" * 2048)
    monkeypatch.setenv(ENV_APP_BIN, str(app))
    monkeypatch.delenv(ENV_PORT, raising=False)
    monkeypatch.delenv(ENV_SPEED, raising=False)

    mock = MockTKey()
    opened = []

    def open_device(port=None, speed=None):
        opened.append((port, speed))
        return mock

    monkeypatch.setattr(cli.SerialSession, "connect", staticmethod(open_device))
    mock.opened = opened
    return mock


def _report(stdout):
    fields = {}
    for line in stdout.splitlines():
        key, sep, value = line.partition(": ")
        if sep:
            fields[key] = value
    return fields


class TestUsage:

    def test_no_arguments(self, capsys):
        assert cli.main([]) == cli.EXIT_USAGE
        assert "generate" in capsys.readouterr().err

    def test_help(self):
        assert cli.main(["--help"]) == cli.EXIT_OK

    def test_unknown_command(self):
        assert cli.main(["shuffle"]) == cli.EXIT_USAGE

    @pytest.mark.parametrize("value", ["abc", "0", "-3", "1.5"])
    def test_bad_byte_count(self, device, value):
        assert cli.main(["generate", "--", value]) == cli.EXIT_USAGE
        assert device.opened == []

    def test_uss_options_exclusive(self, device):
        assert cli.main(["generate", "4", "--uss", "--uss-file", "x"]) == cli.EXIT_USAGE

    def test_verify_needs_three_files(self):
        assert cli.main(["verify", "a", "b"]) == cli.EXIT_USAGE


class TestGenerate:

    def test_hex_to_stdout(self, device, capsys):
        assert cli.main(["generate", "40", "--port", "/dev/ttyACM9"]) == cli.EXIT_OK
        out = capsys.readouterr().out.strip()
        assert len(out) == 80
        assert out == out.lower()
        assert device.opened == [("/dev/ttyACM9", 62500)]
        assert device.close_count == 1

    def test_no_device(self, monkeypatch, capsys):
        def open_device(port=None, speed=None):
            raise ConnectionError("Could not detect any TKey serial ports")

        monkeypatch.setattr(cli.SerialSession, "connect", staticmethod(open_device))
        assert cli.main(["generate", "4"]) == cli.EXIT_FAILURE
        assert "Error generating random data" in capsys.readouterr().err

    def test_uss_from_file(self, device, tmp_path):
        uss = tmp_path / "uss"
        uss.write_bytes(b"phrase")
        assert cli.main(["generate", "4", "--uss-file", str(uss)]) == cli.EXIT_OK
        assert device.uss is not None

    def test_hash_mismatch_fails(self, device):
        device.corrupt_hash = True
        assert cli.main(["generate", "16", "-s"]) == cli.EXIT_FAILURE

    def test_empty_app_image(self, device, monkeypatch, tmp_path, capsys):
        empty = tmp_path / "empty.bin"
        empty.write_bytes(b"")
        monkeypatch.setenv(ENV_APP_BIN, str(empty))
        assert cli.main(["generate", "4"]) == cli.EXIT_FAILURE
        assert "app image is empty" in capsys.readouterr().err
        assert not device.app_loaded
        assert device.close_count == 1

    def test_oversized_app_image(self, device, monkeypatch, tmp_path):
        big = tmp_path / "big.bin"
        big.write_bytes(b"\x00" * (100 * 1024 + 1))
        monkeypatch.setenv(ENV_APP_BIN, str(big))
        assert cli.main(["generate", "4"]) == cli.EXIT_FAILURE
        assert not device.app_loaded

    def test_unsupported_speed(self, monkeypatch, capsys):
        with patch("tkey_random.transport.serial.Serial",
                   side_effect=ValueError("Not a valid baudrate: 12")):
            assert cli.main(["generate", "4", "-p", "/dev/ttyACM0", "--speed", "12"]) == cli.EXIT_FAILURE
        assert "Could not open /dev/ttyACM0" in capsys.readouterr().err

    def test_uss_phrase_mismatch_is_usage_error(self, device):
        with patch("tkey_random.config.getpass.getpass", side_effect=["one", "two"]):
            assert cli.main(["generate", "4", "--uss"]) == cli.EXIT_USAGE
        assert not device.app_loaded
        assert device.close_count == 1


class TestGenerateThenVerify:

    def test_signed_file_verifies_offline(self, device, tmp_path, capsys):
        out = tmp_path / "random.bin"
        assert cli.main(["generate", "32", "-s", "-f", str(out)]) == cli.EXIT_OK
        report = _report(capsys.readouterr().out)
        assert len(out.read_bytes()) == 32
        assert not (tmp_path / "random.bin.partial").exists()

        sig = tmp_path / "sig.hex"
        pub = tmp_path / "pubkey.hex"
        sig.write_text(report["Signature"] + "\n")
        pub.write_text(report["Public key"] + "\n")
        assert cli.main(["verify", "-b", str(out), str(sig), str(pub)]) == cli.EXIT_OK
        assert "Signature verified." in capsys.readouterr().err

        data = bytearray(out.read_bytes())
        data[0] ^= 0x80
        out.write_bytes(bytes(data))
        assert cli.main(["verify", "-b", str(out), str(sig), str(pub)]) == cli.EXIT_FAILURE
        assert "Error verifying" in capsys.readouterr().err

    def test_hex_message(self, device, tmp_path, capsys):
        assert cli.main(["generate", "16", "-s"]) == cli.EXIT_OK
        lines = capsys.readouterr().out.splitlines()
        report = _report("\n".join(lines))
        msg = tmp_path / "random.hex"
        msg.write_text(lines[0] + "\n")
        sig = tmp_path / "sig.hex"
        pub = tmp_path / "pubkey.hex"
        sig.write_text(report["Signature"])
        pub.write_text(report["Public key"])
        assert cli.main(["verify", str(msg), str(sig), str(pub)]) == cli.EXIT_OK
