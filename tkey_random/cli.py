"""Command line front end: ``tkey-random generate`` and ``tkey-random verify``.

Exit codes: 0 success, 2 usage error, 1 operational failure.
"""

import argparse
import logging
import sys
from typing import Optional, Sequence

from . import setup_logging
from .config import GenerateConfig, VerifyConfig, load_app_binary
from .exceptions import Interrupted, TKeyRandomError, UsageError
from .fetch import BinaryFileSink, HexConsoleSink
from .lifecycle import RandomSession
from .transport import SERIAL_SPEED, SerialSession
from .verify import verify_files

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


DESCRIPTION = """\
Fetch random numbers from the TRNG on the Tillitis TKey. The random
generator app is bundled with this program; it is loaded onto the TKey and
started.

The generated data can be signed with an Ed25519 private key derived on the
TKey. Previously generated data can be verified from files without a TKey
connected.
"""

GENERATE_DESCRIPTION = """\
Generate BYTES of random data and optionally a signature proving its origin.
The random data is hashed with BLAKE2s on the TKey and the hash is signed
with Ed25519. Output is hex on stdout, or binary to FILE.
"""

VERIFY_DESCRIPTION = """\
Verify the Ed25519 signature of previously generated random data. Does not
need a connected TKey. FILE is hashed with BLAKE2s and the signature is
checked over the hash with the public key.

FILE is binary (-b) or hex. SIG-FILE holds a 64 byte signature in hex and
PUBKEY-FILE a 32 byte public key in hex. Newlines are stripped.
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tkey-random",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="<command>")

    gen = sub.add_parser(
        "generate",
        help="Generate random data",
        description=GENERATE_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    gen.add_argument("bytes", metavar="BYTES", help="Number of random bytes to generate")
    gen.add_argument("-p", "--port", metavar="PATH",
                     help="Serial port device. Auto-detected when not given.")
    gen.add_argument("--speed", metavar="BPS", type=int,
                     help=f"Serial port speed in bits per second (default {SERIAL_SPEED}).")
    gen.add_argument("-s", "--signature", action="store_true",
                     help="Get the signature of the generated random data.")
    gen.add_argument("-f", "--file", metavar="FILE",
                     help="Output random data as binary to FILE.")
    uss = gen.add_mutually_exclusive_group()
    uss.add_argument("--uss", action="store_true",
                     help="Type a phrase to be hashed as the User Supplied Secret. "
                          "A different USS gives a different random sequence and signing key.")
    uss.add_argument("--uss-file", metavar="FILE",
                     help="Hash the contents of FILE as the USS, '-' for stdin. "
                          "Contents are used unmodified.")

    ver = sub.add_parser(
        "verify",
        help="Verify signature of previously generated data",
        description=VERIFY_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ver.add_argument("message_file", metavar="FILE")
    ver.add_argument("signature_file", metavar="SIG-FILE")
    ver.add_argument("pubkey_file", metavar="PUBKEY-FILE")
    ver.add_argument("-b", "--binary", action="store_true",
                     help="FILE is binary instead of hex.")
    return parser


def _parse_byte_count(value: str) -> int:
    try:
        return int(value, 10)
    except ValueError:
        raise UsageError("Argument needs to be integer.")


def cmd_generate(args: argparse.Namespace) -> int:
    try:
        config = GenerateConfig.create(
            byte_count=_parse_byte_count(args.bytes),
            port=args.port,
            speed=args.speed,
            output_file=args.file,
            show_signature=args.signature,
            enter_uss=args.uss,
            uss_file=args.uss_file,
        )
    except UsageError as e:
        logger.error("%s", e)
        return EXIT_USAGE

    if config.output_file:
        sink = BinaryFileSink(config.output_file)
        logger.info("Writing %d bytes of random data to: %s", config.byte_count, config.output_file)
    else:
        sink = HexConsoleSink()
        logger.info("Random data follows on stdout...\n")

    session = RandomSession(
        opener=lambda: SerialSession.connect(config.port, config.speed),
        app_binary=load_app_binary,
        secret=config.secret_source(),
    )
    try:
        session.run(config.byte_count, sink, want_signature=config.show_signature)
    except Interrupted as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    except UsageError as e:
        logger.error("%s", e)
        return EXIT_USAGE
    except TKeyRandomError as e:
        logger.error("Error generating random data: %s", e)
        return EXIT_FAILURE
    return EXIT_OK


def cmd_verify(args: argparse.Namespace) -> int:
    config = VerifyConfig.create(
        message_file=args.message_file,
        signature_file=args.signature_file,
        pubkey_file=args.pubkey_file,
        is_binary=args.binary,
    )
    logger.info("Verifying signature ...")
    try:
        result = verify_files(
            config.message_file, config.signature_file, config.pubkey_file, config.is_binary
        )
        result.raise_for_failure()
    except TKeyRandomError as e:
        logger.error("Error verifying: %s", e)
        return EXIT_FAILURE
    logger.info("Signature verified.")
    return EXIT_OK


def main(argv: Optional[Sequence[str]] = None) -> int:
    setup_logging()
    parser = build_parser()
    argv = sys.argv[1:] if argv is None else list(argv)
    if not argv:
        parser.print_help(sys.stderr)
        return EXIT_USAGE

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EXIT_USAGE if e.code else EXIT_OK

    if args.command == "generate":
        return cmd_generate(args)
    if args.command == "verify":
        return cmd_verify(args)
    parser.print_help(sys.stderr)
    return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
