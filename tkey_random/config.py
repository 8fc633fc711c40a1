"""Run configuration for the generate and verify commands.

Options are validated by Pydantic models; validation errors surface as
UsageError so no device is contacted with bad arguments. A few defaults
come from the environment:

    TKEY_RANDOM_PORT     serial port, instead of auto-detection
    TKEY_RANDOM_SPEED    serial speed in bits per second
    TKEY_RANDOM_APP_BIN  app image to load instead of the bundled app.bin
"""

import getpass
import os
import sys
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from .exceptions import FileError, UsageError
from .transport import APP_MAX_SIZE, SERIAL_SPEED

ENV_PORT = "TKEY_RANDOM_PORT"
ENV_SPEED = "TKEY_RANDOM_SPEED"
ENV_APP_BIN = "TKEY_RANDOM_APP_BIN"

APP_BINARY_NAME = "app.bin"


def _usage_error(e: ValidationError) -> UsageError:
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}"
        for err in e.errors()
    )
    return UsageError(details)


class GenerateConfig(BaseModel):
    """Options for ``generate``."""
    byte_count: int = Field(..., ge=1, description="Random bytes to generate")
    port: Optional[str] = Field(
        default_factory=lambda: os.environ.get(ENV_PORT) or None,
        description="Serial port; auto-detected when unset",
    )
    speed: int = Field(
        default_factory=lambda: os.environ.get(ENV_SPEED, SERIAL_SPEED),
        gt=0,
        validate_default=True,
        description="Serial speed in bits per second",
    )
    output_file: Optional[str] = Field(default=None, description="Binary output file; hex on stdout when unset")
    show_signature: bool = Field(default=False, description="Fetch, print and verify the signature")
    enter_uss: bool = Field(default=False, description="Type the USS phrase interactively")
    uss_file: Optional[str] = Field(default=None, description="Read the USS from a file, '-' for stdin")

    class Config:
        frozen = True

    @model_validator(mode="after")
    def _single_uss_source(self) -> "GenerateConfig":
        if self.enter_uss and self.uss_file:
            raise ValueError("Pass only one of --uss or --uss-file.")
        return self

    @classmethod
    def create(cls, **options) -> "GenerateConfig":
        """Build and validate, raising UsageError instead of ValidationError."""
        try:
            return cls(**{k: v for k, v in options.items() if v is not None})
        except ValidationError as e:
            raise _usage_error(e)

    def secret_source(self) -> Optional[Callable[[], bytes]]:
        """Deferred USS reader, or None when no USS was asked for."""
        if self.enter_uss:
            return input_uss
        if self.uss_file:
            path = self.uss_file
            return lambda: read_uss_file(path)
        return None


class VerifyConfig(BaseModel):
    """Options for ``verify``."""
    message_file: str
    signature_file: str
    pubkey_file: str
    is_binary: bool = False

    class Config:
        frozen = True

    @classmethod
    def create(cls, **options) -> "VerifyConfig":
        try:
            return cls(**options)
        except ValidationError as e:
            raise _usage_error(e)


def load_app_binary() -> bytes:
    """Return the app image, from TKEY_RANDOM_APP_BIN or bundled with the package.

    Raises:
        FileError: If the image cannot be read, is empty or exceeds APP_MAX_SIZE.
    """
    path = os.environ.get(ENV_APP_BIN) or str(Path(__file__).parent / APP_BINARY_NAME)
    try:
        with open(path, "rb") as f:
            binary = f.read()
    except OSError as e:
        raise FileError(path, e)
    if not binary:
        raise FileError(path, ValueError("app image is empty"))
    if len(binary) > APP_MAX_SIZE:
        raise FileError(
            path, ValueError(f"app image too big: {len(binary)} > {APP_MAX_SIZE} bytes")
        )
    return binary


def read_uss_file(path: str) -> bytes:
    """Read a USS file unmodified. ``-`` reads stdin."""
    if path == "-":
        return sys.stdin.buffer.read()
    try:
        with open(path, "rb") as f:
            return f.read()
    except OSError as e:
        raise FileError(path, e)


def input_uss() -> bytes:
    """Prompt twice for the USS phrase without echo."""
    phrase = getpass.getpass("Enter phrase for the USS: ")
    if not phrase:
        raise UsageError("USS phrase is empty")
    if getpass.getpass("Repeat the phrase: ") != phrase:
        raise UsageError("Phrases did not match")
    return phrase.encode("utf-8")
