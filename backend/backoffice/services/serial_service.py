# Overview: Codec for the 24-digit serialized lottery pack barcode.

"""
Serialized Number Codec

LAYOUT (24 digits, no separators):

    GGGG PPPPPPP SSS TTTTTTTTTT
    |    |       |   +-- trailing identifier (10, opaque)
    |    |       +------ serial_start (3, physical ticket position)
    |    +-------------- pack_number (7)
    +------------------- game_code (4)

The request boundary already rejects anything that is not 24 digits; the
codec re-validates anyway because it is also called from CLI and tests.
Pure functions, no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import FormatError


SERIALIZED_LENGTH = 24
GAME_CODE_LENGTH = 4
PACK_NUMBER_LENGTH = 7
SERIAL_LENGTH = 3
TRAILING_LENGTH = 10

CANONICAL_SERIAL_START = "000"


@dataclass(frozen=True)
class ParsedSerial:
    game_code: str
    pack_number: str
    serial_start: str
    trailing_identifier: str


def parse_serialized_number(serialized: str) -> ParsedSerial:
    """
    Split a serialized barcode into its fields.

    Raises:
        FormatError: if the value is not exactly 24 ASCII digits
    """
    if not isinstance(serialized, str):
        raise FormatError("Serialized number must be a string", code="INVALID_SERIAL")
    if len(serialized) != SERIALIZED_LENGTH:
        raise FormatError(
            f"Serialized number must be exactly {SERIALIZED_LENGTH} digits, got {len(serialized)}",
            code="INVALID_SERIAL",
        )
    # str.isdigit() accepts non-ASCII digits such as "²"
    if not (serialized.isascii() and serialized.isdigit()):
        raise FormatError("Serialized number must contain only digits", code="INVALID_SERIAL")

    game_end = GAME_CODE_LENGTH
    pack_end = game_end + PACK_NUMBER_LENGTH
    serial_end = pack_end + SERIAL_LENGTH

    return ParsedSerial(
        game_code=serialized[:game_end],
        pack_number=serialized[game_end:pack_end],
        serial_start=serialized[pack_end:serial_end],
        trailing_identifier=serialized[serial_end:],
    )


def encode_serialized_number(
    game_code: str,
    pack_number: str,
    serial_start: str = CANONICAL_SERIAL_START,
    trailing_identifier: str = "0" * TRAILING_LENGTH,
) -> str:
    """Inverse of parse_serialized_number. Validates the assembled value."""
    if (
        len(game_code) != GAME_CODE_LENGTH
        or len(pack_number) != PACK_NUMBER_LENGTH
        or len(serial_start) != SERIAL_LENGTH
    ):
        raise FormatError("Serialized number fields have the wrong width", code="INVALID_SERIAL")
    serialized = f"{game_code}{pack_number}{serial_start}{trailing_identifier}"
    parse_serialized_number(serialized)
    return serialized


def parse_serial(value: str) -> int:
    """Interpret a zero-padded ticket serial ("007") as an integer."""
    if not isinstance(value, str) or not value or not (value.isascii() and value.isdigit()):
        raise FormatError(f"Serial {value!r} must be a zero-padded digit string", code="INVALID_SERIAL")
    return int(value)


def format_serial(number: int, width: int = SERIAL_LENGTH) -> str:
    """Zero-pad a ticket position to the fixed serial width."""
    if number < 0:
        raise FormatError("Serial cannot be negative", code="INVALID_SERIAL")
    return str(number).zfill(width)


def serial_end_for(tickets_per_pack: int) -> str:
    """Last ticket serial of a pack: tickets_per_pack - 1, zero-padded."""
    if tickets_per_pack < 1 or tickets_per_pack > 10 ** SERIAL_LENGTH:
        raise FormatError(
            f"tickets_per_pack must be between 1 and {10 ** SERIAL_LENGTH}",
            code="INVALID_TICKETS_PER_PACK",
        )
    return format_serial(tickets_per_pack - 1)
