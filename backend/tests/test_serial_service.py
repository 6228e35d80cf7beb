# Overview: Pytest coverage for the serialized barcode codec.

import pytest

from backoffice.errors import FormatError
from backoffice.services.serial_service import (
    ParsedSerial,
    encode_serialized_number,
    format_serial,
    parse_serial,
    parse_serialized_number,
    serial_end_for,
)


class TestParseSerializedNumber:

    def test_splits_fields(self):
        parsed = parse_serialized_number("004212345670251234567890")
        assert parsed == ParsedSerial(
            game_code="0042",
            pack_number="1234567",
            serial_start="025",
            trailing_identifier="1234567890",
        )

    def test_leading_zeros_preserved(self):
        parsed = parse_serialized_number("000000000010000000000000")
        assert parsed.game_code == "0000"
        assert parsed.pack_number == "0000001"
        assert parsed.serial_start == "000"

    @pytest.mark.parametrize("value", [
        "00421234567025123456789",      # 23 digits
        "0042123456702512345678901",    # 25 digits
        "",
        "0042-2345670251234567890",
        "00421234567025123456789a",
        "００４２12345670251234567890",  # full-width digits
    ])
    def test_rejects_malformed(self, value):
        with pytest.raises(FormatError) as exc:
            parse_serialized_number(value)
        assert exc.value.code == "INVALID_SERIAL"
        assert exc.value.status_code == 400

    def test_rejects_non_string(self):
        with pytest.raises(FormatError):
            parse_serialized_number(4212345670251234567890)


class TestEncodeSerializedNumber:

    def test_encode_inverts_parse(self):
        serialized = encode_serialized_number("0042", "1234567", "025", "1234567890")
        assert serialized == "004212345670251234567890"
        assert parse_serialized_number(serialized).pack_number == "1234567"

    def test_defaults_to_canonical_start(self):
        serialized = encode_serialized_number("0042", "0000001")
        assert parse_serialized_number(serialized).serial_start == "000"

    def test_wrong_width_rejected(self):
        with pytest.raises(FormatError):
            encode_serialized_number("42", "1234567")


class TestSerialArithmetic:

    def test_parse_serial(self):
        assert parse_serial("000") == 0
        assert parse_serial("007") == 7
        assert parse_serial("149") == 149

    @pytest.mark.parametrize("value", ["", "1a", "-01", None])
    def test_parse_serial_rejects(self, value):
        with pytest.raises(FormatError):
            parse_serial(value)

    def test_format_serial_pads(self):
        assert format_serial(7) == "007"
        assert format_serial(149) == "149"

    def test_format_serial_negative(self):
        with pytest.raises(FormatError):
            format_serial(-1)

    @pytest.mark.parametrize("tickets_per_pack,expected", [
        (1, "000"),
        (10, "009"),
        (150, "149"),
        (300, "299"),
        (1000, "999"),
    ])
    def test_serial_end_for(self, tickets_per_pack, expected):
        assert serial_end_for(tickets_per_pack) == expected

    @pytest.mark.parametrize("tickets_per_pack", [0, -5, 1001])
    def test_serial_end_for_out_of_range(self, tickets_per_pack):
        with pytest.raises(FormatError) as exc:
            serial_end_for(tickets_per_pack)
        assert exc.value.code == "INVALID_TICKETS_PER_PACK"
