"""Tests for ledger word encoding."""

import pytest

from hexed.encoding import (
    FIELD_PRIME,
    WordReader,
    decode_short_string,
    decode_signed,
    encode_short_string,
    encode_signed,
    normalize_address,
    parse_word,
)
from hexed.exceptions import DecodeAnomaly
from hexed.types import Direction, HexCoordinate


class TestParseWord:
    """Tests for word parsing."""

    def test_hex_and_decimal(self):
        assert parse_word("0x1f") == 31
        assert parse_word("31") == 31
        assert parse_word(31) == 31

    def test_rejects_garbage(self):
        with pytest.raises(DecodeAnomaly):
            parse_word("0xzz")

    def test_rejects_out_of_field(self):
        with pytest.raises(DecodeAnomaly):
            parse_word(FIELD_PRIME)
        with pytest.raises(DecodeAnomaly):
            parse_word(-1)


class TestSigned:
    """Tests for signed 32-bit reinterpretation."""

    def test_positive_passthrough(self):
        assert decode_signed(7) == 7

    def test_field_native_negative(self):
        assert decode_signed(FIELD_PRIME - 3) == -3

    def test_twos_complement_negative(self):
        assert decode_signed(2**32 - 3) == -3
        assert decode_signed(2**31) == -(2**31)

    def test_encode_signed_is_field_native(self):
        assert encode_signed(-3) == FIELD_PRIME - 3
        assert decode_signed(encode_signed(-123456)) == -123456

    def test_too_wide_is_anomaly(self):
        with pytest.raises(DecodeAnomaly):
            decode_signed(2**40)
        with pytest.raises(DecodeAnomaly):
            decode_signed(FIELD_PRIME - 2**40)


class TestShortString:
    """Tests for short-string packing."""

    def test_encode_known_value(self):
        assert encode_short_string("bob") == 0x626F62

    def test_decode(self):
        assert decode_short_string(0x626F62) == "bob"
        assert decode_short_string(0) == ""

    def test_truncates_to_31_chars(self):
        word = encode_short_string("x" * 40)
        assert decode_short_string(word) == "x" * 31

    def test_non_ascii_rejected(self):
        with pytest.raises(UnicodeEncodeError):
            encode_short_string("héllo")


class TestNormalizeAddress:
    """Tests for address normalisation."""

    def test_leading_zeros_and_case(self):
        assert normalize_address("0x000ABC") == "0xabc"
        assert normalize_address("0xabc") == normalize_address("0x0ABC")

    def test_int_input(self):
        assert normalize_address(0xABC) == "0xabc"

    def test_unparseable_falls_back_to_lowercase(self):
        assert normalize_address("NotHex") == "nothex"


class TestWordReader:
    """Tests for the sequential word cursor."""

    def test_reads_in_order(self):
        r = WordReader(["0x5", "0x1", encode_signed(-2), "0x3"])
        assert r.read_unsigned(32) == 5
        assert r.read_bool() is True
        assert r.read_coordinate() == HexCoordinate(q=-2, r=3)
        assert r.remaining == 0

    def test_exhausted(self):
        r = WordReader([1])
        r.read()
        with pytest.raises(DecodeAnomaly):
            r.read()

    def test_bool_rejects_other_values(self):
        with pytest.raises(DecodeAnomaly):
            WordReader([2]).read_bool()

    def test_unsigned_width(self):
        with pytest.raises(DecodeAnomaly):
            WordReader([256]).read_unsigned(8)

    def test_direction(self):
        assert WordReader([4]).read_direction() is Direction.SOUTHWEST
        with pytest.raises(DecodeAnomaly):
            WordReader([6]).read_direction()

    def test_option_present_consumes_payload(self):
        r = WordReader([0, 9, 42])
        assert r.read_option(lambda: r.read_unsigned(32)) == 9
        assert r.read() == 42

    def test_option_absent_consumes_only_tag(self):
        r = WordReader([1, 42])
        assert r.read_option(lambda: r.read_unsigned(32)) is None
        assert r.read() == 42

    def test_option_bad_discriminant(self):
        r = WordReader([2, 42])
        with pytest.raises(DecodeAnomaly):
            r.read_option(r.read)

    def test_read_many(self):
        r = WordReader([1, 2, 3])
        assert r.read_many(2) == [1, 2]
        with pytest.raises(DecodeAnomaly):
            r.read_many(2)
