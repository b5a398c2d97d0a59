"""Tests for the author id encoding and key helpers."""

import pytest

from tile_overlay.config.settings import settings
from tile_overlay.domain.encoding import number_to_encoded
from tile_overlay.domain.template import (
    make_fragment_key,
    normalize_fragment_key,
    parse_coords,
    parse_fragment_key,
    parse_template_key,
)

ALPHABET = settings.ENCODING_BASE


class TestNumberToEncoded:
    def test_zero_maps_to_first_character(self):
        assert number_to_encoded(0, ALPHABET) == "!"

    def test_single_digit(self):
        assert number_to_encoded(1, ALPHABET) == "#"
        assert number_to_encoded(len(ALPHABET) - 1, ALPHABET) == ALPHABET[-1]

    def test_most_significant_digit_first(self):
        base = len(ALPHABET)
        assert number_to_encoded(base, ALPHABET) == ALPHABET[1] + ALPHABET[0]
        assert number_to_encoded(2 * base + 3, ALPHABET) == ALPHABET[2] + ALPHABET[3]

    def test_binary_alphabet(self):
        assert number_to_encoded(5, "01") == "101"

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            number_to_encoded(-1, ALPHABET)


class TestKeys:
    def test_fragment_key_is_zero_padded(self):
        assert make_fragment_key(3, 47, 183, 5) == "0003,0047,183,5"

    def test_fragment_key_parses_back(self):
        assert parse_fragment_key("2047,0000,999,0") == (2047, 0, 999, 0)
        assert parse_fragment_key("375,1846,276,188") is None

    def test_normalize_legacy_fragment_key(self):
        assert normalize_fragment_key("375,1846,276,188") == "0375,1846,276,188"
        assert normalize_fragment_key("a,b,c,d") is None

    def test_template_key(self):
        assert parse_template_key("12 $Z") == (12, "$Z")
        assert parse_template_key("12") is None
        assert parse_template_key("x $Z") is None

    def test_parse_coords(self):
        assert parse_coords("1, 2, 3, 4") == [1, 2, 3, 4]
        assert parse_coords([5, 6, 7, 8]) == [5, 6, 7, 8]
        assert parse_coords("1, 2, 3") is None
        assert parse_coords("1, -2, 3, 4") is None
        assert parse_coords(None) is None
