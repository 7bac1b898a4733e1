"""Tests for UIN validation."""

import pytest

from resultcheck.validation import clean_identifier, is_valid_uin, uin_checksum


class TestUinChecksum:
    @pytest.mark.parametrize("prefix, digits, expected", [
        ("S", "1234567", "D"),
        ("T", "1234567", "J"),
        ("F", "1234567", "N"),
        ("G", "1234567", "X"),
        ("M", "1234567", "K"),
        ("S", "0000000", "J"),
        ("S", "0000005", "A"),
    ])
    def test_known_values(self, prefix, digits, expected):
        assert uin_checksum(prefix, digits) == expected


class TestIsValidUin:
    @pytest.mark.parametrize("value", ["S1234567D", "T1234567J", "F1234567N", "G1234567X", "M1234567K"])
    def test_valid(self, value):
        assert is_valid_uin(value)

    @pytest.mark.parametrize("value", [
        "S1234567A",    # wrong checksum
        "s1234567d",    # lowercase
        "S123456D",     # too short
        "S12345678D",   # too long
        "X1234567D",    # unknown prefix
        "",
    ])
    def test_invalid(self, value):
        assert not is_valid_uin(value)


class TestCleanIdentifier:
    def test_strips_and_uppercases(self):
        assert clean_identifier(" s1234-567d ") == "S1234567D"

    def test_none(self):
        assert clean_identifier(None) == ""
