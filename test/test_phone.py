"""Tests for French phone number normalization."""

import pytest

from callqueue.telephony.phone import is_valid_french_phone_number, normalize_french_phone_number


class TestNormalize:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("01 23 45 67 89", "+33123456789"),
            ("01.23.45.67.89", "+33123456789"),
            ("01-23-45-67-89", "+33123456789"),
            ("+33 1 23 45 67 89", "+33123456789"),
            ("0033123456789", "+33123456789"),
            ("33123456789", "+33123456789"),
            ("123456789", "+33123456789"),
            ("(06) 12 34 56 78", "+33612345678"),
        ],
    )
    def test_formats(self, raw: str, expected: str) -> None:
        assert normalize_french_phone_number(raw) == expected

    def test_unrecognized_returned_unchanged(self) -> None:
        assert normalize_french_phone_number("+44 20 7946 0958") == "+44 20 7946 0958"
        assert normalize_french_phone_number("12345") == "12345"

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty(self, value: str | None) -> None:
        assert normalize_french_phone_number(value) == value


class TestIsValid:
    def test_valid(self) -> None:
        assert is_valid_french_phone_number("06 12 34 56 78")

    @pytest.mark.parametrize("value", [None, "", "0012", "+33012345678", "+44 20 7946 0958"])
    def test_invalid(self, value: str | None) -> None:
        assert not is_valid_french_phone_number(value)
