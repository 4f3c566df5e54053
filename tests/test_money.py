from decimal import Decimal

import pytest

from errors import ValidationError
from money import MAX_CENTS, as_cents, format_money, from_cents, to_cents


class TestFormatMoney:
    def test_pads_to_two_decimals(self):
        assert format_money("100") == "100.00"
        assert format_money(7) == "7.00"

    def test_rounds_half_up(self):
        assert format_money("2.345") == "2.35"
        assert format_money("99.999") == "100.00"

    def test_float_without_binary_noise(self):
        assert format_money(0.1 + 0.2) == "0.30"
        assert format_money(19.99) == "19.99"

    def test_decimal_input(self):
        assert format_money(Decimal("12.5")) == "12.50"

    def test_garbage_degrades_to_zero(self):
        for value in ("abc", "", "   ", None, "NaN", "Infinity", [], True):
            assert format_money(value) == "0.00"

    def test_idempotent(self):
        for value in ("1", "0.005", 3.14159, "-4.2", "1e3", "abc"):
            once = format_money(value)
            assert format_money(once) == once


class TestCents:
    def test_to_cents(self):
        assert to_cents("150.00") == 15000
        assert to_cents(" 99.99 ") == 9999
        assert to_cents(12) == 1200
        assert to_cents("1.005") == 101

    def test_to_cents_rejects_garbage(self):
        with pytest.raises(ValidationError):
            to_cents("abc")
        with pytest.raises(ValidationError):
            to_cents("inf")

    def test_from_cents(self):
        assert from_cents(15000) == "150.00"
        assert from_cents(5) == "0.05"
        assert from_cents(0) == "0.00"


class TestLargeAmounts:
    def test_format_beyond_default_precision(self):
        assert format_money("1e30") == "1000000000000000000000000000000.00"
        assert format_money(1e30) == "1000000000000000000000000000000.00"
        assert format_money("12345678901234567890123456789") == "12345678901234567890123456789.00"

    def test_format_absurd_magnitudes_degrade_to_zero(self):
        for value in ("1e100", "1e999999999", "-1e100"):
            assert format_money(value) == "0.00"

    @pytest.mark.parametrize("value", ["1e30", "100000000000000000000", "-1e30", "1e999999999"])
    def test_to_cents_rejects_out_of_range(self, value):
        with pytest.raises(ValidationError):
            to_cents(value)

    def test_to_cents_largest_storable_amount(self):
        assert to_cents("92233720368547758.07") == MAX_CENTS
        with pytest.raises(ValidationError):
            to_cents("92233720368547758.08")

    def test_as_cents_checks_integer_range(self):
        assert as_cents(150) == 150
        assert as_cents("1.50") == 150
        with pytest.raises(ValidationError):
            as_cents(MAX_CENTS + 1)
