"""Tests for fixed-point payout math."""
import pytest

from solver.amounts import compute_quote_amount, format_price_e18, to_decimal_string


def test_quote_amount_same_decimals():
    # 1.0 base at price 2.0 with 6/6 decimals pays 2.0 quote
    assert compute_quote_amount(1_000_000, 2 * 10 ** 18, 6, 6) == 2_000_000


def test_quote_amount_fixed_on_order_wins():
    assert compute_quote_amount(1_000_000, 2 * 10 ** 18, 6, 6, quote_amount=123) == 123


def test_quote_amount_scales_to_more_quote_decimals():
    # 1.0 token with 6 decimals at price 0.5 into an 18-decimal token
    result = compute_quote_amount(1_000_000, 5 * 10 ** 17, 6, 18)
    assert result == 5 * 10 ** 17


def test_quote_amount_scales_to_fewer_quote_decimals():
    # 1.0 ETH (18 decimals) at price 3000 into a 6-decimal stablecoin
    result = compute_quote_amount(10 ** 18, 3000 * 10 ** 18, 18, 6)
    assert result == 3_000_000_000


def test_quote_amount_negative_exponent_multiplies():
    # base_decimals + 18 - quote_decimals < 0
    result = compute_quote_amount(1, 10 ** 18, 0, 20)
    assert result == 10 ** 20


def test_quote_amount_truncates():
    # 1 unit at price 1/3 cannot pay a fraction
    assert compute_quote_amount(1, 333_333_333_333_333_333, 6, 6) == 0
    assert compute_quote_amount(10, 333_333_333_333_333_333, 6, 6) == 3


def test_quote_amount_is_exact_for_huge_values():
    base = 123_456_789_012_345_678_901_234_567_890
    price = 987_654_321_098_765_432
    expected = base * price // 10 ** 18
    assert compute_quote_amount(base, price, 18, 18) == expected
    assert compute_quote_amount(base, price, 18, 18) == compute_quote_amount(base, price, 18, 18)


def test_quote_amount_rejects_negative_inputs():
    with pytest.raises(ValueError):
        compute_quote_amount(-1, 10 ** 18, 6, 6)
    with pytest.raises(ValueError):
        compute_quote_amount(1, -(10 ** 18), 6, 6)


@pytest.mark.parametrize(
    "amount,decimals,expected",
    [
        (1_500_000, 6, "1.5"),
        (2_000_000, 6, "2"),
        (1, 6, "0.000001"),
        (0, 18, "0"),
        (42, 0, "42"),
        (10 ** 30 + 1, 18, "1000000000000.000000000000000001"),
    ],
)
def test_to_decimal_string(amount, decimals, expected):
    assert to_decimal_string(amount, decimals) == expected


def test_to_decimal_string_rejects_negative_decimals():
    with pytest.raises(ValueError):
        to_decimal_string(1, -1)


def test_format_price_e18():
    assert format_price_e18(2 * 10 ** 18) == "2"
    assert format_price_e18(25 * 10 ** 17) == "2.5"
